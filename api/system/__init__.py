"""System health endpoints."""

import time
from fastapi import APIRouter, HTTPException, status
from pydantic import BaseModel
import psutil

import database
from realtime import manager

# Create router
router = APIRouter(
    prefix="/system",
    tags=["System"]
)

class SystemHealth(BaseModel):
    """Model for system health data."""
    status: str
    uptime: float
    cpu_usage: float
    memory_usage: float
    process_memory_mb: float
    disk_usage: float
    websocket_connections: int
    database_status: str

@router.get("/health", response_model=SystemHealth)
async def get_system_health() -> SystemHealth:
    """Get system health status.

    Returns:
        SystemHealth object containing system metrics
    """
    try:
        # Gather system metrics
        process = psutil.Process()
        cpu_percent = psutil.cpu_percent()
        memory = psutil.virtual_memory()
        disk = psutil.disk_usage('/')
        database_ok = await database.ping()
    except psutil.Error as e:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=str(e)
        )

    if not database_ok:
        health = "unhealthy"
    elif cpu_percent >= 80:
        health = "degraded"
    else:
        health = "healthy"

    return SystemHealth(
        status=health,
        uptime=time.time() - process.create_time(),
        cpu_usage=cpu_percent,
        memory_usage=memory.percent,
        process_memory_mb=round(process.memory_info().rss / (1024 * 1024), 2),
        disk_usage=disk.percent,
        websocket_connections=manager.connection_count,
        database_status="connected" if database_ok else "unreachable"
    )

# Export the router
__all__ = ['router', 'SystemHealth']
