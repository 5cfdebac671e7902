"""REST API module for the trust & safety pipeline.

This module provides HTTP endpoints for:
- Creating bookings and moving them through their lifecycle
- Booking chat with moderation, read receipts and staff messages
- Real-time updates via WebSocket
- Assigning and reassigning moderation work
- Monitoring alerts
- Token wallets and purchases
- System health monitoring
"""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from realtime import manager

logger = logging.getLogger(__name__)

# Lifecycle management
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Handle startup and shutdown events."""
    # Don't initialize DB here since it's handled in main.py
    logger.info("Initializing API...")

    yield

    logger.info("Shutting down API...")
    await manager.close()

# Create FastAPI app
app = FastAPI(
    title="Trust & Safety API",
    description="REST API for booking moderation, escalation and escrow",
    version="1.0.0",
    lifespan=lifespan
)

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # In production, replace with specific origins
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.get("/")
async def root():
    return {
        "name": "Trust & Safety API",
        "version": "1.0.0",
        "status": "running"
    }

# Import and include all routers
from .alerts import router as alerts_router
from .assignments import router as assignments_router
from .bookings import router as bookings_router
from .chat import router as chat_router
from .system import router as system_router
from .wallet import router as wallet_router

# Include all routers
app.include_router(bookings_router)
app.include_router(chat_router)
app.include_router(assignments_router)
app.include_router(alerts_router)
app.include_router(wallet_router)
app.include_router(system_router)
