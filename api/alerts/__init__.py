"""Monitoring alert API endpoints."""

from fastapi import APIRouter, Depends, Query
from typing import List, Optional
from uuid import UUID

from auth import Principal, require_staff
from monitoring import AlertResolve, MonitoringAlert
from service import TrustSafetyService
from ..dependencies import get_service, unwrap

# Create router
router = APIRouter(
    prefix="/alerts",
    tags=["Alerts"]
)

@router.get("", response_model=List[MonitoringAlert])
async def list_alerts(
    unresolved_only: bool = False,
    employee_id: Optional[UUID] = None,
    limit: int = Query(50, ge=1, le=200),
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Alerts visible to the caller, newest first."""
    return unwrap(await service.list_alerts(current_user, unresolved_only, employee_id, limit))

@router.post("/{alert_id}/resolve", response_model=MonitoringAlert)
async def resolve_alert(
    alert_id: UUID,
    request: AlertResolve,
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Resolve an alert."""
    return unwrap(await service.resolve_alert(alert_id, current_user, request.notes))

# Export the router
__all__ = ['router']
