"""Assignment API endpoints."""

from fastapi import APIRouter, Depends
from typing import List, Optional, Union
from uuid import UUID

from assignments import Assignment, AssignRequest, ReassignRequest, Workload
from auth import Principal, require_staff, require_supervisor
from service import TrustSafetyService
from ..dependencies import get_service, unwrap

# Create router
router = APIRouter(
    prefix="/assignments",
    tags=["Assignments"]
)

@router.post("", response_model=Assignment)
async def assign_work(
    request: AssignRequest,
    current_user: Principal = Depends(require_supervisor),
    service: TrustSafetyService = Depends(get_service)
):
    """Assign a work item to the next staff member in rotation."""
    return unwrap(await service.assign_work(request.item_id, request.item_type))

@router.post("/{assignment_id}/reassign", response_model=Assignment)
async def reassign_work(
    assignment_id: UUID,
    request: ReassignRequest,
    current_user: Principal = Depends(require_supervisor),
    service: TrustSafetyService = Depends(get_service)
):
    """Move an active assignment to another staff member."""
    return unwrap(await service.reassign_work(assignment_id, request.new_employee_id, current_user))

@router.post("/{assignment_id}/complete", response_model=Assignment)
async def complete_assignment(
    assignment_id: UUID,
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Close an active assignment as completed."""
    return unwrap(await service.complete_assignment(assignment_id, current_user))

@router.get("/workload", response_model=Union[Workload, List[Workload]])
async def get_workload(
    employee_id: Optional[UUID] = None,
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """Workload of one staff member, or of all staff for managers and admins."""
    return unwrap(await service.get_workload(employee_id, current_user))

@router.get("/queue", response_model=List[Assignment])
async def get_queue(
    current_user: Principal = Depends(require_staff),
    service: TrustSafetyService = Depends(get_service)
):
    """The caller's active assignments, oldest first."""
    return unwrap(await service.get_assignment_queue(current_user.user_id))

# Export the router
__all__ = ['router']
