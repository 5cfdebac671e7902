"""Booking API endpoints."""

from fastapi import APIRouter, Depends, HTTPException, status
from uuid import UUID

from auth import Principal, UserRole, get_current_user
from escrow import Booking, BookingCreate, BookingStatusUpdate
from service import TrustSafetyService
from ..dependencies import get_service, unwrap

# Create router
router = APIRouter(
    prefix="/bookings",
    tags=["Bookings"]
)

@router.post("", response_model=Booking)
async def create_booking(
    request: BookingCreate,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Create a booking as the seeker and hold its tokens in escrow."""
    if current_user.role != UserRole.SEEKER:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only seekers can create bookings"
        )
    return unwrap(await service.create_booking(
        seeker_id=current_user.user_id,
        provider_id=request.provider_id,
        scheduled_at=request.scheduled_at,
        duration=request.duration,
        token_amount=request.token_amount,
        notes=request.notes
    ))

@router.put("/{booking_id}/status", response_model=Booking)
async def update_booking_status(
    booking_id: UUID,
    request: BookingStatusUpdate,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Move a booking through its status state machine."""
    return unwrap(await service.transition_booking(booking_id, request.status, current_user))

@router.get("/{booking_id}", response_model=Booking)
async def get_booking(
    booking_id: UUID,
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """Get a booking visible to the caller."""
    return unwrap(await service.get_booking(booking_id, current_user))

# Export the router
__all__ = ['router']
