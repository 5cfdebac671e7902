"""Shared dependencies for the REST routers."""
from typing import Any, Optional

from fastapi import HTTPException, status

from realtime import manager
from service import ServiceResult, TrustSafetyService

# Error code -> HTTP status
ERROR_STATUS = {
    'validation_error': status.HTTP_400_BAD_REQUEST,
    'insufficient_balance': status.HTTP_400_BAD_REQUEST,
    'forbidden': status.HTTP_403_FORBIDDEN,
    'not_found': status.HTTP_404_NOT_FOUND,
    'invariant_violation': status.HTTP_409_CONFLICT,
    'no_staff_available': status.HTTP_503_SERVICE_UNAVAILABLE,
    'service_unavailable': status.HTTP_503_SERVICE_UNAVAILABLE,
    'internal_error': status.HTTP_500_INTERNAL_SERVER_ERROR,
}

_service: Optional[TrustSafetyService] = None

def get_service() -> TrustSafetyService:
    """The process-wide facade, fanning out over the websocket manager."""
    global _service
    if _service is None:
        _service = TrustSafetyService(fanout=manager)
    return _service

def unwrap(result: ServiceResult) -> Any:
    """Return the result's data or raise the matching HTTPException."""
    if result.success:
        return result.data
    error = result.error
    raise HTTPException(
        status_code=ERROR_STATUS.get(error.code, status.HTTP_500_INTERNAL_SERVER_ERROR),
        detail=error.model_dump()
    )

__all__ = ['get_service', 'unwrap', 'ERROR_STATUS']
