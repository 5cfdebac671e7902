"""Token wallet API endpoints."""

from fastapi import APIRouter, Depends, Query
from uuid import UUID

from auth import Principal, get_current_user, require_payment_gateway, require_supervisor
from escrow import LedgerCheck, TokenPurchase, WalletSummary
from service import TrustSafetyService
from ..dependencies import get_service, unwrap

# Create router
router = APIRouter(
    prefix="/wallet",
    tags=["Wallet"]
)

@router.get("", response_model=WalletSummary)
async def get_wallet(
    limit: int = Query(20, ge=1, le=100),
    current_user: Principal = Depends(get_current_user),
    service: TrustSafetyService = Depends(get_service)
):
    """The caller's wallet with its most recent transactions."""
    return unwrap(await service.get_wallet(current_user.user_id, limit))

@router.post("/{user_id}/purchase", response_model=WalletSummary)
async def purchase_tokens(
    user_id: UUID,
    request: TokenPurchase,
    gateway: Principal = Depends(require_payment_gateway),
    service: TrustSafetyService = Depends(get_service)
):
    """Gateway callback crediting tokens for a capture it verified."""
    return unwrap(await service.purchase_tokens(
        user_id,
        request.token_amount,
        request.captured_amount,
        request.gateway_reference
    ))

@router.get("/{user_id}/verify", response_model=LedgerCheck)
async def verify_wallet(
    user_id: UUID,
    current_user: Principal = Depends(require_supervisor),
    service: TrustSafetyService = Depends(get_service)
):
    """Replay a wallet's transactions against its stored balances."""
    return unwrap(await service.verify_wallet(user_id))

# Export the router
__all__ = ['router']
