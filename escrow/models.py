from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional
from uuid import UUID
from pydantic import BaseModel, Field


class BookingStatus(str, Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class TransactionType(str, Enum):
    PURCHASE = "PURCHASE"
    ESCROW_HOLD = "ESCROW_HOLD"
    ESCROW_RELEASE = "ESCROW_RELEASE"
    BOOKING_PAYMENT = "BOOKING_PAYMENT"
    BOOKING_REFUND = "BOOKING_REFUND"


# Allowed status changes; terminal states have none
TRANSITIONS: Dict[BookingStatus, tuple] = {
    BookingStatus.PENDING: (BookingStatus.CONFIRMED, BookingStatus.CANCELLED),
    BookingStatus.CONFIRMED: (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
    BookingStatus.IN_PROGRESS: (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
    BookingStatus.COMPLETED: (),
    BookingStatus.CANCELLED: (),
}

TERMINAL_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED)

# Statuses during which the booking's tokens sit in the seeker's escrow
ESCROW_HELD_STATUSES = (BookingStatus.PENDING, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)


class Booking(BaseModel):
    id: UUID
    seeker_id: UUID
    provider_id: UUID
    status: BookingStatus
    scheduled_at: datetime
    duration: int
    token_amount: int
    assigned_employee_id: Optional[UUID] = None
    notes: Optional[str] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None


class BookingCreate(BaseModel):
    provider_id: UUID
    scheduled_at: datetime
    duration: int = Field(ge=1, le=8)
    token_amount: int = Field(gt=0)
    notes: Optional[str] = None


class BookingStatusUpdate(BaseModel):
    status: BookingStatus


class Wallet(BaseModel):
    id: UUID
    user_id: UUID
    balance: int = 0
    escrow_balance: int = 0
    total_purchased: int = 0
    total_spent: int = 0
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class WalletTransaction(BaseModel):
    id: UUID
    wallet_id: UUID
    type: TransactionType
    amount: int
    booking_id: Optional[UUID] = None
    description: Optional[str] = None
    reference: Optional[str] = None
    created_at: datetime


class WalletSummary(BaseModel):
    wallet: Wallet
    transactions: List[WalletTransaction] = Field(default_factory=list)


class LedgerCheck(BaseModel):
    user_id: UUID
    balance: int
    escrow_balance: int
    expected_balance: int
    expected_escrow_balance: int
    transaction_total: int
    consistent: bool


class TokenPurchase(BaseModel):
    token_amount: int = Field(gt=0)
    captured_amount: Decimal = Field(gt=0)
    gateway_reference: str = Field(min_length=1)
