"""Token custody arithmetic.

Every balance change is expressed as a ledger entry and applied through
``apply_entry``, so a wallet can only move together with the transaction row
that explains it. The effect table below fixes how each transaction type
moves the spendable and escrow buckets; ``expected_balances`` replays it to
reconcile a wallet against its history.
"""
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple
from uuid import UUID

from errors import InsufficientBalanceError, InvariantViolationError, ValidationError
from .models import BookingStatus, TransactionType, TRANSITIONS


@dataclass(frozen=True)
class Balances:
    balance: int = 0
    escrow_balance: int = 0
    total_purchased: int = 0
    total_spent: int = 0

    @classmethod
    def from_row(cls, row) -> 'Balances':
        return cls(
            balance=row['balance'],
            escrow_balance=row['escrow_balance'],
            total_purchased=row['total_purchased'],
            total_spent=row['total_spent'],
        )

    @property
    def held_total(self) -> int:
        return self.balance + self.escrow_balance


@dataclass(frozen=True)
class LedgerEntry:
    user_id: UUID
    type: TransactionType
    amount: int
    description: str
    booking_id: Optional[UUID] = None
    reference: Optional[str] = None


# (balance factor, escrow factor) applied to an entry's signed amount
EFFECTS = {
    TransactionType.PURCHASE: (1, 0),
    TransactionType.ESCROW_HOLD: (1, -1),
    TransactionType.ESCROW_RELEASE: (0, 1),
    TransactionType.BOOKING_PAYMENT: (1, 0),
    TransactionType.BOOKING_REFUND: (1, -1),
}


def apply_entry(balances: Balances, entry: LedgerEntry) -> Balances:
    """Apply one entry to a wallet.

    Raises:
        InvariantViolationError: If either bucket would go negative
    """
    balance_factor, escrow_factor = EFFECTS[entry.type]
    updated = replace(
        balances,
        balance=balances.balance + balance_factor * entry.amount,
        escrow_balance=balances.escrow_balance + escrow_factor * entry.amount,
    )
    if entry.type == TransactionType.PURCHASE:
        updated = replace(updated, total_purchased=updated.total_purchased + entry.amount)
    elif entry.type == TransactionType.ESCROW_RELEASE:
        updated = replace(updated, total_spent=updated.total_spent - entry.amount)

    if updated.balance < 0 or updated.escrow_balance < 0:
        raise InvariantViolationError(
            f"{entry.type.value} of {entry.amount} would leave wallet of {entry.user_id} negative",
            {
                'user_id': str(entry.user_id),
                'type': entry.type.value,
                'amount': entry.amount,
                'balance': balances.balance,
                'escrow_balance': balances.escrow_balance,
                'booking_id': str(entry.booking_id) if entry.booking_id else None,
            }
        )
    return updated


def expected_balances(transactions: Iterable[Tuple[str, int]]) -> Balances:
    """Replay (type, amount) pairs from zero without the negativity check."""
    balance = escrow = 0
    for tx_type, amount in transactions:
        balance_factor, escrow_factor = EFFECTS[TransactionType(tx_type)]
        balance += balance_factor * amount
        escrow += escrow_factor * amount
    return Balances(balance=balance, escrow_balance=escrow)


def validate_transition(current: BookingStatus, new: BookingStatus) -> None:
    """Raise ValidationError unless ``current -> new`` is an edge of the state machine."""
    current, new = BookingStatus(current), BookingStatus(new)
    if new not in TRANSITIONS[current]:
        raise ValidationError(
            f"Invalid status transition {current.value} -> {new.value}",
            {
                'current_status': current.value,
                'requested_status': new.value,
                'allowed': [status.value for status in TRANSITIONS[current]]
            }
        )


def plan_hold(
    seeker: Balances,
    seeker_id: UUID,
    amount: int,
    booking_id: UUID
) -> Tuple[Balances, List[LedgerEntry]]:
    """Move a booking's tokens from spendable balance into escrow.

    Raises:
        InsufficientBalanceError: If the spendable balance is below ``amount``
    """
    if seeker.balance < amount:
        raise InsufficientBalanceError(required=amount, available=seeker.balance)
    entry = LedgerEntry(
        user_id=seeker_id,
        type=TransactionType.ESCROW_HOLD,
        amount=-amount,
        description=f"Escrow hold for booking {booking_id}",
    )
    return apply_entry(seeker, entry), [entry]


def plan_release(
    seeker: Balances,
    provider: Balances,
    seeker_id: UUID,
    provider_id: UUID,
    amount: int,
    booking_id: UUID
) -> Tuple[Balances, Balances, List[LedgerEntry]]:
    """Pay a completed booking's escrow out to the provider."""
    release = LedgerEntry(
        user_id=seeker_id,
        type=TransactionType.ESCROW_RELEASE,
        amount=-amount,
        description=f"Payment for completed booking {booking_id}",
        booking_id=booking_id,
    )
    payment = LedgerEntry(
        user_id=provider_id,
        type=TransactionType.BOOKING_PAYMENT,
        amount=amount,
        description=f"Payment received for booking {booking_id}",
        booking_id=booking_id,
    )
    return apply_entry(seeker, release), apply_entry(provider, payment), [release, payment]


def plan_refund(
    seeker: Balances,
    seeker_id: UUID,
    amount: int,
    booking_id: UUID
) -> Tuple[Balances, List[LedgerEntry]]:
    """Return a cancelled booking's escrow to the seeker's spendable balance."""
    entry = LedgerEntry(
        user_id=seeker_id,
        type=TransactionType.BOOKING_REFUND,
        amount=amount,
        description=f"Refund for cancelled booking {booking_id}",
        booking_id=booking_id,
    )
    return apply_entry(seeker, entry), [entry]


def check_captured_amount(
    token_amount: int,
    captured_amount: Decimal,
    rate: int,
    tolerance: int
) -> None:
    """Check the gateway captured what the tokens cost.

    Raises:
        ValidationError: If the difference exceeds ``tolerance`` currency units
    """
    expected = Decimal(token_amount) * rate
    if abs(Decimal(captured_amount) - expected) > tolerance:
        raise ValidationError(
            f"Captured amount {captured_amount} does not match {token_amount} tokens",
            {'expected_amount': str(expected), 'captured_amount': str(captured_amount)}
        )


def plan_purchase(
    wallet: Balances,
    user_id: UUID,
    token_amount: int,
    reference: str
) -> Tuple[Balances, List[LedgerEntry]]:
    entry = LedgerEntry(
        user_id=user_id,
        type=TransactionType.PURCHASE,
        amount=token_amount,
        description=f"Purchased {token_amount} tokens",
        reference=reference,
    )
    return apply_entry(wallet, entry), [entry]
