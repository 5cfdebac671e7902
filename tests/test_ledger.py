"""Tests for the escrow ledger arithmetic and booking state machine."""

from decimal import Decimal
from uuid import uuid4

import pytest

from errors import InsufficientBalanceError, InvariantViolationError, ValidationError
from escrow import (
    Balances,
    BookingStatus,
    LedgerEntry,
    TransactionType,
    apply_entry,
    expected_balances,
    validate_transition,
)
from escrow.ledger import check_captured_amount, plan_hold, plan_purchase, plan_refund, plan_release

SEEKER = uuid4()
PROVIDER = uuid4()
BOOKING = uuid4()

def test_hold_moves_tokens_into_escrow():
    held, entries = plan_hold(Balances(balance=500, total_purchased=500), SEEKER, 300, BOOKING)

    assert (held.balance, held.escrow_balance) == (200, 300)
    assert len(entries) == 1
    assert entries[0].type == TransactionType.ESCROW_HOLD
    assert entries[0].amount == -300
    assert entries[0].booking_id is None
    assert str(BOOKING) in entries[0].description

def test_hold_requires_spendable_balance():
    with pytest.raises(InsufficientBalanceError) as excinfo:
        plan_hold(Balances(balance=100, escrow_balance=900), SEEKER, 300, BOOKING)

    assert excinfo.value.required == 300
    assert excinfo.value.available == 100

def test_release_pays_provider():
    seeker, provider, entries = plan_release(
        Balances(balance=200, escrow_balance=300),
        Balances(balance=50),
        SEEKER, PROVIDER, 300, BOOKING
    )

    assert (seeker.balance, seeker.escrow_balance, seeker.total_spent) == (200, 0, 300)
    assert provider.balance == 350
    assert [e.type for e in entries] == [TransactionType.ESCROW_RELEASE, TransactionType.BOOKING_PAYMENT]
    assert all(e.booking_id == BOOKING for e in entries)

def test_refund_returns_escrow():
    seeker, entries = plan_refund(Balances(balance=200, escrow_balance=300), SEEKER, 300, BOOKING)

    assert (seeker.balance, seeker.escrow_balance) == (500, 0)
    assert entries[0].amount == 300

def test_release_without_escrow_is_an_invariant_violation():
    with pytest.raises(InvariantViolationError):
        plan_release(Balances(balance=500), Balances(), SEEKER, PROVIDER, 300, BOOKING)

def test_apply_entry_never_goes_negative():
    entry = LedgerEntry(user_id=SEEKER, type=TransactionType.ESCROW_HOLD, amount=-10, description="hold")
    with pytest.raises(InvariantViolationError):
        apply_entry(Balances(balance=5), entry)

def test_replay_matches_applied_entries():
    wallet, history = Balances(), []
    for step in (
        lambda w: plan_purchase(w, SEEKER, 500, "pay-1"),
        lambda w: plan_hold(w, SEEKER, 300, BOOKING),
        lambda w: plan_refund(w, SEEKER, 300, BOOKING),
        lambda w: plan_hold(w, SEEKER, 200, BOOKING),
    ):
        wallet, entries = step(wallet)
        history.extend((e.type.value, e.amount) for e in entries)

    replayed = expected_balances(history)
    assert (replayed.balance, replayed.escrow_balance) == (wallet.balance, wallet.escrow_balance)
    assert (wallet.balance, wallet.escrow_balance, wallet.total_purchased) == (300, 200, 500)

@pytest.mark.parametrize("current,new", [
    (BookingStatus.PENDING, BookingStatus.CONFIRMED),
    (BookingStatus.PENDING, BookingStatus.CANCELLED),
    (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS),
    (BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED),
    (BookingStatus.IN_PROGRESS, BookingStatus.CANCELLED),
])
def test_allowed_transitions(current, new):
    validate_transition(current, new)

@pytest.mark.parametrize("current,new", [
    (BookingStatus.PENDING, BookingStatus.COMPLETED),
    (BookingStatus.COMPLETED, BookingStatus.CANCELLED),
    (BookingStatus.CANCELLED, BookingStatus.PENDING),
    (BookingStatus.CONFIRMED, BookingStatus.PENDING),
])
def test_rejected_transitions(current, new):
    with pytest.raises(ValidationError) as excinfo:
        validate_transition(current, new)
    assert excinfo.value.details['current_status'] == current.value

def test_captured_amount_within_tolerance():
    check_captured_amount(50, Decimal("5000.50"), 100, 1)
    with pytest.raises(ValidationError):
        check_captured_amount(50, Decimal("4990"), 100, 1)
