"""Tests for booking escrow against the in-memory database."""

import asyncio
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from assignments import ItemType
from auth import Principal, UserRole
from config import settings_conf
from errors import (
    AuthorizationError,
    InsufficientBalanceError,
    NotFoundError,
    ValidationError,
)
from escrow import BookingStatus

WHEN = datetime(2024, 6, 1, 10, tzinfo=timezone.utc)

@pytest.fixture
def purchase_settings(monkeypatch):
    monkeypatch.setitem(settings_conf, 'token_currency_rate', 100)
    monkeypatch.setitem(settings_conf, 'purchase_tolerance', 1)
    monkeypatch.setitem(settings_conf, 'min_token_purchase', 10)
    monkeypatch.setitem(settings_conf, 'max_token_purchase', 500)

def booking_transactions(fake_db, booking_id):
    return [t for t in fake_db.transactions if t['booking_id'] == booking_id]

async def move(ledger, booking_id, *statuses):
    for status in statuses:
        booking = await ledger.transition(booking_id, status)
    return booking

@pytest.mark.asyncio
async def test_booking_holds_tokens(fake_db, ledger, participants):
    seeker, provider = participants

    booking = await ledger.create_booking(seeker, provider, WHEN, 2, 300)

    assert booking.status == BookingStatus.PENDING
    wallet = fake_db.wallet_of(seeker)
    assert (wallet['balance'], wallet['escrow_balance']) == (200, 300)
    hold = fake_db.transactions[-1]
    assert (hold['type'], hold['amount'], hold['booking_id']) == ('ESCROW_HOLD', -300, None)
    assert fake_db.audit_logs[-1]['action'] == 'BOOKING_CREATED'

@pytest.mark.asyncio
async def test_completion_pays_provider(fake_db, ledger, participants):
    seeker, provider = participants
    booking = await ledger.create_booking(seeker, provider, WHEN, 2, 300)

    done = await move(
        ledger, booking.id,
        BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED
    )

    assert done.status == BookingStatus.COMPLETED
    assert done.completed_at is not None
    seeker_wallet = fake_db.wallet_of(seeker)
    assert (seeker_wallet['balance'], seeker_wallet['escrow_balance']) == (200, 0)
    assert seeker_wallet['total_spent'] == 300
    assert fake_db.wallet_of(provider)['balance'] == 300
    assert sorted(t['type'] for t in booking_transactions(fake_db, booking.id)) == [
        'BOOKING_PAYMENT', 'ESCROW_RELEASE'
    ]

@pytest.mark.asyncio
async def test_insufficient_balance_changes_nothing(fake_db, ledger, participants):
    seeker, provider = participants

    with pytest.raises(InsufficientBalanceError) as excinfo:
        await ledger.create_booking(seeker, provider, WHEN, 2, 600)

    assert excinfo.value.details == {'required': 600, 'available': 500}
    assert fake_db.bookings == {}
    assert fake_db.wallet_of(seeker)['balance'] == 500
    assert len(fake_db.transactions) == 1

@pytest.mark.asyncio
async def test_cancellation_refunds_seeker(fake_db, ledger, participants):
    seeker, provider = participants
    booking = await ledger.create_booking(seeker, provider, WHEN, 2, 300)

    cancelled = await move(ledger, booking.id, BookingStatus.CONFIRMED, BookingStatus.CANCELLED)

    assert cancelled.cancelled_at is not None
    wallet = fake_db.wallet_of(seeker)
    assert (wallet['balance'], wallet['escrow_balance']) == (500, 0)
    assert [t['type'] for t in booking_transactions(fake_db, booking.id)] == ['BOOKING_REFUND']
    assert fake_db.wallet_of(provider) is None

@pytest.mark.asyncio
async def test_invalid_transition_is_rejected(fake_db, ledger, participants):
    booking = await ledger.create_booking(*participants, WHEN, 2, 300)

    with pytest.raises(ValidationError) as excinfo:
        await ledger.transition(booking.id, BookingStatus.COMPLETED)

    assert excinfo.value.details['current_status'] == 'PENDING'
    assert fake_db.bookings[booking.id]['status'] == 'PENDING'
    assert booking_transactions(fake_db, booking.id) == []

@pytest.mark.asyncio
async def test_terminal_states_are_final(fake_db, ledger, participants):
    booking = await ledger.create_booking(*participants, WHEN, 2, 300)
    await ledger.transition(booking.id, BookingStatus.CANCELLED)

    with pytest.raises(ValidationError):
        await ledger.transition(booking.id, BookingStatus.CONFIRMED)
    assert fake_db.wallet_of(participants[0])['balance'] == 500

@pytest.mark.asyncio
async def test_outsider_cannot_transition(fake_db, ledger, participants):
    booking = await ledger.create_booking(*participants, WHEN, 2, 300)
    outsider = Principal(user_id=fake_db.add_user('SEEKER'), role=UserRole.SEEKER)
    manager = Principal(user_id=fake_db.add_user('MANAGER'), role=UserRole.MANAGER)

    with pytest.raises(AuthorizationError):
        await ledger.transition(booking.id, BookingStatus.CONFIRMED, outsider)

    confirmed = await ledger.transition(booking.id, BookingStatus.CONFIRMED, manager)
    assert confirmed.status == BookingStatus.CONFIRMED
    assert fake_db.audit_logs[-1]['actor_id'] == manager.user_id

@pytest.mark.asyncio
async def test_terminal_transition_completes_monitoring(fake_db, ledger, assigner, staff, participants):
    booking = await ledger.create_booking(*participants, WHEN, 2, 300)
    monitor = await assigner.assign(booking.id, ItemType.BOOKING_MONITORING)

    await ledger.transition(booking.id, BookingStatus.CANCELLED)

    row = fake_db.assignments[monitor.id]
    assert not row['is_active'] and row['completed_at'] is not None

@pytest.mark.asyncio
async def test_booking_validation(fake_db, ledger, participants):
    seeker, provider = participants
    unverified = fake_db.add_user('PROVIDER', is_verified=False)

    with pytest.raises(ValidationError):
        await ledger.create_booking(seeker, seeker, WHEN, 2, 100)
    with pytest.raises(ValidationError):
        await ledger.create_booking(seeker, provider, WHEN, 9, 100)
    with pytest.raises(ValidationError):
        await ledger.create_booking(seeker, provider, WHEN, 2, 0)
    with pytest.raises(NotFoundError):
        await ledger.create_booking(seeker, unverified, WHEN, 2, 100)

@pytest.mark.asyncio
async def test_provider_conflict(fake_db, ledger, participants):
    seeker, provider = participants
    first = await ledger.create_booking(seeker, provider, WHEN, 2, 100)

    with pytest.raises(ValidationError) as excinfo:
        await ledger.create_booking(seeker, provider, WHEN + timedelta(hours=1), 2, 100)

    assert excinfo.value.details['conflicting_booking_id'] == str(first.id)
    assert fake_db.wallet_of(seeker)['balance'] == 400

@pytest.mark.asyncio
async def test_get_booking_access(fake_db, ledger, participants):
    booking = await ledger.create_booking(*participants, WHEN, 2, 100)
    seeker = Principal(user_id=participants[0], role=UserRole.SEEKER)
    stranger = Principal(user_id=fake_db.add_user('EMPLOYEE'), role=UserRole.EMPLOYEE)

    assert (await ledger.get_booking(booking.id, seeker)).id == booking.id
    with pytest.raises(AuthorizationError):
        await ledger.get_booking(booking.id, stranger)

@pytest.mark.asyncio
async def test_purchase_credits_wallet(fake_db, ledger, purchase_settings):
    buyer = fake_db.add_user('SEEKER')

    summary = await ledger.purchase_tokens(buyer, 50, Decimal("5000"), "cap-1")

    assert summary.wallet.balance == 50
    assert summary.wallet.total_purchased == 50
    assert summary.transactions[0].reference == "cap-1"
    assert fake_db.audit_logs[-1]['action'] == 'TOKENS_PURCHASED'

@pytest.mark.asyncio
async def test_purchase_reference_is_credited_once(fake_db, ledger, purchase_settings):
    buyer = fake_db.add_user('SEEKER')
    await ledger.purchase_tokens(buyer, 50, Decimal("5000"), "cap-1")

    with pytest.raises(ValidationError):
        await ledger.purchase_tokens(buyer, 50, Decimal("5000"), "cap-1")
    assert fake_db.wallet_of(buyer)['balance'] == 50

@pytest.mark.asyncio
async def test_purchase_rejects_bad_amounts(fake_db, ledger, purchase_settings):
    buyer = fake_db.add_user('SEEKER')

    with pytest.raises(ValidationError):
        await ledger.purchase_tokens(buyer, 5, Decimal("500"), "cap-small")
    with pytest.raises(ValidationError):
        await ledger.purchase_tokens(buyer, 50, Decimal("4000"), "cap-short")
    assert fake_db.wallet_of(buyer) is None

@pytest.mark.asyncio
async def test_ledger_reconciles_after_activity(fake_db, ledger, participants):
    seeker, provider = participants
    first = await ledger.create_booking(seeker, provider, WHEN, 2, 200)
    second = await ledger.create_booking(seeker, provider, WHEN + timedelta(days=1), 2, 100)
    await move(ledger, first.id, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED)
    await ledger.transition(second.id, BookingStatus.CANCELLED)

    for user_id in (seeker, provider):
        check = await ledger.verify_wallet(user_id)
        assert check.consistent
        assert check.transaction_total == check.balance + check.escrow_balance

    seeker_check = await ledger.verify_wallet(seeker)
    assert (seeker_check.balance, seeker_check.escrow_balance) == (300, 0)

@pytest.mark.asyncio
async def test_tampered_wallet_is_inconsistent(fake_db, ledger, participants):
    fake_db.wallet_of(participants[0])['balance'] = 450

    check = await ledger.verify_wallet(participants[0])

    assert not check.consistent
    assert check.expected_balance == 500

@pytest.mark.asyncio
async def test_racing_terminal_transitions_settle_once(fake_db, ledger, participants):
    seeker, provider = participants
    booking = await ledger.create_booking(seeker, provider, WHEN, 2, 300)
    await move(ledger, booking.id, BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)

    results = await asyncio.gather(
        ledger.transition(booking.id, BookingStatus.COMPLETED),
        ledger.transition(booking.id, BookingStatus.CANCELLED),
        return_exceptions=True
    )

    settled = [r for r in results if not isinstance(r, Exception)]
    rejected = [r for r in results if isinstance(r, Exception)]
    assert len(settled) == 1
    assert len(rejected) == 1 and isinstance(rejected[0], ValidationError)
    assert fake_db.bookings[booking.id]['status'] == settled[0].status.value

    seeker_wallet = fake_db.wallet_of(seeker)
    provider_wallet = fake_db.wallet_of(provider)
    assert seeker_wallet['escrow_balance'] == 0
    provider_balance = provider_wallet['balance'] if provider_wallet else 0
    assert seeker_wallet['balance'] + provider_balance == 500
    settlement = {t['type'] for t in booking_transactions(fake_db, booking.id)}
    assert settlement in ({'ESCROW_RELEASE', 'BOOKING_PAYMENT'}, {'BOOKING_REFUND'})
