"""Escrow module for booking token custody.

This module drives the booking status state machine and the token ledger
behind it:

- booking creation holds the booking's tokens in the seeker's escrow
- completion releases the escrow to the provider
- cancellation refunds the escrow to the seeker
- token purchases credit a wallet from a verified gateway capture

Each ledger-affecting operation is one database transaction covering the
booking row, the one or two wallets involved, their transaction rows and the
audit record. Rows are locked booking first, then wallets in user id order.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Dict, Optional
from uuid import UUID

from asyncpg.pool import Pool

import audit
from auth import Principal, UserRole
from config import settings_conf
from database import get_pool, retry_transient
from errors import (
    AuthorizationError,
    InsufficientBalanceError,
    InvariantViolationError,
    NotFoundError,
    ValidationError,
)
from . import db
from .ledger import (
    Balances,
    LedgerEntry,
    apply_entry,
    check_captured_amount,
    expected_balances,
    plan_hold,
    plan_purchase,
    plan_refund,
    plan_release,
    validate_transition,
    EFFECTS,
)
from .models import (
    Booking,
    BookingCreate,
    BookingStatus,
    BookingStatusUpdate,
    LedgerCheck,
    TokenPurchase,
    TransactionType,
    Wallet,
    WalletSummary,
    WalletTransaction,
    ESCROW_HELD_STATUSES,
    TERMINAL_STATUSES,
    TRANSITIONS,
)

logger = logging.getLogger(__name__)

MIN_DURATION_HOURS = 1
MAX_DURATION_HOURS = 8

def _booking(row) -> Booking:
    return Booking(**dict(row))

class EscrowLedger:
    """Manages bookings, their escrow and token wallets."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize escrow ledger.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _persist(
        self,
        conn,
        wallet_rows: Dict[UUID, dict],
        balances: Dict[UUID, Balances],
        entries
    ) -> None:
        """Write new wallet values and the entries that produced them."""
        for user_id, updated in balances.items():
            await db.update_wallet(
                conn,
                wallet_rows[user_id]['id'],
                updated.balance,
                updated.escrow_balance,
                updated.total_purchased,
                updated.total_spent
            )
        for entry in entries:
            await db.insert_transaction(
                conn,
                wallet_rows[entry.user_id]['id'],
                entry.type.value,
                entry.amount,
                entry.booking_id,
                entry.description,
                entry.reference
            )

    @retry_transient
    async def create_booking(
        self,
        seeker_id: UUID,
        provider_id: UUID,
        scheduled_at: datetime,
        duration: int,
        token_amount: int,
        notes: Optional[str] = None
    ) -> Booking:
        """Create a PENDING booking and hold its tokens in escrow.

        Args:
            seeker_id: Booking user paying the tokens
            provider_id: Provider being booked
            scheduled_at: Start of the engagement
            duration: Length in hours (1-8)
            token_amount: Tokens held for the booking; fixed from here on
            notes: Optional free text

        Returns:
            The new booking

        Raises:
            ValidationError: Bad duration/amount, self booking or provider conflict
            NotFoundError: If the seeker or provider is unknown or unavailable
            InsufficientBalanceError: If the seeker cannot cover token_amount
        """
        if seeker_id == provider_id:
            raise ValidationError("A user cannot book themselves")
        if not MIN_DURATION_HOURS <= duration <= MAX_DURATION_HOURS:
            raise ValidationError(
                f"Duration must be between {MIN_DURATION_HOURS} and {MAX_DURATION_HOURS} hours",
                {'duration': duration}
            )
        if token_amount <= 0:
            raise ValidationError("Token amount must be positive", {'token_amount': token_amount})

        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                seeker = await db.get_user(conn, seeker_id)
                if not seeker or not seeker['is_active']:
                    raise NotFoundError('seeker', seeker_id)

                # Provider row lock serialises conflict checks for the provider
                provider = await db.get_user(conn, provider_id, for_update=True)
                if (
                    not provider
                    or provider['role'] != UserRole.PROVIDER.value
                    or not provider['is_active']
                    or not provider['is_verified']
                ):
                    raise NotFoundError('provider', provider_id)

                conflict = await db.find_provider_conflict(conn, provider_id, scheduled_at)
                if conflict:
                    raise ValidationError(
                        "Provider is not available at this time",
                        {'conflicting_booking_id': str(conflict['id'])}
                    )

                wallet = await db.lock_wallet(conn, seeker_id)
                available = wallet['balance'] if wallet else 0
                if available < token_amount:
                    raise InsufficientBalanceError(required=token_amount, available=available)

                row = await db.insert_booking(
                    conn, seeker_id, provider_id, scheduled_at, duration, token_amount, notes
                )
                held, entries = plan_hold(Balances.from_row(wallet), seeker_id, token_amount, row['id'])
                await self._persist(conn, {seeker_id: wallet}, {seeker_id: held}, entries)

                await audit.record(
                    conn,
                    audit.BOOKING_CREATED,
                    'booking',
                    row['id'],
                    actor_id=seeker_id,
                    details={
                        'provider_id': str(provider_id),
                        'token_amount': token_amount,
                        'scheduled_at': scheduled_at.isoformat(),
                        'duration': duration
                    }
                )

        logger.info(
            f"Booking {row['id']} created by {seeker_id} for {provider_id}, "
            f"{token_amount} tokens held in escrow"
        )
        return _booking(row)

    @retry_transient
    async def transition(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        actor: Optional[Principal] = None
    ) -> Booking:
        """Apply a booking status change and its ledger effect atomically.

        COMPLETED releases the escrow to the provider, CANCELLED refunds it to
        the seeker; both also complete the booking's monitoring assignment.
        CONFIRMED and IN_PROGRESS change status only.

        Args:
            booking_id: Booking to move
            new_status: Requested status
            actor: Caller; participants and managers/admins may transition

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the actor is not allowed to act on the booking
            ValidationError: If the transition is not allowed from the current status
            InvariantViolationError: If the held escrow does not cover the booking
        """
        new_status = BookingStatus(new_status)
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                booking = await db.lock_booking(conn, booking_id)
                if not booking:
                    raise NotFoundError('booking', booking_id)
                if actor and not actor.is_supervisor and actor.user_id not in (
                    booking['seeker_id'], booking['provider_id']
                ):
                    raise AuthorizationError(
                        f"User {actor.user_id} is not a participant of booking {booking_id}"
                    )

                old_status = BookingStatus(booking['status'])
                validate_transition(old_status, new_status)

                seeker_id = booking['seeker_id']
                provider_id = booking['provider_id']
                amount = booking['token_amount']

                if new_status == BookingStatus.COMPLETED:
                    wallets = {}
                    for user_id in sorted((seeker_id, provider_id)):
                        if user_id == seeker_id:
                            wallets[user_id] = await db.lock_wallet(conn, user_id)
                        else:
                            wallets[user_id] = await db.create_wallet(conn, user_id)
                    if not wallets[seeker_id]:
                        raise InvariantViolationError(
                            f"Seeker wallet missing for booking {booking_id} with tokens in escrow",
                            {'booking_id': str(booking_id), 'seeker_id': str(seeker_id)}
                        )
                    seeker, provider, entries = plan_release(
                        Balances.from_row(wallets[seeker_id]),
                        Balances.from_row(wallets[provider_id]),
                        seeker_id,
                        provider_id,
                        amount,
                        booking_id
                    )
                    await self._persist(
                        conn, wallets, {seeker_id: seeker, provider_id: provider}, entries
                    )

                elif new_status == BookingStatus.CANCELLED:
                    wallet = await db.lock_wallet(conn, seeker_id)
                    if not wallet:
                        raise InvariantViolationError(
                            f"Seeker wallet missing for booking {booking_id} with tokens in escrow",
                            {'booking_id': str(booking_id), 'seeker_id': str(seeker_id)}
                        )
                    seeker, entries = plan_refund(
                        Balances.from_row(wallet), seeker_id, amount, booking_id
                    )
                    await self._persist(conn, {seeker_id: wallet}, {seeker_id: seeker}, entries)

                row = await db.set_booking_status(conn, booking_id, new_status.value)

                if new_status in TERMINAL_STATUSES:
                    closed = await db.complete_monitoring_assignment(conn, booking_id)
                    if closed:
                        logger.info(f"Completed monitoring assignment {closed['id']} of booking {booking_id}")

                await audit.record(
                    conn,
                    audit.BOOKING_STATUS_UPDATED,
                    'booking',
                    booking_id,
                    actor_id=actor.user_id if actor else None,
                    details={'old_status': old_status.value, 'new_status': new_status.value}
                )

        logger.info(f"Booking {booking_id} moved {old_status.value} -> {new_status.value}")
        return _booking(row)

    async def get_booking(self, booking_id: UUID, requester: Optional[Principal] = None) -> Booking:
        """Read a booking back.

        Raises:
            NotFoundError: If the booking does not exist
            AuthorizationError: If the requester is neither a participant,
                the monitoring employee nor a manager/admin
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await db.get_booking(conn, booking_id)
        if not row:
            raise NotFoundError('booking', booking_id)
        if requester and not requester.is_supervisor and requester.user_id not in (
            row['seeker_id'], row['provider_id'], row['assigned_employee_id']
        ):
            raise AuthorizationError(f"User {requester.user_id} cannot view booking {booking_id}")
        return _booking(row)

    @retry_transient
    async def purchase_tokens(
        self,
        user_id: UUID,
        token_amount: int,
        captured_amount: Decimal,
        gateway_reference: str
    ) -> WalletSummary:
        """Credit tokens paid through the external gateway.

        Args:
            user_id: Buyer
            token_amount: Tokens bought
            captured_amount: Amount the gateway verified as captured, in currency units
            gateway_reference: Gateway capture id; credited at most once

        Returns:
            Wallet after the purchase with the PURCHASE transaction

        Raises:
            ValidationError: Out of bounds amount, capture mismatch or reused reference
            NotFoundError: If the user does not exist
        """
        minimum = settings_conf['min_token_purchase']
        maximum = settings_conf['max_token_purchase']
        if not minimum <= token_amount <= maximum:
            raise ValidationError(
                f"Token purchases must be between {minimum} and {maximum} tokens",
                {'token_amount': token_amount, 'min': minimum, 'max': maximum}
            )
        check_captured_amount(
            token_amount,
            captured_amount,
            settings_conf['token_currency_rate'],
            settings_conf['purchase_tolerance']
        )

        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if not await db.get_user(conn, user_id):
                    raise NotFoundError('user', user_id)
                if await db.reference_exists(conn, gateway_reference):
                    raise ValidationError(
                        f"Payment {gateway_reference} has already been credited",
                        {'gateway_reference': gateway_reference}
                    )
                wallet = await db.create_wallet(conn, user_id)
                updated, entries = plan_purchase(
                    Balances.from_row(wallet), user_id, token_amount, gateway_reference
                )
                await self._persist(conn, {user_id: wallet}, {user_id: updated}, entries)
                await audit.record(
                    conn,
                    audit.TOKENS_PURCHASED,
                    'wallet',
                    wallet['id'],
                    actor_id=user_id,
                    details={
                        'token_amount': token_amount,
                        'captured_amount': str(captured_amount),
                        'gateway_reference': gateway_reference
                    }
                )
                wallet_row = await db.get_wallet(conn, user_id)
                transactions = await db.get_transactions(conn, wallet_row['id'], 1)

        logger.info(f"User {user_id} purchased {token_amount} tokens ({gateway_reference})")
        return WalletSummary(
            wallet=Wallet(**dict(wallet_row)),
            transactions=[WalletTransaction(**dict(tx)) for tx in transactions]
        )

    async def get_wallet(self, user_id: UUID, limit: int = 20) -> WalletSummary:
        """Wallet of a user with its most recent transactions.

        Raises:
            NotFoundError: If the user has no wallet yet
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await db.get_wallet(conn, user_id)
            if not row:
                raise NotFoundError('wallet', user_id)
            transactions = await db.get_transactions(conn, row['id'], limit)
        return WalletSummary(
            wallet=Wallet(**dict(row)),
            transactions=[WalletTransaction(**dict(tx)) for tx in transactions]
        )

    async def verify_wallet(self, user_id: UUID) -> LedgerCheck:
        """Reconcile a wallet against a replay of its transaction history."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                row = await db.lock_wallet(conn, user_id)
                if not row:
                    raise NotFoundError('wallet', user_id)
                history = await db.get_transaction_amounts(conn, row['id'])

        pairs = [(tx['type'], tx['amount']) for tx in history]
        expected = expected_balances(pairs)
        transaction_total = sum(
            amount * sum(EFFECTS[TransactionType(tx_type)]) for tx_type, amount in pairs
        )
        check = LedgerCheck(
            user_id=user_id,
            balance=row['balance'],
            escrow_balance=row['escrow_balance'],
            expected_balance=expected.balance,
            expected_escrow_balance=expected.escrow_balance,
            transaction_total=transaction_total,
            consistent=(
                expected.balance == row['balance']
                and expected.escrow_balance == row['escrow_balance']
                and transaction_total == row['balance'] + row['escrow_balance']
            )
        )
        if not check.consistent:
            logger.error(f"Wallet of {user_id} does not match its ledger: {check.model_dump()}")
        return check

__all__ = [
    'EscrowLedger',
    'Booking',
    'BookingCreate',
    'BookingStatus',
    'BookingStatusUpdate',
    'LedgerCheck',
    'LedgerEntry',
    'TokenPurchase',
    'TransactionType',
    'Wallet',
    'WalletSummary',
    'WalletTransaction',
    'Balances',
    'apply_entry',
    'expected_balances',
    'validate_transition',
    'ESCROW_HELD_STATUSES',
    'TERMINAL_STATUSES',
    'TRANSITIONS',
]
