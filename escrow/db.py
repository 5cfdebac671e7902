from datetime import datetime, timedelta
from typing import List, Optional
from uuid import UUID
import asyncpg

BOOKING_COLUMNS = """
    id, seeker_id, provider_id, status, scheduled_at, duration, token_amount,
    assigned_employee_id, notes, created_at, updated_at, completed_at, cancelled_at
"""

WALLET_COLUMNS = """
    id, user_id, balance, escrow_balance, total_purchased, total_spent, created_at, updated_at
"""

TRANSACTION_COLUMNS = "id, wallet_id, type, amount, booking_id, description, reference, created_at"

# Window before a requested slot in which a provider's open booking conflicts
CONFLICT_WINDOW = timedelta(hours=8)


async def get_user(conn: asyncpg.Connection, user_id: UUID, for_update: bool = False) -> Optional[asyncpg.Record]:
    query = "SELECT id, role, is_active, is_verified FROM users WHERE id = $1"
    if for_update:
        query += " FOR UPDATE"
    return await conn.fetchrow(query, user_id)


async def get_booking(conn: asyncpg.Connection, booking_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE id = $1", booking_id)


async def lock_booking(conn: asyncpg.Connection, booking_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(
        f"SELECT {BOOKING_COLUMNS} FROM bookings WHERE id = $1 FOR UPDATE",
        booking_id
    )


async def find_provider_conflict(
    conn: asyncpg.Connection,
    provider_id: UUID,
    scheduled_at: datetime
) -> Optional[asyncpg.Record]:
    """Open booking of the provider starting in the window before the slot"""
    return await conn.fetchrow(
        f"""
        SELECT {BOOKING_COLUMNS} FROM bookings
        WHERE provider_id = $1
        AND status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS')
        AND scheduled_at <= $2
        AND scheduled_at >= $3
        LIMIT 1
        """,
        provider_id, scheduled_at, scheduled_at - CONFLICT_WINDOW
    )


async def insert_booking(
    conn: asyncpg.Connection,
    seeker_id: UUID,
    provider_id: UUID,
    scheduled_at: datetime,
    duration: int,
    token_amount: int,
    notes: Optional[str] = None
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        INSERT INTO bookings (seeker_id, provider_id, scheduled_at, duration, token_amount, notes)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {BOOKING_COLUMNS}
        """,
        seeker_id, provider_id, scheduled_at, duration, token_amount, notes
    )


async def set_booking_status(conn: asyncpg.Connection, booking_id: UUID, status: str) -> asyncpg.Record:
    """Update status, stamping completed_at / cancelled_at for terminal states"""
    return await conn.fetchrow(
        f"""
        UPDATE bookings
        SET status = $2,
            updated_at = now(),
            completed_at = CASE WHEN $2 = 'COMPLETED' THEN now() ELSE completed_at END,
            cancelled_at = CASE WHEN $2 = 'CANCELLED' THEN now() ELSE cancelled_at END
        WHERE id = $1
        RETURNING {BOOKING_COLUMNS}
        """,
        booking_id, status
    )


async def lock_wallet(conn: asyncpg.Connection, user_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(
        f"SELECT {WALLET_COLUMNS} FROM token_wallets WHERE user_id = $1 FOR UPDATE",
        user_id
    )


async def create_wallet(conn: asyncpg.Connection, user_id: UUID) -> asyncpg.Record:
    """Create an empty wallet if missing and return it locked"""
    await conn.execute(
        """
        INSERT INTO token_wallets (user_id) VALUES ($1)
        ON CONFLICT (user_id) DO NOTHING
        """,
        user_id
    )
    return await lock_wallet(conn, user_id)


async def update_wallet(
    conn: asyncpg.Connection,
    wallet_id: UUID,
    balance: int,
    escrow_balance: int,
    total_purchased: int,
    total_spent: int
) -> None:
    await conn.execute(
        """
        UPDATE token_wallets
        SET balance = $2, escrow_balance = $3, total_purchased = $4, total_spent = $5,
            updated_at = now()
        WHERE id = $1
        """,
        wallet_id, balance, escrow_balance, total_purchased, total_spent
    )


async def insert_transaction(
    conn: asyncpg.Connection,
    wallet_id: UUID,
    tx_type: str,
    amount: int,
    booking_id: Optional[UUID],
    description: str,
    reference: Optional[str] = None
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        INSERT INTO wallet_transactions (wallet_id, type, amount, booking_id, description, reference)
        VALUES ($1, $2, $3, $4, $5, $6)
        RETURNING {TRANSACTION_COLUMNS}
        """,
        wallet_id, tx_type, amount, booking_id, description, reference
    )


async def reference_exists(conn: asyncpg.Connection, reference: str) -> bool:
    return await conn.fetchval(
        "SELECT EXISTS (SELECT 1 FROM wallet_transactions WHERE reference = $1)",
        reference
    )


async def get_wallet(conn: asyncpg.Connection, user_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(f"SELECT {WALLET_COLUMNS} FROM token_wallets WHERE user_id = $1", user_id)


async def get_transactions(conn: asyncpg.Connection, wallet_id: UUID, limit: int = 20) -> List[asyncpg.Record]:
    return await conn.fetch(
        f"""
        SELECT {TRANSACTION_COLUMNS} FROM wallet_transactions
        WHERE wallet_id = $1
        ORDER BY created_at DESC
        LIMIT $2
        """,
        wallet_id, limit
    )


async def get_transaction_amounts(conn: asyncpg.Connection, wallet_id: UUID) -> List[asyncpg.Record]:
    """Every (type, amount) of a wallet, for reconciliation"""
    return await conn.fetch(
        "SELECT type, amount FROM wallet_transactions WHERE wallet_id = $1",
        wallet_id
    )


async def complete_monitoring_assignment(conn: asyncpg.Connection, booking_id: UUID) -> Optional[asyncpg.Record]:
    """Close the booking's active monitoring assignment as completed"""
    return await conn.fetchrow(
        """
        UPDATE assignments
        SET is_active = false, completed_at = now()
        WHERE item_id = $1 AND item_type = 'BOOKING_MONITORING' AND is_active
        RETURNING id, employee_id
        """,
        booking_id
    )
