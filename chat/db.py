from datetime import datetime
from typing import List, Optional
from uuid import UUID
import asyncpg

MESSAGE_COLUMNS = """
    id, booking_id, sender_id, seq, content, media_url, is_read, is_flagged,
    flag_reason, risk_score, policy_version, is_system_message, created_at
"""


async def get_booking_participants(conn: asyncpg.Connection, booking_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(
        """
        SELECT id, seeker_id, provider_id, status, assigned_employee_id
        FROM bookings WHERE id = $1
        """,
        booking_id
    )


async def count_flagged_messages(conn: asyncpg.Connection, sender_id: UUID) -> int:
    return await conn.fetchval(
        "SELECT COUNT(*) FROM messages WHERE sender_id = $1 AND is_flagged",
        sender_id
    )


async def next_message_seq(conn: asyncpg.Connection, booking_id: UUID) -> Optional[int]:
    """Allocate the booking's next message sequence number.
    
    Locks the booking row until the transaction ends and returns None when
    the booking has been cancelled meanwhile.
    """
    return await conn.fetchval(
        """
        UPDATE bookings SET message_seq = message_seq + 1
        WHERE id = $1 AND status != 'CANCELLED'
        RETURNING message_seq
        """,
        booking_id
    )


async def insert_message(
    conn: asyncpg.Connection,
    booking_id: UUID,
    sender_id: UUID,
    seq: int,
    content: str,
    media_url: Optional[str],
    is_flagged: bool,
    flag_reason: Optional[str],
    risk_score: int,
    policy_version: Optional[str],
    is_system_message: bool = False
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        INSERT INTO messages (
            booking_id, sender_id, seq, content, media_url, is_flagged,
            flag_reason, risk_score, policy_version, is_system_message
        )
        VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
        RETURNING {MESSAGE_COLUMNS}
        """,
        booking_id, sender_id, seq, content, media_url, is_flagged,
        flag_reason, risk_score, policy_version, is_system_message
    )


async def get_message(conn: asyncpg.Connection, message_id: UUID) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE id = $1", message_id)


async def get_messages(
    conn: asyncpg.Connection,
    booking_id: UUID,
    limit: int = 50,
    before_seq: Optional[int] = None
) -> List[asyncpg.Record]:
    """Messages of a booking in persistence order, optionally before a sequence"""
    query = f"SELECT {MESSAGE_COLUMNS} FROM messages WHERE booking_id = $1"
    params = [booking_id]

    if before_seq is not None:
        params.append(before_seq)
        query += f" AND seq < ${len(params)}"

    params.append(limit)
    query = f"SELECT * FROM ({query} ORDER BY seq DESC LIMIT ${len(params)}) recent ORDER BY seq"
    return await conn.fetch(query, *params)


async def mark_read(
    conn: asyncpg.Connection,
    booking_id: UUID,
    reader_id: UUID,
    message_ids: Optional[List[UUID]] = None
) -> List[UUID]:
    """Mark other participants' unread messages read, returning their ids"""
    query = """
        UPDATE messages SET is_read = true
        WHERE booking_id = $1 AND sender_id != $2 AND NOT is_read
    """
    params = [booking_id, reader_id]
    if message_ids is not None:
        params.append(message_ids)
        query += " AND id = ANY($3::uuid[])"
    query += " RETURNING id"
    rows = await conn.fetch(query, *params)
    return [row['id'] for row in rows]


async def flag_message(conn: asyncpg.Connection, message_id: UUID, reason: str) -> Optional[asyncpg.Record]:
    return await conn.fetchrow(
        f"""
        UPDATE messages SET is_flagged = true, flag_reason = $2
        WHERE id = $1
        RETURNING {MESSAGE_COLUMNS}
        """,
        message_id, reason
    )


async def chat_statistics(conn: asyncpg.Connection, since: datetime) -> asyncpg.Record:
    return await conn.fetchrow(
        """
        SELECT COUNT(*) AS total,
               COUNT(*) FILTER (WHERE is_flagged) AS flagged
        FROM messages
        WHERE created_at >= $1
        """,
        since
    )
