from typing import List, Optional
from uuid import UUID
import asyncpg

ALERT_COLUMNS = """
    id, booking_id, message_id, employee_id, risk_score, description,
    is_resolved, resolved_at, resolved_by, resolution_notes, created_at
"""


async def insert_alert(
    conn: asyncpg.Connection,
    booking_id: UUID,
    message_id: UUID,
    employee_id: Optional[UUID],
    risk_score: int,
    description: str
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        INSERT INTO monitoring_alerts (booking_id, message_id, employee_id, risk_score, description)
        VALUES ($1, $2, $3, $4, $5)
        RETURNING {ALERT_COLUMNS}
        """,
        booking_id, message_id, employee_id, risk_score, description
    )


async def get_alert(conn: asyncpg.Connection, alert_id: UUID, for_update: bool = False) -> Optional[asyncpg.Record]:
    query = f"SELECT {ALERT_COLUMNS} FROM monitoring_alerts WHERE id = $1"
    if for_update:
        query += " FOR UPDATE"
    return await conn.fetchrow(query, alert_id)


async def resolve_alert(
    conn: asyncpg.Connection,
    alert_id: UUID,
    resolved_by: UUID,
    notes: Optional[str]
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        UPDATE monitoring_alerts
        SET is_resolved = true, resolved_at = now(), resolved_by = $2, resolution_notes = $3
        WHERE id = $1
        RETURNING {ALERT_COLUMNS}
        """,
        alert_id, resolved_by, notes
    )


async def list_alerts(
    conn: asyncpg.Connection,
    employee_id: Optional[UUID] = None,
    unresolved_only: bool = False,
    limit: int = 50
) -> List[asyncpg.Record]:
    query = f"SELECT {ALERT_COLUMNS} FROM monitoring_alerts WHERE true"
    params = []

    if employee_id:
        params.append(employee_id)
        query += f" AND employee_id = ${len(params)}"

    if unresolved_only:
        query += " AND NOT is_resolved"

    params.append(limit)
    query += f" ORDER BY created_at DESC LIMIT ${len(params)}"
    return await conn.fetch(query, *params)


async def get_unassigned_alerts(conn: asyncpg.Connection, limit: int = 100) -> List[asyncpg.Record]:
    return await conn.fetch(
        f"""
        SELECT {ALERT_COLUMNS} FROM monitoring_alerts
        WHERE employee_id IS NULL AND NOT is_resolved
        ORDER BY created_at
        LIMIT $1
        """,
        limit
    )


async def bind_alert(conn: asyncpg.Connection, alert_id: UUID, employee_id: UUID) -> Optional[asyncpg.Record]:
    """Give an unassigned alert an employee; None when it was bound meanwhile"""
    return await conn.fetchrow(
        f"""
        UPDATE monitoring_alerts SET employee_id = $2
        WHERE id = $1 AND employee_id IS NULL
        RETURNING {ALERT_COLUMNS}
        """,
        alert_id, employee_id
    )


async def get_monitoring_employee(conn: asyncpg.Connection, booking_id: UUID) -> Optional[UUID]:
    """Employee holding the booking's active monitoring assignment"""
    return await conn.fetchval(
        """
        SELECT employee_id FROM assignments
        WHERE item_id = $1 AND item_type = 'BOOKING_MONITORING' AND is_active
        """,
        booking_id
    )
