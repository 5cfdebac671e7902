from typing import Dict, List, Optional
from uuid import UUID
import asyncpg

STAFF_ROLE_VALUES = ('EMPLOYEE', 'MANAGER', 'ADMIN')

ASSIGNMENT_COLUMNS = "id, employee_id, item_id, item_type, is_active, assigned_at, completed_at"


async def lock_counter(conn: asyncpg.Connection, assignment_type: str) -> Optional[UUID]:
    """Lock the round-robin counter row, creating it on first use.
    
    Returns the last assigned employee id, None when nothing was assigned yet.
    """
    await conn.execute(
        """
        INSERT INTO round_robin_counters (assignment_type)
        VALUES ($1)
        ON CONFLICT (assignment_type) DO NOTHING
        """,
        assignment_type
    )
    return await conn.fetchval(
        """
        SELECT last_assigned_id FROM round_robin_counters
        WHERE assignment_type = $1
        FOR UPDATE
        """,
        assignment_type
    )


async def update_counter(conn: asyncpg.Connection, assignment_type: str, employee_id: UUID) -> None:
    await conn.execute(
        """
        UPDATE round_robin_counters
        SET last_assigned_id = $2, updated_at = now()
        WHERE assignment_type = $1
        """,
        assignment_type, employee_id
    )


async def get_eligible_staff(conn: asyncpg.Connection) -> List[UUID]:
    """Active, verified staff in stable creation order"""
    rows = await conn.fetch(
        """
        SELECT id FROM users
        WHERE role = ANY($1::text[]) AND is_active AND is_verified
        ORDER BY created_at, id
        """,
        list(STAFF_ROLE_VALUES)
    )
    return [row['id'] for row in rows]


async def is_eligible_staff(conn: asyncpg.Connection, employee_id: UUID) -> bool:
    return await conn.fetchval(
        """
        SELECT EXISTS (
            SELECT 1 FROM users
            WHERE id = $1 AND role = ANY($2::text[]) AND is_active AND is_verified
        )
        """,
        employee_id, list(STAFF_ROLE_VALUES)
    )


async def get_assignment(
    conn: asyncpg.Connection,
    assignment_id: UUID,
    for_update: bool = False
) -> Optional[asyncpg.Record]:
    query = f"SELECT {ASSIGNMENT_COLUMNS} FROM assignments WHERE id = $1"
    if for_update:
        query += " FOR UPDATE"
    return await conn.fetchrow(query, assignment_id)


async def get_active_assignment(
    conn: asyncpg.Connection,
    item_id: UUID,
    item_type: str,
    for_update: bool = False
) -> Optional[asyncpg.Record]:
    query = f"""
        SELECT {ASSIGNMENT_COLUMNS} FROM assignments
        WHERE item_id = $1 AND item_type = $2 AND is_active
    """
    if for_update:
        query += " FOR UPDATE"
    return await conn.fetchrow(query, item_id, item_type)


async def insert_assignment(
    conn: asyncpg.Connection,
    employee_id: UUID,
    item_id: UUID,
    item_type: str
) -> asyncpg.Record:
    return await conn.fetchrow(
        f"""
        INSERT INTO assignments (employee_id, item_id, item_type)
        VALUES ($1, $2, $3)
        RETURNING {ASSIGNMENT_COLUMNS}
        """,
        employee_id, item_id, item_type
    )


async def close_assignment(
    conn: asyncpg.Connection,
    assignment_id: UUID,
    completed: bool
) -> asyncpg.Record:
    """Deactivate an assignment; completion also stamps completed_at"""
    return await conn.fetchrow(
        f"""
        UPDATE assignments
        SET is_active = false,
            completed_at = CASE WHEN $2 THEN now() ELSE NULL END
        WHERE id = $1
        RETURNING {ASSIGNMENT_COLUMNS}
        """,
        assignment_id, completed
    )


async def count_active_by_type(conn: asyncpg.Connection, employee_id: UUID) -> Dict[str, int]:
    rows = await conn.fetch(
        """
        SELECT item_type, COUNT(*) AS count FROM assignments
        WHERE employee_id = $1 AND is_active
        GROUP BY item_type
        """,
        employee_id
    )
    return {row['item_type']: row['count'] for row in rows}


async def count_active_all(conn: asyncpg.Connection) -> List[asyncpg.Record]:
    """Active counts of every eligible staff member, zero rows included"""
    return await conn.fetch(
        """
        SELECT u.id AS employee_id, a.item_type, COUNT(a.id) AS count
        FROM users u
        LEFT JOIN assignments a ON a.employee_id = u.id AND a.is_active
        WHERE u.role = ANY($1::text[]) AND u.is_active AND u.is_verified
        GROUP BY u.id, u.created_at, a.item_type
        ORDER BY u.created_at, u.id
        """,
        list(STAFF_ROLE_VALUES)
    )


async def get_active_assignments_for(conn: asyncpg.Connection, employee_id: UUID) -> List[asyncpg.Record]:
    return await conn.fetch(
        f"""
        SELECT {ASSIGNMENT_COLUMNS} FROM assignments
        WHERE employee_id = $1 AND is_active
        ORDER BY assigned_at, id
        """,
        employee_id
    )


async def verification_exists(conn: asyncpg.Connection, item_id: UUID) -> bool:
    return await conn.fetchval("SELECT EXISTS (SELECT 1 FROM verifications WHERE id = $1)", item_id)


async def open_booking_exists(conn: asyncpg.Connection, item_id: UUID) -> bool:
    """Bookings stop needing a monitor once they are completed or cancelled"""
    return await conn.fetchval(
        """
        SELECT EXISTS (
            SELECT 1 FROM bookings
            WHERE id = $1 AND status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS')
        )
        """,
        item_id
    )


async def message_exists(conn: asyncpg.Connection, item_id: UUID) -> bool:
    return await conn.fetchval("SELECT EXISTS (SELECT 1 FROM messages WHERE id = $1)", item_id)


async def bind_verification(conn: asyncpg.Connection, item_id: UUID, employee_id: UUID) -> None:
    await conn.execute(
        """
        UPDATE verifications
        SET employee_id = $2, assigned_at = now(), status = 'IN_PROGRESS', updated_at = now()
        WHERE id = $1
        """,
        item_id, employee_id
    )


async def bind_booking_monitor(conn: asyncpg.Connection, item_id: UUID, employee_id: UUID) -> None:
    await conn.execute(
        """
        UPDATE bookings SET assigned_employee_id = $2, updated_at = now()
        WHERE id = $1
        """,
        item_id, employee_id
    )


async def get_unmonitored_bookings(conn: asyncpg.Connection, limit: int = 100) -> List[UUID]:
    """Non-terminal bookings without an active monitoring assignment"""
    rows = await conn.fetch(
        """
        SELECT b.id FROM bookings b
        WHERE b.status IN ('PENDING', 'CONFIRMED', 'IN_PROGRESS')
        AND NOT EXISTS (
            SELECT 1 FROM assignments a
            WHERE a.item_id = b.id AND a.item_type = 'BOOKING_MONITORING' AND a.is_active
        )
        ORDER BY b.created_at
        LIMIT $1
        """,
        limit
    )
    return [row['id'] for row in rows]
