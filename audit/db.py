import json
from typing import Any, Dict, List, Optional
from uuid import UUID

import asyncpg


async def insert_audit_log(
    conn: asyncpg.Connection,
    actor_id: Optional[UUID],
    action: str,
    resource_type: str,
    resource_id: Optional[UUID],
    details: Dict[str, Any]
) -> asyncpg.Record:
    """Insert an audit row on the caller's connection"""
    return await conn.fetchrow(
        """
        INSERT INTO audit_logs (actor_id, action, resource_type, resource_id, details)
        VALUES ($1, $2, $3, $4, $5::jsonb)
        RETURNING id, actor_id, action, resource_type, resource_id, details, created_at
        """,
        actor_id, action, resource_type, resource_id, json.dumps(details, default=str)
    )


async def get_audit_logs(
    conn: asyncpg.Connection,
    resource_type: str,
    resource_id: UUID,
    limit: int = 50
) -> List[asyncpg.Record]:
    """Get audit rows for one resource, newest first"""
    return await conn.fetch(
        """
        SELECT id, actor_id, action, resource_type, resource_id, details, created_at
        FROM audit_logs
        WHERE resource_type = $1 AND resource_id = $2
        ORDER BY created_at DESC
        LIMIT $3
        """,
        resource_type, resource_id, limit
    )
