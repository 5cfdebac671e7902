"""Audit trail for ledger, assignment and alert actions.

Audit rows are written on the connection of the action they describe so
they commit or roll back together with it.
"""
import logging
from typing import Any, Dict, Optional
from uuid import UUID

from . import db

logger = logging.getLogger(__name__)

# Actions
BOOKING_CREATED = 'BOOKING_CREATED'
BOOKING_STATUS_UPDATED = 'BOOKING_STATUS_UPDATED'
TOKENS_PURCHASED = 'TOKENS_PURCHASED'
ASSIGNMENT_REASSIGNED = 'ASSIGNMENT_REASSIGNED'
MESSAGE_FLAGGED = 'MESSAGE_FLAGGED'
ALERT_RESOLVED = 'ALERT_RESOLVED'


async def record(
    conn,
    action: str,
    resource_type: str,
    resource_id: Optional[UUID],
    actor_id: Optional[UUID] = None,
    details: Optional[Dict[str, Any]] = None
):
    """Write one audit row inside the caller's transaction.

    Args:
        conn: Connection holding the open transaction
        action: One of the action constants above
        resource_type: ``booking``, ``wallet``, ``assignment``, ``message`` or ``alert``
        resource_id: Id of the affected row
        actor_id: User performing the action, None for the system
        details: JSON-serialisable context
    """
    row = await db.insert_audit_log(
        conn, actor_id, action, resource_type, resource_id, details or {}
    )
    logger.debug(f"Audit {action} on {resource_type} {resource_id} by {actor_id or 'system'}")
    return row


__all__ = [
    'record',
    'BOOKING_CREATED',
    'BOOKING_STATUS_UPDATED',
    'TOKENS_PURCHASED',
    'ASSIGNMENT_REASSIGNED',
    'MESSAGE_FLAGGED',
    'ALERT_RESOLVED',
]
