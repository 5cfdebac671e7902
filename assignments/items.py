"""Kinds of assignable work and how each one is bound to a staff member."""
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from . import db
from .models import ItemType


@dataclass(frozen=True)
class WorkItemKind:
    """One variant of assignable work.

    ``exists`` checks the underlying row; ``bind`` updates the row's
    denormalised employee field on the same connection as the assignment
    insert. Kinds without such a field have no ``bind``.
    """
    item_type: ItemType
    counter_key: str
    resource: str
    exists: Callable[..., Awaitable[bool]]
    bind: Optional[Callable[..., Awaitable[None]]] = None

    async def bind_employee(self, conn, item_id: UUID, employee_id: UUID) -> None:
        if self.bind is not None:
            await self.bind(conn, item_id, employee_id)


WORK_ITEM_KINDS: Dict[ItemType, WorkItemKind] = {
    ItemType.VERIFICATION: WorkItemKind(
        item_type=ItemType.VERIFICATION,
        counter_key='verification',
        resource='verification',
        exists=lambda conn, item_id: db.verification_exists(conn, item_id),
        bind=lambda conn, item_id, employee_id: db.bind_verification(conn, item_id, employee_id),
    ),
    ItemType.BOOKING_MONITORING: WorkItemKind(
        item_type=ItemType.BOOKING_MONITORING,
        counter_key='booking_monitoring',
        resource='booking',
        exists=lambda conn, item_id: db.open_booking_exists(conn, item_id),
        bind=lambda conn, item_id, employee_id: db.bind_booking_monitor(conn, item_id, employee_id),
    ),
    ItemType.FLAGGED_MESSAGE: WorkItemKind(
        item_type=ItemType.FLAGGED_MESSAGE,
        counter_key='flagged_message',
        resource='message',
        exists=lambda conn, item_id: db.message_exists(conn, item_id),
    ),
}


def kind_of(item_type) -> WorkItemKind:
    return WORK_ITEM_KINDS[ItemType(item_type)]


def select_next(staff: List[UUID], last_assigned_id: Optional[UUID]) -> UUID:
    """Round-robin choice over staff in creation order.

    Starts at the first member when nothing was assigned yet or the last
    assignee is no longer eligible, otherwise takes the member after the
    last assignee, wrapping around.

    Raises:
        ValueError: If ``staff`` is empty
    """
    if not staff:
        raise ValueError("No staff to select from")
    if last_assigned_id is None or last_assigned_id not in staff:
        return staff[0]
    return staff[(staff.index(last_assigned_id) + 1) % len(staff)]
