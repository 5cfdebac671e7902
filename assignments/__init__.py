"""Assignments module for distributing moderation work to staff.

This module implements the escalation assigner: every unit of work
(verification, booking monitoring, flagged message) is bound to exactly one
staff member chosen round robin over the eligible staff in creation order.
The per-type cursor lives in ``round_robin_counters`` and is advanced in the
same transaction that inserts the assignment, under a row lock, so concurrent
requests and multiple service instances never read the same cursor twice.
"""
import logging
from typing import Dict, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

import audit
from auth import Principal
from database import get_pool, retry_transient
from errors import AuthorizationError, NoEligibleStaffError, NotFoundError, ValidationError
from . import db
from .items import WORK_ITEM_KINDS, WorkItemKind, kind_of, select_next
from .models import Assignment, ItemType, Workload, AssignRequest, ReassignRequest

logger = logging.getLogger(__name__)

def _assignment(row) -> Assignment:
    return Assignment(**dict(row))

class AssignmentManager:
    """Manages assignment creation, reassignment and workload queries."""

    def __init__(self, pool: Optional[Pool] = None) -> None:
        """Initialize assignment manager.

        Args:
            pool: Optional database connection pool. If not provided, will get from database module.
        """
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    @retry_transient
    async def assign(self, item_id: UUID, item_type: ItemType) -> Assignment:
        """Bind a work item to the next staff member in round-robin order.

        Idempotent per item: when the item already has an active assignment
        that assignment is returned and the counter does not move.

        Args:
            item_id: Verification, booking or message id
            item_type: Kind of work

        Returns:
            The active assignment

        Raises:
            NotFoundError: If the work item does not exist
            NoEligibleStaffError: If no staff member is eligible; nothing is written
        """
        await self.ensure_pool()
        kind = kind_of(item_type)

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                if not await kind.exists(conn, item_id):
                    raise NotFoundError(kind.resource, item_id)

                # Serialises every assignment of this type
                last_assigned_id = await db.lock_counter(conn, kind.counter_key)

                existing = await db.get_active_assignment(conn, item_id, kind.item_type.value)
                if existing:
                    logger.debug(f"{kind.item_type.value} {item_id} already assigned to {existing['employee_id']}")
                    return _assignment(existing)

                staff = await db.get_eligible_staff(conn)
                if not staff:
                    logger.warning(
                        f"No eligible staff for {kind.item_type.value} {item_id}, leaving it unassigned"
                    )
                    raise NoEligibleStaffError(kind.item_type.value)

                employee_id = select_next(staff, last_assigned_id)
                row = await db.insert_assignment(conn, employee_id, item_id, kind.item_type.value)
                await db.update_counter(conn, kind.counter_key, employee_id)
                await kind.bind_employee(conn, item_id, employee_id)

        logger.info(f"Assigned {kind.item_type.value} {item_id} to {employee_id}")
        return _assignment(row)

    @retry_transient
    async def reassign(
        self,
        assignment_id: UUID,
        new_employee_id: UUID,
        actor: Optional[Principal] = None
    ) -> Assignment:
        """Move an active assignment to another staff member.

        The old assignment is closed without a completion time and the new
        one opened in the same transaction, together with the work item's
        denormalised employee field and an audit row.

        Raises:
            NotFoundError: If the assignment does not exist
            ValidationError: If it is no longer active or the new employee is not eligible
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await db.get_assignment(conn, assignment_id, for_update=True)
                if not current:
                    raise NotFoundError('assignment', assignment_id)
                if not current['is_active']:
                    raise ValidationError(
                        f"Assignment {assignment_id} is no longer active",
                        {'assignment_id': str(assignment_id)}
                    )
                if not await db.is_eligible_staff(conn, new_employee_id):
                    raise ValidationError(
                        f"User {new_employee_id} is not eligible for assignments",
                        {'employee_id': str(new_employee_id)}
                    )
                if current['employee_id'] == new_employee_id:
                    return _assignment(current)

                kind = kind_of(current['item_type'])
                await db.close_assignment(conn, assignment_id, completed=False)
                row = await db.insert_assignment(
                    conn, new_employee_id, current['item_id'], kind.item_type.value
                )
                await kind.bind_employee(conn, current['item_id'], new_employee_id)
                await audit.record(
                    conn,
                    audit.ASSIGNMENT_REASSIGNED,
                    'assignment',
                    row['id'],
                    actor_id=actor.user_id if actor else None,
                    details={
                        'previous_assignment_id': str(assignment_id),
                        'previous_employee_id': str(current['employee_id']),
                        'new_employee_id': str(new_employee_id),
                        'item_type': kind.item_type.value,
                        'item_id': str(current['item_id'])
                    }
                )

        logger.info(
            f"Reassigned {kind.item_type.value} {current['item_id']} "
            f"from {current['employee_id']} to {new_employee_id}"
        )
        return _assignment(row)

    async def complete(self, assignment_id: UUID, actor: Optional[Principal] = None) -> Assignment:
        """Close an active assignment as completed.

        Args:
            assignment_id: Assignment to close
            actor: Caller; the assignee and managers/admins may complete

        Raises:
            NotFoundError: If the assignment does not exist
            AuthorizationError: If the actor neither holds the assignment nor supervises
            ValidationError: If it is already closed
        """
        await self.ensure_pool()

        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await db.get_assignment(conn, assignment_id, for_update=True)
                if not current:
                    raise NotFoundError('assignment', assignment_id)
                if actor and not actor.is_supervisor and actor.user_id != current['employee_id']:
                    raise AuthorizationError(
                        f"User {actor.user_id} cannot complete assignment {assignment_id}"
                    )
                if not current['is_active']:
                    raise ValidationError(
                        f"Assignment {assignment_id} is already closed",
                        {'assignment_id': str(assignment_id)}
                    )
                row = await db.close_assignment(conn, assignment_id, completed=True)

        logger.info(f"Completed assignment {assignment_id} ({current['item_type']})")
        return _assignment(row)

    async def get_active_assignment(self, item_id: UUID, item_type: ItemType) -> Optional[Assignment]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await db.get_active_assignment(conn, item_id, ItemType(item_type).value)
        return _assignment(row) if row else None

    async def workload_of(self, employee_id: UUID) -> Workload:
        """Active assignment counts of one staff member by item type."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            counts = await db.count_active_by_type(conn, employee_id)
        by_type = {ItemType(item_type): count for item_type, count in counts.items()}
        return Workload(employee_id=employee_id, total=sum(by_type.values()), by_type=by_type)

    async def all_workloads(self) -> List[Workload]:
        """Workload of every eligible staff member, idle ones included."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await db.count_active_all(conn)

        workloads: Dict[UUID, Workload] = {}
        for row in rows:
            workload = workloads.setdefault(row['employee_id'], Workload(employee_id=row['employee_id']))
            if row['item_type'] is not None and row['count']:
                workload.by_type[ItemType(row['item_type'])] = row['count']
                workload.total += row['count']
        return list(workloads.values())

    async def queue_of(self, employee_id: UUID) -> List[Assignment]:
        """Active assignments of one staff member, oldest first."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await db.get_active_assignments_for(conn, employee_id)
        return [_assignment(row) for row in rows]

    async def assign_unmonitored_bookings(self, limit: int = 100) -> int:
        """Give every open booking without a monitor one. Used by the retry worker.

        Returns:
            Number of bookings assigned
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            booking_ids = await db.get_unmonitored_bookings(conn, limit)

        assigned = 0
        for booking_id in booking_ids:
            try:
                await self.assign(booking_id, ItemType.BOOKING_MONITORING)
                assigned += 1
            except NoEligibleStaffError:
                # Nobody to assign the rest to either
                break
        return assigned

__all__ = [
    'AssignmentManager',
    'Assignment',
    'AssignRequest',
    'ReassignRequest',
    'ItemType',
    'Workload',
    'WorkItemKind',
    'WORK_ITEM_KINDS',
    'kind_of',
    'select_next',
]
