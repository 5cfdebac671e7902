"""Monitoring alerts raised for flagged chat messages.

An alert is bound to the staff member monitoring the booking at the time
the message was flagged. When nobody monitors the booking the alert is
stored unassigned and bound later by the assignment retry worker.
"""
import logging
from typing import List, Optional
from uuid import UUID

from asyncpg.pool import Pool

import audit
from auth import Principal, UserRole
from database import get_pool
from errors import AuthorizationError, NotFoundError, ValidationError
from realtime import RealtimeFanout, NullFanout
from . import db
from .models import MonitoringAlert, AlertResolve

logger = logging.getLogger(__name__)

def has_monitoring_access(principal: Principal, monitoring_employee_id: Optional[UUID]) -> bool:
    """Managers and admins monitor every booking, employees only their assigned ones."""
    if principal.is_supervisor:
        return True
    return principal.role == UserRole.EMPLOYEE and principal.user_id == monitoring_employee_id

def alert_event(event_type: str, alert: MonitoringAlert) -> dict:
    return {"type": event_type, "data": alert.model_dump(mode="json")}

class AlertManager:
    """Manages the lifecycle of monitoring alerts."""

    def __init__(self, fanout: Optional[RealtimeFanout] = None, pool: Optional[Pool] = None) -> None:
        self.fanout = fanout or NullFanout()
        self.pool = pool

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def create_alert(
        self,
        booking_id: UUID,
        message_id: UUID,
        employee_id: Optional[UUID],
        risk_score: int,
        description: str
    ) -> MonitoringAlert:
        """Store an alert and push it to the assigned employee's private channel."""
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await db.insert_alert(conn, booking_id, message_id, employee_id, risk_score, description)
        alert = MonitoringAlert(**dict(row))

        if employee_id:
            logger.info(f"Alert {alert.id} for message {message_id} sent to {employee_id}")
            await self.fanout.publish_to_user(employee_id, alert_event("monitoring_alert", alert))
        else:
            logger.warning(
                f"Alert {alert.id} for booking {booking_id} stored without a monitoring employee"
            )
        return alert

    async def resolve_alert(
        self,
        alert_id: UUID,
        resolver: Principal,
        notes: Optional[str] = None
    ) -> MonitoringAlert:
        """Resolve an alert.

        Raises:
            NotFoundError: If the alert does not exist
            ValidationError: If it is already resolved
            AuthorizationError: If the resolver is neither the assigned
                employee nor a manager/admin
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await db.get_alert(conn, alert_id, for_update=True)
                if not current:
                    raise NotFoundError('alert', alert_id)
                if current['is_resolved']:
                    raise ValidationError(
                        f"Alert {alert_id} is already resolved",
                        {'resolved_at': str(current['resolved_at'])}
                    )
                if not resolver.is_supervisor and resolver.user_id != current['employee_id']:
                    raise AuthorizationError(
                        f"User {resolver.user_id} cannot resolve alert {alert_id}"
                    )
                row = await db.resolve_alert(conn, alert_id, resolver.user_id, notes)
                await audit.record(
                    conn,
                    audit.ALERT_RESOLVED,
                    'alert',
                    alert_id,
                    actor_id=resolver.user_id,
                    details={'booking_id': str(current['booking_id']), 'notes': notes}
                )

        alert = MonitoringAlert(**dict(row))
        logger.info(f"Alert {alert_id} resolved by {resolver.user_id}")

        event = alert_event("alert_resolved", alert)
        await self.fanout.publish_to_user(resolver.user_id, event)
        if alert.employee_id and alert.employee_id != resolver.user_id:
            await self.fanout.publish_to_user(alert.employee_id, event)
        return alert

    async def list_alerts(
        self,
        requester: Principal,
        unresolved_only: bool = False,
        employee_id: Optional[UUID] = None,
        limit: int = 50
    ) -> List[MonitoringAlert]:
        """Alerts visible to the requester, newest first.

        Employees only see their own alerts; managers and admins may filter
        by employee or see all.
        """
        if not requester.is_staff:
            raise AuthorizationError("Only staff can list monitoring alerts")
        if not requester.is_supervisor:
            employee_id = requester.user_id

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await db.list_alerts(conn, employee_id, unresolved_only, limit)
        return [MonitoringAlert(**dict(row)) for row in rows]

    async def unassigned_alerts(self, limit: int = 100) -> List[MonitoringAlert]:
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await db.get_unassigned_alerts(conn, limit)
        return [MonitoringAlert(**dict(row)) for row in rows]

    async def bind_unassigned_alerts(self, limit: int = 100) -> int:
        """Bind open unassigned alerts to their booking's monitoring employee.

        Returns:
            Number of alerts bound
        """
        await self.ensure_pool()
        bound = 0
        async with self.pool.acquire() as conn:
            for row in await db.get_unassigned_alerts(conn, limit):
                employee_id = await db.get_monitoring_employee(conn, row['booking_id'])
                if not employee_id:
                    continue
                updated = await db.bind_alert(conn, row['id'], employee_id)
                if not updated:
                    continue
                bound += 1
                alert = MonitoringAlert(**dict(updated))
                logger.info(f"Alert {alert.id} bound to {employee_id}")
                await self.fanout.publish_to_user(employee_id, alert_event("monitoring_alert", alert))
        return bound

    async def can_monitor(self, principal: Principal, booking_id: UUID) -> bool:
        """Whether a staff member may watch a booking's live conversation."""
        if principal.is_supervisor:
            return True
        if principal.role != UserRole.EMPLOYEE:
            return False
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            employee_id = await db.get_monitoring_employee(conn, booking_id)
        return has_monitoring_access(principal, employee_id)

__all__ = [
    'AlertManager',
    'AlertResolve',
    'MonitoringAlert',
    'alert_event',
    'has_monitoring_access',
]
