"""Service facade for the trust & safety pipeline.

Every public operation returns a ``ServiceResult``. Domain errors, driver
errors and unexpected exceptions are all converted at this boundary so
callers (REST routes, the websocket endpoint, workers) never see a raw
exception.
"""
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

import asyncpg
from asyncpg.pool import Pool
from pydantic import BaseModel, Field

from assignments import AssignmentManager, ItemType
from auth import Principal
from chat import ModerationPipeline
from database import translate_postgres_error
from errors import (
    AuthorizationError,
    InvariantViolationError,
    NoEligibleStaffError,
    ServiceUnavailableError,
    TrustSafetyError,
)
from escrow import BookingStatus, EscrowLedger
from monitoring import AlertManager
from realtime import RealtimeFanout, NullFanout

logger = logging.getLogger(__name__)

class ServiceError(BaseModel):
    code: str
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)

class ServiceResult(BaseModel):
    success: bool
    data: Any = None
    error: Optional[ServiceError] = None

    @classmethod
    def ok(cls, data: Any = None) -> 'ServiceResult':
        return cls(success=True, data=data)

    @classmethod
    def fail(cls, error: TrustSafetyError) -> 'ServiceResult':
        return cls(success=False, error=ServiceError(**error.to_dict()))

class TrustSafetyService:
    """Single entry point wiring the pipeline components together."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        fanout: Optional[RealtimeFanout] = None,
        assigner: Optional[AssignmentManager] = None,
        ledger: Optional[EscrowLedger] = None,
        alerts: Optional[AlertManager] = None,
        pipeline: Optional[ModerationPipeline] = None
    ) -> None:
        self.fanout = fanout or NullFanout()
        self.assigner = assigner or AssignmentManager(pool)
        self.ledger = ledger or EscrowLedger(pool)
        self.alerts = alerts or AlertManager(self.fanout, pool)
        self.pipeline = pipeline or ModerationPipeline(
            self.fanout, self.assigner, self.alerts, pool
        )

    async def _run(self, operation: str, call: Callable[[], Awaitable[Any]]) -> ServiceResult:
        try:
            return ServiceResult.ok(await call())
        except InvariantViolationError as e:
            logger.error(f"{operation} aborted on invariant violation: {e.message} {e.details}")
            return ServiceResult.fail(e)
        except TrustSafetyError as e:
            logger.debug(f"{operation} rejected: {e.code} {e.message}")
            return ServiceResult.fail(e)
        except asyncpg.PostgresError as e:
            error = translate_postgres_error(e)
            if isinstance(error, InvariantViolationError):
                logger.error(f"{operation} aborted on invariant violation: {error.message} {error.details}")
            else:
                logger.exception(f"{operation} failed on database error")
            return ServiceResult.fail(error)
        except (OSError, asyncpg.exceptions.InterfaceError) as e:
            logger.exception(f"{operation} could not reach the database")
            return ServiceResult.fail(ServiceUnavailableError(f"Database unavailable: {e}"))
        except Exception as e:
            logger.exception(f"Unexpected error in {operation}")
            return ServiceResult(
                success=False,
                error=ServiceError(
                    code='internal_error',
                    message=f"Internal error in {operation}",
                    details={'error_type': type(e).__name__}
                )
            )

    # Messages

    async def submit_message(
        self,
        booking_id: UUID,
        sender_id: UUID,
        content: Optional[str],
        media_url: Optional[str] = None
    ) -> ServiceResult:
        return await self._run(
            'submit_message',
            lambda: self.pipeline.submit_message(booking_id, sender_id, content, media_url)
        )

    async def get_messages(
        self,
        booking_id: UUID,
        requester: Principal,
        limit: int = 50,
        before_seq: Optional[int] = None
    ) -> ServiceResult:
        return await self._run(
            'get_messages',
            lambda: self.pipeline.get_messages(booking_id, requester, limit, before_seq)
        )

    async def mark_read(
        self,
        booking_id: UUID,
        reader_id: UUID,
        message_ids: Optional[List[UUID]] = None
    ) -> ServiceResult:
        return await self._run(
            'mark_read',
            lambda: self.pipeline.mark_read(booking_id, reader_id, message_ids)
        )

    async def flag_message(self, message_id: UUID, staff: Principal, reason: str) -> ServiceResult:
        return await self._run(
            'flag_message',
            lambda: self.pipeline.flag_message(message_id, staff, reason)
        )

    async def send_system_message(self, booking_id: UUID, staff: Principal, content: str) -> ServiceResult:
        return await self._run(
            'send_system_message',
            lambda: self.pipeline.send_system_message(booking_id, staff, content)
        )

    async def get_chat_statistics(self, window: str = "24h") -> ServiceResult:
        return await self._run('get_chat_statistics', lambda: self.pipeline.get_statistics(window))

    async def check_room_access(self, principal: Principal, booking_id: UUID) -> ServiceResult:
        """Succeeds with True/False; fails when the booking does not exist."""
        return await self._run('check_room_access', lambda: self.pipeline.can_join(principal, booking_id))

    # Bookings and wallets

    async def create_booking(
        self,
        seeker_id: UUID,
        provider_id: UUID,
        scheduled_at: datetime,
        duration: int,
        token_amount: int,
        notes: Optional[str] = None
    ) -> ServiceResult:
        async def call():
            booking = await self.ledger.create_booking(
                seeker_id, provider_id, scheduled_at, duration, token_amount, notes
            )
            try:
                assignment = await self.assigner.assign(booking.id, ItemType.BOOKING_MONITORING)
                booking.assigned_employee_id = assignment.employee_id
            except NoEligibleStaffError:
                logger.warning(f"Booking {booking.id} left without monitoring until staff is available")
            except Exception:
                # The retry worker picks the booking up
                logger.exception(f"Monitoring assignment for booking {booking.id} failed")
            return booking

        return await self._run('create_booking', call)

    async def transition_booking(
        self,
        booking_id: UUID,
        new_status: BookingStatus,
        actor: Optional[Principal] = None
    ) -> ServiceResult:
        return await self._run(
            'transition_booking',
            lambda: self.ledger.transition(booking_id, BookingStatus(new_status), actor)
        )

    async def get_booking(self, booking_id: UUID, requester: Optional[Principal] = None) -> ServiceResult:
        return await self._run('get_booking', lambda: self.ledger.get_booking(booking_id, requester))

    async def purchase_tokens(
        self,
        user_id: UUID,
        token_amount: int,
        captured_amount: Decimal,
        gateway_reference: str
    ) -> ServiceResult:
        return await self._run(
            'purchase_tokens',
            lambda: self.ledger.purchase_tokens(user_id, token_amount, captured_amount, gateway_reference)
        )

    async def get_wallet(self, user_id: UUID, limit: int = 20) -> ServiceResult:
        return await self._run('get_wallet', lambda: self.ledger.get_wallet(user_id, limit))

    async def verify_wallet(self, user_id: UUID) -> ServiceResult:
        return await self._run('verify_wallet', lambda: self.ledger.verify_wallet(user_id))

    # Assignments

    async def assign_work(self, item_id: UUID, item_type: ItemType) -> ServiceResult:
        """Data is the active assignment; its ``employee_id`` is the assignee."""
        return await self._run('assign_work', lambda: self.assigner.assign(item_id, ItemType(item_type)))

    async def reassign_work(
        self,
        assignment_id: UUID,
        new_employee_id: UUID,
        actor: Optional[Principal] = None
    ) -> ServiceResult:
        return await self._run(
            'reassign_work',
            lambda: self.assigner.reassign(assignment_id, new_employee_id, actor)
        )

    async def complete_assignment(self, assignment_id: UUID, actor: Optional[Principal] = None) -> ServiceResult:
        return await self._run('complete_assignment', lambda: self.assigner.complete(assignment_id, actor))

    async def get_workload(
        self,
        employee_id: Optional[UUID] = None,
        requester: Optional[Principal] = None
    ) -> ServiceResult:
        """One staff member's workload, or every eligible staff member's.

        Employees only ever see their own workload.
        """
        async def call():
            target = employee_id
            if requester is not None and not requester.is_supervisor:
                if not requester.is_staff:
                    raise AuthorizationError("Only staff can view workloads")
                target = requester.user_id
            if target is None:
                return await self.assigner.all_workloads()
            return await self.assigner.workload_of(target)

        return await self._run('get_workload', call)

    async def get_assignment_queue(self, employee_id: UUID) -> ServiceResult:
        return await self._run('get_assignment_queue', lambda: self.assigner.queue_of(employee_id))

    # Alerts

    async def resolve_alert(self, alert_id: UUID, resolver: Principal, notes: Optional[str] = None) -> ServiceResult:
        return await self._run('resolve_alert', lambda: self.alerts.resolve_alert(alert_id, resolver, notes))

    async def list_alerts(
        self,
        requester: Principal,
        unresolved_only: bool = False,
        employee_id: Optional[UUID] = None,
        limit: int = 50
    ) -> ServiceResult:
        return await self._run(
            'list_alerts',
            lambda: self.alerts.list_alerts(requester, unresolved_only, employee_id, limit)
        )

__all__ = [
    'TrustSafetyService',
    'ServiceResult',
    'ServiceError',
]
