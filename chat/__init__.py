"""Chat module: the moderation pipeline for booking conversations.

Every inbound message is scored, persisted with its moderation fields and a
per-booking sequence number, fanned out to the booking room and, when
flagged, escalated to the staff member monitoring the booking.
"""
import logging
from datetime import datetime, timezone
from typing import Callable, List, Optional
from uuid import UUID

from asyncpg.pool import Pool

import audit
from assignments import AssignmentManager, ItemType
from auth import Principal
from config import settings_conf
from database import get_pool, retry_transient
from errors import AuthorizationError, NoEligibleStaffError, NotFoundError, ValidationError
from moderation import ModerationPolicy, SenderHistory, get_policy, score
from monitoring import AlertManager
from realtime import RealtimeFanout, NullFanout
from . import db
from .models import (
    ChatStatistics,
    FlagRequest,
    MarkRead,
    Message,
    MessageCreate,
    SystemMessageCreate,
    WebSocketMessage,
    STATISTICS_WINDOWS,
)

logger = logging.getLogger(__name__)

CANCELLED = 'CANCELLED'
OPEN_STATUSES = ('PENDING', 'CONFIRMED', 'IN_PROGRESS')

def message_event(event_type: str, message: Message) -> dict:
    return {"type": event_type, "data": message.model_dump(mode="json")}

class ModerationPipeline:
    """Accepts chat messages and drives scoring, persistence, fan-out and escalation."""

    def __init__(
        self,
        fanout: Optional[RealtimeFanout] = None,
        assigner: Optional[AssignmentManager] = None,
        alerts: Optional[AlertManager] = None,
        pool: Optional[Pool] = None,
        policy_provider: Callable[[], ModerationPolicy] = get_policy
    ) -> None:
        """Initialize the pipeline.

        Args:
            fanout: Transport for room and staff events
            assigner: Used to find or lazily create the booking's monitor
            alerts: Creates monitoring alerts for flagged messages
            pool: Optional database connection pool
            policy_provider: Returns the moderation policy to score with
        """
        self.fanout = fanout or NullFanout()
        self.pool = pool
        self.assigner = assigner or AssignmentManager(pool)
        self.alerts = alerts or AlertManager(self.fanout, pool)
        self.policy_provider = policy_provider

    async def ensure_pool(self):
        """Ensure we have a database pool."""
        if not self.pool:
            self.pool = await get_pool()

    async def _publish(self, booking_id: UUID, sequence: Optional[int], event: dict):
        # Live delivery is best effort; the message is already durable
        try:
            await self.fanout.publish_to_booking(booking_id, sequence, event)
        except Exception as e:
            logger.warning(f"Fan-out of {event['type']} to booking {booking_id} failed: {e}")

    async def _get_booking(self, conn, booking_id: UUID):
        booking = await db.get_booking_participants(conn, booking_id)
        if not booking:
            raise NotFoundError('booking', booking_id)
        return booking

    @retry_transient
    async def submit_message(
        self,
        booking_id: UUID,
        sender_id: UUID,
        content: Optional[str],
        media_url: Optional[str] = None
    ) -> Message:
        """Score, persist and deliver a participant's message.

        Args:
            booking_id: Conversation the message belongs to
            sender_id: Must be the booking's seeker or provider
            content: Message text; may be empty when media_url is given
            media_url: Optional attachment location

        Returns:
            The persisted message

        Raises:
            NotFoundError: If the booking does not exist
            ValidationError: Non-participant sender, cancelled booking, empty or oversized content
        """
        content = content or ''
        if not content.strip() and not media_url:
            raise ValidationError("Message content cannot be empty")
        max_length = settings_conf['max_message_length']
        if len(content) > max_length:
            raise ValidationError(
                f"Message exceeds {max_length} characters",
                {'length': len(content), 'max_length': max_length}
            )

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            booking = await self._get_booking(conn, booking_id)
            if sender_id not in (booking['seeker_id'], booking['provider_id']):
                raise ValidationError(
                    f"User {sender_id} is not a participant of booking {booking_id}",
                    {'booking_id': str(booking_id), 'sender_id': str(sender_id)}
                )
            if booking['status'] == CANCELLED:
                raise ValidationError(f"Booking {booking_id} is cancelled")

            flagged_count = await db.count_flagged_messages(conn, sender_id)
            risk = score(content, SenderHistory(flagged_count=flagged_count), self.policy_provider())

            async with conn.transaction():
                seq = await db.next_message_seq(conn, booking_id)
                if seq is None:
                    raise ValidationError(f"Booking {booking_id} is cancelled")
                row = await db.insert_message(
                    conn,
                    booking_id,
                    sender_id,
                    seq,
                    content,
                    media_url,
                    risk.is_flagged,
                    risk.reason,
                    risk.risk_score,
                    risk.policy_version
                )

        message = Message(**dict(row))
        logger.info(
            f"Message {message.id} #{message.seq} in booking {booking_id} "
            f"scored {risk.risk_score} (flagged={risk.is_flagged})"
        )

        await self._publish(booking_id, message.seq, message_event("new_message", message))

        if message.is_flagged:
            try:
                await self._escalate(message, booking)
            except Exception:
                logger.exception(
                    f"Could not create monitoring alert for flagged message {message.id}"
                )
        return message

    async def _escalate(self, message: Message, booking):
        """Raise an alert for a flagged message with the booking's monitor.

        Open bookings without a monitor get one assigned. A completed booking
        is not monitored any more, so its alert goes to the employee who last
        monitored it.
        """
        if booking['status'] not in OPEN_STATUSES:
            await self.alerts.create_alert(
                message.booking_id,
                message.id,
                booking['assigned_employee_id'],
                message.risk_score,
                f"Message flagged with risk score {message.risk_score} after the booking "
                f"closed: {message.flag_reason}"
            )
            return

        assignment = await self.assigner.get_active_assignment(
            message.booking_id, ItemType.BOOKING_MONITORING
        )
        if assignment is None:
            try:
                assignment = await self.assigner.assign(message.booking_id, ItemType.BOOKING_MONITORING)
            except NoEligibleStaffError:
                logger.warning(
                    f"Flagged message {message.id} in booking {message.booking_id} "
                    "has no monitoring staff; alert stored unassigned"
                )

        await self.alerts.create_alert(
            message.booking_id,
            message.id,
            assignment.employee_id if assignment else None,
            message.risk_score,
            f"Message flagged with risk score {message.risk_score}: {message.flag_reason}"
        )

    async def mark_read(
        self,
        booking_id: UUID,
        reader_id: UUID,
        message_ids: Optional[List[UUID]] = None
    ) -> List[UUID]:
        """Mark the other participant's messages read and notify the room.

        Returns:
            Ids of the messages that changed
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            booking = await self._get_booking(conn, booking_id)
            if reader_id not in (booking['seeker_id'], booking['provider_id']):
                raise ValidationError(
                    f"User {reader_id} is not a participant of booking {booking_id}"
                )
            updated = await db.mark_read(conn, booking_id, reader_id, message_ids)

        if updated:
            await self._publish(booking_id, None, {
                "type": "messages_read",
                "data": {
                    "booking_id": str(booking_id),
                    "reader_id": str(reader_id),
                    "message_ids": [str(message_id) for message_id in updated]
                }
            })
        return updated

    async def flag_message(self, message_id: UUID, staff: Principal, reason: str) -> Message:
        """Flag a message after the fact on a staff member's judgement."""
        if not staff.is_staff:
            raise AuthorizationError("Only staff can flag messages")
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to flag a message")

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                current = await db.get_message(conn, message_id)
                if not current:
                    raise NotFoundError('message', message_id)
                row = await db.flag_message(conn, message_id, f"Manual review: {reason.strip()}")
                await audit.record(
                    conn,
                    audit.MESSAGE_FLAGGED,
                    'message',
                    message_id,
                    actor_id=staff.user_id,
                    details={'booking_id': str(current['booking_id']), 'reason': reason}
                )

        message = Message(**dict(row))
        logger.info(f"Message {message_id} flagged by {staff.user_id}")
        await self._publish(message.booking_id, None, message_event("message_flagged", message))
        return message

    async def send_system_message(self, booking_id: UUID, staff: Principal, content: str) -> Message:
        """Post an unscored staff message into a booking conversation."""
        if not content or not content.strip():
            raise ValidationError("Message content cannot be empty")
        if not await self.can_join(staff, booking_id, staff_only=True):
            raise AuthorizationError(
                f"User {staff.user_id} cannot post system messages to booking {booking_id}"
            )

        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            await self._get_booking(conn, booking_id)
            async with conn.transaction():
                seq = await db.next_message_seq(conn, booking_id)
                if seq is None:
                    raise ValidationError(f"Booking {booking_id} is cancelled")
                row = await db.insert_message(
                    conn, booking_id, staff.user_id, seq, content.strip(), None,
                    False, None, 0, None, is_system_message=True
                )

        message = Message(**dict(row))
        logger.info(f"System message {message.id} posted to booking {booking_id} by {staff.user_id}")
        await self._publish(booking_id, message.seq, message_event("new_message", message))
        return message

    async def get_messages(
        self,
        booking_id: UUID,
        requester: Principal,
        limit: int = 50,
        before_seq: Optional[int] = None
    ) -> List[Message]:
        """Conversation history in persistence order."""
        if not await self.can_join(requester, booking_id):
            raise AuthorizationError(f"User {requester.user_id} cannot read booking {booking_id}")
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            rows = await db.get_messages(conn, booking_id, limit, before_seq)
        return [Message(**dict(row)) for row in rows]

    async def can_join(self, principal: Principal, booking_id: UUID, staff_only: bool = False) -> bool:
        """Whether a user may join the booking's room.

        Participants always may unless ``staff_only``; staff need monitoring access.

        Raises:
            NotFoundError: If the booking does not exist
        """
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            booking = await self._get_booking(conn, booking_id)
        if not staff_only and principal.user_id in (booking['seeker_id'], booking['provider_id']):
            return True
        if not principal.is_staff:
            return False
        return await self.alerts.can_monitor(principal, booking_id)

    async def get_statistics(self, window: str = "24h") -> ChatStatistics:
        """Message and flag counts over a trailing window (1h, 24h, 7d, 30d)."""
        if window not in STATISTICS_WINDOWS:
            raise ValidationError(
                f"Unknown statistics window {window}",
                {'allowed': list(STATISTICS_WINDOWS)}
            )
        since = datetime.now(timezone.utc) - STATISTICS_WINDOWS[window]
        await self.ensure_pool()
        async with self.pool.acquire() as conn:
            row = await db.chat_statistics(conn, since)

        total = row['total'] or 0
        flagged = row['flagged'] or 0
        return ChatStatistics(
            window=window,
            since=since,
            total_messages=total,
            flagged_messages=flagged,
            flagged_percentage=round(flagged * 100.0 / total, 2) if total else 0.0
        )

__all__ = [
    'ModerationPipeline',
    'ChatStatistics',
    'FlagRequest',
    'MarkRead',
    'Message',
    'MessageCreate',
    'SystemMessageCreate',
    'WebSocketMessage',
    'STATISTICS_WINDOWS',
    'message_event',
]
