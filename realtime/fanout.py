"""Delivery interface the pipeline components publish through."""
from typing import Any, Dict, Optional
from uuid import UUID


class RealtimeFanout:
    """Transport used by the pipeline to reach connected clients.

    Delivery is at-most-once and live only; an offline recipient simply
    misses the event and fetches persisted state later.
    """

    async def publish_to_booking(
        self,
        booking_id: UUID,
        sequence: Optional[int],
        event: Dict[str, Any]
    ) -> None:
        """Deliver an event to everyone in a booking's room.

        Events carrying a sequence number are delivered in sequence order;
        events with ``sequence=None`` are delivered as they arrive.
        """
        raise NotImplementedError

    async def publish_to_user(self, user_id: UUID, event: Dict[str, Any]) -> None:
        """Deliver an event to every live connection of one user."""
        raise NotImplementedError


class NullFanout(RealtimeFanout):
    """Fan-out for processes without live connections, such as workers."""

    async def publish_to_booking(self, booking_id, sequence, event) -> None:
        return None

    async def publish_to_user(self, user_id, event) -> None:
        return None
