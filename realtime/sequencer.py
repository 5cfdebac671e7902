"""Per-booking reorder buffer keeping fan-out in persistence order."""
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)


class BookingSequencer:
    """Releases events in sequence-number order.

    Sequence numbers are allocated per booking inside the message insert
    transaction, so two concurrent submissions may reach the fan-out in the
    opposite order to the one they were persisted in. Events are held until
    every lower sequence number has been released or skipped.
    """

    def __init__(self, next_sequence: Optional[int] = None):
        # None until the first event arrives; the room starts from it
        self.next_sequence = next_sequence
        self._buffer: Dict[int, Any] = {}

    @property
    def pending(self) -> int:
        """Number of events waiting for a missing predecessor."""
        return len(self._buffer)

    def push(self, sequence: int, event: Any) -> List[Any]:
        """Accept an event and return every event now ready for delivery.

        Events older than the release point (their slot was already skipped)
        are returned immediately.
        """
        if self.next_sequence is None:
            self.next_sequence = sequence
        if sequence < self.next_sequence:
            logger.debug(f"Late sequence {sequence}, expected {self.next_sequence}")
            return [event]
        self._buffer[sequence] = event
        return self._drain()

    def skip_gap(self) -> List[Any]:
        """Give up on the missing sequence and release what follows it."""
        if not self._buffer:
            return []
        lowest = min(self._buffer)
        logger.warning(
            f"Skipping fan-out sequence gap {self.next_sequence}-{lowest - 1}"
        )
        self.next_sequence = lowest
        return self._drain()

    def _drain(self) -> List[Any]:
        ready = []
        while self.next_sequence in self._buffer:
            ready.append(self._buffer.pop(self.next_sequence))
            self.next_sequence += 1
        return ready
