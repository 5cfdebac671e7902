"""Worker that catches up on work left unassigned while no staff was eligible."""

import asyncio
import logging
from typing import Optional, Tuple

from asyncpg.pool import Pool

from assignments import AssignmentManager
from config import settings_conf
from monitoring import AlertManager
from realtime import RealtimeFanout

# Configure logging
logger = logging.getLogger(__name__)

class AssignmentRetryWorker:
    """Periodically assigns unmonitored bookings and binds unassigned alerts."""

    def __init__(
        self,
        pool: Optional[Pool] = None,
        fanout: Optional[RealtimeFanout] = None,
        interval: Optional[float] = None,
        batch_size: int = 100
    ) -> None:
        self.assigner = AssignmentManager(pool)
        self.alerts = AlertManager(fanout, pool)
        self.interval = interval if interval is not None else settings_conf['assignment_retry_interval']
        self.batch_size = batch_size
        self._stop_requested = False
        self._wakeup = asyncio.Event()

    def stop(self):
        """Signal the worker loop to exit."""
        self._stop_requested = True
        self._wakeup.set()

    async def run_once(self) -> Tuple[int, int]:
        """One catch-up cycle.

        Returns:
            Bookings assigned and alerts bound
        """
        # Bookings first so their alerts can be bound in the same cycle
        assigned = await self.assigner.assign_unmonitored_bookings(self.batch_size)
        bound = await self.alerts.bind_unassigned_alerts(self.batch_size)
        if assigned or bound:
            logger.info(f"Assignment retry: {assigned} bookings assigned, {bound} alerts bound")
        return assigned, bound

    async def run(self):
        """Main loop; runs until stop() is called."""
        logger.info(f"Starting assignment retry worker (every {self.interval}s)")

        while not self._stop_requested:
            try:
                await self.run_once()
            except Exception as e:
                logger.error(f"Error in assignment retry worker: {e}")

            try:
                await asyncio.wait_for(self._wakeup.wait(), timeout=self.interval)
            except asyncio.TimeoutError:
                pass

        logger.info("Assignment retry worker stopped")
