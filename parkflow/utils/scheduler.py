"""
ParkFlow - Background Scheduler
Handles periodic background tasks like lot statistics broadcasts.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from typing import Optional
import logging

# Configure logging
logger = logging.getLogger(__name__)

STATS_JOB_ID = "broadcast_lot_stats"


def create_scheduler() -> AsyncIOScheduler:
    """
    Build the scheduler shared by background jobs.
    The event loop is bound when the scheduler is started.
    """
    return AsyncIOScheduler(timezone="UTC")


def ensure_started(scheduler: AsyncIOScheduler):
    """Start the scheduler if it is not running yet. Needs a running event loop."""
    if not scheduler.running:
        scheduler.start()
        logger.info("Background scheduler started")


class StatsScheduler:
    """
    Background job that keeps subscribers' lot statistics fresh.
    Statistics are only recomputed while someone is listening.
    """

    def __init__(
        self,
        lot_service,
        broadcaster,
        interval_seconds: int = 60,
        scheduler: Optional[AsyncIOScheduler] = None
    ):
        self.lot_service = lot_service
        self.broadcaster = broadcaster
        self.interval_seconds = interval_seconds
        self.scheduler = scheduler
        self._is_running = False

    def start(self):
        """Start the periodic statistics broadcast."""
        if self._is_running:
            logger.warning("Stats scheduler is already running")
            return

        if self.scheduler is None:
            self.scheduler = create_scheduler()
        ensure_started(self.scheduler)

        self.scheduler.add_job(
            self.broadcast_stats,
            trigger=IntervalTrigger(seconds=self.interval_seconds),
            id=STATS_JOB_ID,
            name="Broadcast parking lot statistics",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

        self._is_running = True
        logger.info(f"Lot statistics broadcast every {self.interval_seconds}s")

    def stop(self):
        """Stop the periodic statistics broadcast."""
        if not self._is_running:
            return

        if self.scheduler.get_job(STATS_JOB_ID) is not None:
            self.scheduler.remove_job(STATS_JOB_ID)
        self._is_running = False
        logger.info("Lot statistics broadcast stopped")

    def is_running(self) -> bool:
        """Check if the broadcast job is scheduled."""
        return self._is_running

    async def broadcast_stats(self) -> int:
        """
        Publish the statistics of every active lot.
        Runs periodically as a background task; errors are logged, not raised.

        Returns:
            int: Number of lots broadcast
        """
        if self.broadcaster.get_connection_count() == 0:
            return 0

        try:
            count = await self.lot_service.broadcast_all_stats()
            logger.debug(f"Broadcast statistics of {count} lot(s)")
            return count
        except Exception as e:
            logger.error(f"Error broadcasting lot statistics: {e}", exc_info=True)
            return 0
