"""
ParkFlow - Service Container
Builds every service once at startup and owns their start/stop order.
"""

from fastapi import Request
from typing import Optional
import logging

from parkflow.config import Settings
from parkflow.database.engine import Database
from parkflow.models.simulator import SimulatorConfig
from parkflow.services.broadcast_service import OccupancyBroadcaster
from parkflow.services.lot_service import LotService
from parkflow.services.sensor_simulator import SensorSimulator
from parkflow.services.session_service import SessionLifecycleManager
from parkflow.services.spot_state_machine import SpotStateMachine
from parkflow.utils.locks import KeyedLock
from parkflow.utils.scheduler import StatsScheduler, create_scheduler, ensure_started

# Configure logging
logger = logging.getLogger(__name__)


class ServiceContainer:
    """
    Explicitly wired application services.
    Spot locks are shared so every writer of a spot is serialized.
    """

    def __init__(self, settings: Settings, database: Optional[Database] = None):
        self.settings = settings
        self.database = database or Database(settings.database_url, echo=settings.database_echo)

        self.spot_locks = KeyedLock()
        self.user_locks = KeyedLock()
        self.scheduler = create_scheduler()

        self.broadcaster = OccupancyBroadcaster(queue_size=settings.subscriber_queue_size)
        self.state_machine = SpotStateMachine(self.database, self.broadcaster, spot_locks=self.spot_locks)
        self.sessions = SessionLifecycleManager(
            self.database,
            self.state_machine,
            user_locks=self.user_locks,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )
        self.lots = LotService(
            self.database,
            self.broadcaster,
            spot_locks=self.spot_locks,
            default_page_size=settings.default_page_size,
            max_page_size=settings.max_page_size,
        )
        self.simulator = SensorSimulator(
            self.database,
            self.state_machine,
            self.broadcaster,
            config=SimulatorConfig(
                change_interval_seconds=settings.simulator_interval_seconds,
                change_probability=settings.simulator_change_probability,
                recovery_delay_seconds=settings.sensor_recovery_delay_seconds,
            ),
            scheduler=self.scheduler,
        )
        self.stats_scheduler = StatsScheduler(
            self.lots,
            self.broadcaster,
            interval_seconds=settings.stats_broadcast_seconds,
            scheduler=self.scheduler,
        )

    def init(self):
        """Prepare persistent state. Safe to call on every startup."""
        self.database.create_all()

    def start(self):
        """Start background jobs. Must run inside the application event loop."""
        ensure_started(self.scheduler)
        self.stats_scheduler.start()
        if self.settings.simulator_autostart:
            self.simulator.start()

    async def stop(self):
        """Stop background jobs, disconnect subscribers, release connections."""
        self.simulator.stop()
        self.stats_scheduler.stop()
        if self.scheduler.running:
            self.scheduler.shutdown(wait=False)
        await self.broadcaster.close()
        self.database.dispose()
        logger.info("Services stopped")


def get_services(request: Request) -> ServiceContainer:
    """FastAPI dependency returning the application's service container."""
    return request.app.state.services
