"""
ParkFlow - Sensor Simulator
Simulated occupancy sensors. Each tick flips one random free or occupied
spot through the spot state machine and publishes synthesized telemetry.
"""

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.date import DateTrigger
from apscheduler.triggers.interval import IntervalTrigger
from typing import Optional
from datetime import datetime, timedelta, timezone
import logging
import random

from parkflow.database import queries
from parkflow.database.engine import Database
from parkflow.exceptions import InvalidTransition, SpotNotFound
from parkflow.models.events import SensorMeta, SensorTelemetry, TransitionSource
from parkflow.models.parking import ParkingSpot, SpotStatus
from parkflow.models.simulator import SimulatorConfig, SimulatorStats
from parkflow.services.broadcast_service import OccupancyBroadcaster
from parkflow.services.spot_state_machine import SpotStateMachine
from parkflow.utils.helpers import generate_sensor_id, utcnow
from parkflow.utils.scheduler import create_scheduler, ensure_started

# Configure logging
logger = logging.getLogger(__name__)

JOB_ID = "sensor_simulation_tick"
RECOVERY_JOB_PREFIX = "sensor_recovery_"


class SensorSimulator:
    """
    Autonomous writer competing with user requests for the same spots.
    Runs on an APScheduler interval job in the application event loop.
    """

    def __init__(
        self,
        database: Database,
        state_machine: SpotStateMachine,
        broadcaster: OccupancyBroadcaster,
        config: Optional[SimulatorConfig] = None,
        rng: Optional[random.Random] = None,
        scheduler: Optional[AsyncIOScheduler] = None,
    ):
        self.database = database
        self.state_machine = state_machine
        self.broadcaster = broadcaster
        self.scheduler = scheduler
        self._config = config or SimulatorConfig()
        self._rng = rng or random.Random()
        self._is_running = False
        self._started_at: Optional[datetime] = None
        self._ticks = 0
        self._transitions = 0
        self._errors = 0

    @property
    def config(self) -> SimulatorConfig:
        return self._config

    @property
    def is_running(self) -> bool:
        return self._is_running

    # ==================== LIFECYCLE ====================

    def start(self) -> bool:
        """
        Start periodic ticks. Starting a running simulator is a no-op.

        Returns:
            bool: True if the simulator was started by this call
        """
        if self._is_running:
            logger.info("Sensor simulator is already running")
            return False

        self._schedule_ticks(self._config)
        self._is_running = True
        self._started_at = utcnow()
        logger.info(f"Sensor simulator started, interval {self._config.change_interval_seconds}s")
        return True

    def stop(self) -> bool:
        """
        Stop periodic ticks. Stopping a stopped simulator is a no-op.
        Scheduled recoveries still run.

        Returns:
            bool: True if the simulator was stopped by this call
        """
        if not self._is_running:
            logger.info("Sensor simulator is not running")
            return False

        if self.scheduler.get_job(JOB_ID) is not None:
            self.scheduler.remove_job(JOB_ID)
        self._is_running = False
        self._started_at = None
        logger.info("Sensor simulator stopped")
        return True

    def update_config(self, **changes) -> SimulatorConfig:
        """
        Replace the configuration snapshot.
        A running simulator is rescheduled under the new snapshot in place.

        Args:
            **changes: SimulatorConfig fields to change; None values are ignored

        Returns:
            SimulatorConfig: The new snapshot

        Raises:
            pydantic.ValidationError: If the resulting configuration is invalid
        """
        data = self._config.model_dump()
        data.update({key: value for key, value in changes.items() if value is not None})
        new_config = SimulatorConfig(**data)

        self._config = new_config
        if self._is_running:
            self._schedule_ticks(new_config)

        logger.info(f"Sensor simulator configuration updated: {changes}")
        return new_config

    def shutdown(self):
        """Stop ticking and shut the scheduler down."""
        self.stop()
        if self.scheduler is not None and self.scheduler.running:
            self.scheduler.shutdown(wait=False)

    def _get_scheduler(self) -> AsyncIOScheduler:
        if self.scheduler is None:
            self.scheduler = create_scheduler()
        ensure_started(self.scheduler)
        return self.scheduler

    def _schedule_ticks(self, config: SimulatorConfig):
        # replace_existing swaps the job atomically when the config changes
        self._get_scheduler().add_job(
            self.tick,
            trigger=IntervalTrigger(seconds=config.change_interval_seconds),
            kwargs={"config": config},
            id=JOB_ID,
            name="Simulated sensor tick",
            replace_existing=True,
            max_instances=1,
            coalesce=True,
        )

    # ==================== SIMULATION ====================

    async def tick(self, config: Optional[SimulatorConfig] = None) -> Optional[ParkingSpot]:
        """
        Flip one random eligible spot. Errors are logged and swallowed.

        Args:
            config: Snapshot to run under (defaults to the current one)

        Returns:
            ParkingSpot: The transitioned spot, or None if nothing changed
        """
        config = config or self._config
        self._ticks += 1

        try:
            with self.database.session_scope() as db:
                candidates = queries.list_spot_states(db, config.eligible_statuses)

            if not candidates:
                logger.debug("No spots eligible for simulation")
                return None

            spot_id, current = self._rng.choice(candidates)
            target = config.flip_target(SpotStatus(current))
            if target is None:
                return None

            telemetry = self.generate_sensor_data(spot_id, target)
            spot = await self.state_machine.transition(
                spot_id,
                target,
                source=TransitionSource.SENSOR,
                description=(
                    "Vehicle detected by sensor" if target == SpotStatus.OCCUPIED
                    else "Vehicle departure detected by sensor"
                ),
                sensor_meta=SensorMeta(
                    sensor_id=telemetry.sensor_id,
                    confidence=telemetry.confidence,
                    detection_method=telemetry.detection_method,
                ),
                expected_status=SpotStatus(current),
            )
            self.broadcaster.emit_sensor_telemetry(telemetry)
            self._transitions += 1
            return spot

        except Exception as e:
            self._errors += 1
            logger.error(f"Sensor simulation tick failed: {e}", exc_info=True)
            return None

    def generate_sensor_data(self, spot_id: int, status: SpotStatus) -> SensorTelemetry:
        """Synthesize the readings a physical sensor would report for a spot."""
        rng = self._rng
        occupied = status == SpotStatus.OCCUPIED

        return SensorTelemetry(
            sensor_id=generate_sensor_id(spot_id),
            spot_id=spot_id,
            status=status,
            signal_strength=rng.randint(70, 99),
            battery_level=rng.randint(80, 99),
            temperature=rng.randint(20, 29),
            humidity=rng.randint(40, 59),
            last_maintenance=utcnow() - timedelta(seconds=rng.uniform(0, 30 * 24 * 3600)),
            confidence=rng.randint(85, 99) if occupied else rng.randint(75, 94),
            detection_method="object_detected" if occupied else "clear_path",
        )

    # ==================== FAILURE INJECTION ====================

    async def simulate_sensor_failure(self, spot_id: int) -> Optional[ParkingSpot]:
        """
        Force a spot into maintenance and schedule its automatic recovery.

        Args:
            spot_id: The spot whose sensor fails

        Returns:
            ParkingSpot: The spot in maintenance, or None if its current
            status is protected from simulated interference

        Raises:
            SpotNotFound: If the spot does not exist
        """
        config = self._config

        with self.database.session_scope() as db:
            spot = queries.get_spot(db, spot_id)
            if spot is None:
                raise SpotNotFound(f"Parking spot {spot_id} not found")
            current = SpotStatus(spot.status)

        if current in config.protected_statuses:
            logger.warning(f"Spot {spot_id} is {current.value}; sensor failure not simulated")
            return None

        spot = await self.state_machine.transition(
            spot_id,
            SpotStatus.MAINTENANCE,
            source=TransitionSource.SENSOR,
            description="Sensor malfunction detected",
            sensor_meta=SensorMeta(
                sensor_id=generate_sensor_id(spot_id),
                confidence=0,
                detection_method="sensor_failure",
            ),
            expected_status=current,
        )

        run_date = datetime.now(timezone.utc) + timedelta(seconds=config.recovery_delay_seconds)
        self._get_scheduler().add_job(
            self.recover_spot,
            trigger=DateTrigger(run_date=run_date),
            args=[spot_id],
            id=f"{RECOVERY_JOB_PREFIX}{spot_id}",
            name=f"Sensor recovery for spot {spot_id}",
            replace_existing=True,
        )

        logger.warning(f"Sensor failure on spot {spot_id}, recovery at {run_date.isoformat()}")
        return spot

    async def recover_spot(self, spot_id: int) -> Optional[ParkingSpot]:
        """
        Bring a failed sensor's spot back to free.
        No-op unless the spot is still in maintenance.
        """
        try:
            spot = await self.state_machine.transition(
                spot_id,
                SpotStatus.FREE,
                source=TransitionSource.SENSOR,
                description="Sensor recovered",
                expected_status=SpotStatus.MAINTENANCE,
            )
        except (InvalidTransition, SpotNotFound) as e:
            logger.info(f"Recovery of spot {spot_id} skipped: {e.message}")
            return None

        logger.info(f"Sensor on spot {spot_id} recovered")
        return spot

    # ==================== STATISTICS ====================

    def get_stats(self) -> SimulatorStats:
        """Runtime state of the simulator."""
        jobs = self.scheduler.get_jobs() if self.scheduler is not None else []
        job_ids = [job.id for job in jobs]

        return SimulatorStats(
            is_running=self._is_running,
            active_jobs=sum(1 for job_id in job_ids if job_id == JOB_ID),
            pending_recoveries=sum(1 for job_id in job_ids if job_id.startswith(RECOVERY_JOB_PREFIX)),
            ticks=self._ticks,
            transitions=self._transitions,
            errors=self._errors,
            started_at=self._started_at,
            config=self._config,
        )
