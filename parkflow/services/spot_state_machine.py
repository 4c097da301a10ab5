"""
ParkFlow - Spot State Machine
The only path by which a parking spot's status may change.

Allowed transitions:
    free        -> occupied, reserved, maintenance
    occupied    -> free, maintenance
    reserved    -> occupied, free
    maintenance -> free

Every committed transition is reported to the broadcaster.
"""

from typing import Dict, FrozenSet, Optional, Union
import logging

from sqlalchemy.orm import Session

from parkflow.database import queries
from parkflow.database.engine import Database
from parkflow.database.tables import ParkingSpot as SpotRow
from parkflow.exceptions import (
    Conflict,
    Forbidden,
    InvalidTransition,
    SpotNotFound,
)
from parkflow.models.events import SensorMeta, SpotStatusChange, TransitionSource
from parkflow.models.parking import ParkingSpot, SpotStatus, parse_status
from parkflow.models.user import UserRole
from parkflow.services.broadcast_service import OccupancyBroadcaster
from parkflow.utils.locks import KeyedLock

# Configure logging
logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: Dict[SpotStatus, FrozenSet[SpotStatus]] = {
    SpotStatus.FREE: frozenset({SpotStatus.OCCUPIED, SpotStatus.RESERVED, SpotStatus.MAINTENANCE}),
    SpotStatus.OCCUPIED: frozenset({SpotStatus.FREE, SpotStatus.MAINTENANCE}),
    SpotStatus.RESERVED: frozenset({SpotStatus.OCCUPIED, SpotStatus.FREE}),
    SpotStatus.MAINTENANCE: frozenset({SpotStatus.FREE}),
}

# Compare-and-set attempts before giving up on a spot that keeps changing
MAX_CAS_ATTEMPTS = 3


def can_transition(current: SpotStatus, target: SpotStatus) -> bool:
    """Whether (current -> target) is an edge of the transition table."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def validate_transition(current: SpotStatus, target: SpotStatus):
    """
    Raises:
        InvalidTransition: If (current -> target) is not an allowed edge
    """
    if not can_transition(current, target):
        raise InvalidTransition(current, target)


class SpotStateMachine:
    """
    Validates, persists and publishes spot status transitions.

    Writers of one spot are serialized by a per-spot lock and, across
    processes, by a compare-and-set update on the stored status.
    """

    def __init__(
        self,
        database: Database,
        broadcaster: OccupancyBroadcaster,
        spot_locks: Optional[KeyedLock] = None
    ):
        self.database = database
        self.broadcaster = broadcaster
        self.spot_locks = spot_locks or KeyedLock()

    async def transition(
        self,
        spot_id: int,
        target_status: Union[SpotStatus, str],
        source: TransitionSource = TransitionSource.ADMIN,
        actor_id: Optional[str] = None,
        description: Optional[str] = None,
        sensor_meta: Optional[SensorMeta] = None,
        expected_status: Optional[SpotStatus] = None,
    ) -> ParkingSpot:
        """
        Move a spot to a new status.

        Args:
            spot_id: The spot to change
            target_status: Desired status
            source: Initiator class reported with the event
            actor_id: User behind the change, if any
            description: Human-readable reason
            sensor_meta: Sensor details for simulated changes
            expected_status: Only apply if the spot is still in this status

        Returns:
            ParkingSpot: The updated spot

        Raises:
            UnknownStatus: If target_status is not a valid status
            SpotNotFound: If the spot does not exist
            InvalidTransition: If the edge is not allowed from the current status
        """
        target = parse_status(target_status)

        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                event = self.apply_in_transaction(
                    db,
                    spot,
                    target,
                    source=source,
                    actor_id=actor_id,
                    description=description,
                    sensor_meta=sensor_meta,
                    expected_status=expected_status,
                )
                result = ParkingSpot.model_validate(spot)

            # Published under the spot lock so subscribers see commit order
            self.publish(event)

        return result

    def apply_in_transaction(
        self,
        db: Session,
        spot: SpotRow,
        target_status: Union[SpotStatus, str],
        source: TransitionSource,
        actor_id: Optional[str] = None,
        description: Optional[str] = None,
        sensor_meta: Optional[SensorMeta] = None,
        expected_status: Optional[SpotStatus] = None,
        reserved_by_id: Optional[str] = None,
    ) -> SpotStatusChange:
        """
        Validate and write a transition inside a caller-owned transaction.
        The caller must hold the spot lock and publish the returned event
        once the transaction has committed.

        Returns:
            SpotStatusChange: The event describing the committed change
        """
        target = parse_status(target_status)

        for _ in range(MAX_CAS_ATTEMPTS):
            current = SpotStatus(spot.status)

            if expected_status is not None and current != expected_status:
                raise InvalidTransition(
                    current,
                    target,
                    message=f"Spot {spot.code or spot.id} is {current.value}, expected {expected_status.value}",
                )
            validate_transition(current, target)

            marker = reserved_by_id if target == SpotStatus.RESERVED else None
            if queries.compare_and_set_status(db, spot.id, current, target, reserved_by_id=marker):
                db.refresh(spot)
                logger.info(
                    f"Spot {spot.code or spot.id}: {current.value} -> {target.value} "
                    f"[{source.value}]"
                )
                return SpotStatusChange(
                    spot_id=spot.id,
                    code=spot.code,
                    old_status=current,
                    new_status=target,
                    lot_id=spot.parking_lot_id,
                    source=source,
                    actor_id=actor_id,
                    description=description or f"Status changed from {current.value} to {target.value}",
                    sensor_meta=sensor_meta,
                )

            # Another writer got there first: re-validate against its result
            db.refresh(spot)
            logger.warning(f"Spot {spot.id} changed concurrently, now {SpotStatus(spot.status).value}")

        raise InvalidTransition(
            SpotStatus(spot.status),
            target,
            message=f"Spot {spot.id} is being modified concurrently, try again",
        )

    def publish(self, event: Optional[SpotStatusChange]):
        """Report a committed transition. Never raises."""
        if event is None:
            return
        try:
            self.broadcaster.emit_spot_status_change(event)
        except Exception as e:
            logger.error(f"Error broadcasting spot {event.spot_id} change: {e}")

    # ==================== NAMED TRANSITIONS ====================

    async def reserve(self, spot_id: int, user_id: str) -> ParkingSpot:
        """
        Reserve a free spot for a user.

        Raises:
            SpotNotFound: If the spot does not exist
            Conflict: If the user already holds a reservation
            InvalidTransition: If the spot is not free
        """
        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                if not spot.is_active:
                    raise InvalidTransition(message=f"Spot {spot.code or spot.id} is not active")
                validate_transition(SpotStatus(spot.status), SpotStatus.RESERVED)

                existing = queries.find_user_reservation(db, user_id)
                if existing is not None:
                    raise Conflict(f"You already reserved spot {existing.code or existing.id}")

                event = self.apply_in_transaction(
                    db,
                    spot,
                    SpotStatus.RESERVED,
                    source=TransitionSource.USER_ACTION,
                    actor_id=user_id,
                    description="Spot reserved",
                    reserved_by_id=user_id,
                )
                result = ParkingSpot.model_validate(spot)

            self.publish(event)

        logger.info(f"Spot {spot_id} reserved by user {user_id}")
        return result

    async def cancel_reservation(
        self,
        spot_id: int,
        user_id: str,
        role: UserRole = UserRole.USER
    ) -> ParkingSpot:
        """
        Cancel a reservation and free the spot.

        Raises:
            SpotNotFound: If the spot does not exist
            InvalidTransition: If the spot is not reserved
            Forbidden: If the reservation is not the caller's own
        """
        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                current = SpotStatus(spot.status)

                if current != SpotStatus.RESERVED:
                    raise InvalidTransition(
                        current,
                        SpotStatus.FREE,
                        message=f"Spot {spot.code or spot.id} is not reserved",
                    )
                # Unattributed reservations are admin-only
                if role != UserRole.ADMIN and spot.reserved_by_id != user_id:
                    raise Forbidden("You can only cancel your own reservations")

                event = self.apply_in_transaction(
                    db,
                    spot,
                    SpotStatus.FREE,
                    source=TransitionSource.ADMIN if role == UserRole.ADMIN else TransitionSource.USER_ACTION,
                    actor_id=user_id,
                    description="Reservation cancelled",
                    expected_status=SpotStatus.RESERVED,
                )
                result = ParkingSpot.model_validate(spot)

            self.publish(event)

        logger.info(f"Reservation on spot {spot_id} cancelled by {user_id}")
        return result

    async def admin_override(
        self,
        spot_id: int,
        target_status: Union[SpotStatus, str],
        admin_id: Optional[str] = None
    ) -> ParkingSpot:
        """
        Set a spot's status on behalf of an administrator.

        Raises:
            Conflict: If an open session still holds the spot
        """
        target = parse_status(target_status)

        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                current = SpotStatus(spot.status)

                if (
                    current == SpotStatus.OCCUPIED
                    and target != SpotStatus.OCCUPIED
                    and queries.count_open_sessions_for_spot(db, spot.id) > 0
                ):
                    raise Conflict(
                        f"Spot {spot.code or spot.id} has an active session; end the session first"
                    )

                event = self.apply_in_transaction(
                    db,
                    spot,
                    target,
                    source=TransitionSource.ADMIN,
                    actor_id=admin_id,
                    description=f"Status set to {target.value} by administrator",
                )
                result = ParkingSpot.model_validate(spot)

            self.publish(event)

        return result

    def _load_spot(self, db: Session, spot_id: int) -> SpotRow:
        spot = queries.get_spot(db, spot_id)
        if spot is None:
            raise SpotNotFound(f"Parking spot {spot_id} not found")
        return spot
