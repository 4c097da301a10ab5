"""
ParkFlow - Lot Service
Handles parking lot and spot administration, occupancy statistics and
the snapshot sent to late-joining subscribers.
"""

from typing import List, Optional, Dict, Set
import logging

from sqlalchemy import func, or_, select
from sqlalchemy.orm import Session

from parkflow.database import queries
from parkflow.database.engine import Database
from parkflow.database.tables import ParkingLot as LotRow, ParkingSpot as SpotRow
from parkflow.exceptions import Conflict, LotNotFound, SpotNotFound
from parkflow.models.parking import (
    LotStats,
    ParkingLot,
    ParkingLotCreate,
    ParkingLotUpdate,
    ParkingLotWithStats,
    ParkingSpot,
    ParkingSpotCreate,
    ParkingSpotUpdate,
    SpotListResponse,
    SpotSnapshot,
    SpotStatus,
    SpotType,
)
from parkflow.services.broadcast_service import OccupancyBroadcaster
from parkflow.utils.helpers import build_pagination, generate_spot_code, normalize_page
from parkflow.utils.locks import KeyedLock

# Configure logging
logger = logging.getLogger(__name__)


def compute_lot_stats(db: Session, lot_id: int) -> LotStats:
    """
    Occupancy statistics over the active spots of a lot.

    Args:
        db: Open database session
        lot_id: The lot to summarize

    Returns:
        LotStats: Counts per status, occupancy rate and per-type breakdown
    """
    counts = queries.spot_status_counts(db, lot_id)
    per_status: Dict[SpotStatus, int] = {status: 0 for status in SpotStatus}
    by_spot_type: Dict[str, Dict[str, int]] = {}

    for (spot_type, status), count in counts.items():
        per_status[status] += count
        entry = by_spot_type.setdefault(spot_type, {"total": 0, "available": 0, "occupied": 0})
        entry["total"] += count
        if status == SpotStatus.FREE:
            entry["available"] += count
        elif status == SpotStatus.OCCUPIED:
            entry["occupied"] += count

    total = sum(per_status.values())
    occupied = per_status[SpotStatus.OCCUPIED]

    return LotStats(
        total=total,
        available=per_status[SpotStatus.FREE],
        occupied=occupied,
        reserved=per_status[SpotStatus.RESERVED],
        maintenance=per_status[SpotStatus.MAINTENANCE],
        occupancy_rate=round(occupied / total * 100, 2) if total else 0.0,
        by_spot_type=by_spot_type,
    )


class LotService:
    """
    Service class for lot and spot administration.
    Spot status is never written here; the state machine owns it.
    """

    def __init__(
        self,
        database: Database,
        broadcaster: OccupancyBroadcaster,
        spot_locks: Optional[KeyedLock] = None,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ):
        self.database = database
        self.broadcaster = broadcaster
        self.spot_locks = spot_locks or KeyedLock()
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    # ==================== LOTS ====================

    async def create_lot(self, lot_create: ParkingLotCreate) -> ParkingLot:
        """
        Create a new parking lot (admin only).

        Raises:
            Conflict: If a lot with the same name exists
        """
        with self.database.session_scope() as db:
            existing = db.scalar(select(LotRow).where(LotRow.name == lot_create.name))
            if existing is not None:
                raise Conflict(f"A parking lot named '{lot_create.name}' already exists")

            lot = LotRow(**lot_create.model_dump())
            db.add(lot)
            db.flush()
            result = ParkingLot.model_validate(lot)

        logger.info(f"Created parking lot {result.id}: {result.name}")
        return result

    async def get_lot(self, lot_id: int) -> ParkingLotWithStats:
        """
        Get a lot with its current statistics.

        Raises:
            LotNotFound: If the lot does not exist
        """
        with self.database.session_scope() as db:
            lot = self._load_lot(db, lot_id)
            return ParkingLotWithStats(
                **ParkingLot.model_validate(lot).model_dump(),
                statistics=compute_lot_stats(db, lot.id),
            )

    async def list_lots(
        self,
        is_active: Optional[bool] = None,
        search: Optional[str] = None,
    ) -> List[ParkingLotWithStats]:
        """
        Lots with their statistics, ordered by name.

        Args:
            is_active: Only lots with this active flag (all lots when None)
            search: Case-insensitive match on name or location
        """
        query = select(LotRow).order_by(LotRow.name)
        if is_active is not None:
            query = query.where(LotRow.is_active.is_(is_active))
        if search:
            pattern = f"%{search.strip()}%"
            query = query.where(or_(LotRow.name.ilike(pattern), LotRow.location.ilike(pattern)))

        with self.database.session_scope() as db:
            return [
                ParkingLotWithStats(
                    **ParkingLot.model_validate(lot).model_dump(),
                    statistics=compute_lot_stats(db, lot.id),
                )
                for lot in db.scalars(query)
            ]

    async def update_lot(self, lot_id: int, lot_update: ParkingLotUpdate) -> ParkingLot:
        """
        Update lot details (admin only): name, location, description, active flag.

        Args:
            lot_id: The lot to change
            lot_update: Fields to change; unset fields are kept

        Returns:
            ParkingLot: The updated lot

        Raises:
            LotNotFound: If the lot does not exist
            Conflict: If another lot already has the new name
        """
        changes = lot_update.model_dump(exclude_unset=True, exclude_none=True)

        with self.database.session_scope() as db:
            lot = self._load_lot(db, lot_id)

            if "name" in changes and changes["name"] != lot.name:
                existing = db.scalar(
                    select(LotRow).where(LotRow.name == changes["name"], LotRow.id != lot_id)
                )
                if existing is not None:
                    raise Conflict(f"A parking lot named '{changes['name']}' already exists")

            for field, value in changes.items():
                setattr(lot, field, value)
            db.flush()

            queries.recompute_lot_total(db, lot_id)
            db.refresh(lot)
            result = ParkingLot.model_validate(lot)

        logger.info(f"Updated parking lot {lot_id}: {list(changes)}")
        return result

    async def delete_lot(self, lot_id: int) -> bool:
        """
        Delete a lot together with its spots and their closed sessions.

        Raises:
            LotNotFound: If the lot does not exist
            Conflict: If any spot of the lot has an open session
        """
        with self.database.session_scope() as db:
            lot = self._load_lot(db, lot_id)
            open_sessions = queries.count_open_sessions_for_lot(db, lot_id)
            if open_sessions:
                raise Conflict(f"Parking lot {lot_id} has {open_sessions} active session(s)")
            db.delete(lot)

        logger.info(f"Deleted parking lot {lot_id}")
        return True

    async def lot_stats(self, lot_id: int) -> LotStats:
        """
        Current statistics of a lot.

        Raises:
            LotNotFound: If the lot does not exist
        """
        with self.database.session_scope() as db:
            self._load_lot(db, lot_id)
            return compute_lot_stats(db, lot_id)

    async def broadcast_all_stats(self) -> int:
        """Publish the statistics of every active lot. Returns the lot count."""
        with self.database.session_scope() as db:
            lot_ids = list(db.scalars(select(LotRow.id).where(LotRow.is_active.is_(True))))
            stats = {lot_id: compute_lot_stats(db, lot_id) for lot_id in lot_ids}

        for lot_id, lot_stats in stats.items():
            self.broadcaster.emit_lot_stats(lot_id, lot_stats)
        return len(stats)

    # ==================== SPOTS ====================

    async def create_spot(self, spot_create: ParkingSpotCreate, created_by: Optional[str] = None) -> ParkingSpot:
        """
        Create a new parking spot (admin only). New spots start free.

        Args:
            spot_create: Lot and type of the new spot
            created_by: Administrator creating the spot

        Returns:
            ParkingSpot: The created spot with its final code

        Raises:
            LotNotFound: If the lot does not exist
        """
        with self.database.session_scope() as db:
            self._load_lot(db, spot_create.parking_lot_id)

            spot = SpotRow(
                code=generate_spot_code(spot_create.spot_type),
                spot_type=spot_create.spot_type,
                status=SpotStatus.FREE,
                parking_lot_id=spot_create.parking_lot_id,
                created_by=created_by,
            )
            db.add(spot)
            db.flush()

            # The code embeds the id, known only after insert
            spot.code = generate_spot_code(spot.spot_type, spot.id)
            db.flush()

            queries.recompute_lot_total(db, spot.parking_lot_id)
            result = ParkingSpot.model_validate(spot)
            stats = compute_lot_stats(db, spot.parking_lot_id)

        self.broadcaster.emit_lot_stats(result.parking_lot_id, stats)
        logger.info(f"Created parking spot {result.code} in lot {result.parking_lot_id}")
        return result

    async def get_spot(self, spot_id: int) -> ParkingSpot:
        """
        Get a single parking spot by ID.

        Raises:
            SpotNotFound: If the spot does not exist
        """
        with self.database.session_scope() as db:
            return ParkingSpot.model_validate(self._load_spot(db, spot_id))

    async def list_spots(
        self,
        lot_id: Optional[int] = None,
        status: Optional[SpotStatus] = None,
        spot_type: Optional[SpotType] = None,
        active_only: bool = True,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> SpotListResponse:
        """Filtered, paginated spot listing ordered by id."""
        page, limit, offset = normalize_page(page, limit or self.default_page_size, self.max_page_size)

        query = select(SpotRow).order_by(SpotRow.id)
        if lot_id is not None:
            query = query.where(SpotRow.parking_lot_id == lot_id)
        if status is not None:
            query = query.where(SpotRow.status == status)
        if spot_type is not None:
            query = query.where(SpotRow.spot_type == spot_type)
        if active_only:
            query = query.where(SpotRow.is_active.is_(True))

        with self.database.session_scope() as db:
            if lot_id is not None:
                self._load_lot(db, lot_id)
            rows, total = queries.paginate(db, query, offset, limit)
            spots = [ParkingSpot.model_validate(row) for row in rows]

        return SpotListResponse(spots=spots, pagination=build_pagination(total, page, limit))

    async def update_spot(self, spot_id: int, spot_update: ParkingSpotUpdate) -> ParkingSpot:
        """
        Update spot details (admin only): type, lot membership, active flag.

        Raises:
            SpotNotFound: If the spot does not exist
            LotNotFound: If the target lot does not exist
            Conflict: If an open session holds a spot being moved or deactivated
        """
        changes = spot_update.model_dump(exclude_unset=True, exclude_none=True)

        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                affected_lots: Set[int] = {spot.parking_lot_id}

                moving = "parking_lot_id" in changes and changes["parking_lot_id"] != spot.parking_lot_id
                deactivating = changes.get("is_active") is False and spot.is_active
                if (moving or deactivating) and queries.count_open_sessions_for_spot(db, spot.id):
                    raise Conflict(f"Spot {spot.code} has an active session")

                if moving:
                    self._load_lot(db, changes["parking_lot_id"])
                    affected_lots.add(changes["parking_lot_id"])
                if "spot_type" in changes and changes["spot_type"] != spot.spot_type:
                    changes["code"] = generate_spot_code(changes["spot_type"], spot.id)

                for field, value in changes.items():
                    setattr(spot, field, value)
                db.flush()

                for lot_id in affected_lots:
                    queries.recompute_lot_total(db, lot_id)
                result = ParkingSpot.model_validate(spot)
                stats = {lot_id: compute_lot_stats(db, lot_id) for lot_id in affected_lots}

        for lot_id, lot_stats in stats.items():
            self.broadcaster.emit_lot_stats(lot_id, lot_stats)

        logger.info(f"Updated parking spot {spot_id}: {list(changes)}")
        return result

    async def delete_spot(self, spot_id: int) -> bool:
        """
        Delete a parking spot (admin only).

        Raises:
            SpotNotFound: If the spot does not exist
            Conflict: If an open session holds the spot
        """
        async with self.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                spot = self._load_spot(db, spot_id)
                if queries.count_open_sessions_for_spot(db, spot.id):
                    raise Conflict(f"Spot {spot.code} has an active session")

                lot_id = spot.parking_lot_id
                db.delete(spot)
                db.flush()
                queries.recompute_lot_total(db, lot_id)
                stats = compute_lot_stats(db, lot_id)

        self.broadcaster.emit_lot_stats(lot_id, stats)
        logger.info(f"Deleted parking spot {spot_id}")
        return True

    async def snapshot(self, lot_id: Optional[int] = None) -> List[SpotSnapshot]:
        """Current status of every active spot, for late-joining subscribers."""
        with self.database.session_scope() as db:
            return [SpotSnapshot.model_validate(spot) for spot in queries.list_active_spots(db, lot_id)]

    async def count_lots(self) -> int:
        with self.database.session_scope() as db:
            return db.scalar(select(func.count(LotRow.id))) or 0

    # ==================== HELPERS ====================

    def _load_lot(self, db: Session, lot_id: int) -> LotRow:
        lot = db.get(LotRow, lot_id)
        if lot is None:
            raise LotNotFound(f"Parking lot {lot_id} not found")
        return lot

    def _load_spot(self, db: Session, spot_id: int) -> SpotRow:
        spot = queries.get_spot(db, spot_id)
        if spot is None:
            raise SpotNotFound(f"Parking spot {spot_id} not found")
        return spot
