"""
ParkFlow - Database Queries
Reusable reads and guarded writes used by the service layer.
All functions take an open SQLAlchemy session and never commit.
"""

from typing import Optional, List, Dict, Iterable, Tuple
from datetime import datetime
from decimal import Decimal

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from parkflow.database.tables import ParkingLot, ParkingSession, ParkingSpot, User
from parkflow.models.parking import SpotStatus
from parkflow.models.user import UserRole
from parkflow.utils.helpers import utcnow

_UNSET = object()


# ==================== USERS ====================

def upsert_user(
    db: Session,
    uid: str,
    email: Optional[str] = None,
    display_name: Optional[str] = None,
    role: Optional[UserRole] = None,
) -> User:
    """
    Create or refresh a user row.
    An existing role is only changed when `role` is given.
    """
    user = db.get(User, uid)
    if user is None:
        user = User(uid=uid, role=role or UserRole.USER)
        db.add(user)
    elif role is not None:
        user.role = role

    if email is not None:
        user.email = email
    if display_name is not None:
        user.display_name = display_name
    user.last_login = utcnow()
    db.flush()
    return user


# ==================== SPOTS ====================

def get_spot(db: Session, spot_id: int) -> Optional[ParkingSpot]:
    return db.get(ParkingSpot, spot_id)


def compare_and_set_status(
    db: Session,
    spot_id: int,
    expected: SpotStatus,
    new_status: SpotStatus,
    reserved_by_id=_UNSET,
) -> bool:
    """
    Atomically move a spot from `expected` to `new_status`.

    Returns:
        bool: False if the stored status no longer equals `expected`
    """
    values = {"status": new_status, "updated_at": utcnow()}
    if reserved_by_id is not _UNSET:
        values["reserved_by_id"] = reserved_by_id

    result = db.execute(
        update(ParkingSpot)
        .where(ParkingSpot.id == spot_id, ParkingSpot.status == expected)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def list_spot_states(
    db: Session,
    statuses: Optional[Iterable[SpotStatus]] = None,
    active_only: bool = True,
) -> List[Tuple[int, SpotStatus]]:
    """(id, status) pairs of spots, optionally filtered by status."""
    query = select(ParkingSpot.id, ParkingSpot.status).order_by(ParkingSpot.id)
    if active_only:
        query = query.where(ParkingSpot.is_active.is_(True))
    if statuses is not None:
        query = query.where(ParkingSpot.status.in_(list(statuses)))
    return [(row.id, row.status) for row in db.execute(query)]


def list_active_spots(db: Session, lot_id: Optional[int] = None) -> List[ParkingSpot]:
    query = select(ParkingSpot).where(ParkingSpot.is_active.is_(True)).order_by(ParkingSpot.id)
    if lot_id is not None:
        query = query.where(ParkingSpot.parking_lot_id == lot_id)
    return list(db.scalars(query))


def find_user_reservation(db: Session, user_id: str) -> Optional[ParkingSpot]:
    return db.scalars(
        select(ParkingSpot).where(
            ParkingSpot.reserved_by_id == user_id,
            ParkingSpot.status == SpotStatus.RESERVED,
        )
    ).first()


def count_active_spots(db: Session, lot_id: int) -> int:
    return db.scalar(
        select(func.count(ParkingSpot.id)).where(
            ParkingSpot.parking_lot_id == lot_id,
            ParkingSpot.is_active.is_(True),
        )
    ) or 0


def recompute_lot_total(db: Session, lot_id: int) -> int:
    """Refresh the denormalized active-spot count of a lot."""
    total = count_active_spots(db, lot_id)
    db.execute(
        update(ParkingLot)
        .where(ParkingLot.id == lot_id)
        .values(total_spots=total, updated_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    return total


def spot_status_counts(db: Session, lot_id: int) -> Dict[Tuple[str, SpotStatus], int]:
    """Active spot counts of a lot keyed by (spot_type, status)."""
    rows = db.execute(
        select(ParkingSpot.spot_type, ParkingSpot.status, func.count(ParkingSpot.id))
        .where(ParkingSpot.parking_lot_id == lot_id, ParkingSpot.is_active.is_(True))
        .group_by(ParkingSpot.spot_type, ParkingSpot.status)
    )
    return {(spot_type.value, status): count for spot_type, status, count in rows}


# ==================== SESSIONS ====================

def find_open_session_for_user(db: Session, user_id: str) -> Optional[ParkingSession]:
    return db.scalars(
        select(ParkingSession).where(
            ParkingSession.user_id == user_id,
            ParkingSession.end_time.is_(None),
        )
    ).first()


def count_open_sessions_for_spot(db: Session, spot_id: int) -> int:
    return db.scalar(
        select(func.count(ParkingSession.id)).where(
            ParkingSession.parking_spot_id == spot_id,
            ParkingSession.end_time.is_(None),
        )
    ) or 0


def count_open_sessions_for_lot(db: Session, lot_id: int) -> int:
    return db.scalar(
        select(func.count(ParkingSession.id))
        .join(ParkingSpot, ParkingSpot.id == ParkingSession.parking_spot_id)
        .where(
            ParkingSpot.parking_lot_id == lot_id,
            ParkingSession.end_time.is_(None),
        )
    ) or 0


def close_session(
    db: Session,
    session_id: int,
    end_time: datetime,
    total_amount: Optional[Decimal] = None,
) -> bool:
    """
    Set the end time of an open session.

    Returns:
        bool: False if the session was already closed
    """
    values = {"end_time": end_time, "updated_at": utcnow()}
    if total_amount is not None:
        values["total_amount"] = total_amount

    result = db.execute(
        update(ParkingSession)
        .where(ParkingSession.id == session_id, ParkingSession.end_time.is_(None))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


def session_filter_query(
    status: str = "all",
    user_id: Optional[str] = None,
    lot_id: Optional[int] = None,
    start_date: Optional[datetime] = None,
    end_date: Optional[datetime] = None,
):
    """Build a filtered SELECT over sessions, newest first."""
    query = select(ParkingSession)

    if status == "active":
        query = query.where(ParkingSession.end_time.is_(None))
    elif status == "completed":
        query = query.where(ParkingSession.end_time.is_not(None))

    if user_id is not None:
        query = query.where(ParkingSession.user_id == user_id)
    if lot_id is not None:
        query = query.join(ParkingSpot, ParkingSpot.id == ParkingSession.parking_spot_id).where(
            ParkingSpot.parking_lot_id == lot_id
        )
    if start_date is not None:
        query = query.where(ParkingSession.start_time >= start_date)
    if end_date is not None:
        query = query.where(ParkingSession.start_time <= end_date)

    return query.order_by(ParkingSession.start_time.desc(), ParkingSession.id.desc())


def paginate(db: Session, query, offset: int, limit: int) -> Tuple[list, int]:
    """Run a SELECT with offset/limit and return (rows, total_count)."""
    total = db.scalar(select(func.count()).select_from(query.order_by(None).subquery())) or 0
    rows = list(db.scalars(query.offset(offset).limit(limit)))
    return rows, total
