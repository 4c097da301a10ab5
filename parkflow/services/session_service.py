"""
ParkFlow - Session Lifecycle Manager
Starts and ends parking sessions and keeps each session consistent with
its spot's status. A user holds at most one open session at a time.
"""

from typing import Optional, Callable
from datetime import datetime, timedelta
from decimal import Decimal
import logging

from sqlalchemy.exc import IntegrityError

from parkflow.database import queries
from parkflow.database.engine import Database
from parkflow.database.tables import ParkingSession as SessionRow, User
from parkflow.exceptions import (
    Forbidden,
    SessionAlreadyActive,
    SessionAlreadyEnded,
    SessionNotFound,
    SpotNotFound,
    SpotUnavailable,
    UserNotFound,
)
from parkflow.models.events import TransitionSource
from parkflow.models.parking import SpotStatus
from parkflow.models.session import (
    ParkingSession,
    SessionListResponse,
    SessionStats,
    SessionStatusFilter,
    SessionType,
)
from parkflow.models.user import UserRole
from parkflow.services.spot_state_machine import SpotStateMachine
from parkflow.utils.helpers import (
    build_pagination,
    calculate_duration,
    normalize_page,
    to_naive_utc,
    utcnow,
)
from parkflow.utils.locks import KeyedLock

# Configure logging
logger = logging.getLogger(__name__)

STATS_PERIODS = {"1d": 1, "7d": 7, "30d": 30}


class SessionLifecycleManager:
    """
    Service class for parking session operations.
    Session writes and the matching spot transition share one transaction.
    """

    def __init__(
        self,
        database: Database,
        state_machine: SpotStateMachine,
        user_locks: Optional[KeyedLock] = None,
        clock: Callable[[], datetime] = utcnow,
        default_page_size: int = 10,
        max_page_size: int = 100,
    ):
        self.database = database
        self.state_machine = state_machine
        self.user_locks = user_locks or KeyedLock()
        self.clock = clock
        self.default_page_size = default_page_size
        self.max_page_size = max_page_size

    async def start_session(
        self,
        user_id: str,
        spot_id: int,
        notes: Optional[str] = None
    ) -> ParkingSession:
        """
        Start occupying a spot.

        Args:
            user_id: The user arriving
            spot_id: The spot to occupy
            notes: Optional free text

        Returns:
            ParkingSession: The newly opened session

        Raises:
            SpotNotFound: If the spot does not exist
            SpotUnavailable: If the spot is neither free nor reserved by this user
            SessionAlreadyActive: If the user already has an open session
        """
        # Lock order: user, then spot
        async with self.user_locks.hold(user_id):
            async with self.state_machine.spot_locks.hold(spot_id):
                with self.database.session_scope() as db:
                    spot = queries.get_spot(db, spot_id)
                    if spot is None:
                        raise SpotNotFound(f"Parking spot {spot_id} not found")
                    if db.get(User, user_id) is None:
                        raise UserNotFound(f"User {user_id} not found")

                    reserved_for_user = (
                        spot.status == SpotStatus.RESERVED and spot.reserved_by_id == user_id
                    )
                    if not spot.is_active or not (spot.status == SpotStatus.FREE or reserved_for_user):
                        raise SpotUnavailable(
                            f"Spot {spot.code or spot.id} is not available ({SpotStatus(spot.status).value})"
                        )

                    if queries.find_open_session_for_user(db, user_id) is not None:
                        raise SessionAlreadyActive("You already have an active parking session")

                    now = self.clock()
                    row = SessionRow(
                        user_id=user_id,
                        parking_spot_id=spot.id,
                        start_time=now,
                        end_time=None,
                        session_type=SessionType.RESERVED if reserved_for_user else SessionType.WALK_IN,
                        notes=notes,
                    )
                    db.add(row)
                    try:
                        db.flush()
                    except IntegrityError:
                        # Partial unique index on open sessions per user
                        raise SessionAlreadyActive("You already have an active parking session")

                    event = self.state_machine.apply_in_transaction(
                        db,
                        spot,
                        SpotStatus.OCCUPIED,
                        source=TransitionSource.USER_ACTION,
                        actor_id=user_id,
                        description=f"Session started by user {user_id}",
                        expected_status=SpotStatus(spot.status),
                    )
                    result = ParkingSession.from_row(row, now=now)

                self.state_machine.publish(event)

        logger.info(f"Session {result.id} started: user={user_id}, spot={spot_id}")
        return result

    async def end_session(
        self,
        session_id: int,
        requester_id: str,
        requester_role: UserRole = UserRole.USER,
        total_amount: Optional[Decimal] = None,
    ) -> ParkingSession:
        """
        Close a session and free its spot.

        Args:
            session_id: The session to close
            requester_id: Caller identity
            requester_role: Caller role; admins may close any session
            total_amount: Optional amount charged

        Returns:
            ParkingSession: The closed session with its final duration

        Raises:
            SessionNotFound: If the session does not exist
            SessionAlreadyEnded: If the session is already closed
            Forbidden: If the caller is neither the owner nor an admin
        """
        with self.database.session_scope() as db:
            row = db.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(f"Parking session {session_id} not found")
            spot_id = row.parking_spot_id

        async with self.state_machine.spot_locks.hold(spot_id):
            with self.database.session_scope() as db:
                row = db.get(SessionRow, session_id)
                if row is None:
                    raise SessionNotFound(f"Parking session {session_id} not found")
                if row.end_time is not None:
                    raise SessionAlreadyEnded("This session has already ended")
                if row.user_id != requester_id and requester_role != UserRole.ADMIN:
                    raise Forbidden("You do not have permission to end this session")

                now = self.clock()
                if not queries.close_session(db, session_id, now, total_amount):
                    raise SessionAlreadyEnded("This session has already ended")
                db.refresh(row)

                event = None
                spot = queries.get_spot(db, spot_id)
                if spot is not None and spot.status == SpotStatus.OCCUPIED:
                    event = self.state_machine.apply_in_transaction(
                        db,
                        spot,
                        SpotStatus.FREE,
                        source=TransitionSource.USER_ACTION,
                        actor_id=requester_id,
                        description=f"Session {session_id} ended",
                        expected_status=SpotStatus.OCCUPIED,
                    )
                elif spot is not None:
                    logger.warning(
                        f"Session {session_id} ended while spot {spot_id} is "
                        f"{SpotStatus(spot.status).value}; spot left unchanged"
                    )
                result = ParkingSession.from_row(row)

            self.state_machine.publish(event)

        logger.info(f"Session {session_id} ended after {result.duration.formatted}")
        return result

    async def get_active_session(self, user_id: str) -> Optional[ParkingSession]:
        """Return the user's open session, or None."""
        with self.database.session_scope() as db:
            row = queries.find_open_session_for_user(db, user_id)
            if row is None:
                return None
            return ParkingSession.from_row(row, now=self.clock())

    async def get_session(
        self,
        session_id: int,
        requester_id: str,
        requester_role: UserRole = UserRole.USER
    ) -> ParkingSession:
        """
        Get a session visible to the caller.

        Raises:
            SessionNotFound: If the session does not exist
            Forbidden: If the caller is neither the owner nor an admin
        """
        with self.database.session_scope() as db:
            row = db.get(SessionRow, session_id)
            if row is None:
                raise SessionNotFound(f"Parking session {session_id} not found")
            if row.user_id != requester_id and requester_role != UserRole.ADMIN:
                raise Forbidden("You do not have permission to view this session")
            return ParkingSession.from_row(row, now=self.clock())

    async def list_user_sessions(
        self,
        user_id: str,
        status: SessionStatusFilter = SessionStatusFilter.ALL,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> SessionListResponse:
        """Sessions of one user, newest first."""
        return await self.list_sessions(status=status, user_id=user_id, page=page, limit=limit)

    async def list_sessions(
        self,
        status: SessionStatusFilter = SessionStatusFilter.ALL,
        user_id: Optional[str] = None,
        lot_id: Optional[int] = None,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        page: int = 1,
        limit: Optional[int] = None,
    ) -> SessionListResponse:
        """Filtered, paginated session listing."""
        page, limit, offset = normalize_page(page, limit or self.default_page_size, self.max_page_size)
        query = queries.session_filter_query(
            status=SessionStatusFilter(status).value,
            user_id=user_id,
            lot_id=lot_id,
            start_date=to_naive_utc(start_date),
            end_date=to_naive_utc(end_date),
        )

        with self.database.session_scope() as db:
            rows, total = queries.paginate(db, query, offset, limit)
            now = self.clock()
            sessions = [ParkingSession.from_row(row, now=now) for row in rows]

        return SessionListResponse(
            sessions=sessions,
            pagination=build_pagination(total, page, limit),
        )

    async def session_stats(self, lot_id: Optional[int] = None, period: str = "7d") -> SessionStats:
        """
        Session counts and average completed duration over a period.
        Unknown periods fall back to 7 days.
        """
        days = STATS_PERIODS.get(period, 7)
        now = self.clock()
        since = now - timedelta(days=days)

        with self.database.session_scope() as db:
            rows = list(db.scalars(queries.session_filter_query(lot_id=lot_id, start_date=since)))

        completed = [row for row in rows if row.end_time is not None]
        durations = [
            calculate_duration(row.start_time, row.end_time)["total_minutes"] for row in completed
        ]
        average = round(sum(durations) / len(durations)) if durations else 0

        return SessionStats(
            period=period if period in STATS_PERIODS else "7d",
            parking_lot_id=lot_id,
            total_sessions=len(rows),
            active_sessions=len(rows) - len(completed),
            completed_sessions=len(completed),
            average_duration_minutes=average,
            generated_at=now,
        )
