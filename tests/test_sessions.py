"""
ParkFlow - Session Lifecycle Tests
Tests for starting and ending sessions and their effect on spots.

Run: pytest tests/test_sessions.py -v
"""

import asyncio
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import patch
import pytest

from parkflow.database import queries
from parkflow.database.tables import ParkingSession as SessionRow
from parkflow.exceptions import (
    Conflict,
    Forbidden,
    SessionAlreadyActive,
    SessionAlreadyEnded,
    SessionNotFound,
    SpotNotFound,
    SpotUnavailable,
)
from parkflow.models.parking import SpotStatus
from parkflow.models.session import SessionStatusFilter, SessionType
from parkflow.models.user import UserRole


START = datetime(2024, 5, 1, 8, 0, 0)


@pytest.fixture
def clock(services):
    """Controllable clock for the session manager."""
    now = {"value": START}
    services.sessions.clock = lambda: now["value"]
    return now


class TestStartSession:
    """Tests for start_session."""

    def test_start_occupies_spot(self, services, lot_id, make_spot, make_user, spot_status, events):
        """
        Test: Start a session on a free spot
        Expected: Session open, spot occupied, one user_action event
        """
        user = make_user()
        spot_id = make_spot(lot_id)

        session = asyncio.run(services.sessions.start_session(user, spot_id, notes="Blue hatchback"))

        assert session.is_active
        assert session.end_time is None
        assert session.session_type == SessionType.WALK_IN
        assert session.notes == "Blue hatchback"
        assert spot_status(spot_id) == SpotStatus.OCCUPIED
        assert len(events) == 1
        assert events[0]["data"]["new_status"] == "occupied"
        assert events[0]["data"]["source"] == "user_action"

    def test_start_on_own_reservation(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Start a session on the user's own reservation
        Expected: Reserved session type, marker cleared
        """
        user = make_user()
        spot_id = make_spot(lot_id)
        asyncio.run(services.state_machine.reserve(spot_id, user))

        session = asyncio.run(services.sessions.start_session(user, spot_id))

        assert session.session_type == SessionType.RESERVED
        assert spot_status(spot_id) == SpotStatus.OCCUPIED
        spot = asyncio.run(services.lots.get_spot(spot_id))
        assert spot.reserved_by_id is None

    def test_start_on_someone_elses_reservation(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Start a session on another user's reservation
        Expected: SpotUnavailable, spot stays reserved
        """
        owner = make_user("owner")
        other = make_user("other")
        spot_id = make_spot(lot_id)
        asyncio.run(services.state_machine.reserve(spot_id, owner))

        with pytest.raises(SpotUnavailable):
            asyncio.run(services.sessions.start_session(other, spot_id))
        assert spot_status(spot_id) == SpotStatus.RESERVED

    @pytest.mark.parametrize("status", [SpotStatus.OCCUPIED, SpotStatus.MAINTENANCE])
    def test_start_on_unavailable_spot(self, services, lot_id, make_spot, make_user, status):
        """
        Test: Start a session on an occupied or maintenance spot
        Expected: SpotUnavailable
        """
        user = make_user()
        spot_id = make_spot(lot_id, status=status)

        with pytest.raises(SpotUnavailable):
            asyncio.run(services.sessions.start_session(user, spot_id))

    def test_start_on_inactive_spot(self, services, lot_id, make_spot, make_user):
        """
        Test: Start a session on a deactivated spot
        Expected: SpotUnavailable
        """
        user = make_user()
        spot_id = make_spot(lot_id, is_active=False)

        with pytest.raises(SpotUnavailable):
            asyncio.run(services.sessions.start_session(user, spot_id))

    def test_start_on_unknown_spot(self, services, make_user):
        user = make_user()

        with pytest.raises(SpotNotFound):
            asyncio.run(services.sessions.start_session(user, 404))

    def test_second_session_rejected_then_end(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Second start while a session is open, then end the first
        Expected: SessionAlreadyActive, second spot free, first spot freed on end
        """
        user = make_user()
        first = make_spot(lot_id)
        second = make_spot(lot_id)

        session = asyncio.run(services.sessions.start_session(user, first))
        assert spot_status(first) == SpotStatus.OCCUPIED

        with pytest.raises(SessionAlreadyActive):
            asyncio.run(services.sessions.start_session(user, second))
        assert spot_status(second) == SpotStatus.FREE

        ended = asyncio.run(services.sessions.end_session(session.id, user))
        assert not ended.is_active
        assert ended.duration.total_minutes >= 0
        assert spot_status(first) == SpotStatus.FREE

    def test_concurrent_starts_one_wins(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Five concurrent starts by one user
        Expected: Exactly one session and one occupied spot
        """
        user = make_user()
        spots = [make_spot(lot_id) for _ in range(5)]

        async def start_all():
            return await asyncio.gather(
                *(services.sessions.start_session(user, spot_id) for spot_id in spots),
                return_exceptions=True,
            )

        results = asyncio.run(start_all())

        successes = [r for r in results if not isinstance(r, Exception)]
        failures = [r for r in results if isinstance(r, Exception)]
        assert len(successes) == 1
        assert all(isinstance(f, SessionAlreadyActive) for f in failures)
        assert sum(1 for s in spots if spot_status(s) == SpotStatus.OCCUPIED) == 1

        active = asyncio.run(services.sessions.list_sessions(status=SessionStatusFilter.ACTIVE, user_id=user))
        assert active.pagination.total_items == 1

    def test_open_session_index_backs_up_lookup(self, services, lot_id, make_spot, make_user, spot_status, events):
        """
        Test: Open session exists but the lookup misses it, so the insert hits the unique index
        Expected: SessionAlreadyActive, new spot stays free, nothing published
        """
        user = make_user()
        held = make_spot(lot_id, status=SpotStatus.OCCUPIED)
        spot_id = make_spot(lot_id)
        with services.database.session_scope() as db:
            db.add(SessionRow(user_id=user, parking_spot_id=held, start_time=START))

        with patch.object(queries, "find_open_session_for_user", return_value=None):
            with pytest.raises(SessionAlreadyActive):
                asyncio.run(services.sessions.start_session(user, spot_id))

        assert spot_status(spot_id) == SpotStatus.FREE
        assert events == []

    def test_second_open_row_violates_index(self, services, lot_id, make_spot, make_user):
        """
        Test: Insert two open sessions for one user directly
        Expected: Conflict from the unique index; a closed session alongside is fine
        """
        user = make_user()
        first = make_spot(lot_id)
        second = make_spot(lot_id)
        with services.database.session_scope() as db:
            db.add(SessionRow(user_id=user, parking_spot_id=first, start_time=START, end_time=START))
            db.add(SessionRow(user_id=user, parking_spot_id=first, start_time=START))

        with pytest.raises(Conflict):
            with services.database.session_scope() as db:
                db.add(SessionRow(user_id=user, parking_spot_id=second, start_time=START))


class TestEndSession:
    """Tests for end_session."""

    def test_ninety_minute_duration(self, services, lot_id, make_spot, make_user, clock):
        """
        Test: End a session ninety minutes after it started
        Expected: Duration 1h 30m, amount recorded
        """
        user = make_user()
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(user, spot_id))

        clock["value"] = START + timedelta(minutes=90)
        ended = asyncio.run(services.sessions.end_session(session.id, user, total_amount=Decimal("4.50")))

        assert ended.duration.total_minutes == 90
        assert ended.duration.hours == 1
        assert ended.duration.minutes == 30
        assert ended.duration.formatted == "1h 30m"
        assert ended.total_amount == Decimal("4.50")

    def test_repeat_end_rejected(self, services, lot_id, make_spot, make_user, events):
        """
        Test: End an already ended session twice more
        Expected: SessionAlreadyEnded each time, nothing published
        """
        user = make_user()
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(user, spot_id))
        asyncio.run(services.sessions.end_session(session.id, user))
        published = len(events)

        for _ in range(2):
            with pytest.raises(SessionAlreadyEnded):
                asyncio.run(services.sessions.end_session(session.id, user))
        assert len(events) == published

    def test_unknown_session(self, services, make_user):
        with pytest.raises(SessionNotFound):
            asyncio.run(services.sessions.end_session(12345, make_user()))

    def test_other_user_forbidden(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: End another user's session
        Expected: Forbidden, spot stays occupied
        """
        owner = make_user("owner")
        other = make_user("other")
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(owner, spot_id))

        with pytest.raises(Forbidden):
            asyncio.run(services.sessions.end_session(session.id, other))
        assert spot_status(spot_id) == SpotStatus.OCCUPIED

    def test_already_ended_checked_before_ownership(self, services, lot_id, make_spot, make_user):
        """
        Test: Another user ends a session that is already over
        Expected: SessionAlreadyEnded rather than Forbidden
        """
        owner = make_user("owner")
        other = make_user("other")
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(owner, spot_id))
        asyncio.run(services.sessions.end_session(session.id, owner))

        with pytest.raises(SessionAlreadyEnded):
            asyncio.run(services.sessions.end_session(session.id, other))

    def test_admin_may_end_any_session(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Admin ends a user's session
        Expected: Session closed, spot freed
        """
        owner = make_user("owner")
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(owner, spot_id))

        ended = asyncio.run(services.sessions.end_session(session.id, "admin-123", UserRole.ADMIN))

        assert not ended.is_active
        assert spot_status(spot_id) == SpotStatus.FREE

    def test_end_when_spot_already_freed(self, services, lot_id, make_spot, make_user, spot_status, events):
        """
        Test: End a session whose spot was freed out of band
        Expected: Session closed, no extra event
        """
        user = make_user()
        spot_id = make_spot(lot_id)
        session = asyncio.run(services.sessions.start_session(user, spot_id))
        asyncio.run(services.state_machine.transition(spot_id, SpotStatus.FREE))
        published = len(events)

        ended = asyncio.run(services.sessions.end_session(session.id, user))

        assert not ended.is_active
        assert spot_status(spot_id) == SpotStatus.FREE
        assert len(events) == published


class TestSessionQueries:
    """Tests for session reads and statistics."""

    def test_active_session(self, services, lot_id, make_spot, make_user):
        user = make_user()
        assert asyncio.run(services.sessions.get_active_session(user)) is None

        session = asyncio.run(services.sessions.start_session(user, make_spot(lot_id)))

        active = asyncio.run(services.sessions.get_active_session(user))
        assert active.id == session.id

    def test_open_session_duration_uses_now(self, services, lot_id, make_spot, make_user, clock):
        """
        Test: Read an open session 125 minutes in
        Expected: Duration measured against the clock
        """
        user = make_user()
        asyncio.run(services.sessions.start_session(user, make_spot(lot_id)))

        clock["value"] = START + timedelta(minutes=125)
        active = asyncio.run(services.sessions.get_active_session(user))

        assert active.duration.total_minutes == 125
        assert active.duration.formatted == "2h 5m"

    def test_get_session_owner_only(self, services, lot_id, make_spot, make_user):
        owner = make_user("owner")
        other = make_user("other")
        session = asyncio.run(services.sessions.start_session(owner, make_spot(lot_id)))

        assert asyncio.run(services.sessions.get_session(session.id, owner)).id == session.id
        assert asyncio.run(services.sessions.get_session(session.id, other, UserRole.ADMIN)).id == session.id
        with pytest.raises(Forbidden):
            asyncio.run(services.sessions.get_session(session.id, other))

    def test_user_history_filters(self, services, lot_id, make_spot, make_user):
        """
        Test: User history with all / completed / active filters
        Expected: Each filter returns the matching sessions
        """
        user = make_user()
        first = asyncio.run(services.sessions.start_session(user, make_spot(lot_id)))
        asyncio.run(services.sessions.end_session(first.id, user))
        asyncio.run(services.sessions.start_session(user, make_spot(lot_id)))

        everything = asyncio.run(services.sessions.list_user_sessions(user))
        completed = asyncio.run(services.sessions.list_user_sessions(user, status=SessionStatusFilter.COMPLETED))
        active = asyncio.run(services.sessions.list_user_sessions(user, status=SessionStatusFilter.ACTIVE))

        assert everything.pagination.total_items == 2
        assert [s.id for s in completed.sessions] == [first.id]
        assert len(active.sessions) == 1 and active.sessions[0].is_active

    def test_pagination(self, services, lot_id, make_spot, make_user):
        """
        Test: Second page of three sessions with limit 2
        Expected: One session, two pages in total
        """
        user = make_user()
        for _ in range(3):
            session = asyncio.run(services.sessions.start_session(user, make_spot(lot_id)))
            asyncio.run(services.sessions.end_session(session.id, user))

        page = asyncio.run(services.sessions.list_user_sessions(user, page=2, limit=2))

        assert len(page.sessions) == 1
        assert page.pagination.current_page == 2
        assert page.pagination.total_pages == 2
        assert page.pagination.total_items == 3

    def test_stats_summary(self, services, lot_id, make_spot, make_user, clock):
        """
        Test: Statistics over one closed and one open session
        Expected: Counts and average duration of closed sessions
        """
        alice = make_user("alice")
        bob = make_user("bob")
        first = asyncio.run(services.sessions.start_session(alice, make_spot(lot_id)))
        asyncio.run(services.sessions.start_session(bob, make_spot(lot_id)))

        clock["value"] = START + timedelta(minutes=40)
        asyncio.run(services.sessions.end_session(first.id, alice))

        stats = asyncio.run(services.sessions.session_stats(lot_id=lot_id, period="1d"))

        assert stats.total_sessions == 2
        assert stats.active_sessions == 1
        assert stats.completed_sessions == 1
        assert stats.average_duration_minutes == 40
