"""
ParkFlow - Spot State Machine Tests
Tests for the allowed-transition table, reservations and admin overrides.

Run: pytest tests/test_state_machine.py -v
"""

import asyncio
import itertools
import pytest

from parkflow.database import queries
from parkflow.database.tables import ParkingSpot as SpotRow
from parkflow.exceptions import (
    Conflict,
    Forbidden,
    InvalidTransition,
    SpotNotFound,
    UnknownStatus,
)
from parkflow.models.events import EventType, TransitionSource
from parkflow.models.parking import SpotStatus
from parkflow.models.user import UserRole
from parkflow.services.spot_state_machine import ALLOWED_TRANSITIONS, can_transition


ALL_PAIRS = list(itertools.product(SpotStatus, SpotStatus))
EDGES = [(a, b) for a, b in ALL_PAIRS if b in ALLOWED_TRANSITIONS[a]]
NON_EDGES = [(a, b) for a, b in ALL_PAIRS if b not in ALLOWED_TRANSITIONS[a]]


class TestTransitionTable:
    """Tests for the allowed-transition table."""

    def test_table_has_expected_edges(self):
        """
        Test: Transition table contents
        Expected: Exactly the eight documented edges
        """
        assert set(EDGES) == {
            (SpotStatus.FREE, SpotStatus.OCCUPIED),
            (SpotStatus.FREE, SpotStatus.RESERVED),
            (SpotStatus.FREE, SpotStatus.MAINTENANCE),
            (SpotStatus.OCCUPIED, SpotStatus.FREE),
            (SpotStatus.OCCUPIED, SpotStatus.MAINTENANCE),
            (SpotStatus.RESERVED, SpotStatus.OCCUPIED),
            (SpotStatus.RESERVED, SpotStatus.FREE),
            (SpotStatus.MAINTENANCE, SpotStatus.FREE),
        }

    @pytest.mark.parametrize("current,target", EDGES)
    def test_edge_succeeds(self, services, lot_id, make_spot, spot_status, current, target):
        """
        Test: Transition along an allowed edge
        Expected: New status returned and stored
        """
        spot_id = make_spot(lot_id, status=current)

        spot = asyncio.run(services.state_machine.transition(spot_id, target))

        assert spot.status == target
        assert spot_status(spot_id) == target

    @pytest.mark.parametrize("current,target", NON_EDGES)
    def test_non_edge_rejected(self, services, lot_id, make_spot, spot_status, events, current, target):
        """
        Test: Transition outside the table
        Expected: InvalidTransition, status unchanged, nothing published
        """
        spot_id = make_spot(lot_id, status=current)

        with pytest.raises(InvalidTransition):
            asyncio.run(services.state_machine.transition(spot_id, target))

        assert spot_status(spot_id) == current
        assert events == []

    def test_self_transitions_are_not_edges(self):
        for status in SpotStatus:
            assert not can_transition(status, status)


class TestTransition:
    """Tests for the general transition contract."""

    def test_unknown_spot(self, services):
        """
        Test: Transition of a missing spot
        Expected: SpotNotFound
        """
        with pytest.raises(SpotNotFound):
            asyncio.run(services.state_machine.transition(999, SpotStatus.OCCUPIED))

    def test_unknown_status(self, services, lot_id, make_spot):
        """
        Test: Target status outside the vocabulary
        Expected: UnknownStatus
        """
        spot_id = make_spot(lot_id)

        with pytest.raises(UnknownStatus):
            asyncio.run(services.state_machine.transition(spot_id, "parked"))

    def test_display_code_not_accepted(self, services, lot_id, make_spot):
        """
        Test: Display code "available" passed as an internal status
        Expected: UnknownStatus
        """
        spot_id = make_spot(lot_id, status=SpotStatus.OCCUPIED)

        with pytest.raises(UnknownStatus):
            asyncio.run(services.state_machine.transition(spot_id, "available"))

    def test_string_status_accepted(self, services, lot_id, make_spot):
        spot_id = make_spot(lot_id)

        spot = asyncio.run(services.state_machine.transition(spot_id, "occupied"))

        assert spot.status == SpotStatus.OCCUPIED

    def test_event_published_after_commit(self, services, lot_id, make_spot, events):
        """
        Test: Admin moves a free spot to maintenance
        Expected: One spot status change event with display codes and source
        """
        spot_id = make_spot(lot_id)

        asyncio.run(services.state_machine.transition(
            spot_id,
            SpotStatus.MAINTENANCE,
            source=TransitionSource.ADMIN,
            actor_id="admin-123",
            description="Lighting repair",
        ))

        assert len(events) == 1
        message = events[0]
        assert message["type"] == EventType.SPOT_STATUS_CHANGE.value
        assert message["data"]["spot_id"] == spot_id
        assert message["data"]["old_status"] == "available"
        assert message["data"]["new_status"] == "maintenance"
        assert message["data"]["lot_id"] == lot_id
        assert message["data"]["source"] == "admin"
        assert message["data"]["description"] == "Lighting repair"

    def test_expected_status_mismatch_rejected(self, services, lot_id, make_spot, spot_status):
        """
        Test: Caller expects free but the spot is reserved
        Expected: InvalidTransition, spot stays reserved
        """
        spot_id = make_spot(lot_id, status=SpotStatus.RESERVED)

        with pytest.raises(InvalidTransition):
            asyncio.run(services.state_machine.transition(
                spot_id,
                SpotStatus.OCCUPIED,
                expected_status=SpotStatus.FREE,
            ))

        assert spot_status(spot_id) == SpotStatus.RESERVED


class TestConcurrentWriters:
    """Tests for the compare-and-set write path."""

    def test_lost_update_revalidated_and_rejected(self, services, lot_id, make_spot, spot_status):
        """
        Test: Spot read as free, moved to maintenance by another writer before the occupy write
        Expected: InvalidTransition, the other writer's maintenance status is kept
        """
        spot_id = make_spot(lot_id)

        with pytest.raises(InvalidTransition):
            with services.database.session_scope() as db:
                stale = db.get(SpotRow, spot_id)
                assert stale.status == SpotStatus.FREE

                with services.database.session_scope() as other:
                    assert queries.compare_and_set_status(
                        other, spot_id, SpotStatus.FREE, SpotStatus.MAINTENANCE
                    )

                services.state_machine.apply_in_transaction(
                    db, stale, SpotStatus.OCCUPIED, source=TransitionSource.USER_ACTION
                )

        assert spot_status(spot_id) == SpotStatus.MAINTENANCE

    def test_lost_update_retried_when_still_allowed(self, services, lot_id, make_spot, spot_status):
        """
        Test: Spot read as free, reserved by another writer before the occupy write
        Expected: Write retried from reserved, event reports reserved as the old status
        """
        spot_id = make_spot(lot_id)

        with services.database.session_scope() as db:
            stale = db.get(SpotRow, spot_id)

            with services.database.session_scope() as other:
                queries.compare_and_set_status(other, spot_id, SpotStatus.FREE, SpotStatus.RESERVED)

            event = services.state_machine.apply_in_transaction(
                db, stale, SpotStatus.OCCUPIED, source=TransitionSource.USER_ACTION
            )

        assert event.old_status == SpotStatus.RESERVED
        assert spot_status(spot_id) == SpotStatus.OCCUPIED


class TestReservations:
    """Tests for reserve / cancel_reservation."""

    def test_reserve_cancel_reserve_scenario(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Reserve, cancel, reserve again, then try maintenance
        Expected: Each step succeeds; maintenance from reserved is rejected
        """
        user = make_user("user-123")
        spot_id = make_spot(lot_id)
        machine = services.state_machine

        assert asyncio.run(machine.reserve(spot_id, user)).status == SpotStatus.RESERVED
        assert asyncio.run(machine.cancel_reservation(spot_id, user)).status == SpotStatus.FREE
        assert asyncio.run(machine.reserve(spot_id, user)).status == SpotStatus.RESERVED

        with pytest.raises(InvalidTransition):
            asyncio.run(machine.transition(spot_id, SpotStatus.MAINTENANCE))
        assert spot_status(spot_id) == SpotStatus.RESERVED

    def test_reserve_sets_and_cancel_clears_marker(self, services, lot_id, make_spot, make_user):
        user = make_user("user-123")
        spot_id = make_spot(lot_id)

        reserved = asyncio.run(services.state_machine.reserve(spot_id, user))
        assert reserved.reserved_by_id == user

        freed = asyncio.run(services.state_machine.cancel_reservation(spot_id, user))
        assert freed.reserved_by_id is None

    def test_reserve_requires_free(self, services, lot_id, make_spot, make_user):
        """
        Test: Reserve an occupied spot
        Expected: InvalidTransition
        """
        user = make_user()
        spot_id = make_spot(lot_id, status=SpotStatus.OCCUPIED)

        with pytest.raises(InvalidTransition):
            asyncio.run(services.state_machine.reserve(spot_id, user))

    def test_one_reservation_per_user(self, services, lot_id, make_spot, make_user):
        """
        Test: Second reservation by the same user
        Expected: Conflict
        """
        user = make_user()
        first = make_spot(lot_id)
        second = make_spot(lot_id)
        asyncio.run(services.state_machine.reserve(first, user))

        with pytest.raises(Conflict):
            asyncio.run(services.state_machine.reserve(second, user))

    def test_cancel_requires_reserved(self, services, lot_id, make_spot, make_user):
        user = make_user()
        spot_id = make_spot(lot_id)

        with pytest.raises(InvalidTransition):
            asyncio.run(services.state_machine.cancel_reservation(spot_id, user))

    def test_cancel_someone_elses_reservation_forbidden(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: User cancels another user's reservation
        Expected: Forbidden, spot stays reserved
        """
        owner = make_user("owner")
        other = make_user("other")
        spot_id = make_spot(lot_id)
        asyncio.run(services.state_machine.reserve(spot_id, owner))

        with pytest.raises(Forbidden):
            asyncio.run(services.state_machine.cancel_reservation(spot_id, other))
        assert spot_status(spot_id) == SpotStatus.RESERVED

    def test_unattributed_reservation_needs_admin(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Cancel a reservation that has no owner recorded
        Expected: Forbidden for a user, allowed for an admin
        """
        user = make_user("user-123")
        admin = make_user("admin-123", role=UserRole.ADMIN)
        spot_id = make_spot(lot_id, status=SpotStatus.RESERVED)

        with pytest.raises(Forbidden):
            asyncio.run(services.state_machine.cancel_reservation(spot_id, user))
        assert spot_status(spot_id) == SpotStatus.RESERVED

        spot = asyncio.run(services.state_machine.cancel_reservation(spot_id, admin, UserRole.ADMIN))
        assert spot.status == SpotStatus.FREE

    def test_admin_may_cancel_any_reservation(self, services, lot_id, make_spot, make_user, events):
        """
        Test: Admin cancels a user's reservation
        Expected: Spot freed, event source is admin
        """
        owner = make_user("owner")
        admin = make_user("admin-123", role=UserRole.ADMIN)
        spot_id = make_spot(lot_id)
        asyncio.run(services.state_machine.reserve(spot_id, owner))

        spot = asyncio.run(services.state_machine.cancel_reservation(spot_id, admin, UserRole.ADMIN))

        assert spot.status == SpotStatus.FREE
        assert events[-1]["data"]["source"] == "admin"


class TestAdminOverride:
    """Tests for administrative status overrides."""

    def test_override_follows_table(self, services, lot_id, make_spot):
        """
        Test: Override maintenance to occupied, then to free
        Expected: First rejected, second applied
        """
        spot_id = make_spot(lot_id, status=SpotStatus.MAINTENANCE)

        with pytest.raises(InvalidTransition):
            asyncio.run(services.state_machine.admin_override(spot_id, SpotStatus.OCCUPIED))

        spot = asyncio.run(services.state_machine.admin_override(spot_id, SpotStatus.FREE, admin_id="admin-123"))
        assert spot.status == SpotStatus.FREE

    def test_override_refused_while_session_open(self, services, lot_id, make_spot, make_user, spot_status):
        """
        Test: Override a spot held by an open session
        Expected: Conflict, spot stays occupied
        """
        user = make_user()
        spot_id = make_spot(lot_id)
        asyncio.run(services.sessions.start_session(user, spot_id))

        with pytest.raises(Conflict):
            asyncio.run(services.state_machine.admin_override(spot_id, SpotStatus.MAINTENANCE))
        assert spot_status(spot_id) == SpotStatus.OCCUPIED
