"""
ParkFlow - Status Vocabulary Tests
Tests for the internal/display status mapping and duration helpers.

Run: pytest tests/test_status_mapping.py -v
"""

from datetime import datetime, timedelta
import pytest

from parkflow.exceptions import UnknownStatus
from parkflow.models.parking import (
    SpotStatus,
    from_external,
    parse_api_status,
    parse_status,
    to_external,
)
from parkflow.utils.helpers import (
    build_pagination,
    calculate_duration,
    format_duration,
    generate_spot_code,
    normalize_page,
)


class TestStatusMapping:
    """Tests for to_external / from_external."""

    @pytest.mark.parametrize("internal,external", [
        (SpotStatus.FREE, "available"),
        (SpotStatus.OCCUPIED, "occupied"),
        (SpotStatus.RESERVED, "reserved"),
        (SpotStatus.MAINTENANCE, "maintenance"),
    ])
    def test_round_trip(self, internal, external):
        """
        Test: Internal status to display code and back
        Expected: Same status
        """
        assert to_external(internal) == external
        assert from_external(external) == internal

    def test_unknown_internal_maps_to_available(self):
        """
        Test: Display code of an unknown status
        Expected: "available"
        """
        assert to_external("disabled") == "available"
        assert to_external(None) == "available"

    def test_unknown_external_maps_to_free(self):
        """
        Test: Internal status of an unknown display code
        Expected: Free
        """
        assert from_external("LIBRE") == SpotStatus.FREE
        assert from_external(None) == SpotStatus.FREE

    def test_parse_status_is_strict(self):
        assert parse_status(" Occupied ") == SpotStatus.OCCUPIED
        with pytest.raises(UnknownStatus):
            parse_status("available")

    def test_api_status_accepts_both_vocabularies(self):
        """
        Test: Parse API status filters
        Expected: Internal and display codes accepted
        """
        assert parse_api_status("available") == SpotStatus.FREE
        assert parse_api_status("free") == SpotStatus.FREE
        assert parse_api_status("MAINTENANCE") == SpotStatus.MAINTENANCE
        with pytest.raises(UnknownStatus):
            parse_api_status("broken")


class TestHelpers:
    """Tests for duration and pagination helpers."""

    def test_ninety_minutes(self):
        """
        Test: Duration of ninety minutes
        Expected: 1h 30m
        """
        start = datetime(2024, 1, 1, 10, 0)
        duration = calculate_duration(start, start + timedelta(minutes=90))

        assert duration == {"total_minutes": 90, "hours": 1, "minutes": 30, "formatted": "1h 30m"}

    def test_partial_minutes_are_floored(self):
        start = datetime(2024, 1, 1, 10, 0)
        duration = calculate_duration(start, start + timedelta(minutes=59, seconds=59))

        assert duration["total_minutes"] == 59
        assert duration["formatted"] == "0h 59m"

    def test_open_duration_uses_now(self):
        """
        Test: Duration of an open session
        Expected: Measured against now
        """
        start = datetime(2024, 1, 1, 10, 0)

        assert calculate_duration(start, now=start + timedelta(hours=3))["formatted"] == "3h 0m"

    def test_format_duration(self):
        assert format_duration(0) == "0h 0m"
        assert format_duration(125) == "2h 5m"

    def test_spot_codes(self):
        assert generate_spot_code("car", 12) == "CAR-12"
        assert generate_spot_code("motorcycle", 3) == "MOTO-3"
        assert generate_spot_code("car").startswith("CAR-")

    def test_pagination(self):
        """
        Test: Pagination metadata
        Expected: Page counts from totals and limit
        """
        assert normalize_page(0, 500, max_limit=100) == (1, 100, 0)
        assert normalize_page(3, 10) == (3, 10, 20)
        assert build_pagination(21, 3, 10) == {
            "current_page": 3,
            "total_pages": 3,
            "total_items": 21,
            "items_per_page": 10,
        }
