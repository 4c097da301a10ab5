"""
ParkFlow - Helper Functions
Utility functions used across the application.
"""

from typing import Optional, Tuple
from datetime import datetime, timezone
import math


def utcnow() -> datetime:
    """Naive UTC timestamp, matching what the database stores."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def format_duration(minutes: int) -> str:
    """
    Format a duration in minutes for display.

    Args:
        minutes: Duration in whole minutes

    Returns:
        str: Duration such as "1h 30m"
    """
    return f"{minutes // 60}h {minutes % 60}m"


def calculate_duration(
    start_time: datetime,
    end_time: Optional[datetime] = None,
    now: Optional[datetime] = None
) -> dict:
    """
    Compute the elapsed time of a session.
    Open sessions (no end_time) are measured up to `now`.

    Args:
        start_time: When the session started
        end_time: When the session ended, if it has
        now: Reference time for open sessions (defaults to current UTC time)

    Returns:
        dict: total_minutes, hours, minutes and the formatted string
    """
    end = end_time or now or utcnow()
    elapsed_ms = (end - start_time).total_seconds() * 1000
    total_minutes = math.floor(elapsed_ms / 60000)

    return {
        "total_minutes": total_minutes,
        "hours": total_minutes // 60,
        "minutes": total_minutes % 60,
        "formatted": format_duration(total_minutes),
    }


def generate_spot_code(spot_type: str, spot_id: Optional[int] = None) -> str:
    """
    Generate the human-readable code of a spot.
    Before the id is known a timestamp placeholder is used.

    Args:
        spot_type: "car" or "motorcycle"
        spot_id: Database id of the spot

    Returns:
        str: Code such as "CAR-12" or "MOTO-3"
    """
    prefix = "CAR" if str(getattr(spot_type, "value", spot_type)) == "car" else "MOTO"
    suffix = spot_id if spot_id is not None else int(utcnow().timestamp() * 1000)
    return f"{prefix}-{suffix}"


def generate_sensor_id(spot_id: int) -> str:
    """Synthesized sensor identifier for a spot (e.g. IOT_SENSOR_007)."""
    return f"IOT_SENSOR_{spot_id:03d}"


def normalize_page(page: int, limit: int, max_limit: int = 100) -> Tuple[int, int, int]:
    """
    Clamp pagination parameters.

    Returns:
        Tuple[int, int, int]: page, limit and offset
    """
    page = max(page, 1)
    limit = min(max(limit, 1), max_limit)
    return page, limit, (page - 1) * limit


def build_pagination(total_items: int, page: int, limit: int) -> dict:
    """Pagination metadata for list responses."""
    return {
        "current_page": page,
        "total_pages": math.ceil(total_items / limit) if limit else 0,
        "total_items": total_items,
        "items_per_page": limit,
    }


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)
