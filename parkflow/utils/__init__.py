"""
ParkFlow - Utilities Package
Helper functions, keyed locks and background schedulers.
"""

from parkflow.utils.scheduler import (
    StatsScheduler,
    create_scheduler,
    ensure_started,
)
from parkflow.utils.helpers import (
    utcnow,
    format_duration,
    calculate_duration,
    generate_spot_code,
    generate_sensor_id,
)
from parkflow.utils.locks import KeyedLock

__all__ = [
    "StatsScheduler",
    "create_scheduler",
    "ensure_started",
    "utcnow",
    "format_duration",
    "calculate_duration",
    "generate_spot_code",
    "generate_sensor_id",
    "KeyedLock",
]
