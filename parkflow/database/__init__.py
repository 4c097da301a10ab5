"""
ParkFlow - Database Package
SQLAlchemy persistence for lots, spots, sessions and users.
"""

from parkflow.database.engine import Database
from parkflow.database.tables import (
    Base,
    User,
    ParkingLot,
    ParkingSpot,
    ParkingSession,
)

__all__ = [
    "Database",
    "Base",
    "User",
    "ParkingLot",
    "ParkingSpot",
    "ParkingSession",
]
