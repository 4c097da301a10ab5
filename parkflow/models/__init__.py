"""
ParkFlow - Models Package
Contains all Pydantic models for the application.
"""

from parkflow.models.parking import (
    SpotStatus,
    SpotType,
    ParkingSpot,
    ParkingSpotCreate,
    ParkingSpotUpdate,
    StatusUpdateRequest,
    SpotSnapshot,
    ParkingLot,
    ParkingLotCreate,
    ParkingLotUpdate,
    ParkingLotWithStats,
    LotStats,
    Pagination,
    SpotListResponse,
    to_external,
    from_external,
    parse_status,
    parse_api_status,
)
from parkflow.models.session import (
    SessionType,
    SessionStatusFilter,
    SessionDuration,
    ParkingSession,
    StartSessionRequest,
    EndSessionRequest,
    SessionListResponse,
    SessionStats,
)
from parkflow.models.events import (
    TransitionSource,
    EventType,
    SensorMeta,
    SpotStatusChange,
    LotStatsUpdate,
    SensorTelemetry,
)
from parkflow.models.user import (
    UserProfile,
    UserRole,
    TokenPayload,
)
from parkflow.models.simulator import (
    SimulatorConfig,
    SimulatorConfigUpdate,
    SimulatorStats,
)

__all__ = [
    # Parking Models
    "SpotStatus",
    "SpotType",
    "ParkingSpot",
    "ParkingSpotCreate",
    "ParkingSpotUpdate",
    "StatusUpdateRequest",
    "SpotSnapshot",
    "ParkingLot",
    "ParkingLotCreate",
    "ParkingLotUpdate",
    "ParkingLotWithStats",
    "LotStats",
    "Pagination",
    "SpotListResponse",
    "to_external",
    "from_external",
    "parse_status",
    "parse_api_status",
    # Session Models
    "SessionType",
    "SessionStatusFilter",
    "SessionDuration",
    "ParkingSession",
    "StartSessionRequest",
    "EndSessionRequest",
    "SessionListResponse",
    "SessionStats",
    # Event Models
    "TransitionSource",
    "EventType",
    "SensorMeta",
    "SpotStatusChange",
    "LotStatsUpdate",
    "SensorTelemetry",
    # User Models
    "UserProfile",
    "UserRole",
    "TokenPayload",
    # Simulator Models
    "SimulatorConfig",
    "SimulatorConfigUpdate",
    "SimulatorStats",
]
