"""
ParkFlow - Parking Models
Defines the spot status vocabulary and all data models related to lots and spots.
"""

from pydantic import BaseModel, ConfigDict, Field, field_serializer
from typing import Optional, List, Dict, Union
from datetime import datetime
from enum import Enum

from parkflow.exceptions import UnknownStatus


class SpotStatus(str, Enum):
    """Internal parking spot states."""
    FREE = "free"
    OCCUPIED = "occupied"
    RESERVED = "reserved"
    MAINTENANCE = "maintenance"


class SpotType(str, Enum):
    """Kinds of vehicle a spot accepts."""
    CAR = "car"
    MOTORCYCLE = "motorcycle"


# Display codes used by clients. The mapping is fixed and total.
EXTERNAL_STATUS: Dict[SpotStatus, str] = {
    SpotStatus.FREE: "available",
    SpotStatus.OCCUPIED: "occupied",
    SpotStatus.RESERVED: "reserved",
    SpotStatus.MAINTENANCE: "maintenance",
}
INTERNAL_STATUS: Dict[str, SpotStatus] = {v: k for k, v in EXTERNAL_STATUS.items()}


def to_external(status: Union[SpotStatus, str, None]) -> str:
    """
    Map an internal status to its display code.
    Unknown values map to "available".
    """
    try:
        return EXTERNAL_STATUS[SpotStatus(status)]
    except ValueError:
        return EXTERNAL_STATUS[SpotStatus.FREE]


def from_external(code: Optional[str]) -> SpotStatus:
    """
    Map a display code back to the internal status.
    Unknown values map to FREE.
    """
    return INTERNAL_STATUS.get((code or "").lower().strip(), SpotStatus.FREE)


def parse_status(value: Union[SpotStatus, str]) -> SpotStatus:
    """
    Strictly parse an internal status value.

    Raises:
        UnknownStatus: If the value is not one of the four internal codes
    """
    if isinstance(value, SpotStatus):
        return value
    try:
        return SpotStatus(str(value).lower().strip())
    except ValueError:
        raise UnknownStatus(
            f"Unknown status '{value}'. Valid statuses are: "
            f"{', '.join(s.value for s in SpotStatus)}"
        )


def parse_api_status(value: str) -> SpotStatus:
    """
    Parse a status received over the API.
    Accepts both the internal codes and the display codes.
    """
    normalized = str(value).lower().strip()
    if normalized in INTERNAL_STATUS:
        return INTERNAL_STATUS[normalized]
    return parse_status(normalized)


class ParkingSpot(BaseModel):
    """Parking spot as exposed to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: Optional[str] = None
    spot_type: SpotType
    status: SpotStatus = SpotStatus.FREE
    parking_lot_id: int
    is_active: bool = True
    reserved_by_id: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_serializer("status")
    def serialize_status(self, status: SpotStatus) -> str:
        return to_external(status)


class ParkingSpotCreate(BaseModel):
    """Model for creating a new parking spot (admin only)."""
    parking_lot_id: int = Field(..., description="Lot the spot belongs to")
    spot_type: SpotType = Field(default=SpotType.CAR, description="car or motorcycle")


class ParkingSpotUpdate(BaseModel):
    """Model for updating parking spot details (admin only)."""
    parking_lot_id: Optional[int] = None
    spot_type: Optional[SpotType] = None
    is_active: Optional[bool] = None


class StatusUpdateRequest(BaseModel):
    """Admin status override request."""
    status: str = Field(..., description="Target status (internal or display code)")


class SpotSnapshot(BaseModel):
    """Current status of one spot, sent to late-joining subscribers."""
    model_config = ConfigDict(from_attributes=True)

    spot_id: int = Field(validation_alias="id")
    code: Optional[str] = None
    status: SpotStatus
    lot_id: int = Field(validation_alias="parking_lot_id")
    updated_at: Optional[datetime] = None

    @field_serializer("status")
    def serialize_status(self, status: SpotStatus) -> str:
        return to_external(status)


class ParkingLotBase(BaseModel):
    """Base model for parking lot data."""
    name: str = Field(..., min_length=2, max_length=100)
    location: str = Field(..., min_length=5, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)


class ParkingLotCreate(ParkingLotBase):
    """Model for creating a parking lot (admin only)."""
    pass


class ParkingLotUpdate(BaseModel):
    """Model for updating parking lot details (admin only)."""
    name: Optional[str] = Field(default=None, min_length=2, max_length=100)
    location: Optional[str] = Field(default=None, min_length=5, max_length=255)
    description: Optional[str] = Field(default=None, max_length=500)
    is_active: Optional[bool] = None


class ParkingLot(ParkingLotBase):
    """Parking lot as exposed to clients."""
    model_config = ConfigDict(from_attributes=True)

    id: int
    total_spots: int = 0
    is_active: bool = True
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class LotStats(BaseModel):
    """Occupancy counts of the active spots of one lot."""
    total: int = 0
    available: int = 0
    occupied: int = 0
    reserved: int = 0
    maintenance: int = 0
    occupancy_rate: float = 0.0
    by_spot_type: Dict[str, Dict[str, int]] = Field(default_factory=dict)


class ParkingLotWithStats(ParkingLot):
    """Parking lot with its current statistics."""
    statistics: LotStats


class Pagination(BaseModel):
    """Pagination metadata."""
    current_page: int
    total_pages: int
    total_items: int
    items_per_page: int


class SpotListResponse(BaseModel):
    """Paginated list of spots."""
    spots: List[ParkingSpot]
    pagination: Pagination
