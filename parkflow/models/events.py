"""
ParkFlow - Event Models
Messages published on the lot occupancy updates channel.
"""

from pydantic import BaseModel, Field, field_serializer
from typing import Optional, Dict, Any
from datetime import datetime
from enum import Enum

from parkflow.models.parking import SpotStatus, LotStats, to_external
from parkflow.utils.helpers import utcnow


class TransitionSource(str, Enum):
    """Class of initiator behind a status change."""
    USER_ACTION = "user_action"
    SENSOR = "sensor"
    ADMIN = "admin"


class EventType(str, Enum):
    """Message types sent to subscribers."""
    SPOT_STATUS_CHANGE = "SPOT_STATUS_CHANGE"
    PARKING_LOT_STATS = "PARKING_LOT_STATS"
    IOT_SENSOR_DATA = "IOT_SENSOR_DATA"
    SNAPSHOT = "SNAPSHOT"


class SensorMeta(BaseModel):
    """Sensor details attached to a simulated status change."""
    sensor_id: str
    confidence: int
    detection_method: str


class SpotStatusChange(BaseModel):
    """A committed spot status transition."""
    spot_id: int
    code: Optional[str] = None
    old_status: SpotStatus
    new_status: SpotStatus
    lot_id: int
    timestamp: datetime = Field(default_factory=utcnow)
    source: TransitionSource
    actor_id: Optional[str] = None
    description: str = ""
    sensor_meta: Optional[SensorMeta] = None

    @field_serializer("old_status", "new_status")
    def serialize_status(self, status: SpotStatus) -> str:
        return to_external(status)

    def to_message(self) -> Dict[str, Any]:
        return _envelope(EventType.SPOT_STATUS_CHANGE, self.timestamp, self.model_dump(mode="json"))


class LotStatsUpdate(BaseModel):
    """Recomputed statistics of one lot."""
    lot_id: int
    timestamp: datetime = Field(default_factory=utcnow)
    stats: LotStats

    def to_message(self) -> Dict[str, Any]:
        message = _envelope(EventType.PARKING_LOT_STATS, self.timestamp, self.stats.model_dump(mode="json"))
        message["parking_lot_id"] = self.lot_id
        return message


class SensorTelemetry(BaseModel):
    """Synthesized readings of a simulated occupancy sensor."""
    sensor_id: str
    spot_id: int
    status: SpotStatus
    timestamp: datetime = Field(default_factory=utcnow)
    signal_strength: int
    battery_level: int
    temperature: int
    humidity: int
    device_type: str = "ultrasonic_distance_sensor"
    firmware: str = "v2.1.3"
    last_maintenance: datetime
    confidence: int
    detection_method: str

    @field_serializer("status")
    def serialize_status(self, status: SpotStatus) -> str:
        return to_external(status)

    def to_message(self) -> Dict[str, Any]:
        return _envelope(EventType.IOT_SENSOR_DATA, self.timestamp, self.model_dump(mode="json"))


def _envelope(event_type: EventType, timestamp: datetime, data: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "type": event_type.value,
        "timestamp": timestamp.isoformat(),
        "data": data,
    }
