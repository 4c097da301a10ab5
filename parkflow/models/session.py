"""
ParkFlow - Session Models
Defines data models for parking sessions and their statistics.
"""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from decimal import Decimal
from enum import Enum

from parkflow.models.parking import Pagination
from parkflow.utils.helpers import calculate_duration


class SessionType(str, Enum):
    """How the user arrived at the spot."""
    WALK_IN = "walk_in"
    RESERVED = "reserved"


class SessionStatusFilter(str, Enum):
    """Filter values for session listings."""
    ALL = "all"
    ACTIVE = "active"
    COMPLETED = "completed"


class SessionDuration(BaseModel):
    """Elapsed time of a session, split for display."""
    total_minutes: int
    hours: int
    minutes: int
    formatted: str


class ParkingSession(BaseModel):
    """Parking session as exposed to clients."""
    id: int
    user_id: str
    parking_spot_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    is_active: bool
    session_type: SessionType
    total_amount: Optional[Decimal] = None
    notes: Optional[str] = None
    duration: SessionDuration
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_row(cls, row, now: Optional[datetime] = None) -> "ParkingSession":
        """
        Build the public view of a session row.
        Open sessions report their duration up to `now`.
        """
        return cls(
            id=row.id,
            user_id=row.user_id,
            parking_spot_id=row.parking_spot_id,
            start_time=row.start_time,
            end_time=row.end_time,
            is_active=row.end_time is None,
            session_type=row.session_type,
            total_amount=row.total_amount,
            notes=row.notes,
            duration=SessionDuration(**calculate_duration(row.start_time, row.end_time, now=now)),
            created_at=row.created_at,
            updated_at=row.updated_at,
        )


class StartSessionRequest(BaseModel):
    """Request model for starting a parking session."""
    parking_spot_id: int = Field(..., description="Spot to occupy")
    notes: Optional[str] = Field(default=None, max_length=500)


class EndSessionRequest(BaseModel):
    """Optional body when ending a session."""
    total_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)


class SessionListResponse(BaseModel):
    """Paginated list of sessions."""
    sessions: List[ParkingSession]
    pagination: Pagination


class SessionStats(BaseModel):
    """Aggregate session statistics for a period."""
    period: str
    parking_lot_id: Optional[int] = None
    total_sessions: int
    active_sessions: int
    completed_sessions: int
    average_duration_minutes: int
    generated_at: datetime
