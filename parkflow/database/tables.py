"""
ParkFlow - Database Tables
SQLAlchemy mappings for users, lots, spots and sessions.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base, relationship

from parkflow.models.parking import SpotStatus, SpotType
from parkflow.models.session import SessionType
from parkflow.models.user import UserRole
from parkflow.utils.helpers import utcnow

Base = declarative_base()


def _enum(enum_cls, name: str) -> Enum:
    """Store enum values (not member names) in a VARCHAR column."""
    return Enum(
        enum_cls,
        name=name,
        native_enum=False,
        validate_strings=True,
        values_callable=lambda members: [m.value for m in members],
    )


class User(Base):
    """Identity known to the system, keyed by Firebase uid."""

    __tablename__ = "users"

    uid = Column(String(128), primary_key=True)
    email = Column(String(255), nullable=True)
    display_name = Column(String(255), nullable=True)
    role = Column(_enum(UserRole, "user_role"), nullable=False, default=UserRole.USER)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    last_login = Column(DateTime, nullable=True)

    sessions = relationship("ParkingSession", back_populates="user", passive_deletes=True)

    def __repr__(self):
        return f"<User(uid={self.uid}, role={self.role})>"


class ParkingLot(Base):
    """Aggregate of spots at one location."""

    __tablename__ = "parking_lots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), nullable=False, unique=True)
    location = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    # Count of active spots, recomputed on membership changes
    total_spots = Column(Integer, nullable=False, default=0)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    spots = relationship(
        "ParkingSpot",
        back_populates="parking_lot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint("total_spots >= 0", name="ck_parking_lots_total_spots"),
    )

    def __repr__(self):
        return f"<ParkingLot(id={self.id}, name={self.name})>"


class ParkingSpot(Base):
    """A single parking space."""

    __tablename__ = "parking_spots"

    id = Column(Integer, primary_key=True, autoincrement=True)
    code = Column(String(50), nullable=True)
    spot_type = Column(_enum(SpotType, "spot_type"), nullable=False)
    status = Column(
        _enum(SpotStatus, "spot_status"),
        nullable=False,
        default=SpotStatus.FREE,
        index=True,
    )
    parking_lot_id = Column(
        Integer,
        ForeignKey("parking_lots.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    created_by = Column(String(128), ForeignKey("users.uid", ondelete="SET NULL"), nullable=True)
    reserved_by_id = Column(String(128), ForeignKey("users.uid", ondelete="SET NULL"), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    parking_lot = relationship("ParkingLot", back_populates="spots")
    sessions = relationship(
        "ParkingSession",
        back_populates="parking_spot",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    def __repr__(self):
        return f"<ParkingSpot(id={self.id}, code={self.code}, status={self.status})>"


class ParkingSession(Base):
    """One user's occupancy of one spot."""

    __tablename__ = "parking_sessions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(
        String(128),
        ForeignKey("users.uid", ondelete="CASCADE"),
        nullable=False,
    )
    parking_spot_id = Column(
        Integer,
        ForeignKey("parking_spots.id", ondelete="CASCADE"),
        nullable=False,
    )
    start_time = Column(DateTime, nullable=False, default=utcnow)
    end_time = Column(DateTime, nullable=True)
    session_type = Column(_enum(SessionType, "session_type"), nullable=False, default=SessionType.WALK_IN)
    total_amount = Column(Numeric(10, 2), nullable=True)
    notes = Column(String(500), nullable=True)
    created_at = Column(DateTime, nullable=False, default=utcnow)
    updated_at = Column(DateTime, nullable=False, default=utcnow, onupdate=utcnow)

    user = relationship("User", back_populates="sessions")
    parking_spot = relationship("ParkingSpot", back_populates="sessions")

    __table_args__ = (
        Index("idx_session_user", "user_id"),
        Index("idx_session_spot", "parking_spot_id"),
        Index("idx_session_start_time", "start_time"),
        # At most one open session per user
        Index(
            "uq_session_user_open",
            "user_id",
            unique=True,
            sqlite_where=text("end_time IS NULL"),
            postgresql_where=text("end_time IS NULL"),
        ),
        CheckConstraint("total_amount IS NULL OR total_amount >= 0", name="ck_session_amount"),
    )

    def __repr__(self):
        return f"<ParkingSession(id={self.id}, user={self.user_id}, spot={self.parking_spot_id})>"
