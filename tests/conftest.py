"""
ParkFlow - Test Configuration & Fixtures
Reusable fixtures for all test modules.

Usage:
    pytest tests/ -v
    pytest tests/test_sessions.py -v
    pytest tests/ -v --tb=short
"""

import pytest
from fastapi.testclient import TestClient
from unittest.mock import patch
from typing import Optional

from parkflow.config import Settings
from parkflow.database import Database, queries
from parkflow.database.tables import ParkingLot as LotRow, ParkingSpot as SpotRow
from parkflow.models.parking import SpotStatus, SpotType
from parkflow.models.user import TokenPayload, UserRole
from parkflow.security.firebase_auth import verify_firebase_token
from parkflow.services.container import ServiceContainer
from parkflow.utils.helpers import generate_spot_code


# ============================================================
# SETTINGS & DATABASE FIXTURES
# ============================================================

@pytest.fixture
def settings() -> Settings:
    """Settings for an in-memory database with no background simulation."""
    return Settings(
        DATABASE_URL="sqlite://",
        SIMULATOR_AUTOSTART=False,
        STATS_BROADCAST_SECONDS=3600,
        FIREBASE_PROJECT_ID="",
        FIREBASE_PRIVATE_KEY="",
        DEBUG=False,
    )


@pytest.fixture
def database(settings: Settings):
    """Fresh in-memory SQLite database with the schema created."""
    db = Database(settings.database_url)
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def services(settings: Settings, database: Database) -> ServiceContainer:
    """Service container wired to the in-memory database."""
    return ServiceContainer(settings, database=database)


@pytest.fixture
def events(services: ServiceContainer) -> list:
    """Every message published on the broadcaster, in order."""
    published = []
    services.broadcaster.add_listener(published.append)
    return published


# ============================================================
# DATA FIXTURES
# ============================================================

@pytest.fixture
def make_user(services: ServiceContainer):
    """Factory creating a user row."""
    def _make_user(uid: str = "user-123", role: UserRole = UserRole.USER) -> str:
        with services.database.session_scope() as db:
            queries.upsert_user(db, uid, email=f"{uid}@example.com", role=role)
        return uid
    return _make_user


@pytest.fixture
def make_lot(services: ServiceContainer):
    """Factory creating a parking lot."""
    def _make_lot(name: str = "Central Garage", location: str = "12 Harbour Street") -> int:
        with services.database.session_scope() as db:
            lot = LotRow(name=name, location=location)
            db.add(lot)
            db.flush()
            return lot.id
    return _make_lot


@pytest.fixture
def make_spot(services: ServiceContainer):
    """Factory creating a spot directly in a given status."""
    def _make_spot(
        lot_id: int,
        status: SpotStatus = SpotStatus.FREE,
        spot_type: SpotType = SpotType.CAR,
        reserved_by_id: Optional[str] = None,
        is_active: bool = True,
    ) -> int:
        with services.database.session_scope() as db:
            spot = SpotRow(
                code=generate_spot_code(spot_type),
                spot_type=spot_type,
                status=status,
                parking_lot_id=lot_id,
                reserved_by_id=reserved_by_id,
                is_active=is_active,
            )
            db.add(spot)
            db.flush()
            spot.code = generate_spot_code(spot_type, spot.id)
            queries.recompute_lot_total(db, lot_id)
            return spot.id
    return _make_spot


@pytest.fixture
def lot_id(make_lot) -> int:
    return make_lot()


@pytest.fixture
def spot_status(services: ServiceContainer):
    """Read the stored status of a spot."""
    def _spot_status(spot_id: int) -> SpotStatus:
        with services.database.session_scope() as db:
            return SpotStatus(queries.get_spot(db, spot_id).status)
    return _spot_status


# ============================================================
# TEST CLIENT FIXTURES
# ============================================================

@pytest.fixture
def identity() -> dict:
    """Identity presented by the test client; tests may switch it."""
    return {"uid": "user-123", "role": None}


@pytest.fixture
def as_admin(identity: dict):
    """Switch the test client to an admin identity."""
    identity.update(uid="admin-123", role=UserRole.ADMIN.value)
    return identity


@pytest.fixture
def client(services: ServiceContainer, identity: dict):
    """FastAPI TestClient with Firebase token verification overridden."""
    from parkflow.main import create_app

    app = create_app(services=services)
    app.dependency_overrides[verify_firebase_token] = lambda: TokenPayload(
        uid=identity["uid"],
        email=f"{identity['uid']}@example.com",
        role=identity["role"],
    )

    with patch("parkflow.main.init_firebase"):
        with TestClient(app) as test_client:
            yield test_client
