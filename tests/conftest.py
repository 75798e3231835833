"""Pytest configuration and fixtures."""

import os

# Settings are cached on first import; pin them before the app loads.
os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("OVERRIDE_PASSWORD", "let-them-in")
os.environ.setdefault("QR_SIGNING_SECRET", "test-qr-secret")
os.environ.setdefault("JWT_SECRET_KEY", "test-jwt-secret")
os.environ.setdefault("TIMEZONE", "America/Los_Angeles")

from datetime import datetime, timedelta, timezone
from typing import Generator

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from fakes import InMemoryAdmissionStore
from guestgate.api.deps import get_clock
from guestgate.core.clock import Clock, fixed_clock
from guestgate.core.policy import AdmissionPolicy
from guestgate.core.security import create_access_token
from guestgate.db.base import Base
from guestgate.db.models import Acceptance, Guest, Host, HostRole, Location
from guestgate.db.session import enable_sqlite_savepoints, get_db
from guestgate.main import fastapi_app

TEST_DATABASE_URL = "sqlite:///:memory:"

# 10:00 in Los Angeles (PDT).
NOW = datetime(2026, 6, 15, 17, 0, tzinfo=timezone.utc)


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def clock() -> Clock:
    return fixed_clock(NOW, "America/Los_Angeles")


@pytest.fixture
def policy() -> AdmissionPolicy:
    return AdmissionPolicy()


@pytest.fixture
def store() -> InMemoryAdmissionStore:
    return InMemoryAdmissionStore()


@pytest.fixture(scope="function")
def db_engine():
    """Create a test database engine."""
    engine = create_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    enable_sqlite_savepoints(engine)
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(scope="function")
def db_session(db_engine) -> Generator[Session, None, None]:
    """Create a test database session."""
    SessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=db_engine)
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="function")
def client(db_session: Session, clock: Clock) -> Generator[TestClient, None, None]:
    """Create a test client with database and clock overrides."""

    def override_get_db():
        try:
            yield db_session
        finally:
            pass

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_clock] = lambda: clock
    # Startup hooks are skipped; tables come from db_engine.
    yield TestClient(fastapi_app, raise_server_exceptions=False)
    fastapi_app.dependency_overrides.clear()


@pytest.fixture
def location(db_session: Session) -> Location:
    row = Location(name="Main Lobby", is_active=True, check_in_cutoff_hour=23)
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


def _host(db_session: Session, name: str, role: HostRole, location: Location | None) -> Host:
    row = Host(
        name=name,
        email=f"{name.lower().replace(' ', '.')}@example.com",
        role=role,
        location_id=location.id if location else None,
        is_active=True,
    )
    db_session.add(row)
    db_session.commit()
    db_session.refresh(row)
    return row


@pytest.fixture
def host(db_session: Session, location: Location) -> Host:
    return _host(db_session, "Hana Host", HostRole.host, location)


@pytest.fixture
def security(db_session: Session, location: Location) -> Host:
    return _host(db_session, "Sam Security", HostRole.security, location)


@pytest.fixture
def admin(db_session: Session) -> Host:
    return _host(db_session, "Ada Admin", HostRole.admin, None)


@pytest.fixture
def auth_headers():
    def _headers(host: Host) -> dict:
        return {"Authorization": f"Bearer {create_access_token(host.id, host.role.value)}"}

    return _headers


@pytest.fixture
def make_guest(db_session: Session):
    def _make(email: str, name: str = "Guest", consent_age: timedelta | None = timedelta(days=10)) -> Guest:
        guest = Guest(email=email.lower(), name=name)
        db_session.add(guest)
        db_session.flush()
        if consent_age is not None:
            db_session.add(Acceptance(guest_id=guest.id, accepted_at=NOW - consent_age))
        db_session.commit()
        db_session.refresh(guest)
        return guest

    return _make
