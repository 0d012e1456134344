"""
Pytest fixtures for the shiftledger test suite.

Provides:
- An in-memory SQLite database, fresh per test
- Factory fixtures for staff, clients, appointments, holidays and budgets
- A clock helper that drives the clock ledger with explicit event times

Local time is pinned to UTC unless a test overrides settings.tz_default,
so wall-clock hours in assertions equal the stored UTC hours.
"""
import math
import uuid
from datetime import date, datetime, timedelta
from decimal import Decimal
from typing import Optional

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from shiftledger.config import settings
from shiftledger.db import Base
from shiftledger.models.models import (
    Appointment,
    BudgetLedger,
    Client,
    PublicHoliday,
    Staff,
)
from shiftledger.schemas.time_clock import ClockRequest
from shiftledger.services.time_clock import clock_in, clock_out

# Sydney CBD
SITE_LAT = -33.8688
SITE_LNG = 151.2093

METERS_PER_DEGREE_LAT = 6371000 * math.pi / 180


def north_of(latitude: float, meters: float) -> float:
    """Latitude `meters` due north; haversine distance along a meridian is exact."""
    return latitude + meters / METERS_PER_DEGREE_LAT


# =============================================================================
# Settings fixtures
# =============================================================================


@pytest.fixture(autouse=True)
def _pin_settings(monkeypatch):
    monkeypatch.setattr(settings, "tz_default", "UTC")
    monkeypatch.setattr(settings, "audit_secret", "test-secret")
    monkeypatch.setattr(settings, "geo_radius_m_default", 100)
    monkeypatch.setattr(settings, "gps_accuracy_warn_m", 50)
    monkeypatch.setattr(settings, "min_shift_minutes", 5)
    monkeypatch.setattr(settings, "max_shift_hours", 16)
    monkeypatch.setattr(settings, "rate_increment_minutes", 60)
    monkeypatch.setattr(settings, "default_service_type", "NDIS")


# =============================================================================
# Database fixtures
# =============================================================================


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    Base.metadata.create_all(engine)
    yield engine
    Base.metadata.drop_all(engine)
    engine.dispose()


@pytest.fixture
def session(engine):
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    db = factory()
    try:
        yield db
    finally:
        db.close()


# =============================================================================
# Factory fixtures
# =============================================================================


@pytest.fixture
def create_staff(session):
    def _create(name: str = "Alex Carer", is_active: bool = True) -> Staff:
        staff = Staff(id=uuid.uuid4(), name=name, email=f"{name.split()[0].lower()}@example.com", is_active=is_active)
        session.add(staff)
        session.commit()
        return staff
    return _create


@pytest.fixture
def create_client(session):
    def _create(
        name: str = "Jordan Client",
        latitude: Optional[float] = SITE_LAT,
        longitude: Optional[float] = SITE_LNG,
    ) -> Client:
        client = Client(id=uuid.uuid4(), name=name, gps_latitude=latitude, gps_longitude=longitude)
        session.add(client)
        session.commit()
        return client
    return _create


@pytest.fixture
def create_appointment(session):
    def _create(
        client: Client,
        staff: Optional[Staff] = None,
        service_type: str = "NDIS",
        start_time: datetime = datetime(2024, 3, 4, 8, 0),
        end_time: datetime = datetime(2024, 3, 4, 17, 0),
    ) -> Appointment:
        appointment = Appointment(
            id=uuid.uuid4(),
            client_id=client.id,
            staff_id=staff.id if staff else None,
            service_type=service_type,
            start_time=start_time,
            end_time=end_time,
        )
        session.add(appointment)
        session.commit()
        return appointment
    return _create


@pytest.fixture
def create_holiday(session):
    def _create(day: date, name: str = "Public Holiday", region: Optional[str] = None) -> PublicHoliday:
        holiday = PublicHoliday(id=uuid.uuid4(), date=day, name=name, region=region)
        session.add(holiday)
        session.commit()
        return holiday
    return _create


@pytest.fixture
def create_budget(session):
    def _create(client: Client, service_type: str = "NDIS", allocated: str = "100.00") -> BudgetLedger:
        budget = BudgetLedger(
            id=uuid.uuid4(),
            client_id=client.id,
            service_type=service_type,
            total_allocated=Decimal(allocated),
            used=Decimal("0"),
            remaining=Decimal(allocated),
        )
        session.add(budget)
        session.commit()
        return budget
    return _create


# =============================================================================
# Clock helpers
# =============================================================================


@pytest.fixture
def clock(session):
    """
    Drive the clock ledger.

    Usage::

        result = clock("in", staff, datetime(2024, 3, 4, 8), appointment=appt)
        result = clock("out", staff, datetime(2024, 3, 4, 17), appointment=appt, meters_off=250)
    """
    def _clock(
        kind: str,
        staff,
        at: datetime,
        appointment: Optional[Appointment] = None,
        meters_off: float = 0.0,
        accuracy: Optional[float] = None,
        notes: Optional[str] = None,
        staff_id: Optional[uuid.UUID] = None,
    ):
        request = ClockRequest(
            staff_id=staff_id or staff.id,
            appointment_id=appointment.id if appointment else None,
            latitude=north_of(SITE_LAT, meters_off),
            longitude=SITE_LNG,
            accuracy=accuracy,
            notes=notes,
            occurred_at=at,
        )
        if kind == "in":
            return clock_in(session, request)
        return clock_out(session, request)
    return _clock


@pytest.fixture
def work_shift(clock):
    """Clock a complete, compliant shift; returns (clock_in_result, clock_out_result)."""
    def _shift(staff, start: datetime, end: datetime, appointment: Optional[Appointment] = None, notes: Optional[str] = None):
        started = clock("in", staff, start, appointment=appointment, notes=notes)
        assert started.success, started.errors
        finished = clock("out", staff, end, appointment=appointment)
        assert finished.success, finished.errors
        return started, finished
    return _shift


MONDAY = date(2024, 3, 4)
SUNDAY = MONDAY + timedelta(days=6)
