import uuid
from datetime import datetime, date as date_type
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    String,
    DateTime,
    Date,
    Boolean,
    ForeignKey,
    Float,
    Numeric,
    JSON,
    UniqueConstraint,
    Text,
    Index,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import relationship, Mapped, mapped_column

from ..db import Base


def uuid_pk() -> Mapped[uuid.UUID]:
    return mapped_column(UUID(as_uuid=True), primary_key=True, default=uuid.uuid4)


# Reference data (owned by the record-management side of the platform)

class Staff(Base):
    __tablename__ = "staff"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    email: Mapped[Optional[str]] = mapped_column(String(255))
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


class Client(Base):
    __tablename__ = "clients"

    id: Mapped[uuid.UUID] = uuid_pk()
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(String(500))
    gps_latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    gps_longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)


class Appointment(Base):
    __tablename__ = "appointments"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    staff_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id", ondelete="SET NULL"), index=True)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)  # NDIS|Support at Home|Private
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)  # UTC
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)  # UTC

    client = relationship("Client")


class PublicHoliday(Base):
    __tablename__ = "public_holidays"

    id: Mapped[uuid.UUID] = uuid_pk()
    date: Mapped[date_type] = mapped_column(Date, nullable=False, unique=True, index=True)  # Local calendar date
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    region: Mapped[Optional[str]] = mapped_column(String(50))


# Attendance

class ClockEvent(Base):
    """One clock-in or clock-out action by a staff member"""
    __tablename__ = "clock_events"

    id: Mapped[uuid.UUID] = uuid_pk()
    staff_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL"), index=True)
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)  # clock_in|clock_out
    event_status: Mapped[str] = mapped_column(String(20), nullable=False, default="valid")  # valid|gps_warning|gps_violation
    timestamp: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)  # UTC
    latitude: Mapped[float] = mapped_column(Numeric(10, 7), nullable=False)
    longitude: Mapped[float] = mapped_column(Numeric(10, 7), nullable=False)
    accuracy: Mapped[Optional[float]] = mapped_column(Numeric(10, 2))  # meters
    expected_latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    expected_longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    distance_from_expected: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))  # meters
    is_within_radius: Mapped[Optional[bool]] = mapped_column(Boolean)
    radius_threshold: Mapped[Optional[int]] = mapped_column()
    pair_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)  # Counterpart clock event
    # Staff id while this clock-in is an open shift; NULL otherwise. The unique
    # constraint makes a second concurrent open shift fail at insert time.
    open_shift_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True)
    device_type: Mapped[Optional[str]] = mapped_column(String(100))
    notes: Mapped[Optional[str]] = mapped_column(Text)
    expected_clock_out_time: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)

    __table_args__ = (
        Index('idx_clock_events_staff_time', 'staff_id', 'timestamp'),
        Index('idx_clock_events_staff_type', 'staff_id', 'event_type'),
    )


class ComplianceLogEntry(Base):
    """Append-only GPS compliance record, reviewed by the office"""
    __tablename__ = "gps_compliance_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    event_type: Mapped[str] = mapped_column(String(20), nullable=False)  # clock_in|clock_out
    staff_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("appointments.id", ondelete="SET NULL"), index=True)
    clock_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), ForeignKey("clock_events.id", ondelete="CASCADE"), index=True)
    recorded_latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    recorded_longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    expected_latitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    expected_longitude: Mapped[Optional[float]] = mapped_column(Numeric(10, 7))
    distance_meters: Mapped[Optional[float]] = mapped_column(Numeric(12, 2))
    is_compliant: Mapped[bool] = mapped_column(Boolean, nullable=False)
    requires_review: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    # Filled by the review workflow
    reviewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))
    reviewed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    review_notes: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow, index=True)

    __table_args__ = (
        Index('idx_compliance_review', 'requires_review', 'reviewed_at'),
    )


# Timesheets

class Timesheet(Base):
    __tablename__ = "timesheets"

    id: Mapped[uuid.UUID] = uuid_pk()
    staff_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("staff.id", ondelete="CASCADE"), nullable=False, index=True)
    period_start: Mapped[date_type] = mapped_column(Date, nullable=False)
    period_end: Mapped[date_type] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="draft")  # draft|pending_approval|approved|rejected
    total_hours: Mapped[float] = mapped_column(Float, default=0.0)
    weekday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    saturday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    sunday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    public_holiday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    evening_hours: Mapped[float] = mapped_column(Float, default=0.0)
    night_hours: Mapped[float] = mapped_column(Float, default=0.0)
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))
    rejected_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text)
    budget_posted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))  # Set once hours hit the budget ledger
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow)

    staff = relationship("Staff")
    entries = relationship(
        "TimesheetEntry",
        back_populates="timesheet",
        cascade="all, delete-orphan",
        order_by="TimesheetEntry.clock_in_time",
    )

    __table_args__ = (
        Index('idx_timesheets_staff_period', 'staff_id', 'period_start', 'period_end'),
        Index('idx_timesheets_status', 'status'),
    )


class TimesheetEntry(Base):
    __tablename__ = "timesheet_entries"

    id: Mapped[uuid.UUID] = uuid_pk()
    timesheet_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("timesheets.id", ondelete="CASCADE"), nullable=False, index=True)
    appointment_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    client_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    date: Mapped[date_type] = mapped_column(Date, nullable=False)  # Local date of clock-in
    clock_in_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    clock_out_time: Mapped[datetime] = mapped_column(DateTime(timezone=False), nullable=False)
    clock_in_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    clock_out_event_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True))
    total_hours: Mapped[float] = mapped_column(Float, default=0.0)
    weekday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    saturday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    sunday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    public_holiday_hours: Mapped[float] = mapped_column(Float, default=0.0)
    evening_hours: Mapped[float] = mapped_column(Float, default=0.0)
    night_hours: Mapped[float] = mapped_column(Float, default=0.0)
    notes: Mapped[Optional[str]] = mapped_column(Text)

    timesheet = relationship("Timesheet", back_populates="entries")


class BudgetLedger(Base):
    """Per client and service type allocation; usage accrues from approved timesheets"""
    __tablename__ = "budgets"

    id: Mapped[uuid.UUID] = uuid_pk()
    client_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), ForeignKey("clients.id", ondelete="CASCADE"), nullable=False, index=True)
    service_type: Mapped[str] = mapped_column(String(50), nullable=False)
    total_allocated: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    used: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    remaining: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False, default=Decimal("0"))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=False))

    __table_args__ = (
        UniqueConstraint("client_id", "service_type", name="uq_budget_client_service"),
    )


class AuditLog(Base):
    """Append-only audit log for timesheet and budget actions"""
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = uuid_pk()
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)  # timesheet|budget|clock_event
    entity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)  # GENERATE|SUBMIT|APPROVE|REJECT|POST_BUDGET|RECONCILE
    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(UUID(as_uuid=True), index=True)
    source: Mapped[Optional[str]] = mapped_column(String(50))  # api|system|batch
    changes_json: Mapped[Optional[dict]] = mapped_column(JSON)  # Before/after diff
    timestamp_utc: Mapped[datetime] = mapped_column(DateTime(timezone=False), default=datetime.utcnow, nullable=False, index=True)
    context: Mapped[Optional[dict]] = mapped_column(JSON)
    integrity_hash: Mapped[Optional[str]] = mapped_column(String(64))  # SHA256 hash for integrity verification

    __table_args__ = (
        Index('idx_audit_entity', 'entity_type', 'entity_id'),
    )
