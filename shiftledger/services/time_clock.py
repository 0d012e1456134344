"""
Clock event ledger.
Records clock-in/clock-out events per staff member with GPS validation,
keeps at most one open shift per staff member and pairs each clock-out
with its clock-in.

Business outcomes are returned as ClockEventResult values; only
infrastructure failures are caught, and those become a single
PERSISTENCE_FAILURE issue after the transaction is rolled back.
"""
import uuid
from datetime import datetime, timedelta
from typing import Optional, List, Tuple

import structlog
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Appointment, ClockEvent, Staff
from ..schemas.time_clock import (
    ActiveClockStatus,
    ClockEventResult,
    ClockIssue,
    ClockRequest,
    OpenShift,
)
from .compliance_log import record_compliance
from .errors import ClockIssueCode
from .geofence import GeoPoint, GeoEvaluation, evaluate_location
from .time_rules import utcnow, to_naive_utc, minutes_between

logger = structlog.get_logger(__name__)

CLOCK_IN = "clock_in"
CLOCK_OUT = "clock_out"

# Sentinel: do not filter open shifts by appointment
ANY_APPOINTMENT = object()


def _issue(code: ClockIssueCode, message: str) -> ClockIssue:
    return ClockIssue(code=code, message=message)


def _failure(code: ClockIssueCode, message: str, **extra) -> ClockEventResult:
    return ClockEventResult(success=False, errors=[_issue(code, message)], **extra)


def _as_open_shift(event: ClockEvent) -> OpenShift:
    return OpenShift(
        record_id=event.id,
        appointment_id=event.appointment_id,
        clock_in_time=event.timestamp,
        expected_clock_out_time=event.expected_clock_out_time,
    )


def _resolve_event_time(occurred_at: Optional[datetime]) -> Tuple[datetime, Optional[str]]:
    """Naive UTC event time, plus a problem message when it is too far in the future."""
    now = utcnow()
    if occurred_at is None:
        return now, None
    event_time = to_naive_utc(occurred_at)
    max_future = now + timedelta(minutes=settings.max_future_clock_min)
    if event_time > max_future:
        return event_time, (
            f"Clock events cannot be more than {settings.max_future_clock_min} minutes "
            f"in the future"
        )
    return event_time, None


def expected_location_for(appointment: Optional[Appointment]) -> Optional[GeoPoint]:
    """
    Service location for an appointment: its client's recorded GPS point.
    None when there is no appointment or the client has no location.
    """
    if appointment is None or appointment.client is None:
        return None
    client = appointment.client
    if client.gps_latitude is None or client.gps_longitude is None:
        return None
    return GeoPoint(latitude=float(client.gps_latitude), longitude=float(client.gps_longitude))


def get_open_clock_ins(
    db: Session,
    staff_id: uuid.UUID,
    appointment_id=ANY_APPOINTMENT,
    for_update: bool = False,
) -> List[ClockEvent]:
    """
    Clock-ins of a staff member that still wait for their clock-out, oldest first.

    Args:
        appointment_id: restrict to one appointment key (None matches shifts
            without an appointment); all appointments by default
        for_update: lock the rows until the transaction ends
    """
    query = db.query(ClockEvent).filter(
        ClockEvent.staff_id == staff_id,
        ClockEvent.event_type == CLOCK_IN,
        ClockEvent.open_shift_key.isnot(None),
        ClockEvent.pair_id.is_(None),
    )
    if appointment_id is not ANY_APPOINTMENT:
        if appointment_id is None:
            query = query.filter(ClockEvent.appointment_id.is_(None))
        else:
            query = query.filter(ClockEvent.appointment_id == appointment_id)
    if for_update:
        query = query.with_for_update()
    return query.order_by(ClockEvent.timestamp.asc()).all()


def _build_event(
    request: ClockRequest,
    event_type: str,
    event_time: datetime,
    expected: Optional[GeoPoint],
    evaluation: GeoEvaluation,
) -> ClockEvent:
    return ClockEvent(
        id=uuid.uuid4(),
        staff_id=request.staff_id,
        appointment_id=request.appointment_id,
        event_type=event_type,
        event_status=evaluation.status,
        timestamp=event_time,
        latitude=request.latitude,
        longitude=request.longitude,
        accuracy=request.accuracy,
        expected_latitude=expected.latitude if expected else None,
        expected_longitude=expected.longitude if expected else None,
        distance_from_expected=round(evaluation.distance_m, 2) if evaluation.distance_m is not None else None,
        is_within_radius=None if evaluation.skipped else evaluation.compliant,
        radius_threshold=int(evaluation.radius_m) if evaluation.radius_m is not None else None,
        device_type=request.device_type,
        notes=request.notes,
    )


def _lookup(db: Session, request: ClockRequest) -> Tuple[Optional[Staff], Optional[Appointment], Optional[ClockEventResult]]:
    staff = db.query(Staff).filter(Staff.id == request.staff_id).first()
    if not staff:
        return None, None, _failure(ClockIssueCode.STAFF_NOT_FOUND, "Staff member not found")

    appointment = None
    if request.appointment_id:
        appointment = db.query(Appointment).filter(Appointment.id == request.appointment_id).first()
        if not appointment:
            return staff, None, _failure(ClockIssueCode.APPOINTMENT_NOT_FOUND, "Appointment not found")
    return staff, appointment, None


def _overlap_failure(open_shifts: List[ClockEvent]) -> ClockEventResult:
    return _failure(
        ClockIssueCode.OVERLAPPING_SHIFT,
        f"Staff member is already clocked in to {len(open_shifts)} other appointment(s). "
        f"Please clock out first.",
        overlapping_events=[_as_open_shift(e) for e in open_shifts],
    )


def clock_in(db: Session, request: ClockRequest) -> ClockEventResult:
    """
    Clock a staff member in.

    Blocks (nothing written) when the staff member or appointment is unknown,
    the time is in the future, or another shift is still open. A GPS violation
    is written for audit but reported as a failure and does not open a shift.
    """
    log = logger.bind(staff_id=str(request.staff_id), appointment_id=str(request.appointment_id) if request.appointment_id else None)
    try:
        staff, appointment, failure = _lookup(db, request)
        if failure:
            return failure

        event_time, time_problem = _resolve_event_time(request.occurred_at)
        if time_problem:
            return _failure(ClockIssueCode.INVALID_TIMESTAMP, time_problem)

        open_shifts = get_open_clock_ins(db, staff.id)
        if open_shifts:
            log.info("clock_in_overlap", open_shifts=len(open_shifts))
            return _overlap_failure(open_shifts)

        expected = expected_location_for(appointment)
        observed = GeoPoint(request.latitude, request.longitude, request.accuracy)
        evaluation = evaluate_location(observed, expected)

        event = _build_event(request, CLOCK_IN, event_time, expected, evaluation)
        if appointment is not None:
            event.expected_clock_out_time = appointment.end_time
        if not evaluation.is_violation:
            event.open_shift_key = str(staff.id)
        db.add(event)
        db.flush()

        if expected is not None:
            record_compliance(
                db,
                event_type=CLOCK_IN,
                staff_id=staff.id,
                appointment_id=request.appointment_id,
                clock_event_id=event.id,
                observed=observed,
                expected=expected,
                evaluation=evaluation,
                notes=request.notes,
            )
        db.commit()
    except IntegrityError:
        db.rollback()
        # A concurrent clock-in for the same staff member committed first
        open_shifts = get_open_clock_ins(db, request.staff_id)
        if open_shifts:
            log.warning("clock_in_overlap_race", open_shifts=len(open_shifts))
            return _overlap_failure(open_shifts)
        log.exception("clock_in_failed")
        return _failure(ClockIssueCode.PERSISTENCE_FAILURE, "Failed to process clock in event")
    except SQLAlchemyError:
        db.rollback()
        log.exception("clock_in_failed")
        return _failure(ClockIssueCode.PERSISTENCE_FAILURE, "Failed to process clock in event")

    log.info("clock_in_recorded", record_id=str(event.id), status=event.event_status, distance=evaluation.distance_m)
    return ClockEventResult(
        success=not evaluation.is_violation,
        record_id=event.id,
        errors=[_issue(code, msg) for code, msg in evaluation.errors],
        warnings=[_issue(code, msg) for code, msg in evaluation.warnings],
        gps_compliant=evaluation.compliant,
        distance=evaluation.distance_m,
    )


def clock_out(db: Session, request: ClockRequest) -> ClockEventResult:
    """
    Clock a staff member out of the open shift with the same appointment key.

    On success the clock-out and clock-in reference each other through
    pair_id and the shift is closed. A GPS violation is written for audit,
    reported as a failure, and leaves the shift open.
    """
    log = logger.bind(staff_id=str(request.staff_id), appointment_id=str(request.appointment_id) if request.appointment_id else None)
    try:
        staff, appointment, failure = _lookup(db, request)
        if failure:
            return failure

        event_time, time_problem = _resolve_event_time(request.occurred_at)
        if time_problem:
            return _failure(ClockIssueCode.INVALID_TIMESTAMP, time_problem)

        candidates = get_open_clock_ins(db, staff.id, appointment_id=request.appointment_id, for_update=True)
        matching = None
        for candidate in candidates:
            if candidate.pair_id is None:
                matching = candidate
                break
        if matching is None:
            db.rollback()
            return _failure(ClockIssueCode.NO_ACTIVE_CLOCK_IN, "No active clock-in event found for this staff member")

        if event_time < matching.timestamp:
            db.rollback()
            return _failure(ClockIssueCode.INVALID_TIMESTAMP, "Clock-out time is earlier than the clock-in time")

        expected = expected_location_for(appointment)
        observed = GeoPoint(request.latitude, request.longitude, request.accuracy)
        evaluation = evaluate_location(observed, expected)

        warnings = [_issue(code, msg) for code, msg in evaluation.warnings]
        duration_minutes = minutes_between(matching.timestamp, event_time)
        if duration_minutes < settings.min_shift_minutes:
            warnings.append(_issue(
                ClockIssueCode.IMPLAUSIBLE_DURATION_WARNING,
                f"Very short shift duration ({duration_minutes} minutes). Please verify.",
            ))
        if duration_minutes > settings.max_shift_hours * 60:
            warnings.append(_issue(
                ClockIssueCode.IMPLAUSIBLE_DURATION_WARNING,
                f"Very long shift duration ({duration_minutes // 60} hours). Please verify.",
            ))

        event = _build_event(request, CLOCK_OUT, event_time, expected, evaluation)
        if not evaluation.is_violation:
            event.pair_id = matching.id
        db.add(event)
        db.flush()

        if not evaluation.is_violation:
            matching.pair_id = event.id
            matching.open_shift_key = None

        if expected is not None:
            record_compliance(
                db,
                event_type=CLOCK_OUT,
                staff_id=staff.id,
                appointment_id=request.appointment_id,
                clock_event_id=event.id,
                observed=observed,
                expected=expected,
                evaluation=evaluation,
                notes=request.notes,
            )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        log.exception("clock_out_failed")
        return _failure(ClockIssueCode.PERSISTENCE_FAILURE, "Failed to process clock out event")

    log.info(
        "clock_out_recorded",
        record_id=str(event.id),
        clock_in_id=str(matching.id),
        status=event.event_status,
        duration_minutes=duration_minutes,
    )
    return ClockEventResult(
        success=not evaluation.is_violation,
        record_id=event.id,
        errors=[_issue(code, msg) for code, msg in evaluation.errors],
        warnings=warnings,
        gps_compliant=evaluation.compliant,
        distance=evaluation.distance_m,
    )


def get_active_clock_in(db: Session, staff_id: uuid.UUID) -> ActiveClockStatus:
    open_shifts = get_open_clock_ins(db, staff_id)
    return ActiveClockStatus(
        is_clocked_in=len(open_shifts) > 0,
        active_events=[_as_open_shift(e) for e in open_shifts],
    )


def get_clock_records(
    db: Session,
    staff_id: uuid.UUID,
    start: datetime,
    end: datetime
) -> List[ClockEvent]:
    """Clock events of a staff member in [start, end), ordered by time."""
    return (
        db.query(ClockEvent)
        .filter(
            ClockEvent.staff_id == staff_id,
            ClockEvent.timestamp >= to_naive_utc(start),
            ClockEvent.timestamp < to_naive_utc(end),
        )
        .order_by(ClockEvent.timestamp.asc())
        .all()
    )


def calculate_hours_from_records(records: List[ClockEvent]) -> float:
    """Hours covered by the completed pairs in a list of clock events."""
    clock_ins = {r.id: r for r in records if r.event_type == CLOCK_IN}
    total_minutes = 0
    for record in records:
        if record.event_type != CLOCK_OUT or not record.pair_id:
            continue
        clock_in_event = clock_ins.get(record.pair_id)
        if clock_in_event and clock_in_event.pair_id == record.id:
            total_minutes += minutes_between(clock_in_event.timestamp, record.timestamp)
    return total_minutes / 60
