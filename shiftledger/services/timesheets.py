"""
Timesheet generation and approval.
Reconciles paired clock events of a staff member into a periodic
timesheet broken down by rate category, and runs the approval workflow:
draft -> pending_approval -> approved | rejected.
"""
import uuid
from datetime import date, timedelta
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import Appointment, ClockEvent, Staff, Timesheet, TimesheetEntry
from ..schemas.timesheets import (
    TimesheetEntryResponse,
    TimesheetSummary,
    TimesheetStatus,
    WeeklyFailure,
    WeeklyRunResult,
)
from .audit import create_audit_log, compute_diff
from .budget_posting import apply_budget_posting
from .errors import (
    InvalidTimesheetTransition,
    ReconciliationError,
    RejectionReasonRequired,
    StaffNotFound,
    TimesheetExists,
    TimesheetNotFound,
)
from .rate_categories import CATEGORY_FIELDS, HolidayCalendar, HoursBreakdown, decompose_interval
from .time_clock import CLOCK_IN, get_clock_records
from .time_rules import local_date, local_day_bounds, utcnow

logger = structlog.get_logger(__name__)

TRANSITIONS = {
    TimesheetStatus.draft: {TimesheetStatus.pending_approval},
    TimesheetStatus.pending_approval: {TimesheetStatus.approved, TimesheetStatus.rejected},
    TimesheetStatus.approved: set(),
    TimesheetStatus.rejected: set(),
}


def _hours_columns(breakdown: HoursBreakdown) -> Dict[str, float]:
    return breakdown.as_dict()


def _resolve_service(
    db: Session,
    appointment_id: Optional[uuid.UUID],
    cache: Dict[uuid.UUID, Optional[Appointment]],
) -> Tuple[Optional[uuid.UUID], str]:
    """Client and service type of a shift; (None, default) without an appointment."""
    if not appointment_id:
        return None, settings.default_service_type
    if appointment_id not in cache:
        cache[appointment_id] = db.query(Appointment).filter(Appointment.id == appointment_id).first()
    appointment = cache[appointment_id]
    if appointment is None:
        return None, settings.default_service_type
    return appointment.client_id, appointment.service_type


def build_entries(
    db: Session,
    records: list,
    calendar: HolidayCalendar,
) -> List[TimesheetEntry]:
    """
    One entry per completed clock-in/clock-out pair among the records.

    A pair counts only when both sides reference each other. The clock-in's
    period owns the shift: a clock-out outside the record set is loaded by id,
    and clock-outs whose clock-in precedes the set are left to that period.
    """
    by_id = {r.id: r for r in records}
    processed = set()
    appointments: Dict[uuid.UUID, Optional[Appointment]] = {}
    entries = []

    for record in records:
        if record.event_type != CLOCK_IN or not record.pair_id or record.id in processed:
            continue
        clock_out = by_id.get(record.pair_id) or db.get(ClockEvent, record.pair_id)
        if clock_out is None or clock_out.pair_id != record.id:
            continue
        processed.add(record.id)
        processed.add(clock_out.id)

        client_id, service_type = _resolve_service(db, record.appointment_id, appointments)
        breakdown = decompose_interval(record.timestamp, clock_out.timestamp, calendar)
        entries.append(TimesheetEntry(
            id=uuid.uuid4(),
            appointment_id=record.appointment_id,
            client_id=client_id,
            service_type=service_type,
            date=local_date(record.timestamp),
            clock_in_time=record.timestamp,
            clock_out_time=clock_out.timestamp,
            clock_in_event_id=record.id,
            clock_out_event_id=clock_out.id,
            notes=record.notes,
            **_hours_columns(breakdown),
        ))
    return entries


def _summary(timesheet: Timesheet, staff_name: str) -> TimesheetSummary:
    hours = HoursBreakdown.from_object(timesheet)
    return TimesheetSummary(
        timesheet_id=timesheet.id,
        staff_id=timesheet.staff_id,
        staff_name=staff_name,
        period_start=timesheet.period_start,
        period_end=timesheet.period_end,
        status=timesheet.status,
        approved_by_id=timesheet.approved_by_id,
        approved_at=timesheet.approved_at,
        rejected_by_id=timesheet.rejected_by_id,
        rejected_at=timesheet.rejected_at,
        rejection_reason=timesheet.rejection_reason,
        budget_posted_at=timesheet.budget_posted_at,
        entries=[TimesheetEntryResponse.model_validate(e) for e in timesheet.entries],
        **hours.as_dict(),
    )


def generate_timesheet(
    db: Session,
    staff_id: uuid.UUID,
    period_start: date,
    period_end: date,
    auto_approve: bool = False,
    generated_by_id: Optional[uuid.UUID] = None,
    calendar: Optional[HolidayCalendar] = None,
) -> TimesheetSummary:
    """
    Reconcile a staff member's clock events for a period into a timesheet.

    The period covers whole local days from period_start to period_end
    inclusive. The timesheet and its entries are written in one transaction;
    an auto-approved timesheet is also posted to the budget ledger in it.

    Raises:
        StaffNotFound, TimesheetExists, ReconciliationError (bad period)
    """
    if period_end < period_start:
        raise ReconciliationError("period_end must not be before period_start")

    # Row lock serialises generation per staff member so overlapping
    # periods cannot both pass the check below.
    staff = db.query(Staff).filter(Staff.id == staff_id).with_for_update().first()
    if not staff:
        raise StaffNotFound(f"Staff member {staff_id} not found")

    existing = db.query(Timesheet).filter(
        Timesheet.staff_id == staff_id,
        Timesheet.period_start <= period_end,
        Timesheet.period_end >= period_start,
        Timesheet.status != TimesheetStatus.rejected.value,
    ).order_by(Timesheet.period_start.asc()).first()
    if existing:
        db.rollback()
        raise TimesheetExists(
            f"Timesheet {existing.id} already covers {existing.period_start} - {existing.period_end} ({existing.status})"
        )

    if calendar is None:
        calendar = HolidayCalendar(db)
        calendar.preload(period_start, period_end)

    start_utc, end_utc = local_day_bounds(period_start, period_end)
    records = get_clock_records(db, staff_id, start_utc, end_utc)
    entries = build_entries(db, records, calendar)

    totals = HoursBreakdown()
    for entry in entries:
        totals.merge(HoursBreakdown.from_object(entry))

    now = utcnow()
    timesheet = Timesheet(
        id=uuid.uuid4(),
        staff_id=staff_id,
        period_start=period_start,
        period_end=period_end,
        status=(TimesheetStatus.approved if auto_approve else TimesheetStatus.pending_approval).value,
        approved_by_id=generated_by_id if auto_approve else None,
        approved_at=now if auto_approve else None,
        **_hours_columns(totals),
    )
    timesheet.entries = entries

    try:
        db.add(timesheet)
        db.flush()
        create_audit_log(
            db=db,
            entity_type="timesheet",
            entity_id=timesheet.id,
            action="GENERATE",
            actor_id=generated_by_id,
            context={
                "staff_id": str(staff_id),
                "period_start": period_start.isoformat(),
                "period_end": period_end.isoformat(),
                "entries": len(entries),
                "total_hours": round(totals.total_hours, 2),
                "auto_approve": auto_approve,
            },
        )
        if auto_approve:
            apply_budget_posting(db, timesheet, actor_id=generated_by_id)
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("timesheet_generation_failed", staff_id=str(staff_id))
        raise

    logger.info(
        "timesheet_generated",
        timesheet_id=str(timesheet.id),
        staff_id=str(staff_id),
        entries=len(entries),
        total_hours=totals.total_hours,
        status=timesheet.status,
    )
    return _summary(timesheet, staff.name)


def _load_for_update(db: Session, timesheet_id: uuid.UUID) -> Timesheet:
    timesheet = (
        db.query(Timesheet)
        .filter(Timesheet.id == timesheet_id)
        .with_for_update()
        .first()
    )
    if not timesheet:
        raise TimesheetNotFound(f"Timesheet {timesheet_id} not found")
    return timesheet


def _check_transition(timesheet: Timesheet, target: TimesheetStatus) -> None:
    if target not in TRANSITIONS[TimesheetStatus(timesheet.status)]:
        raise InvalidTimesheetTransition(
            f"Timesheet {timesheet.id} cannot move from {timesheet.status} to {target.value}"
        )


def _state(timesheet: Timesheet) -> Dict[str, Optional[str]]:
    return {
        "status": timesheet.status,
        "approved_by_id": str(timesheet.approved_by_id) if timesheet.approved_by_id else None,
        "rejected_by_id": str(timesheet.rejected_by_id) if timesheet.rejected_by_id else None,
        "rejection_reason": timesheet.rejection_reason,
    }


def _run_transition(db: Session, timesheet_id: uuid.UUID, target: TimesheetStatus, actor_id: uuid.UUID, apply) -> TimesheetSummary:
    try:
        timesheet = _load_for_update(db, timesheet_id)
        _check_transition(timesheet, target)
        before = _state(timesheet)
        apply(timesheet)
        timesheet.status = target.value
        db.flush()
        create_audit_log(
            db=db,
            entity_type="timesheet",
            entity_id=timesheet.id,
            action={
                TimesheetStatus.pending_approval: "SUBMIT",
                TimesheetStatus.approved: "APPROVE",
                TimesheetStatus.rejected: "REJECT",
            }[target],
            actor_id=actor_id,
            source="api",
            changes_json=compute_diff(before, _state(timesheet)),
            context={"staff_id": str(timesheet.staff_id)},
        )
        if target == TimesheetStatus.approved:
            apply_budget_posting(db, timesheet, actor_id=actor_id)
        db.commit()
    except ReconciliationError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("timesheet_transition_failed", timesheet_id=str(timesheet_id), target=target.value)
        raise

    logger.info("timesheet_status_changed", timesheet_id=str(timesheet_id), status=target.value, actor_id=str(actor_id))
    staff = db.query(Staff).filter(Staff.id == timesheet.staff_id).first()
    return _summary(timesheet, staff.name if staff else "Unknown")


def submit_timesheet(db: Session, timesheet_id: uuid.UUID, submitted_by_id: uuid.UUID) -> TimesheetSummary:
    """Move a draft timesheet to pending_approval."""
    return _run_transition(db, timesheet_id, TimesheetStatus.pending_approval, submitted_by_id, lambda ts: None)


def approve_timesheet(db: Session, timesheet_id: uuid.UUID, approved_by_id: uuid.UUID) -> TimesheetSummary:
    """
    Approve a pending timesheet and post its hours to the budget ledger,
    in the same transaction.
    """
    def apply(timesheet: Timesheet) -> None:
        timesheet.approved_by_id = approved_by_id
        timesheet.approved_at = utcnow()

    return _run_transition(db, timesheet_id, TimesheetStatus.approved, approved_by_id, apply)


def reject_timesheet(
    db: Session,
    timesheet_id: uuid.UUID,
    rejected_by_id: uuid.UUID,
    reason: str
) -> TimesheetSummary:
    """Reject a pending timesheet; a non-blank reason is required."""
    reason = (reason or "").strip()
    if not reason:
        raise RejectionReasonRequired("A rejection reason is required")

    def apply(timesheet: Timesheet) -> None:
        timesheet.rejected_by_id = rejected_by_id
        timesheet.rejected_at = utcnow()
        timesheet.rejection_reason = reason

    return _run_transition(db, timesheet_id, TimesheetStatus.rejected, rejected_by_id, apply)


def get_timesheet_summary(db: Session, timesheet_id: uuid.UUID) -> TimesheetSummary:
    timesheet = db.query(Timesheet).filter(Timesheet.id == timesheet_id).first()
    if not timesheet:
        raise TimesheetNotFound(f"Timesheet {timesheet_id} not found")
    staff = db.query(Staff).filter(Staff.id == timesheet.staff_id).first()
    return _summary(timesheet, staff.name if staff else "Unknown")


def list_timesheets(
    db: Session,
    staff_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None
) -> List[Timesheet]:
    query = db.query(Timesheet)
    if staff_id:
        query = query.filter(Timesheet.staff_id == staff_id)
    if status:
        query = query.filter(Timesheet.status == TimesheetStatus(status).value)
    return query.order_by(Timesheet.period_start.asc()).all()


def get_timesheet_entries(db: Session, timesheet_id: uuid.UUID) -> List[TimesheetEntry]:
    return (
        db.query(TimesheetEntry)
        .filter(TimesheetEntry.timesheet_id == timesheet_id)
        .order_by(TimesheetEntry.date.asc(), TimesheetEntry.clock_in_time.asc())
        .all()
    )


def generate_weekly_timesheets(db: Session, week_start: date) -> WeeklyRunResult:
    """
    Generate pending timesheets for every active staff member for the week
    starting at week_start. A failure for one staff member is recorded and
    the run continues with the next.
    """
    week_end = week_start + timedelta(days=6)
    result = WeeklyRunResult(week_start=week_start, week_end=week_end)

    staff_members = [
        (s.id, s.name)
        for s in db.query(Staff).filter(Staff.is_active.is_(True)).order_by(Staff.name.asc()).all()
    ]
    calendar = HolidayCalendar(db)
    calendar.preload(week_start, week_end)

    for staff_id, staff_name in staff_members:
        try:
            result.generated.append(
                generate_timesheet(db, staff_id, week_start, week_end, calendar=calendar)
            )
        except (ReconciliationError, SQLAlchemyError) as e:
            db.rollback()
            logger.warning("weekly_timesheet_failed", staff_id=str(staff_id), error=str(e))
            result.failures.append(WeeklyFailure(staff_id=staff_id, staff_name=staff_name, error=str(e)))

    logger.info(
        "weekly_timesheets_generated",
        week_start=week_start.isoformat(),
        generated=len(result.generated),
        failed=len(result.failures),
    )
    return result
