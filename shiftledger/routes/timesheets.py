"""
Timesheet API routes.
Generation, approval workflow and budget posting.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid

from ..db import get_db
from ..models.models import Timesheet
from ..schemas.timesheets import (
    TimesheetSummary, TimesheetListItem, TimesheetStatus, AuditLogResponse,
    GenerateTimesheetRequest, GenerateWeeklyRequest, WeeklyRunResult,
    ActorRequest, RejectTimesheetRequest, PostingResult
)
from ..services.audit import get_audit_logs, verify_audit_log
from ..services.errors import ReconciliationError
from ..services.timesheets import (
    generate_timesheet, generate_weekly_timesheets, get_timesheet_summary,
    list_timesheets, submit_timesheet, approve_timesheet, reject_timesheet
)
from ..services.budget_posting import post_timesheet_to_budget

router = APIRouter(prefix="/timesheets", tags=["timesheets"])

VALID_STATUSES = {s.value for s in TimesheetStatus}


def _http_error(e: ReconciliationError) -> HTTPException:
    return HTTPException(status_code=e.status_code, detail=e.message)


@router.post("/generate", response_model=TimesheetSummary)
def generate(payload: GenerateTimesheetRequest, db: Session = Depends(get_db)):
    try:
        return generate_timesheet(
            db,
            payload.staff_id,
            payload.period_start,
            payload.period_end,
            auto_approve=payload.auto_approve,
            generated_by_id=payload.generated_by_id,
        )
    except ReconciliationError as e:
        raise _http_error(e)


@router.post("/generate-weekly", response_model=WeeklyRunResult)
def generate_weekly(payload: GenerateWeeklyRequest, db: Session = Depends(get_db)):
    """Batch generation for all active staff; per-staff failures are reported, not raised."""
    return generate_weekly_timesheets(db, payload.week_start)


@router.get("", response_model=List[TimesheetListItem])
def list_all(
    staff_id: Optional[uuid.UUID] = None,
    status: Optional[str] = None,
    db: Session = Depends(get_db)
):
    if status and status not in VALID_STATUSES:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    return list_timesheets(db, staff_id=staff_id, status=status)


@router.get("/{timesheet_id}", response_model=TimesheetSummary)
def get_one(timesheet_id: uuid.UUID, db: Session = Depends(get_db)):
    try:
        return get_timesheet_summary(db, timesheet_id)
    except ReconciliationError as e:
        raise _http_error(e)


@router.post("/{timesheet_id}/submit", response_model=TimesheetSummary)
def submit(timesheet_id: uuid.UUID, payload: ActorRequest, db: Session = Depends(get_db)):
    try:
        return submit_timesheet(db, timesheet_id, payload.actor_id)
    except ReconciliationError as e:
        raise _http_error(e)


@router.post("/{timesheet_id}/approve", response_model=TimesheetSummary)
def approve(timesheet_id: uuid.UUID, payload: ActorRequest, db: Session = Depends(get_db)):
    """Approve a pending timesheet; its hours are posted to the client budgets."""
    try:
        return approve_timesheet(db, timesheet_id, payload.actor_id)
    except ReconciliationError as e:
        raise _http_error(e)


@router.post("/{timesheet_id}/reject", response_model=TimesheetSummary)
def reject(timesheet_id: uuid.UUID, payload: RejectTimesheetRequest, db: Session = Depends(get_db)):
    try:
        return reject_timesheet(db, timesheet_id, payload.rejected_by_id, payload.reason)
    except ReconciliationError as e:
        raise _http_error(e)


@router.post("/{timesheet_id}/post-budget", response_model=PostingResult)
def post_budget(timesheet_id: uuid.UUID, payload: Optional[ActorRequest] = None, db: Session = Depends(get_db)):
    """Post an approved timesheet to the budget ledger. Safe to repeat."""
    try:
        return post_timesheet_to_budget(db, timesheet_id, actor_id=payload.actor_id if payload else None)
    except ReconciliationError as e:
        raise _http_error(e)


@router.get("/{timesheet_id}/audit", response_model=List[AuditLogResponse])
def audit_trail(timesheet_id: uuid.UUID, limit: int = 100, db: Session = Depends(get_db)):
    """Generation, workflow and posting history of a timesheet, newest first."""
    if limit < 1 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    if not db.get(Timesheet, timesheet_id):
        raise HTTPException(status_code=404, detail="Timesheet not found")
    entries = get_audit_logs(db, entity_type="timesheet", entity_id=timesheet_id, limit=limit)
    trail = []
    for entry in entries:
        item = AuditLogResponse.model_validate(entry)
        item.integrity_valid = verify_audit_log(entry)
        trail.append(item)
    return trail
