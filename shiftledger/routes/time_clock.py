"""
Time clock API routes.
Clock-in/out with GPS compliance, open shifts and the compliance log.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
from datetime import datetime
import uuid

from ..db import get_db
from ..models.models import Staff
from ..schemas.time_clock import (
    ClockRequest, ClockEventResult, ActiveClockStatus,
    ClockEventResponse, ComplianceLogResponse
)
from ..services.time_clock import clock_in, clock_out, get_active_clock_in, get_clock_records
from ..services.compliance_log import list_compliance_entries
from ..services.time_rules import to_naive_utc

router = APIRouter(prefix="/time-clock", tags=["time-clock"])


def _require_staff(db: Session, staff_id: uuid.UUID) -> Staff:
    staff = db.query(Staff).filter(Staff.id == staff_id).first()
    if not staff:
        raise HTTPException(status_code=404, detail="Staff member not found")
    return staff


@router.post("/clock-in", response_model=ClockEventResult)
def post_clock_in(payload: ClockRequest, db: Session = Depends(get_db)):
    """
    Record a clock-in. Business failures (overlap, GPS violation, unknown
    staff) come back with success=false and structured errors.
    """
    return clock_in(db, payload)


@router.post("/clock-out", response_model=ClockEventResult)
def post_clock_out(payload: ClockRequest, db: Session = Depends(get_db)):
    """Record a clock-out and pair it with the staff member's open clock-in."""
    return clock_out(db, payload)


@router.get("/staff/{staff_id}/active", response_model=ActiveClockStatus)
def get_active(staff_id: uuid.UUID, db: Session = Depends(get_db)):
    _require_staff(db, staff_id)
    return get_active_clock_in(db, staff_id)


@router.get("/staff/{staff_id}/records", response_model=List[ClockEventResponse])
def list_records(
    staff_id: uuid.UUID,
    start: datetime,
    end: datetime,
    db: Session = Depends(get_db)
):
    """Clock events in [start, end); naive values are UTC."""
    _require_staff(db, staff_id)
    if end <= start:
        raise HTTPException(status_code=400, detail="end must be after start")
    return get_clock_records(db, staff_id, start, end)


@router.get("/compliance", response_model=List[ComplianceLogResponse])
def list_compliance(
    staff_id: Optional[uuid.UUID] = None,
    appointment_id: Optional[uuid.UUID] = None,
    event_type: Optional[str] = None,
    is_compliant: Optional[bool] = None,
    requires_review: Optional[bool] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
    db: Session = Depends(get_db)
):
    if event_type and event_type not in ("clock_in", "clock_out"):
        raise HTTPException(status_code=400, detail="event_type must be clock_in or clock_out")
    if limit < 1 or limit > 500:
        raise HTTPException(status_code=400, detail="limit must be between 1 and 500")
    return list_compliance_entries(
        db,
        staff_id=staff_id,
        appointment_id=appointment_id,
        event_type=event_type,
        is_compliant=is_compliant,
        requires_review=requires_review,
        start=to_naive_utc(start) if start else None,
        end=to_naive_utc(end) if end else None,
        limit=limit,
        offset=offset,
    )
