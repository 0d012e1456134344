"""
GPS compliance log.
Every clock event evaluated against an expected location leaves one
append-only entry here; non-compliant entries are flagged for review.
"""
import uuid
from datetime import datetime
from typing import Optional, List

from sqlalchemy.orm import Session

from ..models.models import ComplianceLogEntry
from .geofence import GeoPoint, GeoEvaluation


def record_compliance(
    db: Session,
    *,
    event_type: str,
    staff_id: uuid.UUID,
    appointment_id: Optional[uuid.UUID],
    clock_event_id: Optional[uuid.UUID],
    observed: GeoPoint,
    expected: GeoPoint,
    evaluation: GeoEvaluation,
    notes: Optional[str] = None,
) -> ComplianceLogEntry:
    """
    Append a compliance entry to the current transaction (flushed, not committed).
    """
    entry = ComplianceLogEntry(
        event_type=event_type,
        staff_id=staff_id,
        appointment_id=appointment_id,
        clock_event_id=clock_event_id,
        recorded_latitude=observed.latitude,
        recorded_longitude=observed.longitude,
        expected_latitude=expected.latitude,
        expected_longitude=expected.longitude,
        distance_meters=round(evaluation.distance_m, 2) if evaluation.distance_m is not None else None,
        is_compliant=evaluation.compliant,
        requires_review=not evaluation.compliant,
        notes=notes,
    )
    db.add(entry)
    db.flush()
    return entry


def list_compliance_entries(
    db: Session,
    staff_id: Optional[uuid.UUID] = None,
    appointment_id: Optional[uuid.UUID] = None,
    event_type: Optional[str] = None,
    is_compliant: Optional[bool] = None,
    requires_review: Optional[bool] = None,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    limit: int = 100,
    offset: int = 0,
) -> List[ComplianceLogEntry]:
    """
    Compliance entries for the review workflow, newest first.

    Args:
        start/end: created_at range (naive UTC, end exclusive)
    """
    query = db.query(ComplianceLogEntry)

    if staff_id:
        query = query.filter(ComplianceLogEntry.staff_id == staff_id)
    if appointment_id:
        query = query.filter(ComplianceLogEntry.appointment_id == appointment_id)
    if event_type:
        query = query.filter(ComplianceLogEntry.event_type == event_type)
    if is_compliant is not None:
        query = query.filter(ComplianceLogEntry.is_compliant == is_compliant)
    if requires_review is not None:
        query = query.filter(ComplianceLogEntry.requires_review == requires_review)
    if start:
        query = query.filter(ComplianceLogEntry.created_at >= start)
    if end:
        query = query.filter(ComplianceLogEntry.created_at < end)

    return (
        query.order_by(ComplianceLogEntry.created_at.desc())
        .limit(limit)
        .offset(offset)
        .all()
    )
