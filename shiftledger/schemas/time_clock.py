import uuid
from datetime import datetime
from typing import List, Optional

from pydantic import BaseModel, field_validator

from ..services.errors import ClockIssueCode


class ClockRequest(BaseModel):
    staff_id: uuid.UUID
    appointment_id: Optional[uuid.UUID] = None
    latitude: float
    longitude: float
    accuracy: Optional[float] = None  # meters
    device_type: Optional[str] = None
    notes: Optional[str] = None
    # When the device recorded the action; server time when omitted
    occurred_at: Optional[datetime] = None

    @field_validator('device_type', 'notes', mode='before')
    @classmethod
    def empty_to_none(cls, v):
        if v is None:
            return None
        v = str(v).strip()
        return v or None


class ClockIssue(BaseModel):
    code: ClockIssueCode
    message: str


class OpenShift(BaseModel):
    record_id: uuid.UUID
    appointment_id: Optional[uuid.UUID] = None
    clock_in_time: datetime
    expected_clock_out_time: Optional[datetime] = None


class ClockEventResult(BaseModel):
    success: bool
    record_id: Optional[uuid.UUID] = None
    errors: List[ClockIssue] = []
    warnings: List[ClockIssue] = []
    gps_compliant: Optional[bool] = None
    distance: Optional[float] = None  # meters
    overlapping_events: Optional[List[OpenShift]] = None

    def error_codes(self) -> List[ClockIssueCode]:
        return [e.code for e in self.errors]

    def warning_codes(self) -> List[ClockIssueCode]:
        return [w.code for w in self.warnings]


class ActiveClockStatus(BaseModel):
    is_clocked_in: bool
    active_events: List[OpenShift]


class ClockEventResponse(BaseModel):
    id: uuid.UUID
    staff_id: uuid.UUID
    appointment_id: Optional[uuid.UUID] = None
    event_type: str
    event_status: str
    timestamp: datetime
    latitude: float
    longitude: float
    accuracy: Optional[float] = None
    expected_latitude: Optional[float] = None
    expected_longitude: Optional[float] = None
    distance_from_expected: Optional[float] = None
    radius_threshold: Optional[int] = None
    pair_id: Optional[uuid.UUID] = None
    device_type: Optional[str] = None
    notes: Optional[str] = None
    expected_clock_out_time: Optional[datetime] = None

    class Config:
        from_attributes = True


class ComplianceLogResponse(BaseModel):
    id: uuid.UUID
    event_type: str
    staff_id: uuid.UUID
    appointment_id: Optional[uuid.UUID] = None
    clock_event_id: Optional[uuid.UUID] = None
    recorded_latitude: Optional[float] = None
    recorded_longitude: Optional[float] = None
    expected_latitude: Optional[float] = None
    expected_longitude: Optional[float] = None
    distance_meters: Optional[float] = None
    is_compliant: bool
    requires_review: bool
    notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by_id: Optional[uuid.UUID] = None
    review_notes: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
