import uuid
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, field_validator


class TimesheetStatus(str, Enum):
    draft = "draft"
    pending_approval = "pending_approval"
    approved = "approved"
    rejected = "rejected"


class HoursFields(BaseModel):
    total_hours: float = 0.0
    weekday_hours: float = 0.0
    saturday_hours: float = 0.0
    sunday_hours: float = 0.0
    public_holiday_hours: float = 0.0
    evening_hours: float = 0.0
    night_hours: float = 0.0


class TimesheetEntryResponse(HoursFields):
    id: Optional[uuid.UUID] = None
    appointment_id: Optional[uuid.UUID] = None
    client_id: Optional[uuid.UUID] = None
    service_type: str
    date: date
    clock_in_time: datetime
    clock_out_time: datetime
    notes: Optional[str] = None

    class Config:
        from_attributes = True


class TimesheetSummary(HoursFields):
    timesheet_id: uuid.UUID
    staff_id: uuid.UUID
    staff_name: str
    period_start: date
    period_end: date
    status: str
    approved_by_id: Optional[uuid.UUID] = None
    approved_at: Optional[datetime] = None
    rejected_by_id: Optional[uuid.UUID] = None
    rejected_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    budget_posted_at: Optional[datetime] = None
    entries: List[TimesheetEntryResponse] = []


class TimesheetListItem(HoursFields):
    id: uuid.UUID
    staff_id: uuid.UUID
    period_start: date
    period_end: date
    status: str
    approved_at: Optional[datetime] = None
    rejected_at: Optional[datetime] = None
    budget_posted_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class GenerateTimesheetRequest(BaseModel):
    staff_id: uuid.UUID
    period_start: date
    period_end: date
    auto_approve: bool = False
    generated_by_id: Optional[uuid.UUID] = None

    @field_validator('period_end')
    @classmethod
    def end_not_before_start(cls, v, info):
        start = info.data.get('period_start')
        if start and v < start:
            raise ValueError("period_end must not be before period_start")
        return v


class GenerateWeeklyRequest(BaseModel):
    week_start: date


class WeeklyFailure(BaseModel):
    staff_id: uuid.UUID
    staff_name: str
    error: str


class WeeklyRunResult(BaseModel):
    week_start: date
    week_end: date
    generated: List[TimesheetSummary] = []
    failures: List[WeeklyFailure] = []


class ActorRequest(BaseModel):
    actor_id: uuid.UUID


class RejectTimesheetRequest(BaseModel):
    rejected_by_id: uuid.UUID
    reason: str


class BudgetGroupPosting(BaseModel):
    client_id: Optional[uuid.UUID] = None
    service_type: str
    hours: float
    budget_id: Optional[uuid.UUID] = None
    used: Optional[float] = None
    remaining: Optional[float] = None
    skipped: bool = False


class PostingResult(BaseModel):
    timesheet_id: uuid.UUID
    already_posted: bool = False
    posted_at: Optional[datetime] = None
    groups: List[BudgetGroupPosting] = []


class AuditLogResponse(BaseModel):
    id: uuid.UUID
    entity_type: str
    entity_id: uuid.UUID
    action: str
    actor_id: Optional[uuid.UUID] = None
    source: Optional[str] = None
    changes_json: Optional[dict] = None
    context: Optional[dict] = None
    timestamp_utc: datetime
    integrity_valid: bool = False

    class Config:
        from_attributes = True


class BudgetResponse(BaseModel):
    id: uuid.UUID
    client_id: uuid.UUID
    service_type: str
    total_allocated: Decimal
    used: Decimal
    remaining: Decimal
    updated_at: Optional[datetime] = None
    utilization: float = 0.0

    class Config:
        from_attributes = True


class ReconcileBudgetRequest(BaseModel):
    client_id: uuid.UUID
    service_type: str
    actor_id: Optional[uuid.UUID] = None
