"""
Rate category decomposition.
Splits a [start, end) interval into billing/pay categories by walking it
in fixed increments and classifying each increment by its start instant.
"""
from dataclasses import dataclass, fields
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, Dict, List, Optional

from sqlalchemy.orm import Session

from ..config import settings
from ..models.models import PublicHoliday
from .time_rules import to_naive_utc, utc_to_local

EVENING_START_HOUR = 18
NIGHT_END_HOUR = 6


class RateCategory(str, Enum):
    WEEKDAY = "weekday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"
    PUBLIC_HOLIDAY = "public_holiday"
    EVENING = "evening"
    NIGHT = "night"

    @property
    def field_name(self) -> str:
        return f"{self.value}_hours"


CATEGORY_FIELDS = [c.field_name for c in RateCategory]


@dataclass
class HoursBreakdown:
    weekday_hours: float = 0.0
    saturday_hours: float = 0.0
    sunday_hours: float = 0.0
    public_holiday_hours: float = 0.0
    evening_hours: float = 0.0
    night_hours: float = 0.0

    @property
    def total_hours(self) -> float:
        return sum(getattr(self, f.name) for f in fields(self))

    def add(self, category: RateCategory, hours: float) -> None:
        setattr(self, category.field_name, getattr(self, category.field_name) + hours)

    def merge(self, other: "HoursBreakdown") -> None:
        for name in CATEGORY_FIELDS:
            setattr(self, name, getattr(self, name) + getattr(other, name))

    def hours_for(self, category: RateCategory) -> float:
        return getattr(self, category.field_name)

    def as_dict(self) -> Dict[str, float]:
        data = {name: getattr(self, name) for name in CATEGORY_FIELDS}
        data["total_hours"] = self.total_hours
        return data

    @classmethod
    def from_object(cls, obj) -> "HoursBreakdown":
        """Read the six category columns off a Timesheet or TimesheetEntry."""
        return cls(**{name: float(getattr(obj, name) or 0.0) for name in CATEGORY_FIELDS})


def _no_holidays(day: date) -> bool:
    return False


class HolidayCalendar:
    """
    Public-holiday lookup backed by the public_holidays table.
    Answers are memoised per instance; use one calendar per batch run.
    """

    def __init__(self, db: Session):
        self.db = db
        self._cache: Dict[date, bool] = {}

    def __call__(self, day: date) -> bool:
        if day not in self._cache:
            found = self.db.query(PublicHoliday.id).filter(PublicHoliday.date == day).first()
            self._cache[day] = found is not None
        return self._cache[day]

    def preload(self, start: date, end: date) -> None:
        """Resolve every day in [start, end] with one query."""
        holiday_days = {h.date for h in load_holidays(self.db, start, end)}
        day = start
        while day <= end:
            self._cache[day] = day in holiday_days
            day += timedelta(days=1)


def load_holidays(db: Session, start: date, end: date) -> List[PublicHoliday]:
    return (
        db.query(PublicHoliday)
        .filter(PublicHoliday.date >= start, PublicHoliday.date <= end)
        .order_by(PublicHoliday.date.asc())
        .all()
    )


def classify_instant(local_dt: datetime, is_holiday: Callable[[date], bool]) -> RateCategory:
    """
    Category of a local instant. First match wins:
    public holiday, evening, night, Sunday, Saturday, weekday.
    """
    if is_holiday(local_dt.date()):
        return RateCategory.PUBLIC_HOLIDAY
    if local_dt.hour >= EVENING_START_HOUR:
        return RateCategory.EVENING
    if local_dt.hour < NIGHT_END_HOUR:
        return RateCategory.NIGHT
    weekday = local_dt.weekday()  # Monday == 0
    if weekday == 6:
        return RateCategory.SUNDAY
    if weekday == 5:
        return RateCategory.SATURDAY
    return RateCategory.WEEKDAY


def decompose_interval(
    start: datetime,
    end: datetime,
    is_holiday: Optional[Callable[[date], bool]] = None,
    timezone_str: Optional[str] = None,
    increment: Optional[timedelta] = None,
) -> HoursBreakdown:
    """
    Hours of [start, end) per rate category.

    The interval is walked in fixed increments (one hour by default, the
    last one possibly shorter); each increment goes entirely to the category
    of its start instant in local time. Bucket totals add up to the interval
    duration.

    Args:
        start, end: UTC instants (naive values are treated as UTC)
        is_holiday: local date -> bool; no holidays when omitted
        timezone_str: local timezone (default from settings)
        increment: step size (default RATE_INCREMENT_MINUTES)
    """
    start = to_naive_utc(start)
    end = to_naive_utc(end)
    if is_holiday is None:
        is_holiday = _no_holidays
    if increment is None:
        increment = timedelta(minutes=settings.rate_increment_minutes)
    if increment <= timedelta(0):
        raise ValueError("increment must be positive")

    # Accumulate exact durations, convert to hours once
    durations: Dict[RateCategory, timedelta] = {c: timedelta(0) for c in RateCategory}
    current = start
    while current < end:
        step_end = min(current + increment, end)
        category = classify_instant(utc_to_local(current, timezone_str), is_holiday)
        durations[category] += step_end - current
        current = step_end

    breakdown = HoursBreakdown()
    for category, duration in durations.items():
        breakdown.add(category, duration.total_seconds() / 3600)
    return breakdown
