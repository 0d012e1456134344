"""
Time rules and timezone conversions.
Clock events are stored as naive UTC; rate classification and period
boundaries are evaluated in the local timezone.
"""
from datetime import date, datetime, time, timedelta, timezone
from typing import Optional, Tuple
import pytz
from ..config import settings


def utcnow() -> datetime:
    """Current time as naive UTC, the storage convention for clock events."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def to_naive_utc(dt: datetime) -> datetime:
    """
    Normalize a datetime for storage.

    Naive values are assumed to already be UTC; aware values are converted.
    """
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def utc_to_local(utc_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert UTC datetime to local timezone.

    Args:
        utc_datetime: UTC datetime (naive values are treated as UTC)
        timezone_str: Timezone string (default from settings)

    Returns:
        Local datetime (timezone-aware)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if utc_datetime.tzinfo is None:
        utc_dt = utc_datetime.replace(tzinfo=pytz.UTC)
    else:
        utc_dt = utc_datetime.astimezone(pytz.UTC)
    return utc_dt.astimezone(tz)


def local_to_utc(local_datetime: datetime, timezone_str: Optional[str] = None) -> datetime:
    """
    Convert a local wall-clock datetime to naive UTC.

    Args:
        local_datetime: Local datetime (naive, or aware in any zone)
        timezone_str: Timezone string (default from settings)
    """
    tz = pytz.timezone(timezone_str or settings.tz_default)
    if local_datetime.tzinfo is None:
        local_dt = tz.localize(local_datetime)
    else:
        local_dt = local_datetime.astimezone(tz)
    return local_dt.astimezone(pytz.UTC).replace(tzinfo=None)


def local_date(utc_datetime: datetime, timezone_str: Optional[str] = None) -> date:
    return utc_to_local(utc_datetime, timezone_str).date()


def local_day_bounds(
    start_day: date,
    end_day: date,
    timezone_str: Optional[str] = None
) -> Tuple[datetime, datetime]:
    """
    UTC bounds covering whole local days, end exclusive.

    Returns:
        (start of start_day, start of the day after end_day), both naive UTC
    """
    start = local_to_utc(datetime.combine(start_day, time.min), timezone_str)
    end = local_to_utc(datetime.combine(end_day + timedelta(days=1), time.min), timezone_str)
    return start, end


def minutes_between(start: datetime, end: datetime) -> int:
    return int((to_naive_utc(end) - to_naive_utc(start)).total_seconds() // 60)
