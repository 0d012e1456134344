"""
Rate category decomposer tests.

Each increment of an interval is classified by its own start instant,
so shifts crossing midnight, weekends and DST changes split correctly
and bucket totals always add up to the real duration.
"""
from datetime import date, datetime, timedelta

import pytest

from shiftledger.services.rate_categories import (
    CATEGORY_FIELDS,
    HolidayCalendar,
    HoursBreakdown,
    RateCategory,
    classify_instant,
    decompose_interval,
    load_holidays,
)


def no_holiday(day):
    return False


def only(breakdown: HoursBreakdown, **expected):
    """Assert the given buckets and zero everywhere else."""
    for name in CATEGORY_FIELDS:
        assert getattr(breakdown, name) == pytest.approx(expected.get(name, 0.0)), name


class TestClassifyInstant:

    @pytest.mark.parametrize("local_dt, category", [
        (datetime(2024, 3, 4, 9, 0), RateCategory.WEEKDAY),      # Monday
        (datetime(2024, 3, 4, 17, 59), RateCategory.WEEKDAY),
        (datetime(2024, 3, 4, 18, 0), RateCategory.EVENING),
        (datetime(2024, 3, 4, 23, 59), RateCategory.EVENING),
        (datetime(2024, 3, 5, 0, 0), RateCategory.NIGHT),
        (datetime(2024, 3, 5, 5, 59), RateCategory.NIGHT),
        (datetime(2024, 3, 5, 6, 0), RateCategory.WEEKDAY),
        (datetime(2024, 3, 9, 10, 0), RateCategory.SATURDAY),
        (datetime(2024, 3, 10, 10, 0), RateCategory.SUNDAY),
        (datetime(2024, 3, 9, 19, 0), RateCategory.EVENING),     # evening beats Saturday
        (datetime(2024, 3, 10, 3, 0), RateCategory.NIGHT),       # night beats Sunday
    ])
    def test_precedence(self, local_dt, category):
        assert classify_instant(local_dt, no_holiday) == category

    def test_holiday_beats_everything(self):
        christmas = lambda day: day == date(2024, 12, 25)
        for hour in (2, 10, 20):
            assert classify_instant(datetime(2024, 12, 25, hour), christmas) == RateCategory.PUBLIC_HOLIDAY


class TestDecomposeInterval:

    def test_weekday_day_shift(self):
        # Monday 08:00 - 17:00
        result = decompose_interval(datetime(2024, 3, 4, 8), datetime(2024, 3, 4, 17))
        only(result, weekday_hours=9.0)
        assert result.total_hours == pytest.approx(9.0)

    def test_friday_night_into_saturday(self):
        # Friday 22:00 - Saturday 02:00
        result = decompose_interval(datetime(2024, 3, 8, 22), datetime(2024, 3, 9, 2))
        only(result, evening_hours=2.0, night_hours=2.0)

    def test_saturday_and_sunday(self):
        saturday = decompose_interval(datetime(2024, 3, 9, 9), datetime(2024, 3, 9, 12))
        sunday = decompose_interval(datetime(2024, 3, 10, 9), datetime(2024, 3, 10, 12))
        only(saturday, saturday_hours=3.0)
        only(sunday, sunday_hours=3.0)

    def test_evening_boundary(self):
        # Monday 16:00 - 20:00
        result = decompose_interval(datetime(2024, 3, 4, 16), datetime(2024, 3, 4, 20))
        only(result, weekday_hours=2.0, evening_hours=2.0)

    def test_whole_holiday_is_public_holiday(self):
        christmas = lambda day: day == date(2024, 12, 25)
        result = decompose_interval(datetime(2024, 12, 25, 0), datetime(2024, 12, 26, 0), christmas)
        only(result, public_holiday_hours=24.0)

    def test_holiday_ends_at_midnight(self):
        christmas = lambda day: day == date(2024, 12, 25)
        # Wednesday 22:00 on the holiday - Thursday 01:00
        result = decompose_interval(datetime(2024, 12, 25, 22), datetime(2024, 12, 26, 1), christmas)
        only(result, public_holiday_hours=2.0, night_hours=1.0)

    def test_partial_final_increment(self):
        result = decompose_interval(datetime(2024, 3, 4, 8), datetime(2024, 3, 4, 10, 30))
        only(result, weekday_hours=2.5)

    def test_increment_goes_to_its_start_category(self):
        # Hourly steps: 17:30-18:30 starts on a weekday afternoon
        result = decompose_interval(datetime(2024, 3, 4, 17, 30), datetime(2024, 3, 4, 18, 30))
        only(result, weekday_hours=1.0)

    def test_finer_increment(self):
        result = decompose_interval(
            datetime(2024, 3, 4, 17, 30),
            datetime(2024, 3, 4, 18, 30),
            increment=timedelta(minutes=15),
        )
        only(result, weekday_hours=0.5, evening_hours=0.5)

    def test_empty_interval(self):
        result = decompose_interval(datetime(2024, 3, 4, 8), datetime(2024, 3, 4, 8))
        assert result.total_hours == 0

    def test_rejects_non_positive_increment(self):
        with pytest.raises(ValueError):
            decompose_interval(datetime(2024, 3, 4, 8), datetime(2024, 3, 4, 9), increment=timedelta(0))

    @pytest.mark.parametrize("start, minutes", [
        (datetime(2024, 3, 4, 7, 13), 517),
        (datetime(2024, 3, 8, 21, 41), 399),
        (datetime(2024, 3, 9, 23, 5), 1501),
        (datetime(2024, 3, 10, 5, 59), 61),
    ])
    def test_conservation(self, start, minutes):
        result = decompose_interval(start, start + timedelta(minutes=minutes))
        assert result.total_hours == pytest.approx(minutes / 60)

    def test_local_timezone(self):
        # 08:00 UTC Monday is 19:00 in Sydney (AEDT, UTC+11)
        result = decompose_interval(
            datetime(2024, 3, 4, 8),
            datetime(2024, 3, 4, 10),
            timezone_str="Australia/Sydney",
        )
        only(result, evening_hours=2.0)

    def test_dst_end_counts_real_hours(self):
        # Sydney falls back at 03:00 AEDT on 7 April 2024: the local clock
        # shows 01:00 -> 04:00 but four real hours are worked
        result = decompose_interval(
            datetime(2024, 4, 6, 14),
            datetime(2024, 4, 6, 18),
            timezone_str="Australia/Sydney",
        )
        only(result, night_hours=4.0)

    def test_holiday_uses_local_date(self):
        # 13:00 UTC on 25 Dec is already midnight on 26 Dec in Sydney
        christmas = lambda day: day == date(2024, 12, 25)
        result = decompose_interval(
            datetime(2024, 12, 25, 12),
            datetime(2024, 12, 25, 14),
            christmas,
            timezone_str="Australia/Sydney",
        )
        only(result, public_holiday_hours=1.0, night_hours=1.0)


class TestHoursBreakdown:

    def test_merge_and_totals(self):
        a = HoursBreakdown(weekday_hours=2.0, evening_hours=1.5)
        b = HoursBreakdown(weekday_hours=1.0, night_hours=0.5)
        a.merge(b)
        assert a.weekday_hours == 3.0
        assert a.total_hours == pytest.approx(5.0)
        assert a.as_dict()["total_hours"] == pytest.approx(5.0)
        assert a.hours_for(RateCategory.NIGHT) == 0.5

    def test_field_names_match_columns(self):
        assert CATEGORY_FIELDS == [
            "weekday_hours", "saturday_hours", "sunday_hours",
            "public_holiday_hours", "evening_hours", "night_hours",
        ]


class TestHolidayCalendar:

    def test_lookup_and_preload(self, session, create_holiday):
        create_holiday(date(2024, 4, 25), "Anzac Day")
        calendar = HolidayCalendar(session)

        assert calendar(date(2024, 4, 25)) is True
        assert calendar(date(2024, 4, 26)) is False

        preloaded = HolidayCalendar(session)
        preloaded.preload(date(2024, 4, 22), date(2024, 4, 28))
        assert preloaded(date(2024, 4, 25)) is True
        assert preloaded(date(2024, 4, 24)) is False

    def test_load_holidays_range(self, session, create_holiday):
        create_holiday(date(2024, 1, 1), "New Year's Day")
        create_holiday(date(2024, 1, 26), "Australia Day")
        create_holiday(date(2024, 3, 29), "Good Friday")

        names = [h.name for h in load_holidays(session, date(2024, 1, 1), date(2024, 1, 31))]
        assert names == ["New Year's Day", "Australia Day"]

    def test_decompose_with_calendar(self, session, create_holiday):
        create_holiday(date(2024, 4, 25), "Anzac Day")
        result = decompose_interval(
            datetime(2024, 4, 25, 9),
            datetime(2024, 4, 25, 12),
            HolidayCalendar(session),
        )
        only(result, public_holiday_hours=3.0)
