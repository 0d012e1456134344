"""
Generate weekly timesheets for every active staff member.

Usage:
    python scripts/generate_weekly_timesheets.py [--week-start YYYY-MM-DD] [--dry-run]

Without --week-start the previous full week (Monday to Sunday, local time)
is used. --dry-run prints the hours that would be reconciled without
writing anything.
"""
import sys
import os
import argparse
from datetime import date, datetime, timedelta

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from shiftledger.db import SessionLocal
from shiftledger.logging import setup_logging
from shiftledger.models.models import Staff
from shiftledger.services.rate_categories import HolidayCalendar, HoursBreakdown
from shiftledger.services.time_clock import get_clock_records
from shiftledger.services.time_rules import local_date, local_day_bounds, utcnow
from shiftledger.services.timesheets import build_entries, generate_weekly_timesheets


def previous_week_start(today: date) -> date:
    this_monday = today - timedelta(days=today.weekday())
    return this_monday - timedelta(days=7)


def preview(db, week_start: date) -> None:
    week_end = week_start + timedelta(days=6)
    calendar = HolidayCalendar(db)
    calendar.preload(week_start, week_end)
    start_utc, end_utc = local_day_bounds(week_start, week_end)

    staff_members = db.query(Staff).filter(Staff.is_active.is_(True)).order_by(Staff.name.asc()).all()
    print(f"   Active staff: {len(staff_members)}")
    for staff in staff_members:
        records = get_clock_records(db, staff.id, start_utc, end_utc)
        entries = build_entries(db, records, calendar)
        totals = HoursBreakdown()
        for entry in entries:
            totals.merge(HoursBreakdown.from_object(entry))
        print(f"  [PREVIEW] {staff.name}: {len(entries)} shifts, {totals.total_hours:.2f}h")
        for name, hours in totals.as_dict().items():
            if hours and name != "total_hours":
                print(f"      {name}: {hours:.2f}")


def run(week_start: date, dry_run: bool = False) -> int:
    print("[TIMESHEETS] Weekly timesheet generation")
    print(f"   Week: {week_start.isoformat()} - {(week_start + timedelta(days=6)).isoformat()}")
    print(f"   Mode: {'DRY RUN' if dry_run else 'LIVE'}")

    db = SessionLocal()
    try:
        if dry_run:
            preview(db, week_start)
            return 0

        result = generate_weekly_timesheets(db, week_start)
        for summary in result.generated:
            print(f"  [OK] {summary.staff_name}: {summary.total_hours:.2f}h ({len(summary.entries)} shifts)")
        for failure in result.failures:
            print(f"  [ERROR] {failure.staff_name}: {failure.error}")

        print("\n" + "="*50)
        print("[STATS] Generation Summary:")
        print(f"   Generated: {len(result.generated)}")
        print(f"   Failed: {len(result.failures)}")
        print("="*50)
        return 1 if result.failures else 0
    finally:
        db.close()


def main():
    parser = argparse.ArgumentParser(description="Generate weekly timesheets for active staff")
    parser.add_argument("--week-start", help="First day of the week (YYYY-MM-DD)")
    parser.add_argument("--dry-run", action="store_true", help="Don't make any changes")
    args = parser.parse_args()

    setup_logging()
    if args.week_start:
        try:
            week_start = datetime.strptime(args.week_start, "%Y-%m-%d").date()
        except ValueError:
            parser.error("--week-start must be YYYY-MM-DD")
    else:
        week_start = previous_week_start(local_date(utcnow()))

    sys.exit(run(week_start, dry_run=args.dry_run))


if __name__ == "__main__":
    main()
