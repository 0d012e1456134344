"""
Load public holidays into the holiday calendar.

Usage:
    python scripts/seed_public_holidays.py --file holidays.csv [--region NSW]

The CSV needs a header row with at least `date` (YYYY-MM-DD) and `name`;
an optional `region` column overrides --region per row. Existing dates are
updated in place, so the script can be re-run with a corrected file.
"""
import sys
import os
import csv
import uuid
import argparse
from datetime import date, datetime
from typing import Dict, List, Optional

# Add parent directory to path
sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))

from sqlalchemy.orm import Session
from shiftledger.db import SessionLocal, Base, engine
from shiftledger.models.models import PublicHoliday


def read_holidays(path: str, default_region: Optional[str] = None) -> List[Dict]:
    rows = []
    with open(path, newline="", encoding="utf-8") as f:
        reader = csv.DictReader(f)
        missing = {"date", "name"} - set(reader.fieldnames or [])
        if missing:
            raise ValueError(f"CSV is missing columns: {', '.join(sorted(missing))}")
        for line_no, row in enumerate(reader, start=2):
            raw_date = (row.get("date") or "").strip()
            name = (row.get("name") or "").strip()
            if not raw_date or not name:
                print(f"  [SKIP] line {line_no}: date and name are required")
                continue
            try:
                day = datetime.strptime(raw_date, "%Y-%m-%d").date()
            except ValueError:
                print(f"  [SKIP] line {line_no}: invalid date {raw_date!r}")
                continue
            rows.append({
                "date": day,
                "name": name,
                "region": (row.get("region") or "").strip() or default_region,
            })
    return rows


def upsert_holiday(db: Session, day: date, name: str, region: Optional[str]) -> str:
    holiday = db.query(PublicHoliday).filter(PublicHoliday.date == day).first()
    if holiday:
        if holiday.name == name and holiday.region == region:
            return "unchanged"
        holiday.name = name
        holiday.region = region
        return "updated"
    db.add(PublicHoliday(id=uuid.uuid4(), date=day, name=name, region=region))
    return "created"


def seed(path: str, region: Optional[str] = None) -> Dict[str, int]:
    Base.metadata.create_all(bind=engine, tables=[PublicHoliday.__table__])
    counts = {"created": 0, "updated": 0, "unchanged": 0}
    db = SessionLocal()
    try:
        for row in read_holidays(path, region):
            action = upsert_holiday(db, row["date"], row["name"], row["region"])
            counts[action] += 1
            if action != "unchanged":
                print(f"  [OK] {action} {row['date'].isoformat()} {row['name']}")
        db.commit()
    except Exception:
        db.rollback()
        raise
    finally:
        db.close()
    return counts


def main():
    parser = argparse.ArgumentParser(description="Seed the public holiday calendar from a CSV file")
    parser.add_argument("--file", required=True, help="CSV with date,name[,region] columns")
    parser.add_argument("--region", help="Region for rows without one (e.g. NSW)")
    args = parser.parse_args()

    if not os.path.exists(args.file):
        parser.error(f"File not found: {args.file}")

    print(f"[HOLIDAYS] Loading {args.file}")
    counts = seed(args.file, args.region)
    print(f"   Created: {counts['created']}")
    print(f"   Updated: {counts['updated']}")
    print(f"   Unchanged: {counts['unchanged']}")


if __name__ == "__main__":
    main()
