"""
Budget ledger posting.
Moves the hours of an approved timesheet into per client / service type
budget usage, exactly once per timesheet.
"""
import uuid
from collections import OrderedDict
from decimal import Decimal
from typing import Dict, List, Optional, Tuple

import structlog
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..models.models import BudgetLedger, Timesheet, TimesheetEntry
from ..schemas.timesheets import BudgetGroupPosting, PostingResult, TimesheetStatus
from .audit import create_audit_log
from .errors import ReconciliationError, TimesheetNotApproved, TimesheetNotFound
from .time_rules import utcnow

logger = structlog.get_logger(__name__)

CENTS = Decimal("0.01")


def _to_decimal(value) -> Decimal:
    if value is None:
        return Decimal("0")
    return Decimal(str(value)).quantize(CENTS)


def _group_hours(entries) -> "OrderedDict[Tuple[Optional[uuid.UUID], str], float]":
    groups: "OrderedDict[Tuple[Optional[uuid.UUID], str], float]" = OrderedDict()
    for entry in entries:
        key = (entry.client_id, entry.service_type)
        groups[key] = groups.get(key, 0.0) + float(entry.total_hours or 0.0)
    return groups


def _budget_for(db: Session, client_id: uuid.UUID, service_type: str) -> Optional[BudgetLedger]:
    return (
        db.query(BudgetLedger)
        .filter(BudgetLedger.client_id == client_id, BudgetLedger.service_type == service_type)
        .with_for_update()
        .first()
    )


def apply_budget_posting(db: Session, timesheet: Timesheet, actor_id: Optional[uuid.UUID] = None) -> PostingResult:
    """
    Post a loaded (and locked) timesheet inside the caller's transaction.

    A timesheet whose budget_posted_at is already set is left untouched.
    """
    if timesheet.status != TimesheetStatus.approved.value:
        raise TimesheetNotApproved(f"Timesheet {timesheet.id} is {timesheet.status}, not approved")

    if timesheet.budget_posted_at is not None:
        logger.info("budget_post_skipped_already_posted", timesheet_id=str(timesheet.id))
        return PostingResult(timesheet_id=timesheet.id, already_posted=True, posted_at=timesheet.budget_posted_at)

    now = utcnow()
    postings = []
    for (client_id, service_type), hours in _group_hours(timesheet.entries).items():
        budget = _budget_for(db, client_id, service_type) if client_id else None
        if budget is None:
            logger.info(
                "budget_post_group_skipped",
                timesheet_id=str(timesheet.id),
                client_id=str(client_id) if client_id else None,
                service_type=service_type,
                hours=hours,
            )
            postings.append(BudgetGroupPosting(client_id=client_id, service_type=service_type, hours=hours, skipped=True))
            continue

        used = _to_decimal(budget.used) + _to_decimal(hours)
        budget.used = used
        budget.remaining = _to_decimal(budget.total_allocated) - used
        budget.updated_at = now
        postings.append(BudgetGroupPosting(
            client_id=client_id,
            service_type=service_type,
            hours=hours,
            budget_id=budget.id,
            used=float(budget.used),
            remaining=float(budget.remaining),
        ))

    timesheet.budget_posted_at = now
    db.flush()

    create_audit_log(
        db=db,
        entity_type="timesheet",
        entity_id=timesheet.id,
        action="POST_BUDGET",
        actor_id=actor_id,
        context={
            "groups": [
                {
                    "client_id": str(p.client_id) if p.client_id else None,
                    "service_type": p.service_type,
                    "hours": round(p.hours, 2),
                    "skipped": p.skipped,
                }
                for p in postings
            ],
        },
    )
    logger.info("budget_posted", timesheet_id=str(timesheet.id), groups=len(postings))
    return PostingResult(timesheet_id=timesheet.id, posted_at=now, groups=postings)


def post_timesheet_to_budget(db: Session, timesheet_id: uuid.UUID, actor_id: Optional[uuid.UUID] = None) -> PostingResult:
    """
    Post an approved timesheet to the budget ledger and commit.

    Re-invoking it for a posted timesheet is a no-op (already_posted=True).
    """
    try:
        timesheet = (
            db.query(Timesheet)
            .filter(Timesheet.id == timesheet_id)
            .with_for_update()
            .first()
        )
        if not timesheet:
            raise TimesheetNotFound(f"Timesheet {timesheet_id} not found")
        result = apply_budget_posting(db, timesheet, actor_id=actor_id)
        db.commit()
    except ReconciliationError:
        db.rollback()
        raise
    except SQLAlchemyError:
        db.rollback()
        logger.exception("budget_post_failed", timesheet_id=str(timesheet_id))
        raise
    return result


def reconcile_budget_ledger(
    db: Session,
    client_id: uuid.UUID,
    service_type: str,
    actor_id: Optional[uuid.UUID] = None,
) -> Optional[BudgetLedger]:
    """
    Recompute a budget's usage from every posted timesheet and set it.

    Repair path for ledgers that drifted; the result matches what the
    postings would have accumulated. Returns None when no budget row exists.
    """
    try:
        budget = _budget_for(db, client_id, service_type)
        if budget is None:
            db.rollback()
            return None

        rows = (
            db.query(TimesheetEntry.timesheet_id, TimesheetEntry.total_hours)
            .join(Timesheet, Timesheet.id == TimesheetEntry.timesheet_id)
            .filter(
                Timesheet.status == TimesheetStatus.approved.value,
                Timesheet.budget_posted_at.isnot(None),
                TimesheetEntry.client_id == client_id,
                TimesheetEntry.service_type == service_type,
            )
            .all()
        )
        per_timesheet: Dict[uuid.UUID, float] = {}
        for timesheet_id, hours in rows:
            per_timesheet[timesheet_id] = per_timesheet.get(timesheet_id, 0.0) + float(hours or 0.0)

        before = {"used": str(_to_decimal(budget.used)), "remaining": str(_to_decimal(budget.remaining))}
        used = sum((_to_decimal(h) for h in per_timesheet.values()), Decimal("0"))
        budget.used = used
        budget.remaining = _to_decimal(budget.total_allocated) - used
        budget.updated_at = utcnow()
        db.flush()

        create_audit_log(
            db=db,
            entity_type="budget",
            entity_id=budget.id,
            action="RECONCILE",
            actor_id=actor_id,
            changes_json={
                "before": before,
                "after": {"used": str(budget.used), "remaining": str(budget.remaining)},
            },
            context={"timesheets": len(per_timesheet)},
        )
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        logger.exception("budget_reconcile_failed", client_id=str(client_id), service_type=service_type)
        raise
    return budget


def budget_utilization(budget: BudgetLedger) -> float:
    """Share of the allocation already used, as a percentage in [0, 100]."""
    allocated = _to_decimal(budget.total_allocated)
    if allocated == 0:
        return 0.0
    percentage = float(_to_decimal(budget.used) / allocated * 100)
    return min(100.0, max(0.0, percentage))


def list_budgets(
    db: Session,
    client_id: Optional[uuid.UUID] = None,
    service_type: Optional[str] = None,
) -> List[BudgetLedger]:
    query = db.query(BudgetLedger)
    if client_id:
        query = query.filter(BudgetLedger.client_id == client_id)
    if service_type:
        query = query.filter(BudgetLedger.service_type == service_type)
    return query.order_by(BudgetLedger.client_id.asc(), BudgetLedger.service_type.asc()).all()
