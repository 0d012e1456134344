"""
Budget ledger API routes.
Read side with utilization, plus the reconcile repair action.
"""
from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session
from typing import List, Optional
import uuid

from ..db import get_db
from ..models.models import BudgetLedger
from ..schemas.timesheets import BudgetResponse, ReconcileBudgetRequest
from ..services.budget_posting import budget_utilization, list_budgets, reconcile_budget_ledger

router = APIRouter(prefix="/budgets", tags=["budgets"])


def _to_response(budget: BudgetLedger) -> BudgetResponse:
    response = BudgetResponse.model_validate(budget)
    response.utilization = round(budget_utilization(budget), 1)
    return response


@router.get("", response_model=List[BudgetResponse])
def list_all(
    client_id: Optional[uuid.UUID] = None,
    service_type: Optional[str] = None,
    db: Session = Depends(get_db)
):
    return [_to_response(b) for b in list_budgets(db, client_id=client_id, service_type=service_type)]


@router.post("/reconcile", response_model=BudgetResponse)
def reconcile(payload: ReconcileBudgetRequest, db: Session = Depends(get_db)):
    """Recompute usage from posted timesheets; use when a ledger has drifted."""
    budget = reconcile_budget_ledger(db, payload.client_id, payload.service_type, actor_id=payload.actor_id)
    if budget is None:
        raise HTTPException(status_code=404, detail="Budget not found")
    return _to_response(budget)
