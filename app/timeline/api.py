from __future__ import annotations

from typing import Callable, Dict, Optional, Sequence

from .plan import PlanCoordinator
from database import SqlPlanStore, list_audit_log
from validation import validate_plan


def planner_for(session_factory: Optional[Callable] = None, *, actor: str = "system") -> PlanCoordinator:
    """Coordinator whose plans live in planner.db (or the given session factory)."""
    return PlanCoordinator(SqlPlanStore(session_factory, actor=actor or "system"))


def apply_month_for_plan(
    session_factory: Optional[Callable],
    plan_id: int,
    year: int,
    month: int,
    skip_flags: Sequence[bool],
    actor: str,
) -> Dict:
    planner = planner_for(session_factory, actor=actor)
    committed = planner.apply_month(plan_id, year, month, skip_flags)
    summary = {
        "plan_id": plan_id,
        "year": year,
        "month": month,
        "committed": committed,
        "weeks": planner.month_status(plan_id, year, month),
    }
    plan = planner.store.load(plan_id)
    summary["validation"] = validate_plan(plan)
    return summary


def reset_month_for_plan(
    session_factory: Optional[Callable],
    plan_id: int,
    year: int,
    month: int,
    actor: str,
) -> Dict:
    planner = planner_for(session_factory, actor=actor)
    removed = planner.reset_from_month(plan_id, year, month)
    return {
        "plan_id": plan_id,
        "year": year,
        "month": month,
        "removed_weeks": removed,
        "weeks": planner.month_status(plan_id, year, month),
    }


def plan_history(session_factory: Optional[Callable], plan_id: int) -> list[Dict]:
    store = SqlPlanStore(session_factory)
    with store.session_factory() as session:
        return [
            {
                "action": entry.action,
                "actor": entry.user_id,
                "payload": entry.payload_dict(),
                "created_at": entry.created_at.isoformat() if entry.created_at else None,
            }
            for entry in list_audit_log(session, plan_id)
        ]
