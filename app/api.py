"""FastAPI wrapper around the plan coordinator.

Each request builds a coordinator over planner.db, performs one operation and
returns plain JSON. Named planner failures are mapped to HTTP errors here and
nowhere else.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
import datetime
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

# Ensure absolute imports (e.g., "import database") resolve when served directly.
APP_DIR = Path(__file__).resolve().parent
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

import database  # noqa: E402
from data_exchange import import_plan_payload, plan_payload  # noqa: E402
from timeline.api import apply_month_for_plan, plan_history, planner_for, reset_month_for_plan  # noqa: E402
from timeline.calendar_math import abs_week_of  # noqa: E402
from timeline.errors import (  # noqa: E402
    EmptyRuleList,
    OutOfOrderApply,
    OverwriteAttempt,
    CalendarExists,
    TimelineError,
)
from timeline.plan import PlanCoordinator  # noqa: E402
from validation import validate_plan  # noqa: E402


@asynccontextmanager
async def lifespan(_: FastAPI):
    database.init_database()
    yield


app = FastAPI(title="Rota Planner API", version="0.1", lifespan=lifespan)


def get_planner() -> PlanCoordinator:
    return planner_for(database.SessionLocal, actor="api")


def _actor(payload: Optional[Dict[str, Any]]) -> str:
    return ((payload or {}).get("actor") or "api").strip() or "api"


def _http_error(exc: TimelineError) -> HTTPException:
    if isinstance(exc, LookupError):
        return HTTPException(status_code=404, detail=str(exc))
    if isinstance(exc, (OutOfOrderApply, EmptyRuleList, OverwriteAttempt, CalendarExists)):
        return HTTPException(status_code=409, detail={"error": type(exc).__name__, "message": str(exc)})
    return HTTPException(status_code=400, detail={"error": type(exc).__name__, "message": str(exc)})


def _call(func, *args, **kwargs) -> Any:
    try:
        return func(*args, **kwargs)
    except TimelineError as exc:
        raise _http_error(exc) from exc


def _require(payload: Dict[str, Any], *keys: str) -> List[Any]:
    missing = [key for key in keys if payload.get(key) is None]
    if missing:
        raise HTTPException(status_code=400, detail=f"{', '.join(missing)} required")
    return [payload[key] for key in keys]


def _as_int(payload: Dict[str, Any], key: str, default: Optional[int] = None) -> Optional[int]:
    value = payload.get(key)
    if value is None:
        return default
    if isinstance(value, bool):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise HTTPException(status_code=400, detail=f"{key} must be an integer")


def _respond(content: Any, status_code: int = 200) -> JSONResponse:
    return JSONResponse(content=jsonable_encoder(content), status_code=status_code)


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


# ---------------------------------------------------------------------------
# Plans


@app.get("/api/v1/plans")
def list_plans(planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond({"plans": planner.list_plans()})


@app.post("/api/v1/plans")
def create_plan(payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond(_call(planner.create_plan, str(name)), status_code=201)


@app.get("/api/v1/plans/{plan_id}")
def get_plan(plan_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond(_call(planner.get_plan, plan_id))


@app.patch("/api/v1/plans/{plan_id}")
def rename_plan(plan_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond(_call(planner.rename_plan, plan_id, str(name)))


@app.delete("/api/v1/plans/{plan_id}")
def delete_plan(plan_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    _call(planner.delete_plan, plan_id)
    return _respond({"deleted": plan_id})


@app.get("/api/v1/plans/{plan_id}/validate")
def validate_plan_endpoint(plan_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    plan = _call(planner.store.load, plan_id)
    return _respond(validate_plan(plan))


@app.get("/api/v1/plans/{plan_id}/history")
def history(plan_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    _call(planner.store.load, plan_id)
    return _respond({"plan_id": plan_id, "entries": plan_history(database.SessionLocal, plan_id)})


@app.get("/api/v1/plans/{plan_id}/export")
def export_plan(plan_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond(_call(plan_payload, planner, plan_id))


@app.post("/api/v1/plans/import")
def import_plan(payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond(_call(import_plan_payload, planner, payload), status_code=201)


# ---------------------------------------------------------------------------
# Staff groups and members


@app.post("/api/v1/plans/{plan_id}/groups")
def add_group(plan_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond({"groups": _call(planner.add_group, plan_id, str(name))})


@app.patch("/api/v1/plans/{plan_id}/groups/{group_id}")
def rename_group(
    plan_id: int, group_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)
) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond({"groups": _call(planner.rename_group, plan_id, group_id, str(name))})


@app.delete("/api/v1/plans/{plan_id}/groups/{group_id}")
def remove_group(plan_id: int, group_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond({"groups": _call(planner.remove_group, plan_id, group_id)})


@app.post("/api/v1/plans/{plan_id}/groups/{group_id}/members")
def add_member(
    plan_id: int, group_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)
) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond({"groups": _call(planner.add_member, plan_id, group_id, str(name))})


@app.patch("/api/v1/plans/{plan_id}/members/{member_id}")
def update_member(
    plan_id: int, member_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)
) -> JSONResponse:
    groups = None
    if payload.get("name") is not None:
        groups = _call(planner.rename_member, plan_id, member_id, str(payload["name"]))
    if payload.get("position") is not None:
        groups = _call(planner.move_member, plan_id, member_id, _as_int(payload, "position"))
    if groups is None:
        raise HTTPException(status_code=400, detail="name or position required")
    return _respond({"groups": groups})


@app.delete("/api/v1/plans/{plan_id}/members/{member_id}")
def remove_member(plan_id: int, member_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond({"groups": _call(planner.remove_member, plan_id, member_id)})


# ---------------------------------------------------------------------------
# Weekly rules and assignments


@app.post("/api/v1/plans/{plan_id}/rules")
def add_rule(plan_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    (name,) = _require(payload, "name")
    return _respond({"rules": _call(planner.add_rule, plan_id, str(name))})


@app.patch("/api/v1/plans/{plan_id}/rules/{rule_id}")
def update_rule(
    plan_id: int, rule_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)
) -> JSONResponse:
    rules = None
    if payload.get("name") is not None:
        rules = _call(planner.rename_rule, plan_id, rule_id, str(payload["name"]))
    if payload.get("position") is not None:
        rules = _call(planner.move_rule, plan_id, rule_id, _as_int(payload, "position"))
    if rules is None:
        raise HTTPException(status_code=400, detail="name or position required")
    return _respond({"rules": rules})


@app.delete("/api/v1/plans/{plan_id}/rules/{rule_id}")
def remove_rule(plan_id: int, rule_id: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond({"rules": _call(planner.remove_rule, plan_id, rule_id)})


@app.post("/api/v1/plans/{plan_id}/rules/{rule_id}/assignments")
def add_assignment(
    plan_id: int, rule_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)
) -> JSONResponse:
    weekday, period, group_id, member_index = _require(payload, "weekday", "period", "group_id", "member_index")
    rules = _call(
        planner.add_assignment,
        plan_id,
        rule_id,
        weekday,
        period,
        group_id,
        member_index,
        payload.get("index"),
    )
    return _respond({"rules": rules})


@app.delete("/api/v1/plans/{plan_id}/rules/{rule_id}/assignments/{weekday}/{period}/{index}")
def remove_assignment(
    plan_id: int,
    rule_id: int,
    weekday: int,
    period: str,
    index: int,
    planner: PlanCoordinator = Depends(get_planner),
) -> JSONResponse:
    return _respond({"rules": _call(planner.remove_assignment, plan_id, rule_id, weekday, period, index)})


# ---------------------------------------------------------------------------
# Calendar


@app.post("/api/v1/plans/{plan_id}/calendar")
def create_calendar(plan_id: int, payload: Dict[str, Any], planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    base = _as_int(payload, "base_abs_week")
    if base is None and payload.get("start_date"):
        try:
            base = abs_week_of(datetime.date.fromisoformat(str(payload["start_date"])))
        except ValueError:
            raise HTTPException(status_code=400, detail="start_date must be YYYY-MM-DD")
    if base is None:
        raise HTTPException(status_code=400, detail="base_abs_week or start_date required")
    offset = _as_int(payload, "initial_rotation_offset", 0)
    return _respond(_call(planner.create_calendar, plan_id, base, offset), status_code=201)


@app.get("/api/v1/plans/{plan_id}/months/{year}/{month}")
def derive_month(plan_id: int, year: int, month: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond(_call(planner.derive_month, plan_id, year, month))


@app.get("/api/v1/plans/{plan_id}/months/{year}/{month}/status")
def month_status(plan_id: int, year: int, month: int, planner: PlanCoordinator = Depends(get_planner)) -> JSONResponse:
    return _respond({"weeks": _call(planner.month_status, plan_id, year, month)})


@app.post("/api/v1/plans/{plan_id}/months/{year}/{month}/apply")
def apply_month(plan_id: int, year: int, month: int, payload: Dict[str, Any]) -> JSONResponse:
    (skip_flags,) = _require(payload, "skip_flags")
    if not isinstance(skip_flags, list):
        raise HTTPException(status_code=400, detail="skip_flags must be a list of booleans")
    result = _call(
        apply_month_for_plan,
        database.SessionLocal,
        plan_id,
        year,
        month,
        skip_flags,
        _actor(payload),
    )
    return _respond(result)


@app.post("/api/v1/plans/{plan_id}/months/{year}/{month}/reset")
def reset_month(plan_id: int, year: int, month: int, payload: Optional[Dict[str, Any]] = None) -> JSONResponse:
    if not (payload or {}).get("confirm"):
        raise HTTPException(
            status_code=400,
            detail="Resetting unfixes this month and every later month; resend with confirm=true.",
        )
    result = _call(reset_month_for_plan, database.SessionLocal, plan_id, year, month, _actor(payload))
    return _respond(result)
