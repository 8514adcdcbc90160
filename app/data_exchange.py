from __future__ import annotations

import datetime
import json
import re
from pathlib import Path
from typing import Any, Dict

from timeline.errors import InvalidImport
from timeline.plan import Plan, PlanCoordinator

EXPORT_DIR = Path(__file__).resolve().parent / "data" / "exports"
FORMAT_VERSION = 1


def _timestamp() -> str:
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")


def _slug(name: str) -> str:
    return re.sub(r"[^A-Za-z0-9]+", "_", name).strip("_").lower() or "plan"


# ---------------------------------------------------------------------------
# Plan payloads (no files)


def plan_payload(coordinator: PlanCoordinator, plan_id: int) -> Dict[str, Any]:
    return {
        "format_version": FORMAT_VERSION,
        "generated_at": datetime.datetime.now(datetime.timezone.utc).isoformat(),
        "plan": coordinator.get_plan(plan_id),
    }


def parse_plan_payload(data: Any) -> Plan:
    """Validate an exported document and rebuild the plan it holds.

    The whole document is rejected on the first defect; nothing is imported
    partially.
    """
    if not isinstance(data, dict):
        raise InvalidImport("Plan file must be a JSON object.")
    version = data.get("format_version", FORMAT_VERSION)
    if version != FORMAT_VERSION:
        raise InvalidImport(f"Unsupported plan format version: {version!r}.")
    payload = data.get("plan", data)
    return Plan.from_dict(payload)


def import_plan_payload(coordinator: PlanCoordinator, data: Any) -> Dict[str, Any]:
    return coordinator.import_plan(parse_plan_payload(data))


# ---------------------------------------------------------------------------
# Plan files


def export_plan(coordinator: PlanCoordinator, plan_id: int) -> Path:
    payload = plan_payload(coordinator, plan_id)
    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    filename = EXPORT_DIR / f"plan_{_slug(payload['plan']['name'])}_{_timestamp()}.json"
    filename.write_text(json.dumps(payload, indent=2), encoding="utf-8")
    return filename


def import_plan(coordinator: PlanCoordinator, file_path: Path) -> Dict[str, Any]:
    try:
        data = json.loads(Path(file_path).read_text(encoding="utf-8"))
    except json.JSONDecodeError as exc:
        raise InvalidImport(f"{file_path} is not valid JSON: {exc}") from exc
    return import_plan_payload(coordinator, data)


def export_month(coordinator: PlanCoordinator, plan_id: int, year: int, month: int) -> Path:
    """Write the derived month view, e.g. for printing or sharing."""
    derived = coordinator.derive_month(plan_id, year, month)
    plan = coordinator.get_plan(plan_id)
    EXPORT_DIR.mkdir(parents=True, exist_ok=True)
    filename = EXPORT_DIR / f"month_{_slug(plan['name'])}_{year}-{month + 1:02d}_{_timestamp()}.json"
    filename.write_text(
        json.dumps({"plan": {"id": plan["id"], "name": plan["name"]}, "month": derived}, indent=2),
        encoding="utf-8",
    )
    return filename
