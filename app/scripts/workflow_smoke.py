from __future__ import annotations

import argparse
import datetime
import sys
from pathlib import Path
from typing import Dict, List, Tuple

ROOT_DIR = Path(__file__).resolve().parents[1]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from database import SessionLocal, init_database  # noqa: E402
from data_exchange import export_month, export_plan  # noqa: E402
from timeline.api import apply_month_for_plan, planner_for  # noqa: E402
from timeline.calendar_math import month_label, month_weeks  # noqa: E402
from timeline.plan import PlanCoordinator  # noqa: E402


def _default_month(today: datetime.date | None = None) -> Tuple[int, int]:
    base = today or datetime.date.today()
    return base.year, base.month - 1


def _group_specs() -> Dict[str, List[str]]:
    return {
        "Kitchen": ["Alice", "Bruno", "Chen"],
        "Front desk": ["Dana", "Emeka"],
    }


def _rule_specs() -> List[Dict[str, object]]:
    # (weekday, period, group, member position)
    return [
        {
            "name": "Week A",
            "slots": [
                (0, "morning", "Kitchen", 0),
                (0, "afternoon", "Front desk", 0),
                (2, "morning", "Kitchen", 1),
                (4, "afternoon", "Front desk", 1),
            ],
        },
        {
            "name": "Week B",
            "slots": [
                (0, "morning", "Kitchen", 2),
                (1, "afternoon", "Front desk", 1),
                (3, "morning", "Kitchen", 0),
                (5, "morning", "Front desk", 0),
            ],
        },
    ]


def _seed_plan(planner: PlanCoordinator, name: str) -> int:
    plan = planner.create_plan(name)
    plan_id = plan["id"]
    group_ids: Dict[str, int] = {}
    for group_name, members in _group_specs().items():
        groups = planner.add_group(plan_id, group_name)
        group_ids[group_name] = groups[-1]["id"]
        for member in members:
            planner.add_member(plan_id, group_ids[group_name], member)
    for spec in _rule_specs():
        rules = planner.add_rule(plan_id, str(spec["name"]))
        rule_id = rules[-1]["id"]
        for weekday, period, group_name, position in spec["slots"]:
            planner.add_assignment(plan_id, rule_id, weekday, period, group_ids[group_name], position)
    return plan_id


def _print_month(derived: Dict) -> None:
    for week in derived["weeks"]:
        header = f"[workflow] {week['week_start']} {week['status']:<8}"
        if week["rule_name"]:
            header += f" {week['rule_name']} (rotation {week['rotation_offset']})"
        print(header)
        for day in week["days"]:
            if not day["in_month"] or not (day["morning"] or day["afternoon"]):
                continue
            print(
                f"[workflow]     {day['weekday']} {day['date']}: "
                f"AM {', '.join(day['morning']) or '-'} | PM {', '.join(day['afternoon']) or '-'}"
            )


def run_workflow(year: int, month: int, actor: str, skip_rows: List[int]) -> None:
    planner = planner_for(SessionLocal, actor=actor)
    plan_id = _seed_plan(planner, f"Smoke {month_label(year, month)}")
    print(f"[workflow] Seeded plan {plan_id} with {len(_group_specs())} groups and {len(_rule_specs())} rules.")

    rows = month_weeks(year, month)
    flags = [idx in skip_rows for idx in range(len(rows))]
    result = apply_month_for_plan(SessionLocal, plan_id, year, month, flags, actor)
    print(f"[workflow] Fixed {len(result['committed'])} weeks for {month_label(year, month)}.")

    validation = result["validation"]
    for warning in validation["warnings"]:
        print(f"[workflow][warning] {warning['message']}")
    if validation["issues"]:
        for issue in validation["issues"]:
            print(f"[workflow][validation-error] {issue['message']}")
        raise SystemExit(1)

    _print_month(planner.derive_month(plan_id, year, month))

    plan_path = export_plan(planner, plan_id)
    month_path = export_month(planner, plan_id, year, month)
    print(f"[workflow] Exported plan -> {plan_path}")
    print(f"[workflow] Exported month -> {month_path}")


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=(
            "Run an end-to-end smoke test that seeds a plan with groups and rules, "
            "fixes one month, prints the derived shifts and exports the results."
        )
    )
    parser.add_argument("--month", help="Target month as YYYY-MM. Defaults to the current month.")
    parser.add_argument(
        "--skip",
        type=int,
        action="append",
        default=[],
        help="Zero-based week row of the month to skip. May be repeated.",
    )
    parser.add_argument("--actor", default="workflow_smoke", help="Audit trail actor name.")
    return parser.parse_args()


def main() -> None:
    init_database()
    args = parse_args()
    if args.month:
        try:
            first = datetime.date.fromisoformat(f"{args.month}-01")
        except ValueError as exc:
            raise SystemExit(f"Invalid --month value: {exc}") from exc
        year, month = first.year, first.month - 1
    else:
        year, month = _default_month()
    print(f"[workflow] Target month: {month_label(year, month)}")
    run_workflow(year, month, actor=args.actor, skip_rows=args.skip)


if __name__ == "__main__":
    main()
