from __future__ import annotations

from typing import Any, Dict, List, Optional

from .calendar_math import MonthWeek, month_weeks
from .directory import StaffDirectory
from .engine import UNSET, Active, CalendarTimeline, Skipped, WeekState
from .rules import RuleCatalog, ShiftPeriod, WeeklyRule


def _empty_days(row: MonthWeek) -> List[Dict[str, Any]]:
    return [
        {
            "date": day.date.isoformat(),
            "weekday": day.weekday,
            "in_month": day.in_month,
            "morning": [],
            "afternoon": [],
        }
        for day in row.days
    ]


def _resolved_days(row: MonthWeek, rule: WeeklyRule, directory: StaffDirectory) -> List[Dict[str, Any]]:
    days = _empty_days(row)
    for entry in days:
        for period in ShiftPeriod:
            names = []
            for assignment in rule.slot(entry["weekday"], period):
                name = directory.resolve(assignment.group_id, assignment.member_index)
                if name is not None:
                    names.append(name)
            entry[period.label] = names
    return days


def derive_week(
    row: MonthWeek,
    state: WeekState,
    catalog: RuleCatalog,
    directory: StaffDirectory,
) -> Dict[str, Any]:
    week: Dict[str, Any] = {
        "abs_week": row.abs_week,
        "week_start": row.start.isoformat(),
        "status": "pending",
        "fixed": False,
        "rule_id": None,
        "rule_name": None,
        "rotation_offset": None,
        "rule_missing": False,
    }
    if isinstance(state, Active):
        rule = catalog.find_rule(state.rule_id)
        week.update(
            status="active",
            fixed=True,
            rule_id=state.rule_id,
            rotation_offset=state.rotation_offset,
        )
        if rule is None:
            week["rule_missing"] = True
            week["days"] = _empty_days(row)
        else:
            week["rule_name"] = rule.name
            week["days"] = _resolved_days(row, rule, directory)
    elif isinstance(state, Skipped):
        week.update(status="skipped", fixed=True, days=_empty_days(row))
    elif state is UNSET:
        week["days"] = _empty_days(row)
    else:
        raise TypeError(f"Not a week state: {state!r}")
    return week


def derive_month(
    directory: StaffDirectory,
    catalog: RuleCatalog,
    timeline: Optional[CalendarTimeline],
    year: int,
    month: int,
) -> Dict[str, Any]:
    """Concrete morning/afternoon names for every day shown in a month view.

    ``month`` is 0-based. Names are resolved against the current directory, so
    renames show up on weeks that were fixed earlier. References to deleted
    rules, groups or out-of-range member positions are left out instead of
    failing the month.
    """
    rows = month_weeks(year, month)
    weeks = []
    for row in rows:
        state = timeline.record_at(row.abs_week) if timeline is not None else UNSET
        weeks.append(derive_week(row, state, catalog, directory))
    return {"year": year, "month": month, "weeks": weeks}
