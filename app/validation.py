from __future__ import annotations

from typing import Any, Dict, List

from timeline.calendar_math import WEEKDAY_TOKENS, week_label
from timeline.engine import Active
from timeline.plan import Plan


def validate_plan(plan: Plan) -> Dict[str, Any]:
    """Return integrity findings for a plan.

    Dangling references never break derivation; they are reported here so a
    partially empty calendar can be explained.
    """
    issues: List[Dict[str, Any]] = []
    warnings: List[Dict[str, Any]] = []
    issues.extend(_rotation_issues(plan))
    warnings.extend(_assignment_warnings(plan))
    warnings.extend(_empty_rule_warnings(plan))
    warnings.extend(_empty_group_warnings(plan))
    warnings.extend(_missing_rule_warnings(plan))
    checks = _build_validation_checklist(plan, issues=issues, warnings=warnings)
    return {
        "plan_id": plan.id,
        "checks": checks,
        "issues": issues,
        "warnings": warnings,
    }


def _rotation_issues(plan: Plan) -> List[Dict[str, Any]]:
    if len(plan.catalog):
        return []
    return [
        {
            "type": "no_rules",
            "severity": "error",
            "message": "The plan has no weekly rules; weeks can only be skipped.",
        }
    ]


def _assignment_warnings(plan: Plan) -> List[Dict[str, Any]]:
    warnings: List[Dict[str, Any]] = []
    for rule in plan.catalog.rules:
        for assignment in rule.assignments:
            slot = f"{WEEKDAY_TOKENS[assignment.weekday]} {assignment.period.label}"
            group = plan.directory.find_group(assignment.group_id)
            if group is None:
                warnings.append(
                    {
                        "type": "dangling_group",
                        "severity": "warning",
                        "rule_id": rule.id,
                        "group_id": assignment.group_id,
                        "message": f"Rule '{rule.name}' ({slot}) points at deleted group {assignment.group_id}.",
                    }
                )
            elif assignment.member_index >= len(group.members):
                warnings.append(
                    {
                        "type": "dangling_member",
                        "severity": "warning",
                        "rule_id": rule.id,
                        "group_id": group.id,
                        "member_index": assignment.member_index,
                        "message": f"Rule '{rule.name}' ({slot}) uses position {assignment.member_index + 1} "
                        f"of '{group.name}', which has {len(group.members)} member(s).",
                    }
                )
    return warnings


def _empty_rule_warnings(plan: Plan) -> List[Dict[str, Any]]:
    return [
        {
            "type": "empty_rule",
            "severity": "warning",
            "rule_id": rule.id,
            "message": f"Rule '{rule.name}' has no assignments.",
        }
        for rule in plan.catalog.rules
        if not rule.slots
    ]


def _empty_group_warnings(plan: Plan) -> List[Dict[str, Any]]:
    return [
        {
            "type": "empty_group",
            "severity": "warning",
            "group_id": group.id,
            "message": f"Group '{group.name}' has no members.",
        }
        for group in plan.directory.groups
        if not group.members
    ]


def _missing_rule_warnings(plan: Plan) -> List[Dict[str, Any]]:
    if plan.timeline is None:
        return []
    warnings: List[Dict[str, Any]] = []
    for abs_week, state in plan.timeline.query_range(plan.timeline.base_abs_week, plan.timeline.next_abs_week):
        if isinstance(state, Active) and plan.catalog.find_rule(state.rule_id) is None:
            warnings.append(
                {
                    "type": "missing_rule",
                    "severity": "warning",
                    "abs_week": abs_week,
                    "rule_id": state.rule_id,
                    "message": f"Fixed week {week_label(abs_week)} uses deleted rule {state.rule_id}; it shows no shifts.",
                }
            )
    return warnings


def _build_validation_checklist(
    plan: Plan,
    *,
    issues: List[Dict[str, Any]],
    warnings: List[Dict[str, Any]],
) -> List[Dict[str, Any]]:
    def status_for(kinds: set[str], findings: List[Dict[str, Any]], fail: str) -> Dict[str, str]:
        hits = [item for item in findings if item["type"] in kinds]
        if not hits:
            return {"status": "pass", "details": "OK"}
        return {"status": fail, "details": f"{len(hits)} finding(s)."}

    fixed = len(plan.timeline) if plan.timeline is not None else 0
    return [
        {"label": "Rotation has rules?", **status_for({"no_rules"}, issues, "fail")},
        {"label": "Rule slots resolve?", **status_for({"dangling_group", "dangling_member"}, warnings, "warn")},
        {"label": "Fixed weeks resolve?", **status_for({"missing_rule"}, warnings, "warn")},
        {"label": "Groups staffed?", **status_for({"empty_group"}, warnings, "warn")},
        {"label": "Fixed weeks", "status": "info", "details": str(fixed)},
    ]
