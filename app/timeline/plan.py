from __future__ import annotations

import copy
import datetime
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from .calendar_math import abs_week_of, first_day, month_weeks
from .deriver import derive_month
from .directory import StaffDirectory
from .engine import UNSET, CalendarTimeline, Skipped, state_label
from .errors import (
    CalendarExists,
    InvalidCalendar,
    InvalidImport,
    InvalidSkipFlags,
    OutOfOrderApply,
    OverwriteAttempt,
    PlanNotFound,
)
from .names import clean_name
from .rules import RuleCatalog


@dataclass
class Plan:
    id: int
    name: str
    directory: StaffDirectory = field(default_factory=StaffDirectory)
    catalog: RuleCatalog = field(default_factory=RuleCatalog)
    timeline: Optional[CalendarTimeline] = None

    def sequences(self) -> Dict[str, int]:
        return {
            "group": self.directory.next_group_id,
            "member": self.directory.next_member_id,
            "rule": self.catalog.next_rule_id,
        }

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "groups": self.directory.to_list(),
            "rules": self.catalog.to_list(),
            "timeline": self.timeline.to_dict() if self.timeline is not None else None,
            "sequences": self.sequences(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], *, plan_id: Optional[int] = None) -> "Plan":
        """Rebuild a plan from its persisted shape; any defect rejects the whole payload."""
        if not isinstance(payload, dict):
            raise InvalidImport("Plan payload must be a JSON object.")
        sequences = payload.get("sequences") or {}
        try:
            name = clean_name(payload.get("name"), label="Plan name")
            directory = StaffDirectory.from_list(
                payload.get("groups") or [],
                next_group_id=sequences.get("group"),
                next_member_id=sequences.get("member"),
            )
            catalog = RuleCatalog.from_list(payload.get("rules") or [], next_rule_id=sequences.get("rule"))
        except (KeyError, TypeError, ValueError, AttributeError) as exc:
            raise InvalidImport(f"Malformed plan payload: {exc}") from exc
        _check_unique([group.id for group in directory.groups], "group")
        _check_unique([m.id for group in directory.groups for m in group.members], "member")
        _check_unique(catalog.rule_ids(), "rule")
        timeline = None
        if payload.get("timeline") is not None:
            # With a rule sequence, ids below it belong to rules deleted after their weeks were fixed.
            known = range(1, catalog.next_rule_id) if sequences.get("rule") else catalog.rule_ids()
            timeline = CalendarTimeline.from_dict(payload["timeline"], known_rule_ids=known)
        if plan_id is None:
            plan_id = int(payload.get("id") or 0)
        return cls(id=plan_id, name=name, directory=directory, catalog=catalog, timeline=timeline)


def _check_unique(ids: List[int], label: str) -> None:
    if len(ids) != len(set(ids)):
        raise InvalidImport(f"Duplicate {label} ids in plan payload.")


class PlanStore(Protocol):
    def create(self, name: str) -> Plan: ...

    def load(self, plan_id: int) -> Plan: ...

    def save(self, plan: Plan) -> None: ...

    def delete(self, plan_id: int) -> None: ...

    def list(self) -> List[Dict[str, Any]]: ...

    def record(self, action: str, plan_id: int, payload: Dict[str, Any]) -> None: ...


class InMemoryPlanStore:
    def __init__(self) -> None:
        self._plans: Dict[int, Plan] = {}
        self._next_id = 1
        self.history: List[Dict[str, Any]] = []

    def create(self, name: str) -> Plan:
        plan = Plan(id=self._next_id, name=name)
        self._next_id += 1
        self._plans[plan.id] = plan
        return plan

    def load(self, plan_id: int) -> Plan:
        plan = self._plans.get(plan_id)
        if plan is None:
            raise PlanNotFound(f"Plan {plan_id} was not found.")
        return plan

    def save(self, plan: Plan) -> None:
        self._plans[plan.id] = plan

    def delete(self, plan_id: int) -> None:
        if self._plans.pop(plan_id, None) is None:
            raise PlanNotFound(f"Plan {plan_id} was not found.")

    def list(self) -> List[Dict[str, Any]]:
        return [{"id": plan.id, "name": plan.name} for plan in sorted(self._plans.values(), key=lambda p: p.id)]

    def record(self, action: str, plan_id: int, payload: Dict[str, Any]) -> None:
        self.history.append(
            {
                "timestamp": datetime.datetime.now(datetime.timezone.utc).isoformat(),
                "action": action,
                "plan_id": plan_id,
                "payload": payload,
            }
        )


class PlanCoordinator:
    """Entry point for callers: every operation addresses a plan by id.

    Each mutation loads the plan, applies the change in memory and saves it
    back. Operations validate before they touch state, so a failed call leaves
    the stored plan as it was.
    """

    def __init__(self, store: Optional[PlanStore] = None) -> None:
        self.store = store if store is not None else InMemoryPlanStore()

    # ------------------------------------------------------------------
    # Plans

    def create_plan(self, name: str) -> Dict[str, Any]:
        plan = self.store.create(clean_name(name, label="Plan name"))
        self.store.record("PLAN_CREATE", plan.id, {"name": plan.name})
        return plan.to_dict()

    def rename_plan(self, plan_id: int, name: str) -> Dict[str, Any]:
        new_name = clean_name(name, label="Plan name")
        return self._mutate(plan_id, "PLAN_RENAME", lambda plan: setattr(plan, "name", new_name), {"name": new_name})

    def delete_plan(self, plan_id: int) -> None:
        self.store.delete(plan_id)
        self.store.record("PLAN_DELETE", plan_id, {})

    def list_plans(self) -> List[Dict[str, Any]]:
        return self.store.list()

    def get_plan(self, plan_id: int) -> Dict[str, Any]:
        return self.store.load(plan_id).to_dict()

    def import_plan(self, plan: Plan) -> Dict[str, Any]:
        created = self.store.create(plan.name)
        imported = copy.deepcopy(plan)
        imported.id = created.id
        self.store.save(imported)
        self.store.record("PLAN_IMPORT", imported.id, {"name": imported.name})
        return imported.to_dict()

    # ------------------------------------------------------------------
    # Staff directory

    def add_group(self, plan_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(plan_id, "GROUP_ADD", lambda p: p.directory.add_group(name), {"name": name})
        return plan["groups"]

    def remove_group(self, plan_id: int, group_id: int) -> List[Dict[str, Any]]:
        plan = self._mutate(plan_id, "GROUP_REMOVE", lambda p: p.directory.remove_group(group_id), {"group_id": group_id})
        return plan["groups"]

    def rename_group(self, plan_id: int, group_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "GROUP_RENAME",
            lambda p: p.directory.rename_group(group_id, name),
            {"group_id": group_id, "name": name},
        )
        return plan["groups"]

    def add_member(self, plan_id: int, group_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "MEMBER_ADD",
            lambda p: p.directory.add_member(group_id, name),
            {"group_id": group_id, "name": name},
        )
        return plan["groups"]

    def remove_member(self, plan_id: int, member_id: int) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id, "MEMBER_REMOVE", lambda p: p.directory.remove_member(member_id), {"member_id": member_id}
        )
        return plan["groups"]

    def rename_member(self, plan_id: int, member_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "MEMBER_RENAME",
            lambda p: p.directory.rename_member(member_id, name),
            {"member_id": member_id, "name": name},
        )
        return plan["groups"]

    def move_member(self, plan_id: int, member_id: int, position: int) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "MEMBER_MOVE",
            lambda p: p.directory.move_member(member_id, position),
            {"member_id": member_id, "position": position},
        )
        return plan["groups"]

    # ------------------------------------------------------------------
    # Rule catalog

    def add_rule(self, plan_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(plan_id, "RULE_ADD", lambda p: p.catalog.add_rule(name), {"name": name})
        return plan["rules"]

    def remove_rule(self, plan_id: int, rule_id: int) -> List[Dict[str, Any]]:
        plan = self._mutate(plan_id, "RULE_REMOVE", lambda p: p.catalog.remove_rule(rule_id), {"rule_id": rule_id})
        return plan["rules"]

    def rename_rule(self, plan_id: int, rule_id: int, name: str) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "RULE_RENAME",
            lambda p: p.catalog.rename_rule(rule_id, name),
            {"rule_id": rule_id, "name": name},
        )
        return plan["rules"]

    def move_rule(self, plan_id: int, rule_id: int, position: int) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "RULE_MOVE",
            lambda p: p.catalog.move_rule(rule_id, position),
            {"rule_id": rule_id, "position": position},
        )
        return plan["rules"]

    def add_assignment(
        self,
        plan_id: int,
        rule_id: int,
        weekday: int,
        period: Any,
        group_id: int,
        member_index: int,
        index: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "ASSIGNMENT_ADD",
            lambda p: p.catalog.add_assignment(rule_id, weekday, period, group_id, member_index, index),
            {
                "rule_id": rule_id,
                "weekday": weekday,
                "period": str(period),
                "group_id": group_id,
                "member_index": member_index,
            },
        )
        return plan["rules"]

    def remove_assignment(
        self, plan_id: int, rule_id: int, weekday: int, period: Any, index: int
    ) -> List[Dict[str, Any]]:
        plan = self._mutate(
            plan_id,
            "ASSIGNMENT_REMOVE",
            lambda p: p.catalog.remove_assignment(rule_id, weekday, period, index),
            {"rule_id": rule_id, "weekday": weekday, "period": str(period), "index": index},
        )
        return plan["rules"]

    # ------------------------------------------------------------------
    # Calendar timeline

    def create_calendar(self, plan_id: int, base_abs_week: int, initial_rotation_offset: int = 0) -> Dict[str, Any]:
        if not isinstance(base_abs_week, int) or not isinstance(initial_rotation_offset, int):
            raise InvalidCalendar("base_abs_week and initial_rotation_offset must be integers.")

        def _create(plan: Plan) -> None:
            if plan.timeline is not None and len(plan.timeline):
                raise CalendarExists(f"Plan {plan.id} already has fixed weeks; reset them first.")
            plan.timeline = CalendarTimeline(base_abs_week, initial_rotation_offset)

        plan = self._mutate(
            plan_id,
            "CALENDAR_CREATE",
            _create,
            {"base_abs_week": base_abs_week, "initial_rotation_offset": initial_rotation_offset},
        )
        return plan["timeline"]

    def apply_month(self, plan_id: int, year: int, month: int, skip_flags: Sequence[bool]) -> List[Dict[str, Any]]:
        """Fix the pending weeks of a displayed month.

        ``skip_flags`` holds one boolean per week row of the month. Rows that
        are already fixed must repeat their committed state; rows before the
        start of the timeline are ignored. The remaining rows are committed in
        order through ``CalendarTimeline.apply_range``.
        """
        rows = month_weeks(year, month)
        flags = list(skip_flags)
        if any(not isinstance(flag, bool) for flag in flags):
            raise InvalidSkipFlags(f"Skip flags must be true or false; got {flags!r}.")
        if len(flags) != len(rows):
            raise InvalidSkipFlags(f"Expected {len(rows)} skip flags for {year}-{month + 1:02d}; got {len(flags)}.")
        plan = self.store.load(plan_id)
        timeline = plan.timeline if plan.timeline is not None else CalendarTimeline(rows[0].abs_week)
        if rows[-1].abs_week < timeline.base_abs_week:
            # The whole month lies before the calendar starts.
            raise OutOfOrderApply(timeline.next_abs_week, rows[0].abs_week)

        pending_start: Optional[int] = None
        decisions: List[bool] = []
        for row, skip in zip(rows, flags):
            if row.abs_week < timeline.base_abs_week:
                continue
            state = timeline.record_at(row.abs_week)
            if state is UNSET:
                if pending_start is None:
                    pending_start = row.abs_week
                decisions.append(skip)
            elif isinstance(state, Skipped) != skip:
                raise OverwriteAttempt(row.abs_week)
        if pending_start is None:
            return []
        if pending_start != timeline.next_abs_week:
            raise OutOfOrderApply(timeline.next_abs_week, pending_start)

        added = timeline.apply_range(plan.catalog.rule_ids(), pending_start, decisions)
        plan.timeline = timeline
        self.store.save(plan)
        committed = [
            dict(record.to_dict(), abs_week=pending_start + offset) for offset, record in enumerate(added)
        ]
        self.store.record(
            "MONTH_APPLY",
            plan_id,
            {"year": year, "month": month, "from_abs_week": pending_start, "skip_flags": decisions},
        )
        return committed

    def reset_from_month(self, plan_id: int, year: int, month: int) -> int:
        """Unfix the month's first week and everything after it.

        Destructive: callers must obtain explicit confirmation first.
        """
        cut = abs_week_of(first_day(year, month))
        plan = self.store.load(plan_id)
        if plan.timeline is None:
            return 0
        removed = plan.timeline.truncate_from(cut)
        if removed:
            self.store.save(plan)
            self.store.record("MONTH_RESET", plan_id, {"year": year, "month": month, "cut_abs_week": cut, "removed": removed})
        return removed

    def month_status(self, plan_id: int, year: int, month: int) -> List[Dict[str, Any]]:
        timeline = self.store.load(plan_id).timeline
        status = []
        for row in month_weeks(year, month):
            state = timeline.record_at(row.abs_week) if timeline is not None else UNSET
            eligible = state is UNSET and (timeline is None or row.abs_week >= timeline.base_abs_week)
            status.append(
                {
                    "abs_week": row.abs_week,
                    "week_start": row.start.isoformat(),
                    "status": state_label(state),
                    "fixed": state is not UNSET,
                    "eligible": eligible,
                }
            )
        return status

    def derive_month(self, plan_id: int, year: int, month: int) -> Dict[str, Any]:
        plan = self.store.load(plan_id)
        return derive_month(plan.directory, plan.catalog, plan.timeline, year, month)

    # ------------------------------------------------------------------

    def _mutate(
        self,
        plan_id: int,
        action: str,
        change: Callable[[Plan], Any],
        payload: Dict[str, Any],
    ) -> Dict[str, Any]:
        plan = self.store.load(plan_id)
        change(plan)
        self.store.save(plan)
        self.store.record(action, plan_id, payload)
        return plan.to_dict()
