from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Tuple

from .errors import InvalidAssignment, UnknownRule
from .names import clean_name


class ShiftPeriod(enum.IntEnum):
    MORNING = 0
    AFTERNOON = 1

    @classmethod
    def coerce(cls, value: Any) -> "ShiftPeriod":
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        try:
            return cls(int(value))
        except (TypeError, ValueError):
            raise InvalidAssignment(f"Unknown shift period: {value!r}.") from None

    @property
    def label(self) -> str:
        return self.name.lower()


@dataclass(frozen=True)
class RuleAssignment:
    weekday: int
    period: ShiftPeriod
    group_id: int
    member_index: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "weekday": self.weekday,
            "period": self.period.label,
            "group_id": self.group_id,
            "member_index": self.member_index,
        }


SlotKey = Tuple[int, ShiftPeriod]


@dataclass
class WeeklyRule:
    id: int
    name: str
    sort_order: int = 0
    slots: Dict[SlotKey, List[RuleAssignment]] = field(default_factory=dict)

    def slot(self, weekday: int, period: ShiftPeriod) -> List[RuleAssignment]:
        return list(self.slots.get((weekday, period), []))

    @property
    def assignments(self) -> List[RuleAssignment]:
        """Every assignment, ordered by weekday, period, then slot position."""
        return [item for key in sorted(self.slots) for item in self.slots[key]]

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sort_order": self.sort_order,
            "assignments": [item.to_dict() for item in self.assignments],
        }


def _validated(weekday: Any, period: Any, group_id: Any, member_index: Any) -> RuleAssignment:
    try:
        weekday = int(weekday)
        group_id = int(group_id)
        member_index = int(member_index)
    except (TypeError, ValueError):
        raise InvalidAssignment("weekday, group_id and member_index must be integers.") from None
    if not 0 <= weekday <= 6:
        raise InvalidAssignment(f"weekday must be 0-6 (0 = Monday); got {weekday}.")
    if member_index < 0:
        raise InvalidAssignment(f"member_index must not be negative; got {member_index}.")
    return RuleAssignment(weekday, ShiftPeriod.coerce(period), group_id, member_index)


class RuleCatalog:
    """Ordered weekly rules; the order is the rotation sequence."""

    def __init__(self, rules: Iterable[WeeklyRule] = (), *, next_rule_id: int | None = None) -> None:
        self.rules: List[WeeklyRule] = sorted(rules, key=lambda rule: rule.sort_order)
        self._renumber()
        max_rule = max((rule.id for rule in self.rules), default=0)
        self.next_rule_id = max(next_rule_id or 1, max_rule + 1)

    def __len__(self) -> int:
        return len(self.rules)

    def _renumber(self) -> None:
        for position, rule in enumerate(self.rules):
            rule.sort_order = position

    def rule(self, rule_id: int) -> WeeklyRule:
        found = self.find_rule(rule_id)
        if found is None:
            raise UnknownRule(f"Weekly rule {rule_id} was not found.")
        return found

    def find_rule(self, rule_id: int) -> WeeklyRule | None:
        for rule in self.rules:
            if rule.id == rule_id:
                return rule
        return None

    def rule_ids(self) -> List[int]:
        return [rule.id for rule in self.rules]

    def add_rule(self, name: str) -> WeeklyRule:
        rule = WeeklyRule(id=self.next_rule_id, name=clean_name(name, label="Rule name"), sort_order=len(self.rules))
        self.next_rule_id += 1
        self.rules.append(rule)
        return rule

    def remove_rule(self, rule_id: int) -> "RuleCatalog":
        self.rules.remove(self.rule(rule_id))
        self._renumber()
        return self

    def rename_rule(self, rule_id: int, name: str) -> "RuleCatalog":
        self.rule(rule_id).name = clean_name(name, label="Rule name")
        return self

    def move_rule(self, rule_id: int, position: int) -> "RuleCatalog":
        rule = self.rule(rule_id)
        self.rules.remove(rule)
        position = max(0, min(int(position), len(self.rules)))
        self.rules.insert(position, rule)
        self._renumber()
        return self

    def add_assignment(
        self,
        rule_id: int,
        weekday: int,
        period: ShiftPeriod | int | str,
        group_id: int,
        member_index: int,
        index: int | None = None,
    ) -> WeeklyRule:
        rule = self.rule(rule_id)
        assignment = _validated(weekday, period, group_id, member_index)
        slot = rule.slots.setdefault((assignment.weekday, assignment.period), [])
        if index is None:
            slot.append(assignment)
        else:
            slot.insert(max(0, min(int(index), len(slot))), assignment)
        return rule

    def remove_assignment(
        self,
        rule_id: int,
        weekday: int,
        period: ShiftPeriod | int | str,
        index: int,
    ) -> WeeklyRule:
        # Position based: two identical chips are told apart only by their index.
        rule = self.rule(rule_id)
        key = (int(weekday), ShiftPeriod.coerce(period))
        slot = rule.slots.get(key, [])
        if not 0 <= int(index) < len(slot):
            raise InvalidAssignment(
                f"No assignment at position {index} for weekday {key[0]} {key[1].label}."
            )
        del slot[int(index)]
        if not slot:
            rule.slots.pop(key, None)
        return rule

    def assignments(self, rule_id: int, weekday: int, period: ShiftPeriod | int | str) -> List[RuleAssignment]:
        return self.rule(rule_id).slot(int(weekday), ShiftPeriod.coerce(period))

    def to_list(self) -> List[Dict[str, Any]]:
        return [rule.to_dict() for rule in self.rules]

    @classmethod
    def from_list(cls, payload: Iterable[Dict[str, Any]], *, next_rule_id: int | None = None) -> "RuleCatalog":
        rules = []
        for position, entry in enumerate(payload):
            rule = WeeklyRule(
                id=int(entry["id"]),
                name=str(entry["name"]),
                sort_order=int(entry.get("sort_order", position)),
            )
            for item in entry.get("assignments", []):
                assignment = _validated(
                    item["weekday"], item["period"], item["group_id"], item["member_index"]
                )
                rule.slots.setdefault((assignment.weekday, assignment.period), []).append(assignment)
            rules.append(rule)
        return cls(rules, next_rule_id=next_rule_id)
