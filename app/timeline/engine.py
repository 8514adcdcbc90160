"""Week-by-week record of which weeks are skipped and which follow a rule.

Records form a contiguous run starting at ``base_abs_week``. A week moves from
unset to skipped or active exactly once; the only way back is
``truncate_from``, which drops a whole suffix.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple, Union

from .errors import EmptyRuleList, InvalidCalendar, InvalidImport, OutOfOrderApply


@dataclass(frozen=True)
class Skipped:
    def to_dict(self) -> Dict[str, Any]:
        return {"status": "skipped"}


@dataclass(frozen=True)
class Active:
    rule_id: int
    rotation_offset: int

    def to_dict(self) -> Dict[str, Any]:
        return {"status": "active", "rule_id": self.rule_id, "rotation_offset": self.rotation_offset}


class _Unset:
    _instance: Optional["_Unset"] = None

    def __new__(cls) -> "_Unset":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "UNSET"

    def __bool__(self) -> bool:
        return False


UNSET = _Unset()
SKIPPED = Skipped()

WeekRecord = Union[Skipped, Active]
WeekState = Union[Skipped, Active, _Unset]


def record_from_dict(entry: Dict[str, Any]) -> WeekRecord:
    status = str(entry.get("status", "")).lower()
    if status == "skipped":
        return SKIPPED
    if status == "active":
        try:
            return Active(rule_id=int(entry["rule_id"]), rotation_offset=int(entry["rotation_offset"]))
        except (KeyError, TypeError, ValueError):
            raise InvalidImport("Active week record needs integer rule_id and rotation_offset.") from None
    raise InvalidImport(f"Unknown week status: {entry.get('status')!r}.")


def state_label(state: WeekState) -> str:
    if isinstance(state, Active):
        return "active"
    if isinstance(state, Skipped):
        return "skipped"
    if state is UNSET:
        return "pending"
    raise TypeError(f"Not a week state: {state!r}")


class CalendarTimeline:
    def __init__(
        self,
        base_abs_week: int,
        initial_rotation_offset: int = 0,
        records: Iterable[WeekRecord] = (),
    ) -> None:
        if initial_rotation_offset < 0:
            raise InvalidCalendar(f"initial_rotation_offset must not be negative; got {initial_rotation_offset}.")
        self.base_abs_week = int(base_abs_week)
        self.initial_rotation_offset = int(initial_rotation_offset)
        self._records: List[WeekRecord] = list(records)

    def __len__(self) -> int:
        return len(self._records)

    def __repr__(self) -> str:
        return (
            f"CalendarTimeline(base_abs_week={self.base_abs_week}, "
            f"initial_rotation_offset={self.initial_rotation_offset}, records={self._records!r})"
        )

    @property
    def records(self) -> Tuple[WeekRecord, ...]:
        return tuple(self._records)

    @property
    def next_abs_week(self) -> int:
        """First unset abs-week: the only valid start for ``apply_range``."""
        return self.base_abs_week + len(self._records)

    @property
    def last_abs_week(self) -> Optional[int]:
        if not self._records:
            return None
        return self.next_abs_week - 1

    def next_rotation_offset(self) -> int:
        for record in reversed(self._records):
            if isinstance(record, Active):
                return record.rotation_offset + 1
        return self.initial_rotation_offset

    def record_at(self, abs_week: int) -> WeekState:
        index = abs_week - self.base_abs_week
        if 0 <= index < len(self._records):
            return self._records[index]
        return UNSET

    def is_fixed(self, abs_week: int) -> bool:
        return self.record_at(abs_week) is not UNSET

    def query_range(self, from_abs_week: int, to_abs_week: int) -> List[Tuple[int, WeekState]]:
        """States for ``[from_abs_week, to_abs_week)``; never fails, never mutates."""
        return [(abs_week, self.record_at(abs_week)) for abs_week in range(from_abs_week, to_abs_week)]

    def apply_range(
        self,
        rule_ids: Sequence[int],
        from_abs_week: int,
        decisions: Sequence[bool],
    ) -> List[WeekRecord]:
        """Commit one decision per week starting at ``from_abs_week``.

        ``True`` skips the week, ``False`` activates it with the next rule in
        the rotation. The rotation counter advances only on activated weeks and
        carries over from the last committed active week. Validation happens
        before anything is written, so a failed call commits nothing.
        """
        if from_abs_week != self.next_abs_week:
            raise OutOfOrderApply(self.next_abs_week, from_abs_week)
        rule_ids = list(rule_ids)
        if not rule_ids and not all(decisions):
            raise EmptyRuleList()

        counter = self.next_rotation_offset()
        added: List[WeekRecord] = []
        for skip in decisions:
            if skip:
                added.append(SKIPPED)
                continue
            added.append(Active(rule_id=rule_ids[counter % len(rule_ids)], rotation_offset=counter))
            counter += 1
        self._records.extend(added)
        return added

    def truncate_from(self, cut_abs_week: int) -> int:
        """Revert every week at or after ``cut_abs_week`` to unset."""
        keep = max(0, cut_abs_week - self.base_abs_week)
        if keep >= len(self._records):
            return 0
        removed = len(self._records) - keep
        del self._records[keep:]
        return removed

    def to_dict(self) -> Dict[str, Any]:
        return {
            "base_abs_week": self.base_abs_week,
            "initial_rotation_offset": self.initial_rotation_offset,
            "records": [record.to_dict() for record in self._records],
        }

    @classmethod
    def restore(
        cls,
        base_abs_week: int,
        initial_rotation_offset: int,
        rows: Iterable[Tuple[int, WeekRecord]],
        known_rule_ids: Optional[Iterable[int]] = None,
    ) -> "CalendarTimeline":
        """Rebuild from ``(week_offset, record)`` rows, rejecting gaps and unknown rules."""
        ordered = sorted(rows, key=lambda row: row[0])
        offsets = [offset for offset, _ in ordered]
        if offsets != list(range(len(ordered))):
            raise InvalidImport(f"Timeline records are not contiguous from offset 0: {offsets}.")
        records = [record for _, record in ordered]
        if known_rule_ids is not None:
            known = set(known_rule_ids)
            for offset, record in ordered:
                if isinstance(record, Active) and record.rule_id not in known:
                    raise InvalidImport(f"Week offset {offset} references unknown rule {record.rule_id}.")
        try:
            return cls(int(base_abs_week), int(initial_rotation_offset), records)
        except (TypeError, ValueError) as exc:
            raise InvalidImport(str(exc)) from exc

    @classmethod
    def from_dict(
        cls, payload: Dict[str, Any], known_rule_ids: Optional[Iterable[int]] = None
    ) -> "CalendarTimeline":
        if not isinstance(payload, dict):
            raise InvalidImport("Timeline must be a JSON object.")
        entries = payload.get("records") or []
        if not isinstance(entries, list):
            raise InvalidImport("Timeline records must be a list.")
        rows = []
        for position, entry in enumerate(entries):
            if not isinstance(entry, dict):
                raise InvalidImport(f"Timeline record {position} must be an object.")
            try:
                offset = int(entry.get("week_offset", position))
            except (TypeError, ValueError):
                raise InvalidImport(f"Timeline record {position} has a bad week_offset.") from None
            rows.append((offset, record_from_dict(entry)))
        try:
            base = int(payload["base_abs_week"])
            initial = int(payload.get("initial_rotation_offset", 0))
        except (KeyError, TypeError, ValueError):
            raise InvalidImport("Timeline needs an integer base_abs_week.") from None
        return cls.restore(base, initial, rows, known_rule_ids)
