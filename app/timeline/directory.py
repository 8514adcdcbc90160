"""Staff groups and their ordered members.

Members are addressed by rule assignments through their *position* in the
group, not through their id. Removing or moving a member therefore changes
which person an existing rule slot points at, including for weeks that are
already fixed. That is a known property of positional references and is left
as-is.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, List, Optional

from .errors import UnknownGroup, UnknownMember
from .names import clean_name


@dataclass
class StaffMember:
    id: int
    display_name: str
    sort_order: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.display_name, "sort_order": self.sort_order}


@dataclass
class StaffGroup:
    id: int
    name: str
    sort_order: int = 0
    members: List[StaffMember] = field(default_factory=list)

    def member_names(self) -> List[str]:
        return [member.display_name for member in self.members]

    def _renumber(self) -> None:
        for position, member in enumerate(self.members):
            member.sort_order = position

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "sort_order": self.sort_order,
            "members": [member.to_dict() for member in self.members],
        }


class StaffDirectory:
    def __init__(
        self,
        groups: Iterable[StaffGroup] = (),
        *,
        next_group_id: int | None = None,
        next_member_id: int | None = None,
    ) -> None:
        self.groups: List[StaffGroup] = sorted(groups, key=lambda group: group.sort_order)
        for position, group in enumerate(self.groups):
            group.sort_order = position
            group.members.sort(key=lambda member: member.sort_order)
            group._renumber()
        max_group = max((group.id for group in self.groups), default=0)
        max_member = max((m.id for group in self.groups for m in group.members), default=0)
        self.next_group_id = max(next_group_id or 1, max_group + 1)
        self.next_member_id = max(next_member_id or 1, max_member + 1)

    # ------------------------------------------------------------------
    # Lookups

    def group(self, group_id: int) -> StaffGroup:
        for group in self.groups:
            if group.id == group_id:
                return group
        raise UnknownGroup(f"Staff group {group_id} was not found.")

    def find_group(self, group_id: int) -> Optional[StaffGroup]:
        for group in self.groups:
            if group.id == group_id:
                return group
        return None

    def member(self, member_id: int) -> StaffMember:
        return self._locate_member(member_id)[1]

    def _locate_member(self, member_id: int) -> tuple[StaffGroup, StaffMember]:
        for group in self.groups:
            for member in group.members:
                if member.id == member_id:
                    return group, member
        raise UnknownMember(f"Staff member {member_id} was not found.")

    def resolve(self, group_id: int, member_index: int) -> Optional[str]:
        """Name at ``member_index`` of the group, or None for a dangling reference."""
        group = self.find_group(group_id)
        if group is None or member_index < 0 or member_index >= len(group.members):
            return None
        return group.members[member_index].display_name

    # ------------------------------------------------------------------
    # Mutations

    def add_group(self, name: str) -> StaffGroup:
        group = StaffGroup(
            id=self.next_group_id,
            name=clean_name(name, label="Group name"),
            sort_order=len(self.groups),
        )
        self.next_group_id += 1
        self.groups.append(group)
        return group

    def remove_group(self, group_id: int) -> "StaffDirectory":
        group = self.group(group_id)
        self.groups.remove(group)
        for position, remaining in enumerate(self.groups):
            remaining.sort_order = position
        return self

    def rename_group(self, group_id: int, name: str) -> "StaffDirectory":
        self.group(group_id).name = clean_name(name, label="Group name")
        return self

    def add_member(self, group_id: int, name: str) -> StaffMember:
        group = self.group(group_id)
        member = StaffMember(
            id=self.next_member_id,
            display_name=clean_name(name, label="Member name"),
            sort_order=len(group.members),
        )
        self.next_member_id += 1
        group.members.append(member)
        return member

    def remove_member(self, member_id: int) -> "StaffDirectory":
        group, member = self._locate_member(member_id)
        group.members.remove(member)
        group._renumber()
        return self

    def rename_member(self, member_id: int, name: str) -> "StaffDirectory":
        self.member(member_id).display_name = clean_name(name, label="Member name")
        return self

    def move_member(self, member_id: int, position: int) -> "StaffDirectory":
        group, member = self._locate_member(member_id)
        group.members.remove(member)
        position = max(0, min(int(position), len(group.members)))
        group.members.insert(position, member)
        group._renumber()
        return self

    # ------------------------------------------------------------------

    def to_list(self) -> List[Dict[str, Any]]:
        return [group.to_dict() for group in self.groups]

    @classmethod
    def from_list(cls, payload: Iterable[Dict[str, Any]], **sequences: int | None) -> "StaffDirectory":
        groups = []
        for position, entry in enumerate(payload):
            members = [
                StaffMember(
                    id=int(item["id"]),
                    display_name=str(item["name"]),
                    sort_order=int(item.get("sort_order", index)),
                )
                for index, item in enumerate(entry.get("members", []))
            ]
            groups.append(
                StaffGroup(
                    id=int(entry["id"]),
                    name=str(entry["name"]),
                    sort_order=int(entry.get("sort_order", position)),
                    members=members,
                )
            )
        return cls(groups, **sequences)
