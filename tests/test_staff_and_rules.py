from __future__ import annotations

import sys
from pathlib import Path

import pytest

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from timeline.directory import StaffDirectory  # noqa: E402
from timeline.errors import InvalidAssignment, InvalidName, UnknownGroup, UnknownMember, UnknownRule  # noqa: E402
from timeline.names import clean_name  # noqa: E402
from timeline.rules import RuleAssignment, RuleCatalog, ShiftPeriod  # noqa: E402


@pytest.fixture()
def directory() -> StaffDirectory:
    directory = StaffDirectory()
    kitchen = directory.add_group("Kitchen")
    for name in ("Alice", "Bruno", "Chen"):
        directory.add_member(kitchen.id, name)
    directory.add_group("Front desk")
    return directory


def test_groups_and_members_get_sequential_ids(directory: StaffDirectory) -> None:
    kitchen, desk = directory.groups

    assert (kitchen.id, desk.id) == (1, 2)
    assert [m.id for m in kitchen.members] == [1, 2, 3]
    assert [m.sort_order for m in kitchen.members] == [0, 1, 2]
    assert directory.next_group_id == 3
    assert directory.next_member_id == 4


def test_resolve_uses_position_and_tolerates_dangling(directory: StaffDirectory) -> None:
    assert directory.resolve(1, 0) == "Alice"
    assert directory.resolve(1, 2) == "Chen"
    assert directory.resolve(1, 3) is None
    assert directory.resolve(2, 0) is None
    assert directory.resolve(99, 0) is None


def test_remove_member_shifts_later_positions(directory: StaffDirectory) -> None:
    directory.remove_member(1)

    assert directory.group(1).member_names() == ["Bruno", "Chen"]
    assert directory.resolve(1, 0) == "Bruno"
    assert [m.sort_order for m in directory.group(1).members] == [0, 1]


def test_move_member_clamps_position(directory: StaffDirectory) -> None:
    directory.move_member(1, 10)
    assert directory.group(1).member_names() == ["Bruno", "Chen", "Alice"]

    directory.move_member(3, -4)
    assert directory.group(1).member_names() == ["Chen", "Bruno", "Alice"]


def test_ids_are_not_reused_after_removal(directory: StaffDirectory) -> None:
    directory.remove_group(2)
    group = directory.add_group("Porters")

    assert group.id == 3
    assert [g.sort_order for g in directory.groups] == [0, 1]


def test_rename_and_validation(directory: StaffDirectory) -> None:
    directory.rename_group(1, "  Cooks ")
    directory.rename_member(2, "Bruna")

    assert directory.group(1).name == "Cooks"
    assert directory.member(2).display_name == "Bruna"
    with pytest.raises(InvalidName):
        directory.add_group("   ")
    with pytest.raises(InvalidName):
        directory.rename_member(2, "")
    with pytest.raises(UnknownGroup):
        directory.add_member(42, "Zed")
    with pytest.raises(UnknownMember):
        directory.remove_member(42)


def test_clean_name_strips_and_labels_errors() -> None:
    assert clean_name("  Night shift ") == "Night shift"
    with pytest.raises(InvalidName, match="Rule name must not be empty"):
        clean_name(None, label="Rule name")


def test_directory_round_trip_keeps_sequences(directory: StaffDirectory) -> None:
    directory.remove_member(3)
    restored = StaffDirectory.from_list(
        directory.to_list(), next_group_id=directory.next_group_id, next_member_id=directory.next_member_id
    )

    assert restored.to_list() == directory.to_list()
    assert restored.next_member_id == 4


def test_rule_catalog_order_is_rotation_order() -> None:
    catalog = RuleCatalog()
    first = catalog.add_rule("Week A")
    second = catalog.add_rule("Week B")
    third = catalog.add_rule("Week C")

    catalog.move_rule(third.id, 0)
    assert catalog.rule_ids() == [third.id, first.id, second.id]

    catalog.remove_rule(first.id)
    assert catalog.rule_ids() == [third.id, second.id]
    assert catalog.add_rule("Week D").id == 4
    with pytest.raises(UnknownRule):
        catalog.rename_rule(first.id, "Gone")


def test_assignments_keep_slot_order_and_duplicates() -> None:
    catalog = RuleCatalog()
    rule = catalog.add_rule("Week A")
    catalog.add_assignment(rule.id, 0, "morning", 1, 0)
    catalog.add_assignment(rule.id, 0, ShiftPeriod.MORNING, 1, 0)
    catalog.add_assignment(rule.id, 0, 0, 2, 1, index=0)
    catalog.add_assignment(rule.id, 0, "afternoon", 1, 1)

    assert catalog.assignments(rule.id, 0, "morning") == [
        RuleAssignment(0, ShiftPeriod.MORNING, 2, 1),
        RuleAssignment(0, ShiftPeriod.MORNING, 1, 0),
        RuleAssignment(0, ShiftPeriod.MORNING, 1, 0),
    ]

    catalog.remove_assignment(rule.id, 0, "morning", 1)
    assert len(catalog.assignments(rule.id, 0, "morning")) == 2

    catalog.remove_assignment(rule.id, 0, "afternoon", 0)
    assert (0, ShiftPeriod.AFTERNOON) not in rule.slots


@pytest.mark.parametrize(
    ("weekday", "period", "group_id", "member_index"),
    [
        (7, "morning", 1, 0),
        (-1, "morning", 1, 0),
        (0, "evening", 1, 0),
        (0, 2, 1, 0),
        (0, "morning", 1, -1),
        ("mon", "morning", 1, 0),
    ],
)
def test_add_assignment_rejects_bad_slots(weekday, period, group_id, member_index) -> None:
    catalog = RuleCatalog()
    rule = catalog.add_rule("Week A")

    with pytest.raises(InvalidAssignment):
        catalog.add_assignment(rule.id, weekday, period, group_id, member_index)
    assert rule.slots == {}


def test_remove_assignment_out_of_range() -> None:
    catalog = RuleCatalog()
    rule = catalog.add_rule("Week A")

    with pytest.raises(InvalidAssignment):
        catalog.remove_assignment(rule.id, 3, "afternoon", 0)


def test_catalog_round_trip() -> None:
    catalog = RuleCatalog()
    rule = catalog.add_rule("Week A")
    catalog.add_assignment(rule.id, 4, "afternoon", 2, 1)
    catalog.add_assignment(rule.id, 1, "morning", 1, 0)

    restored = RuleCatalog.from_list(catalog.to_list(), next_rule_id=catalog.next_rule_id)

    assert restored.to_list() == catalog.to_list()
    assert [a.weekday for a in restored.rule(rule.id).assignments] == [1, 4]
