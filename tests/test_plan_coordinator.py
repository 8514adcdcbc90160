from __future__ import annotations

import sys
import unittest
from pathlib import Path

APP_DIR = Path(__file__).resolve().parents[1] / "app"
if str(APP_DIR) not in sys.path:
    sys.path.insert(0, str(APP_DIR))

from timeline.errors import (  # noqa: E402
    CalendarExists,
    EmptyRuleList,
    InvalidCalendar,
    InvalidMonth,
    InvalidName,
    InvalidSkipFlags,
    OutOfOrderApply,
    OverwriteAttempt,
    PlanNotFound,
)
from timeline.plan import InMemoryPlanStore, PlanCoordinator  # noqa: E402

JAN_2026 = (2026, 0)  # rows start at abs-week 2922
FEB_2026 = (2026, 1)  # five rows from abs-week 2926, which January also shows


class PlanCoordinatorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.store = InMemoryPlanStore()
        self.planner = PlanCoordinator(self.store)
        self.plan_id = self.planner.create_plan("Ward 3")["id"]
        groups = self.planner.add_group(self.plan_id, "Kitchen")
        self.kitchen_id = groups[0]["id"]
        self.planner.add_member(self.plan_id, self.kitchen_id, "Alice")
        self.planner.add_member(self.plan_id, self.kitchen_id, "Bruno")
        rules = self.planner.add_rule(self.plan_id, "Week A")
        rules = self.planner.add_rule(self.plan_id, "Week B")
        self.rule_a, self.rule_b = (rule["id"] for rule in rules)
        self.planner.add_assignment(self.plan_id, self.rule_a, 0, "morning", self.kitchen_id, 0)
        self.planner.add_assignment(self.plan_id, self.rule_b, 0, "morning", self.kitchen_id, 1)

    def _statuses(self, year: int, month: int) -> list:
        return [row["status"] for row in self.planner.month_status(self.plan_id, year, month)]

    def test_create_plan_and_list(self) -> None:
        second = self.planner.create_plan("  Ward 4 ")

        self.assertEqual(second["name"], "Ward 4")
        self.assertEqual([p["name"] for p in self.planner.list_plans()], ["Ward 3", "Ward 4"])
        self.assertIsNone(second["timeline"])
        with self.assertRaises(InvalidName):
            self.planner.create_plan(" ")

    def test_rename_and_delete_plan(self) -> None:
        self.planner.rename_plan(self.plan_id, "Ward 3 North")
        self.assertEqual(self.planner.get_plan(self.plan_id)["name"], "Ward 3 North")

        self.planner.delete_plan(self.plan_id)
        with self.assertRaises(PlanNotFound):
            self.planner.get_plan(self.plan_id)
        self.assertEqual(self.store.history[-1]["action"], "PLAN_DELETE")

    def test_apply_month_auto_creates_timeline(self) -> None:
        committed = self.planner.apply_month(self.plan_id, *JAN_2026, [True, False, False, False, True])

        self.assertEqual([row["abs_week"] for row in committed], [2922, 2923, 2924, 2925, 2926])
        self.assertEqual(
            [row["status"] for row in committed], ["skipped", "active", "active", "active", "skipped"]
        )
        self.assertEqual([row.get("rule_id") for row in committed[1:4]], [self.rule_a, self.rule_b, self.rule_a])
        timeline = self.planner.get_plan(self.plan_id)["timeline"]
        self.assertEqual(timeline["base_abs_week"], 2922)
        self.assertEqual(self.store.history[-1]["action"], "MONTH_APPLY")

    def test_next_month_repeats_shared_row(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False, False, False, False, True])

        committed = self.planner.apply_month(self.plan_id, *FEB_2026, [True, False, False, False, False])

        self.assertEqual([row["abs_week"] for row in committed], [2927, 2928, 2929, 2930])
        self.assertEqual(committed[0]["status"], "active")
        self.assertEqual(committed[0]["rotation_offset"], 4)
        self.assertEqual(self._statuses(*FEB_2026), ["skipped"] + ["active"] * 4)

    def test_fixed_rows_must_repeat_their_state(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)

        with self.assertRaises(OverwriteAttempt) as ctx:
            self.planner.apply_month(self.plan_id, *FEB_2026, [True, False, False, False, False])
        self.assertEqual(ctx.exception.abs_week, 2926)
        self.assertEqual(len(self.planner.get_plan(self.plan_id)["timeline"]["records"]), 5)

    def test_reapplying_a_fixed_month_is_a_no_op(self) -> None:
        flags = [True, False, False, True, False]
        self.planner.apply_month(self.plan_id, *JAN_2026, flags)
        before = len(self.store.history)

        self.assertEqual(self.planner.apply_month(self.plan_id, *JAN_2026, flags), [])
        self.assertEqual(len(self.store.history), before)

    def test_skip_flags_must_match_rows(self) -> None:
        with self.assertRaises(InvalidSkipFlags):
            self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 4)
        self.assertIsNone(self.planner.get_plan(self.plan_id)["timeline"])

    def test_skip_flags_must_be_booleans(self) -> None:
        with self.assertRaises(InvalidSkipFlags):
            self.planner.apply_month(self.plan_id, *JAN_2026, ["false"] * 5)
        with self.assertRaises(InvalidSkipFlags):
            self.planner.apply_month(self.plan_id, *JAN_2026, [0, 1, 0, 0, 0])
        self.assertIsNone(self.planner.get_plan(self.plan_id)["timeline"])
        self.assertNotIn("MONTH_APPLY", [entry["action"] for entry in self.store.history])

    def test_months_apply_in_order(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)

        with self.assertRaises(OutOfOrderApply) as ctx:
            self.planner.apply_month(self.plan_id, 2026, 2, [False] * 6)
        self.assertEqual(ctx.exception.expected, 2927)

    def test_rows_before_base_are_ignored(self) -> None:
        self.planner.create_calendar(self.plan_id, 2924, initial_rotation_offset=1)

        committed = self.planner.apply_month(self.plan_id, *JAN_2026, [True, True, False, False, False])

        self.assertEqual([row["abs_week"] for row in committed], [2924, 2925, 2926])
        self.assertEqual(committed[0]["rule_id"], self.rule_b)
        status = self.planner.month_status(self.plan_id, *JAN_2026)
        self.assertEqual([row["eligible"] for row in status], [False] * 5)
        self.assertEqual([row["status"] for row in status], ["pending", "pending", "active", "active", "active"])

    def test_created_calendar_survives_first_apply(self) -> None:
        created = self.planner.create_calendar(self.plan_id, 2924, initial_rotation_offset=1)
        self.assertEqual(created["records"], [])

        committed = self.planner.apply_month(self.plan_id, *JAN_2026, [True, True, False, False, False])

        timeline = self.planner.get_plan(self.plan_id)["timeline"]
        self.assertEqual(timeline["base_abs_week"], 2924)
        self.assertEqual(timeline["initial_rotation_offset"], 1)
        rules = [self.rule_a, self.rule_b]
        self.assertEqual([row["rotation_offset"] for row in committed], [1, 2, 3])
        self.assertEqual([row["rule_id"] for row in committed], [rules[1 % 2], rules[2 % 2], rules[3 % 2]])

    def test_month_before_calendar_start_is_refused(self) -> None:
        self.planner.create_calendar(self.plan_id, 2935)

        with self.assertRaises(OutOfOrderApply) as ctx:
            self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)
        self.assertEqual(ctx.exception.expected, 2935)
        self.assertEqual(ctx.exception.got, 2922)
        self.assertEqual(self.planner.get_plan(self.plan_id)["timeline"]["records"], [])

    def test_create_calendar_rejects_bad_offsets(self) -> None:
        with self.assertRaises(InvalidCalendar):
            self.planner.create_calendar(self.plan_id, 2922, initial_rotation_offset=-1)
        with self.assertRaises(InvalidCalendar):
            self.planner.create_calendar(self.plan_id, 2922, initial_rotation_offset="1")
        with self.assertRaises(ValueError):
            self.planner.create_calendar(self.plan_id, "2922")
        self.assertIsNone(self.planner.get_plan(self.plan_id)["timeline"])
        self.assertNotIn("CALENDAR_CREATE", [entry["action"] for entry in self.store.history])

    def test_month_outside_calendar_year_is_rejected(self) -> None:
        with self.assertRaises(InvalidMonth):
            self.planner.month_status(self.plan_id, 2026, 12)
        with self.assertRaises(InvalidMonth):
            self.planner.apply_month(self.plan_id, 2026, -1, [False] * 5)

    def test_create_calendar_refuses_fixed_timeline(self) -> None:
        self.planner.create_calendar(self.plan_id, 2922)
        self.planner.create_calendar(self.plan_id, 2930)
        self.planner.apply_month(self.plan_id, *FEB_2026, [True] * 5)

        with self.assertRaises(CalendarExists):
            self.planner.create_calendar(self.plan_id, 2940)

    def test_activation_without_rules_fails_atomically(self) -> None:
        empty_id = self.planner.create_plan("Empty")["id"]

        with self.assertRaises(EmptyRuleList):
            self.planner.apply_month(empty_id, *JAN_2026, [True, False, True, True, True])
        self.assertIsNone(self.planner.get_plan(empty_id)["timeline"])

        committed = self.planner.apply_month(empty_id, *JAN_2026, [True] * 5)
        self.assertEqual(len(committed), 5)

    def test_reset_from_month_unfixes_suffix(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)
        self.planner.apply_month(self.plan_id, *FEB_2026, [False] * 5)

        removed = self.planner.reset_from_month(self.plan_id, *FEB_2026)

        self.assertEqual(removed, 5)
        self.assertEqual(self._statuses(*FEB_2026), ["pending"] * 5)
        self.assertEqual(self._statuses(*JAN_2026), ["active"] * 4 + ["pending"])

        committed = self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 4 + [True])
        self.assertEqual(committed, [{"status": "skipped", "abs_week": 2926}])
        committed = self.planner.apply_month(self.plan_id, *FEB_2026, [True, False, False, False, False])
        self.assertEqual(committed[0]["rotation_offset"], 4)

    def test_reset_without_timeline_removes_nothing(self) -> None:
        self.assertEqual(self.planner.reset_from_month(self.plan_id, *JAN_2026), 0)

    def test_deleted_rule_keeps_fixed_weeks(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)
        self.planner.remove_rule(self.plan_id, self.rule_a)

        derived = self.planner.derive_month(self.plan_id, *JAN_2026)

        self.assertTrue(derived["weeks"][0]["rule_missing"])
        self.assertEqual(derived["weeks"][1]["days"][0]["morning"], ["Bruno"])
        committed = self.planner.apply_month(self.plan_id, *FEB_2026, [False] * 5)
        self.assertEqual({row["rule_id"] for row in committed}, {self.rule_b})

    def test_import_plan_gets_new_id(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)
        plan = self.store.load(self.plan_id)

        imported = self.planner.import_plan(plan)

        self.assertNotEqual(imported["id"], self.plan_id)
        self.assertEqual(imported["timeline"], self.planner.get_plan(self.plan_id)["timeline"])
        self.assertEqual(imported["rules"], self.planner.get_plan(self.plan_id)["rules"])

    def test_move_member_changes_resolved_name(self) -> None:
        self.planner.apply_month(self.plan_id, *JAN_2026, [False] * 5)
        alice_id = self.planner.get_plan(self.plan_id)["groups"][0]["members"][0]["id"]

        self.planner.move_member(self.plan_id, alice_id, 1)

        derived = self.planner.derive_month(self.plan_id, *JAN_2026)
        self.assertEqual(derived["weeks"][0]["days"][0]["morning"], ["Bruno"])
        self.assertEqual(derived["weeks"][1]["days"][0]["morning"], ["Alice"])


if __name__ == "__main__":
    unittest.main()
