"""
Normalization tests.

Covers:
- preset clamping for points, durations, multipliers and icons
- habit sanitization (names, tags, timestamps, camelCase keys)
- history sanitization (bad dates, duplicate entries, empty records)
- legacy log migration and draft admission
"""

import json
import unittest
from datetime import datetime, timedelta, timezone

from mcp_forge.models import (
    HABIT_DURATION_OPTIONS,
    HABIT_POINT_OPTIONS,
    HABIT_STREAK_MULTIPLIERS,
    Habit,
    HabitDraft,
)
from mcp_forge.normalize import (
    DEFAULT_HABIT_NAME,
    apply_habit_updates,
    build_default_state,
    clamp_to_preset,
    habit_from_draft,
    history_to_daily_logs,
    migrate_legacy_logs,
    normalize_habit,
    sanitize_state,
)
from mcp_forge.storage import dump_state

NOW = datetime(2024, 3, 10, 9, 30, tzinfo=timezone.utc)


class TestClampToPreset(unittest.TestCase):

    def test_valid_value_passes(self):
        self.assertEqual(clamp_to_preset(50, HABIT_POINT_OPTIONS, 25), 50)

    def test_numeric_string_is_parsed(self):
        self.assertEqual(clamp_to_preset(" 75 ", HABIT_POINT_OPTIONS, 25), 75)

    def test_integral_float_is_accepted(self):
        self.assertEqual(clamp_to_preset(30.0, HABIT_DURATION_OPTIONS), 30)

    def test_out_of_set_falls_back(self):
        self.assertEqual(clamp_to_preset(40, HABIT_POINT_OPTIONS, 25), 25)
        self.assertIsNone(clamp_to_preset(20, HABIT_DURATION_OPTIONS))
        self.assertIsNone(clamp_to_preset("abc", HABIT_DURATION_OPTIONS))

    def test_booleans_are_not_numbers(self):
        self.assertEqual(clamp_to_preset(True, HABIT_STREAK_MULTIPLIERS, 2), 2)
        self.assertIsNone(clamp_to_preset(False, (0, 1)))

    def test_string_presets(self):
        self.assertEqual(clamp_to_preset("moon", ("sunrise", "moon")), "moon")
        self.assertIsNone(clamp_to_preset("rocket", ("sunrise", "moon")))


class TestNormalizeHabit(unittest.TestCase):

    def test_invalid_presets_collapse(self):
        habit = normalize_habit(
            {
                "id": "h1",
                "name": "Run",
                "points": 999,
                "duration_minutes": 7,
                "streak_multiplier": 9,
                "icon_key": "rocket",
            },
            NOW,
        )
        self.assertEqual(habit.points, HABIT_POINT_OPTIONS[0])
        self.assertIsNone(habit.duration_minutes)
        self.assertEqual(habit.streak_multiplier, HABIT_STREAK_MULTIPLIERS[0])
        self.assertIsNone(habit.icon_key)

    def test_missing_fields_get_defaults(self):
        habit = normalize_habit({"name": "   "}, NOW)
        self.assertTrue(habit.id.startswith("habit-"))
        self.assertEqual(habit.name, DEFAULT_HABIT_NAME)
        self.assertEqual(habit.category, "sadhana")
        self.assertTrue(habit.active)
        self.assertEqual(habit.created_at, NOW)
        self.assertEqual(habit.updated_at, NOW)
        self.assertEqual(habit.tags, [])

    def test_custom_category_is_kept(self):
        habit = normalize_habit({"id": "h", "name": "Garden", "category": " gardening "}, NOW)
        self.assertEqual(habit.category, "gardening")

    def test_tags_are_trimmed_and_deduplicated(self):
        habit = normalize_habit({"id": "h", "name": "x", "tags": [" focus ", "", "   ", "focus", 3, "sleep"]}, NOW)
        self.assertEqual(habit.tags, ["focus", "sleep"])

    def test_invalid_timestamp_replaced(self):
        habit = normalize_habit(
            {"id": "h", "name": "x", "created_at": "yesterday", "updated_at": "2024-01-01T10:00:00Z"},
            NOW,
        )
        self.assertEqual(habit.created_at, NOW)
        self.assertEqual(habit.updated_at, datetime(2024, 1, 1, 10, tzinfo=timezone.utc))

    def test_inactive_is_preserved(self):
        habit = normalize_habit({"id": "h", "name": "x", "active": False}, NOW)
        self.assertFalse(habit.active)

    def test_camel_case_keys(self):
        habit = normalize_habit(
            {
                "id": "h",
                "name": "Stretch",
                "iconKey": "lotus",
                "durationMinutes": "15",
                "streakMultiplier": 3,
                "targetWindow": {"start": "06:00", "end": "07:30"},
                "createdAt": "2024-02-01T08:00:00+00:00",
            },
            NOW,
        )
        self.assertEqual(habit.icon_key, "lotus")
        self.assertEqual(habit.duration_minutes, 15)
        self.assertEqual(habit.streak_multiplier, 3)
        self.assertEqual(habit.target_window.start, "06:00")
        self.assertEqual(habit.created_at.month, 2)

    def test_malformed_target_window_dropped(self):
        habit = normalize_habit({"id": "h", "name": "x", "target_window": {"start": "25:00", "end": "26:00"}}, NOW)
        self.assertIsNone(habit.target_window)


class TestSanitizeState(unittest.TestCase):

    def test_non_mapping_gives_default_state(self):
        state = sanitize_state("garbage", NOW)
        self.assertEqual(state.version, 1)
        self.assertEqual(len(state.habits), 4)
        self.assertEqual(sorted(state.history), ["2024-03-08", "2024-03-09"])

    def test_default_seed_days(self):
        state = build_default_state(NOW)
        yesterday = state.history["2024-03-09"]
        self.assertEqual([e.habit_id for e in yesterday.entries], ["work", "workout", "meditate"])
        self.assertEqual(yesterday.entries[0].completed_at, datetime(2024, 3, 9, 12, tzinfo=timezone.utc))

    def test_every_habit_satisfies_presets(self):
        raw = {
            "habits": [
                {"id": "a", "name": "A", "points": "13", "streak_multiplier": 0, "duration_minutes": 31},
                {"id": "b", "name": "B", "points": 100, "streak_multiplier": "2", "duration_minutes": 60},
                "not-a-habit",
            ],
            "history": {},
        }
        state = sanitize_state(raw, NOW)
        self.assertEqual(len(state.habits), 2)
        for habit in state.habits:
            self.assertIn(habit.points, HABIT_POINT_OPTIONS)
            self.assertIn(habit.streak_multiplier, HABIT_STREAK_MULTIPLIERS)
            self.assertIn(habit.duration_minutes, HABIT_DURATION_OPTIONS + (None,))

    def test_duplicate_habit_ids_first_wins(self):
        raw = {"habits": [{"id": "a", "name": "First"}, {"id": "a", "name": "Second"}]}
        state = sanitize_state(raw, NOW)
        self.assertEqual([h.name for h in state.habits], ["First"])

    def test_history_cleanup(self):
        raw = {
            "habits": [],
            "history": {
                "2024-03-01": {
                    "entries": [
                        {"habit_id": "a", "completed_at": "2024-03-01T07:00:00+00:00"},
                        {"habit_id": "b", "completed_at": "bad"},
                        {"habit_id": "a", "completed_at": "2024-03-01T20:00:00+00:00", "note": "again"},
                        {"note": "no id"},
                    ]
                },
                "2024-03-02": {"entries": []},
                "2024-03-03": {"entries": [], "reflections": "rest day"},
                "not-a-date": {"entries": [{"habit_id": "a"}]},
                "2024-03-04": "junk",
            },
        }
        state = sanitize_state(raw, NOW)
        self.assertEqual(sorted(state.history), ["2024-03-01", "2024-03-03"])
        entries = state.history["2024-03-01"].entries
        self.assertEqual([e.habit_id for e in entries], ["a", "b"])
        self.assertEqual(entries[0].note, "again")
        self.assertEqual(entries[1].completed_at, NOW)
        self.assertEqual(state.history["2024-03-03"].reflections, "rest day")

    def test_sanitize_is_a_fixed_point(self):
        raw = {
            "version": 1,
            "habits": [
                {"id": "a", "name": " Read ", "points": "50", "tags": [" x ", "x"], "iconKey": "book"},
                {"name": "No id", "createdAt": "nope"},
            ],
            "history": {
                "2024-03-01": {
                    "entries": [
                        {"habitId": "a", "completedAt": "2024-03-01T07:00:00.123456+02:00", "value": 3.5},
                    ],
                    "reflections": "  good  ",
                }
            },
        }
        once = sanitize_state(raw, NOW)
        twice = sanitize_state(json.loads(dump_state(once)), NOW)
        self.assertEqual(once.model_dump(), twice.model_dump())


class TestLegacyMigration(unittest.TestCase):

    def test_flat_logs_become_records(self):
        state = migrate_legacy_logs([{"date": "2024-01-01", "completedHabitIds": ["a"]}], NOW)
        record = state.history["2024-01-01"]
        self.assertEqual(len(record.entries), 1)
        self.assertEqual(record.entries[0].habit_id, "a")
        self.assertEqual(record.entries[0].completed_at, datetime(2024, 1, 1, 12, tzinfo=timezone.utc))
        self.assertEqual([h.id for h in state.habits], ["work", "meditate", "workout", "read"])

    def test_bad_legacy_items_skipped(self):
        logs = [
            {"date": "2024-01-01", "completedHabitIds": []},
            {"date": "01/02/2024", "completedHabitIds": ["a"]},
            {"date": "2024-01-03"},
            "junk",
            {"date": "2024-01-04", "completedHabitIds": ["a", "a", "b"]},
        ]
        state = migrate_legacy_logs(logs, NOW)
        self.assertEqual(list(state.history), ["2024-01-04"])
        self.assertEqual([e.habit_id for e in state.history["2024-01-04"].entries], ["a", "b"])


class TestDrafts(unittest.TestCase):

    def test_habit_from_draft_clamps(self):
        draft = HabitDraft(name="  Journal ", category="reflection", points=60, streak_multiplier="3", tags=["  "])
        habit = habit_from_draft(draft, NOW)
        self.assertEqual(habit.name, "Journal")
        self.assertEqual(habit.points, 25)
        self.assertEqual(habit.streak_multiplier, 3)
        self.assertEqual(habit.tags, [])
        self.assertTrue(habit.active)
        self.assertEqual(habit.created_at, NOW)

    def test_apply_updates_keeps_identity(self):
        habit = Habit(id="h", name="Old", points=50, created_at=NOW - timedelta(days=3), updated_at=NOW - timedelta(days=3))
        updated = apply_habit_updates(habit, {"name": "New", "points": 7, "id": "other"}, NOW)
        self.assertEqual(updated.id, "h")
        self.assertEqual(updated.name, "New")
        self.assertEqual(updated.points, 25)
        self.assertEqual(updated.created_at, NOW - timedelta(days=3))
        self.assertEqual(updated.updated_at, NOW)

    def test_apply_updates_ignores_none(self):
        habit = Habit(id="h", name="Keep", points=75)
        updated = apply_habit_updates(habit, HabitDraft(points=None, description="why"), NOW)
        self.assertEqual(updated.points, 75)
        self.assertEqual(updated.description, "why")


class TestDailyLogs(unittest.TestCase):

    def test_projection_sorted_by_date(self):
        state = sanitize_state(
            {
                "habits": [],
                "history": {
                    "2024-03-05": {"entries": [{"habit_id": "b"}]},
                    "2024-03-01": {"entries": [{"habit_id": "a"}, {"habit_id": "c"}]},
                },
            },
            NOW,
        )
        logs = history_to_daily_logs(state.history)
        self.assertEqual([log.date for log in logs], ["2024-03-01", "2024-03-05"])
        self.assertEqual(logs[0].completed_habit_ids, ["a", "c"])


if __name__ == "__main__":
    unittest.main()
