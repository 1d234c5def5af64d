"""In-memory session over the stored state.

The session owns the authoritative StoredState for the life of the
process. Every mutation writes a full snapshot back to storage; a failed
write leaves the in-memory state untouched.
"""

import logging
from datetime import date, datetime
from typing import Callable, Optional, Union

from mcp_forge import stats as engine
from mcp_forge.dates import iso_date, local_now, parse_iso_date
from mcp_forge.models import DailyLog, DailyRecord, Habit, HabitDraft, HabitLogEntry, Stats, StoredState
from mcp_forge.normalize import apply_habit_updates, habit_from_draft, history_to_daily_logs
from mcp_forge.storage import SlotStore, load_state, save_state

logger = logging.getLogger(__name__)


class ForgeSession:
    def __init__(
        self,
        store: SlotStore,
        state: Optional[StoredState] = None,
        clock: Callable[[], datetime] = local_now,
    ):
        self.store = store
        self.clock = clock
        self.state = state if state is not None else load_state(store, clock())

    # --- Helpers ---

    def today(self) -> date:
        return self.clock().date()

    def _resolve_date(self, day: Optional[str]) -> Optional[str]:
        if day is None:
            return iso_date(self.today())
        return day if parse_iso_date(day) else None

    def _find_habit(self, habit_id: str) -> Optional[int]:
        for index, habit in enumerate(self.state.habits):
            if habit.id == habit_id:
                return index
        return None

    def save(self) -> bool:
        return save_state(self.store, self.state)

    # --- Habit catalog ---

    def active_habits(self) -> list[Habit]:
        return [habit for habit in self.state.habits if habit.active]

    def get_habit(self, habit_id: str) -> Optional[Habit]:
        index = self._find_habit(habit_id)
        return self.state.habits[index] if index is not None else None

    def add_habit(self, draft: Union[HabitDraft, dict]) -> Habit:
        habit = habit_from_draft(draft, self.clock())
        self.state.habits.append(habit)
        logger.info("Added habit %s (%s)", habit.id, habit.name)
        self.save()
        return habit

    def update_habit(self, habit_id: str, updates: Union[HabitDraft, dict]) -> Optional[Habit]:
        index = self._find_habit(habit_id)
        if index is None:
            return None
        habit = apply_habit_updates(self.state.habits[index], updates, self.clock())
        self.state.habits[index] = habit
        self.save()
        return habit

    def delete_habit(self, habit_id: str) -> Optional[Habit]:
        """Soft delete: the habit leaves the working set, its history stays."""
        return self.update_habit(habit_id, {"active": False})

    # --- History ---

    def get_record(self, day: str) -> Optional[DailyRecord]:
        return self.state.history.get(day)

    def daily_logs(self) -> list[DailyLog]:
        return history_to_daily_logs(self.state.history)

    def _store_record(self, record: DailyRecord) -> None:
        if record.is_empty():
            self.state.history.pop(record.date, None)
        else:
            self.state.history[record.date] = record

    def toggle_habit(self, habit_id: str, day: Optional[str] = None, note: Optional[str] = None) -> Optional[bool]:
        """Flip completion of `habit_id` on `day` (default today).

        Returns the new completion state, or None for an invalid date.
        """
        day = self._resolve_date(day)
        if day is None:
            return None

        record = self.state.history.get(day)
        entries = list(record.entries) if record else []
        reflections = record.reflections if record else None

        remaining = [entry for entry in entries if entry.habit_id != habit_id]
        completed = len(remaining) == len(entries)
        if completed:
            remaining.append(HabitLogEntry(habit_id=habit_id, completed_at=self.clock(), note=note or None))

        self._store_record(DailyRecord(date=day, entries=remaining, reflections=reflections))
        self.save()
        return completed

    def set_reflection(self, day: Optional[str], text: Optional[str]) -> Optional[DailyRecord]:
        day = self._resolve_date(day)
        if day is None:
            return None
        record = self.state.history.get(day) or DailyRecord(date=day)
        text = text.strip() if isinstance(text, str) else None
        updated = DailyRecord(date=day, entries=list(record.entries), reflections=text or None)
        self._store_record(updated)
        self.save()
        return self.state.history.get(day)

    # --- Derived views ---

    def stats(self) -> Stats:
        return engine.compute_stats(self.active_habits(), self.daily_logs(), self.today())

    def analytics(self) -> dict:
        logs = self.daily_logs()
        today = self.today()
        return {
            "total_completions": engine.total_completions(logs),
            "best_day": engine.best_day(self.state.history),
            "habit_breakdown": engine.habit_breakdown(logs, self.state.habits),
            "category_performance": engine.category_performance(self.active_habits(), logs),
            "heatmap": engine.completion_heatmap(logs, today),
            "streaks": engine.streak_timeline(logs, today),
        }
