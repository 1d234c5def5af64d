"""Sanitization of stored and user-supplied state.

Everything read from storage or received from a caller passes through
here before it reaches the session or the stats engine. Nothing in this
module raises on bad input: invalid values collapse to safe defaults.
"""

import logging
import re
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Optional, Union

from mcp_forge.dates import iso_date, local_now, parse_iso_date, parse_timestamp
from mcp_forge.models import (
    CURRENT_STATE_VERSION,
    HABIT_CATEGORIES,
    HABIT_DURATION_OPTIONS,
    HABIT_ICON_KEYS,
    HABIT_POINT_OPTIONS,
    HABIT_STREAK_MULTIPLIERS,
    Category,
    DailyLog,
    DailyRecord,
    Habit,
    HabitDraft,
    HabitLogEntry,
    IconKey,
    StoredState,
    TimeWindow,
)

logger = logging.getLogger(__name__)

DEFAULT_HABIT_NAME = "New Habit"

_TIME_OF_DAY = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")

# Keys written by the browser version of the dashboard.
_CAMEL_KEYS = {
    "icon_key": "iconKey",
    "duration_minutes": "durationMinutes",
    "streak_multiplier": "streakMultiplier",
    "target_window": "targetWindow",
    "created_at": "createdAt",
    "updated_at": "updatedAt",
    "habit_id": "habitId",
    "completed_at": "completedAt",
    "completed_habit_ids": "completedHabitIds",
}

SEED_HABITS = [
    {
        "id": "work",
        "name": "Deep Work",
        "category": Category.learning,
        "points": 50,
        "icon_key": IconKey.torch,
        "duration_minutes": 60,
        "tags": ["focus", "discipline"],
    },
    {
        "id": "meditate",
        "name": "Meditation",
        "category": Category.sadhana,
        "points": 25,
        "icon_key": IconKey.lotus,
        "duration_minutes": 15,
        "tags": ["mindfulness"],
    },
    {
        "id": "workout",
        "name": "Workout",
        "category": Category.workout_supplements,
        "points": 50,
        "icon_key": IconKey.dumbbell,
        "duration_minutes": 45,
        "streak_multiplier": 2,
        "tags": ["strength"],
    },
    {
        "id": "read",
        "name": "Reading",
        "category": Category.learning,
        "points": 25,
        "icon_key": IconKey.book,
        "duration_minutes": 30,
        "tags": ["learning"],
    },
]

# Days before today -> habit ids completed that day.
SEED_HISTORY = {
    2: ["work", "read"],
    1: ["work", "workout", "meditate"],
}


def read_field(raw: dict, name: str, default: Any = None) -> Any:
    """Read `name` from a raw mapping, falling back to its camelCase spelling."""
    if name in raw:
        return raw[name]
    camel = _CAMEL_KEYS.get(name)
    if camel and camel in raw:
        return raw[camel]
    return default


def clamp_to_preset(value: Any, allowed: Iterable, default: Any = None) -> Any:
    """Return `value` if it belongs to `allowed`, otherwise `default`.

    Numeric strings ("50") and integral floats (50.0) are matched against
    numeric presets. Booleans never count as numbers.
    """
    allowed = tuple(allowed)
    if isinstance(value, bool) or value is None:
        return default
    if isinstance(value, int):
        return value if value in allowed else default
    if isinstance(value, float):
        if value.is_integer() and int(value) in allowed:
            return int(value)
        return default
    if isinstance(value, str):
        candidate = value.strip()
        if candidate in allowed:
            return candidate
        try:
            numeric = int(candidate)
        except ValueError:
            return default
        return numeric if numeric in allowed else default
    return default


def new_habit_id() -> str:
    return f"habit-{uuid.uuid4().hex[:12]}"


def ensure_timestamp(value: Any, now: datetime) -> datetime:
    parsed = parse_timestamp(value)
    return parsed if parsed is not None else now


def _ensure_text(value: Any) -> Optional[str]:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def ensure_category(value: Any) -> str:
    return _ensure_text(value) or HABIT_CATEGORIES[0]


def ensure_tags(tags: Any) -> list[str]:
    if not isinstance(tags, (list, tuple)):
        return []
    cleaned: list[str] = []
    for tag in tags:
        if not isinstance(tag, str) or not tag.strip():
            continue
        tag = tag.strip()
        if tag not in cleaned:
            cleaned.append(tag)
    return cleaned


def ensure_target_window(value: Any) -> Optional[TimeWindow]:
    if isinstance(value, TimeWindow):
        value = value.model_dump()
    if not isinstance(value, dict):
        return None
    start, end = value.get("start"), value.get("end")
    if not (isinstance(start, str) and isinstance(end, str)):
        return None
    if not (_TIME_OF_DAY.match(start) and _TIME_OF_DAY.match(end)):
        return None
    return TimeWindow(start=start, end=end)


def normalize_habit(raw: Union[Habit, dict], now: Optional[datetime] = None) -> Habit:
    """Build a Habit whose preset-constrained fields are all valid."""
    now = now or local_now()
    if isinstance(raw, Habit):
        raw = raw.model_dump()
    active = read_field(raw, "active")
    return Habit(
        id=_ensure_text(read_field(raw, "id")) or new_habit_id(),
        name=_ensure_text(read_field(raw, "name")) or DEFAULT_HABIT_NAME,
        category=ensure_category(read_field(raw, "category")),
        points=clamp_to_preset(read_field(raw, "points"), HABIT_POINT_OPTIONS, HABIT_POINT_OPTIONS[0]),
        icon_key=clamp_to_preset(read_field(raw, "icon_key"), HABIT_ICON_KEYS),
        duration_minutes=clamp_to_preset(read_field(raw, "duration_minutes"), HABIT_DURATION_OPTIONS),
        streak_multiplier=clamp_to_preset(
            read_field(raw, "streak_multiplier"), HABIT_STREAK_MULTIPLIERS, HABIT_STREAK_MULTIPLIERS[0]
        ),
        target_window=ensure_target_window(read_field(raw, "target_window")),
        description=_ensure_text(read_field(raw, "description")),
        tags=ensure_tags(read_field(raw, "tags")),
        active=active if isinstance(active, bool) else True,
        created_at=ensure_timestamp(read_field(raw, "created_at"), now),
        updated_at=ensure_timestamp(read_field(raw, "updated_at"), now),
    )


def _normalize_entry(raw: Any, now: datetime) -> Optional[HabitLogEntry]:
    if isinstance(raw, HabitLogEntry):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return None
    habit_id = read_field(raw, "habit_id")
    if isinstance(habit_id, int) and not isinstance(habit_id, bool):
        habit_id = str(habit_id)
    habit_id = _ensure_text(habit_id)
    if habit_id is None:
        return None
    note = read_field(raw, "note")
    value = read_field(raw, "value")
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        value = None
    return HabitLogEntry(
        habit_id=habit_id,
        completed_at=ensure_timestamp(read_field(raw, "completed_at"), now),
        note=note if isinstance(note, str) and note else None,
        value=value,
    )


def normalize_record(day: str, raw: Any, now: datetime) -> Optional[DailyRecord]:
    """Normalize one history record; returns None for records not worth keeping."""
    if isinstance(raw, DailyRecord):
        raw = raw.model_dump()
    if parse_iso_date(day) is None or not isinstance(raw, dict):
        logger.debug("Dropping history record with key %r", day)
        return None

    entries_raw = raw.get("entries")
    entries: dict[str, HabitLogEntry] = {}
    for item in entries_raw if isinstance(entries_raw, list) else []:
        entry = _normalize_entry(item, now)
        if entry is not None:
            # later duplicates replace earlier ones in place
            entries[entry.habit_id] = entry

    record = DailyRecord(
        date=day,
        entries=list(entries.values()),
        reflections=_ensure_text(raw.get("reflections")),
    )
    return None if record.is_empty() else record


def sanitize_state(raw: Any, now: Optional[datetime] = None) -> StoredState:
    """Return a StoredState satisfying every habit and history invariant.

    Non-mapping input yields the default state.
    """
    now = now or local_now()
    if isinstance(raw, StoredState):
        raw = raw.model_dump()
    if not isinstance(raw, dict):
        return build_default_state(now)

    habits_raw = raw.get("habits")
    habits: list[Habit] = []
    seen: set[str] = set()
    for item in habits_raw if isinstance(habits_raw, list) else []:
        if not isinstance(item, (dict, Habit)):
            continue
        habit = normalize_habit(item, now)
        if habit.id in seen:
            logger.debug("Dropping duplicate habit id %s", habit.id)
            continue
        seen.add(habit.id)
        habits.append(habit)

    history_raw = raw.get("history")
    history: dict[str, DailyRecord] = {}
    for day, record_raw in (history_raw.items() if isinstance(history_raw, dict) else []):
        record = normalize_record(day, record_raw, now)
        if record is not None:
            history[day] = record

    return StoredState(version=CURRENT_STATE_VERSION, habits=habits, history=history)


def _midday(day: str) -> datetime:
    d = parse_iso_date(day)
    return datetime(d.year, d.month, d.day, 12, 0, 0, tzinfo=timezone.utc)


def _record_from_ids(day: str, habit_ids: Iterable) -> Optional[DailyRecord]:
    raw_entries = [{"habit_id": habit_id, "completed_at": _midday(day)} for habit_id in habit_ids]
    return normalize_record(day, {"entries": raw_entries}, _midday(day))


def seed_habits(now: datetime) -> list[Habit]:
    return [normalize_habit({**habit, "created_at": now, "updated_at": now}, now) for habit in SEED_HABITS]


def build_default_state(now: Optional[datetime] = None) -> StoredState:
    """Seed catalog plus two days of history ending yesterday."""
    now = now or local_now()
    history: dict[str, DailyRecord] = {}
    for days_ago, habit_ids in sorted(SEED_HISTORY.items(), reverse=True):
        day = iso_date(now.date() - timedelta(days=days_ago))
        record = _record_from_ids(day, habit_ids)
        if record is not None:
            history[day] = record
    return StoredState(version=CURRENT_STATE_VERSION, habits=seed_habits(now), history=history)


def migrate_legacy_logs(logs: Any, now: Optional[datetime] = None) -> StoredState:
    """Upgrade the flat `[{date, completedHabitIds}]` log format.

    The legacy format never stored a habit catalog, so the seed catalog is
    used. Each completion gets a synthetic midday UTC timestamp.
    """
    now = now or local_now()
    history: dict[str, DailyRecord] = {}
    for log in logs if isinstance(logs, list) else []:
        if not isinstance(log, dict):
            continue
        day = log.get("date")
        habit_ids = read_field(log, "completed_habit_ids")
        if parse_iso_date(day) is None or not isinstance(habit_ids, list):
            continue
        record = _record_from_ids(day, habit_ids)
        if record is not None:
            history[day] = record
    state = StoredState(version=CURRENT_STATE_VERSION, habits=seed_habits(now), history=history)
    return sanitize_state(state, now)


def habit_from_draft(draft: Union[HabitDraft, dict], now: Optional[datetime] = None) -> Habit:
    """Admit a new habit from an unvalidated draft."""
    now = now or local_now()
    if isinstance(draft, HabitDraft):
        draft = draft.model_dump()
    raw = {**draft, "id": new_habit_id(), "active": True, "created_at": now, "updated_at": now}
    return normalize_habit(raw, now)


def apply_habit_updates(habit: Habit, updates: Union[HabitDraft, dict], now: Optional[datetime] = None) -> Habit:
    """Merge the non-None fields of `updates` into `habit` and re-validate."""
    now = now or local_now()
    if isinstance(updates, HabitDraft):
        updates = updates.model_dump(exclude_none=True)
    merged = habit.model_dump()
    for key, value in updates.items():
        if value is None or key in ("id", "created_at", "updated_at"):
            continue
        merged[key] = value
    merged["updated_at"] = now
    return normalize_habit(merged, now)


def history_to_daily_logs(history: dict[str, DailyRecord]) -> list[DailyLog]:
    """Legacy flat projection of the history, oldest day first."""
    return sorted(
        (
            DailyLog(date=record.date, completed_habit_ids=[e.habit_id for e in record.entries])
            for record in history.values()
        ),
        key=lambda log: log.date,
    )
