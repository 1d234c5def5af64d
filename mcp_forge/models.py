from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from sqlmodel import Field, SQLModel

CURRENT_STATE_VERSION = 1

POINTS_PER_LEVEL = 500
MAX_STREAK_BONUS_DAYS = 10
STREAK_BONUS_PER_DAY = 0.05


class Category(str, Enum):
    sadhana = "sadhana"
    wake_morning = "wake_morning"
    evening = "evening"
    bedtime = "bedtime"
    learning = "learning"
    reflection = "reflection"
    workout_supplements = "workout_supplements"


class IconKey(str, Enum):
    sunrise = "sunrise"
    lotus = "lotus"
    torch = "torch"
    moon = "moon"
    book = "book"
    dumbbell = "dumbbell"


HABIT_CATEGORIES = tuple(c.value for c in Category)
HABIT_ICON_KEYS = tuple(k.value for k in IconKey)
HABIT_POINT_OPTIONS = (25, 50, 75, 100)
HABIT_DURATION_OPTIONS = (15, 30, 45, 60)
HABIT_STREAK_MULTIPLIERS = (1, 2, 3)
HABIT_TAG_SUGGESTIONS = (
    "discipline",
    "focus",
    "mindfulness",
    "strength",
    "recovery",
    "gratitude",
    "planning",
    "learning",
    "nutrition",
    "sleep",
)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# --- Stored state ---


class TimeWindow(SQLModel):
    start: str  # HH:MM (24h)
    end: str


class Habit(SQLModel):
    id: str
    name: str
    category: str = Category.sadhana.value  # unknown categories are kept as-is
    points: int = HABIT_POINT_OPTIONS[0]
    icon_key: Optional[str] = None
    duration_minutes: Optional[int] = None
    streak_multiplier: int = HABIT_STREAK_MULTIPLIERS[0]
    target_window: Optional[TimeWindow] = None
    description: Optional[str] = None
    tags: list[str] = Field(default_factory=list)
    active: bool = True
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)


class HabitLogEntry(SQLModel):
    habit_id: str
    completed_at: datetime = Field(default_factory=utcnow)
    note: Optional[str] = None
    value: Optional[Union[int, float, str]] = None


class DailyRecord(SQLModel):
    date: str  # YYYY-MM-DD, local calendar day
    entries: list[HabitLogEntry] = Field(default_factory=list)
    reflections: Optional[str] = None

    def is_empty(self) -> bool:
        return not self.entries and not self.reflections


class StoredState(SQLModel):
    version: int = CURRENT_STATE_VERSION
    habits: list[Habit] = Field(default_factory=list)
    history: dict[str, DailyRecord] = Field(default_factory=dict)


class StorageSlot(SQLModel, table=True):
    key: str = Field(primary_key=True)
    value: str
    updated_at: datetime = Field(default_factory=utcnow)


# --- Inputs from callers ---


class HabitDraft(SQLModel):
    name: Optional[str] = None
    category: Optional[str] = None
    points: Optional[Union[int, str]] = None
    icon_key: Optional[str] = None
    duration_minutes: Optional[Union[int, str]] = None
    streak_multiplier: Optional[Union[int, str]] = None
    target_window: Optional[dict] = None
    description: Optional[str] = None
    tags: Optional[list[str]] = None


# --- Derived views ---


class DailyLog(SQLModel):
    date: str
    completed_habit_ids: list[str] = Field(default_factory=list)


class ChartPoint(SQLModel):
    name: str  # short weekday, e.g. "Mon"
    date: str  # month/day label, e.g. "Jan 5"
    completed: int = 0


class Stats(SQLModel):
    level: int = 1
    total_points: int = 0
    streak: int = 0
    points_for_current_level: int = 0
    points_to_next_level: int = POINTS_PER_LEVEL
    today_points: int = 0
    streak_bonus_multiplier: float = 1.0
    chart_data: list[ChartPoint] = Field(default_factory=list)
