"""Stats engine: level, XP, streak and chart series derived from history.

All functions here are pure. "Today" is always passed in explicitly so
results depend only on their arguments.
"""

import math
from collections import Counter
from datetime import date, timedelta
from typing import Iterable, Optional

from mcp_forge.dates import are_consecutive, iso_date, month_day_label, weekday_name
from mcp_forge.models import (
    HABIT_CATEGORIES,
    MAX_STREAK_BONUS_DAYS,
    POINTS_PER_LEVEL,
    STREAK_BONUS_PER_DAY,
    ChartPoint,
    DailyLog,
    DailyRecord,
    Habit,
    Stats,
)

CHART_DAYS = 7
HEATMAP_DAYS = 90


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def _completion_dates(logs: Iterable[DailyLog]) -> list[str]:
    """Distinct dates with at least one completion, oldest first."""
    return sorted({log.date for log in logs if log.completed_habit_ids})


def current_streak(logs: Iterable[DailyLog], today: date) -> int:
    dates = _completion_dates(logs)
    if not dates:
        return 0
    dates.reverse()
    if dates[0] not in (iso_date(today), iso_date(today - timedelta(days=1))):
        return 0
    streak = 1
    for later, earlier in zip(dates, dates[1:]):
        if not are_consecutive(later, earlier):
            break
        streak += 1
    return streak


def streak_bonus_multiplier(streak: int) -> float:
    return 1 + min(streak, MAX_STREAK_BONUS_DAYS) * STREAK_BONUS_PER_DAY


def completion_points(habit: Optional[Habit]) -> int:
    """Points one completion is worth; unknown habits are worth nothing."""
    if habit is None:
        return 0
    return habit.points * (habit.streak_multiplier or 1)


def chart_series(logs: Iterable[DailyLog], today: date, days: int = CHART_DAYS) -> list[ChartPoint]:
    counts = {log.date: len(log.completed_habit_ids) for log in logs}
    series = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        series.append(
            ChartPoint(
                name=weekday_name(day),
                date=month_day_label(day),
                completed=counts.get(iso_date(day), 0),
            )
        )
    return series


def compute_stats(habits: Iterable[Habit], logs: Iterable[DailyLog], today: date) -> Stats:
    """Derive the dashboard stats from the working habit set and the daily logs.

    Args:
        habits: Active habits; completions of any other id score zero.
        logs: Flattened history, one entry per day.
        today: Local calendar day the streak and chart are anchored to.
    """
    lookup = {habit.id: habit for habit in habits}
    logs = list(logs)

    streak = current_streak(logs, today)

    total_points = sum(
        completion_points(lookup.get(habit_id)) for log in logs for habit_id in log.completed_habit_ids
    )

    today_str = iso_date(today)
    today_base_points = sum(
        completion_points(lookup.get(habit_id))
        for log in logs
        if log.date == today_str
        for habit_id in log.completed_habit_ids
    )
    bonus = streak_bonus_multiplier(streak)

    return Stats(
        level=total_points // POINTS_PER_LEVEL + 1,
        total_points=total_points,
        streak=streak,
        points_for_current_level=total_points % POINTS_PER_LEVEL,
        points_to_next_level=POINTS_PER_LEVEL,
        today_points=_round_half_up(today_base_points * bonus),
        streak_bonus_multiplier=bonus,
        chart_data=chart_series(logs, today),
    )


# --- Analytics ---


def total_completions(logs: Iterable[DailyLog]) -> int:
    return sum(len(log.completed_habit_ids) for log in logs)


def best_day(history: dict[str, DailyRecord]) -> Optional[dict]:
    """Day with the most completions; the earliest stored record wins ties."""
    best = None
    for record in history.values():
        count = len(record.entries)
        if best is None or count > best["completions"]:
            best = {"date": record.date, "completions": count}
    return best


def habit_breakdown(logs: Iterable[DailyLog], habits: Iterable[Habit]) -> list[dict]:
    names = {habit.id: habit.name for habit in habits}
    counts: Counter = Counter()
    for log in logs:
        counts.update(log.completed_habit_ids)
    rows = [
        {"habit_id": habit_id, "name": names.get(habit_id, habit_id), "count": count}
        for habit_id, count in counts.items()
    ]
    return sorted(rows, key=lambda row: row["count"], reverse=True)


def category_performance(habits: Iterable[Habit], logs: Iterable[DailyLog]) -> list[dict]:
    """Habit and completion counts for each known category that has habits."""
    habits = list(habits)
    lookup = {habit.id: habit for habit in habits}
    totals = {category: {"habits": 0, "completed": 0} for category in HABIT_CATEGORIES}

    for habit in habits:
        if habit.category in totals:
            totals[habit.category]["habits"] += 1

    for log in logs:
        for habit_id in log.completed_habit_ids:
            habit = lookup.get(habit_id)
            if habit and habit.category in totals:
                totals[habit.category]["completed"] += 1

    return [
        {"category": category, **counts}
        for category, counts in sorted(totals.items())
        if counts["habits"] > 0
    ]


def completion_heatmap(logs: Iterable[DailyLog], today: date, days: int = HEATMAP_DAYS) -> dict:
    counts = {log.date: len(log.completed_habit_ids) for log in logs}
    cells = []
    for offset in range(days - 1, -1, -1):
        day = today - timedelta(days=offset)
        cells.append({
            "date": iso_date(day),
            "count": counts.get(iso_date(day), 0),
            "day_of_week": (day.weekday() + 1) % 7,  # 0=Sun
            "week": offset // 7,
        })
    return {"days": cells, "max_count": max((c["count"] for c in cells), default=0)}


def streak_timeline(logs: Iterable[DailyLog], today: date) -> list[dict]:
    """Every run of consecutive completion days, oldest first."""
    dates = _completion_dates(logs)
    if not dates:
        return []

    runs = []
    start = dates[0]
    for earlier, later in zip(dates, dates[1:]):
        if not are_consecutive(later, earlier):
            runs.append((start, earlier))
            start = later
    runs.append((start, dates[-1]))

    recent = (iso_date(today), iso_date(today - timedelta(days=1)))
    timeline = []
    for i, (start_date, end_date) in enumerate(runs):
        length = (date.fromisoformat(end_date) - date.fromisoformat(start_date)).days + 1
        timeline.append({
            "start_date": start_date,
            "end_date": end_date,
            "length": length,
            "is_current": i == len(runs) - 1 and end_date in recent,
        })
    return timeline
