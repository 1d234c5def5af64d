import logging
import os
import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from jose import JWTError, jwt
from mcp.server.fastmcp import FastMCP
from mcp.server.transport_security import TransportSecuritySettings
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
from starlette.types import ASGIApp, Receive, Scope, Send

from mcp_forge import config
from mcp_forge.dates import iso_date, parse_iso_date
from mcp_forge.models import (
    HABIT_CATEGORIES,
    HABIT_DURATION_OPTIONS,
    HABIT_ICON_KEYS,
    HABIT_POINT_OPTIONS,
    HABIT_STREAK_MULTIPLIERS,
    HABIT_TAG_SUGGESTIONS,
    MAX_STREAK_BONUS_DAYS,
    POINTS_PER_LEVEL,
    STREAK_BONUS_PER_DAY,
    DailyRecord,
    Habit,
    HabitDraft,
)
from mcp_forge.session import ForgeSession
from mcp_forge.storage import SlotStore

logging.basicConfig(level=config.LOG_LEVEL)
logger = logging.getLogger(__name__)

# --- Session setup ---

forge: Optional[ForgeSession] = None


def init_session(url: str = config.DATABASE_URL) -> ForgeSession:
    global forge
    forge = ForgeSession(SlotStore.from_url(url))
    logger.info("Loaded %d habits and %d history days", len(forge.state.habits), len(forge.state.history))
    return forge


def get_session() -> ForgeSession:
    if forge is None:
        return init_session()
    return forge


# --- MCP server ---

INSTRUCTIONS = """You are the keeper of a habit forge. Habits earn points when completed,
points add up to levels, and consecutive days of completions build a streak
that boosts today's points.

Use list_habits() to see today's rituals, toggle_habit() to mark one done
(or undo it), and get_stats() to report level, XP and streak."""

# DNS rebinding protection is disabled: the service sits behind a reverse proxy on a trusted network
_security = TransportSecuritySettings(allowed_hosts=["localhost"])
mcp = FastMCP(
    "mcp-forge",
    stateless_http=True,
    transport_security=_security,
    instructions=INSTRUCTIONS,
)


# --- Access gate (raw ASGI, safe for SSE streaming) ---

UNLOCK_PATH = "/unlock"


def _check_access_code(candidate: str) -> bool:
    access_code = os.environ.get(config.ACCESS_CODE_ENV, "")
    if not access_code:
        raise RuntimeError(f"{config.ACCESS_CODE_ENV} environment variable is not set")
    return secrets.compare_digest(candidate.encode(), access_code.encode())


def _issue_token() -> dict:
    now = datetime.now(timezone.utc)
    expires = now + timedelta(hours=config.JWT_EXPIRES_HOURS)
    payload = {
        "sub": "owner",
        "iat": int(now.timestamp()),
        "exp": int(expires.timestamp()),
        "scope": "forge",
    }
    return {
        "access_token": jwt.encode(payload, config.JWT_SECRET, algorithm=config.JWT_ALGORITHM),
        "token_type": "bearer",
        "expires_in": config.JWT_EXPIRES_HOURS * 3600,
    }


@mcp.custom_route(UNLOCK_PATH, methods=["POST"])
async def unlock(request: Request) -> Response:
    """Exchange the shared access code for a bearer token."""
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse({"error": "invalid JSON body"}, status_code=400)
    code = body.get("access_code") if isinstance(body, dict) else None
    if not isinstance(code, str) or not code:
        return JSONResponse({"error": "Enter the access code to continue."}, status_code=400)
    if not _check_access_code(code):
        logger.warning("Rejected unlock attempt")
        return JSONResponse({"error": "Invalid access code."}, status_code=401)
    return JSONResponse(_issue_token())


class AccessGateMiddleware:
    def __init__(self, app: ASGIApp, open_paths: tuple[str, ...] = (UNLOCK_PATH,)):
        self.app = app
        self.open_paths = open_paths

    async def __call__(self, scope: Scope, receive: Receive, send: Send):
        if scope["type"] != "http" or scope.get("path") in self.open_paths:
            await self.app(scope, receive, send)
            return

        request = Request(scope)
        auth_header = request.headers.get("authorization", "")
        if not auth_header.startswith("Bearer "):
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        token = auth_header[7:]
        try:
            jwt.decode(token, config.JWT_SECRET, algorithms=[config.JWT_ALGORITHM])
        except JWTError:
            response = Response(status_code=401)
            await response(scope, receive, send)
            return

        await self.app(scope, receive, send)


# --- Helper functions ---


def _habit_to_dict(habit: Habit, completed_today: Optional[bool] = None) -> dict:
    data = habit.model_dump(mode="json")
    if completed_today is not None:
        data["completed_today"] = completed_today
    return data


def _record_to_dict(day: str, record: Optional[DailyRecord]) -> dict:
    if record is None:
        return {"date": day, "entries": [], "reflections": None}
    return record.model_dump(mode="json")


def _completed_on(session: ForgeSession, day: str) -> set[str]:
    record = session.get_record(day)
    return {entry.habit_id for entry in record.entries} if record else set()


# --- Tools ---


@mcp.tool()
def list_habits(active_only: bool = True) -> list[dict]:
    """List habits with whether each was completed today."""
    session = get_session()
    done = _completed_on(session, iso_date(session.today()))
    habits = session.active_habits() if active_only else session.state.habits
    return [_habit_to_dict(h, h.id in done) for h in sorted(habits, key=lambda h: h.name.lower())]


@mcp.tool()
def add_habit(
    name: str,
    category: str = HABIT_CATEGORIES[0],
    points: int = HABIT_POINT_OPTIONS[0],
    icon_key: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    streak_multiplier: int = HABIT_STREAK_MULTIPLIERS[0],
    description: Optional[str] = None,
    tags: Optional[list[str]] = None,
    target_start: Optional[str] = None,
    target_end: Optional[str] = None,
) -> dict:
    """Create a new habit. Out-of-range presets fall back to their defaults.

    Args:
        name: Display name (required)
        category: One of the known categories, or any custom label
        points: One of 25, 50, 75, 100
        icon_key: sunrise, lotus, torch, moon, book or dumbbell
        duration_minutes: One of 15, 30, 45, 60
        streak_multiplier: One of 1, 2, 3
        description: Free text
        tags: Free-text tags
        target_start: Start of the target window, HH:MM
        target_end: End of the target window, HH:MM
    """
    if not name or not name.strip():
        return {"error": "Habit name is required"}
    draft = HabitDraft(
        name=name,
        category=category,
        points=points,
        icon_key=icon_key,
        duration_minutes=duration_minutes,
        streak_multiplier=streak_multiplier,
        description=description,
        tags=tags,
        target_window={"start": target_start, "end": target_end} if target_start and target_end else None,
    )
    habit = get_session().add_habit(draft)
    return {"id": habit.id, "name": habit.name, "status": "created"}


@mcp.tool()
def update_habit(
    habit_id: str,
    name: Optional[str] = None,
    category: Optional[str] = None,
    points: Optional[int] = None,
    icon_key: Optional[str] = None,
    duration_minutes: Optional[int] = None,
    streak_multiplier: Optional[int] = None,
    description: Optional[str] = None,
    tags: Optional[list[str]] = None,
    active: Optional[bool] = None,
) -> dict:
    """Update provided fields of a habit. History is never touched."""
    if name is not None and not name.strip():
        return {"error": "Habit name cannot be empty"}
    updates = HabitDraft(
        name=name,
        category=category,
        points=points,
        icon_key=icon_key,
        duration_minutes=duration_minutes,
        streak_multiplier=streak_multiplier,
        description=description,
        tags=tags,
    ).model_dump(exclude_none=True)
    if active is not None:
        updates["active"] = active
    habit = get_session().update_habit(habit_id, updates)
    if not habit:
        return {"error": f"Habit {habit_id} not found"}
    return {"id": habit.id, "name": habit.name, "status": "updated"}


@mcp.tool()
def delete_habit(habit_id: str) -> dict:
    """Soft delete a habit by setting active=False. Its history is kept."""
    habit = get_session().delete_habit(habit_id)
    if not habit:
        return {"error": f"Habit {habit_id} not found"}
    return {"id": habit.id, "name": habit.name, "status": "deleted"}


@mcp.tool()
def toggle_habit(habit_id: str, date: Optional[str] = None, note: Optional[str] = None) -> dict:
    """Mark a habit complete, or undo an existing completion.

    Args:
        habit_id: The habit to toggle
        date: Date in YYYY-MM-DD format (defaults to today)
        note: Optional note stored with a new completion
    """
    session = get_session()
    if session.get_habit(habit_id) is None:
        return {"error": f"Habit {habit_id} not found"}
    day = date or iso_date(session.today())
    completed = session.toggle_habit(habit_id, day, note)
    if completed is None:
        return {"error": f"Invalid date {date!r}, expected YYYY-MM-DD"}
    return {
        "habit_id": habit_id,
        "date": day,
        "status": "completed" if completed else "uncompleted",
        "today_points": session.stats().today_points,
    }


@mcp.tool()
def set_reflection(reflection: str, date: Optional[str] = None) -> dict:
    """Store the reflection for a day. An empty reflection clears it."""
    session = get_session()
    day = date or iso_date(session.today())
    if parse_iso_date(day) is None:
        return {"error": f"Invalid date {date!r}, expected YYYY-MM-DD"}
    record = session.set_reflection(day, reflection)
    return _record_to_dict(day, record)


@mcp.tool()
def get_day(date: Optional[str] = None) -> dict:
    """Get the completions and reflection for a date (defaults to today)."""
    session = get_session()
    day = date or iso_date(session.today())
    if parse_iso_date(day) is None:
        return {"error": f"Invalid date {date!r}, expected YYYY-MM-DD"}
    return _record_to_dict(day, session.get_record(day))


@mcp.tool()
def get_history(days: Optional[int] = None) -> list[dict]:
    """Completed habit ids per day, oldest first.

    Args:
        days: Only include the last N days (default: everything)
    """
    session = get_session()
    logs = session.daily_logs()
    if days is not None:
        cutoff = iso_date(session.today() - timedelta(days=max(days, 1) - 1))
        logs = [log for log in logs if log.date >= cutoff]
    return [log.model_dump() for log in logs]


@mcp.tool()
def get_stats() -> dict:
    """Level, XP, streak, today's points and the last 7 days of completions."""
    return get_session().stats().model_dump()


@mcp.tool()
def get_analytics() -> dict:
    """Completion totals, top habits, categories, 90-day heatmap and streak runs."""
    return get_session().analytics()


@mcp.tool()
def get_presets() -> dict:
    """Allowed values for habit fields and the level/streak constants."""
    return {
        "categories": list(HABIT_CATEGORIES),
        "points": list(HABIT_POINT_OPTIONS),
        "durations": list(HABIT_DURATION_OPTIONS),
        "streak_multipliers": list(HABIT_STREAK_MULTIPLIERS),
        "icon_keys": list(HABIT_ICON_KEYS),
        "tag_suggestions": list(HABIT_TAG_SUGGESTIONS),
        "points_per_level": POINTS_PER_LEVEL,
        "max_streak_bonus_days": MAX_STREAK_BONUS_DAYS,
        "streak_bonus_per_day": STREAK_BONUS_PER_DAY,
    }


# --- App setup ---

init_session()

_inner = mcp.streamable_http_app()
app = AccessGateMiddleware(_inner)
