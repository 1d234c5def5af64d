"""Calendar helpers shared by the normalizer, the stats engine and the session."""

import re
from datetime import date, datetime, timedelta
from typing import Optional

DAY_NAMES = ["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]
MONTH_NAMES = ["Jan", "Feb", "Mar", "Apr", "May", "Jun", "Jul", "Aug", "Sep", "Oct", "Nov", "Dec"]

_ISO_DATE = re.compile(r"\d{4}-\d{2}-\d{2}")


def local_now() -> datetime:
    """Current wall-clock time as an aware datetime in the local zone."""
    return datetime.now().astimezone()


def iso_date(d: date) -> str:
    return d.strftime("%Y-%m-%d")


def parse_iso_date(value: object) -> Optional[date]:
    """Parse a strict YYYY-MM-DD string, returning None for anything else."""
    if not isinstance(value, str) or not _ISO_DATE.fullmatch(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def parse_timestamp(value: object) -> Optional[datetime]:
    if isinstance(value, datetime):
        return value
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return datetime.fromisoformat(value.strip())
    except ValueError:
        return None


def are_consecutive(later: str, earlier: str) -> bool:
    """True when `later` is exactly one calendar day after `earlier`."""
    later_date = parse_iso_date(later)
    earlier_date = parse_iso_date(earlier)
    if later_date is None or earlier_date is None:
        return False
    return later_date - earlier_date == timedelta(days=1)


def weekday_name(d: date) -> str:
    return DAY_NAMES[d.weekday()]


def month_day_label(d: date) -> str:
    return f"{MONTH_NAMES[d.month - 1]} {d.day}"
