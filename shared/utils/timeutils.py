"""
shared/utils/timeutils.py
Wall-clock helpers. Session dates and times are the practice's local wall clock,
stored naive; "now" is taken in PRACTICE_TIMEZONE and compared naive-to-naive.
"""

from datetime import date, datetime, time, timedelta, timezone
from zoneinfo import ZoneInfo

from config.settings import settings


def local_now() -> datetime:
    """Current wall-clock time in the practice timezone, without tzinfo."""
    return datetime.now(ZoneInfo(settings.PRACTICE_TIMEZONE)).replace(tzinfo=None)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def get_now() -> datetime:
    """FastAPI dependency: the request's notion of local now. Overridden in tests."""
    return local_now()


def parse_time(value: str) -> time:
    """Parse "HH:MM" or "HH:MM:SS"."""
    parts = value.strip().split(":")
    if len(parts) not in (2, 3):
        raise ValueError(f"Invalid time: {value!r}")
    hour, minute = int(parts[0]), int(parts[1])
    second = int(parts[2]) if len(parts) == 3 else 0
    return time(hour, minute, second)


def normalize_time(value: str) -> str:
    """Canonical "HH:MM" form of a wall-clock time string."""
    return parse_time(value).strftime("%H:%M")


def combine(on_date: date, clock: str) -> datetime:
    """Combine a calendar date and a "HH:MM" string into a naive local datetime."""
    return datetime.combine(on_date, parse_time(clock).replace(second=0))


def window_bounds(on_date: date, start_time: str, end_time: str) -> tuple[datetime, datetime]:
    """Start and end of a session window. An end at or before the start falls on the next day."""
    start = combine(on_date, start_time)
    end = combine(on_date, end_time)
    if end <= start:
        end += timedelta(days=1)
    return start, end


def hours_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / 3600


def format_countdown(seconds: int) -> str:
    """Human countdown used in admission messages: "1h 5m", "4m 10s", "12s"."""
    seconds = max(0, int(seconds))
    hours, rest = divmod(seconds, 3600)
    minutes, secs = divmod(rest, 60)
    if hours > 0:
        return f"{hours}h {minutes}m"
    if minutes > 0:
        return f"{minutes}m {secs}s"
    return f"{secs}s"
