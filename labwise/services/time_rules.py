"""
Time rules shared by the engine.
All persisted timestamps are naive UTC; the sweep schedule is a wall-clock time in tz_default.
"""
from datetime import datetime, date, time, timedelta, timezone
from typing import Optional, Union
import pytz


def utcnow() -> datetime:
    """Current time as naive UTC, matching what the database hands back."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """
    Normalize a datetime to naive UTC.

    Args:
        dt: Naive (assumed UTC) or timezone-aware datetime

    Returns:
        Naive UTC datetime, or None
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt
    return dt.astimezone(pytz.UTC).replace(tzinfo=None)


def as_datetime(value: Union[datetime, date]) -> datetime:
    if isinstance(value, datetime):
        return to_naive_utc(value)
    return datetime.combine(value, time.min)


def parse_wall_clock(value: str) -> time:
    """Parse 'HH:MM' into a time."""
    return time.fromisoformat(value.strip())


def next_daily_run(now_utc: datetime, wall_clock: str, timezone_str: str) -> datetime:
    """
    Next occurrence of a daily wall-clock time, strictly after now.

    Args:
        now_utc: Current time (naive UTC or aware)
        wall_clock: 'HH:MM' in the given timezone
        timezone_str: pytz timezone name

    Returns:
        Naive UTC datetime of the next run
    """
    tz = pytz.timezone(timezone_str)
    run_at = parse_wall_clock(wall_clock)
    now_aware = pytz.UTC.localize(to_naive_utc(now_utc))
    local_now = now_aware.astimezone(tz)

    candidate_day = local_now.date()
    for _ in range(3):
        candidate = tz.localize(datetime.combine(candidate_day, run_at))
        if candidate > local_now:
            return candidate.astimezone(pytz.UTC).replace(tzinfo=None)
        candidate_day = candidate_day + timedelta(days=1)
    raise ValueError(f"Could not compute next run for {wall_clock} in {timezone_str}")
