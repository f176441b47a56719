"""Timezone helpers. All timestamps are stored and compared in UTC."""

from datetime import date, datetime, time, timezone
from typing import Optional
from zoneinfo import ZoneInfo


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive values (some drivers drop tzinfo) and convert aware ones."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def local_datetime(day: date, at: time, tz_name: str) -> datetime:
    """Combine a wall-clock date and time in ``tz_name`` into a UTC datetime."""
    return datetime.combine(day, at, tzinfo=ZoneInfo(tz_name)).astimezone(timezone.utc)


def day_bounds(start: date, end: date) -> tuple[datetime, datetime]:
    """Inclusive date range as inclusive UTC datetime bounds."""
    lower = datetime.combine(start, time.min, tzinfo=timezone.utc)
    upper = datetime.combine(end, time.max, tzinfo=timezone.utc)
    return lower, upper
