"""
Time helpers.

Components take a `now` callable so tests can pin the clock. Datetimes read
back from stores without timezone support come back naive; they are UTC.
"""

from datetime import datetime, timezone
from typing import Callable

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_month(value: datetime) -> datetime:
    """First instant of the calendar month containing `value` (UTC)."""
    return as_utc(value).replace(day=1, hour=0, minute=0, second=0, microsecond=0)
