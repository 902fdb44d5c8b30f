# custody/core/calendar.py
"""
Calendar-day normalization against the single reference timezone.

Every date comparison in the service (conflict checks, pickup/return due sets)
goes through `to_calendar_day` so that timestamps never get compared as
truncated strings or in the server's local zone.
"""
from datetime import date, datetime, timezone, tzinfo
from typing import Callable, Optional, Union

from custody.core.config import REFERENCE_TIMEZONE

DateLike = Union[date, datetime]
Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_calendar_day(value: DateLike, tz: Optional[tzinfo] = None) -> date:
    """
    Reduce a date or datetime to the calendar day it falls on in `tz`
    (defaults to the configured reference timezone).

    Naive datetimes are treated as UTC. Plain dates are already calendar days
    and are returned unchanged.
    """
    tz = tz or REFERENCE_TIMEZONE
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(tz).date()
    if isinstance(value, date):
        return value
    raise TypeError(f"Expected date or datetime, got {type(value).__name__}")


def windows_overlap(start: date, end: date, other_start: date, other_end: date) -> bool:
    """Inclusive overlap of two [start, end] calendar-day windows."""
    return start <= other_end and end >= other_start
