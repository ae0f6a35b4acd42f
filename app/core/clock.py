"""
Time provider threaded through routing, scoring and crisis handling.

Timestamps are naive UTC, matching what the database columns hand back.
"""
from datetime import datetime, timezone
from typing import Callable
from zoneinfo import ZoneInfo

Clock = Callable[[], datetime]


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def fixed_clock(moment: datetime) -> Clock:
    """Clock frozen at `moment` (used by jobs replaying a decision and by tests)."""
    return lambda: moment


def to_local(moment: datetime, tz_name: str) -> datetime:
    """Convert a naive UTC timestamp to wall-clock time in `tz_name`."""
    return moment.replace(tzinfo=timezone.utc).astimezone(ZoneInfo(tz_name))
