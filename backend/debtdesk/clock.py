"""
Injectable clock.

Delegation windows are compared against "now" in several places (creation
validation, access resolution, the sweep). Routing every read of the current
time through a ``Clock`` keeps those comparisons consistent within one
request and lets tests pin time.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        """Current time as an aware UTC datetime."""
        ...


class SystemClock:
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock frozen at a given instant; advance it explicitly."""

    def __init__(self, current: datetime) -> None:
        self._current = as_utc(current)

    def now(self) -> datetime:
        return self._current

    def set(self, current: datetime) -> None:
        self._current = as_utc(current)

    def advance(self, **delta: float) -> None:
        self._current += timedelta(**delta)


def as_utc(value: datetime) -> datetime:
    """
    Normalize to an aware UTC datetime.

    SQLite hands back naive datetimes for ``DateTime(timezone=True)`` columns;
    everything this package stores is UTC, so naive values are tagged as such.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
