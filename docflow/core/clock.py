"""
Injected time source.

Every engine operation reads time from a Clock passed in at construction
instead of calling datetime.now() itself, so SLA behaviour is testable with
a FrozenClock.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    def now(self) -> datetime:
        ...


class SystemClock:
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock:
    """Clock that only moves when told to."""

    def __init__(self, at: datetime | None = None) -> None:
        self._now = as_utc(at) if at else datetime(2026, 1, 5, 9, 0, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, **delta) -> datetime:
        """Move forward by timedelta keyword arguments, e.g. advance(hours=25)."""
        self._now = self._now + timedelta(**delta)
        return self._now

    def set(self, at: datetime) -> None:
        self._now = as_utc(at)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalise a stored datetime to aware UTC.

    SQLite hands back naive datetimes even for timezone=True columns; all
    values are written in UTC so a naive value is treated as UTC.
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
