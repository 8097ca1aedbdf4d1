"""
Clock abstraction.

Purpose
-------
Every time-dependent decision in the engine (due dates, local calendar days,
streak boundaries) reads the current instant from a ``Clock`` so tests can pin
and advance time explicitly.

Design Notes
------------
- ``now()`` always returns an aware UTC datetime.
- Local calendar days are derived from ``now()`` and an IANA time zone.
- ``FrozenClock`` never moves unless told to.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime, time, timedelta, timezone, tzinfo
from functools import lru_cache
from typing import Tuple
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError


class Clock(ABC):
    """Source of the current instant."""

    @abstractmethod
    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""

    def today(self, tz: tzinfo = timezone.utc) -> date:
        """Return the current calendar date in ``tz``."""
        return self.now().astimezone(tz).date()


class SystemClock(Clock):
    """Wall-clock time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FrozenClock(Clock):
    """
    A clock that only moves when told to.

    Example
    -------
    >>> clock = FrozenClock(datetime(2025, 1, 1, 12, tzinfo=timezone.utc))
    >>> clock.advance(days=1)
    >>> clock.now().day
    2
    """

    def __init__(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        self._instant = ensure_utc(instant)

    def advance(self, **delta: float) -> None:
        self._instant = self._instant + timedelta(**delta)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC and convert aware ones to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


@lru_cache(maxsize=256)
def resolve_timezone(name: str) -> tzinfo:
    """
    Resolve an IANA zone name, falling back to UTC for unknown names.

    Example
    -------
    >>> resolve_timezone("UTC")
    datetime.timezone.utc
    """
    if not name or name.upper() in ("UTC", "Z", "ETC/UTC"):
        return timezone.utc
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return timezone.utc


def local_day_bounds(day: date, tz: tzinfo) -> Tuple[datetime, datetime]:
    """Return the UTC instants at which ``day`` starts and ends in ``tz``."""
    start = datetime.combine(day, time.min, tzinfo=tz)
    end = datetime.combine(day + timedelta(days=1), time.min, tzinfo=tz)
    return start.astimezone(timezone.utc), end.astimezone(timezone.utc)
