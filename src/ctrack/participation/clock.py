"""Injectable wall-clock with calendar-day resolution.

Check-in rules compare calendar days, not timestamps. The day is evaluated in a
single server-configured IANA time zone (``CTRACK_DAY_TIMEZONE``), so two
check-ins land on the same day exactly when their local dates in that zone match.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from typing import Protocol
from zoneinfo import ZoneInfo


class Clock(Protocol):
    """Source of the current instant and the current calendar day."""

    def now(self) -> datetime: ...

    def today(self) -> date: ...

    def day_of(self, instant: datetime) -> date: ...


def _resolve_zone(tz: str | timezone | ZoneInfo) -> timezone | ZoneInfo:
    if isinstance(tz, str):
        return timezone.utc if tz.upper() == "UTC" else ZoneInfo(tz)
    return tz


class SystemClock:
    """Reads the real wall clock; days are evaluated in ``tz``."""

    def __init__(self, tz: str | timezone | ZoneInfo = "UTC") -> None:
        self.tz = _resolve_zone(tz)

    def now(self) -> datetime:
        return datetime.now(timezone.utc)

    def day_of(self, instant: datetime) -> date:
        """Calendar day of ``instant`` in the clock's zone. Naive values are taken as UTC."""
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        return instant.astimezone(self.tz).date()

    def today(self) -> date:
        return self.day_of(self.now())


class FixedClock(SystemClock):
    """Clock pinned to a given instant. Used in tests and replays."""

    def __init__(self, instant: datetime, tz: str | timezone | ZoneInfo = "UTC") -> None:
        super().__init__(tz)
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def now(self) -> datetime:
        return self._instant

    def set(self, instant: datetime) -> None:
        if instant.tzinfo is None:
            instant = instant.replace(tzinfo=timezone.utc)
        self._instant = instant

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a ``timedelta(**kwargs)`` and return the new instant."""
        self._instant = self._instant + timedelta(**kwargs)
        return self._instant
