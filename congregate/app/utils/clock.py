"""Injectable wall clock and cycle date helpers."""

from datetime import date, datetime, timedelta, timezone
from typing import Protocol


class Clock(Protocol):
    """Source of the current time."""

    def now(self) -> datetime:
        """Return the current time as an aware UTC datetime."""
        ...


class SystemClock:
    """Real wall-clock time of the executing process."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class FixedClock:
    """Clock pinned to a settable instant, for tests."""

    def __init__(self, at: datetime) -> None:
        self._at = ensure_utc(at)

    def now(self) -> datetime:
        return self._at

    def set(self, at: datetime) -> None:
        self._at = ensure_utc(at)

    def advance(self, **kwargs: float) -> datetime:
        """Move the clock forward by a timedelta built from kwargs."""
        self._at = self._at + timedelta(**kwargs)
        return self._at


def ensure_utc(at: datetime) -> datetime:
    """Return ``at`` as an aware UTC datetime; naive values are taken as UTC."""
    if at.tzinfo is None:
        return at.replace(tzinfo=timezone.utc)
    return at.astimezone(timezone.utc)


def cycle_date_for(day: date) -> date:
    """Sunday on or before ``day`` - the canonical week marker."""
    # Monday is 0, Sunday is 6
    return day - timedelta(days=(day.weekday() + 1) % 7)
