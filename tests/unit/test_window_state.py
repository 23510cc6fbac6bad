"""Unit tests for derived window state."""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone

import pytest

from congregate.app.models.common import WindowState
from congregate.app.services.attendance_windows import is_window_open, window_state

OPENS = datetime(2025, 6, 15, 9, 0, tzinfo=timezone.utc)
CLOSES = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)


@dataclass
class Range:
    opens_at: datetime
    closes_at: datetime


WINDOW = Range(OPENS, CLOSES)


def test_bounds_are_inclusive() -> None:
    assert is_window_open(WINDOW, OPENS)
    assert is_window_open(WINDOW, CLOSES)


@pytest.mark.parametrize("minutes", [-600, -1, 181, 10_000])
def test_outside_is_closed(minutes: int) -> None:
    assert not is_window_open(WINDOW, OPENS + timedelta(minutes=minutes))


def test_open_exactly_when_inside_range() -> None:
    """Sweep across the range: open iff opens_at <= t <= closes_at."""
    t = OPENS - timedelta(hours=1)
    while t <= CLOSES + timedelta(hours=1):
        assert is_window_open(WINDOW, t) == (OPENS <= t <= CLOSES)
        t += timedelta(minutes=7)


def test_window_state_transitions() -> None:
    assert window_state(WINDOW, OPENS - timedelta(seconds=1)) == WindowState.scheduled
    assert window_state(WINDOW, OPENS) == WindowState.open
    assert window_state(WINDOW, CLOSES) == WindowState.open
    assert window_state(WINDOW, CLOSES + timedelta(seconds=1)) == WindowState.closed
