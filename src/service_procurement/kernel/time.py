"""
Clock abstraction

Bidding-window expiry is a pure function of "now" and stored timestamps, so the
clock is injected everywhere it is read. All instants are timezone-aware UTC;
naive datetimes handed to the manual clock are taken as UTC.
"""

from datetime import datetime, timedelta, timezone
from typing import Protocol


def as_utc(dt: datetime) -> datetime:
    """Attach UTC to a naive datetime, convert an aware one to UTC"""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


class TimeProvider(Protocol):
    """Source of the current instant for workflow decisions"""

    def now(self) -> datetime:
        ...


class RealTimeProvider:
    """System clock"""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualTimeProvider:
    """
    Hand-driven clock for tests and demos

    Time only moves when told to, so a test can step a request to just before
    and just after its bidding deadline.

    Example:
        >>> clock = ManualTimeProvider(datetime(2025, 1, 15, 12, 0))
        >>> clock.advance_days(7)
        >>> clock.now().isoformat()
        '2025-01-22T12:00:00+00:00'
    """

    def __init__(self, initial_time: datetime | None = None) -> None:
        self._current_time = as_utc(initial_time or datetime(1970, 1, 1))

    def now(self) -> datetime:
        return self._current_time

    def set_time(self, dt: datetime) -> None:
        self._current_time = as_utc(dt)

    def advance(self, delta: timedelta) -> None:
        """Move the clock forward (a negative delta is rejected)"""
        if delta < timedelta(0):
            raise ValueError(f"Clock cannot move backwards by {delta}")
        self._current_time += delta

    def advance_seconds(self, seconds: int) -> None:
        self.advance(timedelta(seconds=seconds))

    def advance_days(self, days: int) -> None:
        self.advance(timedelta(days=days))
