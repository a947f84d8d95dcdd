"""
Time source for services.

Audit entries, project ``created_at``/``updated_at`` and export artifacts
are all stamped from an injected clock.  Engines take no clock: anything
time-dependent is passed in as a value.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Default instant for DeterministicClock; all test expectations assume it.
REFERENCE_INSTANT = datetime(2026, 1, 15, 9, 0, tzinfo=timezone.utc)


class Clock(ABC):

    @abstractmethod
    def now(self) -> datetime:
        """Current instant, timezone-aware UTC."""


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """Frozen clock that only moves when told to."""

    def __init__(self, start: datetime | None = None):
        self._current = start or REFERENCE_INSTANT

    def now(self) -> datetime:
        return self._current

    def set_time(self, instant: datetime) -> None:
        self._current = instant

    def advance(self, seconds: int = 1) -> datetime:
        self._current += timedelta(seconds=seconds)
        return self._current

    def tick(self) -> datetime:
        return self.advance()
