"""
Time source for the engine.

Submission, decision and deletion timestamps all come from an injected
``Clock``; nothing in the kernel calls ``datetime.now()`` itself.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Monday 09:00 UTC, the first business hour tests start from.
DEFAULT_TEST_EPOCH = datetime(2025, 1, 6, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Returns aware UTC datetimes."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    A clock that only moves when told to.

    Repeated ``now()`` calls return the same instant, so a decision and
    the audit record it emits carry identical timestamps.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_TEST_EPOCH
        if self._current.tzinfo is None:
            raise ValueError("DeterministicClock needs an aware start time")

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float | timedelta = 1) -> datetime:
        """Move forward and return the new instant.  Never moves backwards."""
        step = seconds if isinstance(seconds, timedelta) else timedelta(seconds=seconds)
        if step < timedelta(0):
            raise ValueError("DeterministicClock cannot move backwards")
        self._current += step
        return self._current
