"""
Clock -- injectable source of decision timestamps.

Every ``decided_at`` on a step state and every ``status_updated_at`` on
an enrollment chain comes from a Clock handed to the service, never from
``datetime.now()`` inline.  ``SystemClock`` is the only place the kernel
reads wall-clock time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Default start of DeterministicClock.
EPOCH = datetime(2024, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware UTC timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    """Wall-clock UTC time."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    Two decisions stamped without an ``advance()`` in between share a
    timestamp, which keeps audit assertions exact.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or EPOCH

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: int = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
