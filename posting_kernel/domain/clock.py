"""
Injectable time source.

Services never call ``datetime.now()``.  Cancellation stamps and auto-post
run times come from the Clock handed to the service, so tests can pin and
step time.
"""

from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone

# Start of the 2024/2025 teaching-practice season
DEFAULT_TEST_TIME = datetime(2024, 10, 1, 9, 0, 0, tzinfo=timezone.utc)


class Clock(ABC):
    """Source of timezone-aware timestamps."""

    @abstractmethod
    def now(self) -> datetime:
        ...


class SystemClock(Clock):
    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class DeterministicClock(Clock):
    """
    Clock that only moves when told to.

    ``now()`` keeps returning the same instant until ``advance()``.
    """

    def __init__(self, start: datetime | None = None):
        self._current = start or DEFAULT_TEST_TIME

    def now(self) -> datetime:
        return self._current

    def advance(self, seconds: float = 1) -> datetime:
        """Move forward by ``seconds`` and return the new time."""
        self._current += timedelta(seconds=seconds)
        return self._current
