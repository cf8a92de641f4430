"""Clock abstraction for testable rate-limit timing.

Rate limits are absolute wall-clock deadlines because servers may express
them as HTTP dates. Production code uses SystemClock; tests inject
MockClock to move time without sleeping.
"""

from __future__ import annotations

import time
from typing import Protocol


class Clock(Protocol):
    """Abstract wall clock."""

    def now(self) -> float:
        """Return the current time in seconds since the epoch."""
        ...


class SystemClock:
    """Production clock backed by time.time()."""

    def now(self) -> float:
        return time.time()


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(start=1_000.0)
        limiter = RateLimiter(clock=clock)
        limiter.update(429, {"retry-after": "60"})
        clock.advance(61)
        assert not limiter.is_disabled(DataCategory.ERROR)
    """

    def __init__(self, start: float = 0.0) -> None:
        self._current = start

    def now(self) -> float:
        return self._current

    def advance(self, seconds: float) -> None:
        """Advance mock time.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        self._current = value


DEFAULT_CLOCK: Clock = SystemClock()
