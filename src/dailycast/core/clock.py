# src/dailycast/core/clock.py
"""Clock abstraction for testable time-dependent logic.

The engine needs three kinds of time access: wall-clock timestamps for
persisted state and lock staleness, a monotonic clock for durations, and
sleeping for retry backoff. All three go through a Clock so tests can
drive them deterministically.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: real time (production)
    - MockClock: controllable time (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds, for elapsed-time calculations."""
        ...

    def now(self) -> datetime:
        """Return the current timezone-aware UTC wall-clock time."""
        ...

    def sleep(self, seconds: float) -> None:
        """Block for the given number of seconds."""
        ...


class SystemClock:
    """Production clock backed by the time module."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)

    def sleep(self, seconds: float) -> None:
        time.sleep(seconds)


class MockClock:
    """Controllable clock for deterministic testing.

    sleep() does not block: it advances both clocks and records the
    requested duration so tests can assert on backoff schedules.

    Example:
        clock = MockClock(wall_start=datetime(2026, 1, 19, 6, tzinfo=UTC))
        executor = RetryExecutor(clock=clock)
        ...
        assert clock.sleeps == [2.0, 4.0, 8.0]
    """

    def __init__(self, start: float = 0.0, wall_start: datetime | None = None) -> None:
        """Initialize mock clock.

        Args:
            start: Initial monotonic time value (default 0.0).
            wall_start: Wall-clock time corresponding to start
                (default 2026-01-01T00:00:00Z).
        """
        self._start = start
        self._current = start
        self._wall_start = wall_start if wall_start is not None else datetime(2026, 1, 1, tzinfo=UTC)
        self.sleeps: list[float] = []

    def monotonic(self) -> float:
        return self._current

    def now(self) -> datetime:
        return self._wall_start + timedelta(seconds=self._current - self._start)

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.advance(seconds)

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
