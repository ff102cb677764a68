# src/lifeline/engine/clock.py
"""Clock abstraction for testable time-dependent logic.

Signal aggregation (session duration, time since checkpoint) and resume
classification (elapsed time since a checkpoint) both depend on "now".
Production code uses SystemClock (the default). Tests inject MockClock to
control time advancement.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: Uses time.monotonic() and datetime.now(UTC) (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds, for elapsed-time arithmetic."""
        ...

    def now(self) -> datetime:
        """Return the current wall-clock time as a timezone-aware UTC datetime.

        Used for timestamps that are persisted (created_at, restored_at).
        """
        ...


class SystemClock:
    """Production clock backed by the system clocks."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    Monotonic and wall time advance together, so durations measured either
    way agree.

    Example:
        clock = MockClock()
        aggregator = SignalAggregator(settings, clock=clock)

        aggregator.start_session("s1")
        clock.advance(600)
        assert aggregator.time_since_checkpoint("s1") == 600
    """

    DEFAULT_EPOCH = datetime(2026, 1, 1, tzinfo=UTC)

    def __init__(self, start: float = 0.0, *, epoch: datetime | None = None) -> None:
        """Initialize mock clock.

        Args:
            start: Initial monotonic time value (default 0.0).
            epoch: Wall-clock time corresponding to monotonic 0.0.
        """
        self._current = start
        self._epoch = epoch if epoch is not None else self.DEFAULT_EPOCH

    def monotonic(self) -> float:
        return self._current

    def now(self) -> datetime:
        return self._epoch + timedelta(seconds=self._current)

    def advance(self, seconds: float) -> None:
        """Advance mock time by specified seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._current += seconds

    def set(self, value: float) -> None:
        """Set mock time to an absolute value (may go backwards; use with care)."""
        self._current = value


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
