"""Session-facing engine: the SessionGuard boundary and the clock abstraction.

SessionGuard is imported from lifeline.engine.guard directly; core modules
depend on lifeline.engine.clock, so this package must not import the guard.
"""

from lifeline.engine.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock

__all__ = [
    "DEFAULT_CLOCK",
    "Clock",
    "MockClock",
    "SystemClock",
]
