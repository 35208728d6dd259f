"""
Clock sources for fusebox.
Breakers read time only through a Clock so time-based transitions can be
driven deterministically in tests.
"""

import threading
import time
from abc import ABC, abstractmethod


class Clock(ABC):
    """Source of the current time in milliseconds."""

    @abstractmethod
    def now_ms(self) -> float:
        """Return the current time in milliseconds."""
        pass


class SystemClock(Clock):
    """Monotonic wall clock, unaffected by system time changes."""

    def now_ms(self) -> float:
        return time.monotonic() * 1000.0


class ManualClock(Clock):
    """
    Clock that only moves when told to.

    Useful for tests and simulations:

        clock = ManualClock()
        breaker = CircuitBreaker("inventory", config, clock=clock)
        clock.advance(1500)
    """

    def __init__(self, start_ms: float = 0.0):
        self._now = float(start_ms)
        self._lock = threading.Lock()

    def now_ms(self) -> float:
        with self._lock:
            return self._now

    def advance(self, delta_ms: float) -> float:
        """Move the clock forward and return the new time."""
        if delta_ms < 0:
            raise ValueError("Clock cannot move backwards")
        with self._lock:
            self._now += delta_ms
            return self._now

    def set(self, now_ms: float) -> None:
        """Jump to an absolute time. Must not be earlier than the current time."""
        with self._lock:
            if now_ms < self._now:
                raise ValueError("Clock cannot move backwards")
            self._now = float(now_ms)


_default_clock = SystemClock()


def default_clock() -> Clock:
    """Get the process-wide system clock."""
    return _default_clock
