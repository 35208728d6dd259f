"""
Count-based sliding window of call outcomes.
"""

import threading
from collections import deque
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, List, Optional


class CallResult(Enum):
    """Classification of a completed call."""
    SUCCESS = "success"
    FAILURE = "failure"
    SLOW = "slow"  # Succeeded, but slower than the slow-call threshold


@dataclass(frozen=True)
class CallOutcome:
    """A completed call, as recorded in the window."""
    timestamp: float
    result: CallResult
    duration_ms: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp,
            'result': self.result.value,
            'duration_ms': self.duration_ms,
        }


class SlidingWindow:
    """
    Fixed-capacity ring of the most recent call outcomes.

    Outcomes are kept in completion order. Once ``window_size`` outcomes are
    held, each new one evicts the oldest. Per-result counters are kept in
    step with the ring so rates are computed in constant time.
    """

    def __init__(self, window_size: int, minimum_calls: int,
                 slow_calls_as_failures: bool = False):
        if window_size <= 0:
            raise ValueError("window_size must be positive")
        if minimum_calls <= 0 or minimum_calls > window_size:
            raise ValueError("minimum_calls must be in 1..window_size")

        self.window_size = window_size
        self.minimum_calls = minimum_calls
        self.slow_calls_as_failures = slow_calls_as_failures
        self._outcomes: deque = deque(maxlen=window_size)
        self._counts = {result: 0 for result in CallResult}
        self._lock = threading.Lock()

    def record(self, outcome: CallOutcome) -> None:
        """Append an outcome, evicting the oldest one when full."""
        with self._lock:
            if len(self._outcomes) == self.window_size:
                evicted = self._outcomes[0]
                self._counts[evicted.result] -= 1
            self._outcomes.append(outcome)
            self._counts[outcome.result] += 1

    def call_count(self) -> int:
        with self._lock:
            return len(self._outcomes)

    def failure_count(self) -> int:
        with self._lock:
            return self._counts[CallResult.FAILURE]

    def slow_call_count(self) -> int:
        with self._lock:
            return self._counts[CallResult.SLOW]

    def success_count(self) -> int:
        """Successful calls, including slow ones."""
        with self._lock:
            return self._counts[CallResult.SUCCESS] + self._counts[CallResult.SLOW]

    def failure_rate(self) -> Optional[float]:
        """
        Percentage of failed calls in the window.

        Returns None until at least ``minimum_calls`` outcomes are recorded.
        Slow calls are counted as failures when the window was created with
        ``slow_calls_as_failures``.
        """
        with self._lock:
            total = len(self._outcomes)
            if total < self.minimum_calls:
                return None
            failures = self._counts[CallResult.FAILURE]
            if self.slow_calls_as_failures:
                failures += self._counts[CallResult.SLOW]
            return failures / total * 100.0

    def slow_call_rate(self) -> Optional[float]:
        """Percentage of slow calls, or None below ``minimum_calls``."""
        with self._lock:
            total = len(self._outcomes)
            if total < self.minimum_calls:
                return None
            return self._counts[CallResult.SLOW] / total * 100.0

    def outcomes(self) -> List[CallOutcome]:
        """Snapshot of the window, oldest first."""
        with self._lock:
            return list(self._outcomes)

    def reset(self) -> None:
        """Discard all outcomes and start a fresh measurement."""
        with self._lock:
            self._outcomes.clear()
            for result in self._counts:
                self._counts[result] = 0

    def __len__(self) -> int:
        return self.call_count()

    def __repr__(self) -> str:
        return (f"SlidingWindow(size={self.window_size}, calls={self.call_count()}, "
                f"failure_rate={self.failure_rate()})")
