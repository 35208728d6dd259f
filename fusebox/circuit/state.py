"""
Circuit breaker state machine.

The machine owns the breaker's phase and its sliding window. Every mutating
call is serialized by a per-machine lock and returns the transitions it
performed, so the caller can notify listeners once the lock is released.
An optional ``on_transition`` hook sees each transition while the lock is
still held, in the order the transitions happened.
"""

import logging
import threading
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Tuple

from ..core.config import BreakerConfig
from ..util.clock import Clock
from .window import CallOutcome, CallResult, SlidingWindow

logger = logging.getLogger(__name__)

MAX_TRANSITION_HISTORY = 100


class CircuitState(Enum):
    """Circuit breaker states."""
    CLOSED = "closed"        # Normal operation, requests allowed
    OPEN = "open"            # Failure mode, requests blocked
    HALF_OPEN = "half_open"  # Testing mode, limited probe requests allowed


class RejectionReason(Enum):
    """Why a permission request was declined."""
    CIRCUIT_OPEN = "circuit_open"
    HALF_OPEN_BUDGET_EXHAUSTED = "half_open_budget_exhausted"


@dataclass(frozen=True)
class StateTransition:
    """Circuit breaker state transition."""
    breaker_name: str
    from_state: CircuitState
    to_state: CircuitState
    timestamp: float
    reason: str
    failure_rate: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'breaker': self.breaker_name,
            'from_state': self.from_state.value,
            'to_state': self.to_state.value,
            'timestamp': self.timestamp,
            'reason': self.reason,
            'failure_rate': self.failure_rate,
        }


@dataclass
class BreakerState:
    """Mutable phase data of one breaker. Only the StateMachine writes it."""
    name: str
    state: CircuitState = CircuitState.CLOSED
    last_transition_at: float = 0.0
    half_open_attempts_used: int = 0
    half_open_successes: int = 0
    generation: int = 0  # Bumped on every transition


@dataclass(frozen=True)
class Admission:
    """Answer to a permission request."""
    admitted: bool
    state: CircuitState
    generation: int
    reason: Optional[RejectionReason] = None

    def __bool__(self) -> bool:
        return self.admitted

    @property
    def is_probe(self) -> bool:
        return self.admitted and self.state is CircuitState.HALF_OPEN


class StateMachine:
    """
    CLOSED -> OPEN -> HALF_OPEN -> CLOSED | OPEN, indefinitely.

    OPEN -> HALF_OPEN is evaluated lazily when permission is requested, so
    no timer thread is needed.
    """

    def __init__(self, name: str, config: BreakerConfig, clock: Clock,
                 window: Optional[SlidingWindow] = None,
                 on_transition: Optional[Callable[[StateTransition], None]] = None):
        self.name = name
        self.config = config
        self.clock = clock
        self.window = window or SlidingWindow(
            config.window_size,
            config.minimum_calls,
            slow_calls_as_failures=config.slow_calls_as_failures,
        )
        self._state = BreakerState(name=name, last_transition_at=clock.now_ms())
        self._lock = threading.RLock()
        self._transitions: List[StateTransition] = []
        self._on_transition = on_transition

    @property
    def state(self) -> CircuitState:
        with self._lock:
            return self._state.state

    def snapshot(self) -> BreakerState:
        """Consistent copy of the current phase data."""
        with self._lock:
            return replace(self._state)

    def acquire_permission(self) -> Tuple[Admission, List[StateTransition]]:
        """Decide whether a call may proceed."""
        with self._lock:
            transitions = []
            current = self._state.state

            if current is CircuitState.OPEN:
                if not self._wait_elapsed():
                    return self._reject(RejectionReason.CIRCUIT_OPEN), transitions
                transitions.append(self._transition(
                    CircuitState.HALF_OPEN, "Wait duration elapsed, probing for recovery"
                ))
                current = self._state.state

            if current is CircuitState.CLOSED:
                return self._admit(), transitions
            elif current is CircuitState.HALF_OPEN:
                if self._state.half_open_attempts_used >= self.config.permitted_calls_half_open:
                    return self._reject(RejectionReason.HALF_OPEN_BUDGET_EXHAUSTED), transitions
                self._state.half_open_attempts_used += 1
                return self._admit(), transitions
            else:
                raise AssertionError(f"Unhandled circuit state: {current}")

    def record(self, result: CallResult, duration_ms: int = 0,
               admission: Optional[Admission] = None) -> List[StateTransition]:
        """
        Record a completed call and apply the transition rules.

        ``admission`` is the permission the call ran under. An outcome whose
        admission predates the last transition cannot be a probe of the
        current HALF_OPEN phase and is discarded there.
        """
        with self._lock:
            stale = admission is not None and admission.generation != self._state.generation
            current = self._state.state
            outcome = CallOutcome(
                timestamp=self.clock.now_ms(),
                result=result,
                duration_ms=int(duration_ms),
            )

            if current is CircuitState.CLOSED:
                self.window.record(outcome)
                return self._evaluate_closed()
            elif current is CircuitState.OPEN:
                # Late arrivals; the window restarts on the way to HALF_OPEN
                self.window.record(outcome)
                return []
            elif current is CircuitState.HALF_OPEN:
                if stale:
                    return []
                self._release_probe()
                self.window.record(outcome)
                return self._evaluate_probe(result)
            else:
                raise AssertionError(f"Unhandled circuit state: {current}")

    def release(self, admission: Optional[Admission] = None) -> None:
        """Give back a probe slot without recording an outcome."""
        with self._lock:
            if self._state.state is not CircuitState.HALF_OPEN:
                return
            if admission is not None and admission.generation != self._state.generation:
                return
            self._release_probe()

    def reset(self, reason: str = "Manual reset") -> List[StateTransition]:
        """Force the machine back to CLOSED with an empty window."""
        with self._lock:
            if self._state.state is CircuitState.CLOSED:
                self.window.reset()
                return []
            return [self._transition(CircuitState.CLOSED, reason)]

    def transition_to_open(self, reason: str = "Forced open") -> List[StateTransition]:
        """Force the machine into OPEN. An already open machine is left as is."""
        with self._lock:
            if self._state.state is CircuitState.OPEN:
                return []
            return [self._transition(CircuitState.OPEN, reason)]

    def get_transitions(self) -> List[StateTransition]:
        """Get state transition history, oldest first."""
        with self._lock:
            return self._transitions.copy()

    def _admit(self) -> Admission:
        return Admission(True, self._state.state, self._state.generation)

    def _reject(self, reason: RejectionReason) -> Admission:
        return Admission(False, self._state.state, self._state.generation, reason)

    def _wait_elapsed(self) -> bool:
        elapsed = self.clock.now_ms() - self._state.last_transition_at
        return elapsed >= self.config.wait_duration_open_ms

    def _release_probe(self) -> None:
        if self._state.half_open_attempts_used > 0:
            self._state.half_open_attempts_used -= 1

    def _evaluate_closed(self) -> List[StateTransition]:
        if self.window.call_count() < self.config.minimum_calls:
            return []

        failure_rate = self.window.failure_rate()
        if failure_rate is not None and failure_rate >= self.config.failure_rate_threshold:
            return [self._transition(
                CircuitState.OPEN,
                f"Failure rate {failure_rate:.1f}% reached threshold "
                f"{self.config.failure_rate_threshold:.1f}%",
                failure_rate,
            )]

        if self.config.slow_call_rate_threshold is not None:
            slow_rate = self.window.slow_call_rate()
            if slow_rate is not None and slow_rate >= self.config.slow_call_rate_threshold:
                return [self._transition(
                    CircuitState.OPEN,
                    f"Slow call rate {slow_rate:.1f}% reached threshold "
                    f"{self.config.slow_call_rate_threshold:.1f}%",
                    failure_rate,
                )]

        return []

    def _evaluate_probe(self, result: CallResult) -> List[StateTransition]:
        failed = result is CallResult.FAILURE or (
            result is CallResult.SLOW and self.config.slow_calls_as_failures
        )
        if failed:
            return [self._transition(CircuitState.OPEN, "Probe call failed")]

        self._state.half_open_successes += 1
        if self._state.half_open_successes >= self.config.success_quorum:
            return [self._transition(
                CircuitState.CLOSED,
                f"Recovery successful ({self._state.half_open_successes} probe successes)",
            )]
        return []

    def _transition(self, to_state: CircuitState, reason: str,
                    failure_rate: Optional[float] = None) -> StateTransition:
        """Apply a transition. Caller holds the lock."""
        from_state = self._state.state
        now = self.clock.now_ms()

        self._state.state = to_state
        self._state.last_transition_at = now
        self._state.generation += 1
        self._state.half_open_attempts_used = 0
        self._state.half_open_successes = 0

        # OPEN keeps its history for inspection; the other phases measure afresh
        if to_state is not CircuitState.OPEN:
            self.window.reset()

        transition = StateTransition(
            breaker_name=self.name,
            from_state=from_state,
            to_state=to_state,
            timestamp=now,
            reason=reason,
            failure_rate=failure_rate,
        )

        self._transitions.append(transition)
        if len(self._transitions) > MAX_TRANSITION_HISTORY:
            self._transitions = self._transitions[-(MAX_TRANSITION_HISTORY // 2):]

        if self._on_transition is not None:
            self._on_transition(transition)

        if to_state is CircuitState.OPEN:
            logger.warning(f"Circuit breaker '{self.name}' opened: {reason}")
        else:
            logger.info(f"Circuit breaker '{self.name}' {from_state.value} -> {to_state.value}: {reason}")

        return transition
