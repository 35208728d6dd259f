"""
Circuit breaker implementation for preventing cascading failures.
"""

import asyncio
import inspect
import logging
import threading
from collections import deque
from contextlib import asynccontextmanager, contextmanager
from dataclasses import dataclass
from functools import wraps
from typing import Any, Callable, Deque, Dict, Iterable, List, Optional, Union

from ..core.config import BreakerConfig
from ..errors import CircuitOpenError, HalfOpenBudgetExceededError
from ..events import StateTransitionListener, as_listener, dispatch_transitions
from ..util.clock import Clock, default_clock
from .state import (
    Admission,
    CircuitState,
    RejectionReason,
    StateMachine,
    StateTransition,
)
from .window import CallResult, SlidingWindow

logger = logging.getLogger(__name__)


@dataclass
class CircuitStats:
    """Circuit breaker statistics."""
    name: str
    state: CircuitState
    call_count: int = 0
    failure_count: int = 0
    slow_call_count: int = 0
    success_count: int = 0
    failure_rate: Optional[float] = None
    slow_call_rate: Optional[float] = None
    total_successes: int = 0
    total_failures: int = 0
    total_ignored: int = 0
    not_permitted_count: int = 0
    half_open_in_flight: int = 0
    last_transition_at: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            'name': self.name,
            'state': self.state.value,
            'call_count': self.call_count,
            'failure_count': self.failure_count,
            'slow_call_count': self.slow_call_count,
            'success_count': self.success_count,
            'failure_rate': self.failure_rate,
            'slow_call_rate': self.slow_call_rate,
            'total_successes': self.total_successes,
            'total_failures': self.total_failures,
            'total_ignored': self.total_ignored,
            'not_permitted_count': self.not_permitted_count,
            'half_open_in_flight': self.half_open_in_flight,
            'last_transition_at': self.last_transition_at,
        }


class CircuitBreaker:
    """
    Gatekeeper in front of calls to one unreliable dependency.

    States:
    - CLOSED: Normal operation, all calls admitted and measured
    - OPEN: Failure mode, calls rejected until the wait duration elapses
    - HALF_OPEN: Testing mode, a bounded number of probe calls admitted

    Callers either wrap the protected operation with execute() or drive the
    protocol by hand: try_acquire(), run the call, then report exactly one of
    on_success(), on_failure() or on_ignored() on every exit path.
    """

    def __init__(self, name: str, config: Optional[BreakerConfig] = None,
                 clock: Optional[Clock] = None,
                 listeners: Optional[Iterable[StateTransitionListener]] = None):
        self.config = config or BreakerConfig()
        self.config.validate()
        self._clock = clock or default_clock()
        # Transitions wait here until delivered, in the order they happened
        self._pending: Deque[StateTransition] = deque()
        self._dispatch_lock = threading.RLock()
        self._dispatching = False
        self._machine = StateMachine(
            name, self.config, self._clock, on_transition=self._pending.append
        )
        self._listeners: List[StateTransitionListener] = [
            as_listener(listener) for listener in (listeners or [])
        ]
        self._listeners_lock = threading.Lock()
        self._counters_lock = threading.Lock()
        self._total_successes = 0
        self._total_failures = 0
        self._total_ignored = 0
        self._not_permitted = 0

        logger.info(f"Circuit breaker '{name}' initialized")

    @property
    def name(self) -> str:
        """Get circuit breaker name."""
        return self._machine.name

    @property
    def state(self) -> CircuitState:
        """Get current state."""
        return self._machine.state

    @property
    def window(self) -> SlidingWindow:
        return self._machine.window

    @property
    def clock(self) -> Clock:
        return self._clock

    @property
    def stats(self) -> CircuitStats:
        """Get current statistics."""
        snapshot = self._machine.snapshot()
        window = self._machine.window
        with self._counters_lock:
            return CircuitStats(
                name=self.name,
                state=snapshot.state,
                call_count=window.call_count(),
                failure_count=window.failure_count(),
                slow_call_count=window.slow_call_count(),
                success_count=window.success_count(),
                failure_rate=window.failure_rate(),
                slow_call_rate=window.slow_call_rate(),
                total_successes=self._total_successes,
                total_failures=self._total_failures,
                total_ignored=self._total_ignored,
                not_permitted_count=self._not_permitted,
                half_open_in_flight=snapshot.half_open_attempts_used,
                last_transition_at=snapshot.last_transition_at,
            )

    def add_listener(self, listener: Union[StateTransitionListener, Callable]) -> StateTransitionListener:
        """Register a state transition listener (object or plain function)."""
        listener = as_listener(listener)
        with self._listeners_lock:
            self._listeners.append(listener)
        return listener

    def remove_listener(self, listener: StateTransitionListener) -> None:
        with self._listeners_lock:
            try:
                self._listeners.remove(listener)
            except ValueError:
                pass

    def try_acquire(self) -> Admission:
        """Ask for permission to make one call. Never raises for rejection."""
        admission, transitions = self._machine.acquire_permission()
        self._notify(transitions)

        if not admission.admitted:
            with self._counters_lock:
                self._not_permitted += 1
            logger.debug(
                f"Circuit breaker '{self.name}' rejected call ({admission.reason.value})"
            )
        return admission

    def acquire(self) -> Admission:
        """Ask for permission, raising CircuitOpenError when rejected."""
        admission = self.try_acquire()
        if admission.admitted:
            return admission
        if admission.reason is RejectionReason.HALF_OPEN_BUDGET_EXHAUSTED:
            raise HalfOpenBudgetExceededError(self.name, self.config.permitted_calls_half_open)
        raise CircuitOpenError(self.name, state=admission.state.value)

    def on_success(self, duration_ms: float = 0, admission: Optional[Admission] = None) -> None:
        """Report a call that completed normally."""
        result = CallResult.SLOW if self.config.is_slow(duration_ms) else CallResult.SUCCESS
        with self._counters_lock:
            self._total_successes += 1
        transitions = self._machine.record(result, int(duration_ms), admission)
        logger.debug(
            f"Circuit breaker '{self.name}' recorded {result.value} (time: {duration_ms:.0f}ms)"
        )
        self._notify(transitions)

    def on_failure(self, error: Union[BaseException, str, None] = None,
                   duration_ms: float = 0, admission: Optional[Admission] = None) -> bool:
        """
        Report a call that failed.

        ``error`` is the exception raised or its kind name. Ignored kinds are
        left out of the window entirely. Returns True when the failure was
        recorded, False when it was ignored.
        """
        if error is not None and self.config.is_ignored(error):
            self.on_ignored(admission)
            return False

        with self._counters_lock:
            self._total_failures += 1
        transitions = self._machine.record(CallResult.FAILURE, int(duration_ms), admission)
        logger.debug(
            f"Circuit breaker '{self.name}' recorded failure: {error} (time: {duration_ms:.0f}ms)"
        )
        self._notify(transitions)
        return True

    def on_ignored(self, admission: Optional[Admission] = None) -> None:
        """Report a call whose outcome must not be judged, freeing its probe slot."""
        with self._counters_lock:
            self._total_ignored += 1
        self._machine.release(admission)

    def execute(self, operation: Callable, *args, **kwargs) -> Any:
        """
        Run a synchronous operation under breaker protection.

        Raises CircuitOpenError when rejected; otherwise returns the
        operation's result or re-raises its exception after recording it.
        """
        admission = self.acquire()
        start = self._clock.now_ms()

        try:
            result = operation(*args, **kwargs)
        except Exception as e:
            self.on_failure(e, self._elapsed(start), admission)
            raise
        except BaseException:
            # Interrupted, not failed
            self.on_ignored(admission)
            raise

        self.on_success(self._elapsed(start), admission)
        return result

    async def execute_async(self, operation: Callable, *args, **kwargs) -> Any:
        """Run a coroutine function (or plain callable) under breaker protection."""
        admission = self.acquire()
        start = self._clock.now_ms()

        try:
            if asyncio.iscoroutinefunction(operation):
                result = await operation(*args, **kwargs)
            else:
                result = operation(*args, **kwargs)
                if inspect.isawaitable(result):
                    result = await result
        except Exception as e:
            self.on_failure(e, self._elapsed(start), admission)
            raise
        except BaseException:
            # asyncio.CancelledError lands here
            self.on_ignored(admission)
            raise

        self.on_success(self._elapsed(start), admission)
        return result

    def reset(self) -> None:
        """Reset circuit breaker to closed state."""
        self._notify(self._machine.reset())
        logger.info(f"Circuit breaker '{self.name}' manually reset")

    def trip(self, reason: str = "Manually opened") -> None:
        """Force the breaker open, e.g. during a known outage."""
        self._notify(self._machine.transition_to_open(reason))

    def get_transitions(self) -> List[StateTransition]:
        """Get state transition history."""
        return self._machine.get_transitions()

    def _elapsed(self, start: float) -> float:
        return max(0.0, self._clock.now_ms() - start)

    def _notify(self, transitions: List[StateTransition]) -> None:
        """
        Deliver queued transitions to listeners, one breaker-wide sequence.

        Whichever thread holds the dispatch lock drains the queue, so a
        transition made on another thread is never delivered ahead of an
        earlier one. Returns only once this call's own transitions have
        been delivered.
        """
        if not transitions:
            return
        with self._dispatch_lock:
            if self._dispatching:
                # Re-entered from a listener; the outer drain delivers these
                return
            self._dispatching = True
            try:
                while self._pending:
                    transition = self._pending.popleft()
                    with self._listeners_lock:
                        listeners = list(self._listeners)
                    dispatch_transitions(listeners, [transition])
            finally:
                self._dispatching = False

    def __repr__(self) -> str:
        return f"CircuitBreaker(name={self.name!r}, state={self.state.value})"


@contextmanager
def with_circuit_breaker(circuit: CircuitBreaker):
    """Context manager for circuit breaker protection."""
    def protected_call(func: Callable, *args, **kwargs):
        return circuit.execute(func, *args, **kwargs)

    yield protected_call


@asynccontextmanager
async def with_circuit_breaker_async(circuit: CircuitBreaker):
    """Async context manager for circuit breaker protection."""
    async def protected_call(func: Callable, *args, **kwargs):
        return await circuit.execute_async(func, *args, **kwargs)

    yield protected_call


def circuit_breaker(circuit: CircuitBreaker):
    """Decorator for circuit breaker protection."""
    def decorator(func: Callable):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            return await circuit.execute_async(func, *args, **kwargs)

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            return circuit.execute(func, *args, **kwargs)

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator
