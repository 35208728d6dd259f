"""
State transition listeners for fusebox.

Listeners are the seam to observability and alerting collaborators. They are
invoked synchronously by the breaker that transitioned, after its lock is
released and before the triggering call returns. A listener that raises is a
bug in the listener: the error is logged and discarded, never propagated to
the caller of the protected operation.
"""

import logging
import threading
from abc import ABC, abstractmethod
from typing import Callable, Iterable, List, Optional

from ..circuit.state import CircuitState, StateTransition

logger = logging.getLogger(__name__)

TransitionCallback = Callable[[str, CircuitState, CircuitState, float], None]


class StateTransitionListener(ABC):
    """Base class for state transition listeners."""

    @abstractmethod
    def on_state_transition(self, breaker_name: str, from_state: CircuitState,
                            to_state: CircuitState, timestamp: float) -> None:
        """Handle a transition. Must not block."""
        pass


class CallbackListener(StateTransitionListener):
    """Adapts a plain function to the listener interface."""

    def __init__(self, callback: TransitionCallback):
        self.callback = callback

    def on_state_transition(self, breaker_name, from_state, to_state, timestamp):
        self.callback(breaker_name, from_state, to_state, timestamp)

    def __repr__(self) -> str:
        return f"CallbackListener({getattr(self.callback, '__name__', self.callback)!r})"


class LoggingListener(StateTransitionListener):
    """Logs every transition, at a higher level when a breaker opens."""

    def __init__(self, logger_instance: Optional[logging.Logger] = None,
                 level: int = logging.INFO, open_level: int = logging.WARNING):
        self.log = logger_instance or logger
        self.level = level
        self.open_level = open_level

    def on_state_transition(self, breaker_name, from_state, to_state, timestamp):
        level = self.open_level if to_state is CircuitState.OPEN else self.level
        self.log.log(
            level,
            f"Circuit breaker '{breaker_name}' changed state "
            f"{from_state.value} -> {to_state.value} at {timestamp:.0f}ms"
        )


class RecordingListener(StateTransitionListener):
    """Keeps every transition it sees. Handy in tests and diagnostics."""

    def __init__(self):
        self.events: List[tuple] = []
        self._lock = threading.Lock()

    def on_state_transition(self, breaker_name, from_state, to_state, timestamp):
        with self._lock:
            self.events.append((breaker_name, from_state, to_state, timestamp))

    @property
    def states(self) -> List[CircuitState]:
        """Target states in the order they were entered."""
        with self._lock:
            return [event[2] for event in self.events]

    def clear(self) -> None:
        with self._lock:
            self.events.clear()


def as_listener(listener) -> StateTransitionListener:
    """Accept either a listener object or a plain callable."""
    if isinstance(listener, StateTransitionListener):
        return listener
    if hasattr(listener, "on_state_transition"):
        return listener
    if callable(listener):
        return CallbackListener(listener)
    raise TypeError(f"Not a state transition listener: {listener!r}")


def dispatch_transitions(listeners: Iterable[StateTransitionListener],
                         transitions: Iterable[StateTransition]) -> None:
    """Deliver transitions to listeners, isolating listener failures."""
    listeners = list(listeners)
    for transition in transitions:
        for listener in listeners:
            try:
                listener.on_state_transition(
                    transition.breaker_name,
                    transition.from_state,
                    transition.to_state,
                    transition.timestamp,
                )
            except Exception:
                logger.exception(
                    f"State transition listener {listener!r} failed for breaker "
                    f"'{transition.breaker_name}' ({transition.from_state.value} -> "
                    f"{transition.to_state.value})"
                )
