"""
Listener interface for breaker state transitions.
"""

from .listeners import (
    StateTransitionListener,
    CallbackListener,
    LoggingListener,
    RecordingListener,
    TransitionCallback,
    as_listener,
    dispatch_transitions,
)

__all__ = [
    "StateTransitionListener",
    "CallbackListener",
    "LoggingListener",
    "RecordingListener",
    "TransitionCallback",
    "as_listener",
    "dispatch_transitions",
]
