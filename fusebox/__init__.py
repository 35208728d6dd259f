"""
fusebox Python Package

Circuit breaker decision engine for calls to unreliable dependencies.
"""

__version__ = "0.1.0"
__author__ = "The fusebox authors"

from .circuit import (
    CircuitBreaker,
    CircuitBreakerRegistry,
    CircuitState,
    CircuitStats,
    CallResult,
    Admission,
    RejectionReason,
    StateTransition,
    circuit_breaker,
    with_circuit_breaker,
)
from .core.config import BreakerConfig
from .errors import (
    FuseboxError,
    CircuitOpenError,
    HalfOpenBudgetExceededError,
    ConfigurationError,
    BreakerNotFoundError,
)
from .events import StateTransitionListener, LoggingListener
from .util.clock import Clock, SystemClock, ManualClock

__all__ = [
    "CircuitBreaker",
    "CircuitBreakerRegistry",
    "CircuitState",
    "CircuitStats",
    "CallResult",
    "Admission",
    "RejectionReason",
    "StateTransition",
    "circuit_breaker",
    "with_circuit_breaker",
    "BreakerConfig",
    "FuseboxError",
    "CircuitOpenError",
    "HalfOpenBudgetExceededError",
    "ConfigurationError",
    "BreakerNotFoundError",
    "StateTransitionListener",
    "LoggingListener",
    "Clock",
    "SystemClock",
    "ManualClock",
]
