# Copyright (c) 2025 The fusebox authors.
# Licensed under the MIT License. This file is provided without warranty.

"""
Package circuit provides the circuit breaker decision engine.

This package implements the circuit breaker pattern to prevent cascading failures:
- Count-based sliding window of recent call outcomes
- State machine (closed, open, half-open) with lazy recovery checks
- Call admission and outcome recording
- Registry of one breaker per protected resource
"""

from .window import (
    CallResult,
    CallOutcome,
    SlidingWindow,
)

from .state import (
    # State management
    CircuitState,
    RejectionReason,
    StateTransition,
    BreakerState,
    Admission,
    StateMachine,
)

from .circuit import (
    # Core circuit breaker
    CircuitBreaker,

    # Statistics
    CircuitStats,

    # Decorators and utilities
    circuit_breaker,
    with_circuit_breaker,
    with_circuit_breaker_async,
)

from .registry import CircuitBreakerRegistry

__all__ = [
    # Sliding window
    'CallResult',
    'CallOutcome',
    'SlidingWindow',

    # State management
    'CircuitState',
    'RejectionReason',
    'StateTransition',
    'BreakerState',
    'Admission',
    'StateMachine',

    # Core circuit breaker
    'CircuitBreaker',
    'CircuitStats',
    'CircuitBreakerRegistry',

    # Decorators and utilities
    'circuit_breaker',
    'with_circuit_breaker',
    'with_circuit_breaker_async',
]
