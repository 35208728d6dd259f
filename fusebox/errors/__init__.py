# Copyright (c) 2025 The fusebox authors.
# Licensed under the MIT License. This file is provided without warranty.

"""
Structured errors for fusebox.

A caller of a protected operation sees exactly one of three things: the
operation's result, the operation's own exception, or a CircuitOpenError.
Everything else defined here is raised at construction time.
"""

from enum import Enum
from datetime import datetime
from typing import Dict, Any, Optional, List


class ErrorCode(Enum):
    """Structured error codes for fusebox."""

    # Admission errors
    CIRCUIT_OPEN = "circuit_open"
    HALF_OPEN_BUDGET_EXCEEDED = "half_open_budget_exceeded"

    # Configuration errors
    INVALID_CONFIGURATION = "invalid_configuration"

    # Registry errors
    BREAKER_NOT_FOUND = "breaker_not_found"


class FuseboxError(Exception):
    """
    Base exception class for all fusebox errors.

    Carries an error code, a human readable message and optional details
    that observability collaborators can serialize with to_dict().
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        details: Optional[Dict[str, Any]] = None
    ):
        self.code = code
        self.message = message
        self.details = details or {}
        self.timestamp = datetime.now()

        super().__init__(self.message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary representation."""
        result = {
            "error": self.code.value,
            "error_description": self.message,
            "timestamp": self.timestamp.isoformat(),
        }

        if self.details:
            result["details"] = self.details

        return result

    def is_retryable(self) -> bool:
        """Check if this error might be resolved by trying again later."""
        return self.code in [
            ErrorCode.CIRCUIT_OPEN,
            ErrorCode.HALF_OPEN_BUDGET_EXCEEDED,
        ]


class CircuitOpenError(FuseboxError):
    """Raised when a breaker is not admitting calls."""

    def __init__(
        self,
        breaker_name: str,
        message: Optional[str] = None,
        state: Optional[str] = None,
        code: ErrorCode = ErrorCode.CIRCUIT_OPEN
    ):
        self.breaker_name = breaker_name
        self.state = state
        details = {"breaker": breaker_name}
        if state:
            details["state"] = state

        super().__init__(
            code=code,
            message=message or f"Circuit breaker '{breaker_name}' is open",
            details=details
        )


class HalfOpenBudgetExceededError(CircuitOpenError):
    """Raised when a half-open breaker has no probe slot left."""

    def __init__(self, breaker_name: str, permitted_calls: int, message: Optional[str] = None):
        self.permitted_calls = permitted_calls
        default_message = (
            f"Circuit breaker '{breaker_name}' is half-open and all "
            f"{permitted_calls} probe calls are in flight"
        )
        super().__init__(
            breaker_name,
            message=message or default_message,
            state="half_open",
            code=ErrorCode.HALF_OPEN_BUDGET_EXCEEDED
        )
        self.details["permitted_calls"] = permitted_calls


class ConfigurationError(FuseboxError, ValueError):
    """Raised when a breaker configuration is invalid."""

    def __init__(self, message: str, field: Optional[str] = None,
                 problems: Optional[List[str]] = None, **kwargs):
        self.field = field
        self.problems = problems or [message]
        details = kwargs.pop("details", {})
        if field:
            details["field"] = field
        if len(self.problems) > 1:
            details["problems"] = self.problems

        super().__init__(
            code=kwargs.pop("code", ErrorCode.INVALID_CONFIGURATION),
            message=message,
            details=details,
            **kwargs
        )


class BreakerNotFoundError(FuseboxError, KeyError):
    """Raised when a registry has no breaker under the requested name."""

    def __init__(self, breaker_name: str):
        self.breaker_name = breaker_name
        super().__init__(
            code=ErrorCode.BREAKER_NOT_FOUND,
            message=f"No circuit breaker registered as '{breaker_name}'",
            details={"breaker": breaker_name}
        )

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message
        return self.message


__all__ = [
    "ErrorCode",
    "FuseboxError",
    "CircuitOpenError",
    "HalfOpenBudgetExceededError",
    "ConfigurationError",
    "BreakerNotFoundError",
]
