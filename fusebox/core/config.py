"""
Breaker configuration for fusebox.

Copyright (c) 2025 The fusebox authors.
Licensed under the MIT License. This file is provided without warranty.
"""

import math
from dataclasses import dataclass, field, fields
from typing import Any, Dict, FrozenSet, Iterable, Optional, Union

from ..errors import ConfigurationError
from ..util.config import (
    DEFAULT_ENV_PREFIX,
    get_config_value,
    normalize_config,
    parse_duration_ms,
    validate_config,
)

ExceptionKind = Union[str, type]

_SCHEMA = {
    'window_size': {'required': True, 'type': int, 'min': 1},
    'minimum_calls': {'required': True, 'type': int, 'min': 1},
    'failure_rate_threshold': {'required': True, 'type': (int, float), 'min': 0, 'max': 100},
    'slow_call_duration_threshold_ms': {'type': int, 'min': 0},
    'slow_call_rate_threshold': {'type': (int, float), 'min': 0, 'max': 100},
    'wait_duration_open_ms': {'required': True, 'type': int, 'min': 0},
    'permitted_calls_half_open': {'required': True, 'type': int, 'min': 1},
    'half_open_success_quorum': {'type': int, 'min': 1},
}

_DURATION_FIELDS = ('slow_call_duration_threshold_ms', 'wait_duration_open_ms')

# Spellings accepted by from_dict in addition to the field names
_ALIASES = {
    'slow_call_duration_threshold': 'slow_call_duration_threshold_ms',
    'wait_duration_open': 'wait_duration_open_ms',
    'wait_duration_in_open_state': 'wait_duration_open_ms',
    'permitted_number_of_calls_in_half_open_state': 'permitted_calls_half_open',
    'minimum_number_of_calls': 'minimum_calls',
    'sliding_window_size': 'window_size',
    'ignored_exception_kinds': 'ignored_exceptions',
    'ignore_exceptions': 'ignored_exceptions',
}


def exception_kind_names(kind: ExceptionKind) -> FrozenSet[str]:
    """Names an exception kind answers to: bare and module-qualified."""
    if isinstance(kind, str):
        return frozenset([kind])
    return frozenset([kind.__name__, f"{kind.__module__}.{kind.__qualname__}"])


@dataclass(frozen=True)
class BreakerConfig:
    """
    Immutable configuration of a single circuit breaker.

    Attributes:
        window_size: Number of most recent call outcomes kept
        minimum_calls: Outcomes required before a failure rate is trusted
        failure_rate_threshold: Percentage (0-100) at or above which the breaker opens
        slow_call_duration_threshold_ms: Calls at least this long are classified slow
        slow_call_rate_threshold: Percentage of slow calls that opens the breaker.
            When unset, slow calls count toward the failure rate instead.
        wait_duration_open_ms: Time spent OPEN before a probe is allowed
        permitted_calls_half_open: Maximum in-flight probe calls while HALF_OPEN
        half_open_success_quorum: Probe successes needed to close again.
            Defaults to ceil(permitted_calls_half_open / 2).
        ignored_exceptions: Exception kinds (names or classes) that are
            neither successes nor failures
    """
    window_size: int = 100
    minimum_calls: int = 100
    failure_rate_threshold: float = 50.0
    slow_call_duration_threshold_ms: Optional[int] = None
    slow_call_rate_threshold: Optional[float] = None
    wait_duration_open_ms: int = 60000
    permitted_calls_half_open: int = 10
    half_open_success_quorum: Optional[int] = None
    ignored_exceptions: FrozenSet[ExceptionKind] = field(default_factory=frozenset)

    def __post_init__(self):
        object.__setattr__(self, 'ignored_exceptions', frozenset(self.ignored_exceptions or ()))
        self.validate()

    def validate(self) -> bool:
        """Validate the configuration, raising ConfigurationError on problems."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        problems = validate_config(values, _SCHEMA)

        if not problems:
            if self.minimum_calls > self.window_size:
                problems.append(
                    f"Field minimum_calls must be <= window_size ({self.window_size})"
                )
            if (self.half_open_success_quorum is not None
                    and self.half_open_success_quorum > self.permitted_calls_half_open):
                problems.append(
                    "Field half_open_success_quorum must be <= permitted_calls_half_open "
                    f"({self.permitted_calls_half_open})"
                )
            if (self.slow_call_rate_threshold is not None
                    and self.slow_call_duration_threshold_ms is None):
                problems.append(
                    "Field slow_call_rate_threshold requires slow_call_duration_threshold_ms"
                )

        for kind in self.ignored_exceptions:
            if isinstance(kind, str):
                if not kind:
                    problems.append("Field ignored_exceptions must not contain empty names")
            elif not (isinstance(kind, type) and issubclass(kind, BaseException)):
                problems.append(
                    f"Field ignored_exceptions must contain exception classes or names, got {kind!r}"
                )

        if problems:
            raise ConfigurationError(
                "Invalid breaker configuration: " + "; ".join(problems),
                problems=problems
            )
        return True

    @property
    def success_quorum(self) -> int:
        """Probe successes required to go from HALF_OPEN to CLOSED."""
        if self.half_open_success_quorum is not None:
            return self.half_open_success_quorum
        return math.ceil(self.permitted_calls_half_open / 2)

    @property
    def slow_call_detection(self) -> bool:
        return self.slow_call_duration_threshold_ms is not None

    @property
    def slow_calls_as_failures(self) -> bool:
        """Slow calls feed the failure rate when no separate slow threshold is set."""
        return self.slow_call_detection and self.slow_call_rate_threshold is None

    def is_slow(self, duration_ms: float) -> bool:
        return self.slow_call_detection and duration_ms >= self.slow_call_duration_threshold_ms

    def is_ignored(self, error: Union[BaseException, ExceptionKind]) -> bool:
        """
        Check whether an error is one of the ignored exception kinds.

        Accepts an exception instance, an exception class or a kind name.
        Instances and classes also match on any of their base classes.
        """
        if not self.ignored_exceptions:
            return False

        if isinstance(error, str):
            return any(error in exception_kind_names(kind) for kind in self.ignored_exceptions)

        error_type = error if isinstance(error, type) else type(error)
        for kind in self.ignored_exceptions:
            if isinstance(kind, type):
                if issubclass(error_type, kind):
                    return True
                continue
            for base in error_type.__mro__:
                if kind in exception_kind_names(base):
                    return True
        return False

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {f.name: getattr(self, f.name) for f in fields(self)}
        result['ignored_exceptions'] = sorted(
            kind if isinstance(kind, str) else f"{kind.__module__}.{kind.__qualname__}"
            for kind in self.ignored_exceptions
        )
        return result

    def replace(self, **changes: Any) -> "BreakerConfig":
        """Return a copy with the given fields changed."""
        values = {f.name: getattr(self, f.name) for f in fields(self)}
        values.update(changes)
        return BreakerConfig(**values)

    @classmethod
    def from_dict(cls, data: Dict[str, Any], base: Optional["BreakerConfig"] = None) -> "BreakerConfig":
        """
        Create configuration from a mapping.

        Keys may be snake_case or camelCase; durations may be given as
        milliseconds or strings such as '30s'. Missing keys fall back to
        ``base`` (or the defaults).
        """
        known = {f.name for f in fields(cls)}
        values = {f.name: getattr(base, f.name) for f in fields(cls)} if base else {}

        for key, value in normalize_config(data).items():
            key = _ALIASES.get(key, key)
            if key not in known:
                raise ConfigurationError(f"Unknown configuration option: {key}", field=key)
            values[key] = value

        for key in _DURATION_FIELDS:
            if values.get(key) is not None:
                try:
                    values[key] = parse_duration_ms(values[key])
                except ValueError as e:
                    raise ConfigurationError(str(e), field=key) from e

        if 'ignored_exceptions' in values:
            values['ignored_exceptions'] = _as_kind_set(values['ignored_exceptions'])

        return cls(**values)

    @classmethod
    def from_env(cls, prefix: str = DEFAULT_ENV_PREFIX,
                 base: Optional["BreakerConfig"] = None) -> "BreakerConfig":
        """Create configuration from environment variables (FUSEBOX_WINDOW_SIZE, ...)."""
        base = base or cls()
        ignored = get_config_value("ignored_exceptions", None, list, prefix)
        return cls(
            window_size=_env_value("window_size", base.window_size, int, prefix),
            minimum_calls=_env_value("minimum_calls", base.minimum_calls, int, prefix),
            failure_rate_threshold=_env_value(
                "failure_rate_threshold", base.failure_rate_threshold, float, prefix),
            slow_call_duration_threshold_ms=_env_duration(
                "slow_call_duration_threshold_ms", base.slow_call_duration_threshold_ms, prefix),
            slow_call_rate_threshold=_env_value(
                "slow_call_rate_threshold", base.slow_call_rate_threshold, float, prefix),
            wait_duration_open_ms=_env_duration(
                "wait_duration_open_ms", base.wait_duration_open_ms, prefix),
            permitted_calls_half_open=_env_value(
                "permitted_calls_half_open", base.permitted_calls_half_open, int, prefix),
            half_open_success_quorum=_env_value(
                "half_open_success_quorum", base.half_open_success_quorum, int, prefix),
            ignored_exceptions=(_as_kind_set(ignored) if ignored is not None
                                else base.ignored_exceptions),
        )


def _env_value(key: str, default: Any, cast_type: type, prefix: str) -> Any:
    value = get_config_value(key, None, None, prefix)
    if value is None:
        return default
    try:
        return cast_type(value)
    except ValueError as e:
        raise ConfigurationError(
            f"Invalid value for {prefix}{key.upper()}: {value!r}", field=key
        ) from e


def _env_duration(key: str, default: Optional[int], prefix: str) -> Optional[int]:
    value = get_config_value(key, None, None, prefix)
    if value is None:
        return default
    try:
        return parse_duration_ms(value)
    except ValueError as e:
        raise ConfigurationError(str(e), field=key) from e


def _as_kind_set(value: Any) -> FrozenSet[ExceptionKind]:
    if value is None:
        return frozenset()
    if isinstance(value, (str, type)):
        return frozenset([value])
    if isinstance(value, Iterable):
        return frozenset(value)
    raise ConfigurationError(
        f"Field ignored_exceptions must be a list of exception kinds, got {value!r}",
        field='ignored_exceptions'
    )
