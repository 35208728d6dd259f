"""
Registry of circuit breakers, one per protected resource.

The registry is an ordinary object: construct one at process start and hand
it to the call sites that need it. Breakers are created on first request for
a name and live as long as the registry.
"""

import logging
import threading
from typing import Any, Callable, Dict, Iterable, List, Optional, Union

from ..core.config import BreakerConfig
from ..errors import BreakerNotFoundError, ConfigurationError
from ..events import StateTransitionListener, as_listener
from ..util.clock import Clock, default_clock
from ..util.config import load_config_file, normalize_config
from .circuit import CircuitBreaker, CircuitStats

logger = logging.getLogger(__name__)


class CircuitBreakerRegistry:
    """
    Thread-safe name -> CircuitBreaker map.

    The registry lock only guards the map; breakers for different resources
    never contend with each other once created.
    """

    def __init__(self,
                 default_config: Optional[BreakerConfig] = None,
                 clock: Optional[Clock] = None,
                 listeners: Optional[Iterable[StateTransitionListener]] = None):
        """
        Initialize the registry.

        Args:
            default_config: Configuration for breakers created without one
            clock: Clock shared by every breaker of this registry
            listeners: Listeners attached to every breaker created here
        """
        self.default_config = default_config or BreakerConfig()
        self.clock = clock or default_clock()
        self._listeners = [as_listener(listener) for listener in (listeners or [])]
        self._breakers: Dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get_or_create(self, name: str, config: Optional[BreakerConfig] = None) -> CircuitBreaker:
        """
        Return the breaker registered as ``name``, creating it if needed.

        When the breaker already exists ``config`` is not applied; the first
        configuration wins.
        """
        if not name or not isinstance(name, str):
            raise ConfigurationError("Breaker name must be a non-empty string", field="name")

        breaker = self._breakers.get(name)
        if breaker is not None:
            self._warn_on_config_mismatch(breaker, config)
            return breaker

        config = config or self.default_config
        # Fail fast here rather than on the first protected call
        config.validate()

        with self._lock:
            breaker = self._breakers.get(name)
            if breaker is None:
                breaker = CircuitBreaker(
                    name,
                    config,
                    clock=self.clock,
                    listeners=self._listeners,
                )
                self._breakers[name] = breaker
                logger.info(f"Registered circuit breaker '{name}'")
                return breaker

        self._warn_on_config_mismatch(breaker, config)
        return breaker

    def get(self, name: str) -> CircuitBreaker:
        """Return the breaker registered as ``name`` or raise BreakerNotFoundError."""
        with self._lock:
            breaker = self._breakers.get(name)
        if breaker is None:
            raise BreakerNotFoundError(name)
        return breaker

    def find(self, name: str) -> Optional[CircuitBreaker]:
        """Return the breaker registered as ``name``, or None."""
        with self._lock:
            return self._breakers.get(name)

    def list(self) -> List[str]:
        """Names of all registered breakers, in registration order."""
        with self._lock:
            return list(self._breakers)

    def breakers(self) -> List[CircuitBreaker]:
        with self._lock:
            return list(self._breakers.values())

    def stats(self) -> Dict[str, CircuitStats]:
        """Statistics of every registered breaker."""
        return {breaker.name: breaker.stats for breaker in self.breakers()}

    def add_listener(self, listener: Union[StateTransitionListener, Callable]) -> StateTransitionListener:
        """Attach a listener to every current and future breaker."""
        listener = as_listener(listener)
        with self._lock:
            self._listeners.append(listener)
            breakers = list(self._breakers.values())
        for breaker in breakers:
            breaker.add_listener(listener)
        return listener

    def __contains__(self, name: str) -> bool:
        with self._lock:
            return name in self._breakers

    def __len__(self) -> int:
        with self._lock:
            return len(self._breakers)

    def _warn_on_config_mismatch(self, breaker: CircuitBreaker,
                                 config: Optional[BreakerConfig]) -> None:
        if config is not None and config != breaker.config:
            logger.warning(
                f"Circuit breaker '{breaker.name}' already exists; "
                f"ignoring the differing configuration"
            )

    @classmethod
    def from_mapping(cls, mapping: Dict[str, Any], clock: Optional[Clock] = None,
                     listeners: Optional[Iterable[StateTransitionListener]] = None
                     ) -> "CircuitBreakerRegistry":
        """
        Build a registry from a configuration mapping.

        Expected shape::

            default:
              window_size: 20
              wait_duration_open: 30s
            breakers:
              payments:
                failure_rate_threshold: 25
              inventory: {}

        Named breakers inherit ``default`` and override individual options.
        """
        mapping = normalize_config(mapping or {})
        unknown = set(mapping) - {'default', 'breakers'}
        if unknown:
            raise ConfigurationError(
                f"Unknown registry configuration sections: {', '.join(sorted(unknown))}"
            )

        default_config = BreakerConfig.from_dict(mapping.get('default') or {})
        registry = cls(default_config=default_config, clock=clock, listeners=listeners)

        breakers = mapping.get('breakers') or {}
        if not isinstance(breakers, dict):
            raise ConfigurationError("Section 'breakers' must be a mapping", field='breakers')

        for name, options in breakers.items():
            config = BreakerConfig.from_dict(options or {}, base=default_config)
            registry.get_or_create(name, config)

        return registry

    @classmethod
    def from_file(cls, file_path: str, clock: Optional[Clock] = None,
                  listeners: Optional[Iterable[StateTransitionListener]] = None
                  ) -> "CircuitBreakerRegistry":
        """Build a registry from a JSON or YAML file (see from_mapping)."""
        return cls.from_mapping(load_config_file(file_path), clock=clock, listeners=listeners)
