"""
Basic fusebox usage example.

This example demonstrates the fundamental fusebox operations:
- Creating a registry and a breaker
- Protecting calls with execute()
- Watching state transitions
- Recovering through half-open probes
"""

import logging

from fusebox import (
    BreakerConfig,
    CircuitBreakerRegistry,
    CircuitOpenError,
    LoggingListener,
    ManualClock,
)


class InventoryUnavailable(Exception):
    """Stand-in for an infrastructure failure."""


class ItemNotFound(Exception):
    """Business error that must not trip the breaker."""


def basic_example():
    """Demonstrate basic fusebox usage"""
    print("Basic fusebox Example")
    print("=" * 30)

    clock = ManualClock()

    # 1. Create configuration
    config = BreakerConfig(
        window_size=4,
        minimum_calls=4,
        failure_rate_threshold=75,
        wait_duration_open_ms=100,
        permitted_calls_half_open=2,
        ignored_exceptions={ItemNotFound},
    )

    # 2. Create registry and breaker
    registry = CircuitBreakerRegistry(clock=clock, listeners=[LoggingListener()])
    breaker = registry.get_or_create("inventory", config)
    print(f"✓ Created breaker: {breaker}")

    def failing_lookup():
        raise InventoryUnavailable("inventory service timed out")

    # 3. Trip the breaker
    for _ in range(4):
        try:
            breaker.execute(failing_lookup)
        except InventoryUnavailable:
            pass
    print(f"✓ Breaker state after 4 failures: {breaker.state.value}")

    # 4. Calls are rejected while open
    try:
        breaker.execute(lambda: "never called")
    except CircuitOpenError as e:
        print(f"✓ Rejected: {e}")

    # 5. After the wait duration, probes are admitted
    clock.advance(150)
    print(f"✓ Probe result: {breaker.execute(lambda: 'in stock')}")
    print(f"✓ Breaker state after probe: {breaker.state.value}")

    # 6. Business errors are not counted
    def missing_item():
        raise ItemNotFound("sku-42")

    try:
        breaker.execute(missing_item)
    except ItemNotFound:
        pass
    print(f"✓ Window after ignored error: {breaker.stats.to_dict()}")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    basic_example()
