"""
Tests for the breaker state machine.
"""

import pytest

from fusebox import BreakerConfig, ManualClock
from fusebox.circuit import (
    CallResult,
    CircuitState,
    RejectionReason,
    StateMachine,
)


@pytest.fixture
def clock():
    return ManualClock()


def make_machine(clock, **overrides) -> StateMachine:
    options = dict(
        window_size=10,
        minimum_calls=10,
        failure_rate_threshold=50,
        wait_duration_open_ms=1000,
        permitted_calls_half_open=1,
    )
    options.update(overrides)
    return StateMachine("test", BreakerConfig(**options), clock)


def record_all(machine: StateMachine, failures: int, successes: int):
    transitions = []
    for _ in range(failures):
        transitions += machine.record(CallResult.FAILURE)
    for _ in range(successes):
        transitions += machine.record(CallResult.SUCCESS)
    return transitions


def open_machine(machine: StateMachine) -> None:
    record_all(machine, machine.config.minimum_calls, 0)
    assert machine.state is CircuitState.OPEN


class TestClosedToOpen:
    """Test CLOSED -> OPEN rule."""

    def test_threshold_reached_opens(self, clock):
        """Exactly 5 failures in 10 calls reaches 50%."""
        machine = make_machine(clock)

        transitions = record_all(machine, failures=5, successes=5)

        assert machine.state is CircuitState.OPEN
        assert len(transitions) == 1
        assert transitions[0].from_state is CircuitState.CLOSED
        assert transitions[0].to_state is CircuitState.OPEN
        assert transitions[0].failure_rate == pytest.approx(50.0)

    def test_below_threshold_stays_closed(self, clock):
        """4 failures in 10 calls stays closed."""
        machine = make_machine(clock)

        record_all(machine, failures=4, successes=6)

        assert machine.state is CircuitState.CLOSED

    def test_never_opens_below_minimum_calls(self, clock):
        """Low traffic never opens the breaker, whatever the failure rate."""
        machine = make_machine(clock)

        record_all(machine, failures=9, successes=0)

        assert machine.window.call_count() == 9
        assert machine.state is CircuitState.CLOSED

    def test_open_keeps_window(self, clock):
        """Opening does not discard the window."""
        machine = make_machine(clock)

        open_machine(machine)

        assert machine.window.call_count() == 10

    def test_slow_call_rate_threshold(self, clock):
        """A separate slow-call threshold opens the breaker on its own."""
        machine = make_machine(
            clock,
            window_size=4,
            minimum_calls=4,
            slow_call_duration_threshold_ms=100,
            slow_call_rate_threshold=50,
        )

        machine.record(CallResult.SLOW)
        machine.record(CallResult.SLOW)
        machine.record(CallResult.SUCCESS)
        assert machine.state is CircuitState.CLOSED

        machine.record(CallResult.SUCCESS)
        assert machine.state is CircuitState.OPEN


class TestOpenToHalfOpen:
    """Test the lazy OPEN -> HALF_OPEN rule."""

    def test_rejects_before_wait_duration(self, clock):
        """Calls are rejected until the wait duration elapses."""
        machine = make_machine(clock)
        open_machine(machine)

        clock.advance(500)
        admission, transitions = machine.acquire_permission()

        assert not admission
        assert admission.reason is RejectionReason.CIRCUIT_OPEN
        assert transitions == []
        assert machine.state is CircuitState.OPEN

    def test_admits_one_probe_after_wait_duration(self, clock):
        """At t >= wait duration exactly one probe is admitted."""
        machine = make_machine(clock)
        open_machine(machine)

        clock.advance(1000)
        first, transitions = machine.acquire_permission()
        second, _ = machine.acquire_permission()

        assert first.admitted and first.is_probe
        assert [t.to_state for t in transitions] == [CircuitState.HALF_OPEN]
        assert not second
        assert second.reason is RejectionReason.HALF_OPEN_BUDGET_EXHAUSTED

    def test_half_open_resets_window(self, clock):
        """Probes are not judged against the old failure history."""
        machine = make_machine(clock)
        open_machine(machine)

        clock.advance(1000)
        machine.acquire_permission()

        assert machine.state is CircuitState.HALF_OPEN
        assert machine.window.call_count() == 0
        snapshot = machine.snapshot()
        assert snapshot.half_open_attempts_used == 1
        assert snapshot.half_open_successes == 0

    def test_zero_wait_duration(self, clock):
        """With no wait, the next request already probes."""
        machine = make_machine(clock, wait_duration_open_ms=0)
        open_machine(machine)

        admission, _ = machine.acquire_permission()

        assert admission.admitted
        assert machine.state is CircuitState.HALF_OPEN


class TestHalfOpen:
    """Test HALF_OPEN admission and recovery."""

    def enter_half_open(self, clock, **overrides) -> StateMachine:
        machine = make_machine(clock, **overrides)
        open_machine(machine)
        clock.advance(machine.config.wait_duration_open_ms)
        return machine

    def test_probe_budget_is_in_flight_bound(self, clock):
        """A completed probe frees its slot for the next one."""
        machine = self.enter_half_open(clock, permitted_calls_half_open=4)

        admissions = [machine.acquire_permission()[0] for _ in range(5)]
        assert [a.admitted for a in admissions] == [True, True, True, True, False]

        machine.record(CallResult.SUCCESS, admission=admissions[0])
        assert machine.state is CircuitState.HALF_OPEN

        again, _ = machine.acquire_permission()
        assert again.admitted

    def test_majority_success_closes(self, clock):
        """2 successes out of 4 permitted probes close the breaker."""
        machine = self.enter_half_open(clock, permitted_calls_half_open=4)
        admissions = [machine.acquire_permission()[0] for _ in range(4)]

        machine.record(CallResult.SUCCESS, admission=admissions[0])
        assert machine.state is CircuitState.HALF_OPEN

        transitions = machine.record(CallResult.SUCCESS, admission=admissions[1])
        assert machine.state is CircuitState.CLOSED
        assert [t.to_state for t in transitions] == [CircuitState.CLOSED]
        assert machine.window.call_count() == 0

    def test_single_failure_reopens(self, clock):
        """One failed probe reverts to OPEN and restarts the wait."""
        machine = self.enter_half_open(clock, permitted_calls_half_open=4)
        admissions = [machine.acquire_permission()[0] for _ in range(4)]
        machine.record(CallResult.SUCCESS, admission=admissions[0])

        clock.advance(10)
        transitions = machine.record(CallResult.FAILURE, admission=admissions[1])

        assert machine.state is CircuitState.OPEN
        assert transitions[0].reason == "Probe call failed"
        assert machine.snapshot().last_transition_at == clock.now_ms()

        admission, _ = machine.acquire_permission()
        assert not admission

    def test_configurable_quorum(self, clock):
        """The recovery quorum can be raised up to the probe budget."""
        machine = self.enter_half_open(
            clock, permitted_calls_half_open=3, half_open_success_quorum=3
        )
        admissions = [machine.acquire_permission()[0] for _ in range(3)]

        machine.record(CallResult.SUCCESS, admission=admissions[0])
        machine.record(CallResult.SUCCESS, admission=admissions[1])
        assert machine.state is CircuitState.HALF_OPEN

        machine.record(CallResult.SUCCESS, admission=admissions[2])
        assert machine.state is CircuitState.CLOSED

    def test_slow_probe_counts_as_failure_when_configured(self, clock):
        """Slow probes fail recovery when slow calls count as failures."""
        machine = self.enter_half_open(clock, slow_call_duration_threshold_ms=50)
        admission, _ = machine.acquire_permission()

        machine.record(CallResult.SLOW, duration_ms=80, admission=admission)

        assert machine.state is CircuitState.OPEN

    def test_release_frees_slot_without_recording(self, clock):
        """Released probes neither succeed nor fail."""
        machine = self.enter_half_open(clock)
        admission, _ = machine.acquire_permission()

        machine.release(admission)

        assert machine.state is CircuitState.HALF_OPEN
        assert machine.window.call_count() == 0
        assert machine.acquire_permission()[0].admitted

    def test_stale_outcome_ignored_in_half_open(self, clock):
        """Outcomes of calls admitted before the transition are not probes."""
        machine = make_machine(clock, window_size=2, minimum_calls=2)
        early, _ = machine.acquire_permission()
        machine.record(CallResult.FAILURE)
        machine.record(CallResult.FAILURE)
        clock.advance(1000)
        probe, _ = machine.acquire_permission()

        transitions = machine.record(CallResult.FAILURE, admission=early)

        assert transitions == []
        assert machine.state is CircuitState.HALF_OPEN
        assert machine.snapshot().half_open_attempts_used == 1

        machine.record(CallResult.SUCCESS, admission=probe)
        assert machine.state is CircuitState.CLOSED


class TestManualTransitions:
    """Test reset and forced open."""

    def test_reset_closes(self, clock):
        """Reset returns to CLOSED with an empty window."""
        machine = make_machine(clock)
        open_machine(machine)

        transitions = machine.reset()

        assert machine.state is CircuitState.CLOSED
        assert transitions[0].reason == "Manual reset"
        assert machine.window.call_count() == 0

    def test_reset_when_closed_has_no_transition(self, clock):
        machine = make_machine(clock)
        machine.record(CallResult.FAILURE)

        assert machine.reset() == []
        assert machine.window.call_count() == 0

    def test_force_open_when_open_has_no_transition(self, clock):
        """Forcing an open machine open keeps its original open time."""
        machine = make_machine(clock)
        open_machine(machine)
        clock.advance(600)

        assert machine.transition_to_open() == []
        assert len(machine.get_transitions()) == 1

        clock.advance(400)
        admission, transitions = machine.acquire_permission()
        assert admission.admitted
        assert transitions[0].to_state is CircuitState.HALF_OPEN

    def test_on_transition_hook_sees_every_transition(self, clock):
        """The hook receives transitions in the order they were made."""
        seen = []
        machine = StateMachine(
            "hooked",
            BreakerConfig(window_size=2, minimum_calls=2, wait_duration_open_ms=0),
            clock,
            on_transition=seen.append,
        )

        record_all(machine, failures=2, successes=0)
        machine.acquire_permission()
        machine.reset()

        assert [t.to_state for t in seen] == [
            CircuitState.OPEN,
            CircuitState.HALF_OPEN,
            CircuitState.CLOSED,
        ]
        assert seen == machine.get_transitions()

    def test_history_is_bounded(self, clock):
        """Transition history keeps only recent entries."""
        machine = make_machine(clock, wait_duration_open_ms=0)

        for _ in range(120):
            machine.transition_to_open()
            machine.reset()

        assert len(machine.get_transitions()) <= 100
        assert machine.get_transitions()[-1].to_state is CircuitState.CLOSED
