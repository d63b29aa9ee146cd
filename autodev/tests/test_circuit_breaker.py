"""Tests for per-model circuit breakers."""

from __future__ import annotations

import json
from pathlib import Path

from autodev.core.circuit_breaker import CircuitBreaker, CircuitBreakerRegistry, CircuitState


class FakeClock:
    def __init__(self, now: float = 1000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class TestCircuitBreaker:
    """Tests for CircuitBreaker."""

    def test_initial_state_is_closed(self):
        """A new breaker is closed and allows calls."""
        breaker = CircuitBreaker(model_id="m", clock=FakeClock())
        assert breaker.state == CircuitState.CLOSED
        assert breaker.allow_request() is True
        assert breaker.describe() == "CLOSED"

    def test_opens_at_threshold_within_window(self):
        """Three failures inside the window open the breaker."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=3, clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        assert breaker.state == CircuitState.CLOSED
        assert breaker.describe() == "MONITORING (2/3)"

        breaker.record_failure()
        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is False

    def test_old_failures_leave_the_window(self):
        """Failures older than the monitoring period do not count."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=3, monitoring_period=300, clock=clock)

        breaker.record_failure()
        breaker.record_failure()
        clock.advance(301)
        breaker.record_failure()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 1

    def test_open_breaker_rejects_until_cooldown(self):
        """Calls are rejected until reset_timeout has elapsed."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=1, reset_timeout=60, clock=clock)
        breaker.record_failure()

        clock.advance(59)
        assert breaker.allow_request() is False
        assert breaker.cooldown_remaining() == 1

        clock.advance(1)
        assert breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN

    def test_half_open_allows_single_trial_call(self):
        """Only one trial call is handed out while half-open."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.advance(10)

        assert breaker.allow_request() is True
        assert breaker.allow_request() is False

    def test_trial_success_closes_and_clears(self):
        """A successful trial call closes the breaker with a clean history."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=2, reset_timeout=10, clock=clock)
        breaker.record_failure()
        breaker.record_failure()
        clock.advance(10)
        breaker.allow_request()

        breaker.record_success()

        assert breaker.state == CircuitState.CLOSED
        assert breaker.failure_count == 0

    def test_trial_failure_reopens_immediately(self):
        """A failed trial call re-opens the breaker and restarts the cooldown."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=3, reset_timeout=10, clock=clock)
        for _ in range(3):
            breaker.record_failure()
        clock.advance(10)
        assert breaker.allow_request() is True

        breaker.record_failure()

        assert breaker.state == CircuitState.OPEN
        assert breaker.cooldown_remaining() == 10
        assert breaker.allow_request() is False

    def test_abandoned_trial_frees_the_slot(self):
        """A trial call that ends without an outcome lets the next call try again."""
        clock = FakeClock()
        breaker = CircuitBreaker(model_id="m", failure_threshold=1, reset_timeout=10, clock=clock)
        breaker.record_failure()
        clock.advance(10)
        assert breaker.allow_request() is True

        breaker.release_trial()

        assert breaker.state == CircuitState.OPEN
        assert breaker.allow_request() is True
        assert breaker.state == CircuitState.HALF_OPEN


class TestCircuitBreakerRegistry:
    """Tests for CircuitBreakerRegistry persistence."""

    def test_get_creates_one_breaker_per_model(self):
        registry = CircuitBreakerRegistry(failure_threshold=2)
        assert registry.get("a") is registry.get("a")
        assert registry.get("a") is not registry.get("b")
        assert registry.get("a").failure_threshold == 2
        assert "a" in registry

    def test_state_survives_restart(self, temp_project_dir: Path):
        """An open breaker is restored from the state file."""
        clock = FakeClock()
        state_file = temp_project_dir / "circuit_state.json"
        registry = CircuitBreakerRegistry(failure_threshold=1, state_file=state_file, clock=clock)
        registry.get("m").record_failure()
        registry.save_state()

        clock.advance(5)
        restored = CircuitBreakerRegistry(failure_threshold=1, state_file=state_file, clock=clock)

        assert restored.get("m").state == CircuitState.OPEN
        assert restored.get("m").allow_request() is False

    def test_stale_records_are_ignored(self, temp_project_dir: Path):
        """Records opened longer ago than the monitoring period start fresh."""
        clock = FakeClock()
        state_file = temp_project_dir / "circuit_state.json"
        registry = CircuitBreakerRegistry(
            failure_threshold=1, monitoring_period=300, state_file=state_file, clock=clock
        )
        registry.get("m").record_failure()
        registry.save_state()

        clock.advance(301)
        restored = CircuitBreakerRegistry(
            failure_threshold=1, monitoring_period=300, state_file=state_file, clock=clock
        )

        assert restored.get("m").state == CircuitState.CLOSED
        assert restored.get("m").failure_count == 0

    def test_corrupt_state_file_is_ignored(self, temp_project_dir: Path):
        state_file = temp_project_dir / "circuit_state.json"
        state_file.write_text("{not json")

        registry = CircuitBreakerRegistry(state_file=state_file)

        assert registry.get("m").state == CircuitState.CLOSED

    def test_reset_all_persists(self, temp_project_dir: Path):
        clock = FakeClock()
        state_file = temp_project_dir / "circuit_state.json"
        registry = CircuitBreakerRegistry(failure_threshold=1, state_file=state_file, clock=clock)
        registry.get("m").record_failure()

        registry.reset_all()

        data = json.loads(state_file.read_text())
        assert data["breakers"][0]["opened_at"] is None
        assert data["breakers"][0]["failure_timestamps"] == []
