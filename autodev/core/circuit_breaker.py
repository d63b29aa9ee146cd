"""Per-model circuit breakers with a sliding failure window."""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Callable

logger = logging.getLogger(__name__)

Clock = Callable[[], float]


class CircuitState(str, Enum):
    """Circuit breaker state tracking."""

    CLOSED = "closed"  # Normal operation
    OPEN = "open"  # Failing, reject requests
    HALF_OPEN = "half_open"  # One trial call in flight


@dataclass
class CircuitBreaker:
    """
    Failure gate for a single model.

    Opens once ``failure_threshold`` failures fall inside the last
    ``monitoring_period`` seconds. After ``reset_timeout`` seconds a single
    trial call is let through: its success closes the breaker and clears
    history, its failure re-opens the breaker at once.
    """

    model_id: str
    failure_threshold: int = 3
    reset_timeout: float = 60.0
    monitoring_period: float = 300.0
    clock: Clock = time.time

    failure_timestamps: list[float] = field(default_factory=list)
    opened_at: float | None = None
    trial_in_flight: bool = False

    @property
    def state(self) -> CircuitState:
        if self.opened_at is None:
            return CircuitState.CLOSED
        if self.trial_in_flight:
            return CircuitState.HALF_OPEN
        return CircuitState.OPEN

    @property
    def failure_count(self) -> int:
        """Failures inside the monitoring window."""
        self._prune(self.clock())
        return len(self.failure_timestamps)

    def cooldown_remaining(self) -> float:
        """Seconds until a trial call is allowed (0 when closed or ready)."""
        if self.opened_at is None:
            return 0.0
        return max(0.0, self.reset_timeout - (self.clock() - self.opened_at))

    def allow_request(self) -> bool:
        """
        Whether a call to this model may proceed now.

        Moves OPEN to HALF_OPEN when the cooldown has elapsed and hands out
        the single trial slot.
        """
        if self.opened_at is None:
            return True

        if self.trial_in_flight:
            return False

        if self.clock() - self.opened_at < self.reset_timeout:
            return False

        self.trial_in_flight = True
        logger.info("Circuit breaker HALF_OPEN for %s, sending trial call", self.model_id)
        return True

    def record_success(self) -> None:
        """Record a successful call: closes the breaker and clears history."""
        if self.opened_at is not None:
            logger.info("Circuit breaker CLOSED for %s after successful trial call", self.model_id)
        self.failure_timestamps.clear()
        self.opened_at = None
        self.trial_in_flight = False

    def release_trial(self) -> None:
        """Give back the trial slot of a call that ended without an outcome."""
        if self.trial_in_flight:
            self.trial_in_flight = False
            logger.info("Trial call for %s abandoned, breaker stays OPEN", self.model_id)

    def record_failure(self) -> None:
        """Record a failed call, opening the breaker when warranted."""
        now = self.clock()

        if self.trial_in_flight:
            self.trial_in_flight = False
            self.failure_timestamps.append(now)
            self.opened_at = now
            logger.warning("Circuit breaker re-OPENED for %s: trial call failed", self.model_id)
            return

        self.failure_timestamps.append(now)
        self._prune(now)

        if self.opened_at is None and len(self.failure_timestamps) >= self.failure_threshold:
            self.opened_at = now
            logger.warning(
                "Circuit breaker OPEN for %s: %d failures within %.0fs",
                self.model_id,
                len(self.failure_timestamps),
                self.monitoring_period,
            )

    def reset(self) -> None:
        self.failure_timestamps.clear()
        self.opened_at = None
        self.trial_in_flight = False

    def describe(self) -> str:
        """Short status string used in logs and the status command."""
        state = self.state
        if state is CircuitState.OPEN:
            return f"OPEN (retry in {self.cooldown_remaining():.0f}s)"
        if state is CircuitState.HALF_OPEN:
            return "HALF_OPEN"
        count = self.failure_count
        if count:
            return f"MONITORING ({count}/{self.failure_threshold})"
        return "CLOSED"

    def to_dict(self) -> dict[str, Any]:
        return {
            "model_id": self.model_id,
            "failure_timestamps": list(self.failure_timestamps),
            "opened_at": self.opened_at,
        }

    def _prune(self, now: float) -> None:
        cutoff = now - self.monitoring_period
        self.failure_timestamps[:] = [t for t in self.failure_timestamps if t > cutoff]


class CircuitBreakerRegistry:
    """
    Owns one breaker per model id, optionally persisted to disk.

    Persisted records older than the monitoring window are ignored on load,
    so a long-dead outage does not keep a model blocked across runs.
    """

    def __init__(
        self,
        *,
        failure_threshold: int = 3,
        reset_timeout: float = 60.0,
        monitoring_period: float = 300.0,
        state_file: Path | None = None,
        clock: Clock = time.time,
    ) -> None:
        self.failure_threshold = failure_threshold
        self.reset_timeout = reset_timeout
        self.monitoring_period = monitoring_period
        self.state_file = state_file
        self.clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}

        if self.state_file and self.state_file.exists():
            self._load_state()

    def get(self, model_id: str) -> CircuitBreaker:
        breaker = self._breakers.get(model_id)
        if breaker is None:
            breaker = CircuitBreaker(
                model_id=model_id,
                failure_threshold=self.failure_threshold,
                reset_timeout=self.reset_timeout,
                monitoring_period=self.monitoring_period,
                clock=self.clock,
            )
            self._breakers[model_id] = breaker
        return breaker

    def __contains__(self, model_id: str) -> bool:
        return model_id in self._breakers

    def reset_all(self) -> None:
        for breaker in self._breakers.values():
            breaker.reset()
        self.save_state()
        logger.info("All circuit breakers reset")

    def save_state(self) -> None:
        """Persist all breakers (atomic write). Failures are logged, not raised."""
        if not self.state_file:
            return

        try:
            self.state_file.parent.mkdir(parents=True, exist_ok=True)
            data = {
                "saved_at": self.clock(),
                "breakers": [b.to_dict() for b in self._breakers.values()],
            }
            tmp_file = self.state_file.with_suffix(".tmp")
            with open(tmp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            tmp_file.replace(self.state_file)
        except OSError as e:
            logger.warning("Failed to save circuit breaker state: %s", e)

    def _load_state(self) -> None:
        assert self.state_file is not None
        try:
            with open(self.state_file, encoding="utf-8") as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logger.warning("Failed to load circuit breaker state: %s", e)
            return

        now = self.clock()
        for record in data.get("breakers", []):
            try:
                model_id = str(record["model_id"])
                opened_at = record.get("opened_at")
                timestamps = [float(t) for t in record.get("failure_timestamps", [])]
            except (KeyError, TypeError, ValueError) as e:
                logger.warning("Skipping malformed breaker record: %s", e)
                continue

            if opened_at is not None and now - float(opened_at) > self.monitoring_period:
                logger.info("Circuit breaker state for %s is stale, starting fresh", model_id)
                opened_at = None
                timestamps = []

            breaker = self.get(model_id)
            breaker.failure_timestamps = timestamps
            breaker.opened_at = float(opened_at) if opened_at is not None else None
            breaker._prune(now)

        logger.info("Restored %d circuit breaker record(s)", len(self._breakers))
