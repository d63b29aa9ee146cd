"""Multi-tier model failover with circuit breaking and graceful degradation."""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from autodev.core.circuit_breaker import CircuitBreakerRegistry
from autodev.core.errors import AutodevError, ErrorKind, is_fatal
from autodev.core.graceful_degradation import GracefulDegradation, ModelFailure
from autodev.core.retry_utils import exponential_backoff_ms

if TYPE_CHECKING:
    from autodev.cli_adapters.base import ModelInvoker
    from autodev.config.settings import FailoverSettings
    from autodev.metrics.observability import MetricsCollector

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

DEFAULT_CALL_TIMEOUT = 300.0


@dataclass(frozen=True)
class ModelCandidate:
    """One entry in a role's failover hierarchy."""

    model_id: str
    priority: int
    speed: str = ""
    quality: str = ""


@dataclass
class FailoverResult:
    """Outcome of ``execute_with_failover``."""

    success: bool
    output: dict[str, Any] | None = None
    model_used: str | None = None
    used_fallback: bool = False
    degraded: bool = False
    errors: list[ModelFailure] = field(default_factory=list)
    needs_user_input: bool = False

    @property
    def error_summary(self) -> str:
        if not self.errors:
            return "no candidate model available"
        return "; ".join(f"{e.model_id}: {e.kind.value}: {e.message}" for e in self.errors)


class FailoverController:
    """
    Tries each candidate model for a role in priority order.

    First success wins. Failures feed the per-model circuit breakers; an
    open breaker skips its candidate without spending an attempt. Fatal
    errors stop the candidate loop. When every candidate is exhausted the
    role's degraded fallback is returned, if one exists and degradation is
    enabled.
    """

    def __init__(
        self,
        hierarchy: dict[str, list[ModelCandidate]],
        invoker: ModelInvoker,
        breakers: CircuitBreakerRegistry | None = None,
        degradation: GracefulDegradation | None = None,
        *,
        base_backoff_ms: int = 1000,
        max_backoff_ms: int = 10000,
        metrics: MetricsCollector | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.hierarchy = {
            role: sorted(candidates, key=lambda c: c.priority)
            for role, candidates in hierarchy.items()
        }
        self.invoker = invoker
        self.breakers = breakers or CircuitBreakerRegistry()
        self.degradation = degradation or GracefulDegradation()
        self.base_backoff_ms = base_backoff_ms
        self.max_backoff_ms = max_backoff_ms
        self.metrics = metrics
        self._sleep = sleep

    @classmethod
    def from_settings(
        cls,
        settings: FailoverSettings,
        invoker: ModelInvoker,
        breakers: CircuitBreakerRegistry | None = None,
        **kwargs: Any,
    ) -> FailoverController:
        hierarchy = {
            role: [
                ModelCandidate(
                    model_id=c.model,
                    priority=c.priority,
                    speed=c.speed,
                    quality=c.quality,
                )
                for c in candidates
            ]
            for role, candidates in settings.hierarchy.items()
        }
        if breakers is None:
            breakers = CircuitBreakerRegistry(
                failure_threshold=settings.failure_threshold,
                reset_timeout=settings.reset_timeout,
                monitoring_period=settings.monitoring_period,
            )
        return cls(
            hierarchy,
            invoker,
            breakers,
            GracefulDegradation(enabled=settings.graceful_degradation),
            base_backoff_ms=settings.base_backoff_ms,
            max_backoff_ms=settings.max_backoff_ms,
            **kwargs,
        )

    def candidates_for(self, role: str) -> list[ModelCandidate]:
        return list(self.hierarchy.get(role, []))

    async def execute_with_failover(
        self,
        role: str,
        prompt: str,
        options: dict[str, Any] | None = None,
    ) -> FailoverResult:
        """
        Run ``prompt`` for ``role`` against the candidate hierarchy.

        Args:
            role: Logical role (analyst, planner, coder, reviewer).
            prompt: Prompt text.
            options: ``timeout_seconds`` per call, ``target_file`` for the
                coder fallback.

        Returns:
            FailoverResult; ``success`` is True for real and degraded
            outputs alike.
        """
        options = options or {}
        timeout = float(options.get("timeout_seconds", DEFAULT_CALL_TIMEOUT))
        candidates = self.candidates_for(role)
        errors: list[ModelFailure] = []

        if not candidates:
            logger.warning("No candidate models configured for role %s", role)

        for position, candidate in enumerate(candidates, start=1):
            breaker = self.breakers.get(candidate.model_id)
            if not breaker.allow_request():
                logger.info(
                    "Skipping %s for %s: circuit %s",
                    candidate.model_id,
                    role,
                    breaker.describe(),
                )
                continue

            logger.info("[%s] Trying %s (priority %d)", role, candidate.model_id, candidate.priority)
            start_time = time.monotonic()
            try:
                output = await self.invoker.invoke(candidate.model_id, prompt, timeout)
            except Exception as e:
                kind = e.kind if isinstance(e, AutodevError) else ErrorKind.UNKNOWN
                message = getattr(e, "message", None) or str(e)
                breaker.record_failure()
                self.breakers.save_state()
                errors.append(ModelFailure(model_id=candidate.model_id, kind=kind, message=message))
                if self.metrics:
                    self.metrics.record_model_call(
                        candidate.model_id, False, time.monotonic() - start_time, kind.value
                    )
                logger.warning("[%s] %s failed: %s: %s", role, candidate.model_id, kind.value, message)

                if is_fatal(e):
                    logger.error("[%s] Fatal error, not trying other models", role)
                    break

                if position < len(candidates):
                    delay_ms = exponential_backoff_ms(position, self.base_backoff_ms, self.max_backoff_ms)
                    await self._sleep(delay_ms / 1000)
                continue
            except BaseException:
                # Cancelled or interrupted: the call has no outcome to record
                breaker.release_trial()
                raise

            breaker.record_success()
            self.breakers.save_state()
            if self.metrics:
                self.metrics.record_model_call(candidate.model_id, True, time.monotonic() - start_time)
            logger.info("[%s] Success with %s", role, candidate.model_id)
            return FailoverResult(
                success=True,
                output=output,
                model_used=candidate.model_id,
                used_fallback=position > 1,
                errors=errors,
            )

        degraded = self.degradation.fallback(role, prompt, options)
        if degraded is not None:
            if self.metrics:
                self.metrics.record_degraded(role)
            return FailoverResult(
                success=True,
                output=degraded.output,
                model_used=degraded.model_id,
                used_fallback=True,
                degraded=True,
                errors=errors,
                needs_user_input=degraded.needs_user_input,
            )

        logger.error("[%s] All models failed and no degraded output is available", role)
        return FailoverResult(success=False, errors=errors)

    def get_status(self) -> dict[str, list[dict[str, Any]]]:
        """Per role: candidate models and their breaker state."""
        status: dict[str, list[dict[str, Any]]] = {}
        for role, candidates in self.hierarchy.items():
            status[role] = []
            for candidate in candidates:
                breaker = self.breakers.get(candidate.model_id)
                status[role].append({
                    "model": candidate.model_id,
                    "priority": candidate.priority,
                    "state": breaker.state.value,
                    "failures": breaker.failure_count,
                    "status": breaker.describe(),
                })
        return status

    def reset_circuit_breakers(self) -> None:
        self.breakers.reset_all()
