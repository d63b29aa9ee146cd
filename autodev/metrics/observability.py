"""Observability and metrics tracking for autodev sessions."""

from __future__ import annotations

import json
import logging
import time
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, UTC
from enum import Enum
from pathlib import Path
from typing import Any

from autodev.core.session import SessionPhase

logger = logging.getLogger(__name__)


class MetricType(str, Enum):
    """Type of metric being tracked."""

    COUNTER = "counter"
    GAUGE = "gauge"
    TIMER = "timer"


@dataclass
class MetricPoint:
    """A single metric data point."""

    name: str
    value: float
    metric_type: MetricType
    labels: dict[str, str] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_json(self) -> str:
        return json.dumps({
            "name": self.name,
            "value": self.value,
            "type": self.metric_type.value,
            "labels": self.labels,
            "timestamp": self.timestamp.isoformat(),
        })


@dataclass
class SessionMetrics:
    """Aggregated metrics for one session run."""

    session_id: str
    started_at: datetime
    completed_at: datetime | None = None
    total_duration_seconds: float = 0.0
    final_phase: SessionPhase | None = None

    # Phase metrics (a retried phase accumulates)
    phase_durations: dict[str, float] = field(default_factory=lambda: defaultdict(float))
    phase_retries: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    current_phase: SessionPhase | None = None

    # Model metrics
    model_invocations: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    model_successes: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    model_failures: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    model_durations: dict[str, list[float]] = field(default_factory=lambda: defaultdict(list))
    failure_kinds: dict[str, int] = field(default_factory=lambda: defaultdict(int))
    degraded_results: dict[str, int] = field(default_factory=lambda: defaultdict(int))

    # Fan-out metrics
    milestones_run: int = 0
    milestones_partial: int = 0
    milestones_rejected: int = 0
    workers_dispatched: int = 0
    workers_failed: int = 0

    errors: list[str] = field(default_factory=list)

    @property
    def model_success_rate(self) -> float:
        """Overall model call success rate."""
        total_success = sum(self.model_successes.values())
        total_invocations = sum(self.model_invocations.values())
        return total_success / total_invocations if total_invocations > 0 else 0.0

    @property
    def worker_success_rate(self) -> float:
        if self.workers_dispatched == 0:
            return 0.0
        return 1.0 - (self.workers_failed / self.workers_dispatched)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "session_id": self.session_id,
            "started_at": self.started_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "total_duration_seconds": self.total_duration_seconds,
            "final_phase": self.final_phase.value if self.final_phase else None,
            "phase_durations": dict(self.phase_durations),
            "phase_retries": dict(self.phase_retries),
            "model_invocations": dict(self.model_invocations),
            "model_successes": dict(self.model_successes),
            "model_failures": dict(self.model_failures),
            "failure_kinds": dict(self.failure_kinds),
            "degraded_results": dict(self.degraded_results),
            "model_success_rate": self.model_success_rate,
            "fan_out": {
                "milestones_run": self.milestones_run,
                "milestones_partial": self.milestones_partial,
                "milestones_rejected": self.milestones_rejected,
                "workers_dispatched": self.workers_dispatched,
                "workers_failed": self.workers_failed,
                "worker_success_rate": self.worker_success_rate,
            },
            "errors": self.errors,
        }

    def to_summary(self) -> str:
        """Generate a human-readable summary."""
        lines = [
            "=" * 60,
            "SESSION METRICS SUMMARY",
            "=" * 60,
            f"Session ID: {self.session_id}",
            f"Final phase: {self.final_phase.value if self.final_phase else 'n/a'}",
            f"Duration: {self.total_duration_seconds:.1f}s",
            "",
            "Phase Durations:",
        ]

        for phase, duration in self.phase_durations.items():
            retries = self.phase_retries.get(phase, 0)
            suffix = f" ({retries} retries)" if retries else ""
            lines.append(f"  {phase}: {duration:.1f}s{suffix}")

        lines.extend([
            "",
            "Model Performance:",
            f"  Total Invocations: {sum(self.model_invocations.values())}",
            f"  Success Rate: {self.model_success_rate:.1%}",
        ])

        for model, count in self.model_invocations.items():
            success = self.model_successes.get(model, 0)
            failure = self.model_failures.get(model, 0)
            lines.append(f"  {model}: {success}/{count} successful ({failure} failed)")

        if self.degraded_results:
            lines.append("")
            lines.append("Degraded Results:")
            for role, count in self.degraded_results.items():
                lines.append(f"  {role}: {count}")

        if self.milestones_run:
            lines.extend([
                "",
                "Fan-out:",
                f"  Milestones: {self.milestones_run} "
                f"({self.milestones_partial} partial, {self.milestones_rejected} rejected)",
                f"  Workers: {self.workers_dispatched} dispatched, {self.workers_failed} failed",
            ])

        if self.errors:
            lines.extend(["", f"Errors: {len(self.errors)}"])

        lines.append("=" * 60)
        return "\n".join(lines)


class MetricsCollector:
    """
    Collect and track session metrics.

    Provides:
    - Phase timing and retry counts
    - Per-model invocation tracking
    - Degraded-output counts
    - Milestone fan-out statistics
    """

    def __init__(
        self,
        session_id: str,
        output_dir: Path | None = None,
    ) -> None:
        """
        Initialize metrics collector.

        Args:
            session_id: Session being measured.
            output_dir: Directory to save metrics files.
        """
        self.metrics = SessionMetrics(
            session_id=session_id,
            started_at=datetime.now(UTC),
        )
        self.output_dir = output_dir
        self._phase_start_times: dict[str, float] = {}
        self._points: list[MetricPoint] = []

    def start_phase(self, phase: SessionPhase) -> None:
        """Record start of a phase handler."""
        self.metrics.current_phase = phase
        self._phase_start_times[phase.value] = time.monotonic()

        logger.debug("Phase started: %s", phase.value)

    def end_phase(self, phase: SessionPhase) -> None:
        """Record end of a phase handler."""
        start_time = self._phase_start_times.pop(phase.value, None)
        if start_time is not None:
            duration = time.monotonic() - start_time
            self.metrics.phase_durations[phase.value] += duration

            logger.debug("Phase ended: %s (%.1fs)", phase.value, duration)

    def record_retry(self, phase: SessionPhase) -> None:
        self.metrics.phase_retries[phase.value] += 1
        self._add_point("phase_retry", 1.0, MetricType.COUNTER, {"phase": phase.value})

    def record_model_call(
        self,
        model_id: str,
        success: bool,
        duration_seconds: float,
        error_kind: str | None = None,
    ) -> None:
        """Record a model invocation."""
        self.metrics.model_invocations[model_id] += 1

        if success:
            self.metrics.model_successes[model_id] += 1
        else:
            self.metrics.model_failures[model_id] += 1
            if error_kind:
                self.metrics.failure_kinds[error_kind] += 1

        self.metrics.model_durations[model_id].append(duration_seconds)

        self._add_point(
            "model_invocation",
            1.0,
            MetricType.COUNTER,
            {"model": model_id, "success": str(success)},
        )

    def record_degraded(self, role: str) -> None:
        """Record a degraded fallback output."""
        self.metrics.degraded_results[role] += 1
        self._add_point("degraded_result", 1.0, MetricType.COUNTER, {"role": role})

    def record_fan_out(
        self,
        workers: int,
        failed: int,
        accepted: bool,
        partial: bool,
    ) -> None:
        """Record one milestone fan-out."""
        self.metrics.milestones_run += 1
        self.metrics.workers_dispatched += workers
        self.metrics.workers_failed += failed
        if partial:
            self.metrics.milestones_partial += 1
        if not accepted:
            self.metrics.milestones_rejected += 1

        self._add_point(
            "fan_out_success_rate",
            (workers - failed) / workers if workers else 0.0,
            MetricType.GAUGE,
            {"accepted": str(accepted)},
        )

    def record_error(self, error_message: str) -> None:
        """Record an error."""
        self.metrics.errors.append(error_message)

        self._add_point(
            "error",
            1.0,
            MetricType.COUNTER,
            {"message": error_message[:100]},
        )

    def complete(self, final_phase: SessionPhase | None = None) -> SessionMetrics:
        """Mark the run as finished and return final metrics."""
        self.metrics.completed_at = datetime.now(UTC)
        self.metrics.final_phase = final_phase
        self.metrics.total_duration_seconds = (
            self.metrics.completed_at - self.metrics.started_at
        ).total_seconds()

        if self.output_dir:
            self._save_metrics()

        logger.info(
            "Session run finished: %s (%.1fs)",
            self.metrics.session_id,
            self.metrics.total_duration_seconds,
        )

        return self.metrics

    def _add_point(
        self,
        name: str,
        value: float,
        metric_type: MetricType,
        labels: dict[str, str] | None = None,
    ) -> None:
        """Add a metric data point."""
        point = MetricPoint(
            name=name,
            value=value,
            metric_type=metric_type,
            labels=labels or {},
        )
        self._points.append(point)

    def _save_metrics(self) -> None:
        if not self.output_dir:
            return

        self.output_dir.mkdir(parents=True, exist_ok=True)
        session_id = self.metrics.session_id

        metrics_file = self.output_dir / f"metrics_{session_id}.json"
        metrics_file.write_text(json.dumps(self.metrics.to_dict(), indent=2), encoding="utf-8")
        (self.output_dir / f"points_{session_id}.jsonl").write_text(
            "".join(point.to_json() + "\n" for point in self._points),
            encoding="utf-8",
        )
        logger.info("Metrics for %s saved to %s", session_id, self.output_dir)
