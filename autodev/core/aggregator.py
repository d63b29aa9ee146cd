"""Parallel milestone fan-out with partial-success acceptance."""

from __future__ import annotations

import asyncio
import logging
import math
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, TYPE_CHECKING

from pydantic import ValidationError

from autodev.core.conflicts import Conflict, find_conflicts, normalize_outputs
from autodev.core.errors import StructuralError
from autodev.core.prompts import coder_prompt
from autodev.core.session import PlanMilestone, ProducedFile, WorkerResult
from autodev.utils.sanitization import PromptSanitizer

if TYPE_CHECKING:
    from autodev.core.failover import FailoverController
    from autodev.metrics.observability import MetricsCollector
    from autodev.vcs.git import SourceControl

logger = logging.getLogger(__name__)

# Success rates are compared with this tolerance so 2/4 == 0.5 exactly.
RATE_EPSILON = 1e-9

# Appended to an existing file's path for its degraded placeholder
MANUAL_SUFFIX = ".manual.md"


@dataclass
class MilestoneOutcome:
    """Decision and effects of one milestone fan-out."""

    accepted: bool
    applied_files: list[str] = field(default_factory=list)
    failed_worker_count: int = 0
    should_rollback: bool = False
    partial_success: bool = False
    conflicts: list[Conflict] = field(default_factory=list)
    failed_files: list[str] = field(default_factory=list)
    success_rate: float = 0.0
    commit_revision: str | None = None
    degraded: bool = False
    needs_user_input: bool = False
    placeholder_files: list[str] = field(default_factory=list)
    worker_results: list[WorkerResult] = field(default_factory=list)


def partition_files(files: list[str], worker_count: int, files_per_worker: int = 1) -> list[list[str]]:
    """
    Split ``files`` into contiguous, disjoint, non-empty subsets.

    At most ``worker_count`` subsets; each subset holds at least
    ``files_per_worker`` files where the total allows. No files yields a
    single empty subset.
    """
    files = list(dict.fromkeys(files))
    if not files:
        return [[]]

    count = max(1, min(worker_count, math.ceil(len(files) / max(1, files_per_worker))))
    size, extra = divmod(len(files), count)

    subsets: list[list[str]] = []
    start = 0
    for i in range(count):
        end = start + size + (1 if i < extra else 0)
        subsets.append(files[start:end])
        start = end
    return subsets


class PartialSuccessAggregator:
    """
    Fans a milestone out to concurrent coder workers and reconciles results.

    Workers own disjoint file subsets and only return content; the single
    apply-and-commit step runs after every worker has finished.
    """

    def __init__(
        self,
        failover: FailoverController,
        source_control: SourceControl,
        project_root: Path,
        *,
        min_success_rate: float = 0.5,
        commit_prefix: str = "autodev",
        files_per_worker: int = 1,
        call_timeout: float = 300.0,
        metrics: MetricsCollector | None = None,
    ) -> None:
        self.failover = failover
        self.source_control = source_control
        self.project_root = project_root.resolve()
        self.sanitizer = PromptSanitizer(self.project_root)
        self.min_success_rate = min_success_rate
        self.commit_prefix = commit_prefix
        self.files_per_worker = files_per_worker
        self.call_timeout = call_timeout
        self.metrics = metrics

    async def run_milestone(self, milestone: PlanMilestone, worker_count: int) -> MilestoneOutcome:
        """
        Run one milestone.

        Returns:
            MilestoneOutcome. On rejection nothing has been written and
            ``should_rollback`` is set; the caller resets to its
            pre-milestone revision. On conflict nothing has been written.

        Raises:
            PathTraversalError: A worker produced a path outside the project.
            StructuralError: A produced path collides with an existing
                directory, or a parent of it is a file. Nothing is written.
            SourceControlError: The commit failed.
        """
        subsets = partition_files(milestone.file_targets.writable(), worker_count, self.files_per_worker)
        logger.info("Milestone %r: dispatching %d worker(s)", milestone.name, len(subsets))

        raw_results = await asyncio.gather(
            *(self._run_worker(i, subset, milestone) for i, subset in enumerate(subsets)),
            return_exceptions=True,
        )

        results: list[WorkerResult] = []
        for i, raw in enumerate(raw_results):
            if isinstance(raw, BaseException):
                if isinstance(raw, asyncio.CancelledError):
                    raise raw
                logger.error("Worker %d raised: %s", i, raw)
                results.append(WorkerResult(
                    worker_id=i,
                    success=False,
                    assigned_files=subsets[i],
                    error_message=str(raw) or type(raw).__name__,
                ))
            else:
                results.append(raw)

        succeeded = [r for r in results if r.success]
        failed = [r for r in results if not r.success]
        success_rate = len(succeeded) / len(results)
        failed_files = [f for r in failed for f in r.assigned_files]

        outcome = MilestoneOutcome(
            accepted=False,
            failed_worker_count=len(failed),
            success_rate=success_rate,
            failed_files=failed_files,
            worker_results=results,
            degraded=any(r.degraded for r in succeeded),
        )

        if success_rate + RATE_EPSILON < self.min_success_rate:
            logger.warning(
                "Milestone %r rejected: %d/%d workers succeeded (minimum %.0f%%)",
                milestone.name,
                len(succeeded),
                len(results),
                self.min_success_rate * 100,
            )
            outcome.should_rollback = True
            self._record(outcome, len(results))
            return outcome

        normalize_outputs(succeeded)
        conflicts = find_conflicts(succeeded)
        if conflicts:
            for conflict in conflicts:
                logger.error("Conflict in milestone %r: %s", milestone.name, conflict)
            outcome.conflicts = conflicts
            self._record(outcome, len(results))
            return outcome

        outcome.applied_files = self._apply(succeeded, milestone)
        outcome.commit_revision = await self.source_control.commit(f"{self.commit_prefix}: {milestone.name}")
        outcome.accepted = True
        outcome.partial_success = success_rate < 1.0 - RATE_EPSILON
        outcome.placeholder_files = [
            self.sanitizer.relative_path(f.path) for r in succeeded if r.degraded for f in r.produced_files
        ]
        outcome.needs_user_input = bool(outcome.placeholder_files)

        if outcome.partial_success:
            logger.warning(
                "Milestone %r partially accepted: %d/%d workers, %d file(s) left for follow-up",
                milestone.name,
                len(succeeded),
                len(results),
                len(failed_files),
            )
        self._record(outcome, len(results))
        return outcome

    async def _run_worker(self, worker_id: int, files: list[str], milestone: PlanMilestone) -> WorkerResult:
        options: dict[str, Any] = {"timeout_seconds": self.call_timeout}
        if files:
            options["target_file"] = self._placeholder_target(files[0])

        result = await self.failover.execute_with_failover("coder", coder_prompt(milestone, files), options)
        if not result.success:
            return WorkerResult(
                worker_id=worker_id,
                success=False,
                assigned_files=files,
                error_message=result.error_summary,
            )

        try:
            produced = self._produced_files(result.output or {})
        except ValidationError as e:
            return WorkerResult(
                worker_id=worker_id,
                success=False,
                assigned_files=files,
                error_message=f"Malformed coder output: {e.error_count()} error(s)",
                model_used=result.model_used,
            )

        if files and not produced:
            return WorkerResult(
                worker_id=worker_id,
                success=False,
                assigned_files=files,
                error_message="Coder returned no files",
                model_used=result.model_used,
            )

        return WorkerResult(
            worker_id=worker_id,
            success=True,
            assigned_files=files,
            produced_files=produced,
            model_used=result.model_used,
            degraded=result.degraded,
        )

    @staticmethod
    def _produced_files(output: dict[str, Any]) -> list[ProducedFile]:
        entries = output.get("files")
        if entries is None and "path" in output:
            entries = [output]
        return [ProducedFile.model_validate(entry) for entry in entries or []]

    def _placeholder_target(self, path: str) -> str:
        """Path a degraded coder writes to; an existing file is never replaced."""
        if (self.project_root / path).is_file():
            return f"{path}{MANUAL_SUFFIX}"
        return path

    def _apply(self, results: list[WorkerResult], milestone: PlanMilestone) -> list[str]:
        """Write accepted files and apply deletions. Paths are validated first."""
        writes: list[tuple[Path, str, str]] = []
        for result in results:
            for produced in result.produced_files:
                target = self.sanitizer.sanitize_file_path(produced.path)
                writes.append((target, self.sanitizer.relative_path(produced.path), produced.content))
        deletes = [self.sanitizer.sanitize_file_path(p) for p in milestone.file_targets.delete]
        for target, relative, _ in writes:
            self._check_writable(target, relative)
        for target in deletes:
            if target.is_dir():
                raise StructuralError(f"Cannot delete {target.relative_to(self.project_root).as_posix()}: it is a directory")

        applied: list[str] = []
        for target, relative, content in writes:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_text(content, encoding="utf-8")
            applied.append(relative)
            logger.info("Wrote %s", relative)

        for target in deletes:
            if target.exists():
                target.unlink()
                applied.append(target.relative_to(self.project_root).as_posix())
                logger.info("Deleted %s", target)

        return list(dict.fromkeys(applied))

    def _check_writable(self, target: Path, relative: str) -> None:
        if target.is_dir():
            raise StructuralError(f"Cannot write {relative}: an existing directory has that path")
        for parent in target.parents:
            if parent == self.project_root:
                break
            if parent.exists() and not parent.is_dir():
                raise StructuralError(
                    f"Cannot write {relative}: {parent.relative_to(self.project_root).as_posix()} is a file"
                )

    def _record(self, outcome: MilestoneOutcome, workers: int) -> None:
        if self.metrics:
            self.metrics.record_fan_out(
                workers=workers,
                failed=outcome.failed_worker_count,
                accepted=outcome.accepted,
                partial=outcome.partial_success,
            )
