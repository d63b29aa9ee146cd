"""Resumable execution state machine driving one idea through its phases.

INITIALIZING -> ANALYZING -> PLANNING -> IMPLEMENTING (once per milestone)
-> REVIEWING -> TESTING -> COMPLETED, with BLOCKED, FAILED and INTERRUPTED
as side exits. A checkpoint is written after every phase handler.
"""

from __future__ import annotations

import asyncio
import logging
import shlex
import signal
from dataclasses import dataclass
from datetime import datetime, timedelta, UTC
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, TYPE_CHECKING

from pydantic import ValidationError

from autodev.core.aggregator import PartialSuccessAggregator
from autodev.core.circuit_breaker import CircuitBreakerRegistry
from autodev.core.errors import (
    AutodevError,
    ErrorClass,
    ErrorKind,
    MilestoneRejectedError,
    MissingInformationError,
    ModelInvocationError,
    StructuralError,
    TicketError,
    classify_error,
)
from autodev.core.failover import FailoverController, FailoverResult
from autodev.core.graceful_degradation import FailureReport
from autodev.core import prompts
from autodev.core.resources import ResourceMonitor
from autodev.core.retry_utils import exponential_backoff_ms
from autodev.core.session import (
    MilestoneRecord,
    Plan,
    Session,
    SessionPhase,
)
from autodev.core.state_manager import CheckpointStore
from autodev.metrics.observability import MetricsCollector
from autodev.utils.process import run_command

if TYPE_CHECKING:
    from autodev.cli_adapters.base import ModelInvoker
    from autodev.config.settings import Settings
    from autodev.tracking.issues import TicketTracker
    from autodev.vcs.git import SourceControl

logger = logging.getLogger(__name__)

Sleep = Callable[[float], Awaitable[None]]

HIGH_SEVERITIES = frozenset({"high", "critical"})


class Route(str, Enum):
    """Routing decision returned by a phase handler."""

    ADVANCE = "advance"  # move to next_phase
    STAY = "stay"  # run the same phase again (next milestone)
    ERROR = "error"  # classify and retry / block / fail
    BLOCK = "block"  # needs a human answer


@dataclass
class PhaseOutcome:
    route: Route
    next_phase: SessionPhase | None = None
    error: BaseException | None = None
    reason: str | None = None
    question: str | None = None

    @classmethod
    def advance(cls, phase: SessionPhase) -> PhaseOutcome:
        return cls(Route.ADVANCE, next_phase=phase)

    @classmethod
    def stay(cls) -> PhaseOutcome:
        return cls(Route.STAY)

    @classmethod
    def failure(cls, error: BaseException) -> PhaseOutcome:
        return cls(Route.ERROR, error=error)

    @classmethod
    def block(cls, reason: str, question: str) -> PhaseOutcome:
        return cls(Route.BLOCK, reason=reason, question=question)


class ExecutionStateMachine:
    """
    Top-level controller for one idea.

    Owns the phase sequence, the retry and deadline budget and checkpoint
    persistence. Model calls go through the FailoverController and
    milestone fan-outs through the PartialSuccessAggregator. Handlers never
    let an exception escape: errors become retries, blocks or failures.
    """

    def __init__(
        self,
        settings: Settings,
        store: CheckpointStore,
        failover: FailoverController,
        aggregator: PartialSuccessAggregator,
        source_control: SourceControl,
        tickets: TicketTracker,
        project_root: Path,
        *,
        resources: ResourceMonitor | None = None,
        metrics_dir: Path | None = None,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.settings = settings
        self.store = store
        self.failover = failover
        self.aggregator = aggregator
        self.source_control = source_control
        self.tickets = tickets
        self.project_root = project_root.resolve()
        self.resources = resources
        self.metrics_dir = metrics_dir
        self._sleep = sleep

        self._worker_cap = settings.aggregator.worker_count
        self._shutdown_reason: str | None = None
        self._task: asyncio.Task[Any] | None = None
        self._last_good: Session | None = None
        self.metrics: MetricsCollector | None = None

        self._handlers = {
            SessionPhase.INITIALIZING: self._phase_initializing,
            SessionPhase.ANALYZING: self._phase_analyzing,
            SessionPhase.PLANNING: self._phase_planning,
            SessionPhase.IMPLEMENTING: self._phase_implementing,
            SessionPhase.REVIEWING: self._phase_reviewing,
            SessionPhase.TESTING: self._phase_testing,
        }

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        project_root: Path,
        invoker: ModelInvoker,
        source_control: SourceControl,
        tickets: TicketTracker,
        **kwargs: Any,
    ) -> ExecutionStateMachine:
        """Wire the default collaborators from configuration."""
        project_root = project_root.resolve()
        state_dir = project_root / settings.state_dir
        store = CheckpointStore(state_dir)

        fo = settings.failover
        breakers = CircuitBreakerRegistry(
            failure_threshold=fo.failure_threshold,
            reset_timeout=fo.reset_timeout,
            monitoring_period=fo.monitoring_period,
            state_file=state_dir / "circuit_state.json" if fo.persist_breakers else None,
        )
        failover = FailoverController.from_settings(fo, invoker, breakers)
        aggregator = PartialSuccessAggregator(
            failover,
            source_control,
            project_root,
            min_success_rate=settings.aggregator.min_success_rate,
            commit_prefix=settings.aggregator.commit_prefix,
            files_per_worker=settings.aggregator.files_per_worker,
            call_timeout=settings.get_timeout_for_role("coder"),
        )
        resources = ResourceMonitor(
            settings.resources,
            project_root,
            cleanup_hooks=[lambda: store.prune_backups(settings.resources.backups_to_keep_under_pressure)],
        )
        return cls(
            settings,
            store,
            failover,
            aggregator,
            source_control,
            tickets,
            project_root,
            resources=resources,
            metrics_dir=state_dir / "metrics",
            **kwargs,
        )

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @property
    def budget(self) -> timedelta:
        return timedelta(minutes=self.settings.session.timeout_minutes)

    async def start(
        self,
        idea_id: str,
        idea_content: str,
        *,
        resume: bool = False,
        answer: str | None = None,
        replan: bool = False,
    ) -> Session:
        """
        Create a new session, or resume the latest resumable one for the idea.

        Args:
            idea_id: Backlog idea identifier.
            idea_content: Idea text (replaces the stored text on resume).
            resume: Look for a checkpoint to continue.
            answer: Human answer to the question a blocked session asked.
            replan: Discard the stored plan (only before any milestone ran).
        """
        session: Session | None = None
        if resume:
            session = await self.store.find_latest_for_idea(idea_id)
            if session is None:
                logger.info("No resumable checkpoint for %s, starting a new session", idea_id)
            else:
                self._prepare_resume(session, idea_content, answer, replan)

        if session is None:
            session = Session(
                idea_id=idea_id,
                idea_content=idea_content,
                max_retries=self.settings.session.max_retries,
                human_answer=answer,
            )
            session.extend_deadline(self.budget)
            logger.info("Started session %s for idea %s", session.session_id, idea_id)

        await self._checkpoint(session, "resume" if resume else "start")
        return session

    def _prepare_resume(
        self,
        session: Session,
        idea_content: str,
        answer: str | None,
        replan: bool,
    ) -> None:
        if session.is_resumable:
            target = session.resume_phase or SessionPhase.INITIALIZING
        else:
            # Crashed mid-run: re-enter the persisted phase
            target = session.phase

        session.retry_count = 0
        session.max_retries = self.settings.session.max_retries
        session.extend_deadline(self.budget)
        session.blocking_reason = None
        session.user_question = None
        session.interrupt_reason = None
        session.last_error = None
        if idea_content:
            session.idea_content = idea_content
        if answer:
            session.human_answer = answer

        if replan:
            if session.milestones:
                logger.warning("Ignoring replan: %d milestone(s) already committed", len(session.milestones))
            else:
                session.clear_plan()
                target = SessionPhase.PLANNING

        if session.phase != target:
            session.transition_to(target)
        session.resume_phase = None
        logger.info(
            "Resuming session %s at %s (milestone %d/%d)",
            session.session_id,
            target.value,
            session.current_milestone_index,
            session.total_milestones,
        )

    async def execute(self, idea_id: str, idea_content: str, **start_kwargs: Any) -> Session:
        """``start`` followed by ``run``."""
        session = await self.start(idea_id, idea_content, **start_kwargs)
        return await self.run(session)

    def request_shutdown(self, reason: str = "shutdown requested") -> None:
        """Snapshot the last-known-good session as interrupted and stop."""
        if self._shutdown_reason is not None:
            return
        logger.warning("Shutdown requested: %s", reason)
        self._shutdown_reason = reason
        if self._task is not None and not self._task.done():
            self._task.cancel()

    async def run(self, session: Session) -> Session:
        """
        Drive ``session`` until it reaches a terminal phase.

        Returns:
            The session in COMPLETED, BLOCKED, FAILED or INTERRUPTED.
        """
        self._task = asyncio.current_task()
        self._shutdown_reason = None
        self._last_good = session.model_copy(deep=True)
        self.metrics = MetricsCollector(session.session_id, self.metrics_dir)
        self.failover.metrics = self.metrics
        self.aggregator.metrics = self.metrics
        installed = self._install_signal_handlers()

        try:
            while not session.is_terminal:
                if session.deadline_exceeded():
                    self._mark_interrupted(session, "session deadline exceeded")
                    await self._checkpoint(session, "deadline")
                    break

                delay = await self._step(session)
                if await self._checkpoint(session, session.phase.value):
                    self._last_good = session.model_copy(deep=True)

                if delay:
                    logger.info("Retrying %s in %.1fs", session.phase.value, delay)
                    await self._sleep(delay)

        except asyncio.CancelledError:
            if self._shutdown_reason is None:
                raise
            task = asyncio.current_task()
            if task is not None:
                task.uncancel()
            session = self._last_good or session
            self._mark_interrupted(session, self._shutdown_reason)
            try:
                self.store.save_sync(session, reason="shutdown")
            except OSError as e:
                logger.error("Shutdown checkpoint for %s not written: %s", session.session_id, e)

        finally:
            self._remove_signal_handlers(installed)
            self._task = None
            try:
                self.metrics.complete(session.phase)
            except OSError as e:
                logger.error("Could not write metrics for %s: %s", session.session_id, e)

        logger.info(
            "Session %s finished in %s (progress %d%%)",
            session.session_id,
            session.phase.value,
            session.progress,
        )
        return session

    async def _checkpoint(self, session: Session, reason: str) -> bool:
        """
        Persist ``session``, treating a failed write as resource pressure.

        The write is retried once after mitigation. If it still fails the
        session ends FAILED and False is returned.
        """
        for attempt in (1, 2):
            try:
                await self.store.save(session, reason=reason)
                return True
            except OSError as e:
                message = f"Checkpoint write failed: {e}"
                session.add_error(message, error_class=ErrorClass.RESOURCE)
                if self.metrics:
                    self.metrics.record_error(message)
                logger.error("%s (attempt %d)", message, attempt)
                self._mitigate_resource_pressure()

        if not session.is_terminal:
            await self._enter_terminal(
                session,
                SessionPhase.FAILED,
                "Resource exhaustion persisted after mitigation: checkpoint could not be written",
            )
        return False

    async def _step(self, session: Session) -> float:
        """Run one handler and apply its outcome. Returns a retry delay in seconds."""
        phase = session.phase
        handler = self._handlers[phase]

        assert self.metrics is not None
        self.metrics.start_phase(phase)
        try:
            outcome = await handler(session)
        except Exception as e:
            outcome = PhaseOutcome.failure(e)
        finally:
            self.metrics.end_phase(phase)

        return await self._apply(session, outcome)

    async def _apply(self, session: Session, outcome: PhaseOutcome) -> float:
        if outcome.route is Route.ADVANCE:
            assert outcome.next_phase is not None
            session.retry_count = 0
            session.transition_to(outcome.next_phase)
            if outcome.next_phase is SessionPhase.COMPLETED:
                await self._on_completed(session)
            return 0.0

        if outcome.route is Route.STAY:
            session.retry_count = 0
            return 0.0

        if outcome.route is Route.BLOCK:
            await self._enter_terminal(
                session,
                SessionPhase.BLOCKED,
                outcome.reason or "Human input required",
                outcome.question,
            )
            return 0.0

        assert outcome.error is not None
        return await self._handle_error(session, outcome.error)

    async def _handle_error(self, session: Session, error: BaseException) -> float:
        error_class = classify_error(error)
        message = str(error) or type(error).__name__
        session.add_error(message, error_class=error_class)
        if self.metrics:
            self.metrics.record_error(message)
        logger.error("Phase %s failed (%s): %s", session.phase.value, error_class.value, message)

        if isinstance(error, MissingInformationError):
            await self._enter_terminal(session, SessionPhase.BLOCKED, message, error.question)
            return 0.0

        if error_class is ErrorClass.STRUCTURAL:
            await self._enter_terminal(
                session,
                SessionPhase.BLOCKED,
                f"Structural problem: {message}",
                "The generated changes conflict. Resolve the conflict (or adjust the plan) and resume.",
            )
            return 0.0

        if error_class is ErrorClass.FATAL:
            await self._enter_terminal(session, SessionPhase.FAILED, f"Unrecoverable error: {message}")
            return 0.0

        if error_class is ErrorClass.RESOURCE:
            self._mitigate_resource_pressure()

        if session.retry_count >= session.max_retries:
            if error_class is ErrorClass.RESOURCE:
                await self._enter_terminal(
                    session,
                    SessionPhase.FAILED,
                    f"Resource exhaustion persisted after mitigation: {message}",
                )
            else:
                await self._enter_terminal(
                    session,
                    SessionPhase.BLOCKED,
                    f"Retries exhausted in {session.phase.value}: {message}",
                    f"{session.phase.value} failed {len(session.errors)} time(s). "
                    "Check model availability or the idea, then resume.",
                )
            return 0.0

        session.retry_count += 1
        if self.metrics:
            self.metrics.record_retry(session.phase)
        return exponential_backoff_ms(session.retry_count) / 1000

    def _mitigate_resource_pressure(self) -> None:
        self._worker_cap = max(1, self._worker_cap // 2)
        if self.resources:
            self.resources.cleanup()
        logger.warning("Resource pressure: worker cap lowered to %d", self._worker_cap)

    def _mark_interrupted(self, session: Session, reason: str) -> None:
        if session.is_terminal:
            return
        session.resume_phase = session.phase
        session.interrupt_reason = reason
        session.transition_to(SessionPhase.INTERRUPTED)
        logger.warning(
            "Session %s interrupted in %s: %s",
            session.session_id,
            session.resume_phase.value,
            reason,
        )

    async def _enter_terminal(
        self,
        session: Session,
        phase: SessionPhase,
        reason: str,
        question: str | None = None,
    ) -> None:
        blocked = phase is SessionPhase.BLOCKED
        session.resume_phase = session.phase
        if blocked:
            session.blocking_reason = reason
            session.user_question = question
            # The answer that got us here has been used
            session.human_answer = None
        session.transition_to(phase)
        logger.warning("Session %s %s: %s", session.session_id, phase.value, reason)

        if not self.settings.session.create_tickets:
            return

        report = FailureReport.from_session(session, reason, question if blocked else None)
        try:
            if session.blocking_issue:
                await self.tickets.comment(session.blocking_issue, report.to_string())
            else:
                session.blocking_issue = await self.tickets.create_issue(
                    title=report.title(blocked),
                    body=report.to_string(),
                    labels=["autodev", phase.value],
                )
        except (TicketError, OSError) as e:
            logger.error("Could not create ticket for %s: %s", session.session_id, e)
            session.add_error(f"Ticket creation failed: {e}", error_class=ErrorClass.TRANSIENT)

    async def _on_completed(self, session: Session) -> None:
        logger.info("Session %s completed", session.session_id)
        if not session.blocking_issue:
            return
        try:
            await self.tickets.comment(session.blocking_issue, "Resolved: session completed.")
            await self.tickets.close(session.blocking_issue)
        except (TicketError, OSError) as e:
            logger.warning("Could not close issue %s: %s", session.blocking_issue, e)
            session.add_error(f"Ticket close failed: {e}", error_class=ErrorClass.TRANSIENT)

    # ------------------------------------------------------------------
    # Signals
    # ------------------------------------------------------------------

    def _install_signal_handlers(self) -> list[signal.Signals]:
        loop = asyncio.get_running_loop()
        installed = []
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_shutdown, f"received {sig.name}")
            except (NotImplementedError, RuntimeError, ValueError):
                # Not supported on this platform or not in the main thread
                continue
            installed.append(sig)
        return installed

    def _remove_signal_handlers(self, installed: list[signal.Signals]) -> None:
        if not installed:
            return
        loop = asyncio.get_running_loop()
        for sig in installed:
            loop.remove_signal_handler(sig)

    # ------------------------------------------------------------------
    # Phase handlers
    # ------------------------------------------------------------------

    async def _call(self, role: str, prompt: str, **options: Any) -> FailoverResult:
        options.setdefault("timeout_seconds", self.settings.get_timeout_for_role(role))
        result = await self.failover.execute_with_failover(role, prompt, options)
        if not result.success:
            kind = result.errors[-1].kind if result.errors else ErrorKind.UNKNOWN
            raise ModelInvocationError(kind, f"All {role} models failed: {result.error_summary}")
        return result

    async def _phase_initializing(self, session: Session) -> PhaseOutcome:
        if not session.idea_content.strip():
            raise MissingInformationError(
                f"Idea {session.idea_id} has no content",
                question=f"Please describe idea {session.idea_id} in its backlog file.",
            )

        if self.resources:
            status = self.resources.check()
            logger.info("Resources: %s", status.describe())

        if session.base_revision is None:
            session.base_revision = await self.source_control.head_revision()
        return PhaseOutcome.advance(SessionPhase.ANALYZING)

    async def _phase_analyzing(self, session: Session) -> PhaseOutcome:
        result = await self._call("analyst", prompts.analyst_prompt(session.idea_content))
        analysis = dict(result.output or {})
        session.analysis = analysis
        if result.degraded:
            session.degraded_mode = True

        confidence = _as_float(analysis.get("confidence"))
        questions = [str(q) for q in analysis.get("questions") or [] if str(q).strip()]
        logger.info("Analysis confidence %.2f via %s", confidence, result.model_used)

        threshold = self.settings.session.analysis_question_threshold
        if questions and confidence < threshold and not session.human_answer:
            return PhaseOutcome.block(
                f"Analysis confidence {confidence:.2f} below {threshold:.2f} with open questions",
                questions[0],
            )
        return PhaseOutcome.advance(SessionPhase.PLANNING)

    async def _phase_planning(self, session: Session) -> PhaseOutcome:
        if session.plan is None:
            result = await self._call(
                "planner",
                prompts.planner_prompt(session.idea_content, session.analysis, session.human_answer),
            )
            try:
                plan = Plan.model_validate({
                    **(result.output or {}),
                    "source_model": result.model_used or "",
                    "degraded": result.degraded,
                })
            except ValidationError as e:
                raise ModelInvocationError(
                    ErrorKind.MALFORMED_OUTPUT,
                    f"Plan did not validate: {e.error_count()} error(s)",
                    model_id=result.model_used or "",
                ) from e
            if not plan.milestones:
                raise ModelInvocationError(
                    ErrorKind.MALFORMED_OUTPUT,
                    "No milestones in plan",
                    model_id=result.model_used or "",
                )
            session.set_plan(plan)
            if plan.degraded:
                session.degraded_mode = True
            logger.info("Plan created: %d milestone(s) via %s", len(plan.milestones), plan.source_model)

        plan = session.plan
        assert plan is not None
        threshold = (
            self.settings.session.degraded_confidence_floor
            if plan.degraded
            else self.settings.session.confidence_threshold
        )
        if plan.confidence < threshold:
            if not session.human_answer:
                risks = ", ".join(plan.risks) or "none listed"
                return PhaseOutcome.block(
                    f"Plan confidence {plan.confidence:.2f} below {threshold:.2f}",
                    f"Plan confidence is {plan.confidence:.2f}. Risks: {risks}. Proceed with this plan?",
                )
            logger.warning("Low plan confidence %.2f accepted by human answer", plan.confidence)

        return PhaseOutcome.advance(SessionPhase.IMPLEMENTING)

    async def _phase_implementing(self, session: Session) -> PhaseOutcome:
        milestone = session.current_milestone
        if milestone is None:
            return PhaseOutcome.advance(SessionPhase.REVIEWING)

        workers = min(self.settings.aggregator.worker_count, self._worker_cap)
        if self.resources:
            status = self.resources.check()
            if status.under_pressure:
                self.resources.cleanup()
            workers = self.resources.effective_worker_count(workers, status)

        logger.info(
            "Milestone %d/%d: %s (%d worker(s))",
            session.current_milestone_index + 1,
            session.total_milestones,
            milestone.name,
            workers,
        )

        pre_revision = await self.source_control.head_revision()
        session.pre_milestone_revision = pre_revision

        try:
            outcome = await self.aggregator.run_milestone(milestone, workers)
        except Exception:
            await self._rollback(pre_revision)
            raise

        session.last_worker_results = outcome.worker_results

        if outcome.conflicts:
            raise StructuralError("; ".join(str(c) for c in outcome.conflicts))

        if not outcome.accepted:
            await self._rollback(pre_revision)
            raise MilestoneRejectedError(
                f"Milestone {milestone.name!r} rejected: "
                f"{outcome.failed_worker_count}/{len(outcome.worker_results)} workers failed"
            )

        record = MilestoneRecord(
            name=milestone.name,
            description=milestone.description,
            file_targets=milestone.file_targets,
            completed_at=datetime.now(UTC),
            commit_revision=outcome.commit_revision,
            partial_success=outcome.partial_success,
            failed_files=outcome.failed_files,
        )
        if outcome.degraded:
            session.degraded_mode = True
        if outcome.partial_success or outcome.needs_user_input:
            record.follow_up_issue = await self._follow_up_ticket(session, record, outcome.placeholder_files)

        session.complete_milestone(record)
        session.add_modified_files(outcome.applied_files)

        if session.current_milestone is None:
            return PhaseOutcome.advance(SessionPhase.REVIEWING)
        return PhaseOutcome.stay()

    async def _rollback(self, revision: str) -> None:
        try:
            await self.source_control.reset_hard(revision)
        except AutodevError as e:
            logger.error("Rollback to %s failed: %s", revision, e)
            raise

    async def _follow_up_ticket(
        self,
        session: Session,
        record: MilestoneRecord,
        placeholders: list[str],
    ) -> str | None:
        if not self.settings.session.create_tickets:
            return None
        lines = [
            f"Milestone **{record.name}** of idea {session.idea_id} was committed "
            f"({(record.commit_revision or '')[:8]}) but needs follow-up.",
            "",
        ]
        if record.failed_files:
            lines.append("Files whose workers failed:")
            lines += [f"- {path}" for path in record.failed_files]
        if placeholders:
            lines.append("Placeholders awaiting manual implementation:")
            lines += [f"- {path}" for path in placeholders]
        try:
            return await self.tickets.create_issue(
                title=f"[autodev] Follow-up: {record.name} ({session.idea_id})",
                body="\n".join(lines),
                labels=["autodev", "follow-up"],
            )
        except (TicketError, OSError) as e:
            logger.error("Could not create follow-up ticket: %s", e)
            session.add_error(f"Follow-up ticket failed: {e}", error_class=ErrorClass.TRANSIENT)
            return None

    async def _phase_reviewing(self, session: Session) -> PhaseOutcome:
        diff = await self.source_control.diff(session.base_revision) if session.base_revision else ""
        result = await self._call("reviewer", prompts.reviewer_prompt(session.plan, diff))
        review = dict(result.output or {})
        session.review = review

        if result.degraded:
            session.degraded_mode = True
            logger.warning("Continuing with degraded review")
            return PhaseOutcome.advance(SessionPhase.TESTING)

        issues = [i for i in review.get("issues") or [] if isinstance(i, dict)]
        high = [i for i in issues if str(i.get("severity", "")).lower() in HIGH_SEVERITIES]
        approved = bool(review.get("approved"))

        if (not approved or high) and not session.human_answer:
            summary = "; ".join(str(i.get("description", "")) for i in high) or review.get("summary") or ""
            return PhaseOutcome.block(
                "Review did not approve the changes",
                f"The reviewer raised: {summary or 'no approval'}. Accept the changes as they are?",
            )
        return PhaseOutcome.advance(SessionPhase.TESTING)

    async def _phase_testing(self, session: Session) -> PhaseOutcome:
        command = self.settings.session.test_command
        if not command:
            session.test_result = {"skipped": True, "passed": True}
            return PhaseOutcome.advance(SessionPhase.COMPLETED)

        result = await run_command(
            shlex.split(command),
            cwd=self.project_root,
            timeout=self.settings.session.test_timeout,
            check=False,
        )
        session.test_result = {
            "command": command,
            "passed": result.ok,
            "returncode": result.returncode,
            "output_tail": result.tail(),
        }
        if result.ok:
            return PhaseOutcome.advance(SessionPhase.COMPLETED)

        return PhaseOutcome.block(
            f"Tests failed (exit {result.returncode})",
            f"`{command}` failed:\n\n{result.tail(20)}\n\nFix the failures and resume.",
        )


def _as_float(value: Any) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return 0.0
