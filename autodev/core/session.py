"""Session phases and the checkpointed session record."""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, UTC
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, Field

from autodev.core.errors import ErrorClass

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1


class SessionPhase(str, Enum):
    """Phases of the execution state machine."""

    INITIALIZING = "initializing"
    ANALYZING = "analyzing"
    PLANNING = "planning"
    IMPLEMENTING = "implementing"
    REVIEWING = "reviewing"
    TESTING = "testing"
    COMPLETED = "completed"
    BLOCKED = "blocked"  # awaiting human input, resumable
    FAILED = "failed"
    INTERRUPTED = "interrupted"  # deadline or signal, resumable


TERMINAL_PHASES = frozenset({
    SessionPhase.COMPLETED,
    SessionPhase.BLOCKED,
    SessionPhase.FAILED,
    SessionPhase.INTERRUPTED,
})

RESUMABLE_PHASES = frozenset({SessionPhase.BLOCKED, SessionPhase.INTERRUPTED})

# Progress reported when a phase is entered.
PHASE_PROGRESS: dict[SessionPhase, int] = {
    SessionPhase.INITIALIZING: 5,
    SessionPhase.ANALYZING: 10,
    SessionPhase.PLANNING: 15,
    SessionPhase.IMPLEMENTING: 15,
    SessionPhase.REVIEWING: 80,
    SessionPhase.TESTING: 90,
    SessionPhase.COMPLETED: 100,
}
IMPLEMENTING_SPAN = 60


class FileTargets(BaseModel):
    """Files a milestone will create, modify or delete."""

    model_config = ConfigDict(extra="ignore")

    create: list[str] = Field(default_factory=list)
    modify: list[str] = Field(default_factory=list)
    delete: list[str] = Field(default_factory=list)

    def writable(self) -> list[str]:
        """Created and modified paths, deduplicated, in plan order."""
        return list(dict.fromkeys([*self.create, *self.modify]))


class PlanMilestone(BaseModel):
    """One unit of implementation work as produced by the planner."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    name: str
    description: str = ""
    file_targets: FileTargets = Field(default_factory=FileTargets, alias="files")
    dependencies: list[str] = Field(default_factory=list)
    tests: list[str] = Field(default_factory=list)
    rollback: str = ""


class Plan(BaseModel):
    """An implementation plan. Immutable once stored on a session."""

    model_config = ConfigDict(extra="ignore", frozen=True)

    milestones: list[PlanMilestone] = Field(default_factory=list)
    risks: list[str] = Field(default_factory=list)
    success_criteria: list[str] = Field(default_factory=list)
    estimated_time_minutes: int = 0
    confidence: float = 0.0
    source_model: str = ""
    degraded: bool = False


class MilestoneRecord(BaseModel):
    """A completed milestone. Appended to the session, never removed."""

    name: str
    description: str = ""
    file_targets: FileTargets = Field(default_factory=FileTargets)
    completed_at: datetime | None = None
    commit_revision: str | None = None
    partial_success: bool = False
    failed_files: list[str] = Field(default_factory=list)
    follow_up_issue: str | None = None


class ErrorRecord(BaseModel):
    """An error observed during a phase."""

    phase: SessionPhase
    message: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
    error_class: ErrorClass | None = None


class ProducedFile(BaseModel):
    """A file written by a coder worker."""

    model_config = ConfigDict(extra="ignore")

    path: str
    content: str = ""
    explanation: str = ""


class WorkerResult(BaseModel):
    """Outcome of one parallel worker in a milestone fan-out."""

    worker_id: int
    success: bool
    assigned_files: list[str] = Field(default_factory=list)
    produced_files: list[ProducedFile] = Field(default_factory=list)
    error_message: str | None = None
    model_used: str | None = None
    degraded: bool = False


class Session(BaseModel):
    """
    Complete state of one idea being processed.

    Everything here must survive ``to_checkpoint_dict`` /
    ``from_checkpoint_dict`` without loss, so only JSON-representable
    values are allowed.
    """

    model_config = ConfigDict(extra="ignore")

    schema_version: int = SCHEMA_VERSION

    # Identity
    session_id: str = Field(default_factory=lambda: f"session-{uuid4().hex[:12]}")
    idea_id: str
    idea_content: str = ""

    # Phase tracking
    phase: SessionPhase = SessionPhase.INITIALIZING
    resume_phase: SessionPhase | None = None
    phase_history: list[tuple[SessionPhase, datetime]] = Field(default_factory=list)

    # Budget
    started_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    updated_at: datetime = Field(default_factory=lambda: datetime.now(UTC))
    timeout_deadline: datetime | None = None
    retry_count: int = 0
    max_retries: int = 3

    degraded_mode: bool = False
    progress: int = 0

    # Work products
    analysis: dict[str, Any] | None = None
    plan: Plan | None = None
    current_milestone_index: int = 0
    milestones: list[MilestoneRecord] = Field(default_factory=list)
    modified_files: list[str] = Field(default_factory=list)
    base_revision: str | None = None
    pre_milestone_revision: str | None = None
    last_worker_results: list[WorkerResult] = Field(default_factory=list)
    review: dict[str, Any] | None = None
    test_result: dict[str, Any] | None = None

    # Errors and human loop
    errors: list[ErrorRecord] = Field(default_factory=list)
    last_error: str | None = None
    blocking_reason: str | None = None
    user_question: str | None = None
    blocking_issue: str | None = None
    interrupt_reason: str | None = None
    human_answer: str | None = None

    @property
    def total_milestones(self) -> int:
        return len(self.plan.milestones) if self.plan else 0

    @property
    def current_milestone(self) -> PlanMilestone | None:
        if self.plan is None or self.current_milestone_index >= self.total_milestones:
            return None
        return self.plan.milestones[self.current_milestone_index]

    @property
    def is_terminal(self) -> bool:
        return self.phase in TERMINAL_PHASES

    @property
    def is_resumable(self) -> bool:
        return self.phase in RESUMABLE_PHASES

    def transition_to(self, phase: SessionPhase) -> None:
        """Transition to a new phase, recording history and progress."""
        now = datetime.now(UTC)
        self.phase_history.append((self.phase, now))
        self.phase = phase
        self.updated_at = now
        self.progress = self.compute_progress()

    def add_error(
        self,
        message: str,
        *,
        phase: SessionPhase | None = None,
        error_class: ErrorClass | None = None,
    ) -> ErrorRecord:
        """Append an error record for the given (or current) phase."""
        record = ErrorRecord(
            phase=phase or self.phase,
            message=message,
            error_class=error_class,
        )
        self.errors.append(record)
        self.last_error = message
        self.updated_at = record.timestamp
        return record

    def set_plan(self, plan: Plan) -> None:
        """Store the plan. A stored plan is only replaced via ``clear_plan``."""
        if self.plan is not None:
            raise ValueError("Session already has a plan; clear it to replan")
        self.plan = plan
        self.current_milestone_index = 0

    def clear_plan(self) -> None:
        """Drop the plan so the planning phase produces a new one."""
        self.plan = None
        self.current_milestone_index = 0

    def complete_milestone(self, record: MilestoneRecord) -> None:
        """Append a milestone record and advance the milestone cursor."""
        if self.current_milestone_index >= self.total_milestones:
            raise ValueError("No milestone left to complete")
        self.milestones.append(record)
        self.current_milestone_index += 1
        self.progress = self.compute_progress()

    def add_modified_files(self, paths: list[str]) -> None:
        """Record touched paths, keeping the list free of duplicates."""
        self.modified_files = list(dict.fromkeys([*self.modified_files, *paths]))

    def compute_progress(self) -> int:
        """Progress percentage derived from phase and milestone cursor."""
        if self.phase == SessionPhase.IMPLEMENTING and self.total_milestones > 0:
            done = self.current_milestone_index / self.total_milestones
            value = PHASE_PROGRESS[SessionPhase.IMPLEMENTING] + done * IMPLEMENTING_SPAN
        else:
            value = PHASE_PROGRESS.get(self.phase, self.progress)
        return max(0, min(100, round(value)))

    def extend_deadline(self, budget: timedelta, now: datetime | None = None) -> None:
        """Set the deadline to ``now + budget``."""
        self.timeout_deadline = (now or datetime.now(UTC)) + budget

    def deadline_exceeded(self, now: datetime | None = None) -> bool:
        if self.timeout_deadline is None:
            return False
        return (now or datetime.now(UTC)) >= self.timeout_deadline

    def to_checkpoint_dict(self) -> dict[str, Any]:
        """Convert to dictionary for checkpointing."""
        return self.model_dump(mode="json")

    @classmethod
    def from_checkpoint_dict(cls, data: dict[str, Any]) -> Session:
        """Restore from checkpoint dictionary, repairing what can be repaired."""
        return cls.model_validate(repair_checkpoint_dict(data))


def repair_checkpoint_dict(data: dict[str, Any]) -> dict[str, Any]:
    """
    Deterministically fix known defects in a raw checkpoint.

    Unknown fields are left for pydantic to drop. Raises ValueError when the
    data cannot describe a session at all (no idea id).
    """
    repaired = dict(data)

    if not repaired.get("idea_id"):
        raise ValueError("Checkpoint has no idea_id")

    version = repaired.get("schema_version", SCHEMA_VERSION)
    if version > SCHEMA_VERSION:
        raise ValueError(f"Checkpoint schema {version} is newer than supported {SCHEMA_VERSION}")
    repaired["schema_version"] = SCHEMA_VERSION

    if not repaired.get("session_id"):
        repaired["session_id"] = f"recovered-{int(datetime.now(UTC).timestamp())}"
        logger.warning("Checkpoint missing session_id, assigned %s", repaired["session_id"])

    if not repaired.get("phase"):
        repaired["phase"] = SessionPhase.INITIALIZING.value

    progress = repaired.get("progress")
    if not isinstance(progress, (int, float)):
        repaired["progress"] = 0
    else:
        repaired["progress"] = max(0, min(100, int(progress)))

    plan = repaired.get("plan")
    total = len(plan.get("milestones", [])) if isinstance(plan, dict) else 0
    index = repaired.get("current_milestone_index", 0)
    if not isinstance(index, int) or index < 0:
        index = 0
    repaired["current_milestone_index"] = min(index, total)

    files = repaired.get("modified_files")
    if isinstance(files, list):
        repaired["modified_files"] = list(dict.fromkeys(str(f) for f in files))

    return repaired
