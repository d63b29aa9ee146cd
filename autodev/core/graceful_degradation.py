"""Deterministic fallbacks when every model for a role has failed."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, UTC
from typing import Any

from autodev.core.errors import ErrorKind
from autodev.core.session import Session, SessionPhase

logger = logging.getLogger(__name__)

DEGRADED_MODELS: dict[str, str] = {
    "analyst": "degraded-analysis",
    "planner": "degraded-template",
    "coder": "degraded-manual",
    "reviewer": "degraded-static",
}

MANUAL_PLACEHOLDER = "MANUAL_IMPLEMENTATION_NEEDED.md"


@dataclass
class ModelFailure:
    """Record of one failed model call."""

    model_id: str
    kind: ErrorKind
    message: str
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))


@dataclass
class DegradedOutput:
    """Fallback output produced for a role."""

    model_id: str
    output: dict[str, Any]
    needs_user_input: bool = False


class GracefulDegradation:
    """
    Produces role-specific fallback outputs.

    - analyst: low-confidence analysis that lets planning proceed
    - planner: two-milestone template plan
    - coder: placeholder file asking for manual implementation
    - reviewer: optimistic approval with a low-severity note
    """

    def __init__(self, enabled: bool = True) -> None:
        self.enabled = enabled

    def supports(self, role: str) -> bool:
        return self.enabled and role in DEGRADED_MODELS

    def fallback(self, role: str, prompt: str, options: dict[str, Any] | None = None) -> DegradedOutput | None:
        """
        Build the fallback for ``role``.

        Returns:
            DegradedOutput, or None when degradation is disabled or the role
            has no fallback defined.
        """
        if not self.supports(role):
            return None

        options = options or {}
        builder = getattr(self, f"_{role}_fallback")
        output, needs_user_input = builder(prompt, options)
        logger.warning("Using degraded output for role %s (%s)", role, DEGRADED_MODELS[role])
        return DegradedOutput(
            model_id=DEGRADED_MODELS[role],
            output=output,
            needs_user_input=needs_user_input,
        )

    def _analyst_fallback(self, prompt: str, options: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        return {
            "understanding": "Automatic analysis unavailable, proceeding with basic assumptions",
            "complexity": "medium",
            "estimated_milestones": 2,
            "requires_planning": True,
            "confidence": 0.3,
            "risks": ["AI analysis unavailable"],
            "questions": [],
            "approach": "Manual review recommended",
        }, False

    def _planner_fallback(self, prompt: str, options: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        return {
            "milestones": [
                {
                    "name": "Setup",
                    "description": "Basic project setup",
                    "files": {"create": [], "modify": [], "delete": []},
                    "dependencies": [],
                    "tests": [],
                    "rollback": "git reset --hard",
                },
                {
                    "name": "Implementation",
                    "description": "Core implementation",
                    "files": {"create": [], "modify": [], "delete": []},
                    "dependencies": ["Setup"],
                    "tests": [],
                    "rollback": "git reset --hard",
                },
            ],
            "risks": ["Using degraded mode - manual review recommended"],
            "success_criteria": ["Code compiles", "Tests pass"],
            "estimated_time_minutes": 30,
            "confidence": 0.5,
        }, False

    def _coder_fallback(self, prompt: str, options: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        target = options.get("target_file") or MANUAL_PLACEHOLDER
        return {
            "files": [
                {
                    "path": target,
                    "content": (
                        "# Manual implementation needed\n\n"
                        "All coder models failed for this task.\n\n"
                        "## Task\n\n"
                        f"{prompt[:2000]}\n"
                    ),
                    "explanation": "Placeholder written in degraded mode",
                }
            ],
            "needs_user_input": True,
        }, True

    def _reviewer_fallback(self, prompt: str, options: dict[str, Any]) -> tuple[dict[str, Any], bool]:
        return {
            "approved": True,
            "quality_score": 70,
            "issues": [
                {
                    "severity": "low",
                    "description": "Automated review unavailable - manual review recommended",
                }
            ],
            "summary": "Review skipped due to model unavailability",
        }, False


@dataclass
class FailureReport:
    """Human-readable summary used as a ticket body."""

    session_id: str
    idea_id: str
    phase: SessionPhase
    reason: str
    question: str | None = None
    recent_errors: list[str] = field(default_factory=list)
    snapshot: dict[str, Any] = field(default_factory=dict)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def from_session(cls, session: Session, reason: str, question: str | None = None) -> FailureReport:
        failed_in = session.resume_phase or session.phase
        return cls(
            session_id=session.session_id,
            idea_id=session.idea_id,
            phase=failed_in,
            reason=reason,
            question=question,
            recent_errors=[f"[{e.phase.value}] {e.message}" for e in session.errors[-5:]],
            snapshot={
                "phase": session.phase.value,
                "progress": session.progress,
                "retry_count": session.retry_count,
                "degraded_mode": session.degraded_mode,
                "milestones": f"{len(session.milestones)}/{session.total_milestones}",
                "modified_files": len(session.modified_files),
            },
        )

    def title(self, blocked: bool) -> str:
        prefix = "Blocked" if blocked else "Failed"
        return f"[autodev] {prefix}: {self.idea_id} ({self.phase.value})"

    def to_string(self) -> str:
        """Generate the markdown report."""
        lines = [
            f"## Session `{self.session_id}`",
            "",
            f"**Idea:** {self.idea_id}",
            f"**Phase:** {self.phase.value}",
            f"**Time:** {self.timestamp.isoformat()}",
            "",
            "### Reason",
            "",
            self.reason,
        ]

        if self.question:
            lines += ["", "### Question", "", self.question]

        if self.recent_errors:
            lines += ["", "### Recent errors", ""]
            lines += [f"- {err}" for err in self.recent_errors]

        lines += ["", "### Session snapshot", ""]
        lines += [f"- {key}: {value}" for key, value in self.snapshot.items()]

        if self.question:
            lines += ["", f"Answer above, then resume with `autodev run --idea {self.idea_id} --resume`."]
        return "\n".join(lines)
