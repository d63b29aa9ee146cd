"""Ticket creation for blocked and failed sessions."""

from __future__ import annotations

import itertools
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path

from autodev.core.errors import TicketError
from autodev.core.retry_utils import TransientCommandError, retry_command
from autodev.utils.process import CommandResult, run_command

logger = logging.getLogger(__name__)


class TicketTracker(ABC):
    """Issue tracker as seen by the state machine."""

    @abstractmethod
    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> str:
        """Create an issue and return its id."""

    @abstractmethod
    async def comment(self, issue_id: str, text: str) -> None: ...

    @abstractmethod
    async def close(self, issue_id: str) -> None: ...


class GitHubIssueTracker(TicketTracker):
    """TicketTracker backed by the ``gh`` CLI in the project repository."""

    def __init__(self, repo_dir: Path, timeout: float = 60.0) -> None:
        self.repo_dir = repo_dir
        self.timeout = timeout

    @retry_command
    async def _gh(self, *args: str) -> CommandResult:
        return await run_command(["gh", *args], cwd=self.repo_dir, timeout=self.timeout)

    async def _run(self, *args: str) -> CommandResult:
        try:
            return await self._gh(*args)
        except (RuntimeError, TransientCommandError, OSError) as e:
            raise TicketError(f"gh {' '.join(args[:2])} failed: {e}") from e

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> str:
        args = ["issue", "create", "--title", title, "--body", body]
        for label in labels or []:
            args += ["--label", label]
        result = await self._run(*args)
        # gh prints the issue URL; the trailing path segment is the number
        url = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else ""
        issue_id = url.rstrip("/").rsplit("/", 1)[-1] or url
        logger.info("Created issue %s: %s", issue_id, title)
        return issue_id

    async def comment(self, issue_id: str, text: str) -> None:
        await self._run("issue", "comment", issue_id, "--body", text)

    async def close(self, issue_id: str) -> None:
        await self._run("issue", "close", issue_id)
        logger.info("Closed issue %s", issue_id)


@dataclass
class RecordedIssue:
    issue_id: str
    title: str
    body: str
    labels: list[str]
    comments: list[str] = field(default_factory=list)
    closed: bool = False


class NullIssueTracker(TicketTracker):
    """Keeps issues in memory; used when ticket creation is disabled."""

    def __init__(self) -> None:
        self.issues: dict[str, RecordedIssue] = {}
        self._ids = itertools.count(1)

    async def create_issue(self, title: str, body: str, labels: list[str] | None = None) -> str:
        issue_id = f"local-{next(self._ids)}"
        self.issues[issue_id] = RecordedIssue(issue_id, title, body, list(labels or []))
        logger.info("Recorded local issue %s: %s", issue_id, title)
        return issue_id

    async def comment(self, issue_id: str, text: str) -> None:
        if issue_id not in self.issues:
            raise TicketError(f"Unknown issue {issue_id}")
        self.issues[issue_id].comments.append(text)

    async def close(self, issue_id: str) -> None:
        if issue_id not in self.issues:
            raise TicketError(f"Unknown issue {issue_id}")
        self.issues[issue_id].closed = True
