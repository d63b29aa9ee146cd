"""Git working-tree operations used around each milestone."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path

from autodev.core.errors import SourceControlError
from autodev.core.retry_utils import TransientCommandError, retry_command
from autodev.utils.process import CommandResult, run_command

logger = logging.getLogger(__name__)


class SourceControl(ABC):
    """Version control as seen by the state machine and aggregator."""

    @abstractmethod
    async def commit(self, message: str) -> str:
        """Stage everything and commit. Returns the new head revision."""

    @abstractmethod
    async def head_revision(self) -> str:
        """Current head revision id."""

    @abstractmethod
    async def diff(self, from_revision: str) -> str:
        """Diff of the working tree against ``from_revision``."""

    @abstractmethod
    async def reset_hard(self, revision: str) -> None:
        """Discard all changes back to ``revision``, untracked files included."""


class GitSourceControl(SourceControl):
    """SourceControl backed by the ``git`` CLI."""

    def __init__(self, repo_dir: Path, timeout: float = 60.0, keep_untracked: Sequence[str] = ()) -> None:
        self.repo_dir = repo_dir
        self.timeout = timeout
        # Untracked paths owned by autodev itself (checkpoints, backlog)
        self.keep_untracked = [p.strip("/") for p in keep_untracked if p.strip("/")]

    @retry_command
    async def _git(self, *args: str, check: bool = True) -> CommandResult:
        return await run_command(["git", *args], cwd=self.repo_dir, timeout=self.timeout, check=check)

    async def _run(self, *args: str, check: bool = True) -> CommandResult:
        try:
            return await self._git(*args, check=check)
        except (RuntimeError, TransientCommandError, OSError) as e:
            raise SourceControlError(f"git {args[0]} failed: {e}") from e

    async def commit(self, message: str) -> str:
        excludes = [f":(top,exclude){path}" for path in self.keep_untracked]
        await self._run("add", "-A", "--", ".", *excludes)
        result = await self._run("commit", "-m", message, check=False)
        if not result.ok:
            if "nothing to commit" in (result.stdout + result.stderr):
                logger.info("Nothing to commit for: %s", message)
            else:
                raise SourceControlError(f"git commit failed: {result.stderr.strip()[:300]}")
        revision = await self.head_revision()
        logger.info("Committed %s: %s", revision[:8], message)
        return revision

    async def head_revision(self) -> str:
        result = await self._run("rev-parse", "HEAD")
        return result.stdout.strip()

    async def diff(self, from_revision: str) -> str:
        result = await self._run("diff", from_revision)
        return result.stdout

    async def reset_hard(self, revision: str) -> None:
        """Reset to ``revision`` and remove untracked files written since."""
        logger.warning("Rolling back working tree to %s", revision[:8])
        await self._run("reset", "--hard", revision)
        excludes = [arg for path in self.keep_untracked for arg in ("-e", f"/{path}")]
        result = await self._run("clean", "-fd", *excludes)
        removed = [line for line in result.stdout.splitlines() if line.strip()]
        if removed:
            logger.info("Removed %d untracked path(s) during rollback", len(removed))
