"""Tests for ideas, resources, subprocess, git and ticket helpers."""

from __future__ import annotations

import asyncio
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio

from autodev.config.settings import ResourceSettings
from autodev.core.errors import SourceControlError, TicketError
from autodev.core.resources import ResourceMonitor, ResourceStatus
from autodev.core.retry_utils import TransientCommandError
from autodev.ideas import find_idea_file, load_idea
from autodev.tracking.issues import NullIssueTracker
from autodev.utils.process import CommandResult, run_command
from autodev.vcs.git import GitSourceControl

from conftest import sleeper_script, wait_for_pid


def status(memory: float = 50.0, disk: float = 10_000.0) -> ResourceStatus:
    return ResourceStatus(
        memory_percent=memory,
        free_disk_mb=disk,
        memory_pressure=memory > 90,
        disk_pressure=disk < 500,
    )


class TestIdeas:
    """Tests for idea loading."""

    def test_prefix_match(self, temp_project_dir: Path):
        (temp_project_dir / "IDEA-7-todo-cli.md").write_text("# Todo CLI\n\nDetails")

        idea = load_idea(temp_project_dir, "IDEA-7")

        assert idea.title == "Todo CLI"
        assert idea.path.name == "IDEA-7-todo-cli.md"

    def test_exact_match_preferred(self, temp_project_dir: Path):
        (temp_project_dir / "IDEA-1.md").write_text("exact")
        (temp_project_dir / "IDEA-10.md").write_text("other")

        assert find_idea_file(temp_project_dir, "IDEA-1").name == "IDEA-1.md"

    def test_missing_idea(self, temp_project_dir: Path):
        with pytest.raises(FileNotFoundError):
            load_idea(temp_project_dir, "IDEA-404")

    def test_empty_idea(self, temp_project_dir: Path):
        (temp_project_dir / "IDEA-2.md").write_text("  \n")
        with pytest.raises(ValueError):
            load_idea(temp_project_dir, "IDEA-2")

    def test_title_falls_back_to_id(self, temp_project_dir: Path):
        (temp_project_dir / "IDEA-3.md").write_text("no heading")
        assert load_idea(temp_project_dir, "IDEA-3").title == "IDEA-3"


class TestResourceMonitor:
    """Tests for ResourceMonitor."""

    def test_worker_count_halved_under_pressure(self, temp_project_dir: Path):
        monitor = ResourceMonitor(ResourceSettings(), temp_project_dir)

        assert monitor.effective_worker_count(4, status()) == 4
        assert monitor.effective_worker_count(4, status(memory=95)) == 2
        assert monitor.effective_worker_count(1, status(disk=10)) == 1

    def test_cleanup_runs_hooks(self, temp_project_dir: Path):
        def failing_hook() -> int:
            raise OSError("read-only")

        monitor = ResourceMonitor(ResourceSettings(), temp_project_dir, [lambda: 3, failing_hook, lambda: 2])

        assert monitor.cleanup() == 5

    def test_check_reports_values(self, temp_project_dir: Path):
        sample = ResourceMonitor(ResourceSettings(max_memory_percent=101), temp_project_dir).check()

        assert sample.memory_pressure is False
        assert sample.free_disk_mb > 0
        assert "MB disk free" in sample.describe()


class TestRunCommand:
    """Tests for run_command."""

    @pytest.mark.asyncio
    async def test_success(self):
        result = await run_command([sys.executable, "-c", "print('hi')"])
        assert result.ok
        assert result.stdout.strip() == "hi"

    @pytest.mark.asyncio
    async def test_failure_raises(self):
        with pytest.raises(RuntimeError):
            await run_command([sys.executable, "-c", "import sys; sys.exit(2)"])

    @pytest.mark.asyncio
    async def test_transient_stderr(self):
        script = "import sys; sys.stderr.write('fatal: Unable to create index.lock'); sys.exit(128)"
        with pytest.raises(TransientCommandError):
            await run_command([sys.executable, "-c", script])

    @pytest.mark.asyncio
    async def test_timeout(self):
        with pytest.raises(TransientCommandError):
            await run_command([sys.executable, "-c", "import time; time.sleep(5)"], timeout=0.2)

    @pytest.mark.asyncio
    async def test_cancel_kills_child(self, temp_project_dir: Path):
        """Cancelling the caller kills and reaps the child process."""
        pid_file = temp_project_dir / "child.pid"
        task = asyncio.create_task(run_command([sys.executable, "-c", sleeper_script(pid_file)], timeout=120))
        pid = await wait_for_pid(pid_file)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        with pytest.raises(ProcessLookupError):
            os.kill(pid, 0)

    def test_tail(self):
        result = CommandResult(["x"], 1, "\n".join(str(i) for i in range(50)), "err")
        assert result.tail(2) == "49\nerr"


class TestGitSourceControl:
    """Tests for GitSourceControl against a real repository."""

    @pytest_asyncio.fixture
    async def repo(self, temp_project_dir: Path) -> GitSourceControl:
        await run_command(["git", "init", "-q"], cwd=temp_project_dir)
        await run_command(["git", "config", "user.email", "dev@example.com"], cwd=temp_project_dir)
        await run_command(["git", "config", "user.name", "Dev"], cwd=temp_project_dir)
        (temp_project_dir / "README.md").write_text("start\n")
        await run_command(["git", "add", "-A"], cwd=temp_project_dir)
        await run_command(["git", "commit", "-q", "-m", "init"], cwd=temp_project_dir)
        return GitSourceControl(temp_project_dir, keep_untracked=["state"])

    @pytest.mark.asyncio
    async def test_commit_diff_and_reset(self, repo: GitSourceControl):
        base = await repo.head_revision()
        (repo.repo_dir / "app.py").write_text("x = 1\n")

        revision = await repo.commit("autodev: App")

        assert revision != base
        assert "app.py" in await repo.diff(base)

        await repo.reset_hard(base)
        assert await repo.head_revision() == base
        assert not (repo.repo_dir / "app.py").exists()

    @pytest.mark.asyncio
    async def test_reset_removes_untracked_but_keeps_excluded(self, repo: GitSourceControl):
        base = await repo.head_revision()
        (repo.repo_dir / "pkg").mkdir()
        (repo.repo_dir / "pkg" / "new.py").write_text("y = 2\n")
        (repo.repo_dir / "state").mkdir()
        (repo.repo_dir / "state" / "session.json").write_text("{}")

        await repo.reset_hard(base)

        assert not (repo.repo_dir / "pkg").exists()
        assert (repo.repo_dir / "state" / "session.json").exists()
        assert (repo.repo_dir / "README.md").read_text() == "start\n"

    @pytest.mark.asyncio
    async def test_commit_leaves_excluded_paths_unstaged(self, repo: GitSourceControl):
        base = await repo.head_revision()
        (repo.repo_dir / "state").mkdir()
        (repo.repo_dir / "state" / "session.json").write_text("{}")
        (repo.repo_dir / "app.py").write_text("x = 1\n")

        await repo.commit("autodev: App")
        await repo.reset_hard(base)

        assert not (repo.repo_dir / "app.py").exists()
        assert (repo.repo_dir / "state" / "session.json").exists()

    @pytest.mark.asyncio
    async def test_commit_with_nothing_to_commit(self, repo: GitSourceControl):
        head = await repo.head_revision()
        assert await repo.commit("autodev: empty") == head

    @pytest.mark.asyncio
    async def test_bad_revision_raises(self, repo: GitSourceControl):
        with pytest.raises(SourceControlError):
            await repo.reset_hard("does-not-exist")


class TestNullIssueTracker:
    """Tests for NullIssueTracker."""

    @pytest.mark.asyncio
    async def test_create_comment_close(self):
        tracker = NullIssueTracker()

        issue_id = await tracker.create_issue("Blocked", "body", ["autodev"])
        await tracker.comment(issue_id, "update")
        await tracker.close(issue_id)

        assert issue_id == "local-1"
        assert tracker.issues[issue_id].comments == ["update"]
        assert tracker.issues[issue_id].closed is True

    @pytest.mark.asyncio
    async def test_unknown_issue(self):
        with pytest.raises(TicketError):
            await NullIssueTracker().comment("local-9", "x")
