"""Test fixtures for autodev."""

from __future__ import annotations

import asyncio
import re
import shutil
import tempfile
from pathlib import Path
from typing import Any, Callable, Generator

import pytest

from autodev.cli_adapters.base import ModelInvoker
from autodev.config.settings import CandidateConfig, Settings
from autodev.core.errors import ErrorKind, ModelInvocationError
from autodev.tracking.issues import NullIssueTracker
from autodev.vcs.git import SourceControl

_FILES_BLOCK_RE = re.compile(r"YOUR FILES:\n(.*?)\n\n", re.DOTALL)

Response = dict[str, Any] | BaseException | Callable[[str], dict[str, Any]]


def files_in_prompt(prompt: str) -> list[str]:
    """Paths listed in a coder prompt."""
    match = _FILES_BLOCK_RE.search(prompt)
    if not match:
        return []
    return [
        line[2:].strip()
        for line in match.group(1).splitlines()
        if line.startswith("- ") and not line.startswith("- (")
    ]


def code_for(prompt: str) -> dict[str, Any]:
    """Coder response writing a small module for every assigned file."""
    return {
        "files": [
            {"path": path, "content": f"# {path}\nVALUE = 1\n", "explanation": "generated"}
            for path in files_in_prompt(prompt)
        ]
    }


def timeout_error(model_id: str) -> ModelInvocationError:
    return ModelInvocationError(ErrorKind.TIMEOUT, "timed out after 1s", model_id=model_id)


class FakeInvoker(ModelInvoker):
    """
    Scripted model invoker.

    ``script[model_id]`` is consumed in order; once exhausted the model's
    ``default`` answers every call. A response may be a dict, an exception
    instance (raised) or a callable taking the prompt.
    """

    def __init__(
        self,
        script: dict[str, list[Response]] | None = None,
        defaults: dict[str, Response] | None = None,
    ) -> None:
        self.script = {k: list(v) for k, v in (script or {}).items()}
        self.defaults = dict(defaults or {})
        self.calls: list[tuple[str, str]] = []

    def calls_to(self, model_id: str) -> int:
        return sum(1 for m, _ in self.calls if m == model_id)

    async def invoke(self, model_id: str, prompt: str, timeout_seconds: float) -> dict[str, Any]:
        self.calls.append((model_id, prompt))
        queue = self.script.get(model_id)
        if queue:
            response = queue.pop(0)
        elif model_id in self.defaults:
            response = self.defaults[model_id]
        else:
            raise ModelInvocationError(ErrorKind.PROCESS_ERROR, "no scripted response", model_id=model_id)

        if callable(response) and not isinstance(response, BaseException):
            response = response(prompt)
        # Yield like a real subprocess call would
        await asyncio.sleep(0)
        if isinstance(response, BaseException):
            raise response
        return dict(response)


class FakeSourceControl(SourceControl):
    """In-memory revisions; records commits and resets."""

    def __init__(self) -> None:
        self.revisions = ["rev-0"]
        self.commits: list[str] = []
        self.resets: list[str] = []
        self.on_commit: Callable[[int], None] | None = None

    async def commit(self, message: str) -> str:
        self.commits.append(message)
        revision = f"rev-{len(self.revisions)}"
        self.revisions.append(revision)
        if self.on_commit:
            self.on_commit(len(self.commits))
        return revision

    async def head_revision(self) -> str:
        return self.revisions[-1]

    async def diff(self, from_revision: str) -> str:
        return f"diff {from_revision}..{self.revisions[-1]}"

    async def reset_hard(self, revision: str) -> None:
        self.resets.append(revision)
        if revision in self.revisions:
            del self.revisions[self.revisions.index(revision) + 1:]


async def no_sleep(seconds: float) -> None:
    """Replacement for asyncio.sleep that records nothing and returns at once."""


async def wait_for_pid(pid_file: Path, timeout: float = 10.0) -> int:
    """Wait until a child process has written its pid to ``pid_file``."""
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while loop.time() < deadline:
        if pid_file.exists() and pid_file.read_text().strip():
            return int(pid_file.read_text())
        await asyncio.sleep(0.05)
    raise AssertionError(f"no pid written to {pid_file}")


def sleeper_script(pid_file: Path) -> str:
    """Python source that records its pid then sleeps for a long time."""
    return (
        "import os, time\n"
        f"with open({str(pid_file)!r}, 'w') as f: f.write(str(os.getpid()))\n"
        "time.sleep(60)\n"
    )


class SleepRecorder:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def temp_project_dir() -> Generator[Path, None, None]:
    """Create a temporary project directory."""
    temp_dir = tempfile.mkdtemp(prefix="autodev_test_")
    yield Path(temp_dir).resolve()
    shutil.rmtree(temp_dir, ignore_errors=True)


@pytest.fixture
def settings() -> Settings:
    """Settings with one model per role and no persisted breakers."""
    s = Settings()
    s.failover.hierarchy = {
        role: [CandidateConfig(model=f"{role}-model", priority=1)]
        for role in ("analyst", "planner", "coder", "reviewer")
    }
    s.failover.persist_breakers = False
    s.failover.failure_threshold = 100
    s.aggregator.worker_count = 2
    s.aggregator.files_per_worker = 1
    s.session.create_tickets = True
    return s


@pytest.fixture
def source_control() -> FakeSourceControl:
    return FakeSourceControl()


@pytest.fixture
def tickets() -> NullIssueTracker:
    return NullIssueTracker()


@pytest.fixture
def sleep_recorder() -> SleepRecorder:
    return SleepRecorder()
