"""Base classes for model invokers backed by AI coding CLIs."""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import sys
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

from autodev.core.errors import ErrorKind, ModelInvocationError
from autodev.utils.json_parser import JSONParseError, RobustJSONParser
from autodev.utils.process import communicate_or_kill
from autodev.utils.sanitization import PromptSanitizer

logger = logging.getLogger(__name__)


def find_npm_executable(name: str) -> str | None:
    """
    Find an npm-installed CLI executable, handling Windows .cmd files.

    Returns:
        Full path to executable, or None if not found.
    """
    exe = shutil.which(name)
    if exe:
        return exe

    if sys.platform == "win32":
        exe = shutil.which(f"{name}.cmd")
        if exe:
            return exe

        npm_path = Path(os.environ.get("APPDATA", "")) / "npm" / f"{name}.cmd"
        if npm_path.exists():
            return str(npm_path)

    return None


@dataclass
class CLIResult:
    """Raw result of one CLI process run."""

    cli_name: str
    exit_code: int
    stdout: str
    stderr: str
    duration_seconds: float = 0.0
    metadata: dict[str, Any] = field(default_factory=dict)

    @property
    def output(self) -> str:
        """Primary output (stdout, or stderr if stdout is empty)."""
        return self.stdout.strip() or self.stderr.strip()


class ModelInvoker(ABC):
    """
    Executes one model call.

    Implementations return the structured (JSON object) output of the model
    or raise ModelInvocationError with a typed kind.
    """

    @abstractmethod
    async def invoke(self, model_id: str, prompt: str, timeout_seconds: float) -> dict[str, Any]:
        """
        Invoke ``model_id`` with ``prompt``.

        Raises:
            ModelInvocationError: timeout, malformed_output, rate_limited,
                auth_failed or process_error.
        """


class CLIModelInvoker(ModelInvoker):
    """
    Shared subprocess plumbing for CLI-backed invokers.

    Subclasses provide the argv and the text extraction for their CLI's
    output format.
    """

    CLI_NAME = ""
    INSTALL_HINT = ""

    def __init__(
        self,
        working_dir: Path | None = None,
        sanitizer: PromptSanitizer | None = None,
        parser: RobustJSONParser | None = None,
    ) -> None:
        self.working_dir = working_dir
        self.sanitizer = sanitizer or PromptSanitizer()
        self.parser = parser or RobustJSONParser()
        self._executable: str | None = None

    @property
    def executable(self) -> str | None:
        if self._executable is None:
            self._executable = find_npm_executable(self.CLI_NAME)
        return self._executable

    @property
    def is_available(self) -> bool:
        return self.executable is not None

    @abstractmethod
    def build_args(self, model_id: str, prompt: str) -> list[str]:
        """CLI arguments (without the executable)."""

    @abstractmethod
    def extract_text(self, stdout: str) -> str:
        """Model text from the CLI's raw stdout."""

    async def invoke(self, model_id: str, prompt: str, timeout_seconds: float) -> dict[str, Any]:
        if not self.is_available:
            raise ModelInvocationError(
                ErrorKind.PROCESS_ERROR,
                f"{self.CLI_NAME} CLI not found. {self.INSTALL_HINT}".strip(),
                model_id=model_id,
            )

        validated_prompt = self.sanitizer.validate_prompt(prompt)
        result = await self._run(model_id, self.build_args(model_id, validated_prompt), timeout_seconds)

        if result.exit_code != 0 and not result.stdout.strip():
            kind = self.classify_failure(result.stderr)
            raise ModelInvocationError(
                kind,
                result.stderr.strip()[:500] or f"Exit code {result.exit_code}",
                model_id=model_id,
            )

        text = self.extract_text(result.stdout)
        try:
            return self.parser.parse(text, expected_type=dict)
        except JSONParseError as e:
            raise ModelInvocationError(
                ErrorKind.MALFORMED_OUTPUT,
                f"No valid JSON in output: {e.response_preview}",
                model_id=model_id,
            ) from e

    async def _run(self, model_id: str, args: list[str], timeout_seconds: float) -> CLIResult:
        """Run the CLI as an argv list (never through a shell)."""
        start_time = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.executable,  # type: ignore[arg-type]
                *args,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(self.working_dir) if self.working_dir else None,
            )
        except OSError as e:
            logger.error("%s CLI execution error: %s", self.CLI_NAME, e)
            raise ModelInvocationError(ErrorKind.PROCESS_ERROR, str(e), model_id=model_id) from e

        try:
            stdout_bytes, stderr_bytes = await communicate_or_kill(process, timeout_seconds)
        except asyncio.TimeoutError:
            logger.warning(
                "%s timed out after %.1f seconds (%s)",
                self.CLI_NAME,
                time.monotonic() - start_time,
                model_id,
            )
            raise ModelInvocationError(
                ErrorKind.TIMEOUT,
                f"Timeout after {timeout_seconds} seconds",
                model_id=model_id,
            )

        return CLIResult(
            cli_name=self.CLI_NAME,
            exit_code=process.returncode or 0,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
            duration_seconds=time.monotonic() - start_time,
            metadata={"model": model_id},
        )

    @staticmethod
    def classify_failure(stderr: str) -> ErrorKind:
        """Map a failed run's stderr onto an error kind."""
        stderr_lower = stderr.lower()

        if "rate limit" in stderr_lower or "429" in stderr_lower or "too many requests" in stderr_lower:
            return ErrorKind.RATE_LIMITED

        if "unauthorized" in stderr_lower or "authentication" in stderr_lower or "not logged in" in stderr_lower:
            return ErrorKind.AUTH_FAILED

        return ErrorKind.PROCESS_ERROR

    @staticmethod
    def parse_json_lines(output: str) -> list[dict[str, Any]]:
        """Parse newline-delimited JSON events, skipping non-JSON lines."""
        events = []
        for line in output.strip().split("\n"):
            line = line.strip()
            if not line:
                continue
            try:
                event = json.loads(line)
            except json.JSONDecodeError:
                continue
            if isinstance(event, dict):
                events.append(event)
        return events

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(cli={self.CLI_NAME!r})"
