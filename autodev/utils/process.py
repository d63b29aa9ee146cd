"""Async subprocess helper shared by git, gh and the test runner."""

from __future__ import annotations

import asyncio
import logging
import re
from dataclasses import dataclass
from pathlib import Path

from autodev.core.retry_utils import TransientCommandError

logger = logging.getLogger(__name__)

# stderr fragments that mean "try again shortly"
_TRANSIENT_STDERR = re.compile(
    r"index\.lock|could not resolve host|connection (?:reset|refused|timed out)"
    r"|timed out|temporarily unavailable|rate limit|HTTP 5\d\d|502 Bad Gateway",
    re.IGNORECASE,
)


@dataclass
class CommandResult:
    """Completed subprocess."""

    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def tail(self, lines: int = 40) -> str:
        """Last ``lines`` lines of combined output."""
        combined = (self.stdout + ("\n" if self.stdout and self.stderr else "") + self.stderr).strip()
        return "\n".join(combined.splitlines()[-lines:])


async def communicate_or_kill(process: asyncio.subprocess.Process, timeout: float) -> tuple[bytes, bytes]:
    """
    Wait for ``process`` to finish and return its (stdout, stderr).

    The child is killed and reaped if the wait ends any other way: timeout,
    cancellation of the calling task, or KeyboardInterrupt.

    Raises:
        asyncio.TimeoutError: ``timeout`` elapsed.
    """
    try:
        return await asyncio.wait_for(process.communicate(), timeout=timeout)
    except BaseException:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise


async def run_command(
    argv: list[str],
    cwd: Path | None = None,
    timeout: float = 60.0,
    *,
    check: bool = True,
) -> CommandResult:
    """
    Run ``argv`` (no shell) and collect its output.

    Args:
        argv: Program and arguments.
        cwd: Working directory.
        timeout: Seconds before the process is killed.
        check: Raise on non-zero exit.

    Raises:
        TransientCommandError: Timeout, or a failure whose stderr looks
            transient (lock file, network).
        RuntimeError: Any other non-zero exit when ``check`` is set.
        OSError: The program could not be started.
    """
    logger.debug("Running: %s", " ".join(argv[:3]))
    process = await asyncio.create_subprocess_exec(
        *argv,
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=str(cwd) if cwd else None,
    )

    try:
        stdout_bytes, stderr_bytes = await communicate_or_kill(process, timeout)
    except asyncio.TimeoutError:
        raise TransientCommandError(f"{argv[0]} timed out after {timeout}s")

    result = CommandResult(
        argv=argv,
        returncode=process.returncode or 0,
        stdout=stdout_bytes.decode("utf-8", errors="replace"),
        stderr=stderr_bytes.decode("utf-8", errors="replace"),
    )

    if check and not result.ok:
        message = f"{' '.join(argv[:2])} exited {result.returncode}: {result.stderr.strip()[:300]}"
        if _TRANSIENT_STDERR.search(result.stderr):
            raise TransientCommandError(message)
        raise RuntimeError(message)

    return result
