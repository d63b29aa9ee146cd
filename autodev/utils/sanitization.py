"""Prompt and file-path validation before model invocation and file writes."""

from __future__ import annotations

from pathlib import Path
import logging

from autodev.core.errors import AutodevError, ErrorKind, StructuralError

logger = logging.getLogger(__name__)


class PromptTooLongError(AutodevError):
    """Raised when a prompt exceeds the maximum length."""

    kind = ErrorKind.VALIDATION


class PathTraversalError(StructuralError):
    """Raised when a produced path escapes the project root."""


class PromptSanitizer:
    """
    Validate prompts and model-produced paths.

    Model CLIs are started with create_subprocess_exec() and an argv list,
    never through a shell, so prompts are passed through literally.
    """

    MAX_PROMPT_LENGTH = 100_000

    def __init__(self, project_root: Path | None = None) -> None:
        self.project_root = project_root.resolve() if project_root else None

    def validate_prompt(self, prompt: str) -> str:
        """
        Validate a prompt for argv passing.

        Raises:
            PromptTooLongError: If prompt exceeds maximum length.
        """
        # Null bytes truncate argv strings
        validated = prompt.replace("\x00", "")

        if len(validated) > self.MAX_PROMPT_LENGTH:
            raise PromptTooLongError(
                f"Prompt exceeds {self.MAX_PROMPT_LENGTH} characters "
                f"(got {len(validated)})"
            )

        return validated

    def sanitize_file_path(self, path: str) -> Path:
        """
        Resolve a model-produced path against the project root.

        Args:
            path: Relative (or absolute) path from a worker result.

        Returns:
            Resolved absolute Path inside the project root.

        Raises:
            PathTraversalError: If the path is empty or escapes the root.
        """
        if not path or not path.strip() or "\x00" in path:
            raise PathTraversalError(f"Invalid file path: {path!r}")

        if self.project_root is None:
            return Path(path).resolve()

        candidate = Path(path)
        if not candidate.is_absolute():
            candidate = self.project_root / candidate
        resolved = candidate.resolve()

        try:
            relative = resolved.relative_to(self.project_root)
        except ValueError:
            raise PathTraversalError(
                f"Path escapes project root: {path} -> {resolved}"
            )

        if relative.parts and relative.parts[0] == ".git":
            raise PathTraversalError(f"Refusing to write inside .git: {path}")

        return resolved

    def relative_path(self, path: str) -> str:
        """Sanitized path expressed relative to the project root, POSIX style."""
        resolved = self.sanitize_file_path(path)
        if self.project_root is None:
            return resolved.as_posix()
        return resolved.relative_to(self.project_root).as_posix()
