"""Error taxonomy for model calls, collaborators and phase handlers.

Every failure that reaches a phase boundary is reduced to one of four
``ErrorClass`` values so routing (retry / block / fail / degrade) can be
matched exhaustively.
"""

from __future__ import annotations

import re
from enum import Enum


class ErrorKind(str, Enum):
    """Concrete failure kinds reported by collaborators."""

    TIMEOUT = "timeout"
    MALFORMED_OUTPUT = "malformed_output"
    RATE_LIMITED = "rate_limited"
    AUTH_FAILED = "auth_failed"
    PROCESS_ERROR = "process_error"
    VALIDATION = "validation"
    CONFLICT = "conflict"
    RESOURCE = "resource"
    UNKNOWN = "unknown"


class ErrorClass(str, Enum):
    """Routing class for an error."""

    TRANSIENT = "transient"  # backoff, retry, fail over
    FATAL = "fatal"  # switching models will not help
    STRUCTURAL = "structural"  # conflicts, cycles, duplicates: needs a human
    RESOURCE = "resource"  # memory/disk pressure: shrink and clean up


KIND_TO_CLASS: dict[ErrorKind, ErrorClass] = {
    ErrorKind.TIMEOUT: ErrorClass.TRANSIENT,
    ErrorKind.MALFORMED_OUTPUT: ErrorClass.TRANSIENT,
    ErrorKind.RATE_LIMITED: ErrorClass.TRANSIENT,
    ErrorKind.PROCESS_ERROR: ErrorClass.TRANSIENT,
    ErrorKind.UNKNOWN: ErrorClass.TRANSIENT,
    ErrorKind.AUTH_FAILED: ErrorClass.FATAL,
    ErrorKind.VALIDATION: ErrorClass.FATAL,
    ErrorKind.CONFLICT: ErrorClass.STRUCTURAL,
    ErrorKind.RESOURCE: ErrorClass.RESOURCE,
}


class AutodevError(Exception):
    """Base class for typed errors raised inside autodev."""

    kind: ErrorKind = ErrorKind.UNKNOWN

    def __init__(self, message: str, kind: ErrorKind | None = None) -> None:
        super().__init__(message)
        self.message = message
        if kind is not None:
            self.kind = kind

    @property
    def error_class(self) -> ErrorClass:
        return KIND_TO_CLASS[self.kind]


class ModelInvocationError(AutodevError):
    """A single model call failed (timeout, bad output, non-zero exit, ...)."""

    def __init__(self, kind: ErrorKind, message: str, model_id: str = "") -> None:
        super().__init__(message, kind=kind)
        self.model_id = model_id

    def __str__(self) -> str:
        prefix = f"[{self.model_id}] " if self.model_id else ""
        return f"{prefix}{self.kind.value}: {self.message}"


class StructuralError(AutodevError):
    """Merge conflicts, duplicate declarations, escaping paths."""

    kind = ErrorKind.CONFLICT


class ResourceExhaustedError(AutodevError):
    """Memory or disk pressure persisted after mitigation."""

    kind = ErrorKind.RESOURCE


class MissingInformationError(AutodevError):
    """The pipeline needs a human answer before it can continue."""

    kind = ErrorKind.VALIDATION

    def __init__(self, message: str, question: str | None = None) -> None:
        super().__init__(message)
        self.question = question or message


class SourceControlError(AutodevError):
    """A git command failed."""

    kind = ErrorKind.PROCESS_ERROR


class TicketError(AutodevError):
    """The ticket tracker could not be reached."""

    kind = ErrorKind.PROCESS_ERROR


class MilestoneRejectedError(AutodevError):
    """Too few parallel workers succeeded; the milestone was rolled back."""

    kind = ErrorKind.PROCESS_ERROR


# Message patterns, checked in order. Only used when an error arrives untyped.
_MESSAGE_PATTERNS: list[tuple[ErrorClass, re.Pattern[str]]] = [
    (
        ErrorClass.FATAL,
        re.compile(
            r"invalid prompt|malformed request|authentication failed|unauthori[sz]ed"
            r"|forbidden|not authorized|invalid api key|validation failed",
            re.IGNORECASE,
        ),
    ),
    (
        ErrorClass.STRUCTURAL,
        re.compile(
            r"merge conflict|CONFLICT \(|circular dependenc|duplicate declaration"
            r"|divergent",
        ),
    ),
    (
        ErrorClass.RESOURCE,
        re.compile(r"out of memory|ENOMEM|MemoryError|ENOSPC|no space left|disk full", re.IGNORECASE),
    ),
    (
        ErrorClass.TRANSIENT,
        re.compile(
            r"timeout|timed out|ECONNRESET|ETIMEDOUT|connection reset|rate limit|429"
            r"|too many requests|50[0234]|temporary failure|try again",
            re.IGNORECASE,
        ),
    ),
]


def classify_error(error: BaseException) -> ErrorClass:
    """
    Classify an exception into a routing class.

    Typed autodev errors carry their own kind; builtin timeout, memory and
    connection errors map directly; anything else is matched by message and
    defaults to TRANSIENT.
    """
    if isinstance(error, AutodevError):
        return error.error_class

    if isinstance(error, (TimeoutError, ConnectionError)):
        return ErrorClass.TRANSIENT
    if isinstance(error, MemoryError):
        return ErrorClass.RESOURCE
    if isinstance(error, OSError) and error.errno is not None:
        # ENOSPC / ENOMEM
        if error.errno in (12, 28):
            return ErrorClass.RESOURCE

    message = str(error)
    for error_class, pattern in _MESSAGE_PATTERNS:
        if pattern.search(message):
            return error_class

    return ErrorClass.TRANSIENT


def is_fatal(error: BaseException) -> bool:
    """Whether failing over to another model is pointless for this error."""
    return classify_error(error) is ErrorClass.FATAL

