"""Backoff arithmetic and tenacity-based retries for collaborator calls.

Model calls are never retried in place (failover moves on to the next
candidate instead); these helpers cover git and ticket subprocesses, which
fail transiently on lock files and flaky networks.
"""

from __future__ import annotations

import logging
from typing import Callable, TypeVar

from tenacity import (
    RetryCallState,
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_random_exponential,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

BASE_BACKOFF_MS = 1000
MAX_BACKOFF_MS = 10000


class TransientCommandError(Exception):
    """A subprocess failed in a way that is worth repeating, such as a held lock."""


def exponential_backoff_ms(
    attempt: int,
    base_ms: int = BASE_BACKOFF_MS,
    max_ms: int = MAX_BACKOFF_MS,
) -> int:
    """
    Delay before the next attempt: ``min(base * 2**(attempt-1), max)``.

    ``attempt`` is 1-based; values below 1 are treated as 1.
    """
    attempt = max(1, attempt)
    return min(base_ms * 2 ** (attempt - 1), max_ms)


def log_retry_attempt(retry_state: RetryCallState) -> None:
    outcome = retry_state.outcome
    logger.warning(
        "%s failed on attempt %d, retrying: %s",
        getattr(retry_state.fn, "__qualname__", "command"),
        retry_state.attempt_number,
        outcome.exception() if outcome else "unknown",
    )


def create_retry_decorator(
    max_attempts: int = 3,
    min_wait: float = 0.5,
    max_wait: float = 10.0,
    retry_exceptions: tuple[type[Exception], ...] = (
        TransientCommandError,
        ConnectionError,
        TimeoutError,
    ),
) -> Callable:
    """
    Create a tenacity retry decorator with exponential backoff and jitter.

    Args:
        max_attempts: Maximum number of attempts (including the first).
        min_wait: Multiplier for the exponential wait, in seconds.
        max_wait: Maximum wait time cap in seconds.
        retry_exceptions: Exception types that trigger another attempt.

    Returns:
        A tenacity retry decorator usable on sync or async callables.
    """
    return retry(
        stop=stop_after_attempt(max_attempts),
        wait=wait_random_exponential(multiplier=min_wait, max=max_wait),
        retry=retry_if_exception_type(retry_exceptions),
        before_sleep=log_retry_attempt,
        reraise=True,
    )


# Git and gh share the same profile: a few quick attempts.
retry_command = create_retry_decorator(max_attempts=3, min_wait=0.5, max_wait=5.0)
