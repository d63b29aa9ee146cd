"""JSON extraction from free-form model output."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Iterator
from typing import Any

from json_repair import repair_json

logger = logging.getLogger(__name__)

_FENCED_BLOCK = re.compile(r"```(?:json)?\s*([\s\S]*?)\s*```")


def truncate_with_marker(text: str, max_length: int, marker: str = "[...truncated]") -> str:
    """
    Truncate text and add marker if it exceeds max_length.

    Returns:
        Original text if within limit, otherwise truncated with marker.
    """
    if len(text) <= max_length:
        return text
    return text[: max_length - len(marker)] + marker


class JSONParseError(Exception):
    """Raised when no strategy recovers a JSON value of the expected type."""

    def __init__(
        self,
        message: str,
        response_preview: str = "",
        strategies_tried: list[str] | None = None,
    ) -> None:
        super().__init__(message)
        self.response_preview = response_preview
        self.strategies_tried = strategies_tried or []


def balanced_span(text: str, open_char: str, close_char: str) -> str | None:
    """Return the first balanced ``open_char``..``close_char`` span, ignoring string contents."""
    start = text.find(open_char)
    if start == -1:
        return None

    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        char = text[i]
        if escaped:
            escaped = False
        elif char == "\\":
            escaped = True
        elif char == '"':
            in_string = not in_string
        elif in_string:
            continue
        elif char == open_char:
            depth += 1
        elif char == close_char:
            depth -= 1
            if depth == 0:
                return text[start : i + 1]
    return None


class RobustJSONParser:
    """
    Recover a JSON object (or list) from model output.

    Models wrap their answer in prose or code fences and sometimes emit
    trailing commas. Candidates are tried in order: the whole response, the
    first fenced block, the first balanced bracket span. If none decodes,
    the best candidate goes through json_repair. An empty object counts as
    a failure because every role must return at least one field.
    """

    def parse(self, response: str, expected_type: type = dict) -> Any:
        """
        Parse ``response`` into a value of ``expected_type``.

        Raises:
            JSONParseError: If every strategy fails.
        """
        if not response or not response.strip():
            raise JSONParseError("Empty response", strategies_tried=["empty"])

        tried: list[str] = []
        last_candidate = response
        for strategy, candidate in self._candidates(response, expected_type):
            last_candidate = candidate
            try:
                return self._check_type(json.loads(candidate), expected_type)
            except (json.JSONDecodeError, TypeError) as e:
                tried.append(f"{strategy}: {e}")

        try:
            return self._check_type(repair_json(last_candidate, return_objects=True), expected_type)
        except (ValueError, TypeError) as e:
            tried.append(f"json_repair: {e}")

        logger.warning("Could not recover JSON from model output: %s", truncate_with_marker(response, 500))
        raise JSONParseError(
            "Could not parse JSON from response",
            response_preview=truncate_with_marker(response, 200),
            strategies_tried=tried,
        )

    @staticmethod
    def _candidates(response: str, expected_type: type) -> Iterator[tuple[str, str]]:
        yield "direct", response

        fenced = _FENCED_BLOCK.search(response)
        if fenced:
            yield "fenced", fenced.group(1)

        span = balanced_span(response, *("[]" if expected_type is list else "{}"))
        if span:
            yield "brackets", span

    @staticmethod
    def _check_type(value: Any, expected_type: type) -> Any:
        if not isinstance(value, expected_type) or (expected_type is dict and not value):
            raise TypeError(f"expected non-empty {expected_type.__name__}, got {type(value).__name__}")
        return value


_parser = RobustJSONParser()


def parse_json(response: str, expected_type: type = dict) -> Any:
    """Parse JSON from model output with the shared parser."""
    return _parser.parse(response, expected_type)
