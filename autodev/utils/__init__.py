"""Utility module for JSON parsing and path/prompt sanitization."""

from autodev.utils.json_parser import JSONParseError, RobustJSONParser, parse_json, truncate_with_marker
from autodev.utils.sanitization import PathTraversalError, PromptSanitizer, PromptTooLongError

__all__ = [
    "JSONParseError",
    "PathTraversalError",
    "PromptSanitizer",
    "PromptTooLongError",
    "RobustJSONParser",
    "parse_json",
    "truncate_with_marker",
]
