"""Conflict signatures in worker outputs, and the one allowed auto-fix."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum

from autodev.core.session import ProducedFile, WorkerResult

logger = logging.getLogger(__name__)


class ConflictKind(str, Enum):
    MERGE_MARKER = "merge_marker"
    DUPLICATE_PATH = "duplicate_path"
    DUPLICATE_DECLARATION = "duplicate_declaration"


@dataclass
class Conflict:
    """One conflict found before applying worker output."""

    kind: ConflictKind
    path: str
    detail: str
    worker_ids: list[int] = field(default_factory=list)

    def __str__(self) -> str:
        workers = f" (workers {', '.join(map(str, self.worker_ids))})" if self.worker_ids else ""
        return f"{self.kind.value} in {self.path}: {self.detail}{workers}"


MERGE_MARKER_RE = re.compile(r"^(?:<{7}(?: |$)|>{7}(?: |$)|={7}$)", re.MULTILINE)

# Top-level declarations only; nested methods legitimately reuse names.
_DECLARATION_PATTERNS: dict[str, list[re.Pattern[str]]] = {
    "python": [
        re.compile(r"^(?:async\s+)?def\s+(\w+)\s*\(", re.MULTILINE),
        re.compile(r"^class\s+(\w+)\s*[:(]", re.MULTILINE),
    ],
    "javascript": [
        re.compile(r"^(?:export\s+)?(?:default\s+)?(?:async\s+)?function\*?\s+(\w+)\s*\(", re.MULTILINE),
        re.compile(r"^(?:export\s+)?(?:const|let|var)\s+(\w+)\s*=", re.MULTILINE),
        re.compile(r"^(?:export\s+)?(?:default\s+)?class\s+(\w+)", re.MULTILINE),
    ],
}

_IMPORT_PATTERNS: dict[str, re.Pattern[str]] = {
    "python": re.compile(r"^(?:import\s+\S|from\s+\S+\s+import\s+\S)"),
    "javascript": re.compile(r"^(?:import\s.+\sfrom\s+['\"]|import\s+['\"]|(?:const|let|var)\s+\w+\s*=\s*require\()"),
}

_LANGUAGE_BY_SUFFIX = {
    ".py": "python",
    ".pyi": "python",
    ".js": "javascript",
    ".jsx": "javascript",
    ".mjs": "javascript",
    ".cjs": "javascript",
    ".ts": "javascript",
    ".tsx": "javascript",
}


def language_for(path: str) -> str | None:
    suffix = "." + path.rsplit(".", 1)[-1].lower() if "." in path else ""
    return _LANGUAGE_BY_SUFFIX.get(suffix)


def has_merge_markers(content: str) -> bool:
    return MERGE_MARKER_RE.search(content) is not None


def duplicate_declarations(path: str, content: str) -> list[str]:
    """Names declared more than once at the top level of ``content``."""
    language = language_for(path)
    if language is None:
        return []

    seen: set[str] = set()
    duplicates: list[str] = []
    for pattern in _DECLARATION_PATTERNS[language]:
        for match in pattern.finditer(content):
            name = match.group(1)
            if name in seen and name not in duplicates:
                duplicates.append(name)
            seen.add(name)
    return duplicates


def dedupe_imports(path: str, content: str) -> str:
    """
    Drop repeated import lines, keeping the first occurrence.

    Only exact (whitespace-trimmed) repeats of top-level import statements
    are removed.
    """
    language = language_for(path)
    if language is None:
        return content

    pattern = _IMPORT_PATTERNS[language]
    seen: set[str] = set()
    kept: list[str] = []
    removed = 0
    for line in content.splitlines(keepends=True):
        key = line.strip()
        if line[:1] not in (" ", "\t") and pattern.match(key):
            if key in seen:
                removed += 1
                continue
            seen.add(key)
        kept.append(line)

    if removed:
        logger.info("Removed %d duplicate import line(s) from %s", removed, path)
    return "".join(kept)


def find_conflicts(results: list[WorkerResult]) -> list[Conflict]:
    """
    Scan successful worker outputs for conflict signatures.

    Checks merge markers, the same path produced by more than one worker,
    and duplicate top-level declarations within a produced file.
    """
    conflicts: list[Conflict] = []
    producers: dict[str, list[int]] = {}

    for result in results:
        if not result.success:
            continue
        for produced in result.produced_files:
            producers.setdefault(produced.path, []).append(result.worker_id)

            if has_merge_markers(produced.content):
                conflicts.append(Conflict(
                    kind=ConflictKind.MERGE_MARKER,
                    path=produced.path,
                    detail="conflict markers present",
                    worker_ids=[result.worker_id],
                ))

            for name in duplicate_declarations(produced.path, produced.content):
                conflicts.append(Conflict(
                    kind=ConflictKind.DUPLICATE_DECLARATION,
                    path=produced.path,
                    detail=f"'{name}' declared more than once",
                    worker_ids=[result.worker_id],
                ))

    for path, worker_ids in producers.items():
        if len(set(worker_ids)) > 1:
            conflicts.append(Conflict(
                kind=ConflictKind.DUPLICATE_PATH,
                path=path,
                detail="produced by more than one worker",
                worker_ids=sorted(set(worker_ids)),
            ))

    return conflicts


def normalize_outputs(results: list[WorkerResult]) -> None:
    """Apply the import de-duplication to every produced file in place."""
    for result in results:
        result.produced_files = [
            ProducedFile(
                path=f.path,
                content=dedupe_imports(f.path, f.content),
                explanation=f.explanation,
            )
            for f in result.produced_files
        ]
