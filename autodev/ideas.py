"""Loading idea documents from the backlog directory."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Idea:
    """A backlog idea."""

    idea_id: str
    path: Path
    content: str

    @property
    def title(self) -> str:
        for line in self.content.splitlines():
            stripped = line.strip()
            if stripped.startswith("#"):
                return stripped.lstrip("#").strip()
        return self.idea_id


def find_idea_file(ideas_dir: Path, idea_id: str) -> Path:
    """
    Locate ``<idea_id>*.md`` in ``ideas_dir``.

    Raises:
        FileNotFoundError: No matching file.
    """
    exact = ideas_dir / f"{idea_id}.md"
    if exact.is_file():
        return exact

    matches = sorted(ideas_dir.glob(f"{idea_id}*.md"))
    if not matches:
        raise FileNotFoundError(f"No idea matching {idea_id!r} in {ideas_dir}")
    if len(matches) > 1:
        logger.warning("Several ideas match %s, using %s", idea_id, matches[0].name)
    return matches[0]


def load_idea(ideas_dir: Path, idea_id: str) -> Idea:
    path = find_idea_file(ideas_dir, idea_id)
    content = path.read_text(encoding="utf-8")
    if not content.strip():
        raise ValueError(f"Idea file {path} is empty")
    logger.info("Loaded idea %s from %s", idea_id, path)
    return Idea(idea_id=idea_id, path=path, content=content)
