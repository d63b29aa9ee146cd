"""Atomic checkpoint persistence with rolling backups."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, UTC
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from autodev.core.session import Session, SessionPhase

logger = logging.getLogger(__name__)


class CheckpointStore:
    """
    Crash-safe session checkpoints keyed by session id.

    Uses atomic writes (temp file + fsync + rename) so a reader never sees a
    half-written checkpoint. The previous checkpoint of a session is kept in
    a rolling backup directory and used when the main file is unreadable.
    """

    CHECKPOINT_DIR = "checkpoints"
    BACKUP_DIR = "backups"
    MAX_BACKUPS = 10

    def __init__(self, state_dir: Path) -> None:
        self.state_dir = state_dir.resolve()
        self.checkpoint_dir = self.state_dir / self.CHECKPOINT_DIR
        self.backup_dir = self.state_dir / self.BACKUP_DIR

        self.checkpoint_dir.mkdir(parents=True, exist_ok=True)
        self.backup_dir.mkdir(parents=True, exist_ok=True)

    def path_for(self, session_id: str) -> Path:
        return self.checkpoint_dir / f"{session_id}.json"

    async def save(self, session: Session, reason: str | None = None) -> Path:
        """
        Save a checkpoint atomically.

        Args:
            session: The session to persist.
            reason: Optional note logged with the save.

        Returns:
            Path of the checkpoint file.
        """
        return self.save_sync(session, reason)

    def save_sync(self, session: Session, reason: str | None = None) -> Path:
        """Synchronous variant of ``save`` for signal and shutdown paths."""
        session.updated_at = datetime.now(UTC)
        payload = json.dumps(session.to_checkpoint_dict(), indent=2)

        target = self.path_for(session.session_id)
        if target.exists():
            self._create_backup(target, session.session_id)

        temp_file = target.with_suffix(".tmp")
        try:
            with open(temp_file, "w", encoding="utf-8") as f:
                f.write(payload)
                f.flush()
                os.fsync(f.fileno())

            temp_file.replace(target)

            if os.name == "posix":
                try:
                    dir_fd = os.open(str(self.checkpoint_dir), os.O_RDONLY)
                    try:
                        os.fsync(dir_fd)
                    finally:
                        os.close(dir_fd)
                except OSError as dir_sync_error:
                    logger.debug("Directory sync skipped: %s", dir_sync_error)

        except OSError as e:
            if temp_file.exists():
                temp_file.unlink()
            logger.error("Failed to save checkpoint %s: %s", target, e, exc_info=True)
            raise

        logger.info(
            "Checkpoint saved: %s phase=%s progress=%d%%%s",
            session.session_id,
            session.phase.value,
            session.progress,
            f" ({reason})" if reason else "",
        )
        return target

    async def load(self, session_id: str) -> Session | None:
        """
        Load a session checkpoint, falling back to its backups.

        Returns:
            Session if a readable checkpoint exists, None otherwise.
        """
        target = self.path_for(session_id)
        if target.exists():
            try:
                return self._load_from_file(target)
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Failed to load checkpoint %s: %s", target.name, e)

        for backup in self._backups_for(session_id):
            try:
                session = self._load_from_file(backup)
                logger.info("Loaded session %s from backup %s", session_id, backup.name)
                return session
            except (OSError, ValueError, ValidationError) as e:
                logger.warning("Failed to load backup %s: %s", backup.name, e)

        return None

    async def find_latest_for_idea(
        self,
        idea_id: str,
        *,
        resumable_only: bool = True,
    ) -> Session | None:
        """
        Locate the most recently updated checkpoint for an idea.

        Args:
            idea_id: The idea to search for.
            resumable_only: Skip completed and failed sessions.
        """
        candidates: list[Session] = []
        for summary in await self.list_checkpoints():
            if summary["idea_id"] != idea_id:
                continue
            session = await self.load(summary["session_id"])
            if session is None:
                continue
            if resumable_only and session.phase in (SessionPhase.COMPLETED, SessionPhase.FAILED):
                continue
            candidates.append(session)

        if not candidates:
            return None
        return max(candidates, key=lambda s: s.updated_at)

    async def list_checkpoints(self) -> list[dict[str, Any]]:
        """
        List checkpoint metadata without fully validating each file.

        Returns:
            One dict per readable checkpoint, newest first.
        """
        checkpoints = []
        for checkpoint_file in self.checkpoint_dir.glob("*.json"):
            try:
                with open(checkpoint_file, encoding="utf-8") as f:
                    data = json.load(f)
                checkpoints.append({
                    "session_id": data.get("session_id", checkpoint_file.stem),
                    "idea_id": data.get("idea_id"),
                    "phase": data.get("phase"),
                    "progress": data.get("progress", 0),
                    "updated_at": data.get("updated_at") or "",
                })
            except (OSError, json.JSONDecodeError) as e:
                logger.warning("Failed to read checkpoint %s: %s", checkpoint_file.name, e)

        checkpoints.sort(key=lambda c: c["updated_at"], reverse=True)
        return checkpoints

    async def delete(self, session_id: str) -> None:
        """Remove a session checkpoint and its backups."""
        target = self.path_for(session_id)
        if target.exists():
            target.unlink()
        for backup in self._backups_for(session_id):
            backup.unlink()
        logger.info("Checkpoint %s deleted", session_id)

    def prune_backups(self, keep: int | None = None) -> int:
        """
        Remove old backups, keeping ``keep`` most recent per session.

        Returns:
            Number of files removed.
        """
        keep = self.MAX_BACKUPS if keep is None else keep
        by_session: dict[str, list[Path]] = {}
        for backup in self.backup_dir.glob("*.json"):
            session_id = backup.stem.rsplit("__", 1)[0]
            by_session.setdefault(session_id, []).append(backup)

        removed = 0
        for backups in by_session.values():
            for old_backup in sorted(backups, reverse=True)[keep:]:
                old_backup.unlink()
                removed += 1
                logger.debug("Pruned old backup %s", old_backup.name)
        return removed

    def _backups_for(self, session_id: str) -> list[Path]:
        return sorted(self.backup_dir.glob(f"{session_id}__*.json"), reverse=True)

    def _create_backup(self, source: Path, session_id: str) -> None:
        """Copy the current checkpoint into the backup directory."""
        timestamp = datetime.now(UTC).strftime("%Y-%m-%dT%H-%M-%S-%f")
        backup_file = self.backup_dir / f"{session_id}__{timestamp}.json"
        backup_file.write_bytes(source.read_bytes())

        for old_backup in self._backups_for(session_id)[self.MAX_BACKUPS:]:
            old_backup.unlink()

    def _load_from_file(self, path: Path) -> Session:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
        return Session.from_checkpoint_dict(data)
