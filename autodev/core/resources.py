"""Memory and disk pressure checks for the implementing phase."""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, TYPE_CHECKING

import psutil

if TYPE_CHECKING:
    from autodev.config.settings import ResourceSettings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ResourceStatus:
    """One resource sample."""

    memory_percent: float
    free_disk_mb: float
    memory_pressure: bool
    disk_pressure: bool

    @property
    def under_pressure(self) -> bool:
        return self.memory_pressure or self.disk_pressure

    def describe(self) -> str:
        return f"memory {self.memory_percent:.0f}% used, {self.free_disk_mb:.0f} MB disk free"


class ResourceMonitor:
    """
    Samples system memory (psutil) and free disk space at the project root.

    Under pressure the caller shrinks worker concurrency and runs
    ``cleanup`` before trying again.
    """

    def __init__(
        self,
        settings: ResourceSettings,
        path: Path,
        cleanup_hooks: list[Callable[[], int]] | None = None,
    ) -> None:
        self.settings = settings
        self.path = path
        self.cleanup_hooks = list(cleanup_hooks or [])

    def check(self) -> ResourceStatus:
        memory_percent = float(psutil.virtual_memory().percent)
        free_disk_mb = shutil.disk_usage(self.path).free / (1024 * 1024)

        status = ResourceStatus(
            memory_percent=memory_percent,
            free_disk_mb=free_disk_mb,
            memory_pressure=memory_percent > self.settings.max_memory_percent,
            disk_pressure=free_disk_mb < self.settings.min_free_disk_mb,
        )
        if status.under_pressure:
            logger.warning("Resource pressure: %s", status.describe())
        return status

    def effective_worker_count(self, requested: int, status: ResourceStatus | None = None) -> int:
        """Halve concurrency (never below one) while under pressure."""
        status = status or self.check()
        if not status.under_pressure:
            return requested
        reduced = max(1, requested // 2)
        if reduced < requested:
            logger.info("Reducing workers from %d to %d under resource pressure", requested, reduced)
        return reduced

    def cleanup(self) -> int:
        """Run the registered cleanup hooks; returns the number of files removed."""
        removed = 0
        for hook in self.cleanup_hooks:
            try:
                removed += hook()
            except OSError as e:
                logger.warning("Cleanup hook failed: %s", e)
        logger.info("Resource cleanup removed %d file(s)", removed)
        return removed
