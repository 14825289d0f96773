"""Whole-file access to edited documents with backup and snapshot on write."""

from __future__ import annotations

import logging
import shutil
from pathlib import Path

from docpilot.history.models import SnapshotAppendResult, SnapshotSource
from docpilot.history.snapshots import SnapshotStore
from docpilot.storage.common import utc_now

logger = logging.getLogger(__name__)


class DocumentFiles:
    """Reads and writes document files; every write is recorded as a snapshot."""

    def __init__(
        self,
        snapshots: SnapshotStore,
        *,
        backup_dir_name: str | None = ".backups",
    ) -> None:
        self.snapshots = snapshots
        self.backup_dir_name = backup_dir_name

    def read(self, path: Path) -> str:
        """Whole-file read; a missing file reads as empty content."""

        try:
            return path.read_text("utf-8")
        except FileNotFoundError:
            return ""

    def write(
        self,
        path: Path,
        content: str,
        *,
        source: SnapshotSource = SnapshotSource.SAVE,
    ) -> SnapshotAppendResult | None:
        """Overwrite ``path`` and snapshot the new content.

        The write itself raises on failure; backup and snapshot problems are
        logged and never block the save.
        """

        self._backup(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, "utf-8")
        return self.snapshots.append(path, content, source)

    def _backup(self, path: Path) -> Path | None:
        if self.backup_dir_name is None:
            return None
        try:
            if not path.exists() or path.stat().st_size == 0:
                return None
            backup_dir = path.parent / self.backup_dir_name
            backup_dir.mkdir(parents=True, exist_ok=True)
            stamp = utc_now().strftime("%Y-%m-%dT%H-%M-%S-%fZ")
            backup_path = backup_dir / f"{path.stem}-{stamp}{path.suffix}"
            shutil.copy2(path, backup_path)
        except OSError:
            logger.warning("Failed to back up %s before overwrite", path, exc_info=True)
            return None
        return backup_path
