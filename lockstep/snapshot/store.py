"""Persistence of the workspace base snapshot."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from .models import BASE_SNAPSHOT_FILE, PROTECTED_FOLDER, Snapshot

logger = logging.getLogger("lockstep.snapshot.store")


class SnapshotStoreError(Exception):
    """Raised when a stored base snapshot cannot be read back."""


class SnapshotStore:
    """Keeps exactly one base snapshot inside the workspace's protected folder."""

    def __init__(
        self,
        workspace_dir: Path,
        protected_folder: str = PROTECTED_FOLDER,
        filename: str = BASE_SNAPSHOT_FILE,
    ):
        self.workspace_dir = Path(workspace_dir)
        self.protected_folder = protected_folder
        self.filename = filename

    @property
    def folder_path(self) -> Path:
        return self.workspace_dir / self.protected_folder

    @property
    def snapshot_path(self) -> Path:
        return self.folder_path / self.filename

    def exists(self) -> bool:
        return self.snapshot_path.is_file()

    def save(self, snapshot: Snapshot) -> None:
        """Replace the stored base with ``snapshot``."""
        self.folder_path.mkdir(parents=True, exist_ok=True)
        payload = json.dumps(snapshot.to_dict(), indent=2, ensure_ascii=False) + "\n"

        fd, temp_name = tempfile.mkstemp(prefix=".tmp-", dir=str(self.folder_path))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                handle.write(payload)
            os.replace(temp_name, self.snapshot_path)
        finally:
            if os.path.exists(temp_name):
                os.unlink(temp_name)
        logger.debug(
            "Saved base snapshot %s to %s (%d files)",
            snapshot.id,
            self.snapshot_path,
            len(snapshot.files),
        )

    def load(self) -> Optional[Snapshot]:
        """Return the stored base, or None when nothing has been saved yet."""
        if not self.exists():
            return None
        try:
            with open(self.snapshot_path, "r", encoding="utf-8") as f:
                data = json.load(f)
            return Snapshot.from_dict(data)
        except (OSError, json.JSONDecodeError, ValueError) as e:
            logger.error("Failed to load base snapshot from %s: %s", self.snapshot_path, e)
            raise SnapshotStoreError(f"Unreadable base snapshot at {self.snapshot_path}: {e}") from e


__all__ = ["SnapshotStore", "SnapshotStoreError"]
