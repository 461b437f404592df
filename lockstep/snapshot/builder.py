"""Snapshot creation from a live directory tree."""

from __future__ import annotations

import logging
import threading
import time
from pathlib import Path
from typing import Callable, Dict, Optional, Sequence

from .models import PROTECTED_FOLDER, Snapshot, SnapshotFile
from .scanner import TreeScanner

logger = logging.getLogger("lockstep.snapshot.builder")


def _now_ms() -> int:
    return time.time_ns() // 1_000_000


class VersionClock:
    """Issues strictly increasing, wall-clock based version ids."""

    def __init__(self, now: Optional[Callable[[], int]] = None):
        self._now = now or _now_ms
        self._last = 0
        self._lock = threading.Lock()

    def next_id(self) -> int:
        with self._lock:
            self._last = max(self._now(), self._last + 1)
            return self._last


DEFAULT_CLOCK = VersionClock()


class SnapshotBuilder:
    """Builds snapshots by scanning and hashing a workspace."""

    def __init__(
        self,
        root: Path,
        scanner: Optional[TreeScanner] = None,
        clock: Optional[VersionClock] = None,
        excludes: Optional[Sequence[str]] = None,
        protected_folder: str = PROTECTED_FOLDER,
    ):
        self.root = Path(root)
        self.scanner = scanner or TreeScanner(
            self.root,
            excludes=excludes,
            protected_folder=protected_folder,
        )
        self.clock = clock or DEFAULT_CLOCK

    def create_snapshot(self) -> Snapshot:
        """Capture the current tree. Unreadable files are left out."""
        files: Dict[str, SnapshotFile] = {}

        for rel_path in self.scanner:
            try:
                content = (self.root / rel_path).read_bytes()
            except OSError as e:
                logger.warning("Skipping unreadable file %s: %s", rel_path, e)
                continue
            files[rel_path] = SnapshotFile.from_content(content)

        snapshot = Snapshot(
            id=self.clock.next_id(),
            created_at=_now_ms(),
            files=files,
        )
        logger.info("Built snapshot %s with %d files", snapshot.id, len(files))
        return snapshot


def create_snapshot(root: Path, excludes: Optional[Sequence[str]] = None) -> Snapshot:
    """Capture ``root`` using the default scanner settings."""
    return SnapshotBuilder(root, excludes=excludes).create_snapshot()


__all__ = ["DEFAULT_CLOCK", "SnapshotBuilder", "VersionClock", "create_snapshot"]
