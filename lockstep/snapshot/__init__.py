"""Content-addressed workspace snapshots."""

from __future__ import annotations

from .builder import SnapshotBuilder, VersionClock, create_snapshot
from .diff import SnapshotDiff, compute_diff
from .hashing import hash_content, hash_file
from .models import BASE_SNAPSHOT_FILE, PROTECTED_FOLDER, Snapshot, SnapshotFile
from .reconcile import (
    MissingBaseSnapshotError,
    ReconcileController,
    ReconcileError,
    ReconcileResult,
)
from .scanner import DEFAULT_EXCLUDES, TreeScanner, scan
from .settings import SnapshotSettings
from .store import SnapshotStore, SnapshotStoreError

__all__ = [
    # Models
    "Snapshot",
    "SnapshotFile",
    "PROTECTED_FOLDER",
    "BASE_SNAPSHOT_FILE",
    # Hashing
    "hash_content",
    "hash_file",
    # Scanning
    "DEFAULT_EXCLUDES",
    "TreeScanner",
    "scan",
    # Building
    "SnapshotBuilder",
    "VersionClock",
    "create_snapshot",
    # Diff
    "SnapshotDiff",
    "compute_diff",
    # Store
    "SnapshotStore",
    "SnapshotStoreError",
    "SnapshotSettings",
    # Reconcile
    "ReconcileController",
    "ReconcileResult",
    "ReconcileError",
    "MissingBaseSnapshotError",
]
