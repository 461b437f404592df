"""Path-level differences between two snapshots."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Tuple

from .models import Snapshot


@dataclass(frozen=True)
class SnapshotDiff:
    """Classification of paths between a base and a current snapshot."""

    added: Tuple[str, ...] = ()  # in current, not in base
    deleted: Tuple[str, ...] = ()  # in base, not in current
    modified: Tuple[str, ...] = ()  # in both, different hash

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.deleted or self.modified)

    @property
    def total_changes(self) -> int:
        return len(self.added) + len(self.deleted) + len(self.modified)

    def summary(self) -> str:
        parts = []
        if self.added:
            parts.append(f"{len(self.added)} added")
        if self.deleted:
            parts.append(f"{len(self.deleted)} deleted")
        if self.modified:
            parts.append(f"{len(self.modified)} modified")
        return ", ".join(parts) if parts else "no changes"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "added": list(self.added),
            "deleted": list(self.deleted),
            "modified": list(self.modified),
        }


def compute_diff(base: Snapshot, current: Snapshot) -> SnapshotDiff:
    """Compare two snapshots by per-path hash."""
    base_paths = set(base.files.keys())
    current_paths = set(current.files.keys())

    modified = [
        path
        for path in base_paths & current_paths
        if base.files[path].hash != current.files[path].hash
    ]

    return SnapshotDiff(
        added=tuple(sorted(current_paths - base_paths)),
        deleted=tuple(sorted(base_paths - current_paths)),
        modified=tuple(sorted(modified)),
    )


__all__ = ["SnapshotDiff", "compute_diff"]
