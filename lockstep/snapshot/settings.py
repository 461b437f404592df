"""Snapshot settings read from configuration."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List

from .models import BASE_SNAPSHOT_FILE, PROTECTED_FOLDER
from .scanner import DEFAULT_EXCLUDES


@dataclass
class SnapshotSettings:
    """Where the base snapshot lives and which paths are never captured."""

    protected_folder: str = PROTECTED_FOLDER
    snapshot_file: str = BASE_SNAPSHOT_FILE
    excludes: List[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDES))

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SnapshotSettings":
        raw = config.get("snapshot", {}) if config else {}
        excludes = list(raw.get("excludes", DEFAULT_EXCLUDES))
        excludes.extend(raw.get("extra_excludes", []))
        return cls(
            protected_folder=str(raw.get("protected_folder", PROTECTED_FOLDER)),
            snapshot_file=str(raw.get("snapshot_file", BASE_SNAPSHOT_FILE)),
            excludes=excludes,
        )


__all__ = ["SnapshotSettings"]
