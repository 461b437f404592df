"""Snapshot data structures and their serialized form."""

from __future__ import annotations

import base64
import binascii
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Dict, Mapping

from .hashing import hash_content

PROTECTED_FOLDER = ".lockstep"
BASE_SNAPSHOT_FILE = "base_snapshot.json"


def validate_relative_path(path: str, protected_folder: str = PROTECTED_FOLDER) -> str:
    """Ensure a snapshot path stays inside the workspace and outside any protected folder.

    Paths are POSIX style: relative, ``/`` separated, without empty, ``.`` or
    ``..`` components. The protected folder name may not appear as any
    component, since the scanner never captures such paths.
    """
    if not isinstance(path, str) or not path:
        raise ValueError("Snapshot path must be a non-empty string")
    if path.startswith("/") or "\\" in path or ":" in path.split("/", 1)[0]:
        raise ValueError(f"Snapshot path must be relative: {path!r}")
    parts = path.split("/")
    if any(part in ("", ".", "..") for part in parts):
        raise ValueError(f"Snapshot path is not normalized: {path!r}")
    if protected_folder in parts:
        raise ValueError(f"Snapshot path points into the protected folder: {path!r}")
    return path


def is_protected(path: str, protected_folder: str = PROTECTED_FOLDER) -> bool:
    """Return True if a relative path is the protected folder or lies inside it."""
    return path == protected_folder or path.startswith(protected_folder + "/")


@dataclass(frozen=True)
class SnapshotFile:
    """Content and fingerprint of one file in a snapshot."""

    hash: str
    content: bytes

    @classmethod
    def from_content(cls, content: bytes) -> "SnapshotFile":
        return cls(hash=hash_content(content), content=content)

    def to_dict(self) -> Dict[str, Any]:
        try:
            return {"hash": self.hash, "content": self.content.decode("utf-8")}
        except UnicodeDecodeError:
            return {
                "hash": self.hash,
                "content": base64.b64encode(self.content).decode("ascii"),
                "encoding": "base64",
            }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "SnapshotFile":
        if not isinstance(data, Mapping):
            raise ValueError("Snapshot file entry must be an object")
        digest = data.get("hash")
        raw = data.get("content")
        if not isinstance(digest, str) or not isinstance(raw, str):
            raise ValueError("Snapshot file entry requires string 'hash' and 'content'")

        encoding = data.get("encoding", "utf-8")
        if encoding == "base64":
            try:
                content = base64.b64decode(raw.encode("ascii"), validate=True)
            except (binascii.Error, UnicodeEncodeError) as e:
                raise ValueError(f"Invalid base64 content: {e}") from e
        elif encoding == "utf-8":
            content = raw.encode("utf-8")
        else:
            raise ValueError(f"Unsupported content encoding: {encoding!r}")

        if hash_content(content) != digest:
            raise ValueError("Snapshot file hash does not match its content")
        return cls(hash=digest, content=content)


@dataclass(frozen=True)
class Snapshot:
    """Immutable capture of a directory tree.

    ``id`` is a version token that strictly increases over time and is compared
    numerically. ``created_at`` is the capture time in milliseconds since the
    epoch. ``files`` maps workspace-relative POSIX paths to their entries.
    """

    id: int
    created_at: int
    files: Mapping[str, SnapshotFile] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "files", MappingProxyType(dict(self.files)))

    def is_newer_than(self, other: "Snapshot") -> bool:
        return self.id > other.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "createdAt": self.created_at,
            "files": {path: entry.to_dict() for path, entry in sorted(self.files.items())},
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "Snapshot":
        if not isinstance(data, Mapping):
            raise ValueError("Snapshot must be an object")

        snapshot_id = _coerce_int(data.get("id"), "id")
        created_at = _coerce_int(data.get("createdAt", 0), "createdAt")

        raw_files = data.get("files", {})
        if not isinstance(raw_files, Mapping):
            raise ValueError("Snapshot 'files' must be an object")

        files: Dict[str, SnapshotFile] = {}
        for path, entry in raw_files.items():
            validate_relative_path(path)
            try:
                files[path] = SnapshotFile.from_dict(entry)
            except ValueError as e:
                raise ValueError(f"{path}: {e}") from e

        return cls(id=snapshot_id, created_at=created_at, files=files)


def _coerce_int(value: Any, name: str) -> int:
    # Older peers send ids as digit strings.
    if isinstance(value, bool):
        raise ValueError(f"Snapshot '{name}' must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, str) and value.isdigit():
        return int(value)
    raise ValueError(f"Snapshot '{name}' must be an integer")


__all__ = [
    "BASE_SNAPSHOT_FILE",
    "PROTECTED_FOLDER",
    "Snapshot",
    "SnapshotFile",
    "is_protected",
    "validate_relative_path",
]
