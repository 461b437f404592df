"""Content fingerprints for snapshot entries."""

from __future__ import annotations

import hashlib
from pathlib import Path

CHUNK_SIZE = 8192


def hash_content(content: bytes) -> str:
    """Return the SHA-256 hex digest of ``content``."""
    return hashlib.sha256(content).hexdigest()


def hash_file(file_path: Path) -> str:
    """Compute the same digest as :func:`hash_content` by streaming a file."""
    hasher = hashlib.sha256()
    with open(file_path, "rb") as f:
        for chunk in iter(lambda: f.read(CHUNK_SIZE), b""):
            hasher.update(chunk)
    return hasher.hexdigest()


__all__ = ["hash_content", "hash_file"]
