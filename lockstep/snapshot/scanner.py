"""Recursive enumeration of workspace files."""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Callable, Iterable, Iterator, List, NamedTuple, Optional, Sequence

from .models import PROTECTED_FOLDER

logger = logging.getLogger("lockstep.snapshot.scanner")

DEFAULT_EXCLUDES: Sequence[str] = (
    "node_modules",
    ".git",
    PROTECTED_FOLDER,
    "dist",
    "build",
    ".env",
)


class DirEntry(NamedTuple):
    """Minimal directory entry used by the scanner."""

    name: str
    is_dir: bool
    is_file: bool


ListDir = Callable[[Path], Iterable[DirEntry]]


def scandir_entries(directory: Path) -> List[DirEntry]:
    """List a real directory without following symlinks."""
    entries = []
    with os.scandir(directory) as it:
        for entry in it:
            entries.append(
                DirEntry(
                    name=entry.name,
                    is_dir=entry.is_dir(follow_symlinks=False),
                    is_file=entry.is_file(follow_symlinks=False),
                )
            )
    return entries


class TreeScanner:
    """Lazily yields relative paths of regular files under a root directory.

    A path is skipped when any exclusion string is contained in its relative
    form; skipped directories are not descended into. Every iteration starts a
    fresh walk.
    """

    def __init__(
        self,
        root: Path,
        excludes: Optional[Sequence[str]] = None,
        protected_folder: str = PROTECTED_FOLDER,
        list_dir: Optional[ListDir] = None,
    ):
        self.root = Path(root)
        self.protected_folder = protected_folder
        patterns = list(DEFAULT_EXCLUDES if excludes is None else excludes)
        if protected_folder not in patterns:
            patterns.append(protected_folder)
        self.excludes = patterns
        self._list_dir = list_dir or scandir_entries

    def __iter__(self) -> Iterator[str]:
        return self.iter_paths()

    def iter_paths(self) -> Iterator[str]:
        yield from self._walk(self.root, "")

    def is_excluded(self, rel_path: str) -> bool:
        return any(pattern in rel_path for pattern in self.excludes)

    def _walk(self, directory: Path, prefix: str) -> Iterator[str]:
        try:
            entries = sorted(self._list_dir(directory), key=lambda e: e.name)
        except OSError as e:
            logger.warning("Skipping unreadable directory %s: %s", directory, e)
            return

        for entry in entries:
            rel_path = f"{prefix}{entry.name}"
            if self.is_excluded(rel_path):
                continue
            if entry.is_dir:
                yield from self._walk(directory / entry.name, rel_path + "/")
            elif entry.is_file:
                yield rel_path


def scan(root: Path, excludes: Optional[Sequence[str]] = None) -> Iterator[str]:
    """Return a fresh iterator over the files under ``root``."""
    return TreeScanner(root, excludes=excludes).iter_paths()


__all__ = ["DEFAULT_EXCLUDES", "DirEntry", "TreeScanner", "scan", "scandir_entries"]
