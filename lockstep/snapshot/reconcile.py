"""Bring a live workspace back in line with a target snapshot."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from .builder import SnapshotBuilder
from .diff import SnapshotDiff, compute_diff
from .models import PROTECTED_FOLDER, Snapshot, is_protected
from .scanner import TreeScanner
from .store import SnapshotStore

logger = logging.getLogger("lockstep.snapshot.reconcile")

_ROOT_LOCKS: Dict[str, threading.Lock] = {}
_ROOT_LOCKS_GUARD = threading.Lock()


def _lock_for(root: Path) -> threading.Lock:
    key = os.path.normcase(str(root.resolve()))
    with _ROOT_LOCKS_GUARD:
        return _ROOT_LOCKS.setdefault(key, threading.Lock())


class ReconcileError(Exception):
    """Base class for reconciliation failures."""


class MissingBaseSnapshotError(ReconcileError):
    """Raised when there is no snapshot to reconcile against."""


@dataclass
class ReconcileResult:
    """Outcome of a reconciliation run."""

    snapshot_id: int
    deleted: List[str] = field(default_factory=list)
    restored: List[str] = field(default_factory=list)
    overwritten: List[str] = field(default_factory=list)
    pruned_dirs: List[str] = field(default_factory=list)
    unlinked: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    remaining: Optional[SnapshotDiff] = None
    errors: List[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return not self.errors and not (self.remaining and self.remaining.has_changes)

    @property
    def changed(self) -> int:
        return len(self.deleted) + len(self.restored) + len(self.overwritten)

    def summary(self) -> str:
        parts = []
        if self.deleted:
            parts.append(f"{len(self.deleted)} deleted")
        if self.restored:
            parts.append(f"{len(self.restored)} restored")
        if self.overwritten:
            parts.append(f"{len(self.overwritten)} overwritten")
        if self.skipped:
            parts.append(f"{len(self.skipped)} skipped")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return ", ".join(parts) if parts else "already up to date"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "snapshot_id": self.snapshot_id,
            "success": self.success,
            "deleted": self.deleted,
            "restored": self.restored,
            "overwritten": self.overwritten,
            "pruned_dirs": self.pruned_dirs,
            "unlinked": self.unlinked,
            "skipped": self.skipped,
            "remaining": self.remaining.to_dict() if self.remaining else None,
            "errors": self.errors,
        }


class ReconcileController:
    """Applies snapshot diffs to a workspace, one path at a time.

    Application is best-effort: a failed delete or write is recorded in the
    result and the remaining paths are still processed. The protected folder
    is never listed, written, deleted or pruned. Target paths the scanner would
    exclude are reported in ``skipped`` and left alone, and symlinks met on the
    way to a path are removed rather than followed.
    """

    def __init__(
        self,
        workspace_dir: Path,
        excludes: Optional[Sequence[str]] = None,
        protected_folder: str = PROTECTED_FOLDER,
        verify: bool = True,
    ):
        self.workspace_dir = Path(workspace_dir)
        self.excludes = excludes
        self.protected_folder = protected_folder
        self.verify = verify

    def reconcile(self, target: Optional[Snapshot]) -> ReconcileResult:
        """Make the workspace match ``target``."""
        if target is None:
            raise MissingBaseSnapshotError("No base snapshot found. Create a snapshot first.")

        with _lock_for(self.workspace_dir):
            return self._reconcile(target)

    def reset_to_base(self, store: SnapshotStore) -> ReconcileResult:
        """Reconcile against the base snapshot held by ``store``."""
        return self.reconcile(store.load())

    def _builder(self) -> SnapshotBuilder:
        return SnapshotBuilder(
            self.workspace_dir,
            excludes=self.excludes,
            protected_folder=self.protected_folder,
        )

    def _reconcile(self, target: Snapshot) -> ReconcileResult:
        result = ReconcileResult(snapshot_id=target.id)
        builder = self._builder()
        target = self._visible_part(target, builder.scanner, result)

        current = builder.create_snapshot()
        diff = compute_diff(target, current)
        logger.info("Reconciling %s to snapshot %s: %s", self.workspace_dir, target.id, diff.summary())

        for rel_path in diff.added:
            self._delete(rel_path, result)

        for rel_path in diff.deleted:
            if self._write(target, rel_path, result):
                result.restored.append(rel_path)

        for rel_path in diff.modified:
            if self._write(target, rel_path, result):
                result.overwritten.append(rel_path)

        self._prune_empty_dirs(self.workspace_dir, result, top_level=True)

        if self.verify:
            after = self._builder().create_snapshot()
            result.remaining = compute_diff(target, after)
            if result.remaining.has_changes:
                logger.warning(
                    "Workspace still differs from snapshot %s after reconcile: %s",
                    target.id,
                    result.remaining.summary(),
                )

        logger.info("Reconcile finished: %s", result.summary())
        return result

    def _visible_part(self, target: Snapshot, scanner: TreeScanner, result: ReconcileResult) -> Snapshot:
        visible = {}
        for rel_path, entry in target.files.items():
            if scanner.is_excluded(rel_path) or self.protected_folder in rel_path.split("/"):
                result.skipped.append(rel_path)
            else:
                visible[rel_path] = entry
        if not result.skipped:
            return target
        result.skipped.sort()
        logger.warning(
            "Snapshot %s has %d path(s) excluded from this workspace; leaving them alone",
            target.id,
            len(result.skipped),
        )
        return Snapshot(id=target.id, created_at=target.created_at, files=visible)

    def _detach_links(self, rel_path: str, result: ReconcileResult) -> bool:
        """Remove the first symlink on the way to ``rel_path``; False if that failed."""
        current = self.workspace_dir
        for part in rel_path.split("/"):
            current = current / part
            if not current.is_symlink():
                continue
            link = current.relative_to(self.workspace_dir).as_posix()
            try:
                current.unlink()
            except OSError as e:
                logger.error("Failed to remove symlink %s: %s", link, e)
                result.errors.append(f"{rel_path}: {e}")
                return False
            logger.warning("Removed symlink %s in the way of %s", link, rel_path)
            result.unlinked.append(link)
            return True
        return True

    def _delete(self, rel_path: str, result: ReconcileResult) -> None:
        if is_protected(rel_path, self.protected_folder):
            return
        if not self._detach_links(rel_path, result):
            return

        absolute_path = self.workspace_dir / rel_path
        try:
            absolute_path.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error("Failed to delete %s: %s", rel_path, e)
            result.errors.append(f"{rel_path}: {e}")
            return

        result.deleted.append(rel_path)
        logger.debug("Deleted: %s", rel_path)

    def _write(self, target: Snapshot, rel_path: str, result: ReconcileResult) -> bool:
        if is_protected(rel_path, self.protected_folder):
            return False
        if not self._detach_links(rel_path, result):
            return False

        absolute_path = self.workspace_dir / rel_path
        try:
            if absolute_path.is_dir():
                # Only excluded leftovers can remain here; drop the empty shell.
                self._prune_empty_dirs(absolute_path, result)
                absolute_path.rmdir()
            absolute_path.parent.mkdir(parents=True, exist_ok=True)
            absolute_path.write_bytes(target.files[rel_path].content)
        except OSError as e:
            logger.error("Failed to write %s: %s", rel_path, e)
            result.errors.append(f"{rel_path}: {e}")
            return False

        logger.debug("Wrote: %s", rel_path)
        return True

    def _prune_empty_dirs(
        self,
        directory: Path,
        result: ReconcileResult,
        top_level: bool = False,
    ) -> None:
        try:
            with os.scandir(directory) as it:
                entries = list(it)
        except OSError as e:
            logger.warning("Cannot list %s while pruning: %s", directory, e)
            return

        for entry in entries:
            if top_level and entry.name == self.protected_folder:
                continue
            if not entry.is_dir(follow_symlinks=False):
                continue

            child = Path(entry.path)
            self._prune_empty_dirs(child, result)
            try:
                if not any(child.iterdir()):
                    child.rmdir()
                    result.pruned_dirs.append(child.relative_to(self.workspace_dir).as_posix())
            except OSError as e:
                logger.warning("Failed to prune %s: %s", child, e)


__all__ = [
    "MissingBaseSnapshotError",
    "ReconcileController",
    "ReconcileError",
    "ReconcileResult",
]
