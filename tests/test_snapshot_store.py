"""Tests for the base snapshot store."""

from __future__ import annotations

import json
from pathlib import Path

import pytest

from lockstep.snapshot import Snapshot, SnapshotFile, SnapshotStore, SnapshotStoreError


def _snapshot(snapshot_id: int = 7) -> Snapshot:
    return Snapshot(
        id=snapshot_id,
        created_at=123,
        files={"a.txt": SnapshotFile.from_content(b"alpha"), "bin": SnapshotFile.from_content(b"\xff\x00")},
    )


def test_load_returns_none_when_absent(tmp_path: Path):
    store = SnapshotStore(tmp_path)

    assert not store.exists()
    assert store.load() is None


def test_save_then_load(tmp_path: Path):
    store = SnapshotStore(tmp_path)
    snapshot = _snapshot()

    store.save(snapshot)

    assert store.snapshot_path == tmp_path / ".lockstep" / "base_snapshot.json"
    assert store.load() == snapshot


def test_save_replaces_previous_base(tmp_path: Path):
    store = SnapshotStore(tmp_path)
    store.save(_snapshot(1))
    store.save(_snapshot(2))

    assert store.load().id == 2
    leftovers = [p.name for p in store.folder_path.iterdir()]
    assert leftovers == ["base_snapshot.json"]


def test_saved_file_is_readable_json(tmp_path: Path):
    store = SnapshotStore(tmp_path)
    store.save(_snapshot())

    data = json.loads(store.snapshot_path.read_text(encoding="utf-8"))

    assert data["id"] == 7
    assert data["createdAt"] == 123


def test_corrupt_file_raises_store_error(tmp_path: Path):
    store = SnapshotStore(tmp_path)
    store.folder_path.mkdir()
    store.snapshot_path.write_text("{not json", encoding="utf-8")

    with pytest.raises(SnapshotStoreError):
        store.load()


def test_custom_folder_and_filename(tmp_path: Path):
    store = SnapshotStore(tmp_path, protected_folder=".sync", filename="base.json")
    store.save(_snapshot())

    assert (tmp_path / ".sync" / "base.json").is_file()
