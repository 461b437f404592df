"""Tests for building snapshots from a workspace."""

from __future__ import annotations

from pathlib import Path

from lockstep.snapshot import SnapshotBuilder, VersionClock, create_snapshot, hash_content


def test_create_snapshot_captures_files(tmp_path: Path):
    (tmp_path / "src").mkdir()
    (tmp_path / "src" / "app.py").write_bytes(b"print('hi')\n")
    (tmp_path / "README.md").write_bytes(b"# readme\n")

    snapshot = create_snapshot(tmp_path)

    assert set(snapshot.files) == {"README.md", "src/app.py"}
    entry = snapshot.files["src/app.py"]
    assert entry.content == b"print('hi')\n"
    assert entry.hash == hash_content(entry.content)


def test_create_snapshot_respects_excludes(tmp_path: Path):
    (tmp_path / "keep.txt").write_text("k", encoding="utf-8")
    (tmp_path / "cache").mkdir()
    (tmp_path / "cache" / "blob").write_text("c", encoding="utf-8")

    snapshot = create_snapshot(tmp_path, excludes=["cache"])

    assert list(snapshot.files) == ["keep.txt"]


def test_version_clock_is_strictly_increasing():
    clock = VersionClock(now=lambda: 1000)

    assert [clock.next_id() for _ in range(3)] == [1000, 1001, 1002]


def test_version_clock_follows_wall_clock():
    ticks = iter([10, 500, 400])
    clock = VersionClock(now=lambda: next(ticks))

    assert clock.next_id() == 10
    assert clock.next_id() == 500
    assert clock.next_id() == 501


def test_back_to_back_snapshots_get_distinct_ids(tmp_path: Path):
    builder = SnapshotBuilder(tmp_path, clock=VersionClock(now=lambda: 42))

    first = builder.create_snapshot()
    second = builder.create_snapshot()

    assert second.is_newer_than(first)


def test_unreadable_file_is_left_out(tmp_path: Path, monkeypatch):
    (tmp_path / "ok.txt").write_text("ok", encoding="utf-8")
    (tmp_path / "bad.txt").write_text("bad", encoding="utf-8")
    original = Path.read_bytes

    def fake_read_bytes(self):
        if self.name == "bad.txt":
            raise PermissionError("denied")
        return original(self)

    monkeypatch.setattr(Path, "read_bytes", fake_read_bytes)

    snapshot = create_snapshot(tmp_path)

    assert list(snapshot.files) == ["ok.txt"]
