"""Tests for snapshot comparison."""

from __future__ import annotations

from lockstep.snapshot import Snapshot, SnapshotFile, compute_diff


def _snap(**files: bytes) -> Snapshot:
    return Snapshot(
        id=1,
        created_at=1,
        files={name.replace("__", "/"): SnapshotFile.from_content(body) for name, body in files.items()},
    )


def test_diff_classifies_changes():
    base = _snap(a=b"1", b=b"2", c=b"3")
    current = _snap(b=b"2", c=b"changed", d=b"4")

    diff = compute_diff(base, current)

    assert diff.added == ("d",)
    assert diff.deleted == ("a",)
    assert diff.modified == ("c",)
    assert diff.total_changes == 3
    assert diff.summary() == "1 added, 1 deleted, 1 modified"


def test_identical_snapshots_have_no_changes():
    base = _snap(a=b"1", src__x=b"2")

    diff = compute_diff(base, _snap(a=b"1", src__x=b"2"))

    assert not diff.has_changes
    assert diff.summary() == "no changes"


def test_diff_ignores_ids():
    base = Snapshot(id=1, created_at=1, files={"a": SnapshotFile.from_content(b"x")})
    current = Snapshot(id=99, created_at=2, files={"a": SnapshotFile.from_content(b"x")})

    assert not compute_diff(base, current).has_changes


def test_diff_paths_are_sorted():
    diff = compute_diff(_snap(), _snap(z=b"", a=b"", m=b""))

    assert diff.added == ("a", "m", "z")
    assert diff.to_dict()["added"] == ["a", "m", "z"]
