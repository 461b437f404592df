"""Tests for the broker wire protocol."""

from __future__ import annotations

import json

import pytest

from lockstep.protocol import (
    ErrorMessage,
    JoinSession,
    LeaveSession,
    MalformedMessageError,
    MessageType,
    ProtocolError,
    SnapshotMessage,
    StartSession,
    StudentCount,
    TeacherSnapshot,
    UnknownMessageTypeError,
    decode_message,
    encode_message,
)
from lockstep.snapshot import Snapshot, SnapshotFile


def _snapshot() -> Snapshot:
    return Snapshot(id=11, created_at=22, files={"a.txt": SnapshotFile.from_content(b"a")})


def test_decode_start_session():
    message = decode_message('{"type": "START_SESSION", "code": "ABC123"}')

    assert message == StartSession(code="ABC123")
    assert message.type is MessageType.START_SESSION


def test_decode_accepts_bytes_frames():
    assert decode_message(b'{"type": "LEAVE_SESSION"}') == LeaveSession()


def test_encode_uses_wire_names():
    frame = json.loads(encode_message(TeacherSnapshot(snapshot=_snapshot())))

    assert frame["type"] == "TEACHER_SNAPSHOT"
    assert frame["snapshot"]["id"] == 11
    assert frame["snapshot"]["createdAt"] == 22


def test_snapshot_message_survives_encoding():
    original = SnapshotMessage(snapshot=_snapshot())

    assert decode_message(encode_message(original)) == original


def test_text_messages_default_to_empty():
    assert decode_message('{"type": "ERROR"}') == ErrorMessage(message="")


def test_student_count():
    assert decode_message('{"type": "STUDENT_COUNT", "count": 3}') == StudentCount(count=3)


@pytest.mark.parametrize("count", [-1, "2", True, None])
def test_student_count_rejects_bad_counts(count):
    with pytest.raises(MalformedMessageError):
        decode_message(json.dumps({"type": "STUDENT_COUNT", "count": count}))


def test_unknown_type_is_distinguished():
    with pytest.raises(UnknownMessageTypeError) as excinfo:
        decode_message('{"type": "SELF_DESTRUCT"}')

    assert excinfo.value.message_type == "SELF_DESTRUCT"
    assert isinstance(excinfo.value, ProtocolError)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        "[1, 2]",
        '{"code": "ABC"}',
        '{"type": 5}',
        '{"type": "JOIN_SESSION"}',
        '{"type": "JOIN_SESSION", "code": ""}',
        '{"type": "TEACHER_SNAPSHOT"}',
        '{"type": "SNAPSHOT", "snapshot": {"id": "x", "files": {}}}',
        '{"type": "ERROR", "message": 7}',
    ],
)
def test_malformed_frames(raw):
    with pytest.raises(MalformedMessageError):
        decode_message(raw)


def test_snapshot_with_traversal_path_is_rejected():
    frame = {
        "type": "SNAPSHOT",
        "snapshot": {
            "id": 1,
            "createdAt": 1,
            "files": {"../evil": SnapshotFile.from_content(b"x").to_dict()},
        },
    }

    with pytest.raises(MalformedMessageError):
        decode_message(json.dumps(frame))


def test_join_session_round_trip():
    assert decode_message(encode_message(JoinSession(code="XY"))) == JoinSession(code="XY")
