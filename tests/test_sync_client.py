"""Tests for the broker client and its reconnect policy."""

from __future__ import annotations

import json
import queue
import time
from typing import List, Optional

import pytest

from lockstep.protocol import StudentCount
from lockstep.snapshot import Snapshot, SnapshotFile
from lockstep.sync import ClientSettings, ConnectionState, SyncClient, backoff_delay


class FakeTransport:
    """Transport whose inbound frames are fed by the test."""

    def __init__(self) -> None:
        self.sent: List[str] = []
        self.closed = False
        self._inbound: "queue.Queue[Optional[str]]" = queue.Queue()

    def send(self, message: str) -> None:
        if self.closed:
            raise OSError("closed")
        self.sent.append(message)

    def close(self) -> None:
        self.closed = True
        self._inbound.put(None)

    def feed(self, frame: str) -> None:
        self._inbound.put(frame)

    def drop(self) -> None:
        self._inbound.put(None)

    def __iter__(self):
        while True:
            frame = self._inbound.get()
            if frame is None:
                return
            yield frame


class FakeTimer:
    def __init__(self, delay: float, callback) -> None:
        self.delay = delay
        self.callback = callback
        self.cancelled = False

    def cancel(self) -> None:
        self.cancelled = True

    def fire(self) -> None:
        self.callback()


class Harness:
    def __init__(self, fail_connects: int = 0, max_attempts: int = 10) -> None:
        self.transports: List[FakeTransport] = []
        self.timers: List[FakeTimer] = []
        self.fail_connects = fail_connects
        self.client = SyncClient(
            ClientSettings(server_url="ws://broker.test/ws", max_attempts=max_attempts),
            connect_factory=self.connect,
            timer_factory=self.timer,
        )

    def connect(self, url: str, timeout: float) -> FakeTransport:
        if self.fail_connects > 0:
            self.fail_connects -= 1
            raise ConnectionRefusedError("refused")
        transport = FakeTransport()
        self.transports.append(transport)
        return transport

    def timer(self, delay: float, callback) -> FakeTimer:
        timer = FakeTimer(delay, callback)
        self.timers.append(timer)
        return timer


def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return
        time.sleep(0.01)
    raise AssertionError("condition not met in time")


def test_backoff_doubles_and_caps():
    delays = [backoff_delay(attempt, 1.0, 30.0) for attempt in range(7)]

    assert delays == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0, 30.0]


def test_connect_and_send():
    harness = Harness()
    changes: List[bool] = []
    harness.client.on_connection_change(changes.append)

    assert harness.client.connect() is True
    assert harness.client.state is ConnectionState.CONNECTED
    assert harness.client.start_session("ABC") is True

    assert json.loads(harness.transports[0].sent[0]) == {"type": "START_SESSION", "code": "ABC"}
    assert changes == [True]


def test_connect_is_idempotent():
    harness = Harness()
    harness.client.connect()
    harness.client.connect()

    assert len(harness.transports) == 1


def test_sending_while_offline_returns_false():
    harness = Harness()

    assert harness.client.join_session("ABC") is False
    assert harness.client.leave_session() is False


def test_failed_connect_schedules_backoff():
    harness = Harness(fail_connects=6)

    assert harness.client.connect() is False
    for _ in range(5):
        harness.timers[-1].fire()

    assert [t.delay for t in harness.timers] == [1.0, 2.0, 4.0, 8.0, 16.0, 30.0]
    assert harness.client.reconnect_attempts == 6

    harness.timers[-1].fire()
    assert harness.client.connected
    assert harness.client.reconnect_attempts == 0


def test_reconnect_stops_after_max_attempts():
    harness = Harness(fail_connects=100, max_attempts=3)

    harness.client.connect()
    for _ in range(5):
        if harness.timers and not harness.timers[-1].cancelled:
            harness.timers[-1].fire()

    assert len(harness.timers) == 3
    assert harness.client.state is ConnectionState.DISCONNECTED


def test_unexpected_drop_triggers_reconnect():
    harness = Harness()
    harness.client.connect()

    harness.transports[0].drop()
    _wait_for(lambda: len(harness.timers) == 1)

    assert harness.client.state is ConnectionState.DISCONNECTED
    harness.timers[0].fire()
    assert harness.client.connected
    assert len(harness.transports) == 2


def test_manual_disconnect_does_not_reconnect():
    harness = Harness()
    changes: List[bool] = []
    harness.client.on_connection_change(changes.append)
    harness.client.connect()

    harness.client.disconnect()

    assert harness.transports[0].closed
    assert harness.client.manually_closed
    assert changes == [True, False]
    assert harness.timers == []


def test_disconnect_cancels_pending_retry():
    harness = Harness(fail_connects=1)
    harness.client.connect()
    pending = harness.timers[0]

    harness.client.disconnect()
    pending.fire()

    assert pending.cancelled
    assert harness.transports == []


def test_inbound_frames_reach_handlers():
    harness = Harness()
    snapshots: List[Snapshot] = []
    messages = []
    harness.client.on_snapshot(snapshots.append)
    harness.client.on_message(messages.append)
    harness.client.connect()

    snapshot = Snapshot(id=3, created_at=4, files={"x": SnapshotFile.from_content(b"x")})
    transport = harness.transports[0]
    transport.feed("not json")
    transport.feed(json.dumps({"type": "MYSTERY"}))
    transport.feed(json.dumps({"type": "SNAPSHOT", "snapshot": snapshot.to_dict()}))
    transport.feed(json.dumps({"type": "STUDENT_COUNT", "count": 2}))

    _wait_for(lambda: len(messages) == 1)
    assert snapshots == [snapshot]
    assert messages == [StudentCount(count=2)]


def test_failing_handler_does_not_break_reader():
    harness = Harness()
    received = []

    def broken(_message):
        raise RuntimeError("boom")

    harness.client.on_message(broken)
    harness.client.on_message(received.append)
    harness.client.connect()
    harness.transports[0].feed(json.dumps({"type": "LEFT", "message": "bye"}))
    harness.transports[0].feed(json.dumps({"type": "LEFT", "message": "again"}))

    _wait_for(lambda: len(received) == 2)


def test_client_settings_from_config():
    settings = ClientSettings.from_config(
        {"client": {"server_url": "ws://example/ws", "max_attempts": 4, "auto_apply": True}},
        env={},
    )

    assert settings.server_url == "ws://example/ws"
    assert settings.max_attempts == 4
    assert settings.auto_apply is True
    assert settings.base_delay == 1.0


def test_client_settings_env_override():
    settings = ClientSettings.from_config({}, env={"LOCKSTEP_SERVER_URL": "ws://env/ws"})

    assert settings.server_url == "ws://env/ws"


@pytest.mark.parametrize("attempt, expected", [(0, 0.5), (3, 4.0), (10, 5.0)])
def test_backoff_respects_custom_settings(attempt, expected):
    assert backoff_delay(attempt, base_delay=0.5, max_delay=5.0) == expected
