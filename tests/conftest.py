"""Shared fixtures."""

from __future__ import annotations

from types import SimpleNamespace
from typing import List

import pytest


class FakeClient:
    """Records outbound calls; tests push inbound events through the hooks."""

    def __init__(self, connected: bool = True) -> None:
        self.connected = connected
        self.settings = SimpleNamespace(server_url="ws://fake/ws")
        self.calls: List[tuple] = []
        self.connection_handlers = []
        self.snapshot_handlers = []
        self.message_handlers = []

    def on_connection_change(self, handler):
        self.connection_handlers.append(handler)

    def on_snapshot(self, handler):
        self.snapshot_handlers.append(handler)

    def on_message(self, handler):
        self.message_handlers.append(handler)

    def start_session(self, code):
        self.calls.append(("start", code))
        return self.connected

    def join_session(self, code):
        self.calls.append(("join", code))
        return self.connected

    def leave_session(self):
        self.calls.append(("leave",))
        return self.connected

    def publish_snapshot(self, snapshot):
        self.calls.append(("publish", snapshot.id))
        return self.connected

    def deliver(self, message):
        for handler in self.message_handlers:
            handler(message)

    def deliver_snapshot(self, snapshot):
        for handler in self.snapshot_handlers:
            handler(snapshot)

    def set_connected(self, connected: bool):
        self.connected = connected
        for handler in self.connection_handlers:
            handler(connected)


@pytest.fixture
def client() -> FakeClient:
    return FakeClient()
