"""Tests covering UI helpers of the terminal front end."""

from __future__ import annotations

from io import StringIO
from pathlib import Path
from types import SimpleNamespace

from rich.console import Console

from lockstep.app import (
    EventPrinter,
    _resolve_ui_verbose,
    build_router,
    build_sync,
    connect_on_startup,
    execute_cli_command,
)
from lockstep.broker import Role
from lockstep.configuration import ConfigurationBundle
from lockstep.sync import SessionState


def _bundle(merged: dict = None, status: str = "ready", workspace: Path = Path("/tmp/ws")) -> ConfigurationBundle:
    return ConfigurationBundle(
        workspace_dir=workspace,
        status=status,
        merged=merged or {},
    )


def _console() -> Console:
    return Console(file=StringIO(), force_terminal=False, width=120)


def test_resolve_ui_verbose_defaults_to_true(monkeypatch):
    monkeypatch.delenv("LOCKSTEP_UI_VERBOSE", raising=False)
    assert _resolve_ui_verbose(_bundle()) is True


def test_resolve_ui_verbose_reads_config(monkeypatch):
    monkeypatch.delenv("LOCKSTEP_UI_VERBOSE", raising=False)
    assert _resolve_ui_verbose(_bundle({"ui": {"verbose": False}})) is False


def test_resolve_ui_verbose_env_override(monkeypatch):
    monkeypatch.setenv("LOCKSTEP_UI_VERBOSE", "0")
    assert _resolve_ui_verbose(_bundle({"ui": {"verbose": True}})) is False


def test_build_sync_skips_unusable_workspace():
    assert build_sync(_bundle(status="missing")) is None


def test_build_sync_uses_configured_settings(tmp_path: Path):
    bundle = _bundle(
        {"client": {"server_url": "ws://cfg/ws", "auto_apply": True}, "snapshot": {"protected_folder": ".sync"}},
        workspace=tmp_path,
    )

    sync = build_sync(bundle)

    assert sync.client.settings.server_url == "ws://cfg/ws"
    assert sync.auto_apply is True
    assert sync.store.folder_path == tmp_path / ".sync"


def test_router_registers_all_commands(tmp_path: Path):
    router = build_router(_bundle(workspace=tmp_path))

    assert set(router.command_names) == {
        "apply", "connect", "diff", "disconnect", "help", "join", "leave", "reset", "snapshot", "start", "status",
    }


def test_execute_cli_command_prints_result(tmp_path: Path, capsys):
    router = build_router(_bundle(workspace=tmp_path))

    result = execute_cli_command("help join", router)

    assert "/join CODE" in result
    assert "/join CODE" in capsys.readouterr().out


def test_event_printer_announces_pending_snapshot():
    console = _console()
    printer = EventPrinter(console)

    printer(SessionState(connected=True))
    printer(SessionState(connected=True, role=Role.SUBSCRIBER, session_code="ROOM", pending_version=12))

    output = console.file.getvalue()
    assert "connected" in output
    assert "snapshot 12 is available" in output


def test_event_printer_quiet_mode_only_reports_snapshots():
    console = _console()
    printer = EventPrinter(console, verbose=False)

    printer(SessionState(connected=True, last_message="hello"))
    printer(SessionState(connected=True, pending_version=3, last_message="New snapshot 3 available"))

    output = console.file.getvalue()
    assert "hello" not in output
    assert "snapshot 3 is available" in output


class _StartupClient:
    def __init__(self, reachable: bool, connect_on_start: bool = True):
        self.settings = SimpleNamespace(server_url="ws://fake/ws", connect_on_start=connect_on_start)
        self.reachable = reachable
        self.connect_calls = 0

    def connect(self) -> bool:
        self.connect_calls += 1
        return self.reachable


def test_connect_on_startup_opens_the_connection():
    client = _StartupClient(reachable=True)

    assert connect_on_startup(SimpleNamespace(client=client)) is True
    assert client.connect_calls == 1


def test_connect_on_startup_reports_unreachable_broker(capsys):
    client = _StartupClient(reachable=False)

    assert connect_on_startup(SimpleNamespace(client=client)) is False
    assert "retrying in the background" in capsys.readouterr().out


def test_connect_on_startup_respects_setting():
    client = _StartupClient(reachable=True, connect_on_start=False)

    assert connect_on_startup(SimpleNamespace(client=client)) is False
    assert client.connect_calls == 0
    assert connect_on_startup(None) is False
