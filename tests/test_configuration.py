"""Tests for the layered configuration loader."""

from __future__ import annotations

from pathlib import Path

import pytest

from lockstep import configuration


def _prepare_repo_defaults(tmp_path: Path, content: str = "ui:\n  verbose: true\n") -> Path:
    config_dir = tmp_path / "config"
    config_dir.mkdir()
    (config_dir / "10-defaults.yml").write_text(content, encoding="utf-8")
    return config_dir


def test_resolve_workspace_dir_uses_env_expansion(tmp_path: Path):
    env = {"LOCKSTEP_WORKSPACE": str(tmp_path / "ws")}
    assert configuration.resolve_workspace_dir(env=env) == tmp_path / "ws"


def test_resolve_workspace_dir_defaults_to_cwd(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.chdir(tmp_path)
    assert configuration.resolve_workspace_dir(env={}) == tmp_path


def test_resolve_config_dir_from_env(tmp_path: Path):
    env = {"LOCKSTEP_CONFIG_DIR": str(tmp_path / "cfg")}
    assert configuration.resolve_config_dir(env=env) == tmp_path / "cfg"


def test_load_runtime_configuration_merges_repo_and_user(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(
        tmp_path,
        content="client:\n  server_url: ws://repo/ws\n  max_attempts: 5\n",
    )
    user_dir = tmp_path / "user"
    user_dir.mkdir()
    (user_dir / "20-overrides.yml").write_text(
        "client:\n  server_url: ws://mine/ws\n",
        encoding="utf-8",
    )
    workspace = tmp_path / "ws"
    workspace.mkdir()

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(workspace, config_dir=user_dir)

    assert bundle.status == "ready"
    assert bundle.merged["client"]["server_url"] == "ws://mine/ws"
    assert bundle.merged["client"]["max_attempts"] == 5
    assert bundle.merged["client"]["base_delay"] == 1.0
    assert len(bundle.files_loaded) == 2


def test_schema_fills_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", _prepare_repo_defaults(tmp_path))

    bundle = configuration.load_runtime_configuration(tmp_path, config_dir=tmp_path / "none")

    assert bundle.section("snapshot")["protected_folder"] == ".lockstep"
    assert "node_modules" in bundle.section("snapshot")["excludes"]
    assert bundle.section("broker")["port"] == 8080


def test_load_runtime_configuration_reports_missing_workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", _prepare_repo_defaults(tmp_path))

    bundle = configuration.load_runtime_configuration(tmp_path / "missing", config_dir=tmp_path / "none")

    assert bundle.status == "missing"
    assert any(diag.level == "error" for diag in bundle.diagnostics)


def test_load_runtime_configuration_handles_bad_yaml(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    repo_dir = _prepare_repo_defaults(tmp_path)
    user_dir = tmp_path / "user"
    user_dir.mkdir()
    (user_dir / "broken.yml").write_text("client: [\n", encoding="utf-8")

    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", repo_dir)

    bundle = configuration.load_runtime_configuration(tmp_path, config_dir=user_dir)

    assert bundle.status == "invalid"
    assert any("Failed to parse" in diag.message for diag in bundle.diagnostics)


def test_missing_user_config_dir_is_not_an_error(tmp_path: Path, monkeypatch: pytest.MonkeyPatch):
    monkeypatch.setattr(configuration, "DEFAULT_CONFIG_DIR", _prepare_repo_defaults(tmp_path))

    bundle = configuration.load_runtime_configuration(tmp_path, config_dir=tmp_path / "absent")

    assert bundle.status == "ready"
    assert not any(diag.level == "error" for diag in bundle.diagnostics)
