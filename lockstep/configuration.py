"""Layered configuration loading for lockstep."""

from __future__ import annotations

from copy import deepcopy
from dataclasses import dataclass, field
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Mapping, MutableMapping, Optional, Tuple

import yaml

REPO_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_CONFIG_DIR = REPO_ROOT / "config"
USER_CONFIG_DIR = Path("~/.config/lockstep")

DiagnosticLevel = Literal["info", "warning", "error"]
ConfigurationStatus = Literal["ready", "missing", "invalid"]


SchemaSpec = Dict[str, Any]

DEFAULT_EXCLUDES: List[str] = [
    "node_modules",
    ".git",
    ".lockstep",
    "dist",
    "build",
    ".env",
]


CONFIG_SCHEMA: SchemaSpec = {
    "logging": {
        "type": dict,
        "schema": {
            "level": {"type": str, "default": "WARNING"},
            "structured": {"type": bool, "default": False},
        },
        "default": {},
    },
    "ui": {
        "type": dict,
        "schema": {
            "verbose": {"type": bool, "default": True},
        },
        "default": {},
    },
    "snapshot": {
        "type": dict,
        "schema": {
            "protected_folder": {"type": str, "default": ".lockstep"},
            "snapshot_file": {"type": str, "default": "base_snapshot.json"},
            "excludes": {
                "type": list,
                "item_type": str,
                "default_factory": lambda: list(DEFAULT_EXCLUDES),
            },
            "extra_excludes": {
                "type": list,
                "item_type": str,
                "default_factory": list,
            },
        },
        "default": {},
    },
    "client": {
        "type": dict,
        "schema": {
            "server_url": {"type": str, "default": "ws://127.0.0.1:8080/ws"},
            "base_delay": {"type": (int, float), "default": 1.0},
            "max_delay": {"type": (int, float), "default": 30.0},
            "max_attempts": {"type": int, "default": 10},
            "open_timeout": {"type": (int, float), "default": 10.0},
            "auto_apply": {"type": bool, "default": False},
            "auto_rejoin": {"type": bool, "default": True},
            "connect_on_start": {"type": bool, "default": True},
        },
        "default": {},
    },
    "broker": {
        "type": dict,
        "schema": {
            "host": {"type": str, "default": "127.0.0.1"},
            "port": {"type": int, "default": 8080},
            "cors_origins": {
                "type": list,
                "item_type": str,
                "default_factory": list,
            },
        },
        "default": {},
    },
}


@dataclass
class Diagnostic:
    """Represents a configuration validation or loading issue."""

    level: DiagnosticLevel
    message: str
    source: Optional[Path] = None


@dataclass
class ConfigurationBundle:
    """All configuration data lockstep needs at runtime."""

    workspace_dir: Path
    status: ConfigurationStatus
    config_dir: Optional[Path] = None
    merged: Dict[str, Any] = field(default_factory=dict)
    repo_defaults: Dict[str, Any] = field(default_factory=dict)
    user_overrides: Dict[str, Any] = field(default_factory=dict)
    files_loaded: List[Path] = field(default_factory=list)
    diagnostics: List[Diagnostic] = field(default_factory=list)
    log_path: Optional[Path] = None

    def section(self, name: str) -> Dict[str, Any]:
        return (self.merged.get(name) or {}) if self.merged else {}


def resolve_workspace_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the workspace path from the environment (default: cwd)."""

    env_source = env if env is not None else os.environ
    raw = env_source.get("LOCKSTEP_WORKSPACE")
    return Path(raw).expanduser() if raw else Path.cwd()


def resolve_config_dir(env: Optional[Mapping[str, str]] = None) -> Path:
    """Resolve the user configuration directory from the environment."""

    env_source = env if env is not None else os.environ
    raw = env_source.get("LOCKSTEP_CONFIG_DIR")
    return Path(raw).expanduser() if raw else USER_CONFIG_DIR.expanduser()


@dataclass
class ConfigLayer:
    """YAML data read from one directory, merged in file-name order."""

    label: str
    directory: Path
    data: Dict[str, Any] = field(default_factory=dict)
    files: List[Path] = field(default_factory=list)


def load_runtime_configuration(
    workspace_dir: Optional[Path] = None,
    config_dir: Optional[Path] = None,
) -> ConfigurationBundle:
    """Load repo defaults and user overrides."""

    workspace = workspace_dir or resolve_workspace_dir()
    user_dir = config_dir or resolve_config_dir()
    diagnostics: List[Diagnostic] = []

    layers = [read_config_layer(DEFAULT_CONFIG_DIR, "repo defaults", diagnostics)]
    # A user directory is optional; only report problems once it exists.
    if user_dir.exists():
        layers.append(read_config_layer(user_dir, "user overrides", diagnostics))
    else:
        layers.append(ConfigLayer(label="user overrides", directory=user_dir))

    merged: Dict[str, Any] = {}
    for layer in layers:
        _deep_merge_dicts(merged, layer.data)
    SchemaValidator(diagnostics).validate(merged)

    status = _workspace_status(workspace, diagnostics)
    if status == "ready" and any(diag.level == "error" for diag in diagnostics):
        status = "invalid"

    return ConfigurationBundle(
        workspace_dir=workspace,
        status=status,
        config_dir=user_dir,
        merged=merged,
        repo_defaults=layers[0].data,
        user_overrides=layers[1].data,
        files_loaded=[path for layer in layers for path in layer.files],
        diagnostics=diagnostics,
    )


def _workspace_status(workspace: Path, diagnostics: List[Diagnostic]) -> ConfigurationStatus:
    if not workspace.exists():
        diagnostics.append(Diagnostic("error", f"Workspace directory '{workspace}' does not exist."))
        return "missing"
    if not workspace.is_dir():
        diagnostics.append(Diagnostic("error", f"Workspace path '{workspace}' is not a directory."))
        return "invalid"
    return "ready"


def read_config_layer(directory: Path, label: str, diagnostics: List[Diagnostic]) -> ConfigLayer:
    """Read every *.yml / *.yaml file in `directory` into a single layer.

    Files that fail to parse or hold something other than a mapping are
    reported and skipped; the rest still load.
    """

    layer = ConfigLayer(label=label, directory=directory)
    if not directory.exists():
        diagnostics.append(
            Diagnostic("warning", f"No configuration directory found at '{directory}' ({label}).", directory)
        )
        return layer
    if not directory.is_dir():
        diagnostics.append(
            Diagnostic("error", f"Configuration path '{directory}' ({label}) is not a directory.", directory)
        )
        return layer

    for path in sorted(directory.glob("*.yml")) + sorted(directory.glob("*.yaml")):
        try:
            content = yaml.safe_load(path.read_text(encoding="utf-8"))
        except yaml.YAMLError as exc:
            diagnostics.append(Diagnostic("error", f"Failed to parse '{path}': {exc}", path))
            continue
        if content is not None and not isinstance(content, Mapping):
            diagnostics.append(
                Diagnostic("warning", f"Ignoring '{path}': top level is not a mapping.", path)
            )
            continue
        _deep_merge_dicts(layer.data, content or {})
        layer.files.append(path)

    if not layer.files:
        diagnostics.append(
            Diagnostic("info", f"No YAML files found under '{directory}' ({label}).", directory)
        )
    return layer


def _deep_merge_dicts(dest: MutableMapping[str, Any], source: Mapping[str, Any]) -> None:
    for key, value in source.items():
        current = dest.get(key)
        if isinstance(current, MutableMapping) and isinstance(value, Mapping):
            _deep_merge_dicts(current, value)
        else:
            dest[key] = deepcopy(value)


def _type_name(expected: Any) -> str:
    if isinstance(expected, tuple):
        return ", ".join(t.__name__ for t in expected)
    return expected.__name__


class SchemaValidator:
    """Checks merged config against CONFIG_SCHEMA, repairing it in place.

    Missing keys get their defaults. Values of the wrong type are replaced
    with the default and reported as errors. Unknown keys are kept and
    reported as warnings.
    """

    def __init__(self, diagnostics: List[Diagnostic], schema: Optional[SchemaSpec] = None):
        self.diagnostics = diagnostics
        self.schema = schema if schema is not None else CONFIG_SCHEMA

    def validate(self, config: Dict[str, Any]) -> None:
        self._check_mapping(config, self.schema, "config")

    def _error(self, message: str) -> None:
        self.diagnostics.append(Diagnostic("error", message))

    @staticmethod
    def _default(rule: SchemaSpec) -> Any:
        factory = rule.get("default_factory")
        if callable(factory):
            return factory()
        return deepcopy(rule.get("default"))

    def _check_mapping(self, target: Dict[str, Any], schema: SchemaSpec, path: str) -> None:
        for key in target:
            if key not in schema:
                self.diagnostics.append(Diagnostic("warning", f"Unknown configuration key '{path}.{key}'."))

        for key, rule in schema.items():
            child_path = f"{path}.{key}"
            if key not in target:
                if "default" not in rule and "default_factory" not in rule:
                    continue
                target[key] = self._default(rule)
            elif not self._check_value(target, key, rule, child_path):
                continue
            if rule.get("type") is dict:
                self._check_mapping(target[key], rule.get("schema", {}), child_path)

    def _check_value(self, target: Dict[str, Any], key: str, rule: SchemaSpec, path: str) -> bool:
        """Validate target[key]; returns False once the value was replaced by a list default."""

        value = target[key]
        expected = rule.get("type")
        if expected is None:
            return True
        if expected is dict:
            if not isinstance(value, dict):
                self._error(f"'{path}' must be a mapping.")
                target[key] = self._default(rule) or {}
            return True
        if expected is list:
            if not isinstance(value, list):
                self._error(f"'{path}' must be a list.")
                target[key] = self._default(rule) or []
                return False
            target[key] = self._filter_items(value, rule.get("item_type"), path)
            return True
        # bool is an int subclass; YAML `true` must not pass as a port number.
        if (isinstance(value, bool) and expected is not bool) or not isinstance(value, expected):
            self._error(f"'{path}' must be of type {_type_name(expected)}.")
            target[key] = self._default(rule)
        return True

    def _filter_items(self, items: List[Any], item_type: Any, path: str) -> List[Any]:
        if item_type is None:
            return items
        kept: List[Any] = []
        for index, item in enumerate(items):
            if isinstance(item, item_type):
                kept.append(item)
            else:
                self._error(f"'{path}[{index}]' must be of type {_type_name(item_type)}.")
        return kept


__all__ = [
    "ConfigLayer",
    "ConfigurationBundle",
    "ConfigurationStatus",
    "DEFAULT_CONFIG_DIR",
    "Diagnostic",
    "SchemaValidator",
    "load_runtime_configuration",
    "read_config_layer",
    "resolve_config_dir",
    "resolve_workspace_dir",
]
