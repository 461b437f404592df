"""Logging helpers shared by the lockstep client and broker.

Everything hangs off the ``lockstep`` logger: a rotating text log, a console
stream, and (when ``structured`` is set) a JSON-lines file beside the text
log. Modules log through ``logging.getLogger("lockstep.<area>")``.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, timezone
from logging.handlers import RotatingFileHandler
from pathlib import Path
import sys
from typing import Any, Dict, Union

LOG_DIR = Path("logs")
MAX_BYTES = 5 * 1024 * 1024
BACKUP_COUNT = 3
TEXT_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
REPO_ROOT = Path(__file__).resolve().parent.parent
FALLBACK_ROOT = REPO_ROOT / ".lockstep_runtime"

# Record attributes copied into JSON entries when a caller passes them via `extra=`.
CONTEXT_FIELDS = ("session_code", "connection_id", "snapshot_id")
NOISY_LOGGERS = ("websockets", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with session context when present."""

    def format(self, record: logging.LogRecord) -> str:
        entry: Dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        context = {name: getattr(record, name) for name in CONTEXT_FIELDS if hasattr(record, name)}
        if context:
            entry["context"] = context
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def setup_logging(
    state_dir: Path,
    level: Union[str, int] = logging.WARNING,
    structured: bool = False,
    log_name: str = "client",
) -> Path:
    """Route the ``lockstep`` logger to files under ``state_dir/logs``.

    Calling it again replaces the previous handlers, so the REPL and tests can
    reconfigure freely. ``log_name`` keeps client and broker logs apart.
    Returns the path of the text log, which may sit under FALLBACK_ROOT when
    ``state_dir`` is not writable.
    """

    text_path = _resolve_log_path(state_dir, f"{log_name}.log")
    text_formatter = logging.Formatter(TEXT_FORMAT)

    console = logging.StreamHandler()
    console.setFormatter(text_formatter)
    handlers = [_rotating_handler(text_path, text_formatter), console]
    if structured:
        json_path = _resolve_log_path(state_dir, f"{log_name}.jsonl")
        handlers.append(_rotating_handler(json_path, JSONFormatter()))

    root = logging.getLogger("lockstep")
    for old in list(root.handlers):
        root.removeHandler(old)
        old.close()
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(_resolve_level(level))
    root.propagate = False

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return text_path


def _rotating_handler(path: Path, formatter: logging.Formatter) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=MAX_BYTES, backupCount=BACKUP_COUNT, encoding="utf-8")
    handler.setFormatter(formatter)
    return handler


def _resolve_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.WARNING


def _resolve_log_path(state_dir: Path, filename: str) -> Path:
    target = state_dir / LOG_DIR / filename
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
    except PermissionError:
        target = FALLBACK_ROOT / LOG_DIR / filename
        target.parent.mkdir(parents=True, exist_ok=True)
        print(
            f"[config] Cannot write logs under '{state_dir}'; using '{target.parent}' instead.",
            file=sys.stderr,
        )
    return target


__all__ = ["FALLBACK_ROOT", "JSONFormatter", "LOG_DIR", "setup_logging"]
