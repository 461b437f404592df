"""Broker server built on Starlette and uvicorn."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, List, Mapping, Optional

from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.middleware.cors import CORSMiddleware
from starlette.routing import Route, WebSocketRoute

from ..configuration import load_runtime_configuration
from ..logging_utils import setup_logging
from .routes import health_handler, status_handler, websocket_session_handler
from .sessions import SessionBroker

logger = logging.getLogger("lockstep.broker.server")


class BrokerServerState(str, Enum):
    """Broker server lifecycle states."""
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass
class BrokerSettings:
    """Settings for the broker server."""

    host: str = "127.0.0.1"
    port: int = 8080
    cors_origins: List[str] = field(default_factory=list)

    @classmethod
    def from_config(
        cls,
        config: Dict[str, Any],
        env: Optional[Mapping[str, str]] = None,
    ) -> "BrokerSettings":
        raw = config.get("broker", {}) if config else {}
        env_source = env if env is not None else os.environ
        port = env_source.get("PORT") or raw.get("port", 8080)
        return cls(
            host=str(raw.get("host", "127.0.0.1")),
            port=int(port),
            cors_origins=list(raw.get("cors_origins", [])),
        )


@dataclass
class LockstepBrokerServer:
    """WebSocket broker relaying snapshots between session members."""

    settings: BrokerSettings = field(default_factory=BrokerSettings)
    broker: SessionBroker = field(default_factory=SessionBroker)

    _state: BrokerServerState = field(default=BrokerServerState.STOPPED, init=False)
    _server: Optional[Any] = field(default=None, init=False)
    _thread: Optional[threading.Thread] = field(default=None, init=False)
    _loop: Optional[asyncio.AbstractEventLoop] = field(default=None, init=False)

    @property
    def state(self) -> BrokerServerState:
        """Current server state."""
        return self._state

    def create_app(self) -> Starlette:
        """Create the Starlette application bound to this server's broker."""
        middleware = []
        if self.settings.cors_origins:
            middleware.append(
                Middleware(
                    CORSMiddleware,
                    allow_origins=self.settings.cors_origins,
                    allow_methods=["GET"],
                    allow_headers=["*"],
                )
            )

        routes = [
            Route("/health", health_handler, methods=["GET"]),
            Route("/api/v1/status", status_handler, methods=["GET"]),
            WebSocketRoute("/", websocket_session_handler),
            WebSocketRoute("/ws", websocket_session_handler),
        ]

        app = Starlette(
            routes=routes,
            middleware=middleware,
            lifespan=self._lifespan,
        )
        app.state.broker = self.broker
        return app

    @contextlib.asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info("Broker listening on %s:%s", self.settings.host, self.settings.port)
        self._state = BrokerServerState.RUNNING
        try:
            yield
        finally:
            logger.info("Broker shutting down")
            self._state = BrokerServerState.STOPPED

    def start(self, blocking: bool = False) -> bool:
        """Start the broker.

        Args:
            blocking: If True, serve in the current thread until stopped.
                Otherwise serve from a background thread.

        Returns:
            True if the server reached the running state.
        """
        if self._state == BrokerServerState.RUNNING:
            logger.warning("Broker is already running")
            return False

        import uvicorn

        self._state = BrokerServerState.STARTING
        config = uvicorn.Config(
            self.create_app(),
            host=self.settings.host,
            port=self.settings.port,
            log_level="warning",
            access_log=False,
        )
        self._server = uvicorn.Server(config)

        if blocking:
            try:
                asyncio.run(self._server.serve())
            except Exception as e:
                logger.exception("Broker error: %s", e)
                self._state = BrokerServerState.ERROR
                return False
            return True

        self._thread = threading.Thread(
            target=self._run_in_thread,
            daemon=True,
            name="lockstep-broker",
        )
        self._thread.start()

        for _ in range(20):  # Wait up to 2 seconds
            time.sleep(0.1)
            if self._state == BrokerServerState.RUNNING:
                break

        return self._state == BrokerServerState.RUNNING

    def _run_in_thread(self) -> None:
        try:
            self._loop = asyncio.new_event_loop()
            asyncio.set_event_loop(self._loop)
            self._loop.run_until_complete(self._server.serve())
        except Exception as e:
            logger.exception("Broker thread error: %s", e)
            self._state = BrokerServerState.ERROR
        finally:
            if self._loop:
                self._loop.close()
            if self._state != BrokerServerState.ERROR:
                self._state = BrokerServerState.STOPPED

    def stop(self) -> bool:
        """Stop a background broker."""
        if self._state != BrokerServerState.RUNNING:
            logger.warning("Broker is not running")
            return False

        self._state = BrokerServerState.STOPPING
        if self._server:
            self._server.should_exit = True

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=5.0)

        self._state = BrokerServerState.STOPPED
        self._server = None
        self._thread = None
        return True

    def status(self) -> Dict[str, Any]:
        """Get server status information."""
        running = self._state == BrokerServerState.RUNNING
        return {
            "state": self._state.value,
            "host": self.settings.host,
            "port": self.settings.port,
            "url": f"ws://{self.settings.host}:{self.settings.port}/ws" if running else None,
            **self.broker.stats(),
        }


def main() -> None:
    """Entry point for `lockstep-broker`."""

    config_bundle = load_runtime_configuration()
    logging_config = config_bundle.section("logging")
    level = os.environ.get("LOCKSTEP_LOG_LEVEL") or logging_config.get("level", "INFO")
    log_path = setup_logging(
        config_bundle.config_dir,
        level,
        structured=bool(logging_config.get("structured", False)),
        log_name="broker",
    )
    config_bundle.log_path = log_path

    for diag in config_bundle.diagnostics:
        if diag.level != "info":
            logger.warning("[config] %s", diag.message)

    settings = BrokerSettings.from_config(config_bundle.merged)
    server = LockstepBrokerServer(settings=settings)
    print(f"[lockstep] broker on ws://{settings.host}:{settings.port}/ws (logs: {log_path})")
    try:
        server.start(blocking=True)
    except KeyboardInterrupt:
        pass


__all__ = ["BrokerServerState", "BrokerSettings", "LockstepBrokerServer", "main"]
