"""
gateway/status_server.py — Status reporter

Tiny HTTP surface served from the same event loop as the bot:

    GET  /           → "Nomad Bot Online" (keep-alive probe for hosting platforms)
    GET  /status     → connection state, mode, uptimes, last disconnect reason
    POST /reconnect  → 202, asks the SessionManager to cycle the session

Signal handling stays with the host process; the embedded uvicorn server
only stops when StatusServer.stop() is called.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.responses import PlainTextResponse
from pydantic import BaseModel

from nomadbot import __version__
from nomadbot.observability.logger import get_logger

log = get_logger(__name__)

KEEPALIVE_TEXT = "Nomad Bot Online"


class StatusResponse(BaseModel):
    connected: bool
    state: str
    mode: str
    uptime_seconds: float
    session_id: Optional[str] = None
    session_uptime_seconds: float = 0.0
    target: str
    username: str
    last_disconnect_reason: Optional[str] = None
    reconnect_in_seconds: Optional[float] = None
    reconnects: int = 0


class ReconnectAccepted(BaseModel):
    accepted: bool = True


def create_status_app(manager) -> FastAPI:
    """Build the FastAPI app around a SessionManager (anything with status()/force_reconnect())."""
    app = FastAPI(title="nomadbot", version=__version__)

    @app.get("/", response_class=PlainTextResponse)
    async def keepalive() -> str:
        return KEEPALIVE_TEXT

    @app.get("/status", response_model=StatusResponse)
    async def status() -> StatusResponse:
        return StatusResponse(**manager.status())

    @app.post("/reconnect", status_code=202, response_model=ReconnectAccepted)
    async def force_reconnect() -> ReconnectAccepted:
        log.info("status.reconnect_requested")
        manager.force_reconnect()
        return ReconnectAccepted()

    return app


class _EmbeddedServer(uvicorn.Server):
    """uvicorn server that leaves SIGINT/SIGTERM to the host process."""

    def install_signal_handlers(self) -> None:  # uvicorn < 0.29
        return None

    @contextlib.contextmanager
    def capture_signals(self):  # uvicorn >= 0.29
        yield


class StatusServer:
    """Runs the status app as a background task on the running loop."""

    def __init__(self, app: FastAPI, host: str = "0.0.0.0", port: int = 3000) -> None:
        self.host = host
        self.port = port
        config = uvicorn.Config(app, host=host, port=port, log_config=None, access_log=False)
        self._server = _EmbeddedServer(config)
        self._task: Optional[asyncio.Task] = None

    @classmethod
    def from_settings(cls, settings, manager) -> "StatusServer":
        return cls(create_status_app(manager), host=settings.status.host, port=settings.status_port)

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def start(self) -> None:
        if self.running:
            log.warning("status.already_running")
            return
        self._task = asyncio.get_running_loop().create_task(self._server.serve())
        log.info("status.listening", host=self.host, port=self.port)

    async def stop(self) -> None:
        if self._task is None:
            return
        self._server.should_exit = True
        try:
            await asyncio.wait_for(self._task, timeout=5.0)
        except asyncio.TimeoutError:
            log.warning("status.stop_timeout")
            self._task.cancel()
        self._task = None
        log.info("status.stopped")
