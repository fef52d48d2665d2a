"""
session/session.py — One connection lifetime

A Session is owned exclusively by the SessionManager. It is created for each
connection attempt and closed on any terminal event. Subscriptions are
acquired through listen() and registered on an ExitStack, so close()
releases every one of them before the session reference is dropped. A dead
session can never call back into the manager.
"""

from __future__ import annotations

import time
import uuid
from contextlib import ExitStack
from typing import Any, Callable, Optional

from nomadbot.observability.logger import get_logger
from nomadbot.world.events import Subscription
from nomadbot.world.interface import ConnectionTarget, Credentials, WorldAgent

log = get_logger(__name__)


class Session:
    """All runtime state for a single connection attempt/lifetime."""

    def __init__(
        self,
        session_id: str,
        agent: WorldAgent,
        target: ConnectionTarget,
        credentials: Credentials,
    ) -> None:
        self.id = session_id
        self.agent = agent
        self.target = target
        self.credentials = credentials
        self.created_at = time.monotonic()
        self.ready_at: Optional[float] = None

        # True from the creation attempt until the session reaches readiness
        self.starting = True

        self._subscriptions = ExitStack()
        self._listener_count = 0
        self._closed = False

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def create(
        cls,
        agent: WorldAgent,
        target: ConnectionTarget,
        credentials: Credentials,
    ) -> "Session":
        return cls(
            session_id=f"sess_{uuid.uuid4().hex[:12]}",
            agent=agent,
            target=target,
            credentials=credentials,
        )

    # ── Subscriptions ─────────────────────────────────────────────────────────

    def listen(self, event: str, handler: Callable[..., Any]) -> Subscription:
        """Subscribe to an agent event for the lifetime of this session."""
        if self._closed:
            raise RuntimeError(f"session {self.id} is closed")
        sub = self._subscriptions.enter_context(self.agent.events.subscribe(event, handler))
        self._listener_count += 1
        return sub

    @property
    def listener_count(self) -> int:
        return 0 if self._closed else self._listener_count

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def alive(self) -> bool:
        return not self._closed

    @property
    def active(self) -> bool:
        return self.alive and not self.starting

    def mark_ready(self) -> None:
        self.starting = False
        self.ready_at = time.monotonic()

    @property
    def uptime_s(self) -> float:
        if self.ready_at is None or self._closed:
            return 0.0
        return time.monotonic() - self.ready_at

    def close(self) -> None:
        """Release every subscription. Idempotent."""
        if self._closed:
            return
        self._closed = True
        self.starting = False
        self._subscriptions.close()
        log.debug("session.closed", session_id=self.id, listeners=self._listener_count)

    def __repr__(self) -> str:
        state = "closed" if self._closed else ("starting" if self.starting else "active")
        return f"Session(id={self.id!r}, target='{self.target}', state={state})"
