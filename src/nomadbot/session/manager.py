"""
session/manager.py — Session Manager

Owns the connection lifecycle:

    IDLE → STARTING → ACTIVE → (kicked | error | end) → BACKOFF → STARTING → …

Design
------
* start() is re-entrancy guarded: a second call while a start is in
  progress is a silent no-op, never a queued duplicate attempt.
* Exactly one Session is live at a time. On any terminal event reconnect()
  stops the scheduler, releases every subscription of the old session,
  drops the reference, and only then schedules the next start().
* At most one reconnect timer is ever pending. A later terminal event for
  the same outage is ignored, except that a duplicate-login verdict
  replaces a shorter pending delay.
* Benign decode errors during teardown are logged and absorbed; the kick
  or end that caused them is already in flight.
* All callbacks run on the one event loop, so nothing here needs a lock.

Usage::

    manager = SessionManager.from_settings(settings, connector, scheduler, policy, commands)
    manager.start()
    ...
    manager.shutdown()
"""

from __future__ import annotations

import asyncio
import time
from enum import Enum
from functools import partial
from typing import Any, Iterable, Optional

from nomadbot.observability.logger import bind_session, clear_session, get_logger
from nomadbot.session.reconnect import (
    DisconnectReason,
    ErrorClass,
    ReconnectPolicy,
    classify_error,
    classify_kick,
)
from nomadbot.session.session import Session
from nomadbot.world.interface import ConnectionTarget, Credentials, WorldConnector

log = get_logger(__name__)


class SessionState(str, Enum):
    IDLE = "idle"
    STARTING = "starting"
    ACTIVE = "active"
    BACKOFF = "backoff"


class SessionManager:
    """
    Connection lifecycle state machine with policy-driven reconnects.

    Collaborators:
        connector   WorldConnector used to open each attempt
        scheduler   BehaviorScheduler started on readiness, stopped on teardown
        policy      PolicyState; its observer pushes movement permissions live
        commands    optional CommandSurface fed from chat events
    """

    def __init__(
        self,
        connector: WorldConnector,
        scheduler,
        policy,
        *,
        target: ConnectionTarget,
        credentials: Credentials,
        reconnect_policy: Optional[ReconnectPolicy] = None,
        commands=None,
        benign_patterns: Iterable[str] = ("PartialReadError",),
        whisper_replies: bool = False,
    ) -> None:
        self._connector = connector
        self._scheduler = scheduler
        self._policy = policy
        self._commands = commands
        self._target = target
        self._credentials = credentials
        self._reconnect_policy = reconnect_policy or ReconnectPolicy()
        self._benign_patterns = tuple(benign_patterns)
        self._whisper_replies = whisper_replies

        self._session: Optional[Session] = None
        self._starting = False
        self._state = SessionState.IDLE
        self._reconnect_handle: Optional[asyncio.TimerHandle] = None
        self._pending_reason: Optional[DisconnectReason] = None
        self._shutting_down = False

        self._started_at = time.monotonic()
        self.last_disconnect_reason: Optional[DisconnectReason] = None
        self.reconnect_count = 0
        self.sessions_started = 0

        self._remove_policy_observer = policy.add_observer(self._on_policy_change)

    # ── Factory ───────────────────────────────────────────────────────────────

    @classmethod
    def from_settings(cls, settings, connector, scheduler, policy, commands=None) -> "SessionManager":
        return cls(
            connector,
            scheduler,
            policy,
            target=ConnectionTarget(
                host=settings.target_host,
                port=settings.target_port,
                version=settings.protocol_version,
            ),
            credentials=Credentials(
                username=settings.username,
                auth=settings.auth,
                password=settings.bot_password,
            ),
            reconnect_policy=ReconnectPolicy.from_settings(settings.reconnect),
            commands=commands,
            benign_patterns=settings.reconnect.benign_error_patterns,
            whisper_replies=settings.commands.whisper_replies,
        )

    # ── Introspection ─────────────────────────────────────────────────────────

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def session(self) -> Optional[Session]:
        return self._session

    @property
    def starting(self) -> bool:
        return self._starting

    @property
    def connected(self) -> bool:
        return self._session is not None and self._session.active

    @property
    def reconnect_pending(self) -> bool:
        return self._reconnect_handle is not None

    def reconnect_in_s(self) -> Optional[float]:
        if self._reconnect_handle is None:
            return None
        loop = asyncio.get_running_loop()
        return max(0.0, self._reconnect_handle.when() - loop.time())

    def status(self) -> dict[str, Any]:
        """Snapshot for the status reporter and the `status` chat command."""
        session = self._session
        remaining = self.reconnect_in_s()
        return {
            "connected": self.connected,
            "state": self._state.value,
            "mode": self._policy.mode.value,
            "uptime_seconds": round(time.monotonic() - self._started_at, 1),
            "session_id": session.id if session else None,
            "session_uptime_seconds": round(session.uptime_s, 1) if session else 0.0,
            "target": str(self._target),
            "username": self._credentials.username,
            "last_disconnect_reason": (
                self.last_disconnect_reason.value if self.last_disconnect_reason else None
            ),
            "reconnect_in_seconds": round(remaining, 1) if remaining is not None else None,
            "reconnects": self.reconnect_count,
        }

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def start(self) -> None:
        """Open a new session unless one is already starting or live."""
        if self._shutting_down:
            return
        if self._starting:
            log.debug("session.start_skipped", reason="already starting")
            return
        if self._session is not None:
            log.debug("session.start_skipped", reason="session live", session_id=self._session.id)
            return

        self._cancel_reconnect_timer()
        self._starting = True
        self._state = SessionState.STARTING
        log.info(
            "session.connecting",
            target=str(self._target),
            username=self._credentials.username,
            attempt=self._reconnect_policy.failures + 1,
        )

        try:
            agent = self._connector.create(self._target, self._credentials)
        except Exception as e:
            log.error(
                "session.create_failed",
                error=str(e),
                error_type=type(e).__name__,
            )
            self.reconnect(DisconnectReason.CREATE_ERROR)
            return

        session = Session.create(agent, self._target, self._credentials)
        self._session = session
        self.sessions_started += 1

        session.listen("ready", partial(self._on_ready, session))
        session.listen("kicked", partial(self._on_kicked, session))
        session.listen("error", partial(self._on_error, session))
        session.listen("end", partial(self._on_end, session))
        session.listen("wake", partial(self._on_wake, session))
        session.listen("chat", partial(self._on_chat, session))

    def reconnect(self, reason: DisconnectReason | str) -> None:
        """
        Tear down whatever is live and schedule exactly one start().

        Safe to call at any time, including with no session and with a
        reconnect already pending.
        """
        reason = DisconnectReason(reason)
        self._scheduler.stop()
        self._starting = False

        session, self._session = self._session, None
        if session is not None:
            session.close()
            session.agent.quit(f"reconnect:{reason.value}")
            clear_session()
            log.info("session.discarded", session_id=session.id, reason=reason.value)

        if self._shutting_down:
            self.last_disconnect_reason = reason
            self._state = SessionState.IDLE
            return

        if self._reconnect_handle is not None:
            if reason is not DisconnectReason.DUPLICATE or self._pending_reason is DisconnectReason.DUPLICATE:
                log.debug(
                    "session.reconnect_already_pending",
                    reason=reason.value,
                    pending_reason=self._pending_reason.value if self._pending_reason else None,
                )
                return
            self._cancel_reconnect_timer()

        delay = self._reconnect_policy.delay_for(reason)
        loop = asyncio.get_running_loop()
        self._reconnect_handle = loop.call_later(delay, self._fire_reconnect)
        self._pending_reason = reason
        self._state = SessionState.BACKOFF
        self.last_disconnect_reason = reason
        self.reconnect_count += 1

        if reason is DisconnectReason.DUPLICATE:
            log.warning("session.duplicate_login", delay_s=round(delay, 1))
        log.info("session.reconnect_scheduled", reason=reason.value, delay_s=round(delay, 1))

    def force_reconnect(self) -> None:
        """Status-reporter hook: end the live session, or start right away."""
        session = self._session
        if session is not None:
            log.info("session.force_reconnect", session_id=session.id)
            session.agent.quit("forced reconnect")
            return
        log.info("session.force_start")
        self._cancel_reconnect_timer()
        self.start()

    def shutdown(self) -> None:
        """Stop everything for process exit. No reconnect is scheduled."""
        self._shutting_down = True
        self._cancel_reconnect_timer()
        self.reconnect(DisconnectReason.END)
        self._remove_policy_observer()
        log.info("session.shutdown")

    def _fire_reconnect(self) -> None:
        self._reconnect_handle = None
        self._pending_reason = None
        self.start()

    def _cancel_reconnect_timer(self) -> None:
        if self._reconnect_handle is not None:
            self._reconnect_handle.cancel()
            self._reconnect_handle = None
            self._pending_reason = None

    def _is_current(self, session: Session, event: str) -> bool:
        if session is self._session and session.alive:
            return True
        log.debug("session.stale_event_dropped", event=event, session_id=session.id)
        return False

    # ── Event handlers ────────────────────────────────────────────────────────

    def _on_ready(self, session: Session, *_: Any) -> None:
        if not self._is_current(session, "ready") or not session.starting:
            return
        session.mark_ready()
        self._starting = False
        self._state = SessionState.ACTIVE
        self._reconnect_policy.reset()
        bind_session(session.id, self._credentials.username)
        log.info("session.ready", session_id=session.id, target=str(self._target))

        # One-time post-connect capability negotiation
        session.agent.configure_movements(self._policy.snapshot().movement_config())
        self._scheduler.start(session)

    def _on_kicked(self, session: Session, payload: Any = None, *_: Any) -> None:
        if not self._is_current(session, "kicked"):
            return
        reason = classify_kick(payload)
        log.warning("session.kicked", payload=str(payload)[:300], reason=reason.value)
        self.reconnect(reason)

    def _on_error(self, session: Session, exc: BaseException, *_: Any) -> None:
        if not self._is_current(session, "error"):
            return
        verdict = classify_error(exc, self._benign_patterns)
        if verdict is ErrorClass.BENIGN:
            log.warning("session.benign_error_ignored", error=str(exc))
            return
        log.error("session.error", error=str(exc), error_type=type(exc).__name__, verdict=verdict.value)
        if verdict is ErrorClass.REFUSED:
            self.reconnect(DisconnectReason.CONNECTION_REFUSED)
        else:
            self.reconnect(DisconnectReason.ERROR)

    def _on_end(self, session: Session, reason: Any = None, *_: Any) -> None:
        if not self._is_current(session, "end"):
            return
        log.info("session.ended", reason=str(reason) if reason is not None else None)
        self.reconnect(DisconnectReason.END)

    def _on_wake(self, session: Session, *_: Any) -> None:
        if not self._is_current(session, "wake"):
            return
        self._scheduler.on_wake()

    def _on_chat(self, session: Session, username: str = "", message: str = "", *_: Any) -> None:
        if self._commands is None or not self._is_current(session, "chat"):
            return
        if username == self._credentials.username:
            return
        reply = self._commands.handle(username, message)
        if not reply or not session.active:
            return
        if self._whisper_replies:
            session.agent.whisper(username, reply)
        else:
            session.agent.chat(reply)

    def _on_policy_change(self, old, new) -> None:
        if old.movement_config() == new.movement_config():
            return
        session = self._session
        if session is not None and session.active:
            session.agent.configure_movements(new.movement_config())
            log.info("session.movements_updated", **new.movement_config().to_dict())
