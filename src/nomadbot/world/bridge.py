"""
world/bridge.py — WebSocket World Bridge Client

Concrete WorldConnector / WorldAgent that drives a world bridge sidecar over
a WebSocket. The sidecar owns the game protocol, physics and pathfinding;
this side only sends capability calls and receives events.

One BridgeAgent == one connection attempt. It is never reused: after `end`
the SessionManager discards it and asks the connector for a new one.

Usage:
    connector = BridgeConnector("ws://127.0.0.1:8765")
    agent = connector.create(target, credentials)
    agent.events.subscribe("ready", on_ready)
"""

from __future__ import annotations

import asyncio
from typing import Any, Optional

import websockets

from nomadbot.exceptions import (
    ActionFailedError,
    ConnectError,
    ConnectionRefused,
    ResourceMissingError,
    SessionEndedError,
    TransportError,
    UnreachableError,
)
from nomadbot.observability.logger import get_logger
from nomadbot.world.events import EventChannel
from nomadbot.world.interface import ConnectionTarget, Credentials
from nomadbot.world.protocol import (
    BridgeMessage,
    ErrorKind,
    MessageType,
    encode_target,
    make_request,
)
from nomadbot.world.types import Goal, Interaction, MovementConfig, WorldSnapshot

log = get_logger(__name__)

_FORWARDED_EVENTS = ("ready", "kicked", "error", "end", "wake", "chat")


def _error_from_payload(payload: dict) -> Exception:
    """Map a bridge `error` event payload to a transport exception."""
    message = str(payload.get("message", "unknown transport error"))
    code = str(payload.get("code", ""))
    if code == "ECONNREFUSED" or "ECONNREFUSED" in message:
        return ConnectionRefused(message)
    return TransportError(message)


def _raise_result_error(error: dict, goal: Any = None) -> None:
    kind = error.get("kind", ErrorKind.FAILED.value)
    message = str(error.get("message", ""))
    if kind == ErrorKind.UNREACHABLE.value:
        raise UnreachableError(goal, message)
    if kind == ErrorKind.MISSING.value:
        raise ResourceMissingError(str(error.get("resource", "unknown")), message)
    if kind == ErrorKind.SESSION_ENDED.value:
        raise SessionEndedError(message or "session ended")
    raise ActionFailedError(message or "interaction rejected")


class BridgeAgent:
    """
    WorldAgent backed by a single WebSocket connection to the bridge.

    Every request gets a Future keyed by message id; the reader loop resolves
    it when the matching RESULT arrives. If the socket closes first, every
    outstanding Future fails with SessionEndedError.
    """

    def __init__(
        self,
        url: str,
        target: ConnectionTarget,
        credentials: Credentials,
        request_timeout_s: float = 60.0,
    ) -> None:
        self._url = url
        self._target = target
        self._credentials = credentials
        self._timeout = request_timeout_s
        self.events = EventChannel()
        self._ws = None
        self._pending: dict[str, asyncio.Future] = {}
        self._runner: Optional[asyncio.Task] = None
        self._sends: set[asyncio.Task] = set()
        self._moving = False
        self._closed = False

    # ─────────────────────────────────────────────────────────────────────────
    # Connection lifecycle
    # ─────────────────────────────────────────────────────────────────────────

    def open(self) -> None:
        """Start connecting in the background. Needs a running loop."""
        self._runner = asyncio.get_running_loop().create_task(
            self._run(), name=f"bridge:{self._credentials.username}"
        )

    async def _run(self) -> None:
        try:
            self._ws = await websockets.connect(self._url, max_size=2**22)
        except OSError as e:
            # ConnectionRefusedError is an OSError subclass
            log.warning("bridge.connect_failed", url=self._url, error=str(e))
            self._closed = True
            self.events.emit("error", e)
            self.events.emit("end", "connect_failed")
            return
        except (websockets.InvalidURI, websockets.InvalidHandshake) as e:
            log.warning("bridge.handshake_failed", url=self._url, error=str(e))
            self._closed = True
            self.events.emit("error", TransportError(str(e)))
            self.events.emit("end", "handshake_failed")
            return

        hello = make_request(
            MessageType.CONNECT,
            host=self._target.host,
            port=self._target.port,
            version=self._target.version,
            username=self._credentials.username,
            auth=self._credentials.auth,
            password=self._credentials.password,
        )
        try:
            await self._ws.send(hello.to_json())
        except websockets.ConnectionClosed:
            self._finish("closed during handshake")
            return

        log.info("bridge.connected", url=self._url, target=str(self._target))
        await self._reader_loop()

    async def _reader_loop(self) -> None:
        reason = "closed"
        try:
            async for raw in self._ws:
                try:
                    msg = BridgeMessage.from_json(raw)
                except ValueError:
                    log.warning("bridge.bad_frame", size=len(raw))
                    continue
                self._dispatch(msg)
        except websockets.ConnectionClosed as e:
            reason = e.rcvd.reason if e.rcvd and e.rcvd.reason else "connection lost"
        except asyncio.CancelledError:
            reason = "cancelled"
        finally:
            self._finish(reason)

    def _dispatch(self, msg: BridgeMessage) -> None:
        if msg.type == MessageType.RESULT.value:
            fut = self._pending.pop(msg.reply_to or "", None)
            if fut is not None and not fut.done():
                fut.set_result(msg.data)
            return

        if msg.type == MessageType.STATUS.value:
            if "moving" in msg.data:
                self._moving = bool(msg.data["moving"])
            return

        if msg.type == MessageType.EVENT.value:
            name = msg.data.get("name", "")
            args = msg.data.get("args") or []
            if not isinstance(args, list):
                log.warning("bridge.bad_frame", type=msg.type, event=name, reason="args must be a list")
                return
            if name not in _FORWARDED_EVENTS:
                log.debug("bridge.event_ignored", name=name)
                return
            if name == "error":
                payload = args[0] if args and isinstance(args[0], dict) else {"message": str(args)}
                args = [_error_from_payload(payload)]
            self.events.emit(name, *args)

    def _finish(self, reason: str) -> None:
        if self._closed:
            return
        self._closed = True
        for fut in self._pending.values():
            if not fut.done():
                fut.set_exception(SessionEndedError(reason))
        self._pending.clear()
        log.info("bridge.closed", reason=reason)
        self.events.emit("end", reason)

    # ─────────────────────────────────────────────────────────────────────────
    # Wire helpers
    # ─────────────────────────────────────────────────────────────────────────

    async def _request(self, msg: BridgeMessage, timeout: Optional[float] = None) -> Any:
        """Send a message and wait for its RESULT. Returns the `value` field."""
        if self._closed or self._ws is None:
            raise SessionEndedError("bridge connection is not open")
        fut: asyncio.Future = asyncio.get_running_loop().create_future()
        self._pending[msg.id] = fut
        try:
            await self._ws.send(msg.to_json())
            data = await asyncio.wait_for(fut, timeout=timeout or self._timeout)
        except websockets.ConnectionClosed as e:
            raise SessionEndedError("bridge connection closed") from e
        except asyncio.TimeoutError as e:
            raise ActionFailedError(f"{msg.type} timed out") from e
        finally:
            self._pending.pop(msg.id, None)

        if not data.get("ok", False):
            _raise_result_error(data.get("error") or {}, msg.data.get("goal"))
        return data.get("value")

    def _send_nowait(self, msg: BridgeMessage) -> None:
        """Fire-and-forget send for calls that do not suspend."""
        if self._closed or self._ws is None:
            log.debug("bridge.send_dropped", type=msg.type)
            return
        task = asyncio.get_running_loop().create_task(self._send(msg))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)

    async def _send(self, msg: BridgeMessage) -> None:
        try:
            await self._ws.send(msg.to_json())
        except websockets.ConnectionClosed:
            log.debug("bridge.send_after_close", type=msg.type)

    # ─────────────────────────────────────────────────────────────────────────
    # WorldAgent capability surface
    # ─────────────────────────────────────────────────────────────────────────

    async def observe(self) -> WorldSnapshot:
        value = await self._request(make_request(MessageType.OBSERVE))
        snapshot = WorldSnapshot.from_dict(value or {})
        self._moving = snapshot.moving
        return snapshot

    def is_moving(self) -> bool:
        return self._moving

    def set_movement_goal(self, goal: Optional[Goal]) -> None:
        self._moving = goal is not None
        self._send_nowait(make_request(MessageType.GOAL_SET, goal=goal.to_dict() if goal else None))

    async def travel_to(self, goal: Goal) -> None:
        self._moving = True
        try:
            await self._request(make_request(MessageType.GOAL_TRAVEL, goal=goal.to_dict()))
        finally:
            self._moving = False

    async def interact(self, target: Any, action: Interaction, **params: Any) -> Any:
        return await self._request(
            make_request(
                MessageType.INTERACT,
                target=encode_target(target),
                action=Interaction(action).value,
                params={k: encode_target(v) for k, v in params.items()},
            )
        )

    def look(self, yaw: float, pitch: float) -> None:
        self._send_nowait(make_request(MessageType.LOOK, yaw=yaw, pitch=pitch))

    def set_control(self, control: str, state: bool) -> None:
        self._send_nowait(make_request(MessageType.CONTROL, control=control, state=state))

    def configure_movements(self, config: MovementConfig) -> None:
        self._send_nowait(make_request(MessageType.MOVEMENTS, **config.to_dict()))

    def chat(self, text: str) -> None:
        self._send_nowait(make_request(MessageType.CHAT, text=text[:256]))

    def whisper(self, username: str, text: str) -> None:
        self._send_nowait(make_request(MessageType.WHISPER, username=username, text=text[:256]))

    def quit(self, reason: str = "") -> None:
        if self._closed:
            return
        if self._ws is None:
            # Still connecting: abandon the attempt and report the end ourselves
            if self._runner is not None and not self._runner.done():
                self._runner.cancel()
            self._finish(reason or "quit")
            return
        self._send_nowait(make_request(MessageType.QUIT, reason=reason))
        task = asyncio.get_running_loop().create_task(self._ws.close(reason=reason[:120]))
        self._sends.add(task)
        task.add_done_callback(self._sends.discard)


class BridgeConnector:
    """WorldConnector that hands out one BridgeAgent per connection attempt."""

    def __init__(self, url: str, request_timeout_s: float = 60.0) -> None:
        self._url = url
        self._timeout = request_timeout_s

    @classmethod
    def from_settings(cls, settings) -> "BridgeConnector":
        return cls(settings.bridge_endpoint, settings.bridge.request_timeout_s)

    def create(self, target: ConnectionTarget, credentials: Credentials) -> BridgeAgent:
        if not credentials.username:
            raise ConnectError("cannot connect without a username")
        agent = BridgeAgent(self._url, target, credentials, self._timeout)
        try:
            agent.open()
        except RuntimeError as e:
            raise ConnectError(f"no running event loop: {e}") from e
        return agent
