"""
tests/unit/test_bridge_protocol.py — World Bridge Protocol Tests

Covers:
  - BridgeMessage serialization and defaults
  - encode_target() wire forms
  - WorldSnapshot.from_dict() with partial payloads
  - BridgeAgent request/RESULT correlation against a fake socket,
    error-kind mapping and forwarding of bridge events
  - malformed frames are skipped without ending the session
"""

from __future__ import annotations

import asyncio
import json

import pytest

from fakes import CREDENTIALS, TARGET, drain
from nomadbot.exceptions import (
    ActionFailedError,
    ConnectError,
    ConnectionRefused,
    ResourceMissingError,
    SessionEndedError,
    TransportError,
    UnreachableError,
)
from nomadbot.world.bridge import BridgeAgent, BridgeConnector
from nomadbot.world.protocol import BridgeMessage, MessageType, encode_target, make_request
from nomadbot.world.types import Block, Entity, GoalNear, Interaction, Item, Vec3, WorldSnapshot
from nomadbot.world.interface import Credentials


# ─────────────────────────────────────────────────────────────────────────────
# Message envelope
# ─────────────────────────────────────────────────────────────────────────────

class TestBridgeMessage:
    def test_json_fields(self):
        msg = make_request(MessageType.CHAT, text="hi")
        d = json.loads(msg.to_json())
        assert d["type"] == "chat"
        assert d["data"] == {"text": "hi"}
        assert len(d["id"]) == 8

    def test_from_json_defaults(self):
        msg = BridgeMessage.from_json('{"id": "abc"}')
        assert msg.type == "event"
        assert msg.data == {}

    def test_reply_to(self):
        msg = BridgeMessage.from_json('{"type": "result", "data": {"reply_to": "abc", "ok": true}}')
        assert msg.reply_to == "abc"

    @pytest.mark.parametrize("raw", ["not json", "[1, 2]", '"text"', '{"type": "event", "data": ["oops"]}'])
    def test_bad_frames_raise_value_error(self, raw):
        with pytest.raises(ValueError):
            BridgeMessage.from_json(raw)


class TestEncodeTarget:
    def test_entity(self):
        assert encode_target(Entity(7, "zombie", "hostile", Vec3(1, 2, 3))) == {"entity_id": 7}

    def test_block(self):
        wire = encode_target(Block("red_bed", Vec3(1, 64, 2)))
        assert wire == {"block": "red_bed", "position": {"x": 1, "y": 64, "z": 2}}

    def test_item(self):
        assert encode_target(Item("bread", 3, 5)) == {"item": "bread", "slot": 5}

    def test_passthrough(self):
        assert encode_target("oak_planks") == "oak_planks"


class TestSnapshotFromDict:
    def test_empty_payload(self):
        snap = WorldSnapshot.from_dict({})
        assert snap.spawned is False
        assert snap.position is None
        assert snap.vitals.health == 20.0

    def test_full_payload(self):
        snap = WorldSnapshot.from_dict({
            "spawned": True,
            "position": {"x": 1.5, "y": 64, "z": -3},
            "vitals": {"health": 6, "food": 9},
            "clock": {"is_day": False, "time_of_day": 18000},
            "weather": {"thundering": True},
            "entities": [{"id": 3, "name": "skeleton", "type": "hostile", "position": {"x": 4, "y": 64, "z": -3}}],
            "blocks": [{"name": "wheat", "position": {"x": 2, "y": 64, "z": -3}, "properties": {"age": 7}}],
            "inventory": [{"name": "bread", "count": 2, "slot": 0}],
            "held_item": "bread",
        })
        assert snap.position == Vec3(1.5, 64, -3)
        assert snap.vitals.food == 9
        assert snap.clock.is_day is False
        assert snap.weather.thundering is True
        assert snap.entities[0].name == "skeleton"
        assert snap.blocks[0].properties["age"] == 7
        assert snap.count(lambda i: i.name == "bread") == 2


# ─────────────────────────────────────────────────────────────────────────────
# BridgeAgent against a fake socket
# ─────────────────────────────────────────────────────────────────────────────

class _FakeSocket:
    def __init__(self) -> None:
        self.sent: list[dict] = []
        self.closed_with = None

    async def send(self, raw: str) -> None:
        self.sent.append(json.loads(raw))

    async def close(self, reason: str = "") -> None:
        self.closed_with = reason


class _FrameSocket(_FakeSocket):
    """Yields scripted raw frames, then ends the iteration like a clean close."""

    def __init__(self, frames: list[str]) -> None:
        super().__init__()
        self._frames = list(frames)

    def __aiter__(self):
        return self

    async def __anext__(self) -> str:
        if not self._frames:
            raise StopAsyncIteration
        return self._frames.pop(0)


def _open_agent() -> tuple[BridgeAgent, _FakeSocket]:
    agent = BridgeAgent("ws://bridge", TARGET, CREDENTIALS, request_timeout_s=1.0)
    sock = _FakeSocket()
    agent._ws = sock
    return agent, sock


def _reply(agent: BridgeAgent, sock: _FakeSocket, **data) -> None:
    request_id = sock.sent[-1]["id"]
    agent._dispatch(BridgeMessage(type="result", data={"reply_to": request_id, **data}))


async def _request_with_reply(agent, sock, call, **reply):
    task = asyncio.ensure_future(call)
    await drain()
    _reply(agent, sock, **reply)
    return await task


class TestBridgeAgent:
    @pytest.mark.asyncio
    async def test_observe_roundtrip(self):
        agent, sock = _open_agent()
        snap = await _request_with_reply(
            agent, sock, agent.observe(), ok=True, value={"spawned": True, "moving": True},
        )
        assert sock.sent[0]["type"] == "observe"
        assert snap.spawned is True
        assert agent.is_moving() is True

    @pytest.mark.asyncio
    async def test_interact_wire_form(self):
        agent, sock = _open_agent()
        bed = Block("red_bed", Vec3(1, 64, 1))
        await _request_with_reply(
            agent, sock, agent.interact(bed, Interaction.SLEEP), ok=True, value=None,
        )
        data = sock.sent[0]["data"]
        assert data["action"] == "sleep"
        assert data["target"]["block"] == "red_bed"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "error,exc",
        [
            ({"kind": "unreachable"}, UnreachableError),
            ({"kind": "missing", "resource": "bread"}, ResourceMissingError),
            ({"kind": "session_ended"}, SessionEndedError),
            ({"kind": "failed", "message": "target moved"}, ActionFailedError),
            ({}, ActionFailedError),
        ],
    )
    async def test_error_kinds(self, error, exc):
        agent, sock = _open_agent()
        with pytest.raises(exc):
            await _request_with_reply(
                agent, sock, agent.travel_to(GoalNear(Vec3(0, 64, 0), 1.0)), ok=False, error=error,
            )
        assert agent.is_moving() is False

    @pytest.mark.asyncio
    async def test_close_fails_pending_requests(self):
        agent, sock = _open_agent()
        seen = []
        agent.events.subscribe("end", seen.append)
        task = asyncio.ensure_future(agent.observe())
        await drain()
        agent._finish("server closed")
        with pytest.raises(SessionEndedError):
            await task
        await drain()
        assert seen == ["server closed"]

    @pytest.mark.asyncio
    async def test_quit_while_connecting_reports_end(self):
        agent = BridgeAgent("ws://bridge", TARGET, CREDENTIALS)
        seen = []
        agent.events.subscribe("end", seen.append)
        agent.quit("forced reconnect")
        agent.quit("again")
        await drain()
        assert seen == ["forced reconnect"]

    @pytest.mark.asyncio
    async def test_quit_closes_socket(self):
        agent, sock = _open_agent()
        agent.quit("bye")
        await drain()
        assert sock.sent[-1]["type"] == "quit"
        assert sock.closed_with == "bye"

    @pytest.mark.asyncio
    async def test_malformed_frames_do_not_end_session(self):
        agent = BridgeAgent("ws://bridge", TARGET, CREDENTIALS)
        agent._ws = _FrameSocket([
            '{"type": "event", "data": ["oops"]}',
            '{"type": "event", "data": {"name": "kicked", "args": "duplicate_login"}}',
            '{"type": "event", "data": {"name": "chat", "args": ["Alex", "status"]}}',
        ])
        ends, kicks, chats = [], [], []
        agent.events.subscribe("end", ends.append)
        agent.events.subscribe("kicked", lambda *args: kicks.append(args))
        agent.events.subscribe("chat", lambda sender, text: chats.append((sender, text)))
        await agent._reader_loop()
        await drain()
        assert chats == [("Alex", "status")]
        assert kicks == []
        assert ends == ["closed"]

    @pytest.mark.asyncio
    async def test_non_list_args_ignored(self):
        agent, _ = _open_agent()
        seen = []
        agent.events.subscribe("kicked", lambda *args: seen.append(args))
        agent._dispatch(BridgeMessage(type="event", data={"name": "kicked", "args": "duplicate_login"}))
        await drain()
        assert seen == []

    @pytest.mark.asyncio
    async def test_request_when_closed(self):
        agent = BridgeAgent("ws://bridge", TARGET, CREDENTIALS)
        with pytest.raises(SessionEndedError):
            await agent.observe()

    @pytest.mark.asyncio
    async def test_events_forwarded(self):
        agent, _ = _open_agent()
        seen = []
        agent.events.subscribe("kicked", lambda reason, logged_in: seen.append((reason, logged_in)))
        agent.events.subscribe("chat", lambda sender, text: seen.append((sender, text)))
        agent._dispatch(BridgeMessage(type="event", data={"name": "kicked", "args": ["duplicate_login", True]}))
        agent._dispatch(BridgeMessage(type="event", data={"name": "chat", "args": ["Alex", "status"]}))
        agent._dispatch(BridgeMessage(type="event", data={"name": "particle", "args": []}))
        await drain()
        assert seen == [("duplicate_login", True), ("Alex", "status")]

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "payload,exc",
        [
            ({"code": "ECONNREFUSED", "message": "connect ECONNREFUSED"}, ConnectionRefused),
            ({"message": "PartialReadError: short read"}, TransportError),
        ],
    )
    async def test_error_event_becomes_exception(self, payload, exc):
        agent, _ = _open_agent()
        seen = []
        agent.events.subscribe("error", seen.append)
        agent._dispatch(BridgeMessage(type="event", data={"name": "error", "args": [payload]}))
        await drain()
        assert isinstance(seen[0], exc)

    @pytest.mark.asyncio
    async def test_status_updates_moving(self):
        agent, _ = _open_agent()
        agent._dispatch(BridgeMessage(type="status", data={"moving": True}))
        assert agent.is_moving() is True

    @pytest.mark.asyncio
    async def test_fire_and_forget_sends(self):
        agent, sock = _open_agent()
        agent.chat("x" * 300)
        agent.set_control("jump", True)
        await drain()
        assert [m["type"] for m in sock.sent] == ["chat", "control"]
        assert len(sock.sent[0]["data"]["text"]) == 256


class TestBridgeConnector:
    def test_needs_username(self):
        connector = BridgeConnector("ws://bridge")
        with pytest.raises(ConnectError):
            connector.create(TARGET, Credentials("", "offline"))

    def test_needs_running_loop(self):
        connector = BridgeConnector("ws://bridge")
        with pytest.raises(ConnectError):
            connector.create(TARGET, CREDENTIALS)
