"""
world/protocol.py — World Bridge WebSocket Message Protocol

Typed message schema between NomadBot and the world bridge sidecar (the
process that actually speaks the game protocol). Every message is JSON with
a `type` field and a unique `id`; replies carry `reply_to` in `data`.
"""

from __future__ import annotations

import json
import uuid
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Optional

from nomadbot.world.types import Block, Entity, Item, Vec3


class MessageType(str, Enum):
    """All supported message types in the bridge protocol."""

    # Client → Bridge
    CONNECT       = "connect"
    OBSERVE       = "observe"
    GOAL_SET      = "goal.set"
    GOAL_TRAVEL   = "goal.travel"
    INTERACT      = "interact"
    LOOK          = "look"
    CONTROL       = "control"
    MOVEMENTS     = "movements"
    CHAT          = "chat"
    WHISPER       = "whisper"
    QUIT          = "quit"

    # Bridge → Client
    RESULT        = "result"
    EVENT         = "event"
    STATUS        = "status"


class ErrorKind(str, Enum):
    """`error.kind` values a RESULT may carry."""
    UNREACHABLE    = "unreachable"
    MISSING        = "missing"
    FAILED         = "failed"
    SESSION_ENDED  = "session_ended"


@dataclass
class BridgeMessage:
    """
    Universal message envelope for the bridge protocol.

    All fields are optional except `type`. Payload goes in `data`.
    """
    type: str
    id: str = field(default_factory=lambda: str(uuid.uuid4())[:8])
    data: dict[str, Any] = field(default_factory=dict)

    def to_json(self) -> str:
        """Serialize to JSON string, dropping None fields."""
        d = {k: v for k, v in asdict(self).items() if v is not None}
        return json.dumps(d)

    @classmethod
    def from_json(cls, raw: str | bytes) -> "BridgeMessage":
        """Parse a JSON string into a BridgeMessage."""
        d = json.loads(raw)
        if not isinstance(d, dict):
            raise ValueError("bridge frame must be a JSON object")
        data = d.get("data") or {}
        if not isinstance(data, dict):
            raise ValueError("bridge frame `data` must be a JSON object")
        return cls(
            type=d.get("type", MessageType.EVENT.value),
            id=d.get("id", str(uuid.uuid4())[:8]),
            data=data,
        )

    @property
    def reply_to(self) -> Optional[str]:
        return self.data.get("reply_to")


def encode_target(target: Any) -> Any:
    """Turn an interaction target into its wire form."""
    if isinstance(target, Entity):
        return {"entity_id": target.id}
    if isinstance(target, Block):
        return {"block": target.name, "position": target.position.to_dict()}
    if isinstance(target, Item):
        return {"item": target.name, "slot": target.slot}
    if isinstance(target, Vec3):
        return {"position": target.to_dict()}
    return target


def make_request(type_: MessageType, **data: Any) -> BridgeMessage:
    return BridgeMessage(type=type_.value, data=data)
