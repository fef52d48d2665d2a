"""
world/interface.py — World Agent Interface

The capability surface the core consumes. Physics, pathfinding, inventory
and protocol framing all live behind it; the SessionManager and the
BehaviorScheduler only ever talk to these two protocols.

Events emitted on WorldAgent.events:
    ready                 agent spawned and accepts commands
    kicked(reason)        server kicked us; reason is the raw payload
    error(exc)            transport error (may or may not be terminal)
    end(reason)           connection closed
    wake                  agent woke up after resting
    chat(username, text)  chat or whisper line from another player
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Optional, Protocol, runtime_checkable

from nomadbot.world.events import EventChannel
from nomadbot.world.types import Goal, Interaction, MovementConfig, WorldSnapshot


@dataclass(frozen=True)
class ConnectionTarget:
    host: str
    port: int
    version: Optional[str] = None  # None = auto-detect

    def __str__(self) -> str:
        return f"{self.host}:{self.port}"


@dataclass(frozen=True)
class Credentials:
    username: str
    auth: str = "offline"
    password: Optional[str] = None

    def __repr__(self) -> str:
        # Never leak the password into logs
        return f"Credentials(username={self.username!r}, auth={self.auth!r})"


@runtime_checkable
class WorldAgent(Protocol):
    """One live connection's capability surface."""

    events: EventChannel

    async def observe(self) -> WorldSnapshot:
        """Pull a fresh snapshot (position, vitals, clock, surroundings, busy flags)."""
        ...

    def is_moving(self) -> bool:
        ...

    def set_movement_goal(self, goal: Optional[Goal]) -> None:
        """Submit (or clear, with None) a goal without waiting for arrival."""
        ...

    async def travel_to(self, goal: Goal) -> None:
        """Suspend until arrival. Raises UnreachableError / SessionEndedError."""
        ...

    async def interact(self, target: Any, action: Interaction, **params: Any) -> Any:
        """Suspend until done. Raises ActionFailedError / ResourceMissingError / SessionEndedError."""
        ...

    def look(self, yaw: float, pitch: float) -> None:
        ...

    def set_control(self, control: str, state: bool) -> None:
        ...

    def configure_movements(self, config: MovementConfig) -> None:
        ...

    def chat(self, text: str) -> None:
        ...

    def whisper(self, username: str, text: str) -> None:
        ...

    def quit(self, reason: str = "") -> None:
        """Close the connection. The normal `end` event follows."""
        ...


class WorldConnector(Protocol):
    """Factory for WorldAgent connections."""

    def create(self, target: ConnectionTarget, credentials: Credentials) -> WorldAgent:
        """
        Begin a connection attempt and return the agent immediately.

        Raises ConnectError if the attempt cannot even be constructed.
        Every later failure is reported through the agent's `error`,
        `kicked` and `end` events.
        """
        ...
