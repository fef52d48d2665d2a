"""
world/types.py — World snapshot model

Plain dataclasses describing what the world bridge reports about the agent
and its surroundings. A WorldSnapshot is rebuilt on every tick and never
kept between ticks.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Optional, TypeVar


# ─────────────────────────────────────────────────────────────────────────────
# Geometry
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Vec3:
    x: float
    y: float
    z: float

    def offset(self, dx: float, dy: float, dz: float) -> "Vec3":
        return Vec3(self.x + dx, self.y + dy, self.z + dz)

    def distance_to(self, other: "Vec3") -> float:
        return math.sqrt(
            (self.x - other.x) ** 2 + (self.y - other.y) ** 2 + (self.z - other.z) ** 2
        )

    def floored(self) -> "Vec3":
        return Vec3(math.floor(self.x), math.floor(self.y), math.floor(self.z))

    def to_dict(self) -> dict[str, float]:
        return {"x": self.x, "y": self.y, "z": self.z}

    @classmethod
    def from_dict(cls, d: dict) -> "Vec3":
        return cls(float(d.get("x", 0)), float(d.get("y", 0)), float(d.get("z", 0)))


# ─────────────────────────────────────────────────────────────────────────────
# Entities, blocks, items
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Entity:
    id: int
    name: str
    type: str  # "mob" | "player" | "object" | ...
    position: Vec3

    @classmethod
    def from_dict(cls, d: dict) -> "Entity":
        return cls(
            id=int(d.get("id", 0)),
            name=str(d.get("name", "")),
            type=str(d.get("type", "")),
            position=Vec3.from_dict(d.get("position") or {}),
        )


@dataclass(frozen=True)
class Block:
    name: str
    position: Vec3
    properties: dict[str, Any] = field(default_factory=dict, hash=False, compare=False)

    @property
    def is_air(self) -> bool:
        return self.name in ("air", "cave_air", "void_air")

    @property
    def is_bed(self) -> bool:
        return self.name.endswith("_bed") or self.name == "bed"

    @classmethod
    def from_dict(cls, d: dict) -> "Block":
        return cls(
            name=str(d.get("name", "air")),
            position=Vec3.from_dict(d.get("position") or {}),
            properties=dict(d.get("properties") or {}),
        )


@dataclass(frozen=True)
class Item:
    name: str
    count: int
    slot: int

    @classmethod
    def from_dict(cls, d: dict) -> "Item":
        return cls(name=str(d.get("name", "")), count=int(d.get("count", 1)), slot=int(d.get("slot", 0)))


@dataclass(frozen=True)
class Vitals:
    health: float = 20.0
    food: float = 20.0


@dataclass(frozen=True)
class Clock:
    is_day: bool = True
    time_of_day: int = 6000  # 0..24000 ticks


@dataclass(frozen=True)
class Weather:
    raining: bool = False
    thundering: bool = False


# ─────────────────────────────────────────────────────────────────────────────
# Movement goals
# ─────────────────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class GoalBlock:
    """Stand exactly on a block position."""
    position: Vec3

    def to_dict(self) -> dict:
        return {"kind": "block", **self.position.to_dict()}


@dataclass(frozen=True)
class GoalNear:
    """Get within `radius` of a point."""
    position: Vec3
    radius: float = 1.0

    def to_dict(self) -> dict:
        return {"kind": "near", "radius": self.radius, **self.position.to_dict()}


@dataclass(frozen=True)
class GoalFollow:
    """Keep within `radius` of a moving entity."""
    entity_id: int
    radius: float = 2.0

    def to_dict(self) -> dict:
        return {"kind": "follow", "entity_id": self.entity_id, "radius": self.radius}


Goal = GoalBlock | GoalNear | GoalFollow


@dataclass(frozen=True)
class MovementConfig:
    """Pathfinder permissions pushed to the bridge whenever policy changes."""
    can_dig: bool = True
    can_place: bool = True
    can_open_doors: bool = True
    allow_sprinting: bool = True

    def to_dict(self) -> dict:
        return {
            "can_dig": self.can_dig,
            "can_place": self.can_place,
            "can_open_doors": self.can_open_doors,
            "allow_sprinting": self.allow_sprinting,
        }


class Interaction(str, Enum):
    """
    Verbs accepted by WorldAgent.interact().

    EQUIP on an Item holds that item; EQUIP on a Block holds the best tool
    the inventory has for breaking it.
    """
    EQUIP = "equip"
    CONSUME = "consume"
    PLACE = "place"
    DIG = "dig"
    SLEEP = "sleep"
    ATTACK = "attack"
    CRAFT = "craft"
    MOVE_SLOT = "move_slot"


# ─────────────────────────────────────────────────────────────────────────────
# Snapshot (= Tick Context)
# ─────────────────────────────────────────────────────────────────────────────

T = TypeVar("T", Entity, Block)


def _nearest(
    origin: Optional[Vec3],
    candidates: Iterable[T],
    predicate: Callable[[T], bool],
    max_distance: Optional[float],
) -> Optional[T]:
    if origin is None:
        return None
    best: Optional[T] = None
    best_d = math.inf
    for c in candidates:
        if not predicate(c):
            continue
        d = origin.distance_to(c.position)
        if max_distance is not None and d > max_distance:
            continue
        if d < best_d:
            best, best_d = c, d
    return best


@dataclass(frozen=True)
class WorldSnapshot:
    """Everything a tick may look at. Rebuilt from scratch on every tick."""
    spawned: bool = False
    position: Optional[Vec3] = None
    yaw: float = 0.0
    pitch: float = 0.0
    vitals: Vitals = field(default_factory=Vitals)
    clock: Clock = field(default_factory=Clock)
    weather: Weather = field(default_factory=Weather)
    entities: tuple[Entity, ...] = ()
    blocks: tuple[Block, ...] = ()
    inventory: tuple[Item, ...] = ()
    held_item: Optional[str] = None
    moving: bool = False
    sleeping: bool = False
    in_combat: bool = False

    # ── Queries ──────────────────────────────────────────────────────────────

    def nearest_entity(
        self, predicate: Callable[[Entity], bool], max_distance: Optional[float] = None
    ) -> Optional[Entity]:
        return _nearest(self.position, self.entities, predicate, max_distance)

    def find_block(
        self, predicate: Callable[[Block], bool], max_distance: Optional[float] = None
    ) -> Optional[Block]:
        return _nearest(self.position, self.blocks, predicate, max_distance)

    def block_at(self, position: Vec3) -> Optional[Block]:
        target = position.floored()
        return next((b for b in self.blocks if b.position.floored() == target), None)

    def distance_to(self, position: Vec3) -> float:
        if self.position is None:
            return math.inf
        return self.position.distance_to(position)

    def items(self, predicate: Callable[[Item], bool]) -> list[Item]:
        return [i for i in self.inventory if predicate(i)]

    def count(self, predicate: Callable[[Item], bool]) -> int:
        return sum(i.count for i in self.inventory if predicate(i))

    @classmethod
    def from_dict(cls, d: dict) -> "WorldSnapshot":
        pos = d.get("position")
        vitals = d.get("vitals") or {}
        clock = d.get("clock") or {}
        weather = d.get("weather") or {}
        return cls(
            spawned=bool(d.get("spawned", False)),
            position=Vec3.from_dict(pos) if pos else None,
            yaw=float(d.get("yaw", 0.0)),
            pitch=float(d.get("pitch", 0.0)),
            vitals=Vitals(
                health=float(vitals.get("health", 20.0)),
                food=float(vitals.get("food", 20.0)),
            ),
            clock=Clock(
                is_day=bool(clock.get("is_day", True)),
                time_of_day=int(clock.get("time_of_day", 6000)),
            ),
            weather=Weather(
                raining=bool(weather.get("raining", False)),
                thundering=bool(weather.get("thundering", False)),
            ),
            entities=tuple(Entity.from_dict(e) for e in d.get("entities") or []),
            blocks=tuple(Block.from_dict(b) for b in d.get("blocks") or []),
            inventory=tuple(Item.from_dict(i) for i in d.get("inventory") or []),
            held_item=d.get("held_item"),
            moving=bool(d.get("moving", False)),
            sleeping=bool(d.get("sleeping", False)),
            in_combat=bool(d.get("in_combat", False)),
        )
