"""
world/ — World Agent Interface

Public API:
    from nomadbot.world import WorldAgent, WorldConnector, WorldSnapshot

Component overview:
    WorldSnapshot     Tick context: position, vitals, clock, surroundings, busy flags
    EventChannel      Named events with releasable Subscription handles
    WorldAgent        Protocol for one live connection's capabilities
    WorldConnector    Protocol for opening connections
    BridgeConnector   WebSocket implementation talking to a world bridge sidecar
"""

from nomadbot.world.bridge import BridgeAgent, BridgeConnector
from nomadbot.world.events import EventChannel, Subscription
from nomadbot.world.interface import ConnectionTarget, Credentials, WorldAgent, WorldConnector
from nomadbot.world.types import (
    Block,
    Clock,
    Entity,
    Goal,
    GoalBlock,
    GoalFollow,
    GoalNear,
    Interaction,
    Item,
    MovementConfig,
    Vec3,
    Vitals,
    Weather,
    WorldSnapshot,
)

__all__ = [
    "BridgeAgent",
    "BridgeConnector",
    "EventChannel",
    "Subscription",
    "ConnectionTarget",
    "Credentials",
    "WorldAgent",
    "WorldConnector",
    "Block",
    "Clock",
    "Entity",
    "Goal",
    "GoalBlock",
    "GoalFollow",
    "GoalNear",
    "Interaction",
    "Item",
    "MovementConfig",
    "Vec3",
    "Vitals",
    "Weather",
    "WorldSnapshot",
]
