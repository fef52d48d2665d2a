"""
behavior/policy.py — Policy State

Small mutable configuration that outlives every reconnect: the operating
mode, the sleep directive and the feature toggles. Written only by the
command surface, read by the scheduler once at the start of each tick.

Every write swaps in a new frozen PolicySnapshot and then notifies
observers synchronously, so a single write is enough to change the live
agent's movement permissions.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Callable, Optional

from nomadbot.observability.logger import get_logger
from nomadbot.world.types import MovementConfig

log = get_logger(__name__)


class OperatingMode(str, Enum):
    AUTONOMOUS = "autonomous"
    TASK_ONLY = "task_only"
    PASSIVE = "passive"

    @property
    def allows_combat(self) -> bool:
        return self is OperatingMode.AUTONOMOUS

    @property
    def allows_tasks(self) -> bool:
        return self in (OperatingMode.AUTONOMOUS, OperatingMode.TASK_ONLY)

    @property
    def allows_wander(self) -> bool:
        return self is not OperatingMode.PASSIVE


class SleepDirective(str, Enum):
    AUTO = "auto"
    FORCE = "force"
    DENY = "deny"


class Feature(str, Enum):
    ALTER_ENVIRONMENT = "alter_environment"
    COLLECT_LOOT = "collect_loot"
    CHATTER = "chatter"


# Short names accepted by the `toggle` command
FEATURE_ALIASES: dict[str, Feature] = {
    "alter": Feature.ALTER_ENVIRONMENT,
    "alter_environment": Feature.ALTER_ENVIRONMENT,
    "shelter": Feature.ALTER_ENVIRONMENT,
    "loot": Feature.COLLECT_LOOT,
    "collect_loot": Feature.COLLECT_LOOT,
    "chatter": Feature.CHATTER,
    "chat": Feature.CHATTER,
}


@dataclass(frozen=True)
class PolicySnapshot:
    mode: OperatingMode = OperatingMode.AUTONOMOUS
    sleep: SleepDirective = SleepDirective.AUTO
    features: frozenset[Feature] = field(default_factory=lambda: frozenset(Feature))

    def enabled(self, feature: Feature) -> bool:
        return feature in self.features

    @property
    def may_alter_environment(self) -> bool:
        return self.mode is not OperatingMode.PASSIVE and self.enabled(Feature.ALTER_ENVIRONMENT)

    def movement_config(self) -> MovementConfig:
        alter = self.may_alter_environment
        return MovementConfig(can_dig=alter, can_place=alter)

    def to_dict(self) -> dict:
        return {
            "mode": self.mode.value,
            "sleep": self.sleep.value,
            "features": {f.value: f in self.features for f in Feature},
        }


PolicyObserver = Callable[[PolicySnapshot, PolicySnapshot], None]


class PolicyState:
    """Process-lifetime policy holder with synchronous change observers."""

    def __init__(self, initial: Optional[PolicySnapshot] = None) -> None:
        self._current = initial or PolicySnapshot()
        self._observers: list[PolicyObserver] = []

    @classmethod
    def from_settings(cls, cfg) -> "PolicyState":
        features = {
            Feature.ALTER_ENVIRONMENT: cfg.alter_environment,
            Feature.COLLECT_LOOT: cfg.collect_loot,
            Feature.CHATTER: cfg.chatter,
        }
        return cls(
            PolicySnapshot(
                mode=OperatingMode(cfg.mode),
                sleep=SleepDirective(cfg.sleep),
                features=frozenset(f for f, on in features.items() if on),
            )
        )

    # ── Reads ─────────────────────────────────────────────────────────────────

    def snapshot(self) -> PolicySnapshot:
        return self._current

    @property
    def mode(self) -> OperatingMode:
        return self._current.mode

    @property
    def sleep(self) -> SleepDirective:
        return self._current.sleep

    def enabled(self, feature: Feature) -> bool:
        return self._current.enabled(feature)

    # ── Writes ────────────────────────────────────────────────────────────────

    def set_mode(self, mode: OperatingMode | str) -> PolicySnapshot:
        return self._swap(replace(self._current, mode=OperatingMode(mode)))

    def set_sleep(self, directive: SleepDirective | str) -> PolicySnapshot:
        return self._swap(replace(self._current, sleep=SleepDirective(directive)))

    def set_feature(self, feature: Feature | str, on: bool) -> PolicySnapshot:
        feature = Feature(feature)
        features = set(self._current.features)
        if on:
            features.add(feature)
        else:
            features.discard(feature)
        return self._swap(replace(self._current, features=frozenset(features)))

    # ── Observers ─────────────────────────────────────────────────────────────

    def add_observer(self, observer: PolicyObserver) -> Callable[[], None]:
        """Register an observer; returns a callable that removes it."""
        self._observers.append(observer)

        def _remove() -> None:
            if observer in self._observers:
                self._observers.remove(observer)

        return _remove

    def _swap(self, new: PolicySnapshot) -> PolicySnapshot:
        old, self._current = self._current, new
        if old == new:
            return new
        log.info("policy.changed", **new.to_dict())
        for observer in list(self._observers):
            observer(old, new)
        return new
