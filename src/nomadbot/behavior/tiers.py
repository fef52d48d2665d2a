"""
behavior/tiers.py — Priority tiers

Each tier is an async evaluator (ctx) -> TierResult. PASS means the tier's
conditions were not met and nothing was attempted; HANDLED means the tier
consumed the tick, whatever its action's outcome was. The scheduler walks
TIERS in order and stops at the first HANDLED.

    survival → threat → tasks → idle
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

from nomadbot.behavior import actions
from nomadbot.behavior.context import Outcome, TickContext
from nomadbot.behavior.policy import Feature, SleepDirective
from nomadbot.world.types import Clock, Entity, Weather

HOSTILE_MOBS = frozenset({
    "zombie", "husk", "drowned", "zombie_villager", "skeleton", "stray",
    "spider", "cave_spider", "creeper", "witch", "pillager", "vindicator",
    "slime", "phantom",
})

FULL_FOOD = 20.0


class Verdict(str, Enum):
    PASS = "pass"
    HANDLED = "handled"


@dataclass(frozen=True)
class TierResult:
    verdict: Verdict
    action: Optional[str] = None
    outcome: Optional[Outcome] = None

    @property
    def handled(self) -> bool:
        return self.verdict is Verdict.HANDLED

    @classmethod
    def handled_by(cls, action: str, outcome: Outcome) -> "TierResult":
        return cls(Verdict.HANDLED, action, outcome)


PASS = TierResult(Verdict.PASS)

TierEvaluator = Callable[[TickContext], Awaitable[TierResult]]


# ─────────────────────────────────────────────────────────────────────────────
# Rest eligibility
# ─────────────────────────────────────────────────────────────────────────────

def _night(clock: Clock, weather: Weather) -> bool:
    return not clock.is_day


def _night_clear(clock: Clock, weather: Weather) -> bool:
    return not clock.is_day and not weather.raining


def _night_or_thunder(clock: Clock, weather: Weather) -> bool:
    return not clock.is_day or weather.thundering


REST_RULES: dict[str, Callable[[Clock, Weather], bool]] = {
    "night": _night,
    "night_clear": _night_clear,
    "night_or_thunder": _night_or_thunder,
}


def wants_rest(ctx: TickContext) -> bool:
    """
    AUTO follows the configured rest rule; FORCE rests whenever the world
    allows sleeping at all; DENY never rests.
    """
    directive = ctx.policy.sleep
    if directive is SleepDirective.DENY:
        return False
    clock, weather = ctx.snapshot.clock, ctx.snapshot.weather
    if directive is SleepDirective.FORCE:
        return _night_or_thunder(clock, weather)
    return REST_RULES[ctx.config.rest_rule](clock, weather)


def is_hostile(entity: Entity) -> bool:
    return entity.type in ("mob", "hostile") and entity.name in HOSTILE_MOBS


def is_loot(entity: Entity) -> bool:
    return entity.type == "object" and entity.name in ("item", "experience_orb")


# ─────────────────────────────────────────────────────────────────────────────
# Tiers
# ─────────────────────────────────────────────────────────────────────────────

async def survival(ctx: TickContext) -> TierResult:
    snap, cfg = ctx.snapshot, ctx.config
    memory = ctx.memory

    if memory.reclaim_pending:
        bed = snap.block_at(memory.temporary_bed) if memory.temporary_bed else None
        if bed is None or not bed.is_bed:
            memory.forget_bed()
        elif ctx.policy.may_alter_environment:
            return await ctx.act("reclaim_bed", actions.reclaim_bed, bed)

    vitals = snap.vitals
    low = vitals.health < cfg.low_health or vitals.food < cfg.low_food
    if low and vitals.food < FULL_FOOD:
        food = next(iter(snap.items(actions.is_food)), None)
        if food is not None:
            return await ctx.act("eat", actions.eat, food)

    if wants_rest(ctx):
        bed = snap.find_block(lambda b: b.is_bed, cfg.bed_search_radius)
        if bed is not None:
            return await ctx.act("rest", actions.rest, bed)
        item = actions.bed_item(snap)
        if item is not None and ctx.policy.may_alter_environment and actions.bed_site(snap) is not None:
            return await ctx.act("rest", actions.rest, None, item)

    return PASS


async def threat(ctx: TickContext) -> TierResult:
    if not ctx.policy.mode.allows_combat:
        return PASS
    hostile = ctx.snapshot.nearest_entity(is_hostile, ctx.config.sensor_range)
    if hostile is None:
        return PASS
    return await ctx.act("engage", actions.engage, hostile)


async def tasks(ctx: TickContext) -> TierResult:
    if not ctx.policy.mode.allows_tasks:
        return PASS
    snap, cfg = ctx.snapshot, ctx.config

    if snap.count(actions.is_log) >= cfg.craft_threshold:
        table = snap.find_block(lambda b: b.name == "crafting_table", cfg.task_search_radius)
        if table is not None:
            log_item = max(snap.items(actions.is_log), key=lambda i: i.count)
            return await ctx.act("craft", actions.craft_planks, table, log_item)

    crop = snap.find_block(actions.is_mature_crop, cfg.task_search_radius)
    if crop is not None:
        return await ctx.act("harvest", actions.harvest_and_replant, crop)

    if ctx.policy.enabled(Feature.COLLECT_LOOT):
        loot = snap.nearest_entity(is_loot, cfg.task_search_radius)
        if loot is not None:
            return await ctx.act("collect_loot", actions.collect_loot, loot)

    return PASS


class IdleChoice(str, Enum):
    SHUFFLE = "shuffle"
    NOTHING = "nothing"
    WANDER = "wander"


def choose_idle(r: float, bands) -> IdleChoice:
    """Cumulative bands: [0, shuffle) → SHUFFLE, [shuffle, nothing) → NOTHING, rest → WANDER."""
    if r < bands.shuffle:
        return IdleChoice.SHUFFLE
    if r < bands.nothing:
        return IdleChoice.NOTHING
    return IdleChoice.WANDER


async def idle(ctx: TickContext) -> TierResult:
    choice = choose_idle(ctx.rng.random(), ctx.config.idle_bands)
    if choice is IdleChoice.SHUFFLE:
        return await ctx.act("shuffle", actions.shuffle_inventory)
    if choice is IdleChoice.WANDER and ctx.policy.mode.allows_wander:
        return await ctx.act("wander", actions.wander)
    return TierResult.handled_by("nothing", Outcome.OK)


TIERS: tuple[tuple[str, TierEvaluator], ...] = (
    ("survival", survival),
    ("threat", threat),
    ("tasks", tasks),
    ("idle", idle),
)
