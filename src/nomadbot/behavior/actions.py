"""
behavior/actions.py — Scheduler actions

Each action is an async function (ctx, *args) -> Outcome built from
perform() steps with early exit on the first non-OK step. Nothing here is
retried: a failed step ends the tick and the next tick re-decides from a
fresh snapshot. Partial effects (an equip that succeeded before a failed
interaction) are left as the world bridge reports them.
"""

from __future__ import annotations

import asyncio
import math

from nomadbot.behavior.context import Outcome, TickContext, perform, sequence
from nomadbot.behavior.policy import Feature
from nomadbot.observability.logger import get_logger
from nomadbot.world.types import (
    Block,
    Entity,
    GoalBlock,
    GoalFollow,
    GoalNear,
    Interaction,
    Item,
    Vec3,
    WorldSnapshot,
)

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# Item / block knowledge
# ─────────────────────────────────────────────────────────────────────────────

FOODS = frozenset({
    "apple", "baked_potato", "bread", "carrot", "cooked_beef", "cooked_chicken",
    "cooked_cod", "cooked_mutton", "cooked_porkchop", "cooked_rabbit",
    "cooked_salmon", "golden_apple", "golden_carrot", "melon_slice",
    "mushroom_stew", "pumpkin_pie", "sweet_berries",
})

# Higher is better; swords before axes of the same tier
WEAPON_RANK = {
    "wooden_axe": 1, "golden_axe": 1, "wooden_sword": 2, "golden_sword": 2,
    "stone_axe": 3, "stone_sword": 4, "iron_axe": 5, "iron_sword": 6,
    "diamond_axe": 7, "diamond_sword": 8, "netherite_axe": 9, "netherite_sword": 10,
}

# Crop block → (mature age, item that replants it)
CROPS: dict[str, tuple[int, str]] = {
    "wheat": (7, "wheat_seeds"),
    "carrots": (7, "carrot"),
    "potatoes": (7, "potato"),
    "beetroots": (3, "beetroot_seeds"),
    "nether_wart": (3, "nether_wart"),
}

BED_PLACE_RADIUS = 5.0
LOOK_DOWN_PITCH = -1.5
LOOK_RESET_S = 1.5
HOP_RELEASE_S = 0.5
INVENTORY_SLOTS = 36


def is_food(item: Item) -> bool:
    return item.name in FOODS


def is_log(item: Item) -> bool:
    return item.name.endswith("_log") or item.name.endswith("_stem")


def planks_for(log_name: str) -> str:
    """oak_log → oak_planks, crimson_stem → crimson_planks."""
    for suffix in ("_log", "_stem"):
        if log_name.endswith(suffix):
            return log_name[: -len(suffix)] + "_planks"
    return "oak_planks"


def is_mature_crop(block: Block) -> bool:
    crop = CROPS.get(block.name)
    if crop is None:
        return False
    try:
        age = int(block.properties.get("age", 0))
    except (TypeError, ValueError):
        return False
    return age >= crop[0]


def best_weapon(snapshot: WorldSnapshot) -> Item | None:
    weapons = snapshot.items(lambda i: i.name in WEAPON_RANK)
    if not weapons:
        return None
    return max(weapons, key=lambda i: WEAPON_RANK[i.name])


def bed_item(snapshot: WorldSnapshot) -> Item | None:
    return next(iter(snapshot.items(lambda i: i.name.endswith("_bed") or i.name == "bed")), None)


def bed_site(snapshot: WorldSnapshot) -> Block | None:
    """A solid block with air above it and beside-above it, close enough to place on."""

    def _clear(pos: Vec3) -> bool:
        block = snapshot.block_at(pos)
        return block is None or block.is_air

    def _usable(block: Block) -> bool:
        if block.is_air or block.is_bed:
            return False
        p = block.position
        side = snapshot.block_at(p.offset(1, 0, 0))
        return (
            _clear(p.offset(0, 1, 0))
            and side is not None and not side.is_air
            and _clear(p.offset(1, 1, 0))
        )

    return snapshot.find_block(_usable, BED_PLACE_RADIUS)


async def _chatter(ctx: TickContext, message: str) -> None:
    if ctx.policy.enabled(Feature.CHATTER):
        await perform(ctx, "chatter", ctx.agent.chat, message)


# ─────────────────────────────────────────────────────────────────────────────
# Tier 0 — survival
# ─────────────────────────────────────────────────────────────────────────────

async def eat(ctx: TickContext, food: Item) -> Outcome:
    log.info("action.eat", item=food.name, food=ctx.snapshot.vitals.food, health=ctx.snapshot.vitals.health)
    return await sequence(
        ctx,
        ("equip", ctx.agent.interact, food, Interaction.EQUIP),
        ("consume", ctx.agent.interact, food, Interaction.CONSUME),
    )


async def rest(ctx: TickContext, bed: Block | None, item: Item | None = None) -> Outcome:
    """
    Rest procedure: use `bed`, or place `item` first when no bed was found.

    A placed bed is remembered so it can be dug back up after waking.
    """
    if bed is None:
        site = bed_site(ctx.snapshot)
        if item is None or site is None:
            return Outcome.ACTION_FAILED
        step = await perform(ctx, "equip", ctx.agent.interact, item, Interaction.EQUIP)
        if not step.ok:
            return step.outcome
        step = await perform(ctx, "place_bed", ctx.agent.interact, site, Interaction.PLACE, item=item.name, face="up")
        if not step.ok:
            return step.outcome
        position = site.position.offset(0, 1, 0)
        ctx.memory.remember_bed(position)
        bed = Block(item.name, position)
        log.info("action.bed_placed", position=position.to_dict())

    step = await perform(ctx, "travel", ctx.agent.travel_to, GoalNear(bed.position, 2.0))
    if not step.ok:
        return step.outcome
    step = await perform(ctx, "sleep", ctx.agent.interact, bed, Interaction.SLEEP)
    if not step.ok:
        return step.outcome

    log.info("action.resting", bed=bed.name, position=bed.position.to_dict())
    await _chatter(ctx, "Goodnight!")
    return Outcome.OK


async def reclaim_bed(ctx: TickContext, bed: Block) -> Outcome:
    outcome = await sequence(
        ctx,
        ("equip_tool", ctx.agent.interact, bed, Interaction.EQUIP),
        ("dig_bed", ctx.agent.interact, bed, Interaction.DIG),
    )
    if outcome.ok:
        ctx.memory.forget_bed()
        log.info("action.bed_reclaimed", position=bed.position.to_dict())
    return outcome


# ─────────────────────────────────────────────────────────────────────────────
# Tier 1 — threat response
# ─────────────────────────────────────────────────────────────────────────────

async def engage(ctx: TickContext, hostile: Entity) -> Outcome:
    """Gear up, then strike when in melee range or close in otherwise."""
    snap, cfg, agent = ctx.snapshot, ctx.config, ctx.agent

    weapon = best_weapon(snap)
    if weapon is not None and snap.held_item != weapon.name:
        step = await perform(ctx, "gear_up", agent.interact, weapon, Interaction.EQUIP)
        if not step.ok:
            return step.outcome

    distance = snap.distance_to(hostile.position)
    if distance <= cfg.melee_range:
        log.info("action.strike", target=hostile.name, distance=round(distance, 1))
        step = await perform(ctx, "stance", agent.set_control, "sneak", False)
        if not step.ok:
            return step.outcome
        step = await perform(ctx, "hop", agent.set_control, "jump", True)
        if not step.ok:
            return step.outcome
        # Strike on the way down for the bonus hit
        if cfg.strike_windup_s > 0:
            await asyncio.sleep(cfg.strike_windup_s)
        step = await perform(ctx, "land", agent.set_control, "jump", False)
        if not step.ok:
            return step.outcome
        step = await perform(ctx, "attack", agent.interact, hostile, Interaction.ATTACK)
        return step.outcome

    guarded = distance <= cfg.guard_range
    log.info("action.pursue", target=hostile.name, distance=round(distance, 1), guarded=guarded)
    return await sequence(
        ctx,
        ("stance", agent.set_control, "sneak", guarded),
        ("pursue", agent.set_movement_goal, GoalFollow(hostile.id, max(1.0, cfg.melee_range - 1))),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Tier 2 — task economy
# ─────────────────────────────────────────────────────────────────────────────

async def craft_planks(ctx: TickContext, table: Block, log_item: Item) -> Outcome:
    recipe = planks_for(log_item.name)
    log.info("action.craft", recipe=recipe, logs=log_item.count)
    step = await perform(ctx, "travel", ctx.agent.travel_to, GoalNear(table.position, 2.0))
    if not step.ok:
        return step.outcome
    step = await perform(ctx, "craft", ctx.agent.interact, table, Interaction.CRAFT, recipe=recipe, count=1)
    return step.outcome


async def harvest_and_replant(ctx: TickContext, crop: Block) -> Outcome:
    _, seed_name = CROPS[crop.name]
    log.info("action.harvest", crop=crop.name, position=crop.position.to_dict())
    outcome = await sequence(
        ctx,
        ("travel", ctx.agent.travel_to, GoalNear(crop.position, 2.0)),
        ("harvest", ctx.agent.interact, crop, Interaction.DIG),
    )
    if not outcome.ok:
        return outcome

    seed = next(iter(ctx.snapshot.items(lambda i: i.name == seed_name)), None)
    if seed is None:
        # The harvest usually drops seeds; they get picked up on a later tick
        return Outcome.OK
    soil = Block("farmland", crop.position.offset(0, -1, 0))
    step = await perform(ctx, "equip_seed", ctx.agent.interact, seed, Interaction.EQUIP)
    if not step.ok:
        return step.outcome
    step = await perform(ctx, "replant", ctx.agent.interact, soil, Interaction.PLACE, item=seed.name, face="up")
    return step.outcome


async def collect_loot(ctx: TickContext, loot: Entity) -> Outcome:
    log.debug("action.collect_loot", position=loot.position.to_dict())
    return await sequence(
        ctx,
        ("collect", ctx.agent.set_movement_goal, GoalBlock(loot.position.floored())),
    )


# ─────────────────────────────────────────────────────────────────────────────
# Tier 3 — idle
# ─────────────────────────────────────────────────────────────────────────────

async def shuffle_inventory(ctx: TickContext) -> Outcome:
    """Look down, move one item to a random slot, look back up shortly after."""
    snap, agent, rng = ctx.snapshot, ctx.agent, ctx.rng
    step = await perform(ctx, "look_down", agent.look, snap.yaw, LOOK_DOWN_PITCH)
    if not step.ok:
        return step.outcome
    ctx.later(LOOK_RESET_S, lambda: agent.look(snap.yaw, 0.0))

    items = list(snap.inventory)
    if len(items) <= 1:
        return Outcome.OK
    item = rng.choice(items)
    to_slot = rng.randrange(INVENTORY_SLOTS)
    step = await perform(ctx, "move_slot", agent.interact, item, Interaction.MOVE_SLOT, to_slot=to_slot)
    return step.outcome


async def wander(ctx: TickContext) -> Outcome:
    snap, agent, rng = ctx.snapshot, ctx.agent, ctx.rng
    if snap.position is None:
        return Outcome.ACTION_FAILED

    spread = 10 + rng.randrange(20)
    target = snap.position.offset((rng.random() - 0.5) * spread, 0, (rng.random() - 0.5) * spread)
    sprint = rng.random() < 0.6
    hop = rng.random() < 0.3

    step = await perform(ctx, "sprint", agent.set_control, "sprint", sprint)
    if not step.ok:
        return step.outcome
    if hop:
        step = await perform(ctx, "hop", agent.set_control, "jump", True)
        if not step.ok:
            return step.outcome
        ctx.later(HOP_RELEASE_S, lambda: agent.set_control("jump", False))

    log.debug(
        "action.wander",
        target={k: round(v, 1) for k, v in target.to_dict().items()},
        sprint=sprint,
        hop=hop,
    )
    step = await perform(ctx, "wander", agent.set_movement_goal, GoalNear(target, 1.0))
    return step.outcome


def random_gaze(rng) -> tuple[float, float]:
    """Yaw anywhere, pitch close to the horizon."""
    return rng.uniform(-math.pi, math.pi), rng.uniform(-0.3, 0.3)
