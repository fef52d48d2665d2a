"""
behavior/context.py — Tick context and tagged action outcomes

Every long-running world call made by an action goes through perform(),
which turns the action-layer exceptions into an Outcome tag and drops the
result of any call that settles after its session was torn down. Actions
are written as straight-line sequences of perform() calls that return on
the first non-OK step.
"""

from __future__ import annotations

import inspect
import random
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional

from nomadbot.exceptions import (
    ActionFailedError,
    ResourceMissingError,
    SessionEndedError,
    UnreachableError,
)
from nomadbot.observability.logger import get_logger
from nomadbot.world.types import Vec3, WorldSnapshot

log = get_logger(__name__)


class Outcome(str, Enum):
    OK = "ok"
    UNREACHABLE = "unreachable"
    ACTION_FAILED = "action_failed"
    SESSION_ENDED = "session_ended"

    @property
    def ok(self) -> bool:
        return self is Outcome.OK


@dataclass
class Step:
    outcome: Outcome
    value: Any = None

    @property
    def ok(self) -> bool:
        return self.outcome is Outcome.OK


@dataclass
class BehaviorMemory:
    """What the scheduler remembers between ticks (process lifetime)."""
    temporary_bed: Optional[Vec3] = None
    reclaim_pending: bool = False

    def remember_bed(self, position: Vec3) -> None:
        self.temporary_bed = position
        self.reclaim_pending = False

    def forget_bed(self) -> None:
        self.temporary_bed = None
        self.reclaim_pending = False


@dataclass
class TickContext:
    """
    Ephemeral per-tick state handed to tier evaluators and actions.

    `policy` is the PolicySnapshot read once at the start of the tick, so a
    write made mid-tick only shows up on the next one.
    """
    session: Any
    snapshot: WorldSnapshot
    policy: Any
    config: Any
    rng: random.Random
    memory: BehaviorMemory
    is_current: Callable[[], bool]
    later: Callable[[float, Callable[[], None]], None]
    action: Optional[str] = None
    outcome: Optional[Outcome] = None
    steps: list[str] = field(default_factory=list)

    @property
    def agent(self):
        return self.session.agent

    async def act(self, name: str, fn: Callable[..., Awaitable[Outcome]], *args: Any):
        """Run the tick's single action and return a HANDLED tier result."""
        from nomadbot.behavior.tiers import TierResult

        if self.action is not None:
            raise RuntimeError(f"tick already ran '{self.action}', refusing '{name}'")
        self.action = name
        self.outcome = await fn(self, *args)
        return TierResult.handled_by(name, self.outcome)


async def perform(ctx: TickContext, label: str, fn: Callable[..., Any], *args: Any, **kwargs: Any) -> Step:
    """
    Call one world capability and tag the result.

    Sync and async capabilities are both accepted. Recoverable failures are
    logged here and never re-raised.
    """
    if not ctx.is_current():
        return Step(Outcome.SESSION_ENDED)
    ctx.steps.append(label)
    try:
        value = fn(*args, **kwargs)
        if inspect.isawaitable(value):
            value = await value
    except UnreachableError as e:
        log.info("action.unreachable", action=ctx.action, step=label, error=str(e))
        return Step(Outcome.UNREACHABLE)
    except (ActionFailedError, ResourceMissingError) as e:
        log.info("action.failed", action=ctx.action, step=label, error=str(e))
        return Step(Outcome.ACTION_FAILED)
    except SessionEndedError:
        log.debug("action.session_ended", action=ctx.action, step=label)
        return Step(Outcome.SESSION_ENDED)

    if not ctx.is_current():
        log.debug("action.result_discarded", action=ctx.action, step=label)
        return Step(Outcome.SESSION_ENDED)
    return Step(Outcome.OK, value)


async def sequence(ctx: TickContext, *steps: tuple) -> Outcome:
    """Run (label, fn, *args) steps in order, stopping at the first non-OK one."""
    for label, fn, *args in steps:
        step = await perform(ctx, label, fn, *args)
        if not step.ok:
            return step.outcome
    return Outcome.OK
