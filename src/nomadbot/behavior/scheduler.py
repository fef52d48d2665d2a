"""
behavior/scheduler.py — BehaviorScheduler

Drives the agent with two fixed-period timers on the shared event loop:

    tick   (tick_interval_s)  guard → snapshot → survival → threat → tasks → idle
    gaze   (gaze_interval_s)  cosmetic look-around while standing still

Design
------
* Timers are loop.call_later handles, so stop() cancels the tick timer, the
  gaze timer and every transient timer (look reset, hop release) in one
  synchronous call.
* Every start()/stop() bumps a generation counter. An in-flight tick holds
  the generation it started with; any step that settles after the counter
  moved is discarded instead of applied.
* Ticks never overlap. If the previous tick of the same generation is
  still suspended in a long-running action, the next one is skipped.
* A tick performs at most one action. Recoverable failures end the tick;
  unexpected exceptions are logged and never escape the timer callback.
* The Policy State is read once per tick, at the start.

Usage::

    scheduler = BehaviorScheduler.from_settings(settings, policy)
    scheduler.start(session)   # on readiness
    ...
    scheduler.stop()           # on teardown
"""

from __future__ import annotations

import asyncio
import random
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Sequence

from nomadbot.behavior import actions
from nomadbot.behavior.context import BehaviorMemory, Outcome, TickContext
from nomadbot.behavior.policy import Feature, PolicyState
from nomadbot.behavior.tiers import TIERS, TierEvaluator
from nomadbot.exceptions import ActionError, SessionEndedError
from nomadbot.observability.logger import get_logger

log = get_logger(__name__)


# ─────────────────────────────────────────────────────────────────────────────
# TickRecord — what one tick did
# ─────────────────────────────────────────────────────────────────────────────

@dataclass
class TickRecord:
    tick_id: int
    started_at: float = field(default_factory=time.monotonic)
    finished_at: Optional[float] = None
    skipped: Optional[str] = None
    tier: Optional[str] = None
    action: Optional[str] = None
    outcome: Optional[Outcome] = None
    steps: list[str] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def duration_s(self) -> float:
        end = self.finished_at or time.monotonic()
        return end - self.started_at

    def finish(self) -> "TickRecord":
        self.finished_at = time.monotonic()
        return self


@dataclass
class SchedulerStats:
    ticks: int = 0
    skipped: int = 0
    overlaps: int = 0
    actions: int = 0
    failures: int = 0
    errors: int = 0
    last_action: Optional[str] = None
    last_tier: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticks": self.ticks,
            "skipped": self.skipped,
            "overlaps": self.overlaps,
            "actions": self.actions,
            "failures": self.failures,
            "errors": self.errors,
            "last_action": self.last_action,
            "last_tier": self.last_tier,
        }


# ─────────────────────────────────────────────────────────────────────────────
# BehaviorScheduler
# ─────────────────────────────────────────────────────────────────────────────

class BehaviorScheduler:
    """
    Priority-tiered decision loop for one live session at a time.

    Args:
        config:   BehaviorConfig (periods, thresholds, idle bands, rest rule)
        policy:   PolicyState read once per tick
        rng:      random.Random used for every randomized decision
        tiers:    ordered (name, evaluator) pairs, TIERS by default
    """

    def __init__(
        self,
        config,
        policy: PolicyState,
        *,
        rng: Optional[random.Random] = None,
        tiers: Sequence[tuple[str, TierEvaluator]] = TIERS,
    ) -> None:
        self._config = config
        self._policy = policy
        self._rng = rng or random.Random()
        self._tiers = tuple(tiers)

        self._session = None
        self._generation = 0
        self._tick_handle: Optional[asyncio.TimerHandle] = None
        self._gaze_handle: Optional[asyncio.TimerHandle] = None
        self._transient: set[asyncio.TimerHandle] = set()
        self._tick_task: Optional[asyncio.Task] = None
        self._tick_generation = -1
        self._tick_seq = 0

        self.memory = BehaviorMemory()
        self.stats = SchedulerStats()
        self.tick_history: list[TickRecord] = []
        self._history_limit = 100

    @classmethod
    def from_settings(cls, settings, policy: PolicyState, rng: Optional[random.Random] = None) -> "BehaviorScheduler":
        return cls(settings.behavior, policy, rng=rng)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    @property
    def running(self) -> bool:
        return self._session is not None

    @property
    def generation(self) -> int:
        return self._generation

    @property
    def pending_timers(self) -> int:
        handles = [self._tick_handle, self._gaze_handle, *self._transient]
        return sum(1 for h in handles if h is not None and not h.cancelled())

    def start(self, session) -> None:
        """Bind to a ready session and arm both timers. Restarting is allowed."""
        self.stop()
        self._session = session
        self._generation += 1
        loop = asyncio.get_running_loop()
        self._tick_handle = loop.call_later(self._config.tick_interval_s, self._on_tick_timer)
        self._gaze_handle = loop.call_later(self._config.gaze_interval_s, self._on_gaze_timer)
        log.info(
            "scheduler.started",
            session_id=getattr(session, "id", None),
            tick_interval_s=self._config.tick_interval_s,
            gaze_interval_s=self._config.gaze_interval_s,
        )

    def stop(self) -> None:
        """Cancel every timer at once and orphan any in-flight tick."""
        if self._session is None and self.pending_timers == 0:
            return
        self._generation += 1
        for handle in (self._tick_handle, self._gaze_handle, *self._transient):
            if handle is not None:
                handle.cancel()
        self._tick_handle = None
        self._gaze_handle = None
        self._transient.clear()
        session, self._session = self._session, None
        log.info("scheduler.stopped", session_id=getattr(session, "id", None), **self.stats.to_dict())

    # ── Timers ────────────────────────────────────────────────────────────────

    def _on_tick_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._tick_handle = loop.call_later(self._config.tick_interval_s, self._on_tick_timer)

        if (
            self._tick_task is not None
            and not self._tick_task.done()
            and self._tick_generation == self._generation
        ):
            self.stats.overlaps += 1
            log.debug("scheduler.tick_overlap_skipped")
            return
        self._tick_generation = self._generation
        self._tick_task = loop.create_task(self.run_tick())

    def _on_gaze_timer(self) -> None:
        loop = asyncio.get_running_loop()
        self._gaze_handle = loop.call_later(self._config.gaze_interval_s, self._on_gaze_timer)
        self.run_gaze()

    def _later(self, generation: int, delay: float, fn: Callable[[], None]) -> None:
        """Transient timer that dies with the generation that armed it."""
        loop = asyncio.get_running_loop()

        def _fire() -> None:
            self._transient.discard(handle)
            if generation != self._generation:
                return
            try:
                fn()
            except Exception as e:
                log.warning("scheduler.transient_failed", error=str(e), error_type=type(e).__name__)

        handle = loop.call_later(delay, _fire)
        self._transient.add(handle)

    # ── Tick ──────────────────────────────────────────────────────────────────

    def _guard(self, session) -> Optional[str]:
        if session is None:
            return "no_session"
        if not session.active:
            return "not_ready"
        if session.agent.is_moving():
            return "moving"
        return None

    async def run_tick(self) -> TickRecord:
        """Run one decision tick. Never raises."""
        generation = self._generation
        session = self._session
        self._tick_seq += 1
        record = TickRecord(tick_id=self._tick_seq)

        def _current() -> bool:
            return generation == self._generation and session is not None and session.active

        try:
            skipped = self._guard(session)
            if skipped is None:
                try:
                    snapshot = await session.agent.observe()
                except (ActionError, SessionEndedError) as e:
                    log.debug("scheduler.observe_failed", error=str(e))
                    snapshot = None
                if snapshot is None or not _current():
                    skipped = "no_snapshot"
                elif not snapshot.spawned:
                    skipped = "not_spawned"
                elif snapshot.moving:
                    skipped = "moving"
                elif snapshot.sleeping:
                    skipped = "resting"
                elif snapshot.in_combat:
                    skipped = "engaged"

            if skipped is not None:
                record.skipped = skipped
                self.stats.skipped += 1
                return record.finish()

            ctx = TickContext(
                session=session,
                snapshot=snapshot,
                policy=self._policy.snapshot(),
                config=self._config,
                rng=self._rng,
                memory=self.memory,
                is_current=_current,
                later=lambda delay, fn: self._later(generation, delay, fn),
            )
            self.stats.ticks += 1

            for name, evaluator in self._tiers:
                result = await evaluator(ctx)
                if result.handled:
                    record.tier = name
                    record.action = result.action
                    record.outcome = result.outcome
                    break
            record.steps = list(ctx.steps)
            self._account(record)

        except Exception as e:
            record.error = str(e)
            self.stats.errors += 1
            log.error("scheduler.tick_error", tick_id=record.tick_id, error=str(e), exc_info=True)

        finally:
            record.finish()
            self.tick_history.append(record)
            if len(self.tick_history) > self._history_limit:
                self.tick_history = self.tick_history[-self._history_limit:]

        return record

    def _account(self, record: TickRecord) -> None:
        if record.tier is None:
            return
        self.stats.last_tier = record.tier
        if record.steps:
            self.stats.actions += 1
            self.stats.last_action = record.action
        if record.outcome is not None and not record.outcome.ok:
            self.stats.failures += 1
            log.info(
                "scheduler.tick_ended_early",
                tick_id=record.tick_id,
                tier=record.tier,
                action=record.action,
                outcome=record.outcome.value,
            )
        else:
            log.debug("scheduler.tick", tick_id=record.tick_id, tier=record.tier, action=record.action)

    # ── Gaze ──────────────────────────────────────────────────────────────────

    def run_gaze(self) -> bool:
        """Look somewhere new when idle. Returns True if the look was issued."""
        session = self._session
        if session is None or not session.active:
            return False
        if self._tick_task is not None and not self._tick_task.done():
            return False
        if session.agent.is_moving():
            return False
        yaw, pitch = actions.random_gaze(self._rng)
        session.agent.look(yaw, pitch)
        return True

    # ── Session events ────────────────────────────────────────────────────────

    def on_wake(self) -> None:
        """The agent woke up: greet and queue the temporary bed for reclaim."""
        session = self._session
        if session is None or not session.active:
            return
        policy = self._policy.snapshot()
        if policy.enabled(Feature.CHATTER):
            session.agent.chat("Morning!")
        if self.memory.temporary_bed is not None:
            self.memory.reclaim_pending = True
            log.info("scheduler.bed_reclaim_queued", position=self.memory.temporary_bed.to_dict())
