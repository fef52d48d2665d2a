from nomadbot.behavior.context import BehaviorMemory, Outcome, Step, TickContext, perform, sequence
from nomadbot.behavior.policy import (
    FEATURE_ALIASES,
    Feature,
    OperatingMode,
    PolicySnapshot,
    PolicyState,
    SleepDirective,
)
from nomadbot.behavior.scheduler import BehaviorScheduler, SchedulerStats, TickRecord
from nomadbot.behavior.tiers import (
    PASS,
    REST_RULES,
    TIERS,
    IdleChoice,
    TierResult,
    Verdict,
    choose_idle,
    wants_rest,
)

__all__ = [
    "BehaviorMemory", "Outcome", "Step", "TickContext", "perform", "sequence",
    "FEATURE_ALIASES", "Feature", "OperatingMode", "PolicySnapshot", "PolicyState", "SleepDirective",
    "BehaviorScheduler", "SchedulerStats", "TickRecord",
    "PASS", "REST_RULES", "TIERS", "IdleChoice", "TierResult", "Verdict", "choose_idle", "wants_rest",
]
