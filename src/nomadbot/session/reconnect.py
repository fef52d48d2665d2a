"""
session/reconnect.py — Reconnect Policy

Maps a disconnect reason to a retry delay. Stateless apart from the running
delay carried across consecutive failures when exponential growth is on
(multiplier > 1). The SessionManager calls reset() once a session reaches
readiness.
"""

from __future__ import annotations

import errno
import json
import random
from enum import Enum
from typing import Any, Iterable, Optional

from nomadbot.exceptions import BenignDecodeError, ConnectionRefused


class DisconnectReason(str, Enum):
    KICKED = "kicked"
    DUPLICATE = "duplicate"
    ERROR = "error"
    CONNECTION_REFUSED = "connection_refused"
    END = "end"
    CREATE_ERROR = "create_error"


class ErrorClass(str, Enum):
    """Result of classifying an `error` event."""
    REFUSED = "connection_refused"
    BENIGN = "benign"
    ERROR = "error"


DUPLICATE_LOGIN_MARKER = "duplicate_login"
DUPLICATE_MARGIN_S = 1.0


def _payload_text(payload: Any) -> str:
    if isinstance(payload, str):
        return payload
    try:
        return json.dumps(payload, default=str)
    except (TypeError, ValueError):
        return str(payload)


def classify_kick(payload: Any) -> DisconnectReason:
    """A kick whose payload mentions a duplicate login gets its own reason."""
    if DUPLICATE_LOGIN_MARKER in _payload_text(payload):
        return DisconnectReason.DUPLICATE
    return DisconnectReason.KICKED


def classify_error(exc: BaseException, benign_patterns: Iterable[str] = ("PartialReadError",)) -> ErrorClass:
    """
    Sort an `error` event into refused / benign / generic.

    Benign errors are the partial reads a socket produces while it is being
    torn down after a kick; the kick or end that caused them is already in
    flight, so they must not trigger a reconnect of their own.
    """
    if isinstance(exc, (ConnectionRefused, ConnectionRefusedError)):
        return ErrorClass.REFUSED
    if isinstance(exc, OSError) and exc.errno == errno.ECONNREFUSED:
        return ErrorClass.REFUSED
    text = f"{type(exc).__name__}: {exc}"
    if "ECONNREFUSED" in text:
        return ErrorClass.REFUSED
    if isinstance(exc, BenignDecodeError) or any(p in text for p in benign_patterns):
        return ErrorClass.BENIGN
    return ErrorClass.ERROR


class ReconnectPolicy:
    """
    Delay calculator for reconnect attempts.

    With the defaults (multiplier 1.0, no jitter) every reason waits
    `base_delay` seconds except DUPLICATE, which waits `duplicate_delay`.
    With multiplier > 1 the running delay grows per consecutive failure up
    to `max_delay`.
    """

    def __init__(
        self,
        base_delay: float = 10.0,
        multiplier: float = 1.0,
        max_delay: float = 300.0,
        jitter: float = 0.0,
        duplicate_delay: float = 60.0,
        rng: Optional[random.Random] = None,
    ) -> None:
        if duplicate_delay <= base_delay:
            raise ValueError("duplicate_delay must exceed base_delay")
        self.base_delay = base_delay
        self.multiplier = multiplier
        self.max_delay = max_delay
        self.jitter = jitter
        self.duplicate_delay = duplicate_delay
        self._rng = rng or random.Random()
        self._current = base_delay
        self.failures = 0

    @classmethod
    def from_settings(cls, cfg, rng: Optional[random.Random] = None) -> "ReconnectPolicy":
        return cls(
            base_delay=cfg.base_delay_s,
            multiplier=cfg.multiplier,
            max_delay=cfg.max_delay_s,
            jitter=cfg.jitter_s,
            duplicate_delay=cfg.duplicate_delay_s,
            rng=rng,
        )

    @property
    def current_delay(self) -> float:
        return self._current

    def delay_for(self, reason: DisconnectReason | str) -> float:
        """Return the delay for this failure and advance the running delay."""
        reason = DisconnectReason(reason)
        delay = self._current
        if reason is DisconnectReason.DUPLICATE:
            # Always longer than what a plain failure would wait right now
            delay = max(self.duplicate_delay, delay + self.duplicate_delay - self.base_delay)
            # Must also beat the worst jittered plain delay
            delay = max(delay, self._current + self.jitter + DUPLICATE_MARGIN_S)

        self.failures += 1
        self._current = min(self.max_delay, self._current * self.multiplier)

        if self.jitter > 0:
            delay += self._rng.uniform(0.0, self.jitter)
        return delay

    def reset(self) -> None:
        """Forget consecutive failures after a successful session start."""
        self._current = self.base_delay
        self.failures = 0
