"""
tests/unit/test_reconnect.py — Reconnect Policy Unit Tests

Covers:
  - ReconnectPolicy: flat default delays, duplicate strictly longer,
    exponential growth capped at max_delay, reset(), jitter bounds,
    from_settings, constructor validation
  - classify_kick: duplicate_login marker in string / dict payloads
  - classify_error: refused (typed, errno, text), benign patterns, generic
"""

from __future__ import annotations

import errno
import random

import pytest

from nomadbot.config.settings import ReconnectConfig
from nomadbot.exceptions import BenignDecodeError, ConnectionRefused, TransportError
from nomadbot.session.reconnect import (
    DisconnectReason,
    ErrorClass,
    ReconnectPolicy,
    classify_error,
    classify_kick,
)


# ─────────────────────────────────────────────────────────────────────────────
# ReconnectPolicy
# ─────────────────────────────────────────────────────────────────────────────

class TestReconnectPolicy:
    def test_defaults_are_flat(self):
        policy = ReconnectPolicy()
        for reason in ("kicked", "error", "end", "create_error", "connection_refused"):
            assert policy.delay_for(reason) == 10.0

    def test_duplicate_uses_long_delay(self):
        assert ReconnectPolicy().delay_for(DisconnectReason.DUPLICATE) == 60.0

    @pytest.mark.parametrize("failures", [0, 1, 3, 8])
    def test_duplicate_strictly_longer_than_plain_failure(self, failures):
        plain = ReconnectPolicy(multiplier=2.0, max_delay=1000.0)
        dup = ReconnectPolicy(multiplier=2.0, max_delay=1000.0)
        for _ in range(failures):
            plain.delay_for("error")
            dup.delay_for("error")
        assert dup.delay_for("duplicate") > plain.delay_for("error")

    def test_exponential_growth_is_capped(self):
        policy = ReconnectPolicy(base_delay=1.0, multiplier=2.0, max_delay=5.0, duplicate_delay=10.0)
        delays = [policy.delay_for("end") for _ in range(6)]
        assert delays == [1.0, 2.0, 4.0, 5.0, 5.0, 5.0]
        assert policy.failures == 6

    def test_reset_returns_to_base(self):
        policy = ReconnectPolicy(base_delay=1.0, multiplier=3.0, max_delay=100.0, duplicate_delay=10.0)
        policy.delay_for("error")
        policy.delay_for("error")
        assert policy.current_delay == 9.0
        policy.reset()
        assert policy.current_delay == 1.0
        assert policy.failures == 0

    def test_jitter_stays_within_bounds(self):
        policy = ReconnectPolicy(jitter=2.0, rng=random.Random(7))
        for _ in range(200):
            d = policy.delay_for("end")
            assert 10.0 <= d <= 12.0

    @pytest.mark.parametrize("jitter", [5.0, 100.0])
    def test_duplicate_beats_jittered_plain_delay(self, jitter):
        for seed in range(200):
            policy = ReconnectPolicy(base_delay=10.0, jitter=jitter, duplicate_delay=60.0, rng=random.Random(seed))
            plain = policy.delay_for(DisconnectReason.ERROR)
            policy.reset()
            duplicate = policy.delay_for(DisconnectReason.DUPLICATE)
            assert duplicate > plain
            assert duplicate > 10.0 + jitter

    def test_duplicate_must_exceed_base(self):
        with pytest.raises(ValueError):
            ReconnectPolicy(base_delay=30.0, duplicate_delay=30.0)

    def test_from_settings(self):
        cfg = ReconnectConfig(base_delay_s=5, duplicate_delay_s=45, multiplier=1.5, max_delay_s=60)
        policy = ReconnectPolicy.from_settings(cfg)
        assert policy.base_delay == 5
        assert policy.duplicate_delay == 45
        assert policy.delay_for("kicked") == 5
        assert policy.delay_for("kicked") == 7.5

    def test_unknown_reason_rejected(self):
        with pytest.raises(ValueError):
            ReconnectPolicy().delay_for("meteor")


# ─────────────────────────────────────────────────────────────────────────────
# Classifiers
# ─────────────────────────────────────────────────────────────────────────────

class TestClassifyKick:
    def test_plain_kick(self):
        assert classify_kick("You have been idle for too long") is DisconnectReason.KICKED

    def test_duplicate_in_text(self):
        assert classify_kick("multiplayer.disconnect.duplicate_login") is DisconnectReason.DUPLICATE

    def test_duplicate_in_structured_payload(self):
        payload = {"translate": "multiplayer.disconnect.duplicate_login", "with": []}
        assert classify_kick(payload) is DisconnectReason.DUPLICATE

    def test_none_payload(self):
        assert classify_kick(None) is DisconnectReason.KICKED


class TestClassifyError:
    def test_typed_refusal(self):
        assert classify_error(ConnectionRefused("nope")) is ErrorClass.REFUSED

    def test_builtin_refusal(self):
        assert classify_error(ConnectionRefusedError()) is ErrorClass.REFUSED

    def test_errno_refusal(self):
        assert classify_error(OSError(errno.ECONNREFUSED, "refused")) is ErrorClass.REFUSED

    def test_text_refusal(self):
        assert classify_error(TransportError("connect ECONNREFUSED 127.0.0.1:25565")) is ErrorClass.REFUSED

    def test_partial_read_is_benign(self):
        err = TransportError("PartialReadError: Read error for undefined")
        assert classify_error(err) is ErrorClass.BENIGN

    def test_benign_decode_type(self):
        assert classify_error(BenignDecodeError("short packet")) is ErrorClass.BENIGN

    def test_custom_patterns(self):
        err = TransportError("Chunk size is 12 but only 4 was read")
        assert classify_error(err, ["Chunk size"]) is ErrorClass.BENIGN
        assert classify_error(err, []) is ErrorClass.ERROR

    def test_generic(self):
        assert classify_error(RuntimeError("socket hang up")) is ErrorClass.ERROR
