"""
tests/unit/test_commands.py — CommandSurface Unit Tests

Covers:
  - mode / sleep / toggle writes reach PolicyState (and its observers)
  - status reply with and without a status provider
  - unauthorized senders and unknown commands are silent (None)
  - dispatch() raises the PolicyError subclasses handle() swallows
  - bad arguments to a known command return its usage line
  - optional prefix handling
"""

from __future__ import annotations

import pytest

from nomadbot.behavior.policy import Feature, OperatingMode, PolicyState, SleepDirective
from nomadbot.exceptions import UnauthorizedCommandError, UnknownCommandError
from nomadbot.gateway.commands import CommandSurface


def _make_surface(**kw):
    policy = PolicyState()
    surface = CommandSurface(policy, **kw)
    return surface, policy


class TestPolicyCommands:
    def test_mode(self):
        surface, policy = _make_surface()
        assert surface.handle("Steve", "mode task_only") == "Mode set to task_only."
        assert policy.mode is OperatingMode.TASK_ONLY

    def test_sleep(self):
        surface, policy = _make_surface()
        assert surface.handle("Steve", "sleep deny") == "Sleep set to deny."
        assert policy.sleep is SleepDirective.DENY

    @pytest.mark.parametrize("alias", ["alter", "shelter", "alter_environment"])
    def test_toggle_alter(self, alias):
        surface, policy = _make_surface()
        seen = []
        policy.add_observer(lambda old, new: seen.append(new.movement_config().can_dig))
        assert surface.handle("Steve", f"toggle {alias} off") == "alter_environment off."
        assert policy.enabled(Feature.ALTER_ENVIRONMENT) is False
        assert seen == [False]

    def test_toggle_case_insensitive(self):
        surface, policy = _make_surface()
        surface.handle("Steve", "TOGGLE Loot OFF")
        assert policy.enabled(Feature.COLLECT_LOOT) is False

    @pytest.mark.parametrize("text", ["mode", "mode berserk", "sleep maybe", "toggle loot", "toggle fly on", "toggle loot sideways"])
    def test_bad_arguments_return_usage(self, text):
        surface, policy = _make_surface()
        before = policy.snapshot()
        reply = surface.handle("Steve", text)
        assert reply.startswith("Usage:")
        assert policy.snapshot() == before


class TestStatus:
    def test_status_without_provider(self):
        surface, _ = _make_surface()
        reply = surface.handle("Steve", "status")
        assert "mode=autonomous" in reply
        assert "sleep=auto" in reply

    def test_status_with_provider(self):
        surface, _ = _make_surface(status_provider=lambda: {"connected": True, "uptime_seconds": 42.7})
        reply = surface.handle("Steve", "status")
        assert reply.startswith("online")
        assert "up 42s" in reply

    def test_bind_status(self):
        surface, _ = _make_surface()
        surface.bind_status(lambda: {"connected": False, "uptime_seconds": 1})
        assert surface.handle("Steve", "status").startswith("offline")


class TestSilence:
    def test_unauthorized_sender_is_silent(self):
        surface, policy = _make_surface(allowed_sender="Alex")
        assert surface.handle("Steve", "mode passive") is None
        assert policy.mode is OperatingMode.AUTONOMOUS

    def test_authorized_sender(self):
        surface, policy = _make_surface(allowed_sender="Alex")
        assert surface.handle("Alex", "mode passive") is not None
        assert policy.mode is OperatingMode.PASSIVE

    @pytest.mark.parametrize("text", ["", "   ", "hello there", "gg", "!mode passive"])
    def test_unknown_is_silent(self, text):
        surface, _ = _make_surface()
        assert surface.handle("Steve", text) is None

    def test_unknown_from_stranger_is_unknown_not_unauthorized(self):
        surface, _ = _make_surface(allowed_sender="Alex")
        with pytest.raises(UnknownCommandError):
            surface.dispatch("Steve", "nice base")

    def test_dispatch_raises_unauthorized(self):
        surface, _ = _make_surface(allowed_sender="Alex")
        with pytest.raises(UnauthorizedCommandError) as exc_info:
            surface.dispatch("Steve", "status")
        assert exc_info.value.sender == "Steve"


class TestPrefix:
    def test_separate_prefix_word(self):
        surface, policy = _make_surface(prefix="nomad")
        surface.handle("Steve", "nomad sleep force")
        assert policy.sleep is SleepDirective.FORCE

    def test_attached_prefix(self):
        surface, policy = _make_surface(prefix="!")
        surface.handle("Steve", "!mode passive")
        assert policy.mode is OperatingMode.PASSIVE

    def test_missing_prefix_is_silent(self):
        surface, policy = _make_surface(prefix="!")
        assert surface.handle("Steve", "mode passive") is None
        assert policy.mode is OperatingMode.AUTONOMOUS
