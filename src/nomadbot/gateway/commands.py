"""
gateway/commands.py — Chat command surface

Plain-text commands read from in-game chat and mapped onto PolicyState
writes:

    mode <autonomous|task_only|passive>
    sleep <auto|force|deny>
    toggle <feature> <on|off>
    status
    help

Messages from a sender outside the allow-list and messages that are not a
known command are dropped silently (logged only), so ordinary chat never
gets a reply. A known command with a bad argument gets its usage line back.
"""

from __future__ import annotations

from typing import Any, Callable, Optional

from nomadbot.behavior.policy import FEATURE_ALIASES, OperatingMode, PolicyState, SleepDirective
from nomadbot.exceptions import PolicyError, UnauthorizedCommandError, UnknownCommandError
from nomadbot.observability.logger import get_logger

log = get_logger(__name__)

_ON = {"on", "true", "yes", "1", "enable", "enabled"}
_OFF = {"off", "false", "no", "0", "disable", "disabled"}

_USAGE = {
    "mode": "Usage: mode <" + "|".join(m.value for m in OperatingMode) + ">",
    "sleep": "Usage: sleep <" + "|".join(d.value for d in SleepDirective) + ">",
    "toggle": "Usage: toggle <alter|loot|chatter> <on|off>",
    "status": "Usage: status",
    "help": "Usage: help",
}


class CommandSurface:
    """
    Parses chat lines and applies them to the Policy State.

    Args:
        policy:           PolicyState every command writes to
        status_provider:  zero-arg callable returning the manager's status dict
        allowed_sender:   only this player may issue commands (None → anyone)
        prefix:           optional leading token such as "!" or "nomad"
    """

    def __init__(
        self,
        policy: PolicyState,
        status_provider: Optional[Callable[[], dict[str, Any]]] = None,
        *,
        allowed_sender: Optional[str] = None,
        prefix: str = "",
    ) -> None:
        self._policy = policy
        self._status_provider = status_provider
        self._allowed_sender = allowed_sender or None
        self._prefix = prefix.strip()

        self._handlers: dict[str, Callable[[list[str]], str]] = {
            "mode": self._cmd_mode,
            "sleep": self._cmd_sleep,
            "toggle": self._cmd_toggle,
            "status": self._cmd_status,
            "help": self._cmd_help,
        }

    @classmethod
    def from_settings(cls, settings, policy: PolicyState, status_provider=None) -> "CommandSurface":
        return cls(
            policy,
            status_provider,
            allowed_sender=settings.allowed_sender,
            prefix=settings.commands.prefix,
        )

    def bind_status(self, provider: Callable[[], dict[str, Any]]) -> None:
        self._status_provider = provider

    # ── Entry point ───────────────────────────────────────────────────────────

    def handle(self, sender: str, text: str) -> Optional[str]:
        """Return a reply for the sender, or None when nothing should be said."""
        try:
            return self.dispatch(sender, text)
        except UnauthorizedCommandError as e:
            log.warning("commands.unauthorized", sender=e.sender)
        except UnknownCommandError as e:
            log.debug("commands.ignored", sender=sender, reason=str(e))
        except PolicyError as e:
            log.warning("commands.rejected", sender=sender, error=str(e))
        return None

    def dispatch(self, sender: str, text: str) -> str:
        """Like handle() but raises PolicyError subclasses instead of returning None."""
        words = self._strip_prefix((text or "").strip().split())
        if not words:
            raise UnknownCommandError("not a command")
        verb, args = words[0].lower(), [w.lower() for w in words[1:]]
        handler = self._handlers.get(verb)
        if handler is None:
            raise UnknownCommandError(f"unknown command '{verb}'")
        if not self._is_authorized(sender):
            raise UnauthorizedCommandError(sender)

        reply = handler(args)
        log.info("commands.applied", sender=sender, command=verb, args=args)
        return reply

    def _strip_prefix(self, words: list[str]) -> list[str]:
        if not self._prefix:
            return words
        if not words:
            return words
        head = words[0]
        if head.lower() == self._prefix.lower():
            return words[1:]
        if head.lower().startswith(self._prefix.lower()):
            return [head[len(self._prefix):], *words[1:]]
        return []

    def _is_authorized(self, sender: str) -> bool:
        if not self._allowed_sender:
            return True  # no restriction configured
        return sender == self._allowed_sender

    # ── Commands ──────────────────────────────────────────────────────────────

    def _cmd_mode(self, args: list[str]) -> str:
        valid = {m.value: m for m in OperatingMode}
        if len(args) != 1 or args[0] not in valid:
            return _USAGE["mode"]
        self._policy.set_mode(valid[args[0]])
        return f"Mode set to {args[0]}."

    def _cmd_sleep(self, args: list[str]) -> str:
        valid = {d.value: d for d in SleepDirective}
        if len(args) != 1 or args[0] not in valid:
            return _USAGE["sleep"]
        self._policy.set_sleep(valid[args[0]])
        return f"Sleep set to {args[0]}."

    def _cmd_toggle(self, args: list[str]) -> str:
        if len(args) != 2 or args[0] not in FEATURE_ALIASES or args[1] not in _ON | _OFF:
            return _USAGE["toggle"]
        feature = FEATURE_ALIASES[args[0]]
        on = args[1] in _ON
        self._policy.set_feature(feature, on)
        return f"{feature.value} {'on' if on else 'off'}."

    def _cmd_status(self, args: list[str]) -> str:
        policy = self._policy.snapshot()
        features = ", ".join(f"{name}={'on' if on else 'off'}" for name, on in policy.to_dict()["features"].items())
        parts = [f"mode={policy.mode.value}", f"sleep={policy.sleep.value}", features]
        if self._status_provider is not None:
            status = self._status_provider()
            parts.insert(0, "online" if status.get("connected") else "offline")
            parts.append(f"up {int(status.get('uptime_seconds', 0))}s")
        return " | ".join(parts)

    def _cmd_help(self, args: list[str]) -> str:
        return "Commands: mode, sleep, toggle, status"
