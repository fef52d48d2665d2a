"""
exceptions.py — NomadBot Unified Error Hierarchy

All NomadBot-specific exceptions live here. Every layer raises typed
subclasses of NomadBotError, never bare Exception.

Import from here, not from individual modules:
    from nomadbot.exceptions import UnreachableError, ConnectError

Hierarchy:
    NomadBotError
    ├── TransportError
    │   ├── ConnectionRefused
    │   └── BenignDecodeError
    ├── SessionError
    │   ├── ConnectError
    │   └── SessionEndedError
    ├── ActionError
    │   ├── UnreachableError
    │   ├── ResourceMissingError
    │   └── ActionFailedError
    └── PolicyError
        ├── UnauthorizedCommandError
        └── UnknownCommandError

Transport and session errors are routed through SessionManager.reconnect().
Action errors are caught at the action boundary and never leave a tick.
Policy errors are no-ops for the sender.
"""

from __future__ import annotations


# ─────────────────────────────────────────────────────────────────────────────
# Root
# ─────────────────────────────────────────────────────────────────────────────

class NomadBotError(Exception):
    """Base class for all NomadBot exceptions."""


# ─────────────────────────────────────────────────────────────────────────────
# Transport layer
# ─────────────────────────────────────────────────────────────────────────────

class TransportError(NomadBotError):
    """Base for socket / wire-level failures."""


class ConnectionRefused(TransportError):
    """The remote server actively refused the connection."""


class BenignDecodeError(TransportError):
    """A partial read while the connection is being torn down. Never terminal."""


# ─────────────────────────────────────────────────────────────────────────────
# Session layer
# ─────────────────────────────────────────────────────────────────────────────

class SessionError(NomadBotError):
    """Base for session lifecycle errors."""


class ConnectError(SessionError):
    """The connection attempt could not even be constructed."""


class SessionEndedError(SessionError):
    """The governing session ended while an operation was outstanding."""


# ─────────────────────────────────────────────────────────────────────────────
# Action layer
# ─────────────────────────────────────────────────────────────────────────────

class ActionError(NomadBotError):
    """Base for recoverable, tick-local action failures."""


class UnreachableError(ActionError):
    """No path exists to the requested movement goal."""

    def __init__(self, goal: object = None, message: str = "") -> None:
        self.goal = goal
        super().__init__(message or f"Goal is unreachable: {goal!r}")


class ResourceMissingError(ActionError):
    """A required item or block is no longer available."""

    def __init__(self, resource: str, message: str = "") -> None:
        self.resource = resource
        super().__init__(message or f"Required resource missing: '{resource}'")


class ActionFailedError(ActionError):
    """The world rejected an interaction (target moved, bad placement, ...)."""


# ─────────────────────────────────────────────────────────────────────────────
# Policy layer
# ─────────────────────────────────────────────────────────────────────────────

class PolicyError(NomadBotError):
    """Base for command-surface misuse."""


class UnauthorizedCommandError(PolicyError):
    """Command came from a sender outside the allow-list."""

    def __init__(self, sender: str, message: str = "") -> None:
        self.sender = sender
        super().__init__(message or f"Sender '{sender}' may not issue commands")


class UnknownCommandError(PolicyError):
    """Command verb or argument is not recognised."""


# ─────────────────────────────────────────────────────────────────────────────
# Convenience: all public names
# ─────────────────────────────────────────────────────────────────────────────

__all__ = [
    "NomadBotError",
    # Transport
    "TransportError",
    "ConnectionRefused",
    "BenignDecodeError",
    # Session
    "SessionError",
    "ConnectError",
    "SessionEndedError",
    # Action
    "ActionError",
    "UnreachableError",
    "ResourceMissingError",
    "ActionFailedError",
    # Policy
    "PolicyError",
    "UnauthorizedCommandError",
    "UnknownCommandError",
]
