"""
session/ — Session lifecycle

Public API:
    from nomadbot.session import SessionManager, Session, ReconnectPolicy

Component overview:
    Session           One connection lifetime; owns its scoped subscriptions
    ReconnectPolicy   Disconnect reason → retry delay
    SessionManager    Lifecycle state machine, terminal-event handling, reconnects
"""

from nomadbot.session.manager import SessionManager, SessionState
from nomadbot.session.reconnect import (
    DisconnectReason,
    ErrorClass,
    ReconnectPolicy,
    classify_error,
    classify_kick,
)
from nomadbot.session.session import Session

__all__ = [
    "SessionManager",
    "SessionState",
    "Session",
    "ReconnectPolicy",
    "DisconnectReason",
    "ErrorClass",
    "classify_error",
    "classify_kick",
]
