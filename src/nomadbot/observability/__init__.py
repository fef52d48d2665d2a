"""
observability/ — Structured logging for NomadBot.

Public API:
    from nomadbot.observability import get_logger, setup_logging
"""

from nomadbot.observability.logger import bind_session, clear_session, get_logger, setup_logging

__all__ = ["get_logger", "setup_logging", "bind_session", "clear_session"]
