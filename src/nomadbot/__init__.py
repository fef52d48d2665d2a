"""
nomadbot — crash-proof autonomous world client.

Two subsystems do the real work:
    SessionManager      Connection lifecycle, terminal-event detection, reconnect policy
    BehaviorScheduler   Fixed-period decision tick over priority tiers

Everything else (world bridge, status endpoint, chat commands, settings)
is glue around those two.
"""

__version__ = "1.0.0"
