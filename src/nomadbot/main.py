"""
main.py — NomadBot Entry Point

Usage:
    nomadbot                                # default settings, status server on
    nomadbot --config path/to/config.yaml
    nomadbot --log-level DEBUG              # Verbose logging
    nomadbot --no-status                    # skip the HTTP status reporter
    python -m nomadbot
"""

from __future__ import annotations
# ─────────────────────────────────────────────────────────────────────────────
# Load environment variables FIRST, before Settings reads them
# ─────────────────────────────────────────────────────────────────────────────

from dotenv import load_dotenv

load_dotenv()

# ─────────────────────────────────────────────────────────────────────────────
import argparse
import asyncio
import signal
import sys


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="nomadbot",
        description="NomadBot — autonomous world agent with self-healing sessions",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: $NOMADBOT_CONFIG or config/config.yaml)",
    )
    parser.add_argument(
        "--log-level",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        default=None,
        help="Override log level from config",
    )
    parser.add_argument(
        "--no-status",
        action="store_true",
        default=False,
        help="Do not start the HTTP status reporter",
    )
    return parser.parse_args(argv)


def bootstrap(args: argparse.Namespace):
    """
    Load config, validate it fully, and set up logging.
    Returns (settings, log) ready for use.

    Exits with code 1 (after printing a clear message) if:
      - config.yaml has invalid values (Pydantic ValidationError)
      - cross-field problems are found (ConfigError from validate_all())
    """
    from pydantic import ValidationError

    from nomadbot.config.settings import ConfigError, load_settings
    from nomadbot.observability.logger import get_logger, setup_logging

    # -- Load and parse -------------------------------------------------------
    try:
        settings = load_settings(args.config)
    except ValidationError as exc:
        problems = "\n".join(
            f"  • {'.'.join(str(p) for p in e['loc']) if e['loc'] else '?'}: {e['msg']}"
            for e in exc.errors()
        )
        print(
            f"\n❌  Config validation failed:\n\n{problems}\n\n"
            f"    Fix config/config.yaml or your .env file and restart.\n",
            file=sys.stderr,
        )
        sys.exit(1)
    except (OSError, ValueError, TypeError) as exc:
        print(
            f"\n❌  Failed to load config: {type(exc).__name__}: {exc}\n",
            file=sys.stderr,
        )
        sys.exit(1)

    # -- Cross-field validation -----------------------------------------------
    try:
        settings.validate_all()
    except ConfigError as exc:
        print(str(exc), file=sys.stderr)
        sys.exit(1)

    # -- Logging --------------------------------------------------------------
    # CLI --log-level flag overrides config.yaml
    setup_logging(
        level=args.log_level or settings.log_level,
        log_dir=settings.log_dir,
        json_format=settings.logging.json_format,
        console_output=settings.logging.console_output,
        max_bytes=settings.logging.max_file_size_mb * 1024 * 1024,
        backup_count=settings.logging.backup_count,
    )

    log = get_logger("nomadbot.main")
    return settings, log


async def run(settings, log, *, status_enabled: bool = True) -> int:
    """Wire every component onto the running loop and block until a signal arrives."""
    from nomadbot.behavior.policy import PolicyState
    from nomadbot.behavior.scheduler import BehaviorScheduler
    from nomadbot.gateway.commands import CommandSurface
    from nomadbot.gateway.status_server import StatusServer
    from nomadbot.session.manager import SessionManager
    from nomadbot.world.bridge import BridgeConnector

    policy = PolicyState.from_settings(settings.policy)
    scheduler = BehaviorScheduler.from_settings(settings, policy)
    commands = CommandSurface.from_settings(settings, policy)
    connector = BridgeConnector.from_settings(settings)
    manager = SessionManager.from_settings(settings, connector, scheduler, policy, commands)
    commands.bind_status(manager.status)

    status_server = None
    if status_enabled and settings.status.enabled:
        status_server = StatusServer.from_settings(settings, manager)

    loop = asyncio.get_running_loop()
    stop = asyncio.Event()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows: no loop signal handlers
            signal.signal(sig, lambda *_: loop.call_soon_threadsafe(stop.set))

    log.info(
        "nomadbot.starting",
        target=f"{settings.target_host}:{settings.target_port}",
        username=settings.username,
        bridge=settings.bridge_endpoint,
        mode=policy.mode.value,
        status_port=settings.status_port if status_server else None,
    )

    if status_server is not None:
        await status_server.start()
    manager.start()

    try:
        await stop.wait()
    finally:
        log.info("nomadbot.shutting_down")
        manager.shutdown()
        if status_server is not None:
            await status_server.stop()
    return 0


def cli(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    settings, log = bootstrap(args)
    try:
        return asyncio.run(run(settings, log, status_enabled=not args.no_status))
    except KeyboardInterrupt:
        log.info("nomadbot.interrupted")
        return 0


if __name__ == "__main__":
    sys.exit(cli())
