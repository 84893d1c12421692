"""Command-line interface for the pool farming engine."""
from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys

from .config import AppConfig, load_config
from .errors import StorageConnectionError
from .interfaces.notifier import Notifier
from .logging_setup import configure_logging
from .notifications import TelegramNotifier
from .services import CycleScheduler
from .sources import DefiLlamaSource
from .storage import SQLiteStorage

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse CLI parser."""
    parser = argparse.ArgumentParser(
        prog="defi-pool-farmer",
        description="Detect, score and paper-farm new high-yield DeFi pools",
    )
    parser.add_argument(
        "--config",
        default=None,
        help="Path to config.yaml (default: config.yaml in project root)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )

    sub = parser.add_subparsers(dest="command")

    sub.add_parser("cycle", help="Run a single detection/investment cycle")

    run_parser = sub.add_parser("run", help="Run cycles continuously")
    run_parser.add_argument(
        "interval",
        nargs="?",
        type=int,
        default=None,
        help="Cycle interval in minutes (overrides config)",
    )

    sub.add_parser("status", help="Show active positions and the watchlist")
    sub.add_parser("report", help="Yield report across all positions")

    exit_parser = sub.add_parser("exit", help="Manually exit an active position")
    exit_parser.add_argument("position_id", type=int, help="Position id")

    return parser


def _build_notifiers(config: AppConfig) -> list[Notifier]:
    notifiers: list[Notifier] = []
    if config.notifications.telegram.enabled:
        notifiers.append(TelegramNotifier(config.notifications.telegram))
    return notifiers


def _print_status(scheduler: CycleScheduler) -> None:
    active = scheduler.portfolio.active_positions()
    print(f"Active positions ({len(active)}):")
    for p in active:
        print(
            f"  #{p.id} {p.symbol:<20} {p.project:<20} "
            f"entry {p.entry_apy:8.2f}%  risk {p.entry_risk_score}  "
            f"since {p.entry_timestamp:%Y-%m-%d %H:%M}"
        )

    entries = scheduler.watchlist.entries()
    print(f"\nWatchlist ({len(entries)}):")
    for e in entries:
        flag = "new" if e.is_new else "   "
        print(
            f"  {e.symbol:<20} {e.project:<20} {e.status.value:<9} {flag} "
            f"first seen {e.first_seen:%Y-%m-%d %H:%M}"
        )


async def _run_forever(scheduler: CycleScheduler, interval: int | None) -> None:
    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except NotImplementedError:
            logger.debug("Signal handlers unsupported on this platform")
    await scheduler.run_forever(interval, stop_event)


async def _run(args: argparse.Namespace) -> int:
    """Execute the selected command and return the exit status."""
    configure_logging(args.log_level)
    config = load_config(args.config)

    try:
        storage = SQLiteStorage(config.storage.database_path)
    except StorageConnectionError as e:
        logger.critical("%s", e)
        return 1

    source = DefiLlamaSource(config.source, config.engine.target_chain)
    scheduler = CycleScheduler(config, storage, source, _build_notifiers(config))

    try:
        if args.command == "cycle":
            report = await scheduler.run_cycle()
            return 1 if report is None or report.failed else 0
        if args.command == "run":
            await _run_forever(scheduler, args.interval)
        elif args.command == "status":
            _print_status(scheduler)
        elif args.command == "report":
            print(await scheduler.generate_report())
        elif args.command == "exit":
            try:
                position = await scheduler.manual_exit(args.position_id)
            except ValueError as e:
                print(e, file=sys.stderr)
                return 1
            print(
                f"Exited #{position.id} {position.symbol}: "
                f"P/L ${position.profit_loss:,.2f}"
            )
        else:
            build_parser().print_help()
            return 1
    finally:
        storage.close()
    return 0


def main() -> None:
    """Entry point."""
    parser = build_parser()
    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(asyncio.run(_run(args)))
