#!/usr/bin/env python3
"""
main.py - Main entry point for the AFK fleet manager.

This script provides CLI access to:
1. Run the fleet with an interactive operator console
2. Validate a configuration file

Usage:
    python main.py run                          Run with config.yaml
    python main.py run --dry-run --autostart    Simulated clients, start every slot
    python main.py check-config --config x.yaml Validate a config file

Console commands (while running) are the same as the chat commands,
e.g. "/status", "/say 1-3 hello", "/protect 2 off". Type "/help".

SAFETY NOTE:
Only run automated accounts where the server owner allows it. Do not
use this in violation of any server's terms of service.
"""

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import Optional

from afk_bot.commands import CommandHandler
from afk_bot.coordinator import FleetCoordinator
from afk_bot.notifier import Notifier
from afk_bot.session import CommandResult
from integration.mc_client import DryRunClient, load_client_class
from utils.config import ConfigError, FleetConfig, load_config, validate_config
from utils.logger import setup_logging

logger = logging.getLogger(__name__)


def print_result(result: CommandResult) -> None:
    marker = "✅" if result.success else "❌"
    print(f"{marker} {result.message}")
    if isinstance(result.data, list):
        for entry in result.data:
            print(f"   {entry}")
    elif isinstance(result.data, dict):
        for key, value in result.data.items():
            print(f"   {key}: {value}")


def _start_stdin_reader(loop: asyncio.AbstractEventLoop, lines: asyncio.Queue) -> None:
    # Daemon thread so a blocked readline never holds up interpreter exit
    def read():
        for line in sys.stdin:
            loop.call_soon_threadsafe(lines.put_nowait, line)
        loop.call_soon_threadsafe(lines.put_nowait, "")

    threading.Thread(target=read, name="stdin-reader", daemon=True).start()


async def console_loop(handler: CommandHandler, stop_event: asyncio.Event) -> None:
    """Read operator commands from stdin until EOF or shutdown."""
    lines: asyncio.Queue = asyncio.Queue()
    _start_stdin_reader(asyncio.get_running_loop(), lines)
    while not stop_event.is_set():
        line = await lines.get()
        if not line:
            stop_event.set()
            return
        text = line.strip()
        if not text:
            continue
        if text in ('/quit', '/exit', 'quit', 'exit'):
            stop_event.set()
            return
        result = await handler.handle_command(text, reply=print)
        print_result(result)


async def run_fleet(args) -> int:
    """Start the coordinator and serve the console until shutdown."""
    fleet_config = FleetConfig.from_file(args.config)

    if args.dry_run:
        client_factory = DryRunClient
    else:
        client_factory = load_client_class(fleet_config.client_backend)

    notifier = Notifier()
    notifier.subscribe(lambda message: print(f"🔔 {message}"))

    coordinator = FleetCoordinator(fleet_config, notifier, client_factory)
    coordinator.initialize()
    handler = CommandHandler(coordinator)

    print("=" * 60)
    print("🤖 AFK Fleet Manager")
    print("=" * 60)
    print(f"  Server: {fleet_config.server.host}:{fleet_config.server.port}")
    print(f"  Accounts: {len(fleet_config.accounts)}")
    print(f"  Client: {'DryRunClient' if args.dry_run else fleet_config.client_backend}")
    print("  Type /help for commands, /quit to exit")
    print("=" * 60)

    stop_event = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop_event.set)
        except (NotImplementedError, RuntimeError):
            # Not available on every platform; Ctrl+C still raises KeyboardInterrupt
            pass

    if args.autostart:
        coordinator.start_all()

    console = asyncio.ensure_future(console_loop(handler, stop_event))
    try:
        await stop_event.wait()
    finally:
        logger.info("Shutting down")
        console.cancel()
        await coordinator.shutdown()

    print("\n" + "=" * 60)
    print("📊 Session Summary")
    print("=" * 60)
    for stat in coordinator.get_all_stats():
        print(f"Slot {stat['slot']} ({stat['username']}): uptime {stat['uptime_formatted']}, "
              f"reconnects {stat['reconnects']}, alerts {stat['alerts_triggered']}")
    print("=" * 60)
    return 0


def check_config(args) -> int:
    """Validate a configuration file and print the problems found."""
    try:
        data = load_config(args.config)
    except ConfigError as e:
        print(f"❌ {e}")
        return 1

    problems = validate_config(data)
    if problems:
        print(f"❌ {args.config} has {len(problems)} problem(s):")
        for problem in problems:
            print(f"   - {problem}")
        return 1

    fleet = FleetConfig.from_dict(data)
    print(f"✅ {args.config} is valid")
    print(f"   Server: {fleet.server.host}:{fleet.server.port}")
    print(f"   Accounts: {', '.join(f'{a.slot}={a.username}' for a in fleet.accounts) or '(none)'}")
    print(f"   Client backend: {fleet.client_backend}")
    return 0


def main(argv: Optional[list] = None) -> int:
    """Main entry point with subcommand support."""
    parser = argparse.ArgumentParser(
        description="AFK Fleet Manager - keep game accounts online and safe",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python main.py run                              Run with config.yaml
  python main.py run --dry-run --autostart        Simulated run of every slot
  python main.py check-config --config my.yaml    Validate a config file
        """
    )
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    run_parser = subparsers.add_parser('run', help='Run the fleet with an operator console')
    run_parser.add_argument('--config', type=str, default='config.yaml',
                            help='Path to configuration file')
    run_parser.add_argument('--dry-run', action='store_true',
                            help='Use simulated clients instead of the configured backend')
    run_parser.add_argument('--autostart', action='store_true',
                            help='Start every slot immediately')
    run_parser.add_argument('--log-level', type=str, default=None,
                            help='Log level (defaults to LOG_LEVEL or INFO)')
    run_parser.add_argument('--log-dir', type=str, default='logs',
                            help='Directory for rotating log files')

    check_parser = subparsers.add_parser('check-config', help='Validate a configuration file')
    check_parser.add_argument('--config', type=str, default='config.yaml',
                              help='Path to configuration file')

    args = parser.parse_args(argv)

    if args.command == 'run':
        setup_logging(args.log_level, args.log_dir)
        try:
            return asyncio.run(run_fleet(args))
        except ConfigError as e:
            logger.error(str(e))
            return 1
        except KeyboardInterrupt:
            print("\nFleet stopped by user")
            return 0
    if args.command == 'check-config':
        setup_logging(None, None)
        return check_config(args)

    parser.print_help()
    print("\n💡 Quick start:")
    print("  python main.py run --dry-run --autostart")
    return 0


if __name__ == "__main__":
    sys.exit(main())
