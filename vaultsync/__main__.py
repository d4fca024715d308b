"""CLI entry point for vaultsync."""

import argparse
import asyncio
import json
import logging
import sys
import traceback
from datetime import datetime
from pathlib import Path

from .config import Config, load_config
from .engine import SyncEngine
from .errors import ValidationError
from .notices import console_notifier

logger = logging.getLogger("vaultsync")


class JSONFormatter(logging.Formatter):
    """JSON formatter for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }

        if record.exc_info:
            log_data["exception"] = "".join(traceback.format_exception(*record.exc_info))

        try:
            return json.dumps(log_data)
        except (TypeError, ValueError):
            log_data["message"] = str(log_data["message"])
            if "exception" in log_data:
                log_data["exception"] = str(log_data["exception"])
            return json.dumps(log_data)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level_map = {
            "warning": logging.WARNING,
            "info": logging.INFO,
            "debug": logging.DEBUG,
        }
        level = level_map.get(log_level, logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        formatter = logging.Formatter(
            fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        handler.setFormatter(formatter)

    logging.basicConfig(
        level=level,
        handlers=[handler],
    )


def make_confirm_prompt(assume_yes: bool):
    """Build the confirmation asked before the local vault is wiped."""

    async def confirm(file_count: int, folder_count: int) -> bool:
        if assume_yes:
            return True
        question = (
            f"Are you sure you want to clear the entire vault "
            f"({file_count} files, {folder_count} folders)? "
            "This action cannot be undone. [y/N] "
        )
        loop = asyncio.get_event_loop()
        try:
            answer = await loop.run_in_executor(None, input, question)
        except EOFError:
            # No terminal to ask: treat as declined
            print()
            return False
        return answer.strip().lower() in ("y", "yes")

    return confirm


def _build_engine(config: Config, assume_yes: bool = False) -> SyncEngine:
    engine = SyncEngine.from_config(
        config,
        confirm_clear=make_confirm_prompt(assume_yes),
        notify=console_notifier,
    )
    engine.load()
    return engine


async def cmd_login(args: argparse.Namespace) -> int:
    """Set the user identity and bind this device to its vault."""
    config = load_config(args.config)
    engine = _build_engine(config, assume_yes=args.yes)

    try:
        result = await engine.set_user_email(args.email)
    except ValidationError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1
    finally:
        await engine.close()

    if result is None:
        print(f"Already bound to vault {engine.store.state.vault_id}")
        return 0
    if not result.success:
        if result.error:
            print(f"Error: {result.error}", file=sys.stderr)
        return 1

    print("Email saved successfully!")
    return 0


async def cmd_run(args: argparse.Namespace) -> int:
    """Watch the vault and propagate changes until interrupted."""
    config = load_config(args.config)
    engine = _build_engine(config, assume_yes=args.yes)

    print(f"Starting vaultsync for {config.vault.root}")
    print(f"Remote: {config.remote.base_url}")

    try:
        state = engine.store.state
        email = config.sync.user_email or state.user_email
        if email and not state.is_bound:
            try:
                await engine.set_user_email(email)
            except ValidationError as e:
                print(f"Error: {e}", file=sys.stderr)
                return 1

        if not engine.store.state.is_bound:
            print("Not bound to a vault; changes will not be synced until login")

        if not config.sync.watch:
            return 0

        engine.start_watching()
        stop_event = asyncio.Event()
        try:
            await stop_event.wait()
        except asyncio.CancelledError:
            print("\nShutting down...")
    finally:
        await engine.close()

    return 0


async def cmd_status(args: argparse.Namespace) -> int:
    """Show the sync state of this device."""
    config = load_config(args.config)
    engine = _build_engine(config)
    status = engine.get_status()
    status["vault_path"] = str(config.vault.root)
    await engine.close()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print("vaultsync Status")
    print("================")
    print(f"Device: {status['device_id']}")
    print(f"Vault path: {status['vault_path']}")
    print(f"Remote: {status['remote_url']}")
    print(f"Email: {status['user_email'] or 'not set'}")
    print(f"Vault: {status['vault_id'] or 'not bound'}")
    print(f"Last sync: {status['last_sync'] or 'never'}")
    if status["degraded"]:
        print("Warning: state database unavailable, running on in-memory state")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="vaultsync",
        description="Keep a local notes vault in sync with a remote vault server",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: none, use defaults and environment)",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        choices=["warning", "info", "debug"],
        default=None,
        help="Set log level explicitly (overrides -v/--verbose)",
    )
    parser.add_argument(
        "--json-logs",
        action="store_true",
        help="Output logs as JSON for machine parsing",
    )

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # Login command
    login_parser = subparsers.add_parser("login", help="Set your email and bind this device to its vault")
    login_parser.add_argument("email", help="Account email for sync")
    login_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask before replacing the local vault with the remote one",
    )
    login_parser.set_defaults(func=cmd_login)

    # Run command
    run_parser = subparsers.add_parser("run", help="Watch the vault and sync changes")
    run_parser.add_argument(
        "-y", "--yes",
        action="store_true",
        help="Do not ask before replacing the local vault with the remote one",
    )
    run_parser.set_defaults(func=cmd_run)

    # Status command
    status_parser = subparsers.add_parser("status", help="Show sync state")
    status_parser.add_argument(
        "--json",
        action="store_true",
        help="Output status as JSON",
    )
    status_parser.set_defaults(func=cmd_status)

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_level, args.json_logs)

    if not args.command:
        parser.print_help()
        return 1

    try:
        return asyncio.run(args.func(args))
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    sys.exit(main())
