"""CLI entry point for habitsync."""

import argparse
import asyncio
import inspect
import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from .config import Config, load_config
from .state import LocalState
from .storage import SQLiteKeyValueStore
from .sync import HttpRemoteStore, SyncEngine


# Libraries that log every request at INFO.
_NOISY_LOGGERS = ("httpx", "httpcore", "uvicorn.access")


class JSONFormatter(logging.Formatter):
    """One JSON object per line, for log shippers."""

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "component": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, default=str)


def setup_logging(verbose: bool = False, log_level: str | None = None, json_output: bool = False) -> None:
    """Configure logging.

    Args:
        verbose: Enable debug logging (ignored if log_level is set).
        log_level: Explicit log level (warning, info, debug).
        json_output: Output logs as JSON lines for machine parsing.
    """
    if log_level:
        level = getattr(logging, log_level.upper(), logging.INFO)
    else:
        level = logging.DEBUG if verbose else logging.INFO

    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(JSONFormatter())
    else:
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
                datefmt="%Y-%m-%d %H:%M:%S",
            )
        )

    logging.basicConfig(level=level, handlers=[handler])

    # Per-request logs from the HTTP stack only show up when debugging sync.
    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(level if level <= logging.DEBUG else logging.WARNING)


def build_engine(config: Config, kv: SQLiteKeyValueStore) -> SyncEngine:
    """Create a sync engine against the configured HTTP store."""
    remote = HttpRemoteStore(
        config.remote.url,
        max_retries=config.remote.retry_max_attempts,
        timeout=config.remote.timeout_seconds,
        backoff_seconds=config.remote.retry_backoff_seconds,
    )
    return SyncEngine(
        kv,
        remote,
        snapshot_interval_ms=config.sync.snapshot_interval_ms,
        snapshot_enabled=config.sync.snapshot_enabled,
    )


async def cmd_serve(args: argparse.Namespace) -> int:
    """Run the remote event store server."""
    config = load_config(args.config)

    try:
        import uvicorn

        from .server import create_app
    except ImportError as e:
        print(f"Server dependencies not installed: {e}", file=sys.stderr)
        print("Install with: pip install habitsync[server]", file=sys.stderr)
        return 1

    host = args.host or config.server.host
    port = args.port or config.server.port

    print("Starting habitsync store")
    print(f"URL: http://{host}:{port}")

    verbose = getattr(args, "verbose", False)
    server = uvicorn.Server(
        uvicorn.Config(
            create_app(),
            host=host,
            port=port,
            log_level="info" if verbose else "warning",
        )
    )
    await server.serve()
    return 0


async def cmd_sync(args: argparse.Namespace) -> int:
    """Sync local state with the remote store."""
    config = load_config(args.config)

    account_id = args.account or config.device.account_id
    if not account_id:
        print("No account configured (use --account or device.account_id)", file=sys.stderr)
        return 1

    if not config.sync.enabled:
        print("Sync is disabled in configuration")
        return 0

    kv = SQLiteKeyValueStore(config.storage.db_path)
    kv.connect()
    engine = build_engine(config, kv)
    state = LocalState(kv, engine.event_log)

    try:
        if args.loop:
            await engine.sync_loop(
                account_id,
                state,
                interval_seconds=config.sync.sync_interval_minutes * 60,
            )
            return 0

        result = await engine.full_sync(account_id, state.habits, state.notes)
        if result.merge:
            state.apply_merge(result.merge)

        print(
            f"Sync {result.status.value}: pushed={result.events_pushed} "
            f"pulled={result.events_pulled} snapshot={result.snapshot_taken}"
        )
        if result.error:
            print(f"Error: {result.error}", file=sys.stderr)
            return 1
        return 0
    except KeyboardInterrupt:
        print("\nShutting down...")
        return 0
    finally:
        await engine.remote.close()
        kv.close()


def cmd_status(args: argparse.Namespace) -> int:
    """Show local sync status."""
    config = load_config(args.config)

    kv = SQLiteKeyValueStore(config.storage.db_path)
    kv.connect()
    try:
        engine = build_engine(config, kv)
        state = LocalState(kv, engine.event_log)
        status = engine.get_sync_status()
        status["account_id"] = config.device.account_id or None
        status["remote_url"] = config.remote.url
        status["habits"] = len(state.habits)
        status["notes"] = len(state.notes)
    finally:
        kv.close()

    if args.json:
        print(json.dumps(status, indent=2))
        return 0

    print(f"Device: {status['device_id']}")
    print(f"Account: {status['account_id'] or '(not set)'}")
    print(f"Remote: {status['remote_url']}")
    print(f"Pending events: {status['pending_events']}")
    print(f"Checkpoint: {status['checkpoint']}")
    print(f"Last snapshot: {status['last_snapshot'] or 'never'}")
    print(f"Habits: {status['habits']}  Notes: {status['notes']}")
    return 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="habitsync",
        description="Offline-first event sync for habits and notes",
    )
    parser.add_argument(
        "-c", "--config",
        type=Path,
        default=None,
        help="Path to config file (default: built-in defaults)",
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

    serve_parser = subparsers.add_parser("serve", help="Run the remote event store server")
    serve_parser.add_argument("-p", "--port", type=int, default=None, help="Port to listen on")
    serve_parser.add_argument("--host", type=str, default=None, help="Host to bind to")
    serve_parser.set_defaults(func=cmd_serve)

    sync_parser = subparsers.add_parser("sync", help="Push, pull and compact once")
    sync_parser.add_argument("-a", "--account", type=str, default=None, help="Account id")
    sync_parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep syncing at the configured interval",
    )
    sync_parser.set_defaults(func=cmd_sync)

    status_parser = subparsers.add_parser("status", help="Show local sync status")
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

    func = args.func
    if inspect.iscoroutinefunction(func):
        return asyncio.run(func(args))
    return func(args)


if __name__ == "__main__":
    sys.exit(main())
