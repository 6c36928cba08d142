"""CLI: turn-capture serve, compact, status, config validate."""

from __future__ import annotations

import argparse
import json
import logging
import sys

from ..config import load_config, validate_config
from ..core.compactor import CompactionJob, resolve_day
from ..core.writer import compacted_key, day_prefix
from ..storage import create_store
from ..types import InvalidDayError


def _setup_logging(args, config) -> str:
    level = (args.log_level or config.log_level or "INFO").upper()
    logging.basicConfig(
        level=level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    return level


def _load(args):
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)
    return config, _setup_logging(args, config)


def _store(config):
    try:
        return create_store(config.storage)
    except ImportError:
        print("Run: pip install turn-capture[s3]", file=sys.stderr)
        sys.exit(1)


def cmd_serve(args):
    """Run the ingestion/compaction HTTP server."""
    try:
        import uvicorn
        from ..server import create_app
    except ImportError:
        print("Run: pip install turn-capture", file=sys.stderr)
        sys.exit(1)

    config, level = _load(args)
    host = args.host or config.server.host
    port = args.port or config.server.port

    app = create_app(config)
    print(f"turn-capture on {host}:{port} (storage: {config.storage.backend})")
    uvicorn.run(
        app, host=host, port=port, log_level=level.lower(),
        timeout_graceful_shutdown=2,
    )


def cmd_compact(args):
    """Merge one day's per-event logs into logs/{day}.ndjson."""
    config, _ = _load(args)
    store = _store(config)
    job = CompactionJob(store, config.compaction)
    try:
        result = job.run(day=args.day, force=args.force)
    except InvalidDayError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)
    print(json.dumps(result.to_dict(), indent=2))


def cmd_status(args):
    """Show per-event object count and compaction state for a day."""
    config, _ = _load(args)
    store = _store(config)
    try:
        day = resolve_day(args.day)
    except InvalidDayError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)

    events = [b for b in store.list(day_prefix(day)) if b.key.endswith(".json")]
    turns = sum(1 for b in events if b.key.endswith(".turn.json"))
    out_key = compacted_key(day)
    compacted = store.exists(out_key)

    print(f"Day:        {day}")
    print(f"Storage:    {config.storage.backend}")
    print(f"Events:     {len(events)} ({turns} turns, {len(events) - turns} legacy)")
    print(f"Compacted:  {'yes' if compacted else 'no'} ({out_key})")


def cmd_config_validate(args):
    """Validate config file."""
    try:
        config = load_config(args.config)
    except Exception as e:
        print(f"Error loading config: {e}", file=sys.stderr)
        sys.exit(1)

    errors = validate_config(config)
    if errors:
        print("Config validation errors:")
        for err in errors:
            print(f"  - {err}")
        sys.exit(1)
    else:
        print("Config is valid.")
        print(f"  Storage: {config.storage.backend}")
        print(f"  Bearer auth: {'set' if config.auth.cron_secret else 'unset'}")
        print(f"  Admin key: {'set' if config.auth.admin_key else 'unset'}")
        print(f"  Compaction batch: {config.compaction.batch_size} (workers={config.compaction.max_workers})")


def main(argv: list[str] | None = None):
    parser = argparse.ArgumentParser(
        prog="turn-capture",
        description="Chat turn logging: ingestion server and daily compaction",
    )
    parser.add_argument("--config", "-c", help="Path to config file")
    parser.add_argument("--log-level", help="Override log level (DEBUG, INFO, ...)")

    subparsers = parser.add_subparsers(dest="command")

    # serve
    serve_parser = subparsers.add_parser("serve", help="Run the ingestion HTTP server")
    serve_parser.add_argument("--host", help="Bind host (default from config)")
    serve_parser.add_argument("--port", "-p", type=int, help="Bind port (default from config)")

    # compact
    compact_parser = subparsers.add_parser("compact", help="Compact one day of logs")
    compact_parser.add_argument("--day", help="Day to compact, YYYY-MM-DD (default: yesterday UTC)")
    compact_parser.add_argument("--force", action="store_true", help="Re-compact even if output exists")

    # status
    status_parser = subparsers.add_parser("status", help="Show log counts for a day")
    status_parser.add_argument("--day", help="Day, YYYY-MM-DD (default: yesterday UTC)")

    # config
    config_parser = subparsers.add_parser("config", help="Config operations")
    config_sub = config_parser.add_subparsers(dest="config_command")
    config_sub.add_parser("validate", help="Validate config file")

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    if args.command == "serve":
        cmd_serve(args)
    elif args.command == "compact":
        cmd_compact(args)
    elif args.command == "status":
        cmd_status(args)
    elif args.command == "config":
        if args.config_command == "validate":
            cmd_config_validate(args)
        else:
            print("Usage: turn-capture config validate")
            sys.exit(1)


if __name__ == "__main__":
    main()
