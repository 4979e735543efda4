#!/usr/bin/env python3
"""
CLI for watching a directory tree and querying recorded events.

Usage:
    python -m filewatch watch /path/to/folder --ext .txt .md
    python -m filewatch query --ext .txt --kind created --name report
    python -m filewatch clear
"""

import argparse
import logging
import signal
import sys
import time
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .config import WatcherConfig, normalize_extensions
from .engine import WatchEngine
from .exceptions import WatcherError
from .models import EventKind, EventRecord
from .query import QueryFacade
from .sinks import CallbackSink, StoreSink
from .store import EventStore


logger = logging.getLogger("filewatch.cli")


def setup_logging(verbose: bool = False) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


class GracefulShutdown:
    """Handle graceful shutdown on SIGINT/SIGTERM."""

    def __init__(self):
        self.should_exit = False
        signal.signal(signal.SIGINT, self._handler)
        signal.signal(signal.SIGTERM, self._handler)

    def _handler(self, signum, frame):
        logger.info("Received shutdown signal, stopping...")
        self.should_exit = True


def format_record(record: EventRecord) -> str:
    return f"{record.formatted_timestamp}  {record.kind.value:<13} {record.path}"


def cmd_watch(args) -> int:
    """Watch a directory tree and record events until interrupted."""
    config = WatcherConfig.from_env(
        db_path=Path(args.db).resolve() if args.db else None,
        extensions=args.ext or None,
    )
    config.db_path.parent.mkdir(parents=True, exist_ok=True)

    store = EventStore(config.db_path)
    store.connect()

    store_sink = StoreSink(store, config)
    console_sink = CallbackSink(lambda record: print(format_record(record), flush=True))
    engine = WatchEngine(config, sinks=[store_sink, console_sink])

    shutdown = GracefulShutdown()

    with store_sink:
        try:
            engine.start(args.root)
        except WatcherError as e:
            logger.error(f"Cannot start watching: {e}")
            store.close()
            return 1

        logger.info(f"Database: {config.db_path}")
        logger.info("Press Ctrl+C to stop")

        try:
            while not shutdown.should_exit:
                time.sleep(0.5)
        finally:
            engine.stop()

    stats = store_sink.stats()
    logger.info(
        f"Recorded {stats['saved']} events "
        f"({stats['dropped']} dropped, {stats['failed']} failed)"
    )
    store.close()
    return 0


def cmd_query(args) -> int:
    """Print recorded events matching the given filters."""
    db_path = Path(args.db).resolve()
    if not db_path.exists():
        logger.error(f"Event database not found: {db_path}")
        return 1

    extension = next(iter(normalize_extensions([args.ext or ""])), None)

    with EventStore(db_path) as store:
        facade = QueryFacade(store)
        try:
            records = facade.search(
                extension=extension,
                kind=args.kind,
                name_contains=args.name,
                directory=args.dir,
                since=args.since,
                until=args.until,
            )
        except WatcherError as e:
            logger.error(f"Query failed: {e}")
            return 1

    if not records:
        print("No matching events.")
        return 0

    for record in records:
        print(format_record(record))
    print(f"\n{len(records)} event(s)")
    return 0


def cmd_clear(args) -> int:
    """Delete every recorded event."""
    db_path = Path(args.db).resolve()
    try:
        with EventStore(db_path) as store:
            removed = store.clear()
    except WatcherError as e:
        logger.error(f"Cannot clear events: {e}")
        return 1

    print(f"Removed {removed} event(s).")
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="filewatch",
        description="Record filesystem changes under a directory and query them later",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Record every change under ./documents
  python -m filewatch watch ./documents

  # Record only text and markdown files
  python -m filewatch watch ./documents --ext .txt .md

  # Show deletions of files whose name contains "report"
  python -m filewatch query --kind deleted --name report

  # Show events within a time window
  python -m filewatch query --since "2025-06-01 00:00:00" --until "2025-06-02 00:00:00"
        """,
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", required=True)

    kinds = [kind.name.lower() for kind in EventKind]

    watch_parser = subparsers.add_parser("watch", help="Watch a directory tree")
    watch_parser.add_argument("root", help="Root directory to watch")
    watch_parser.add_argument("--ext", nargs="+", help="Extensions to record (default: all)")
    watch_parser.add_argument("--db", default=None, help="Event database path (default: file_events.db)")
    watch_parser.set_defaults(func=cmd_watch)

    query_parser = subparsers.add_parser("query", help="Query recorded events")
    query_parser.add_argument("--ext", default=None, help="Exact extension, e.g. .txt (leading dot optional)")
    query_parser.add_argument("--kind", choices=kinds, default=None, help="Event kind")
    query_parser.add_argument("--name", default=None, help="Case-insensitive file name substring")
    query_parser.add_argument("--dir", default=None, help="Path prefix")
    query_parser.add_argument("--since", default=None, help="Earliest timestamp (YYYY-MM-DD HH:MM:SS)")
    query_parser.add_argument("--until", default=None, help="Latest timestamp (YYYY-MM-DD HH:MM:SS)")
    query_parser.add_argument("--db", default="file_events.db", help="Event database path")
    query_parser.set_defaults(func=cmd_query)

    clear_parser = subparsers.add_parser("clear", help="Delete all recorded events")
    clear_parser.add_argument("--db", default="file_events.db", help="Event database path")
    clear_parser.set_defaults(func=cmd_clear)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    load_dotenv()

    parser = build_parser()
    args = parser.parse_args(argv)

    setup_logging(args.verbose)

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
