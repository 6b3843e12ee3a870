#!/usr/bin/env python3
"""
Administration commands for the index queue table.

Usage:
    index-queue create-tables                     # Create table and indexes
    index-queue stats --class-name Widget         # Counts for one record class
    index-queue errors --limit 20                 # Show failing entries
    index-queue reset                             # Make every entry ready again
    index-queue delete 12 13 14                   # Remove entries by id
"""

import argparse
import logging
import sys

from .config import Config, FailurePolicySettings
from .database import create_db_engine, create_session_factory, create_tables
from .entry_store import SQLAlchemyEntryStore
from .failure_policy import FailurePolicy

logger = logging.getLogger("index-queue-admin")


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="index-queue", description="Manage the index queue table")
    parser.add_argument(
        "--database-url",
        default=None,
        help=f"SQLAlchemy database URL (default: {Config.DATABASE_URL})",
    )
    parser.add_argument(
        "--class-name",
        dest="class_names",
        action="append",
        default=[],
        help="Restrict to a record class, may be repeated",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    _ = subparsers.add_parser("create-tables", help="Create the queue table and indexes")
    _ = subparsers.add_parser("stats", help="Show total, ready and error counts")

    errors_parser = subparsers.add_parser("errors", help="List entries whose last attempt failed")
    _ = errors_parser.add_argument("--limit", type=int, default=50)
    _ = errors_parser.add_argument("--offset", type=int, default=0)

    _ = subparsers.add_parser("reset", help="Clear errors, attempts and locks")

    delete_parser = subparsers.add_parser("delete", help="Delete entries by id")
    _ = delete_parser.add_argument("ids", type=int, nargs="+")

    return parser


def main(argv: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        argv: Command line arguments, defaults to sys.argv[1:]

    Returns:
        Process exit code
    """
    args = _build_parser().parse_args(argv)
    logging.basicConfig(level=Config.LOG_LEVEL)

    engine = create_db_engine(args.database_url)
    try:
        if args.command == "create-tables":
            create_tables(engine)
            print(f"Created queue table at {engine.url}")
            return 0

        store = SQLAlchemyEntryStore(
            create_session_factory(engine),
            policy=FailurePolicy(FailurePolicySettings.from_config()),
        )
        class_names: list[str] = args.class_names

        if args.command == "stats":
            print(f"Total entries: {store.total_count(class_names)}")
            print(f"Ready entries: {store.ready_count(class_names)}")
            print(f"Error entries: {store.error_count(class_names)}")

        elif args.command == "errors":
            entries = store.errors(class_names, limit=args.limit, offset=args.offset)
            if not entries:
                print("No failing entries")
            for entry in entries:
                first_line = entry.error.splitlines()[0] if entry.error else ""
                print(
                    f"{entry.id}\t{entry.record_class_name}\t{entry.record_id}\t"
                    f"attempts={entry.attempts}\t{first_line}"
                )

        elif args.command == "reset":
            print(f"Reset {store.reset_all(class_names)} entries")

        elif args.command == "delete":
            print(f"Deleted {store.delete_entries(args.ids)} entries")

        return 0

    except Exception as e:
        logger.exception(f"Command {args.command} failed: {e}")
        return 1
    finally:
        engine.dispose()


if __name__ == "__main__":
    sys.exit(main())
