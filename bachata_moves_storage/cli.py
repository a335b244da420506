"""
Command line maintenance for a library database.

Usage:
    bachata-moves --db ~/.bachata-moves/library.db migrate
    bachata-moves --db library.db export backup.json
    bachata-moves --db library.db import backup.json
    bachata-moves --db library.db tombstones
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from .config import StoreConfig
from .context import AppContext
from .exceptions import MovesStorageError
from .logging_utils import configure_structured_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="bachata-moves",
        description="Maintain a Bachata Moves library database",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Upgrade the schema and show row counts
    bachata-moves --db library.db migrate

    # Back up everything, then restore it elsewhere
    bachata-moves --db library.db export backup.json
    bachata-moves --db other.db import backup.json

The database path can also come from BACHATA_MOVES_DB_PATH or from the
storage section of a YAML file passed with --config.
        """,
    )
    parser.add_argument("--db", type=Path, help="Library database file")
    parser.add_argument("--config", type=Path, help="YAML settings file with a storage section")
    parser.add_argument(
        "--json-logs", action="store_true", help="Emit structured JSON logs on stdout"
    )
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging")

    commands = parser.add_subparsers(dest="command", required=True)
    export = commands.add_parser("export", help="Write a backup document")
    export.add_argument("file", type=Path)
    restore = commands.add_parser("import", help="Replace the library with a backup document")
    restore.add_argument("file", type=Path)
    commands.add_parser("tombstones", help="List remote ids deleted locally")
    commands.add_parser("migrate", help="Upgrade the schema and print row counts")
    return parser


def resolve_config(args: argparse.Namespace) -> StoreConfig:
    config = StoreConfig.from_yaml(args.config) if args.config else StoreConfig.from_env()
    if args.db:
        config = replace(config, db_path=args.db)
    return config


async def run(args: argparse.Namespace) -> int:
    config = resolve_config(args)
    if str(config.db_path) == ":memory:":
        print("error: no database given (use --db or BACHATA_MOVES_DB_PATH)", file=sys.stderr)
        return 2

    async with AppContext.create(config) as ctx:
        if args.command == "export":
            size = await ctx.backups.export_to_file(args.file)
            print(f"Exported {size} bytes to {args.file}")
        elif args.command == "import":
            summary = await ctx.backups.import_from_file(args.file)
            print(
                f"Imported {summary.lessons} lessons, {summary.figures} figures, "
                f"{summary.groupings} grouping entities, {summary.blobs} blobs"
            )
            for entry in summary.skipped:
                print(f"  skipped {entry}")
        elif args.command == "tombstones":
            tombstones = await ctx.store.get_tombstones()
            for tombstone in tombstones:
                print(f"{tombstone.deleted_at}  {tombstone.drive_id}")
            print(f"{len(tombstones)} tombstones")
        else:
            for table, count in (await ctx.store.count_rows()).items():
                print(f"{table:<20} {count}")
    return 0


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    if args.json_logs:
        configure_structured_logging(level)
    else:
        logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    try:
        return asyncio.run(run(args))
    except MovesStorageError as e:
        logger.error(e.message)
        return 1
    except OSError as e:
        logger.error(f"{e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
