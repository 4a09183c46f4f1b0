"""
Main CLI entry point for BGG Catalog package.
"""

import argparse
import logging
from datetime import datetime
from pathlib import Path
from typing import List, Optional

from ..config import DATABASE_PATH, PipelineSettings
from ..error_handling import CatalogError
from ..logging_config import setup_logging
from ..models import ACCESSORIES, GAMES, BatchResult, ImportResult
from ..pipeline import CatalogImporter, PipelineContext

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Import and maintain BoardGameGeek catalog records")
    parser.add_argument("--db", type=Path, default=DATABASE_PATH, help="Path to the catalog database")
    parser.add_argument("--log-file", type=str, default=None, help="Custom log file name or absolute path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Log at DEBUG level")
    parser.add_argument("--no-wait", action="store_true",
                        help="Exit without waiting for background follow-ups to finish")

    commands = parser.add_subparsers(dest="command", required=True)

    game = commands.add_parser("import-game", help="Import games by BGG id")
    game.add_argument("ids", type=int, nargs="+", help="BGG ids")

    accessory = commands.add_parser("import-accessory", help="Import accessories by BGG id")
    accessory.add_argument("ids", type=int, nargs="+", help="BGG ids")

    publisher = commands.add_parser("import-publisher", help="Import a publisher from its family record")
    publisher.add_argument("id", type=int, help="BGG family id")
    publisher.add_argument("--name", type=str, default=None, help="Publisher name to match a stored record")

    refresh = commands.add_parser("refresh", help="Refresh stored records that are still incomplete")
    refresh.add_argument("ids", type=int, nargs="+", help="Document ids")
    refresh.add_argument("--collection", choices=[GAMES, ACCESSORIES], default=GAMES)

    pending = commands.add_parser("refresh-pending", help="Find and refresh incomplete records")
    pending.add_argument("--limit", type=int, default=10, help="Max records per collection")

    search = commands.add_parser("search", help="Search the catalog by name")
    search.add_argument("query", type=str, help="Search text")

    commands.add_parser("stats", help="Show database statistics")
    return parser


def _print_header(title: str) -> None:
    print("\n" + "=" * 60)
    print(title)
    print("=" * 60)


def _print_result(result: ImportResult) -> None:
    record = result.record or {}
    status = "✓ COMPLETE" if result.complete else "… PENDING"
    print(f"{status} | {result.collection} {record.get('id')} | bgg {record.get('bgg_id')} | {record.get('name')}")
    print(f"  └─ {result.message}")


def _print_batch(batch: BatchResult) -> None:
    for result in batch.results:
        _print_result(result)
    for error in batch.errors:
        print(f"✗ FAILED | {error.get('collection')} {error.get('id')}")
        print(f"  └─ Error: {error.get('error')}")
    print(f"\n{batch.message}")


def _default_log_file(command: str) -> str:
    ts = datetime.now().strftime("%Y%m%d_%H%M%S")
    return f"run_{ts}_{command}.log"


def run(args: argparse.Namespace, importer: CatalogImporter) -> int:
    """Execute one parsed command. Returns the process exit code."""
    failures = 0

    if args.command in ("import-game", "import-accessory"):
        _print_header("IMPORT RESULTS")
        action = importer.import_game if args.command == "import-game" else importer.import_accessory
        for bgg_id in args.ids:
            try:
                _print_result(action(bgg_id))
            except CatalogError as e:
                failures += 1
                logger.error(f"Import of {bgg_id} failed: {e}")
                print(f"✗ FAILED | bgg {bgg_id}")
                print(f"  └─ Error: {e}")

    elif args.command == "import-publisher":
        _print_header("IMPORT RESULTS")
        try:
            _print_result(importer.import_publisher(args.id, name=args.name))
        except CatalogError as e:
            failures += 1
            logger.error(f"Import of publisher {args.id} failed: {e}")
            print(f"✗ FAILED | bgg {args.id}")
            print(f"  └─ Error: {e}")

    elif args.command == "refresh":
        _print_header("REFRESH RESULTS")
        batch = importer.refresh_many(args.ids, args.collection)
        _print_batch(batch)
        failures += len(batch.errors)

    elif args.command == "refresh-pending":
        _print_header("PENDING RECORDS")
        batch = importer.refresh_pending(limit=args.limit)
        _print_batch(batch)
        failures += len(batch.errors)

    elif args.command == "search":
        _print_header(f"SEARCH RESULTS: {args.query}")
        hits = importer.search(args.query)
        if not hits:
            print("No matches.")
        for hit in hits:
            year = f" ({hit.year_published})" if hit.year_published else ""
            print(f"- {hit.name}{year} | bgg {hit.bgg_id} | {hit.item_type}")

    elif args.command == "stats":
        stats = importer.store.get_statistics()
        _print_header("CATALOG STATISTICS")
        for key, value in stats.items():
            print(f"{key.replace('_', ' ').capitalize()}: {value}")
        print("=" * 60)

    return 1 if failures else 0


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)
    setup_logging(args.log_file or _default_log_file(args.command),
                  level=logging.DEBUG if args.verbose else logging.INFO)

    context = PipelineContext.create(PipelineSettings(db_path=args.db))
    importer = CatalogImporter(context)
    try:
        code = run(args, importer)
        if not args.no_wait and context.follow_ups.submitted:
            print("\nWaiting for background follow-ups...")
            importer.wait_for_follow_ups()
            print(f"Follow-ups: {context.follow_ups.stats()}")
        return code
    except KeyboardInterrupt:
        print("\nProcess interrupted by user")
        return 130
    except Exception as e:
        logger.error(f"Unexpected error in main: {e}")
        raise
    finally:
        importer.close(wait=not args.no_wait)


if __name__ == "__main__":
    raise SystemExit(main())
