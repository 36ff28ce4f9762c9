#!/usr/bin/env python3
"""
CLI entrypoint for the EPC parts-diagram scraper.

Usage examples:
  python run.py scrape
  python run.py --log-level DEBUG scrape --no-images --repair
  python run.py status
  python run.py retry
  python run.py query "SELECT part_number, description FROM parts LIMIT 20"
  python run.py repair --merge-only
  python run.py export --parquet
"""

import argparse
import logging
import os
import sys
from typing import Optional

# Ensure package imports work when running as a script
HERE = os.path.dirname(os.path.abspath(__file__))
if HERE not in sys.path:
    sys.path.insert(0, HERE)

from epc_scraper import config
from epc_scraper.exceptions import ScraperError
from epc_scraper.pipeline import ScrapingPipeline
from epc_scraper.repairs import merge_replacement_parts, repair_shared_parts
from epc_scraper.session import RateLimitedFetcher
from epc_scraper.store import DataStore

logger = logging.getLogger(__name__)


def _setup_logging(level: str, log_file: Optional[str] = None) -> None:
    """Configure logging for console (and optional file)."""
    numeric_level = getattr(logging, level.upper(), logging.INFO)

    # Console handler
    handlers = [logging.StreamHandler(sys.stdout)]

    # Optional file handler
    if log_file:
        # Ensure parent directory exists
        os.makedirs(os.path.dirname(os.path.abspath(log_file)), exist_ok=True)
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        handlers.append(file_handler)

    logging.basicConfig(
        level=numeric_level,
        format="%(asctime)s | %(levelname)-8s | %(name)s: %(message)s",
        handlers=handlers,
    )

    # Reduce noisy third-party loggers
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description=
        "EPC parts-diagram scraper (categories → diagrams → parts + images).")
    parser.add_argument(
        "--log-level",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        help="Logging level (DEBUG, INFO, WARNING, ERROR). Default: INFO.",
    )
    parser.add_argument(
        "--log-file",
        default=os.environ.get("LOG_FILE", ""),
        help="Optional path to write logs to a file as well.",
    )
    parser.add_argument(
        "--output-dir",
        default="",
        help="Base output directory (images/, csv/, parquet/, sqlite/) [default: data]",
    )

    sub = parser.add_subparsers(dest="command", required=True)

    scrape = sub.add_parser("scrape", help="Start a crawl, or resume pending URLs.")
    scrape.add_argument("--no-images", dest="images", action="store_false", default=True,
                        help="Skip diagram image downloads.")
    scrape.add_argument("--repair", action="store_true", default=False,
                        help="Run the shared-parts repair after the crawl.")

    sub.add_parser("status", help="Show crawl progress and store contents.")
    sub.add_parser("retry", help="Reset failed URLs to pending and resume the crawl.")
    sub.add_parser("migrate", help="Bring the database schema up to date.")

    query = sub.add_parser("query", help="Run a read-only SQL query against the store.")
    query.add_argument("sql", help="SQL statement")

    repair = sub.add_parser("repair", help="Run the repair passes on demand.")
    only = repair.add_mutually_exclusive_group()
    only.add_argument("--shared-only", action="store_true",
                      help="Only copy parts of shared detail pages across diagrams.")
    only.add_argument("--merge-only", action="store_true",
                      help="Only merge replacement-part rows.")

    export = sub.add_parser("export", help="Write the parts catalogue to CSV.")
    export.add_argument("--parquet", action="store_true", default=False,
                        help="In addition to CSV, also write a Parquet file.")

    return parser.parse_args(argv)


# ----------------------------- commands -----------------------------


def cmd_scrape(store: DataStore, args: argparse.Namespace) -> None:
    config.require_vehicle()
    pipeline = ScrapingPipeline(store=store,
                                download_images=args.images,
                                repair=args.repair)
    pipeline.run()


def cmd_status(store: DataStore, args: argparse.Namespace) -> None:
    stats = store.get_stats()
    print("\n=== Crawl ===")
    print(f"  URLs known     : {stats['total_urls']}")
    print(f"  Pending        : {stats['pending_count']}")
    print(f"  Completed      : {stats['completed_count']}")
    print(f"  Failed         : {stats['failed_count']}")
    print("\n=== Store ===")
    print(f"  Groups         : {stats['total_groups']}")
    print(f"  Subgroups      : {stats['total_subgroups']}")
    print(f"  Diagrams       : {stats['total_diagrams']}")
    print(f"  Parts          : {stats['total_parts']}")
    print(f"  Images         : {stats['images_downloaded']}")

    failed = store.failed_urls()
    if failed:
        print(f"\n=== Failed URLs (first 10 of {len(failed)}) ===")
        for url, error in failed[:10]:
            print(f"  {url}\n    {error}")


def cmd_retry(store: DataStore, args: argparse.Namespace) -> None:
    config.require_vehicle()
    count = store.reset_failed_urls()
    print(f"Reset {count} failed URLs to pending")
    if count:
        ScrapingPipeline(store=store).run()


def cmd_migrate(store: DataStore, args: argparse.Namespace) -> None:
    # DataStore() already migrated on open; a second pass reports anything left
    changes = store.run_migrations()
    store.rebuild_search_index()
    if changes:
        for change in changes:
            print(f"  {change}")
    else:
        print("Schema is up to date")


def cmd_query(store: DataStore, args: argparse.Namespace) -> None:
    df = store.execute_query(args.sql)
    if df.empty:
        print("(no rows)")
    else:
        print(df.to_string(index=False))
    print(f"\n{len(df)} row(s)")


def cmd_repair(store: DataStore, args: argparse.Namespace) -> None:
    if not args.shared_only:
        merged = merge_replacement_parts(store)
        print(f"Merged {merged} replacement rows")
    if not args.merge_only:
        config.require_vehicle()
        fetcher = RateLimitedFetcher()
        try:
            inserted = repair_shared_parts(store, fetcher)
        finally:
            fetcher.close()
        print(f"Inserted {inserted} shared part rows")


def cmd_export(store: DataStore, args: argparse.Namespace) -> None:
    parquet_path = config.PARQUET_OUTPUT if args.parquet else None
    rows = store.export_parts(config.CSV_OUTPUT, parquet_path)
    print(f"Exported {rows} parts to {config.CSV_OUTPUT}")
    if parquet_path:
        print(f"Exported {rows} parts to {parquet_path}")


COMMANDS = {
    "scrape": cmd_scrape,
    "status": cmd_status,
    "retry": cmd_retry,
    "migrate": cmd_migrate,
    "query": cmd_query,
    "repair": cmd_repair,
    "export": cmd_export,
}


def main(argv=None) -> None:
    args = parse_args(argv)

    # Apply runtime config overrides
    if args.output_dir:
        config.set_output_dir(args.output_dir)
    config.ensure_directories()

    _setup_logging(args.log_level, args.log_file or None)

    try:
        store = DataStore()
        COMMANDS[args.command](store, args)
    except KeyboardInterrupt:
        print("\nInterrupted by user.")
    except ScraperError as e:
        logger.error(str(e))
        sys.exit(1)
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
