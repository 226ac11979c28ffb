"""
Ingestion pipeline CLI.

Main entry point for feed ingestion and sector reclassification.
"""

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from ransom_cti.core import config
from ransom_cti.core.db import count_actors, count_incidents, get_connection, init_db
from ransom_cti.core.logging_utils import configure_logging
from ransom_cti.core.sectors import reclassify_incidents
from ransom_cti.core.sources import get_source_names
from ransom_cti.pipeline.ingest import run_sources

logger = logging.getLogger(__name__)


def parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Ingest ransomware leak-site claims into SQLite with cross-source corroboration.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run all feeds
  python -m ransom_cti.pipeline

  # Run specific feeds
  python -m ransom_cti.pipeline --sources ransomlook ransomwatch

  # Re-run sector classification over stored incidents only
  python -m ransom_cti.pipeline --reclassify --sources
        """,
    )
    parser.add_argument(
        "--sources",
        nargs="*",
        choices=get_source_names(),
        default=None,
        help="Feeds to ingest. Defaults to all; pass the flag with no names to skip ingestion.",
    )
    parser.add_argument(
        "--reclassify",
        action="store_true",
        help="Re-run sector classification over all stored incidents after ingestion.",
    )
    parser.add_argument(
        "--db-path",
        type=Path,
        default=config.DB_PATH,
        help=f"SQLite database path (default: {config.DB_PATH})",
    )
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write logs to this file",
    )
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = parse_args(argv)
    configure_logging(args.log_level, args.log_file)

    conn = get_connection(args.db_path)
    try:
        init_db(conn)

        sources = get_source_names() if args.sources is None else args.sources
        failed: List[str] = []
        if sources:
            results = run_sources(conn, sources)
            failed = [name for name, stats in results.items() if stats is None]

        if args.reclassify:
            counts = reclassify_incidents(conn)
            logger.info(
                f"Reclassification: {counts['updated']} updated, "
                f"{counts['unchanged']} unchanged of {counts['total']}"
            )

        logger.info(
            f"[done] {count_incidents(conn)} incidents, {count_actors(conn)} actors in store"
        )
        if failed:
            logger.error(f"Feeds failed this run: {', '.join(failed)}")
            return 1
        return 0
    finally:
        conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
