"""
Scheduler for continuous feed ingestion.

Implements:
- One job per feed, each on its own interval (hours)
- Daily sector reclassification pass
"""

import logging
import threading
import time
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional, Union

import schedule

from ransom_cti.core import config
from ransom_cti.core.db import get_connection, init_db
from ransom_cti.core.logging_utils import configure_logging
from ransom_cti.core.sectors import reclassify_incidents
from ransom_cti.core.sources import SOURCE_REGISTRY, get_adapter
from ransom_cti.pipeline.ingest import run_source

logger = logging.getLogger(__name__)


class IngestionScheduler:
    """
    Manages scheduled ingestion and reclassification jobs.

    Each feed is its own job, so a failing feed never delays or stops the
    others. Jobs open their own connection.
    """

    def __init__(
        self,
        intervals_hours: Optional[Dict[str, int]] = None,
        reclassify_time: str = config.RECLASSIFY_TIME,
        db_path: Union[Path, str] = config.DB_PATH,
        scheduler: Optional[schedule.Scheduler] = None,
    ):
        self.intervals_hours = dict(intervals_hours or config.SCHEDULE_INTERVALS_HOURS)
        self.reclassify_time = reclassify_time
        self.db_path = db_path
        self.scheduler = scheduler or schedule.Scheduler()

        self._running = False
        self._scheduler_thread: Optional[threading.Thread] = None
        self._last_runs: Dict[str, datetime] = {}

    def _run_source_job(self, source_name: str) -> None:
        logger.info(f"[SCHEDULER] Starting {source_name} ingestion...")
        conn = get_connection(self.db_path)
        try:
            init_db(conn)
            stats = run_source(conn, get_adapter(source_name))
            self._last_runs[source_name] = datetime.now()
            logger.info(f"[SCHEDULER] {source_name} complete. {stats.summary()}")
        except Exception as e:
            logger.error(f"[SCHEDULER] {source_name} ingestion failed: {e}", exc_info=True)
        finally:
            conn.close()

    def _run_reclassification(self) -> None:
        logger.info("[SCHEDULER] Starting sector reclassification...")
        conn = get_connection(self.db_path)
        try:
            init_db(conn)
            counts = reclassify_incidents(conn)
            self._last_runs["reclassify"] = datetime.now()
            logger.info(f"[SCHEDULER] Reclassification complete: {counts}")
        except Exception as e:
            logger.error(f"[SCHEDULER] Reclassification failed: {e}", exc_info=True)
        finally:
            conn.close()

    def register_jobs(self) -> None:
        for source_name, hours in self.intervals_hours.items():
            if get_adapter(source_name) is None:
                logger.warning(f"[SCHEDULER] Unknown source {source_name!r}, not scheduled")
                continue
            self.scheduler.every(hours).hours.do(self._run_source_job, source_name)
            logger.info(f"[SCHEDULER] {source_name} scheduled every {hours} hours")

        self.scheduler.every().day.at(self.reclassify_time).do(self._run_reclassification)
        logger.info(f"[SCHEDULER] Reclassification scheduled daily at {self.reclassify_time}")

    def run_all_once(self) -> None:
        for source_name in self.intervals_hours:
            if get_adapter(source_name) is not None:
                self._run_source_job(source_name)
        self._run_reclassification()

    def _scheduler_loop(self) -> None:
        logger.info("[SCHEDULER] Starting scheduler loop...")
        while self._running:
            self.scheduler.run_pending()
            time.sleep(60)

    def start(self, run_initial: bool = False) -> None:
        if self._running:
            logger.warning("[SCHEDULER] Scheduler already running")
            return

        self._running = True
        self.register_jobs()

        if run_initial:
            logger.info("[SCHEDULER] Running initial ingestion...")
            self.run_all_once()

        self._scheduler_thread = threading.Thread(target=self._scheduler_loop, daemon=True)
        self._scheduler_thread.start()
        logger.info("[SCHEDULER] Scheduler started")

    def stop(self) -> None:
        self._running = False
        if self._scheduler_thread:
            self._scheduler_thread.join(timeout=5)
        self.scheduler.clear()
        logger.info("[SCHEDULER] Scheduler stopped")

    def get_status(self) -> dict:
        return {
            "running": self._running,
            "intervals_hours": dict(self.intervals_hours),
            "reclassify_time": self.reclassify_time,
            "last_runs": {name: ts.isoformat() for name, ts in self._last_runs.items()},
            "next_jobs": [str(job) for job in self.scheduler.get_jobs()[:5]],
        }


def main() -> None:
    """CLI entry point for the scheduler."""
    import argparse

    parser = argparse.ArgumentParser(description="ransom-cti ingestion scheduler")
    parser.add_argument(
        "--mode",
        choices=["scheduler", "once"],
        default="scheduler",
        help="Run mode: scheduler (continuous) or once (every feed, then reclassify)",
    )
    parser.add_argument(
        "--run-initial",
        action="store_true",
        help="Run every feed immediately on scheduler start",
    )
    parser.add_argument(
        "--reclassify-time",
        default=config.RECLASSIFY_TIME,
        help=f"Daily reclassification time (default: {config.RECLASSIFY_TIME})",
    )
    parser.add_argument("--db-path", type=Path, default=config.DB_PATH)
    parser.add_argument(
        "--log-level",
        default=config.LOG_LEVEL,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level",
    )
    parser.add_argument("--log-file", type=Path, default=config.LOG_FILE)

    args = parser.parse_args()
    configure_logging(args.log_level, args.log_file)

    scheduler = IngestionScheduler(reclassify_time=args.reclassify_time, db_path=args.db_path)

    if args.mode == "once":
        scheduler.run_all_once()
        return

    scheduler.start(run_initial=args.run_initial)
    logger.info(f"Feeds: {', '.join(SOURCE_REGISTRY)}")

    try:
        while True:
            time.sleep(60)
            logger.debug(f"Scheduler status: {scheduler.get_status()}")
    except KeyboardInterrupt:
        logger.info("Shutting down scheduler...")
        scheduler.stop()


if __name__ == "__main__":
    main()
