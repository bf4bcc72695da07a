"""
California (CalCareers) Job Scraper

Walks every reachable page of the CalCareers search results with Playwright
and ingests the listings into a job store (local SQLite, Cloudflare D1 or
Supabase). Runs are idempotent: rerunning only inserts new listings and
updates the ones whose details changed.

Usage:
    python -m src.CA.ca_scraper --store d1
    python -m src.CA.ca_scraper --store sqlite --max-windows 1 --headed
    python -m src.CA.ca_scraper --store d1 --recent-days 7
"""

import argparse
import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import List, Optional

from src.CA import config
from src.CA.config import IngestionConfig
from src.CA.d1_store import D1JobStore
from src.CA.engine import run_ingestion
from src.CA.errors import StoreFatal
from src.CA.models import IngestionSummary
from src.CA.retry import RetryPolicy
from src.CA.store import JobStore, SQLiteJobStore
from src.CA.supabase_store import SupabaseJobStore

STORES = ["sqlite", "d1", "supabase"]


# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

def setup_logging(log_dir: Path = config.LOG_DIR) -> logging.Logger:
    """
    Configure logging to write to both console and rotating file.

    Handlers go on the src.CA package logger so every module's
    logging.getLogger(__name__) output lands in the same file.

    Returns:
        Logger instance configured for the scraper.
    """
    logger = logging.getLogger("src.CA")
    logger.setLevel(logging.INFO)
    logger.propagate = False

    # Prevent duplicate handlers if function is called multiple times
    if logger.handlers:
        return logger

    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "ca_scraper.log"

    formatter = logging.Formatter(
        "[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S"
    )

    console_handler = logging.StreamHandler()
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(formatter)
    logger.addHandler(console_handler)

    # Rotating file handler (max 10MB, keep 5 backups)
    file_handler = RotatingFileHandler(
        log_file,
        maxBytes=10 * 1024 * 1024,  # 10MB
        backupCount=5,
        encoding="utf-8"
    )
    file_handler.setLevel(logging.INFO)
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    return logger


logger = logging.getLogger("src.CA.ca_scraper")


# ============================================================================
# STORE SELECTION
# ============================================================================

def build_store(
    kind: str,
    sqlite_path: Optional[str] = None,
    retry_policy: Optional[RetryPolicy] = None,
) -> JobStore:
    """
    Create the job store selected on the command line.

    Args:
        kind: One of "sqlite", "d1", "supabase"
        sqlite_path: Database file for the sqlite store
        retry_policy: Retry policy shared with the fetcher

    Returns:
        JobStore instance (not yet connected)

    Raises:
        ValueError: If credentials for the store are not set, or kind is unknown
    """
    if kind == "sqlite":
        path = sqlite_path or os.getenv("CALCAREERS_SQLITE_PATH") or config.DEFAULT_SQLITE_PATH
        return SQLiteJobStore(path, retry_policy=retry_policy)
    if kind == "d1":
        return D1JobStore.from_env(retry_policy=retry_policy)
    if kind == "supabase":
        return SupabaseJobStore.from_env(retry_policy=retry_policy)
    raise ValueError(f"Unknown store: {kind} (expected one of {', '.join(STORES)})")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Scrape CalCareers job listings into a job store",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Full ingest into Cloudflare D1
  python -m src.CA.ca_scraper --store d1

  # Quick local check: one window, visible browser, local SQLite file
  python -m src.CA.ca_scraper --store sqlite --max-windows 1 --headed

  # Refresh listings published in the last 7 days
  python -m src.CA.ca_scraper --store d1 --recent-days 7
        """
    )
    parser.add_argument("--store", choices=STORES, default="d1",
                        help="Where to write jobs (default: d1)")
    parser.add_argument("--sqlite-path",
                        help="SQLite database file (default: data/CA/calcareers.db)")
    parser.add_argument("--max-windows", type=int,
                        help=f"Maximum pagination windows to discover (default: {config.MAX_WINDOWS})")
    parser.add_argument("--page-size", type=int,
                        help=f"Results per page (default: {config.PAGE_SIZE})")
    parser.add_argument("--recent-days", type=int,
                        help="Only keep jobs published within this many days")
    parser.add_argument("--insert-only", action="store_true",
                        help="Skip existing jobs instead of updating changed ones")
    parser.add_argument("--headless", dest="headless", action="store_true", default=None,
                        help="Run the browser headless")
    parser.add_argument("--headed", dest="headless", action="store_false",
                        help="Show the browser window")
    parser.add_argument("--remote-config", action="store_true",
                        help="Apply settings from the D1 scraper_config table")
    return parser


def main(argv: Optional[List[str]] = None, **overrides) -> IngestionSummary:
    """
    Main scraper function.

    Args:
        argv: Command-line arguments (defaults to sys.argv)
        **overrides: IngestionConfig fields that win over arguments, used by
            the batch runner (e.g. max_windows=1)

    Returns:
        IngestionSummary for the run
    """
    args = build_parser().parse_args(argv)
    setup_logging()

    retry_policy = RetryPolicy()
    store = overrides.pop("store", None) or build_store(args.store, args.sqlite_path, retry_policy)

    settings = dict(
        max_windows=args.max_windows,
        page_size=args.page_size,
        max_age_days=args.recent_days,
        headless=args.headless,
        update_changed=False if args.insert_only else None,
    )
    settings.update(overrides)
    run_config = IngestionConfig.from_env(retry_policy=retry_policy, store=store, **settings)

    if args.remote_config:
        if isinstance(store, D1JobStore):
            run_config = run_config.apply_remote_config(store.load_remote_config())
        else:
            logger.warning("--remote-config is only supported with the d1 store, ignoring")

    logger.info("=" * 80)
    logger.info("California CalCareers Job Scraper")
    logger.info("=" * 80)
    logger.info(f"Search URL: {run_config.search_url}")
    logger.info(f"Store: {store.describe()}")
    logger.info(f"Page size: {run_config.page_size}")
    logger.info(f"Max windows: {run_config.max_windows}")
    logger.info(f"Mode: {'recent (%d days)' % run_config.max_age_days if run_config.max_age_days else 'full'}")
    logger.info("")

    try:
        return run_ingestion(run_config)
    except StoreFatal as e:
        logger.error(f"✗ Scraper aborted: {e}")
        logger.error("Check the store credentials and that the table exists")
        sys.exit(1)
    finally:
        store.close()


if __name__ == "__main__":
    main()
