"""
CalCareers ingestion engine.

Walks the search results one pagination window at a time:

    INIT -> NAVIGATE_ROOT -> DISCOVER_WINDOW -> PROCESS_PAGE -> ADVANCE_WINDOW
         -> (DISCOVER_WINDOW | TERMINATED)

Every record goes through the store's existence check, so rerunning after a
crash only writes what the previous run did not.
"""

import logging
import time
from datetime import date, datetime, timedelta
from enum import Enum
from typing import Callable, List, Optional
from zoneinfo import ZoneInfo

from .config import SITE_TIMEZONE, SORT_NEWEST_FIRST, IngestionConfig
from .errors import StoreError, StoreFatal
from .fetcher import open_fetcher
from .models import (
    IngestionProgress,
    IngestionSummary,
    JobRecord,
    Outcome,
    PageResult,
    PaginationWindow,
    WindowResult,
)
from .pagination import advance_window, discover_window
from .parser import extract_job_records, has_job_listings, parse_total_jobs
from .store import JobStore, changed_fields

logger = logging.getLogger(__name__)


class EngineState(Enum):
    INIT = "init"
    NAVIGATE_ROOT = "navigate_root"
    DISCOVER_WINDOW = "discover_window"
    PROCESS_PAGE = "process_page"
    ADVANCE_WINDOW = "advance_window"
    TERMINATED = "terminated"


def parse_publish_date(value: str) -> Optional[date]:
    """Parse an M/D/YYYY (or ISO) publish date, None for anything else."""
    text = (value or "").strip()
    for fmt in ("%m/%d/%Y", "%Y-%m-%d"):
        try:
            return datetime.strptime(text, fmt).date()
        except ValueError:
            continue
    return None


def site_today() -> date:
    return datetime.now(ZoneInfo(SITE_TIMEZONE)).date()


class IngestionEngine:
    """Single-owner driver of one ingestion run."""

    def __init__(
        self,
        fetcher,
        store: JobStore,
        config: IngestionConfig,
        sleep: Callable[[float], None] = time.sleep,
        today: Optional[date] = None,
    ):
        self.fetcher = fetcher
        self.store = store
        self.config = config
        self.sleep = sleep
        self.progress = IngestionProgress()
        self.state = EngineState.INIT
        self.window = PaginationWindow()
        self.current_page: Optional[int] = None
        self.active_page: Optional[PageResult] = None
        self.termination_reason = ""

        self.cutoff: Optional[date] = None
        self.today: Optional[date] = None
        if config.max_age_days is not None:
            self.today = today or site_today()
            self.cutoff = self.today - timedelta(days=config.max_age_days)

    @property
    def recent_mode(self) -> bool:
        return self.cutoff is not None

    def run(self) -> IngestionSummary:
        """
        Run until no further window is reachable.

        Returns:
            IngestionSummary for the run

        Raises:
            StoreFatal: The store rejected us (auth or schema). The summary of
                the partial run is attached as exc.summary.
        """
        handlers = {
            EngineState.INIT: self._init,
            EngineState.NAVIGATE_ROOT: self._navigate_root,
            EngineState.DISCOVER_WINDOW: self._discover_window,
            EngineState.PROCESS_PAGE: self._process_window,
            EngineState.ADVANCE_WINDOW: self._advance_window,
        }

        try:
            while self.state is not EngineState.TERMINATED:
                self.state = handlers[self.state]()
            summary = self._summarize()
        except StoreFatal as e:
            self.state = EngineState.TERMINATED
            self.termination_reason = "store fatal error"
            if self.active_page is not None:
                self.active_page.aborted = True
                self.progress.add_page(self.active_page)
            logger.error(f"✗ Fatal store error, aborting run: {e}")
            summary = self._summarize(aborted=True, fatal_error=str(e))
            log_summary(summary)
            e.summary = summary
            raise

        log_summary(summary)
        return summary

    def _terminate(self, reason: str) -> EngineState:
        self.termination_reason = reason
        logger.info(f"Terminating: {reason}")
        return EngineState.TERMINATED

    # ------------------------------------------------------------------
    # States
    # ------------------------------------------------------------------

    def _init(self) -> EngineState:
        self.store.connect()
        if self.recent_mode:
            logger.info(f"Recent mode: keeping jobs published {self.cutoff} to {self.today}")
        return EngineState.NAVIGATE_ROOT

    def _navigate_root(self) -> EngineState:
        if not self.fetcher.navigate_to_search_root():
            return self._terminate("search page unreachable")

        if not self.fetcher.set_page_size(self.config.page_size):
            logger.warning("Could not change page size, continuing with site default")
        if self.recent_mode and not self.fetcher.set_sort_order(SORT_NEWEST_FIRST):
            logger.warning("Could not sort by publish date, continuing unsorted")

        self.progress.total_jobs_on_site = parse_total_jobs(self.fetcher.current_page_text())
        if self.progress.total_jobs_on_site:
            logger.info(f"Total jobs on site: {self.progress.total_jobs_on_site}")
        else:
            logger.warning("Could not read total job count, coverage will be unknown")

        self.current_page = 1
        return EngineState.DISCOVER_WINDOW

    def _discover_window(self) -> EngineState:
        if self.progress.windows_discovered >= self.config.max_windows:
            return self._terminate(f"reached window limit ({self.config.max_windows})")

        markup = self.fetcher.current_page_markup()
        window = discover_window(markup)
        self.progress.windows_discovered += 1
        if not window and self.progress.windows_discovered == 1 and has_job_listings(markup):
            # Results that fit on one page come without a pager
            window = PaginationWindow(pages=(1,), current=1)
        if not window:
            return self._terminate("no reachable pages in window")

        self.window = window
        if window.current is not None:
            self.current_page = window.current

        if not window.unvisited(self.progress.processed_pages):
            logger.info(f"Window {list(window.pages)} already processed")
            return EngineState.ADVANCE_WINDOW
        return EngineState.PROCESS_PAGE

    def _process_window(self) -> EngineState:
        window_result = WindowResult(
            window_number=len(self.progress.processed_windows) + 1,
            pages=self.window.pages,
        )
        logger.info("")
        logger.info("=" * 80)
        logger.info(f"WINDOW {window_result.window_number}: pages {list(self.window.pages)}")
        logger.info("=" * 80)

        stop = False
        for page_number in self.window.pages:
            if page_number in self.progress.processed_pages:
                continue

            if not self._go_to_page(page_number):
                logger.error(f"✗ Skipping page {page_number} after failed navigation")
                self.progress.page_errors += 1
                window_result.skipped_pages.append(page_number)
                continue

            records = extract_job_records(self.fetcher.current_page_markup(), self.config.search_url)
            result = PageResult(page_number=page_number, found=len(records))
            self.active_page = result
            self._process_records(result, records)
            self.active_page = None

            self.progress.processed_pages.add(page_number)
            self.progress.add_page(result)
            window_result.add(result)
            self._log_page(result)

            if self.recent_mode and result.all_old:
                stop = True
                break

        self.progress.processed_windows.append(window_result)
        logger.info(
            f"Window {window_result.window_number} complete: {window_result.total_jobs} jobs, "
            f"{window_result.new_jobs} new, {window_result.updated} updated, "
            f"{window_result.errors} errors"
        )

        if stop:
            return self._terminate(f"every job on the page is older than {self.config.max_age_days} days")
        return EngineState.ADVANCE_WINDOW

    def _advance_window(self) -> EngineState:
        if self.progress.windows_discovered >= self.config.max_windows:
            return self._terminate(f"reached window limit ({self.config.max_windows})")

        target = advance_window(
            self.fetcher,
            self.window,
            self.config.jump_candidates,
            attempted=self.progress.attempted_jumps,
            visited=self.progress.processed_pages,
        )
        # Whatever page the server clamped the jump to, the pager says which
        self.current_page = None
        if target is None:
            return self._terminate("no further window reachable")

        self.sleep(self.config.jump_delay)
        return EngineState.DISCOVER_WINDOW

    # ------------------------------------------------------------------
    # Pages and records
    # ------------------------------------------------------------------

    def _go_to_page(self, page_number: int) -> bool:
        if self.current_page == page_number:
            return True

        for attempt in (1, 2):
            self.sleep(self.config.page_delay)
            if not self.fetcher.invoke_page_postback(page_number):
                logger.warning(f"Navigation to page {page_number} failed (attempt {attempt}/2)")
            elif not has_job_listings(self.fetcher.current_page_markup()):
                logger.warning(f"Page {page_number} came back without listings (attempt {attempt}/2)")
            else:
                self.current_page = page_number
                return True

        self.current_page = None
        return False

    def _process_records(self, result: PageResult, records: List[JobRecord]) -> None:
        consecutive_failures = 0

        for record in records:
            self.progress.seen_job_controls.add(record.job_control)
            try:
                outcome = self._persist(record)
                consecutive_failures = 0
            except StoreError as e:
                outcome = Outcome.FAILED
                consecutive_failures += 1
                logger.error(f"✗ Error storing job {record.job_control}: {e}")

            result.record(outcome)

            if consecutive_failures >= self.config.max_consecutive_failures:
                logger.error(
                    f"✗ {consecutive_failures} consecutive store failures, "
                    f"abandoning rest of page {result.page_number}"
                )
                result.aborted = True
                break

            if outcome is not Outcome.SKIPPED_OLD:
                self.sleep(self.config.record_delay)

    def _is_recent(self, record: JobRecord) -> bool:
        published = parse_publish_date(record.publish_date)
        if published is None:
            return False
        return self.cutoff <= published <= self.today

    def _persist(self, record: JobRecord) -> Outcome:
        if self.recent_mode and not self._is_recent(record):
            return Outcome.SKIPPED_OLD

        if not self.config.update_changed:
            if self.store.exists(record.job_control):
                return Outcome.DUPLICATE
            return Outcome.INSERTED if self.store.insert(record) else Outcome.DUPLICATE

        existing = self.store.fetch(record.job_control)
        if existing is None:
            if self.store.insert(record):
                logger.debug(f"Inserted job {record.job_control}")
                return Outcome.INSERTED
            return Outcome.DUPLICATE

        changes = changed_fields(existing, record)
        if not changes:
            return Outcome.UNCHANGED
        self.store.update(existing["id"], record)
        logger.info(f"Updated job {record.job_control}: {', '.join(changes)}")
        return Outcome.UPDATED

    def _log_page(self, result: PageResult) -> None:
        coverage = self.progress.coverage()
        coverage_text = f"{coverage * 100:.1f}%" if coverage is not None else "unknown"
        line = (
            f"Page {result.page_number}: {result.found} found | {result.inserted} new | "
            f"{result.updated} updated | {result.unchanged} unchanged | "
            f"{result.duplicates} duplicate | {result.errors} errors"
        )
        if self.recent_mode:
            line += f" | {result.skipped_old} too old"
        logger.info(line)
        logger.info(
            f"  Running total: {self.progress.total_jobs_scraped} new jobs, coverage {coverage_text}"
        )

    def _summarize(self, aborted: bool = False, fatal_error: Optional[str] = None) -> IngestionSummary:
        extra = dict(
            termination_reason=self.termination_reason,
            aborted=aborted,
            fatal_error=fatal_error,
        )
        if not aborted:
            try:
                extra["store_count"] = self.store.count()
                extra["recent_jobs"] = self.store.recent(5)
            except StoreError as e:
                logger.warning(f"Could not read final store totals: {e}")
        return IngestionSummary.from_progress(self.progress, **extra)


def log_summary(summary: IngestionSummary) -> None:
    logger.info("")
    logger.info("=" * 80)
    logger.info("INGESTION ABORTED" if summary.aborted else "INGESTION COMPLETE")
    logger.info("=" * 80)
    logger.info(f"Total jobs on site: {summary.total_jobs_on_site or 'unknown'}")
    logger.info(f"New jobs inserted: {summary.total_scraped}")
    logger.info(f"Jobs updated: {summary.total_updated}")
    logger.info(f"Jobs unchanged: {summary.total_unchanged}")
    logger.info(f"Duplicates: {summary.total_duplicates}")
    if summary.total_skipped_old:
        logger.info(f"Skipped (too old): {summary.total_skipped_old}")
    logger.info(f"Pages processed: {summary.pages_processed}")
    logger.info(f"Windows processed: {summary.windows_processed}")
    logger.info(f"Coverage: {summary.coverage_label}")
    logger.info(f"Record errors: {summary.record_errors}")
    logger.info(f"Page errors: {summary.page_errors}")
    if summary.store_count is not None:
        logger.info(f"Jobs in store: {summary.store_count}")
    for job in summary.recent_jobs:
        logger.info(f"  {job.get('job_control')}: {job.get('working_title')} ({job.get('department')})")
    logger.info(f"Stopped because: {summary.termination_reason}")
    if summary.fatal_error:
        logger.error(f"Fatal error: {summary.fatal_error}")
    logger.info("=" * 80)


def run_ingestion(config: IngestionConfig, fetcher=None, **engine_kwargs) -> IngestionSummary:
    """
    Run one ingestion against config.store.

    Args:
        config: Run configuration; config.store must be set
        fetcher: Page fetcher to drive. A Chromium-backed one is launched when omitted.
        **engine_kwargs: Passed to IngestionEngine (sleep, today)

    Returns:
        IngestionSummary for the run

    Raises:
        ValueError: If config.store is not set
        StoreFatal: If the store failed fatally (summary attached)
    """
    if config.store is None:
        raise ValueError("IngestionConfig.store must be set before running an ingestion")

    if fetcher is None:
        with open_fetcher(
            headless=config.headless,
            search_url=config.search_url,
            timeout=config.timeout_ms,
            retry_policy=config.retry_policy,
        ) as browser_fetcher:
            return IngestionEngine(browser_fetcher, config.store, config, **engine_kwargs).run()

    try:
        return IngestionEngine(fetcher, config.store, config, **engine_kwargs).run()
    finally:
        fetcher.close()
