"""
Data models for California (CalCareers) job listings and ingestion progress.
"""

from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple

# Stored as-is for fields missing from a listing (never NULL)
NOT_SPECIFIED = "Not specified"


@dataclass
class JobRecord:
    """One listing from the search results grid, keyed by job_control."""

    job_control: str
    link_title: str = NOT_SPECIFIED
    working_title: str = NOT_SPECIFIED
    department: str = NOT_SPECIFIED
    location: str = NOT_SPECIFIED
    salary_range: str = NOT_SPECIFIED
    telework: str = NOT_SPECIFIED
    work_type_schedule: str = NOT_SPECIFIED
    publish_date: str = NOT_SPECIFIED
    filing_deadline: str = NOT_SPECIFIED
    job_posting_url: str = NOT_SPECIFIED

    def to_dict(self) -> dict:
        return asdict(self)


@dataclass(frozen=True)
class PaginationWindow:
    """Page numbers reachable by postback right now. Stale after any navigation."""

    pages: Tuple[int, ...] = ()
    current: Optional[int] = None

    def __bool__(self) -> bool:
        return bool(self.pages)

    def __len__(self) -> int:
        return len(self.pages)

    @property
    def last(self) -> int:
        return self.pages[-1] if self.pages else 0

    def unvisited(self, visited: Set[int]) -> List[int]:
        return [p for p in self.pages if p not in visited]


class Outcome(Enum):
    """What happened to a single record."""

    INSERTED = "inserted"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DUPLICATE = "duplicate"
    SKIPPED_OLD = "skipped_old"
    FAILED = "failed"


@dataclass
class PageResult:
    page_number: int
    found: int = 0
    inserted: int = 0
    updated: int = 0
    unchanged: int = 0
    duplicates: int = 0
    skipped_old: int = 0
    errors: int = 0
    aborted: bool = False

    def record(self, outcome: Outcome) -> None:
        if outcome is Outcome.INSERTED:
            self.inserted += 1
        elif outcome is Outcome.UPDATED:
            self.updated += 1
        elif outcome is Outcome.UNCHANGED:
            self.unchanged += 1
        elif outcome is Outcome.DUPLICATE:
            self.duplicates += 1
        elif outcome is Outcome.SKIPPED_OLD:
            self.skipped_old += 1
        else:
            self.errors += 1

    @property
    def all_old(self) -> bool:
        return self.found > 0 and self.skipped_old == self.found


@dataclass
class WindowResult:
    window_number: int
    pages: Tuple[int, ...]
    total_jobs: int = 0
    new_jobs: int = 0
    updated: int = 0
    unchanged: int = 0
    duplicates: int = 0
    errors: int = 0
    skipped_pages: List[int] = field(default_factory=list)

    def add(self, page: PageResult) -> None:
        self.total_jobs += page.found
        self.new_jobs += page.inserted
        self.updated += page.updated
        self.unchanged += page.unchanged
        self.duplicates += page.duplicates
        self.errors += page.errors


@dataclass
class IngestionProgress:
    """Counters for one run. Owned and mutated only by the ingestion engine."""

    total_jobs_on_site: int = 0
    total_jobs_scraped: int = 0
    total_updated: int = 0
    total_unchanged: int = 0
    total_duplicates: int = 0
    total_skipped_old: int = 0
    record_errors: int = 0
    page_errors: int = 0
    windows_discovered: int = 0
    processed_pages: Set[int] = field(default_factory=set)
    processed_windows: List[WindowResult] = field(default_factory=list)
    seen_job_controls: Set[str] = field(default_factory=set)
    attempted_jumps: Set[int] = field(default_factory=set)

    def add_page(self, page: PageResult) -> None:
        self.total_jobs_scraped += page.inserted
        self.total_updated += page.updated
        self.total_unchanged += page.unchanged
        self.total_duplicates += page.duplicates
        self.total_skipped_old += page.skipped_old
        self.record_errors += page.errors
        if page.aborted:
            self.page_errors += 1

    def coverage(self) -> Optional[float]:
        """Share of the site's listings seen this run, or None when unknown."""
        if self.total_jobs_on_site <= 0:
            return None
        return len(self.seen_job_controls) / self.total_jobs_on_site


@dataclass
class IngestionSummary:
    """Final report of a run, produced whether it finished or was aborted."""

    total_jobs_on_site: int
    total_scraped: int
    total_updated: int
    total_unchanged: int
    total_duplicates: int
    total_skipped_old: int
    pages_processed: int
    windows_processed: int
    coverage: Optional[float]
    record_errors: int
    page_errors: int
    processed_pages: List[int] = field(default_factory=list)
    windows: List[WindowResult] = field(default_factory=list)
    store_count: Optional[int] = None
    recent_jobs: List[Dict] = field(default_factory=list)
    termination_reason: str = ""
    aborted: bool = False
    fatal_error: Optional[str] = None

    @property
    def coverage_label(self) -> str:
        if self.coverage is None:
            return "unknown"
        return f"{self.coverage * 100:.2f}%"

    @classmethod
    def from_progress(cls, progress: IngestionProgress, **extra) -> "IngestionSummary":
        return cls(
            total_jobs_on_site=progress.total_jobs_on_site,
            total_scraped=progress.total_jobs_scraped,
            total_updated=progress.total_updated,
            total_unchanged=progress.total_unchanged,
            total_duplicates=progress.total_duplicates,
            total_skipped_old=progress.total_skipped_old,
            pages_processed=len(progress.processed_pages),
            windows_processed=len(progress.processed_windows),
            coverage=progress.coverage(),
            record_errors=progress.record_errors,
            page_errors=progress.page_errors,
            processed_pages=sorted(progress.processed_pages),
            windows=list(progress.processed_windows),
            **extra,
        )
