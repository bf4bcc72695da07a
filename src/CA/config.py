"""
Configuration settings for the California (CA) CalCareers scraper.
"""

import os
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, List, Optional

from dotenv import load_dotenv

from .retry import RetryPolicy

# Base URL for CalCareers job search
BASE_URL = "https://calcareers.ca.gov"
SEARCH_URL = f"{BASE_URL}/CalHRPublic/Search/JobSearchResults.aspx#empty"
JOB_POSTING_PATTERN = r"JobPosting\.aspx"
JOB_CONTROL_PATTERN = r"JobControlId=(\d+)"

# Paths
PROJECT_ROOT = Path(__file__).resolve().parent.parent.parent
DATA_DIR = PROJECT_ROOT / "data" / "CA"
LOG_DIR = PROJECT_ROOT / "logs" / "CA"
DEFAULT_SQLITE_PATH = DATA_DIR / "calcareers.db"

# Load environment variables from .env file in project root
load_dotenv(PROJECT_ROOT / ".env")

# Search page controls
PAGE_SIZE_SELECTOR = "#cphMainContent_ddlRowCount"
SORT_SELECTOR = "#cphMainContent_ddlSortBy"
SORT_NEWEST_FIRST = "PublishDate DESC"
PAGE_SIZE = 100  # largest value the "Show" dropdown offers

# Scraping settings
HEADLESS = os.getenv("GITHUB_ACTIONS") == "true"
TIMEOUT = 30000  # Page timeout in milliseconds (30 seconds)
SLOW_MO = 500 if HEADLESS else 1200
DELAY_BETWEEN_PAGES = 2  # Seconds to wait between page navigations
DELAY_BETWEEN_RECORDS = 0.05  # Seconds between store writes (rate limit courtesy)
DELAY_AFTER_JUMP = 3  # Seconds to wait after provoking a new window
SETTLE_DELAY = 3  # Seconds for the results grid to repopulate after a postback

# Pagination heuristics
MAX_WINDOWS = 20
JUMP_STEP = 50
MAX_JUMP_CANDIDATES = 7  # 50, 100, ..., 350
MAX_PAGE_NUMBER = 1000  # anything above this in the pager is junk

# Extraction and persistence
MAX_ANCESTOR_HOPS = 10
MAX_CONSECUTIVE_FAILURES = 3
DEFAULT_TABLE_NAME = "ccJobs"
RECENT_DAYS = 7
SITE_TIMEZONE = "America/Los_Angeles"


def jump_candidates(step: int = JUMP_STEP, count: int = MAX_JUMP_CANDIDATES) -> List[int]:
    """Ascending page numbers tried when provoking the pager into a new window."""
    return [step * i for i in range(1, count + 1)]


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    if value is None or not value.strip():
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


@dataclass
class IngestionConfig:
    """Everything one ingestion run needs, including the store it writes to."""

    search_url: str = SEARCH_URL
    page_size: int = PAGE_SIZE
    max_windows: int = MAX_WINDOWS
    jump_candidates: List[int] = field(default_factory=jump_candidates)
    page_delay: float = DELAY_BETWEEN_PAGES
    record_delay: float = DELAY_BETWEEN_RECORDS
    jump_delay: float = DELAY_AFTER_JUMP
    max_consecutive_failures: int = MAX_CONSECUTIVE_FAILURES
    update_changed: bool = True
    max_age_days: Optional[int] = None
    headless: bool = HEADLESS
    timeout_ms: int = TIMEOUT
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    store: Any = None

    @classmethod
    def from_env(cls, **overrides) -> "IngestionConfig":
        """
        Build a config from environment variables, then apply overrides.

        Args:
            **overrides: Field values that win over the environment

        Returns:
            IngestionConfig instance
        """
        config = cls(
            page_size=_env_int("CALCAREERS_PAGE_SIZE", PAGE_SIZE),
            max_windows=_env_int("CALCAREERS_MAX_WINDOWS", MAX_WINDOWS),
        )
        overrides = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **overrides)

    def apply_remote_config(self, remote: dict) -> "IngestionConfig":
        """Overlay values read from the scraper_config table."""
        updates = {}
        if remote.get("max_jobs_per_page"):
            updates["page_size"] = int(remote["max_jobs_per_page"])
        if remote.get("scraper_delay_ms"):
            updates["page_delay"] = int(remote["scraper_delay_ms"]) / 1000
        return replace(self, **updates)
