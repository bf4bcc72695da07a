"""
Error types for the CalCareers ingestion pipeline.

Only two of these ever escape a run: StoreFatal (misconfiguration that no retry
can fix) and whatever unexpected exception crashes the process. Everything else
is handled at the page or record where it happens.
"""

import re
from typing import Optional


class CalCareersError(Exception):
    """Base class for scraper errors."""


class TransientNetworkError(CalCareersError):
    """Navigation timeout or fetch failure; retried, then the page is skipped."""


class StoreError(CalCareersError):
    """A single store operation failed. Non-fatal to the batch."""


class TransientStoreError(StoreError):
    """Store failure worth retrying: timeouts, dropped connections, rate limits."""


class StoreFatal(CalCareersError):
    """Authentication or schema failure. Aborts the entire run."""

    def __init__(self, message: str, summary=None):
        super().__init__(message)
        self.summary = summary


FATAL_PATTERNS = [
    re.compile(r"no such (table|column)", re.IGNORECASE),
    re.compile(r"(column|relation|table) .* does not exist", re.IGNORECASE),
    re.compile(r"authenticat|unauthori[sz]ed|forbidden|invalid (api )?token|jwt", re.IGNORECASE),
]

TRANSIENT_PATTERNS = [
    re.compile(r"rate.?limit|too many requests|throttl", re.IGNORECASE),
    re.compile(r"timed? ?out|timeout|temporarily unavailable|connection (reset|refused|aborted)", re.IGNORECASE),
    re.compile(r"non-json|bad gateway|service unavailable|internal server error", re.IGNORECASE),
]


def classify_store_message(message: str, status_code: Optional[int] = None) -> CalCareersError:
    """
    Turn a store error message (and HTTP status, when known) into an exception.

    Args:
        message: Error text reported by the store
        status_code: HTTP status of the response, if any

    Returns:
        StoreFatal, TransientStoreError or StoreError instance (not raised)
    """
    if status_code in (401, 403):
        return StoreFatal(f"HTTP {status_code}: {message}")
    if status_code == 429 or (status_code is not None and status_code >= 500):
        return TransientStoreError(f"HTTP {status_code}: {message}")

    if any(p.search(message) for p in FATAL_PATTERNS):
        return StoreFatal(message)
    if any(p.search(message) for p in TRANSIENT_PATTERNS):
        return TransientStoreError(message)
    return StoreError(message)
