"""
Pagination window discovery for the CalCareers results pager.

The pager is an ASP.NET WebForms control: it renders only a block of page
numbers at a time, each a __doPostBack link, and there is no link to the next
block. Pages beyond the block are reached by posting back to a page number far
ahead; the server clamps out-of-range targets to the nearest real page, so the
only reliable signal that a jump worked is that listings came back.
"""

import logging
import re
from typing import Iterable, Optional, Set

from bs4 import Tag

from .config import MAX_PAGE_NUMBER
from .models import PaginationWindow
from .parser import PageInspector, has_job_listings

logger = logging.getLogger(__name__)

PAGE_NUMBER_RE = re.compile(r"^\d+$")
POSTBACK_MARKERS = ("__doPostBack", "doPostBack", "PagerPage", "Page$")


def is_postback(element: Tag) -> bool:
    """True if the element triggers a server postback when clicked."""
    handler = (element.get("onclick") or "") + " " + (element.get("href") or "")
    return any(marker in handler for marker in POSTBACK_MARKERS)


def parse_page_number(element: Tag, max_page: int = MAX_PAGE_NUMBER) -> Optional[int]:
    text = element.get_text(strip=True)
    if not PAGE_NUMBER_RE.match(text):
        return None
    number = int(text)
    if number < 1 or number > max_page:
        return None
    return number


def _is_current_page_marker(element: Tag) -> bool:
    # The selected page is a plain <span> in a pager cell, beside postback links
    if element.name != "span" or element.parent is None or element.parent.name != "td":
        return False
    row = element.find_parent("tr")
    if row is None:
        return False
    return any(is_postback(a) for a in row.find_all("a"))


def discover_window(html: str, max_page: int = MAX_PAGE_NUMBER) -> PaginationWindow:
    """
    Find the page numbers currently reachable from the pager.

    Args:
        html: Current page markup
        max_page: Page numbers above this are rejected as junk

    Returns:
        PaginationWindow with sorted, unique page numbers (empty if none)
    """
    inspector = PageInspector(html)
    pages: Set[int] = set()
    current = None

    for element in inspector.all_interactive_elements():
        number = parse_page_number(element, max_page)
        if number is None:
            continue
        if element.name == "a" or is_postback(element):
            pages.add(number)
        elif _is_current_page_marker(element):
            pages.add(number)
            current = number

    window = PaginationWindow(pages=tuple(sorted(pages)), current=current)
    logger.info(f"Available pages in current window: {list(window.pages)}")
    return window


def advance_window(
    fetcher,
    window: PaginationWindow,
    candidates: Iterable[int],
    attempted: Optional[Set[int]] = None,
    visited: Optional[Set[int]] = None,
) -> Optional[int]:
    """
    Provoke the pager into showing a later block of pages.

    Candidates are tried in ascending order; the first one whose postback
    leaves listings on the page wins. A failed candidate is never retried.

    Args:
        fetcher: Page fetcher used to issue postbacks
        window: Window that has just been processed
        candidates: Jump targets to try
        attempted: Targets already tried this run (updated in place)
        visited: Pages already processed this run

    Returns:
        The page number jumped to, or None when every candidate failed
    """
    attempted = attempted if attempted is not None else set()
    visited = visited or set()

    for target in sorted(candidates):
        if target <= window.last or target in attempted or target in visited:
            continue
        attempted.add(target)

        logger.info(f"Attempting to jump to page {target}...")
        if not fetcher.invoke_page_postback(target):
            logger.info(f"  Postback to page {target} failed")
            continue

        if has_job_listings(fetcher.current_page_markup()):
            logger.info(f"✓ Jumped to page {target} - new window revealed")
            return target

        logger.info(f"  Page {target} returned no listings")

    logger.info("No more accessible windows found")
    return None
