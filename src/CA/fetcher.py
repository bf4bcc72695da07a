"""
Playwright page driver for the CalCareers search results page.

Every method reports failure as a False return instead of raising: slow
responses from the site are routine and the caller decides whether to retry the
same page or move on.
"""

import logging
import re
import time
from contextlib import contextmanager
from typing import Iterator, Optional

from playwright.sync_api import (
    Browser,
    BrowserContext,
    Error as PlaywrightError,
    Page,
    TimeoutError as PWTimeout,
    sync_playwright,
)

from .config import (
    HEADLESS,
    PAGE_SIZE_SELECTOR,
    SEARCH_URL,
    SETTLE_DELAY,
    SLOW_MO,
    SORT_SELECTOR,
    TIMEOUT,
)
from .errors import TransientNetworkError
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

USER_AGENT = 'Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36'

# Used when no pager link on the page names the grid
DEFAULT_POSTBACK_TARGET = "ctl00$cphMainContent$gvSearchResults"

POSTBACK_TARGET_RE = re.compile(r"""__doPostBack\(\s*['"]([^'"]+)['"]\s*,\s*['"]Page\$""")

POSTBACK_SCRIPT = """
([target, argument]) => {
    if (typeof window.__doPostBack !== 'function') {
        return false;
    }
    window.__doPostBack(target, argument);
    return true;
}
"""


def postback_target(html: str) -> str:
    """Event target of the results grid, read from its own pager links."""
    match = POSTBACK_TARGET_RE.search(html or "")
    return match.group(1) if match else DEFAULT_POSTBACK_TARGET


class PlaywrightPageFetcher:
    """Drives one browser tab through the paginated search results."""

    def __init__(
        self,
        page: Page,
        search_url: str = SEARCH_URL,
        timeout: int = TIMEOUT,
        settle_delay: float = SETTLE_DELAY,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        self.page = page
        self.search_url = search_url
        self.timeout = timeout
        self.settle_delay = settle_delay
        self.retry_policy = retry_policy or RetryPolicy()
        self._closers = []

    def navigate_to_search_root(self) -> bool:
        """
        Load the search results page.

        Returns:
            True if the page loaded, False after the retry policy gave up
        """
        def _goto():
            try:
                self.page.goto(self.search_url, wait_until="networkidle", timeout=self.timeout)
            except (PWTimeout, PlaywrightError) as e:
                raise TransientNetworkError(str(e)) from e

        logger.info(f"Navigating to {self.search_url}")
        try:
            self.retry_policy.call(_goto)
        except TransientNetworkError as e:
            logger.error(f"Could not load search page: {e}")
            return False
        self.wait_for_stable()
        return True

    def _select(self, selector: str, value: str) -> bool:
        try:
            if self.page.locator(selector).count() == 0:
                logger.warning(f"Dropdown {selector} not found")
                return False
            self.page.select_option(selector, value)
            self.wait_for_stable()
            return True
        except (PWTimeout, PlaywrightError) as e:
            logger.warning(f"Could not set {selector} to {value}: {e}")
            return False

    def set_page_size(self, size: int) -> bool:
        logger.info(f"Setting results per page to {size}")
        return self._select(PAGE_SIZE_SELECTOR, str(size))

    def set_sort_order(self, value: str) -> bool:
        logger.info(f"Setting sort order to {value}")
        return self._select(SORT_SELECTOR, value)

    def current_page_text(self) -> str:
        try:
            return self.page.inner_text("body", timeout=self.timeout)
        except (PWTimeout, PlaywrightError) as e:
            logger.warning(f"Could not read page text: {e}")
            return ""

    def current_page_markup(self) -> str:
        try:
            return self.page.content()
        except PlaywrightError as e:
            logger.warning(f"Could not read page markup: {e}")
            return ""

    def invoke_page_postback(self, page_number: int) -> bool:
        """
        Post back to a page of results.

        Clicks the pager link when one is visible, otherwise calls __doPostBack
        directly (needed for jump targets beyond the rendered block) on the
        control the rendered pager links post back to.

        Returns:
            True if the postback was issued and the page settled. Whether the
            page that came back has listings is for the caller to check.
        """
        try:
            link = self.page.locator(
                f'a[href*="doPostBack"]:text-is("{page_number}"), '
                f'a[onclick*="doPostBack"]:text-is("{page_number}")'
            ).first
            if link.count() > 0:
                logger.info(f"Clicking pagination link for page {page_number}")
                link.scroll_into_view_if_needed()
                link.click()
            else:
                target = postback_target(self.current_page_markup())
                issued = self.page.evaluate(POSTBACK_SCRIPT, [target, f"Page${page_number}"])
                if not issued:
                    logger.warning(f"No postback handler available for page {page_number}")
                    return False
            self.wait_for_stable()
            return True
        except (PWTimeout, PlaywrightError) as e:
            logger.error(f"Error navigating to page {page_number}: {e}")
            return False

    def wait_for_stable(self) -> None:
        try:
            self.page.wait_for_load_state("networkidle", timeout=self.timeout)
        except PWTimeout:
            logger.warning("Timed out waiting for network idle, continuing anyway")
        time.sleep(self.settle_delay)

    def close(self) -> None:
        for close in reversed(self._closers):
            try:
                close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
        self._closers = []


@contextmanager
def open_fetcher(
    headless: bool = HEADLESS,
    search_url: str = SEARCH_URL,
    timeout: int = TIMEOUT,
    retry_policy: Optional[RetryPolicy] = None,
) -> Iterator[PlaywrightPageFetcher]:
    """
    Launch Chromium and yield a fetcher bound to a fresh tab.

    Headless in GitHub Actions, visible (and slower) locally.
    """
    with sync_playwright() as p:
        logger.info(f"Launching Chromium browser (headless={headless})")
        browser: Browser = p.chromium.launch(
            headless=headless,
            slow_mo=SLOW_MO,
            args=['--no-sandbox', '--disable-dev-shm-usage'],
        )
        context: BrowserContext = browser.new_context(
            user_agent=USER_AGENT,
            viewport={'width': 1920, 'height': 1080},
            locale='en-US',
            timezone_id='America/Los_Angeles',
        )
        page: Page = context.new_page()
        fetcher = PlaywrightPageFetcher(page, search_url=search_url, timeout=timeout, retry_policy=retry_policy)
        fetcher._closers = [browser.close, context.close]
        try:
            yield fetcher
        finally:
            fetcher.close()
            logger.info("Browser closed")
