# tests/conftest.py
from html import escape
from typing import Dict, Iterable, List, Optional

import pytest

from src.CA.config import IngestionConfig
from src.CA.errors import StoreError
from src.CA.models import NOT_SPECIFIED, JobRecord
from src.CA.parser import LABEL_FIELDS, PageInspector
from src.CA.retry import RetryPolicy
from src.CA.store import TRACKED_FIELDS, JobStore, SQLiteJobStore, to_row

POSTBACK_HREF = "javascript:__doPostBack('ctl00$cphMainContent$gvSearchResults','Page${page}')"


# ---------------------------------------------------------------------
# Markup builders
# ---------------------------------------------------------------------
def make_record(n: int, **overrides) -> JobRecord:
    job_control = str(400000 + n)
    values = dict(
        job_control=job_control,
        link_title=f"ANALYST {n}",
        working_title=f"Analyst {n}",
        department="Department of Water Resources",
        location="Sacramento County",
        salary_range="$5,000.00 - $6,500.00",
        telework="Hybrid",
        work_type_schedule="Permanent Fulltime",
        publish_date="8/14/2025",
        filing_deadline="9/1/2025",
        job_posting_url=(
            "https://calcareers.ca.gov/CalHrPublic/Jobs/JobPosting.aspx?JobControlId=" + job_control
        ),
    )
    values.update(overrides)
    return JobRecord(**values)


def render_listing(record: JobRecord) -> str:
    fields = "".join(
        f"<p>{label} {escape(getattr(record, name))}</p>"
        for label, name in LABEL_FIELDS
        if getattr(record, name) != NOT_SPECIFIED
    )
    return (
        '<div class="job-card">'
        f'<a href="/CalHrPublic/Jobs/JobPosting.aspx?JobControlId={record.job_control}">'
        f"{escape(record.link_title)}</a>"
        f"{fields}"
        "</div>"
    )


def render_pager(pages: Iterable[int], current: Optional[int]) -> str:
    cells = []
    for page in pages:
        if page == current:
            cells.append(f"<td><span>{page}</span></td>")
        else:
            cells.append(f'<td><a href="{POSTBACK_HREF.format(page=page)}">{page}</a></td>')
    return f'<table class="pager"><tr>{"".join(cells)}</tr></table>'


def render_results_page(
    records: List[JobRecord],
    pages: Iterable[int] = (),
    current: Optional[int] = None,
    total_jobs: Optional[int] = None,
) -> str:
    banner = f'<div id="cphMainContent_lblCount">{total_jobs} job(s) found</div>' if total_jobs is not None else ""
    listings = "".join(render_listing(r) for r in records) or "<p>No jobs match your search.</p>"
    pager = render_pager(pages, current) if pages else ""
    return (
        "<html><body>"
        '<form id="form1">'
        f"{banner}"
        f'<div id="results">{listings}</div>'
        f"{pager}"
        "</form>"
        "</body></html>"
    )


def build_pages(sizes: List[int], **overrides) -> Dict[int, List[JobRecord]]:
    """Records for pages 1..len(sizes), numbered consecutively across pages."""
    pages, n = {}, 0
    for page_number, size in enumerate(sizes, 1):
        pages[page_number] = [make_record(n + i, **overrides) for i in range(size)]
        n += size
    return pages


# ---------------------------------------------------------------------
# Fake page fetcher
# ---------------------------------------------------------------------
class FakeSite:
    """
    Scripted stand-in for the Playwright fetcher.

    `windows` is the sequence of pager blocks the site reveals. A postback to a
    page in the visible block shows that page; a postback to anything else is a
    jump that reveals the next block and lands on its last page (the server
    clamps). An empty block keeps the current listings but renders no pager.
    Once the blocks run out, jumps land on a page with no listings.
    `fail_postbacks` and `blank_postbacks` map a page number to how many
    postbacks to it fail outright, or come back without any listings.
    """

    def __init__(
        self,
        pages: Dict[int, List[JobRecord]],
        windows: List[List[int]],
        total_jobs: Optional[int] = None,
        root_ok: bool = True,
        fail_postbacks: Optional[Dict[int, int]] = None,
        blank_postbacks: Optional[Dict[int, int]] = None,
    ):
        self.pages = pages
        self.windows = windows
        self.window_index = 0
        self.total_jobs = total_jobs
        self.root_ok = root_ok
        self.fail_postbacks = dict(fail_postbacks or {})
        self.blank_postbacks = dict(blank_postbacks or {})
        self.blank = False
        self.current: Optional[int] = windows[0][0] if windows and windows[0] else 1
        self.postbacks: List[int] = []
        self.page_size = None
        self.sort_order = None
        self.closed = False

    @property
    def visible_pages(self) -> List[int]:
        if self.window_index >= len(self.windows):
            return []
        return self.windows[self.window_index]

    def navigate_to_search_root(self) -> bool:
        return self.root_ok

    def set_page_size(self, size: int) -> bool:
        self.page_size = size
        return True

    def set_sort_order(self, value: str) -> bool:
        self.sort_order = value
        return True

    def current_page_markup(self) -> str:
        records = self.pages.get(self.current, []) if self.current is not None and not self.blank else []
        return render_results_page(records, self.visible_pages, self.current, self.total_jobs)

    def current_page_text(self) -> str:
        return PageInspector(self.current_page_markup()).text()

    def invoke_page_postback(self, page_number: int) -> bool:
        self.postbacks.append(page_number)
        self.blank = False
        if self.fail_postbacks.get(page_number, 0) > 0:
            self.fail_postbacks[page_number] -= 1
            return False
        if self.blank_postbacks.get(page_number, 0) > 0:
            self.blank_postbacks[page_number] -= 1
            self.blank = True

        if page_number in self.visible_pages:
            self.current = page_number
            return True

        self.window_index += 1
        if self.window_index < len(self.windows):
            revealed = self.windows[self.window_index]
            if revealed:
                self.current = revealed[-1]
        else:
            self.current = None
        return True

    def wait_for_stable(self) -> None:
        pass

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------
# Fake store with failure injection
# ---------------------------------------------------------------------
class FakeStore(JobStore):
    """
    In-memory store. `fail_on_write=n` raises `failure` on the n-th insert or
    update call; `failing_controls` makes fetch/exists raise StoreError.
    """

    def __init__(
        self,
        fail_on_write: Optional[int] = None,
        failure: Optional[Exception] = None,
        failing_controls: Iterable[str] = (),
    ):
        super().__init__(retry_policy=RetryPolicy.none())
        self.rows: Dict[str, dict] = {}
        self.fail_on_write = fail_on_write
        self.failure = failure or StoreError("write failed")
        self.failing_controls = set(failing_controls)
        self.writes = 0
        self.connected = False
        self.closed = False
        self.updates: List[str] = []

    def _write(self) -> None:
        self.writes += 1
        if self.fail_on_write is not None and self.writes == self.fail_on_write:
            raise self.failure

    def connect(self) -> None:
        self.connected = True

    def fetch(self, job_control: str) -> Optional[dict]:
        if job_control in self.failing_controls:
            raise StoreError(f"lookup failed for {job_control}")
        row = self.rows.get(job_control)
        return dict(row) if row else None

    def insert(self, record: JobRecord) -> bool:
        self._write()
        if record.job_control in self.rows:
            return False
        self.rows[record.job_control] = {"id": len(self.rows) + 1, **to_row(record)}
        return True

    def update(self, existing_id, record: JobRecord) -> bool:
        self._write()
        row = to_row(record)
        for stored in self.rows.values():
            if stored["id"] == existing_id:
                stored.update({name: row[name] for name in TRACKED_FIELDS})
                self.updates.append(record.job_control)
                return True
        return False

    def count(self) -> int:
        return len(self.rows)

    def recent(self, limit: int = 5) -> List[dict]:
        return sorted(self.rows.values(), key=lambda r: r["id"], reverse=True)[:limit]

    def close(self) -> None:
        self.closed = True


# ---------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------
@pytest.fixture
def record_factory():
    return make_record


@pytest.fixture
def page_builder():
    return build_pages


@pytest.fixture
def results_page():
    return render_results_page


@pytest.fixture
def fake_site():
    return FakeSite


@pytest.fixture
def fake_store():
    return FakeStore


@pytest.fixture
def sqlite_store(tmp_path):
    store = SQLiteJobStore(tmp_path / "jobs.db", retry_policy=RetryPolicy.none())
    store.connect()
    yield store
    store.close()


@pytest.fixture
def fast_config():
    """Config with every delay zeroed and single-attempt retries."""
    def _make(store, **overrides):
        values = dict(
            page_delay=0,
            record_delay=0,
            jump_delay=0,
            retry_policy=RetryPolicy.none(),
            store=store,
        )
        values.update(overrides)
        return IngestionConfig(**values)

    return _make
