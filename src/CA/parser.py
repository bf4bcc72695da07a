"""
CalCareers Search Results Parser

Parses the rendered search results page into JobRecord objects. The grid
markup changes often, so extraction is anchored on two stable things: links to
JobPosting.aspx carrying a JobControlId, and the "Label:" text printed next to
each listing's fields.
"""

import re
from typing import Callable, Dict, List, Optional, Set
from urllib.parse import urljoin

from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString

from .config import JOB_CONTROL_PATTERN, JOB_POSTING_PATTERN, MAX_ANCESTOR_HOPS, SEARCH_URL
from .models import NOT_SPECIFIED, JobRecord

# Label printed on the page -> JobRecord attribute
LABEL_FIELDS = [
    ("Working Title:", "working_title"),
    ("Salary Range:", "salary_range"),
    ("Department:", "department"),
    ("Location:", "location"),
    ("Telework:", "telework"),
    ("Work Type/Schedule:", "work_type_schedule"),
    ("Publish Date:", "publish_date"),
    ("Filing Deadline:", "filing_deadline"),
]
LABELS = [label for label, _ in LABEL_FIELDS]

# A container showing at least this many labels is taken to be a listing card
MIN_LABELS_FOR_CONTAINER = 2

# The ancestor walk starts at the nearest of these
CONTAINER_TAGS = ["div", "tr", "section", "td"]

# Elements that start a new line of rendered text; everything else is inline
BLOCK_TAGS = {
    "address", "article", "br", "dd", "div", "dl", "dt", "footer", "h1", "h2",
    "h3", "h4", "h5", "h6", "header", "hr", "li", "ol", "p", "section", "table",
    "tbody", "td", "th", "thead", "tr", "ul",
}

TOTAL_JOBS_RE = re.compile(r"(\d[\d,]*)\s+job\(s\)\s+found", re.IGNORECASE)


def clean_text(text: str) -> str:
    """Clean and normalize text content"""
    if not text:
        return ""
    text = re.sub(r'\s+', ' ', text)
    return text.strip()


class PageInspector:
    """Read-only queries over one snapshot of a page's markup."""

    def __init__(self, html: str):
        self.soup = BeautifulSoup(html or "", "html.parser")

    def find_anchors_matching(self, pattern: str) -> List[Tag]:
        regex = re.compile(pattern)
        return [a for a in self.soup.find_all("a", href=True) if regex.search(a["href"])]

    def ancestor_with_text(
        self,
        element: Tag,
        predicate: Callable[[str], bool],
        max_hops: int = MAX_ANCESTOR_HOPS,
    ) -> Optional[Tag]:
        """
        Walk up from the element's nearest container until predicate(text) holds.

        Args:
            element: Starting element (usually a job link)
            predicate: Test applied to each candidate's text content
            max_hops: Maximum number of ancestors to try

        Returns:
            The first matching ancestor, or None if none matched within max_hops
        """
        node = element.find_parent(CONTAINER_TAGS)
        hops = 0
        while node is not None and hops < max_hops:
            if predicate(node.get_text()):
                return node
            node = node.parent
            hops += 1
        return None

    def all_interactive_elements(self) -> List[Tag]:
        return self.soup.find_all(["a", "span"])

    def text(self) -> str:
        return self.soup.get_text()


def has_field_labels(text: str, minimum: int = MIN_LABELS_FOR_CONTAINER) -> bool:
    """True when the text carries enough field labels to be a listing card."""
    return sum(1 for label in LABELS if label in text) >= minimum


def extract_job_control(href: str) -> Optional[str]:
    """Pull the numeric JobControlId out of a job posting URL."""
    match = re.search(JOB_CONTROL_PATTERN, href or "")
    return match.group(1) if match else None


def block_text(element: Tag) -> str:
    """
    Rendered text of an element, one line per block element.

    Text inside inline elements (b, span, a, ...) stays on its block's line, so
    a value split across inline tags reads back whole.
    """
    parts = []
    for child in element.children:
        if isinstance(child, NavigableString):
            if not isinstance(child, PreformattedString):
                parts.append(str(child))
        elif child.name in ("script", "style"):
            continue
        elif child.name in BLOCK_TAGS:
            parts.append("\n" + block_text(child) + "\n")
        else:
            parts.append(block_text(child))
    return "".join(parts)


def _cut_at_next_label(value: str) -> str:
    cut = len(value)
    for label in LABELS:
        idx = value.find(label)
        if idx != -1:
            cut = min(cut, idx)
    return value[:cut].strip()


def extract_container_fields(text: str) -> Dict[str, str]:
    """
    Extract labeled fields from one listing container's text.

    A value is whatever follows its label on the same line; when the label sits
    alone on its line (label and value in separate elements), the next line is
    used instead.

    Args:
        text: Container text with one rendered line per block element

    Returns:
        Dict of JobRecord attribute -> value for the labels that were found
    """
    lines = [clean_text(line) for line in text.splitlines()]
    lines = [line for line in lines if line]

    fields = {}
    for label, name in LABEL_FIELDS:
        for i, line in enumerate(lines):
            idx = line.find(label)
            if idx == -1:
                continue
            value = _cut_at_next_label(line[idx + len(label):])
            if not value and i + 1 < len(lines) and not any(lines[i + 1].startswith(l) for l in LABELS):
                value = _cut_at_next_label(lines[i + 1])
            if value:
                fields[name] = value
            break
    return fields


def _job_controls_in(container: Tag) -> Set[str]:
    controls = set()
    for a in container.find_all("a", href=True):
        if re.search(JOB_POSTING_PATTERN, a["href"]):
            job_control = extract_job_control(a["href"])
            if job_control:
                controls.add(job_control)
    return controls


def extract_job_records(html: str, base_url: str = SEARCH_URL) -> List[JobRecord]:
    """
    Parse every listing on a results page.

    Args:
        html: Rendered page markup
        base_url: URL the page was served from, for resolving relative links

    Returns:
        JobRecord list, one per distinct job control, in page order
    """
    inspector = PageInspector(html)
    records: List[JobRecord] = []
    seen: Set[str] = set()

    for anchor in inspector.find_anchors_matching(JOB_POSTING_PATTERN):
        href = anchor["href"]
        job_control = extract_job_control(href)
        if not job_control or job_control in seen:
            continue
        seen.add(job_control)

        link_title = clean_text(anchor.get_text()) or NOT_SPECIFIED

        container = inspector.ancestor_with_text(anchor, has_field_labels, MAX_ANCESTOR_HOPS)
        # Climbed past the listing into the results list
        if container is not None and _job_controls_in(container) - {job_control}:
            container = None

        fields = extract_container_fields(block_text(container)) if container is not None else {}
        fields.setdefault("working_title", link_title)

        records.append(JobRecord(
            job_control=job_control,
            link_title=link_title,
            job_posting_url=urljoin(base_url, href),
            **fields,
        ))

    return records


def has_job_listings(html: str) -> bool:
    """True if the page shows at least one job posting link."""
    inspector = PageInspector(html)
    return any(
        extract_job_control(a["href"])
        for a in inspector.find_anchors_matching(JOB_POSTING_PATTERN)
    )


def parse_total_jobs(text: str) -> int:
    """
    Read the "N job(s) found" banner.

    Returns:
        Number of jobs on the site, or 0 if the banner is missing
    """
    match = TOTAL_JOBS_RE.search(text or "")
    if not match:
        return 0
    return int(match.group(1).replace(",", ""))
