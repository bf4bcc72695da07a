"""
Job store contract and the local SQLite implementation.

A store is the sole authority on whether a job_control has been seen before.
Every write is committed on its own, so an interrupted run leaves nothing to
roll back and a rerun picks up where the data says it left off.
"""

import logging
import re
import sqlite3
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from .config import DEFAULT_TABLE_NAME
from .errors import StoreError, StoreFatal, TransientStoreError
from .models import NOT_SPECIFIED, JobRecord
from .retry import RetryPolicy

logger = logging.getLogger(__name__)

# Columns compared when deciding whether a stored row needs an update
TRACKED_FIELDS = [
    "link_title",
    "salary_range",
    "department",
    "location",
    "telework",
    "publish_date",
    "filing_deadline",
    "job_posting_url",
    "work_type_schedule",
    "working_title",
]

DATE_FIELDS = ("publish_date", "filing_deadline")

TABLE_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    job_control TEXT NOT NULL UNIQUE,
    link_title TEXT,
    working_title TEXT,
    department TEXT,
    location TEXT,
    salary_range TEXT,
    telework TEXT,
    work_type_schedule TEXT,
    publish_date TEXT,
    filing_deadline TEXT,
    job_posting_url TEXT,
    created_at DATETIME DEFAULT CURRENT_TIMESTAMP,
    updated_at DATETIME DEFAULT CURRENT_TIMESTAMP
)
"""


def check_table_name(table_name: str) -> str:
    """Table names end up in SQL text, so only plain identifiers are allowed."""
    if not TABLE_NAME_RE.match(table_name or ""):
        raise ValueError(f"Invalid table name: {table_name!r}")
    return table_name


def format_date(value: Optional[str]) -> str:
    """
    Normalize a listing date for storage.

    Args:
        value: Date text as shown on the site (e.g., "8/14/2025", "Until Filled")

    Returns:
        ISO date for unambiguous M/D/YYYY or ISO input, the text unchanged otherwise
    """
    if value is None or not str(value).strip():
        return NOT_SPECIFIED
    text = str(value).strip()
    for fmt in ("%Y-%m-%d", "%m/%d/%Y"):
        try:
            return datetime.strptime(text, fmt).date().isoformat()
        except ValueError:
            continue
    return text


def to_row(record: JobRecord) -> Dict[str, str]:
    """Map a JobRecord to column values."""
    row = {}
    for key, value in record.to_dict().items():
        if key in DATE_FIELDS:
            row[key] = format_date(value)
        else:
            value = (value or "").strip()
            row[key] = value if value else NOT_SPECIFIED
    return row


def changed_fields(existing: Dict[str, Any], record: JobRecord) -> List[str]:
    """
    List the tracked columns whose stored value differs from the record.

    Args:
        existing: Row as returned by JobStore.fetch()
        record: Freshly scraped record

    Returns:
        Names of changed columns (empty when nothing changed)
    """
    row = to_row(record)
    changed = []
    for name in TRACKED_FIELDS:
        old = str(existing.get(name) or "").strip()
        new = str(row.get(name) or "").strip()
        if old != new:
            changed.append(name)
    return changed


class JobStore(ABC):
    """Persistence contract used by the ingestion engine."""

    def __init__(self, table_name: str = DEFAULT_TABLE_NAME, retry_policy: Optional[RetryPolicy] = None):
        self.table_name = check_table_name(table_name)
        self.retry_policy = retry_policy or RetryPolicy()

    def _call(self, fn, *args, **kwargs):
        return self.retry_policy.call(fn, *args, **kwargs)

    def connect(self) -> None:
        """Open connections and verify the table is reachable."""
        total = self.count()
        logger.info(f"✓ Connected to {self.describe()} ({total} jobs stored)")

    def describe(self) -> str:
        return f"{type(self).__name__}:{self.table_name}"

    def exists(self, job_control: str) -> bool:
        return self.fetch(job_control) is not None

    @abstractmethod
    def fetch(self, job_control: str) -> Optional[Dict[str, Any]]:
        """Return the stored row for job_control, or None."""

    @abstractmethod
    def insert(self, record: JobRecord) -> bool:
        """Insert a record. Returns False if its job_control is already stored."""

    @abstractmethod
    def update(self, existing_id: Any, record: JobRecord) -> bool:
        """Overwrite the tracked columns of an existing row."""

    @abstractmethod
    def count(self) -> int:
        """Total rows in the table."""

    @abstractmethod
    def recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        """Most recently created rows, newest first."""

    def close(self) -> None:
        pass


def _classify_sqlite_error(e: sqlite3.Error) -> Exception:
    message = str(e)
    if isinstance(e, sqlite3.OperationalError):
        if "no such table" in message or "no such column" in message:
            return StoreFatal(message)
        if "locked" in message or "busy" in message:
            return TransientStoreError(message)
    return StoreError(message)


class SQLiteJobStore(JobStore):
    """Local SQLite table with the same schema as the D1 table."""

    def __init__(
        self,
        path: Union[str, Path] = ":memory:",
        table_name: str = DEFAULT_TABLE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(table_name, retry_policy)
        self.path = str(path)
        self._conn: Optional[sqlite3.Connection] = None

    def describe(self) -> str:
        return f"SQLite {self.path} [{self.table_name}]"

    @property
    def conn(self) -> sqlite3.Connection:
        if self._conn is None:
            if self.path != ":memory:":
                Path(self.path).parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(self.path)
            self._conn.row_factory = sqlite3.Row
        return self._conn

    def _execute(self, sql: str, params: tuple = (), fetch: Optional[str] = None):
        def _run():
            try:
                with self.conn:
                    cur = self.conn.execute(sql, params)
                    if fetch == "one":
                        return cur.fetchone()
                    if fetch == "all":
                        return cur.fetchall()
                    return cur.rowcount
            except sqlite3.Error as e:
                raise _classify_sqlite_error(e) from e

        return self._call(_run)

    def ensure_schema(self) -> None:
        self._execute(SCHEMA_SQL.format(table=self.table_name))

    def connect(self) -> None:
        self.ensure_schema()
        super().connect()

    def fetch(self, job_control: str) -> Optional[Dict[str, Any]]:
        row = self._execute(
            f"SELECT * FROM {self.table_name} WHERE job_control = ? LIMIT 1",
            (job_control,),
            fetch="one",
        )
        return dict(row) if row else None

    def insert(self, record: JobRecord) -> bool:
        row = to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        changes = self._execute(
            f"INSERT INTO {self.table_name} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(job_control) DO NOTHING",
            tuple(row.values()),
        )
        return changes > 0

    def update(self, existing_id: Any, record: JobRecord) -> bool:
        row = to_row(record)
        assignments = ", ".join(f"{name} = ?" for name in TRACKED_FIELDS)
        changes = self._execute(
            f"UPDATE {self.table_name} SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            tuple(row[name] for name in TRACKED_FIELDS) + (existing_id,),
        )
        return changes > 0

    def count(self) -> int:
        row = self._execute(f"SELECT COUNT(*) FROM {self.table_name}", fetch="one")
        return row[0]

    def recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        rows = self._execute(
            f"SELECT job_control, working_title, department, created_at FROM {self.table_name} "
            f"ORDER BY created_at DESC, id DESC LIMIT ?",
            (int(limit),),
            fetch="all",
        )
        return [dict(r) for r in rows]

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
