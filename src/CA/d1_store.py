"""
Cloudflare D1 job store.

Talks to the D1 REST query endpoint directly with a bearer token, so no
wrangler install or OAuth login is needed on CI runners. All statements are
parameterised; the table name is the only value interpolated into SQL.
"""

import logging
import os
from typing import Any, Dict, List, Optional

import requests

from .config import DEFAULT_TABLE_NAME
from .errors import StoreError, StoreFatal, TransientStoreError, classify_store_message
from .models import JobRecord
from .retry import RetryPolicy
from .store import SCHEMA_SQL, TRACKED_FIELDS, JobStore, to_row

logger = logging.getLogger(__name__)

API_BASE = "https://api.cloudflare.com/client/v4"
REQUEST_TIMEOUT = 30  # seconds

# Cloudflare API error codes meaning the token itself is bad
AUTH_ERROR_CODES = {9106, 9109, 10000, 10001}


class D1JobStore(JobStore):
    """Job store backed by a Cloudflare D1 database."""

    def __init__(
        self,
        account_id: str,
        database_id: str,
        api_token: str,
        table_name: str = DEFAULT_TABLE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ):
        super().__init__(table_name, retry_policy)
        self.account_id = account_id
        self.database_id = database_id
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_token}",
            "Content-Type": "application/json",
        })

    @classmethod
    def from_env(cls, **kwargs) -> "D1JobStore":
        """
        Create a D1 store from environment variables.

        Raises:
            ValueError: If credentials are not set
        """
        api_token = os.getenv("CLOUDFLARE_API_TOKEN")
        account_id = os.getenv("CLOUDFLARE_ACCOUNT_ID")
        database_id = os.getenv("D1_DATABASE_ID")

        if not api_token or not account_id or not database_id:
            raise ValueError(
                "Cloudflare D1 credentials not found. Please set CLOUDFLARE_API_TOKEN, "
                "CLOUDFLARE_ACCOUNT_ID and D1_DATABASE_ID environment variables.\n\n"
                "Example:\n"
                "export CLOUDFLARE_API_TOKEN='your-api-token'\n"
                "export CLOUDFLARE_ACCOUNT_ID='your-account-id'\n"
                "export D1_DATABASE_ID='your-database-uuid'\n"
            )

        kwargs.setdefault("table_name", os.getenv("D1_TABLE_NAME") or DEFAULT_TABLE_NAME)
        return cls(account_id, database_id, api_token, **kwargs)

    @property
    def query_url(self) -> str:
        return f"{API_BASE}/accounts/{self.account_id}/d1/database/{self.database_id}/query"

    def describe(self) -> str:
        return f"D1 {self.database_id} [{self.table_name}]"

    def _post(self, sql: str, params: List[Any]) -> Dict[str, Any]:
        try:
            resp = self.session.post(
                self.query_url,
                json={"sql": sql, "params": params},
                timeout=self.timeout,
            )
        except (requests.Timeout, requests.ConnectionError) as e:
            raise TransientStoreError(f"D1 request failed: {e}") from e
        except requests.RequestException as e:
            raise StoreError(f"D1 request failed: {e}") from e

        try:
            payload = resp.json()
        except ValueError:
            # Cloudflare answers rate-limited requests with an HTML error page
            preview = resp.text[:200].replace("\n", " ")
            raise TransientStoreError(f"Non-JSON response from D1 (HTTP {resp.status_code}): {preview}")

        if resp.status_code >= 400 or not payload.get("success", False):
            errors = payload.get("errors") or []
            message = "; ".join(str(e.get("message", e)) for e in errors) or f"HTTP {resp.status_code}"
            if any(e.get("code") in AUTH_ERROR_CODES for e in errors if isinstance(e, dict)):
                raise StoreFatal(f"D1 authentication failed: {message}")
            status = resp.status_code if resp.status_code >= 400 else None
            raise classify_store_message(message, status)

        return payload

    def query(self, sql: str, params: Optional[List[Any]] = None) -> List[Dict[str, Any]]:
        """
        Run one SQL statement with retries.

        Returns:
            Result rows of the statement (empty for writes)
        """
        payload = self._call(self._post, sql, list(params or []))
        results = payload.get("result") or []
        if not results:
            return []
        return results[0].get("results") or []

    def execute(self, sql: str, params: Optional[List[Any]] = None) -> int:
        """Run a write statement and return the number of rows it changed."""
        payload = self._call(self._post, sql, list(params or []))
        results = payload.get("result") or []
        if not results:
            return 0
        meta = results[0].get("meta") or {}
        return int(meta.get("changes", 0))

    def ensure_schema(self) -> None:
        """Create the jobs table if the database does not have it yet."""
        self.execute(SCHEMA_SQL.format(table=self.table_name))

    def connect(self) -> None:
        self.ensure_schema()
        super().connect()

    def load_remote_config(self) -> Dict[str, str]:
        """
        Read the scraper_config key/value table.

        Returns:
            Dict of configuration values stored in D1
        """
        rows = self.query("SELECT key, value FROM scraper_config")
        config = {row["key"]: row["value"] for row in rows}
        logger.info(f"✓ Loaded {len(config)} configuration items from scraper_config")
        return config

    def fetch(self, job_control: str) -> Optional[Dict[str, Any]]:
        rows = self.query(
            f"SELECT * FROM {self.table_name} WHERE job_control = ? LIMIT 1",
            [job_control],
        )
        return rows[0] if rows else None

    def insert(self, record: JobRecord) -> bool:
        row = to_row(record)
        columns = ", ".join(row)
        placeholders = ", ".join("?" for _ in row)
        changes = self.execute(
            f"INSERT INTO {self.table_name} ({columns}) VALUES ({placeholders}) "
            f"ON CONFLICT(job_control) DO NOTHING",
            list(row.values()),
        )
        return changes > 0

    def update(self, existing_id: Any, record: JobRecord) -> bool:
        row = to_row(record)
        assignments = ", ".join(f"{name} = ?" for name in TRACKED_FIELDS)
        changes = self.execute(
            f"UPDATE {self.table_name} SET {assignments}, updated_at = CURRENT_TIMESTAMP WHERE id = ?",
            [row[name] for name in TRACKED_FIELDS] + [existing_id],
        )
        return changes > 0

    def count(self) -> int:
        rows = self.query(f"SELECT COUNT(*) AS count FROM {self.table_name}")
        return int(rows[0]["count"]) if rows else 0

    def recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        return self.query(
            f"SELECT job_control, working_title, department, created_at FROM {self.table_name} "
            f"ORDER BY created_at DESC LIMIT ?",
            [int(limit)],
        )

    def close(self) -> None:
        self.session.close()
