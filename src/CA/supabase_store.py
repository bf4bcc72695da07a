"""
Supabase job store.

Same contract as the D1 store, for running the ingestion against a Supabase
(Postgres) table with the ccJobs columns.
"""

import os
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from postgrest.exceptions import APIError
from supabase import Client, create_client

from .config import DEFAULT_TABLE_NAME
from .errors import StoreError, StoreFatal, TransientStoreError, classify_store_message
from .models import JobRecord
from .retry import RetryPolicy
from .store import TRACKED_FIELDS, JobStore, to_row

# Postgres / PostgREST codes that no retry will fix
FATAL_CODES = {"42P01", "42703", "PGRST301", "PGRST302", "28000", "28P01"}


def get_supabase_client() -> Client:
    """
    Create and return a Supabase client.

    Returns:
        Supabase client instance

    Raises:
        ValueError: If credentials are not set
    """
    url = os.getenv("SUPABASE_URL")
    key = os.getenv("SUPABASE_KEY") or os.getenv("SUPABASE_ANON_KEY") or os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    if not url or not key:
        raise ValueError(
            "Supabase credentials not found. Please set SUPABASE_URL and SUPABASE_KEY "
            "environment variables.\n\n"
            "Example:\n"
            "export SUPABASE_URL='https://your-project.supabase.co'\n"
            "export SUPABASE_KEY='your-service-role-key'\n"
        )

    return create_client(url, key)


def _translate(e: Exception) -> Exception:
    if isinstance(e, APIError):
        code = str(e.code or "")
        if code in FATAL_CODES:
            return StoreFatal(f"Supabase {code}: {e.message}")
        return classify_store_message(f"{code} {e.message}")
    if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
        return TransientStoreError(f"Supabase request failed: {e}")
    return StoreError(str(e))


class SupabaseJobStore(JobStore):
    """Job store backed by a Supabase table."""

    def __init__(
        self,
        client: Client,
        table_name: str = DEFAULT_TABLE_NAME,
        retry_policy: Optional[RetryPolicy] = None,
    ):
        super().__init__(table_name, retry_policy)
        self.client = client

    @classmethod
    def from_env(cls, **kwargs) -> "SupabaseJobStore":
        kwargs.setdefault("table_name", os.getenv("SUPABASE_TABLE_NAME") or DEFAULT_TABLE_NAME)
        return cls(get_supabase_client(), **kwargs)

    def describe(self) -> str:
        return f"Supabase [{self.table_name}]"

    def _run(self, build):
        def _execute():
            try:
                return build(self.client.table(self.table_name)).execute()
            except (APIError, httpx.HTTPError) as e:
                raise _translate(e) from e

        return self._call(_execute)

    def fetch(self, job_control: str) -> Optional[Dict[str, Any]]:
        response = self._run(lambda t: t.select("*").eq("job_control", job_control).limit(1))
        return response.data[0] if response.data else None

    def insert(self, record: JobRecord) -> bool:
        row = to_row(record)
        response = self._run(
            lambda t: t.upsert(row, on_conflict="job_control", ignore_duplicates=True)
        )
        return bool(response.data)

    def update(self, existing_id: Any, record: JobRecord) -> bool:
        row = to_row(record)
        values = {name: row[name] for name in TRACKED_FIELDS}
        values["updated_at"] = datetime.now(timezone.utc).isoformat()
        response = self._run(lambda t: t.update(values).eq("id", existing_id))
        return bool(response.data)

    def count(self) -> int:
        response = self._run(lambda t: t.select("id", count="exact").limit(1))
        return response.count or 0

    def recent(self, limit: int = 5) -> List[Dict[str, Any]]:
        response = self._run(
            lambda t: t.select("job_control, working_title, department, created_at")
            .order("created_at", desc=True)
            .limit(limit)
        )
        return response.data or []
