"""
Tests for the Cloudflare D1 store against a stubbed HTTP session.
"""

import pytest
import requests

from src.CA.d1_store import D1JobStore
from src.CA.errors import StoreError, StoreFatal, TransientStoreError
from src.CA.retry import RetryPolicy


class StubResponse:
    def __init__(self, status_code=200, payload=None, text=None):
        self.status_code = status_code
        self._payload = payload
        self.text = text if text is not None else ""

    def json(self):
        if self._payload is None:
            raise ValueError("No JSON object could be decoded")
        return self._payload


class StubSession:
    def __init__(self, responses):
        self.responses = list(responses)
        self.headers = {}
        self.requests = []
        self.closed = False

    def post(self, url, json=None, timeout=None):
        self.requests.append((url, json))
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    def close(self):
        self.closed = True


def ok(results=None, changes=0):
    return StubResponse(200, {
        "success": True,
        "errors": [],
        "result": [{"results": results or [], "meta": {"changes": changes}, "success": True}],
    })


def make_store(responses, retry_policy=None):
    session = StubSession(responses)
    store = D1JobStore(
        "acct", "db-uuid", "secret-token",
        retry_policy=retry_policy or RetryPolicy.none(),
        session=session,
    )
    return store, session


def test_sends_bearer_token_and_parameterised_sql(record_factory):
    store, session = make_store([ok(changes=1)])

    assert store.insert(record_factory(1)) is True

    url, body = session.requests[0]
    assert url == "https://api.cloudflare.com/client/v4/accounts/acct/d1/database/db-uuid/query"
    assert session.headers["Authorization"] == "Bearer secret-token"
    assert body["sql"].startswith("INSERT INTO ccJobs (job_control, link_title")
    assert "ON CONFLICT(job_control) DO NOTHING" in body["sql"]
    assert body["params"][0] == "400001"
    assert "'" not in body["sql"]


def test_insert_conflict_returns_false(record_factory):
    store, _ = make_store([ok(changes=0)])

    assert store.insert(record_factory(1)) is False


def test_fetch_and_count():
    row = {"id": 3, "job_control": "400001"}
    store, session = make_store([ok([row]), ok([]), ok([{"count": 42}])])

    assert store.fetch("400001") == row
    assert store.exists("400002") is False
    assert store.count() == 42
    assert session.requests[0][1]["params"] == ["400001"]


def test_update_sets_tracked_columns(record_factory):
    store, session = make_store([ok(changes=1)])

    assert store.update(7, record_factory(1))

    body = session.requests[0][1]
    assert body["sql"].startswith("UPDATE ccJobs SET link_title = ?")
    assert "updated_at = CURRENT_TIMESTAMP WHERE id = ?" in body["sql"]
    assert "created_at" not in body["sql"]
    assert body["params"][-1] == 7


def test_auth_failure_is_fatal():
    response = StubResponse(401, {"success": False, "errors": [{"code": 10000, "message": "Authentication error"}]})
    store, _ = make_store([response])

    with pytest.raises(StoreFatal):
        store.count()


def test_missing_table_is_fatal():
    response = StubResponse(400, {"success": False, "errors": [{"code": 7500, "message": "no such table: ccJobs"}]})
    store, _ = make_store([response])

    with pytest.raises(StoreFatal):
        store.fetch("1")


def test_rate_limit_page_is_retried():
    sleeps = []
    policy = RetryPolicy(max_attempts=3, base_delay=0.1, jitter=0, sleep=sleeps.append)
    store, session = make_store(
        [StubResponse(429, None, text="<html>Too many requests</html>"), ok([{"count": 1}])],
        retry_policy=policy,
    )

    assert store.count() == 1
    assert len(session.requests) == 2
    assert sleeps == [0.1]


def test_connection_errors_are_transient():
    store, _ = make_store([requests.ConnectionError("reset")])

    with pytest.raises(TransientStoreError):
        store.count()


def test_other_errors_are_record_level():
    response = StubResponse(400, {"success": False, "errors": [{"code": 7500, "message": "SQLITE_CONSTRAINT"}]})
    store, _ = make_store([response])

    with pytest.raises(StoreError) as exc:
        store.count()
    assert not isinstance(exc.value, TransientStoreError)


def test_load_remote_config():
    rows = [{"key": "max_jobs_per_page", "value": "50"}, {"key": "scraper_delay_ms", "value": "1500"}]
    store, session = make_store([ok(rows)])

    assert store.load_remote_config() == {"max_jobs_per_page": "50", "scraper_delay_ms": "1500"}
    assert session.requests[0][1]["sql"] == "SELECT key, value FROM scraper_config"


def test_from_env_requires_credentials(monkeypatch):
    for name in ("CLOUDFLARE_API_TOKEN", "CLOUDFLARE_ACCOUNT_ID", "D1_DATABASE_ID"):
        monkeypatch.delenv(name, raising=False)

    with pytest.raises(ValueError, match="CLOUDFLARE_API_TOKEN"):
        D1JobStore.from_env()


def test_from_env_reads_table_name(monkeypatch):
    monkeypatch.setenv("CLOUDFLARE_API_TOKEN", "t")
    monkeypatch.setenv("CLOUDFLARE_ACCOUNT_ID", "a")
    monkeypatch.setenv("D1_DATABASE_ID", "d")
    monkeypatch.setenv("D1_TABLE_NAME", "ccJobsStaging")

    store = D1JobStore.from_env(session=StubSession([]))

    assert store.table_name == "ccJobsStaging"
    assert store.describe() == "D1 d [ccJobsStaging]"


def test_connect_creates_table_before_counting():
    store, session = make_store([ok(), ok([{"count": 0}])])

    store.connect()

    create_sql = session.requests[0][1]["sql"]
    assert "CREATE TABLE IF NOT EXISTS ccJobs" in create_sql
    assert "job_control TEXT NOT NULL UNIQUE" in create_sql
    assert session.requests[0][1]["params"] == []
    assert session.requests[1][1]["sql"] == "SELECT COUNT(*) AS count FROM ccJobs"
