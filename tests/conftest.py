"""Pytest configuration and fixtures for tests.

Provides a fake FreeAgent API served through ``httpx.MockTransport``, a
controllable clock for cache expiry, an in-memory Redis stand-in and sample
FreeAgent payloads.
"""

import fnmatch
import json
from typing import Any, AsyncGenerator, Dict, List, Optional, Tuple
from urllib.parse import urlencode

import httpx
import pytest
import pytest_asyncio

from freeagent_client.core.config import Settings
from freeagent_client.services.auth import StaticTokenProvider
from freeagent_client.services.cache import CacheStore, TTLPolicy
from freeagent_client.services.client import FreeAgentClient

BASE_URL = "https://api.freeagent.com/v2/"

PAGING_PARAMS = {"page", "per_page"}


def api_url(path: str) -> str:
    return f"{BASE_URL}{path}"


# =============================================================================
# Fake FreeAgent API
# =============================================================================


class FakeFreeAgentAPI:
    """Serves FreeAgent-shaped responses with ``Link`` header pagination.

    Collections are registered per path and (non-paging) query parameters;
    a query with no exact registration falls back to the bare path.
    """

    def __init__(self):
        self.collections: Dict[Tuple[str, frozenset], Tuple[str, List[Dict[str, Any]]]] = {}
        self.items: Dict[str, Tuple[str, Optional[Dict[str, Any]]]] = {}
        self.failures: Dict[str, List[int]] = {}
        self.requests: List[httpx.Request] = []

    def add_collection(self, path: str, key: str, items: List[Dict[str, Any]], **query: str) -> None:
        self.collections[(path, frozenset(query.items()))] = (key, items)

    def add_item(self, path: str, key: str, item: Optional[Dict[str, Any]]) -> None:
        self.items[path] = (key, item)

    def fail(self, path: str, *statuses: int) -> None:
        """Answer the next requests to ``path`` with these statuses, in order."""
        self.failures.setdefault(path, []).extend(statuses)

    def requests_to(self, path: str, method: str = "GET") -> List[httpx.Request]:
        return [
            request for request in self.requests
            if request.method == method and request.url.path == f"/v2/{path}"
        ]

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path[len("/v2/"):]

        pending = self.failures.get(path)
        if pending:
            status = pending.pop(0)
            return httpx.Response(status, json={"errors": {"message": f"Simulated {status}"}})

        if request.method in ("POST", "PUT"):
            body = json.loads(request.content)
            return httpx.Response(201 if request.method == "POST" else 200, json=body)
        if request.method == "DELETE":
            return httpx.Response(200)

        if path in self.items:
            key, item = self.items[path]
            return httpx.Response(200, json={key: item})

        params = dict(request.url.params)
        query = frozenset((k, v) for k, v in params.items() if k not in PAGING_PARAMS)
        registered = self.collections.get((path, query)) or self.collections.get((path, frozenset()))
        if registered is None:
            return httpx.Response(404, json={"errors": {"message": "Not found"}})

        key, items = registered
        page = int(params.get("page", 1))
        per_page = int(params.get("per_page", 100))
        start = (page - 1) * per_page
        headers = {}
        if start + per_page < len(items):
            next_query = dict(sorted(query)) | {"page": page + 1, "per_page": per_page}
            headers["Link"] = f'<{api_url(path)}?{urlencode(next_query)}>; rel="next"'
        return httpx.Response(200, json={key: items[start:start + per_page]}, headers=headers)


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class MockRedis:
    """Mock Redis client for testing cache behavior."""

    def __init__(self):
        self._store: Dict[str, str] = {}
        self._ttl: Dict[str, int] = {}
        self._call_log: List[Dict[str, Any]] = []

    async def get(self, key: str) -> Optional[str]:
        self._call_log.append({"method": "get", "key": key})
        return self._store.get(key)

    async def setex(self, key: str, ttl: int, value: str) -> None:
        self._call_log.append({"method": "setex", "key": key, "ttl": ttl})
        self._store[key] = value
        self._ttl[key] = ttl

    async def expire(self, key: str, ttl: int) -> None:
        self._call_log.append({"method": "expire", "key": key, "ttl": ttl})
        self._ttl[key] = ttl

    async def delete(self, *keys: str) -> None:
        for key in keys:
            self._call_log.append({"method": "delete", "key": key})
            self._store.pop(key, None)
            self._ttl.pop(key, None)

    async def scan_iter(self, match: str = "*"):
        for key in list(self._store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def aclose(self) -> None:
        self._call_log.append({"method": "aclose"})

    def get_call_count(self, method: str) -> int:
        return sum(1 for call in self._call_log if call["method"] == method)


# =============================================================================
# Sample payloads
# =============================================================================

ACME = {
    "url": api_url("contacts/1"),
    "organisation_name": "Acme Ltd",
    "first_name": "Wile",
    "last_name": "Coyote",
    "active_projects_count": 2,
}
GLOBEX = {
    "url": api_url("contacts/2"),
    "organisation_name": "Globex",
    "active_projects_count": 0,
}

WEBSITE = {
    "url": api_url("projects/1"),
    "name": "Website rebuild",
    "contact": api_url("contacts/1"),
    "status": "Active",
    "currency": "GBP",
}
SUPPORT = {
    "url": api_url("projects/2"),
    "name": "Support",
    "contact": api_url("contacts/1"),
    "status": "Active",
    "currency": "GBP",
}

ADA = {"url": api_url("users/1"), "first_name": "Ada", "last_name": "Lovelace", "role": "Employee", "hidden": False}
GRACE = {"url": api_url("users/2"), "first_name": "Grace", "last_name": "Hopper", "role": "Director", "hidden": False}
HIDDEN = {"url": api_url("users/3"), "first_name": "Zed", "last_name": "Hidden", "role": "Employee", "hidden": True}
ALAN = {"url": api_url("users/4"), "first_name": "Alan", "last_name": "Turing", "role": "Employee", "hidden": False}

SENIOR_TASK = {
    "url": api_url("tasks/1"),
    "project": api_url("projects/1"),
    "name": "Senior",
    "billing_rate": "800.0",
    "billing_period": "day",
}

WEBSITE_TIMESLIPS = [
    {
        "url": api_url("timeslips/1"),
        "user": api_url("users/1"),
        "project": api_url("projects/1"),
        "task": api_url("tasks/1"),
        "dated_on": "2024-01-01",
        "hours": "8.0",
        "comment": "Kickoff",
    },
    {
        "url": api_url("timeslips/2"),
        "user": api_url("users/4"),
        "project": api_url("projects/1"),
        "task": api_url("tasks/1"),
        "dated_on": "2023-12-31",
        "hours": "4.0",
    },
    {
        "url": api_url("timeslips/3"),
        "user": api_url("users/1"),
        "project": api_url("projects/1"),
        "task": api_url("tasks/1"),
        "dated_on": "2024-02-15",
        "hours": "6.0",
    },
    {
        "url": api_url("timeslips/4"),
        "user": api_url("users/99"),
        "project": api_url("projects/1"),
        "task": api_url("tasks/1"),
        "dated_on": "2024-01-02",
        "hours": "2.0",
    },
]

SUPPORT_TIMESLIPS = [
    {
        "url": api_url("timeslips/5"),
        "user": api_url("users/1"),
        "project": api_url("projects/2"),
        "task": api_url("tasks/9"),
        "dated_on": "2024-01-03",
        "hours": "3.0",
    },
]


def estimate_payload(number: int, project: str, items: List[Dict[str, Any]], status: str = "Approved") -> Dict[str, Any]:
    return {
        "url": api_url(f"estimates/{number}"),
        "reference": f"EST-{number:03d}",
        "contact": api_url("contacts/1"),
        "project": project,
        "status": status,
        "estimate_items": items,
    }


# =============================================================================
# Fixtures
# =============================================================================


@pytest.fixture
def test_settings() -> Settings:
    """Settings with no retries, no backoff delay and caching off."""
    return Settings(
        _env_file=None,
        access_token="test-token",
        max_retries=0,
        initial_retry_delay=0.0,
        cache_backend="none",
    )


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def memory_cache(fake_clock) -> CacheStore:
    return CacheStore(default_policy=TTLPolicy(ttl=300, sliding=True), clock=fake_clock)


@pytest.fixture
def mock_redis() -> MockRedis:
    return MockRedis()


@pytest.fixture
def api() -> FakeFreeAgentAPI:
    """Fake API preloaded with contacts, projects, users, tasks and timeslips."""
    fake = FakeFreeAgentAPI()
    fake.add_collection("contacts", "contacts", [ACME, GLOBEX])
    fake.add_collection("projects", "projects", [WEBSITE, SUPPORT])
    fake.add_collection("users", "users", [ADA, GRACE, HIDDEN, ALAN])
    fake.add_collection("tasks", "tasks", [SENIOR_TASK], project=WEBSITE["url"])
    fake.add_collection("tasks", "tasks", [], project=SUPPORT["url"])
    fake.add_collection("timeslips", "timeslips", WEBSITE_TIMESLIPS, project=WEBSITE["url"])
    fake.add_collection("timeslips", "timeslips", SUPPORT_TIMESLIPS, project=SUPPORT["url"])
    return fake


@pytest_asyncio.fixture
async def client(api, memory_cache, test_settings) -> AsyncGenerator[FreeAgentClient, None]:
    """FreeAgentClient wired to the fake API with a fake-clock memory cache."""
    freeagent = FreeAgentClient(
        auth=StaticTokenProvider("test-token"),
        cache=memory_cache,
        config=test_settings,
        http_transport=httpx.MockTransport(api),
    )
    yield freeagent
    await freeagent.close()
