"""
Pytest configuration and fixtures for the legal KB core tests.

Provides shared fixtures for:
- Mock Redis client (fakeredis)
- Test settings with fast retries
- A scriptable in-memory KB HTTP API (httpx.MockTransport)
- A sleep recorder so backoff can be asserted without waiting
"""

import json
from typing import Any, Callable, Dict, List, Optional

import httpx
import pytest

from legalrag.kb_client import KnowledgeBaseClient
from legalrag.models import KnowledgeBaseEntry
from legalrag.retry import RetryingExecutor, RetryPolicy
from libs.common.settings import Settings, get_settings

KB_BASE_URL = "http://kb.test"


@pytest.fixture(autouse=True)
def setup_test_env(monkeypatch):
    """Set up test environment variables."""
    monkeypatch.setenv("LEGALRAG_APP_ENV", "test")
    # Never reach a real model from tests
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    monkeypatch.delenv("LEGALRAG_OPENAI_API_KEY", raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
async def redis_client():
    """
    Provide fakeredis client for testing.

    This avoids requiring actual Redis server during tests.
    """
    from fakeredis import aioredis as fakeredis

    client = fakeredis.FakeRedis(decode_responses=True)

    yield client

    await client.flushdb()
    await client.aclose()


@pytest.fixture
def settings():
    return Settings(
        app_env="test",
        kb_api_url=KB_BASE_URL,
        kb_api_key="",
        sqg_enabled=False,
        kb_retry_attempts=3,
        kb_retry_delay_ms=100,
    )


def make_entry(entry_id: Optional[str], similarity: Optional[float] = None, **fields: Any) -> KnowledgeBaseEntry:
    return KnowledgeBaseEntry(entry_id=entry_id, similarity=similarity, **fields)


def entry_json(entry_id: str, similarity: Optional[float] = None, **fields: Any) -> Dict[str, Any]:
    data: Dict[str, Any] = {"entry_id": entry_id, "title": f"Entry {entry_id}", "similarity": similarity}
    data.update(fields)
    return data


class FakeKnowledgeBase:
    """
    Scriptable stand-in for the KB HTTP API.

    Handlers are keyed by "METHOD /path" (search requests additionally by
    "POST /kb/search:<method>"). A handler is either a response, or a list of
    responses consumed one per call (the last one repeats). Setting
    ``required_api_key`` makes every request without that ``x-api-key`` header
    answer 403.
    """

    def __init__(self):
        self.requests: List[httpx.Request] = []
        self.required_api_key: Optional[str] = None
        self._routes: Dict[str, Any] = {}

    def route(self, key: str, *responses: httpx.Response) -> None:
        self._routes[key] = list(responses)

    def search_results(self, method: Optional[str], results: List[Dict[str, Any]]) -> None:
        key = f"POST /kb/search:{method}" if method else "POST /kb/search"
        self.route(key, httpx.Response(200, json={"success": True, "results": results}))

    def calls(self, key: str) -> List[httpx.Request]:
        method, _, path = key.partition(" ")
        path, _, search_method = path.partition(":")
        matched = []
        for request in self.requests:
            if request.method != method or request.url.path != path:
                continue
            if search_method and self.body(request).get("method") != search_method:
                continue
            matched.append(request)
        return matched

    @staticmethod
    def body(request: httpx.Request) -> Dict[str, Any]:
        return json.loads(request.content) if request.content else {}

    def _lookup(self, request: httpx.Request) -> Optional[List[httpx.Response]]:
        base_key = f"{request.method} {request.url.path}"
        if request.url.path == "/kb/search":
            method = self.body(request).get("method")
            if method and f"{base_key}:{method}" in self._routes:
                return self._routes[f"{base_key}:{method}"]
        return self._routes.get(base_key)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.required_api_key is not None and request.headers.get("x-api-key") != self.required_api_key:
            return httpx.Response(403, json={"error": "forbidden"})
        responses = self._lookup(request)
        if not responses:
            return httpx.Response(404, json={"error": "not found"})
        response = responses.pop(0) if len(responses) > 1 else responses[0]
        if isinstance(response, Exception):
            raise response
        return response

    def client(self, token_provider=None, api_key: Optional[str] = None) -> KnowledgeBaseClient:
        http = httpx.AsyncClient(transport=httpx.MockTransport(self.handler))
        return KnowledgeBaseClient(KB_BASE_URL, token_provider=token_provider, http_client=http, api_key=api_key)


@pytest.fixture
def fake_kb():
    return FakeKnowledgeBase()


@pytest.fixture
async def kb_client(fake_kb):
    client = fake_kb.client()
    yield client
    await client._http.aclose()


class SleepRecorder:
    """Async sleep replacement that records requested delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


@pytest.fixture
def sleep_recorder():
    return SleepRecorder()


@pytest.fixture
def fast_executor(sleep_recorder) -> RetryingExecutor:
    return RetryingExecutor(RetryPolicy(max_attempts=3, base_delay_ms=100), sleep=sleep_recorder, rng=lambda: 0.0)


@pytest.fixture
def entry_factory() -> Callable[..., KnowledgeBaseEntry]:
    return make_entry
