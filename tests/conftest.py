"""Shared fixtures for all tests."""

import json

import httpx
import pytest

from tutor_api.config import Settings
from tutor_api.core.gemini_backend import ProvisionedContext
from tutor_api.core.kv_store import KVStore

NOW_MS = 1_700_000_000_000


class FakeKV:
    """In-memory Upstash REST endpoint served through httpx.MockTransport."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.calls: list[tuple[str, str]] = []
        self.fail_get = False
        self.fail_set = False
        self.last_set_params: dict = {}

    def handler(self, request: httpx.Request) -> httpx.Response:
        _, op, key = request.url.path.split("/", 2)
        self.calls.append((op, key))
        if op == "get":
            if self.fail_get:
                raise httpx.ConnectError("kv unreachable", request=request)
            return httpx.Response(200, json={"result": self.data.get(key)})
        if op == "set":
            if self.fail_set:
                return httpx.Response(500, json={"error": "write refused"})
            self.data[key] = request.content.decode()
            self.last_set_params = dict(request.url.params)
            return httpx.Response(200, json={"result": "OK"})
        return httpx.Response(404, json={"error": "unknown command"})

    def put_json(self, key: str, value) -> None:
        self.data[key] = json.dumps(value)

    def ops(self, op: str) -> list[str]:
        return [k for o, k in self.calls if o == op]


@pytest.fixture
def fake_kv() -> FakeKV:
    return FakeKV()


@pytest.fixture
def kv_store(fake_kv) -> KVStore:
    client = httpx.AsyncClient(
        transport=httpx.MockTransport(fake_kv.handler),
        base_url="https://kv.test",
    )
    return KVStore("https://kv.test", "test-token", client=client)


@pytest.fixture
def clock():
    return lambda: NOW_MS


@pytest.fixture
def settings() -> Settings:
    return Settings(
        api_key="test-gemini-key",
        kv_url="https://kv.test",
        kv_token="test-token",
        course_id="algo101",
        history_window=6,
        request_deadline_seconds=0.5,
    )


@pytest.fixture
def provision_ok(mocker):
    """Async provisioning function returning a cache valid for one hour."""
    return mocker.AsyncMock(return_value=ProvisionedContext(
        name="cachedContents/fresh", expires_at_ms=NOW_MS + 3_600_000,
    ))


@pytest.fixture
def sample_messages() -> list[dict]:
    return [
        {"role": "model", "text": "Welcome! Ask me anything about the course."},
        {"role": "user", "text": "What is a binary heap?"},
        {"role": "model", "text": "A complete binary tree with the heap property."},
        {"role": "user", "text": "How do I insert into it?"},
    ]
