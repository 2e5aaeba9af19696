"""API tests for /chat, /sync and health endpoints (TestClient, mocked backends)."""

import asyncio
import json

import pytest
from fastapi.testclient import TestClient

from tutor_api.config import Settings
from tutor_api.core.gemini_backend import ProvisionError, ProvisionedContext
from tutor_api.main import create_app


@pytest.fixture
def backend(mocker):
    backend = mocker.MagicMock()
    backend.create_cached_context = mocker.AsyncMock(return_value=ProvisionedContext(
        name="cachedContents/fresh", expires_at_ms=4_102_444_800_000,
    ))
    return backend


@pytest.fixture
def invoker(mocker):
    invoker = mocker.MagicMock()
    invoker.invoke_cached = mocker.AsyncMock(return_value="cached answer")
    invoker.invoke_full = mocker.AsyncMock(return_value="full answer")
    return invoker


@pytest.fixture
def client(settings, kv_store, backend, invoker):
    app = create_app(settings=settings, kv_store=kv_store, backend=backend, invoker=invoker)
    with TestClient(app) as c:
        yield c


class TestChat:

    def test_success(self, client, sample_messages):
        resp = client.post("/chat", json={"messages": sample_messages})
        assert resp.status_code == 200
        assert resp.json() == {"text": "cached answer", "cached": True}

    def test_fallback_not_cached(self, client, backend, sample_messages):
        backend.create_cached_context.side_effect = ProvisionError("unsupported model")
        resp = client.post("/chat", json={"messages": sample_messages})
        assert resp.status_code == 200
        assert resp.json() == {"text": "full answer", "cached": False}

    def test_empty_messages(self, client, fake_kv, invoker):
        resp = client.post("/chat", json={"messages": []})
        assert resp.status_code == 400
        assert resp.json()["status"] == "ERROR"
        assert fake_kv.calls == []
        invoker.invoke_full.assert_not_called()

    @pytest.mark.parametrize("method", ["GET", "PUT", "PATCH", "DELETE"])
    def test_other_methods_not_allowed(self, client, method):
        resp = client.request(method, "/chat")
        assert resp.status_code == 405
        assert resp.json() == {"error": "Method Not Allowed"}

    def test_head_not_allowed(self, client):
        assert client.head("/chat").status_code == 405

    def test_missing_credential(self, kv_store, backend, invoker, sample_messages):
        app = create_app(settings=Settings(), kv_store=kv_store, backend=backend, invoker=invoker)
        with TestClient(app) as c:
            resp = c.post("/chat", json={"messages": sample_messages})
        assert resp.status_code == 500
        assert resp.json()["status"] == "ERROR"

    @pytest.mark.parametrize("body", ["{not json", '{"messages": "hello"}', "[]"])
    def test_missing_credential_checked_before_body(self, kv_store, backend, invoker, body):
        app = create_app(settings=Settings(), kv_store=kv_store, backend=backend, invoker=invoker)
        with TestClient(app) as c:
            resp = c.post("/chat", content=body, headers={"Content-Type": "application/json"})
        assert resp.status_code == 500
        assert resp.json()["status"] == "ERROR"

    def test_malformed_body(self, client, fake_kv):
        resp = client.post("/chat", content="{not json",
                           headers={"Content-Type": "application/json"})
        assert resp.status_code == 422
        assert resp.json()["status"] == "ERROR"
        assert fake_kv.calls == []

    def test_timeout_is_warming_up(self, client, backend, sample_messages):
        async def slow(*args, **kwargs):
            await asyncio.sleep(1)
            return ProvisionedContext(name="cachedContents/slow", expires_at_ms=4_102_444_800_000)

        backend.create_cached_context.side_effect = slow
        resp = client.post("/chat", json={"messages": sample_messages})
        assert resp.status_code == 200
        assert resp.json()["status"] == "WARMING_UP"
        assert "error" in resp.json()

    def test_shutdown_drains_abandoned_pipeline(self, settings, kv_store, fake_kv, backend,
                                                invoker, sample_messages):
        async def slow(*args, **kwargs):
            await asyncio.sleep(0.8)
            return ProvisionedContext(name="cachedContents/late", expires_at_ms=4_102_444_800_000)

        backend.create_cached_context.side_effect = slow
        app = create_app(settings=settings, kv_store=kv_store, backend=backend, invoker=invoker)
        with TestClient(app) as c:
            resp = c.post("/chat", json={"messages": sample_messages})
            assert resp.json()["status"] == "WARMING_UP"

        stored = json.loads(fake_kv.data["algo101_active_cache_info"])
        assert stored["name"] == "cachedContents/late"
        invoker.invoke_cached.assert_awaited_once()


class TestSync:

    def test_get_profiles_empty(self, client):
        resp = client.get("/sync")
        assert resp.status_code == 200
        assert resp.json() == []

    def test_get_config(self, client, fake_kv):
        fake_kv.put_json("algo101_global_config", {"theme": "dark"})
        assert client.get("/sync", params={"type": "config"}).json() == {"theme": "dark"}

    def test_read_error_returns_empty(self, client, fake_kv):
        fake_kv.fail_get = True
        assert client.get("/sync", params={"type": "config"}).json() == {}

    def test_upsert_profile(self, client, fake_kv):
        fake_kv.put_json("algo101_global_profiles", [
            {"id": "1", "name": "Ada", "scores": {"q1": 3}},
            {"id": "2", "name": "Alan"},
        ])

        resp = client.post("/sync", json={"profile": {"id": "1", "name": "Ada", "scores": {"q1": 9}}})
        assert resp.json() == {"success": True}
        client.post("/sync", json={"profile": {"id": "3", "name": "Grace"}})

        stored = json.loads(fake_kv.data["algo101_global_profiles"])
        assert [p["id"] for p in stored] == ["1", "2", "3"]
        assert stored[0]["scores"] == {"q1": 9}

    def test_save_config(self, client, fake_kv):
        resp = client.post("/sync", json={"type": "config", "data": {"deadline": "friday"}})
        assert resp.status_code == 200
        assert json.loads(fake_kv.data["algo101_global_config"]) == {"deadline": "friday"}

    def test_missing_profile(self, client):
        resp = client.post("/sync", json={})
        assert resp.status_code == 400
        assert resp.json() == {"error": "MISSING_PROFILE"}

    def test_write_error(self, client, fake_kv):
        fake_kv.fail_set = True
        resp = client.post("/sync", json={"profile": {"id": "1"}})
        assert resp.status_code == 500
        assert resp.json() == {"error": "SYNC_ERROR"}

    def test_store_disabled(self, backend, invoker):
        app = create_app(settings=Settings(api_key="k"), backend=backend, invoker=invoker)
        with TestClient(app) as c:
            assert c.get("/sync").json() == []
            resp = c.post("/sync", json={"profile": {"id": "1"}})
        assert resp.status_code == 500
        assert resp.json()["error"] == "DB_DISABLED"


class TestHealth:

    def test_health(self, client):
        body = client.get("/health").json()
        assert body["status"] == "healthy"
        assert body["components"] == {"gemini": "ok", "kv_store": "ok"}

    def test_root(self, client):
        assert client.get("/").json() == {"status": "ok", "service": "tutor-api"}
