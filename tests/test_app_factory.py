"""Tests for app factory and role-based routing."""

from fastapi.testclient import TestClient

from convoy.api.factory import create_app

from tests.helpers import PHONE_A


class TestPublicRole:
    """Tests for APP_ROLE=public."""

    def test_health_available(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert response.status_code == 200

    def test_webhook_mounted(self, client):
        response = client.get("/webhooks/whatsapp")
        assert response.status_code == 400

    def test_internal_not_mounted(self):
        client = TestClient(create_app(role="public"))
        assert client.get("/internal/health").status_code == 404
        assert client.get("/internal/tenant-cache").status_code == 404


class TestWorkerRole:
    """Tests for APP_ROLE=worker."""

    def test_internal_mounted(self, worker_client):
        response = worker_client.get("/internal/health")
        assert response.status_code == 200
        assert response.json()["subsystem"] == "internal"

    def test_role_from_env(self, monkeypatch):
        monkeypatch.setenv("APP_ROLE", "worker")
        client = TestClient(create_app())
        assert client.get("/internal/health").status_code == 200

    def test_cache_stats(self, worker_client, engine):
        engine.verify_subscription("subscribe", "unknown")
        engine.directory.resolve_change(PHONE_A, None)

        stats = worker_client.get("/internal/tenant-cache").json()

        assert stats["size"] == 1
        assert f"phone:{PHONE_A}" in stats["entries"]

    def test_invalidate_one_tenant(self, worker_client, engine):
        engine.directory.resolve_change(PHONE_A, None)

        response = worker_client.post("/internal/tenant-cache/invalidate", json={"tenant_id": "tenant-a"})

        assert response.status_code == 200
        assert response.json() == {"removed": 1, "tenant_id": "tenant-a"}
        assert engine.directory.cache.stats()["size"] == 0

    def test_invalidate_all_without_body(self, worker_client, engine):
        engine.directory.resolve_change(PHONE_A, None)

        response = worker_client.post("/internal/tenant-cache/invalidate")

        assert response.json() == {"removed": 1, "tenant_id": None}

    def test_invalidate_rejects_unknown_fields(self, worker_client):
        response = worker_client.post("/internal/tenant-cache/invalidate", json={"tenant": "x"})
        assert response.status_code == 422


class TestCorrelationId:
    """Tests for correlation ID middleware."""

    def test_generates_correlation_id(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health")
        assert len(response.headers["X-Correlation-ID"]) == 36

    def test_preserves_incoming_correlation_id(self):
        client = TestClient(create_app(role="public"))
        response = client.get("/health", headers={"X-Correlation-ID": "test-123"})
        assert response.headers["X-Correlation-ID"] == "test-123"
