"""
Tests for health, readiness and metrics endpoints.
"""
import pytest
from fastapi.testclient import TestClient
from unittest.mock import MagicMock, AsyncMock, patch

from posting_queue import __version__
from posting_queue.api.main import app


@pytest.fixture
def client(service):
    """Create test client backed by the in-memory posting service."""
    app.state.storage_backend = "memory"
    app.state.posting_service = service
    app.state.sweeper = None
    return TestClient(app)


class TestHealthEndpoint:
    """Tests for /health endpoint."""

    def test_health_returns_200(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "posting-queue"
        assert data["version"] == __version__

    def test_root_lists_endpoints(self, client):
        data = client.get("/").json()

        assert data["endpoints"]["posting_queue"] == "/integrations/posting-queue"


class TestReadinessEndpoint:
    """Tests for /ready endpoint."""

    def test_ready_with_memory_backend(self, client):
        response = client.get("/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready", "storage": "memory", "sweeper": "stopped"}

    def test_ready_pings_mongodb(self, client):
        app.state.storage_backend = "mongodb"
        mock_client = MagicMock()
        mock_client.admin.command = AsyncMock(return_value={"ok": 1})

        with patch("posting_queue.api.routes.health.db_manager") as mock_db:
            mock_db.client = mock_client

            response = client.get("/ready")

        assert response.status_code == 200
        assert response.json()["storage"] == "mongodb"
        mock_client.admin.command.assert_awaited_once_with("ping")

    def test_not_ready_when_mongodb_unreachable(self, client):
        app.state.storage_backend = "mongodb"
        mock_client = MagicMock()
        mock_client.admin.command = AsyncMock(side_effect=Exception("Connection refused"))

        with patch("posting_queue.api.routes.health.db_manager") as mock_db:
            mock_db.client = mock_client

            response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["status"] == "not_ready"
        assert "Connection refused" in response.json()["reason"]

    def test_not_ready_without_service(self, client):
        app.state.posting_service = None

        response = client.get("/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "Posting service not initialized"


class TestMetricsEndpoints:
    """Tests for /metrics and /metrics/queue."""

    def test_prometheus_export(self, client):
        client.get("/health")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert 'pq_queue_items{status="PENDING"} 0' in response.text
        assert 'pq_requests_total{endpoint="/health",status="200"} 1.0' in response.text

    def test_queue_counts(self, client):
        response = client.get("/metrics/queue")

        assert response.status_code == 200
        assert response.json() == {
            "status": "ok",
            "metrics": {"PENDING": 0, "PROCESSING": 0, "RETRYING": 0, "SUCCESS": 0, "FAILED": 0},
        }

    def test_metrics_error_returns_500(self, client):
        broken = MagicMock()
        broken.queue_depth = AsyncMock(side_effect=RuntimeError("store down"))
        app.state.posting_service = broken

        response = client.get("/metrics/queue")

        assert response.status_code == 500
        assert response.json()["error"] == "store down"
