"""
Tests for Main Application.

Tests root endpoints, middleware headers and exception rendering.
"""

from unittest.mock import AsyncMock

from sqlalchemy.exc import OperationalError

from openstream.config import settings


class TestRootEndpoints:
    """Tests for / and /metrics."""

    def test_root(self, client):
        response = client.get("/")

        assert response.status_code == 200
        assert response.json() == {
            "service": settings.api_title,
            "version": settings.api_version,
            "status": "running",
        }

    def test_metrics_prometheus_format(self, client):
        client.get("/")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "openstream_http_requests_total" in response.text


class TestRequestIdMiddleware:
    """Tests for X-Request-ID propagation."""

    def test_generated_when_absent(self, client):
        response = client.get("/")
        assert response.headers["X-Request-ID"]

    def test_echoes_incoming(self, client):
        response = client.get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"


class TestExceptionHandlers:
    """Tests for error response shapes."""

    def test_unauthorized_shape(self, client):
        response = client.get("/api/activity-logs")

        assert response.status_code == 401
        assert response.json() == {"error": "Unauthorized"}

    def test_validation_error_is_400(self, client):
        response = client.post("/api/access-codes", json={"action": "explode"})

        assert response.status_code == 400
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Invalid request"
        assert body["details"]

    def test_database_error_is_500(self, client, db_session, admin_headers):
        db_session.execute = AsyncMock(
            side_effect=OperationalError("SELECT", {}, Exception("connection reset"))
        )

        response = client.get("/api/access-codes?action=admin", headers=admin_headers)

        assert response.status_code == 500
        body = response.json()
        assert body["success"] is False
        assert body["error"] == "Internal server error"
        assert "connection reset" in body["details"]
