"""
Tests for main application endpoints.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError


@pytest.fixture
def database(app, monkeypatch: pytest.MonkeyPatch) -> MagicMock:
    database = MagicMock()
    database.ping = AsyncMock()
    monkeypatch.setattr(app.state, "database", database, raising=False)
    return database


class TestRoot:
    """Tests for the root endpoint."""

    def test_root(self, client_factory) -> None:
        response = client_factory().get("/")

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "running"
        assert body["service"] == "Product Launch Studio API"

    def test_request_id_echoed(self, client_factory) -> None:
        response = client_factory().get("/", headers={"X-Request-ID": "req-123"})
        assert response.headers["X-Request-ID"] == "req-123"

    def test_request_id_generated(self, client_factory) -> None:
        response = client_factory().get("/")
        assert len(response.headers["X-Request-ID"]) == 32


class TestHealth:
    """Tests for the health endpoint."""

    def test_healthy(self, client_factory, database) -> None:
        response = client_factory().get("/health")

        assert response.status_code == 200
        assert response.json()["database"] == "connected"
        database.ping.assert_awaited_once()

    def test_database_down(self, client_factory, database) -> None:
        database.ping.side_effect = OperationalError("SELECT 1", {}, Exception("refused"))

        response = client_factory().get("/health")

        assert response.status_code == 503


class TestMetrics:
    """Tests for the Prometheus endpoint."""

    def test_exposes_studio_metrics(self, client_factory) -> None:
        client = client_factory()
        client.get("/")

        response = client.get("/metrics")

        assert response.status_code == 200
        assert "studio_http_requests_total" in response.text


class TestValidationErrors:
    """Tests for the request validation handler."""

    def test_sanitized_422(self, client_factory, session_user) -> None:
        response = client_factory(session_user).post(
            "/v1/credits/purchase", json={"credits": "many"}
        )

        assert response.status_code == 422
        detail = response.json()["detail"]
        assert detail[0]["loc"] == ["body", "credits"]
        assert set(detail[0]) <= {"type", "loc", "msg", "ctx"}
