"""Unit tests for health endpoints."""

from fastapi.testclient import TestClient

from order_tagger.config import Settings, get_settings


def test_health_check(client: TestClient) -> None:
    """Test basic health check returns healthy status."""
    response = client.get("/api/v1/health")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data
    assert data["environment"] == "test"
    assert data["dependencies"]["shopify"] == "configured"
    assert data["dependencies"]["shopify_api_version"] == "2023-07"


def test_liveness_check(client: TestClient) -> None:
    """Test liveness check returns alive status."""
    response = client.get("/api/v1/health/live")
    assert response.status_code == 200

    data = response.json()
    assert data["status"] == "alive"


def test_readiness_check(client: TestClient) -> None:
    """Test readiness check reports configured credentials."""
    response = client.get("/api/v1/health/ready")
    assert response.status_code == 200

    data = response.json()
    assert data["ready"] is True
    assert data["checks"] == {"shop": True, "access_token": True}


def test_readiness_check_without_token(app, client: TestClient) -> None:
    """A missing access token makes the service not ready."""
    app.dependency_overrides[get_settings] = lambda: Settings(_env_file=None, shop="test-shop", access_token="")

    data = client.get("/api/v1/health/ready").json()
    assert data["ready"] is False
    assert data["checks"]["access_token"] is False
