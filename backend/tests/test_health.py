"""Tests for health check endpoints."""

from collections.abc import Iterator

import pytest
from fastapi.testclient import TestClient

from kubejobs_api import __version__


@pytest.fixture
def client(api_app) -> Iterator[TestClient]:
    """Create a test client."""
    with TestClient(api_app) as test_client:
        yield test_client


def test_health_check(client: TestClient) -> None:
    """Test the health endpoint returns healthy status."""
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__
    assert "timestamp" in data
    assert "environment" in data


def test_startup_check(client: TestClient) -> None:
    """Test the startup endpoint returns started status."""
    response = client.get("/startup")
    assert response.status_code == 200
    assert response.json() == {"status": "started"}


def test_readiness_check(client: TestClient) -> None:
    """Test readiness reports the data directory and event watcher."""
    response = client.get("/ready")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "ready"
    assert data["checks"]["metadata_directory"]["status"] == "ok"
    assert data["checks"]["job_event_watcher"] == {"running": False, "enabled": False}
