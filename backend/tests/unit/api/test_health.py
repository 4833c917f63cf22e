"""Unit tests for the health check endpoint."""

from fastapi.testclient import TestClient

from seatsync.main import app


def test_health_check():
    """Test the health check endpoint returns status as healthy."""
    client = TestClient(app)

    response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "healthy"}


def test_health_check_trailing_slash():
    """The trailing slash variant answers directly instead of redirecting."""
    client = TestClient(app)

    response = client.get("/health/", follow_redirects=False)

    assert response.status_code == 200
