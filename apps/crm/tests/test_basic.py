"""
Basic tests to verify infrastructure is working.
"""

from sqlalchemy.orm import Session
from fastapi.testclient import TestClient

from ..core.settings import settings
from ..db.models import User


def test_database_connection(test_db: Session):
    """Tables are created by the conftest fixture."""
    assert test_db is not None
    assert test_db.query(User).count() == 0


def test_health_endpoint(client: TestClient):
    response = client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == settings.APP_VERSION


def test_detailed_health_endpoint(client: TestClient):
    response = client.get("/health/detailed")
    assert response.status_code == 200
    data = response.json()
    assert data["components"]["database"] == "healthy"
    assert data["components"]["integrations"]["microsoft_graph"] in ("configured", "not configured")


def test_root_endpoint(client: TestClient):
    response = client.get("/")
    assert response.status_code == 200
    data = response.json()
    assert data["service"] == settings.APP_NAME
    assert data["status"] == "operational"


def test_request_id_is_echoed(client: TestClient):
    response = client.get("/health", headers={"X-Request-ID": "abc-123"})
    assert response.headers["X-Request-ID"] == "abc-123"


def test_validation_error_envelope(client: TestClient, auth_headers: dict):
    response = client.post("/api/v1/leads", json={"company_name": ""}, headers=auth_headers)
    assert response.status_code == 422
    body = response.json()
    assert body["status"] == "error"
    assert body["message"] == "Validation failed"
    assert body["details"]
