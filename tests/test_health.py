# tests/test_health.py
from typing import Any

from fastapi import status


def test_health_check(client: Any) -> None:
    """The health endpoint answers without authentication."""
    response = client.get("/health")
    assert response.status_code == status.HTTP_200_OK
    assert response.json() == {"status": "ok"}


def test_root_describes_the_api(client: Any) -> None:
    response = client.get("/")
    assert response.status_code == status.HTTP_200_OK
    body = response.json()
    assert body["name"].endswith("API")
    assert body["docs"] == "/docs"


def test_unknown_route_uses_the_error_envelope(client: Any) -> None:
    response = client.get("/api/v1/does-not-exist")
    assert response.status_code == status.HTTP_404_NOT_FOUND
    assert response.json()["success"] is False
