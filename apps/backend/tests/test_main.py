"""Tests for the FastAPI application wiring."""

import pytest

from case_portal import __version__
from case_portal.main import app


def test_app_creation():
    assert app.title == "Case Portal API"
    assert app.version == __version__


@pytest.mark.asyncio
async def test_health_endpoint(client):
    response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["checks"] == {"database": True}


@pytest.mark.asyncio
async def test_request_id_is_echoed(client):
    response = await client.get("/health", headers={"X-Request-ID": "req-123"})

    assert response.headers["X-Request-ID"] == "req-123"


@pytest.mark.asyncio
async def test_openapi_lists_sync_and_application_routes(client):
    response = await client.get("/openapi.json")

    paths = response.json()["paths"]
    assert "/sync/{system}" in paths
    assert "/applications/{application_id}/transition" in paths
