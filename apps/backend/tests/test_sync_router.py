"""Tests for the sync trigger API."""

import pytest

from tests.factories import ApplicationFactory, DocumentFactory


@pytest.mark.asyncio
async def test_push_endpoint_returns_report(client, db):
    application = await ApplicationFactory.create_async(db)
    await DocumentFactory.create_async(db, application.id)
    await db.commit()

    response = await client.post("/sync/filenet-main", json={"action": "push"})

    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["action"] == "push"
    assert body["result"]["successful"] == 1
    assert body["result"]["results"][0]["outcome"] == "synced"


@pytest.mark.asyncio
async def test_dry_run_option_is_honoured(client, db, filenet):
    application = await ApplicationFactory.create_async(db)
    await DocumentFactory.create_async(db, application.id)
    await db.commit()

    response = await client.post(
        "/sync/filenet-main", json={"action": "push", "options": {"dry_run": True}}
    )

    assert response.json()["result"]["dry_run"] == 1
    assert filenet.requests == []


@pytest.mark.asyncio
async def test_status_endpoint(client):
    response = await client.get("/sync/filenet-main/status")

    assert response.status_code == 200
    result = response.json()["result"]
    assert result["system"] == "filenet-main"
    assert result["pending_documents"] == 0
    assert result["recent_runs"] == []


@pytest.mark.asyncio
async def test_unknown_system_is_404(client):
    response = await client.post("/sync/alfresco", json={"action": "pull"})

    assert response.status_code == 404
    body = response.json()
    assert body["success"] is False
    assert body["error"] == "NotFoundError"


@pytest.mark.asyncio
async def test_busy_system_is_409(client, lease):
    token = lease.acquire("filenet-main")
    try:
        response = await client.post("/sync/filenet-main", json={"action": "pull"})
    finally:
        lease.release("filenet-main", token)

    assert response.status_code == 409
    assert response.json()["error"] == "SyncAlreadyRunningError"


@pytest.mark.asyncio
async def test_unreachable_system_is_502(client, filenet):
    filenet.status_code = 503

    response = await client.post("/sync/filenet-main", json={"action": "pull"})

    assert response.status_code == 502
    assert response.json()["error"] == "SyncConnectionError"


@pytest.mark.asyncio
async def test_invalid_options_are_rejected(client):
    response = await client.post(
        "/sync/filenet-main", json={"action": "push", "options": {"max_concurrency": 0}}
    )

    assert response.status_code == 422


@pytest.mark.asyncio
async def test_cancel_endpoint_when_idle(client):
    response = await client.post("/sync/filenet-main/cancel")

    assert response.status_code == 200
    assert response.json() == {"cancelled": False}
