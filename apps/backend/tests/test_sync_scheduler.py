"""Tests for the periodic sync scheduler."""

import asyncio

import pytest

from case_portal.config import settings
from case_portal.services import sync_scheduler
from case_portal.services.sync_scheduler import run_scheduled_syncs, run_sync_scheduler
from tests.factories import ApplicationFactory, DocumentFactory


@pytest.mark.asyncio
async def test_scheduled_pass_runs_each_system(db, session_maker, sync_env, filenet):
    application = await ApplicationFactory.create_async(db)
    await DocumentFactory.create_async(db, application.id)
    await db.commit()

    outcomes = await run_scheduled_syncs(sync_env, ["filenet-main", "alfresco"], session_maker)

    assert outcomes == {"filenet-main": True, "alfresco": False}
    assert [r.method for r in filenet.requests] == ["POST", "GET"]


@pytest.mark.asyncio
async def test_scheduler_loops_until_stopped(monkeypatch, sync_env):
    passes: list[list[str]] = []

    async def fake_pass(env, systems, sessionmaker=None):
        passes.append(systems)
        if len(passes) == 2:
            stop_event.set()
        return {}

    stop_event = asyncio.Event()
    monkeypatch.setattr(sync_scheduler, "run_scheduled_syncs", fake_pass)
    monkeypatch.setattr(settings, "sync_scheduler_interval_seconds", 0.01)

    await asyncio.wait_for(run_sync_scheduler(sync_env, stop_event), timeout=2)

    assert passes == [["filenet-main"], ["filenet-main"]]


@pytest.mark.asyncio
async def test_scheduler_survives_failed_pass(monkeypatch, sync_env):
    calls = {"count": 0}
    stop_event = asyncio.Event()

    async def failing_pass(env, systems, sessionmaker=None):
        calls["count"] += 1
        if calls["count"] >= 2:
            stop_event.set()
        raise RuntimeError("database unavailable")

    monkeypatch.setattr(sync_scheduler, "run_scheduled_syncs", failing_pass)
    monkeypatch.setattr(settings, "sync_scheduler_interval_seconds", 0.01)

    await asyncio.wait_for(run_sync_scheduler(sync_env, stop_event), timeout=2)

    assert calls["count"] == 2
