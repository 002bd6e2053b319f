from __future__ import annotations

from types import SimpleNamespace

import pytest

from poolsync.config import settings
from poolsync.scheduler import IngestionScheduler
from poolsync.services.events import BatchSummary


class DummyScheduler:
    def __init__(self):
        self.jobs = []
        self.started = False

    def add_job(self, func, trigger, id=None, name=None, replace_existing=None):
        self.jobs.append({"id": id, "trigger": trigger, "name": name, "func": func})

    def start(self):
        self.started = True

    def shutdown(self, wait=True):
        self.started = False

    def get_jobs(self):
        return self.jobs


def _scheduler(*, backfill_enabled: bool) -> IngestionScheduler:
    sched = IngestionScheduler()
    sched.scheduler = DummyScheduler()
    sched.backfill = SimpleNamespace(enabled=backfill_enabled, index_once=_no_op)
    return sched


async def _no_op(*_args, **_kwargs):
    return {"status": "idle"}


@pytest.mark.asyncio
async def test_start_registers_reprocess_job_only_by_default(monkeypatch):
    monkeypatch.setattr(settings, "indexer_enabled", False)
    sched = _scheduler(backfill_enabled=True)
    await sched.start()
    assert {job["id"] for job in sched.scheduler.jobs} == {"reprocess_failed"}
    assert sched.scheduler.started is True
    await sched.stop()
    assert sched._running is False
    assert sched.scheduler.started is False


@pytest.mark.asyncio
async def test_start_registers_indexer_when_enabled(monkeypatch):
    monkeypatch.setattr(settings, "indexer_enabled", True)
    sched = _scheduler(backfill_enabled=True)
    await sched.start()
    assert {job["id"] for job in sched.scheduler.jobs} == {"reprocess_failed", "event_indexer"}
    await sched.stop()


@pytest.mark.asyncio
async def test_indexer_needs_rpc(monkeypatch):
    monkeypatch.setattr(settings, "indexer_enabled", True)
    sched = _scheduler(backfill_enabled=False)
    await sched.start()
    assert {job["id"] for job in sched.scheduler.jobs} == {"reprocess_failed"}
    await sched.stop()


@pytest.mark.asyncio
async def test_start_is_idempotent(monkeypatch):
    monkeypatch.setattr(settings, "indexer_enabled", False)
    sched = _scheduler(backfill_enabled=False)
    await sched.start()
    await sched.start()
    assert len(sched.scheduler.jobs) == 1
    await sched.stop()
    await sched.stop()


@pytest.mark.asyncio
async def test_job_failures_are_contained(monkeypatch):
    sched = _scheduler(backfill_enabled=True)

    async def _boom(*_args, **_kwargs):
        raise RuntimeError("rpc exploded")

    monkeypatch.setattr(sched.backfill, "index_once", _boom)
    monkeypatch.setattr(sched.ingestion, "reprocess_failed", _boom)

    await sched._index_loop()
    await sched._reprocess_loop()


@pytest.mark.asyncio
async def test_reprocess_loop_calls_ingestion(monkeypatch):
    sched = _scheduler(backfill_enabled=False)
    calls = {"count": 0}

    async def _reprocess(*_args, **_kwargs):
        calls["count"] += 1
        return BatchSummary(processed=True, status="empty")

    monkeypatch.setattr(sched.ingestion, "reprocess_failed", _reprocess)
    await sched._reprocess_loop()
    assert calls["count"] == 1
