"""
Unit tests for MaintenanceJob (periodic expiry, summarization and cleanup).
"""

import asyncio
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest

from assistant_memory.errors import StorageError
from assistant_memory.memory.consent import ConsentRegistry
from assistant_memory.memory.schemas import FactType
from assistant_memory.memory.store import StoreDocument
from assistant_memory.memory.summarizer import MemorySummarizer
from assistant_memory.ops.maintenance import MaintenanceJob
from assistant_memory.persist.json_file import write_json_atomic


def days_ago(n: int) -> str:
    return (datetime.now(timezone.utc) - timedelta(days=n)).isoformat()


@pytest.mark.asyncio
async def test_run_once_sweeps_expired(store, metrics, make_item, read_events):
    items = [
        make_item(key="aufgabe", type="task_hint", value="Steuer", ttl="P1D", created_at=days_ago(10)),
        make_item(),
    ]
    write_json_atomic(store.path, StoreDocument(memories=items).to_storage())
    job = MaintenanceJob(store, metrics=metrics)

    report = await job.run_once()

    assert report.expired == 1
    assert report.error is None
    assert report.finished_at is not None
    assert list(job.history) == [report]
    assert len(await store.list_by_user("u1")) == 1
    assert [e["key"] for e in read_events() if e["type"] == "expire"] == ["aufgabe"]


@pytest.mark.asyncio
async def test_run_once_runs_every_step(store, metrics, tmp_path):
    summarizer = MemorySummarizer(store, metrics, sleep=AsyncMock())
    consent = ConsentRegistry(tmp_path / "consent.json")
    consent.record("u1", "aufgabe", FactType.TASK_HINT, approved=False)
    learning = MagicMock()
    learning.cleanup_old_data.return_value = 3

    job = MaintenanceJob(store, summarizer, consent, learning, metrics, learning_max_age_months=6)
    report = await job.run_once()

    assert report.consent_records_removed == 0
    assert report.learning_events_removed == 3
    learning.cleanup_old_data.assert_called_once_with(6)
    learning.flush.assert_called_once()


@pytest.mark.asyncio
async def test_failure_is_recorded(store, metrics, read_events, monkeypatch):
    monkeypatch.setattr(store, "expire_sweep", AsyncMock(side_effect=StorageError("disk full")))
    job = MaintenanceJob(store, metrics=metrics)

    report = await job.run_once()

    assert report.error == "disk full"
    errors = [e for e in read_events() if e["type"] == "error"]
    assert errors[0]["where"] == "maintenance"


@pytest.mark.asyncio
async def test_start_and_stop(store, metrics):
    job = MaintenanceJob(store, metrics=metrics, interval_seconds=3600)

    job.start()
    assert job.running is True

    for _ in range(100):
        if job.history:
            break
        await asyncio.sleep(0.01)
    assert len(job.history) == 1

    await job.stop()
    assert job.running is False


@pytest.mark.asyncio
async def test_stop_without_start(store):
    await MaintenanceJob(store).stop()


@pytest.mark.asyncio
async def test_history_is_bounded(store):
    job = MaintenanceJob(store, history_limit=2)

    reports = [await job.run_once() for _ in range(3)]

    assert list(job.history) == reports[1:]
