"""Tests for the service facade: persistence of runtime state, sources and lifecycle."""

from __future__ import annotations

import pytest

from sentinel.errors import SourceNotFound, ValidationError
from sentinel.models import SchedulerStatus
from sentinel.registry import SourceFilter
from sentinel.runner import TICK_JOB_ID

from conftest import FakeNotifier, make_candidate


async def test_sources_seeded_from_config_then_loaded_from_store(make_service) -> None:
    service = await make_service()
    assert [s.id for s in await service.store.load_sources()] == ["s1", "s2"]

    await service.set_source_enabled("s2", False)
    await service.upsert_source({"id": "s3", "name": "S3", "url": "https://s3.example.com/rss", "priority": "high"})

    reopened = await make_service()
    assert {s.id for s in reopened.sources(SourceFilter(enabled=True))} == {"s1", "s3"}


async def test_source_mutations_validate(make_service) -> None:
    service = await make_service()
    with pytest.raises(ValidationError):
        await service.upsert_source({"id": "bad", "name": "Bad", "url": "not-a-url"})
    with pytest.raises(SourceNotFound):
        await service.delete_source("missing")
    await service.delete_source("s2")
    assert [s.id for s in service.sources()] == ["s1"]
    replaced = await service.replace_sources([{"id": "x", "name": "X", "url": "https://x.example.com/rss"}])
    assert [s.id for s in replaced] == ["x"]


async def test_runtime_settings_survive_restart(make_service) -> None:
    service = await make_service()
    await service.set_enabled(True)
    await service.set_frequency_ms(600_000)
    await service.set_max_per_run(5)
    await service.set_auto_persist(False)
    with pytest.raises(ValidationError):
        await service.set_frequency_ms(-1)

    reopened = await make_service()
    runtime = reopened.runtime()
    assert runtime["enabled"] is True
    assert runtime["frequencyMs"] == 600_000
    assert runtime["maxPerRun"] == 5
    assert runtime["autoPersist"] is False
    assert reopened.runner.status() == SchedulerStatus.IDLE


async def test_stop_disables_and_persists(make_service) -> None:
    service = await make_service()
    await service.set_enabled(True)
    await service.stop()
    reopened = await make_service()
    assert reopened.runtime()["status"] == "disabled"


async def test_history_and_dedup_restored_on_open(make_service) -> None:
    service = await make_service({"s1": [make_candidate("s1")]})
    record = await service.run_once()

    reopened = await make_service({"s1": [make_candidate("s1")]})
    assert [r.id for r in reopened.recent_runs()] == [record.id]
    assert [r.id for r in await reopened.run_history()] == [record.id]
    assert len(reopened.dedup) == 1
    assert reopened.metrics().total_created == 1

    again = await reopened.run_once()
    assert again.duplicates_skipped == 1


async def test_config_and_metrics_views(make_service) -> None:
    service = await make_service({"s1": [make_candidate("s1")]})
    await service.run_once()

    config = service.config()
    assert config["enabled"] is False
    assert config["sources"][0]["id"] == "s1"
    assert "priority" in config["sources"][0]

    metrics = service.metrics()
    assert metrics.sources_count == 2
    assert metrics.cache_size == 1
    assert metrics.total_processed == 1
    assert [e for e in service.recent_logs() if "Draft created" in e.message]


async def test_start_registers_timers(make_service) -> None:
    notifier = FakeNotifier()
    service = await make_service(notifier=notifier, auto_publish={"enabled": True, "cron": "0 * * * *"})
    await service.start()
    try:
        assert service.scheduler.running
        assert set(service.scheduler.list_jobs()) == {TICK_JOB_ID, "sentinel-auto-publish"}
    finally:
        await service.close()
    assert not service.scheduler.running
    assert notifier.closed
