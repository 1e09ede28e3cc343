"""Tests for the log ring buffer, run history and metrics."""

from __future__ import annotations

import logging
from datetime import timedelta

import pytest

from sentinel.models import RunRecord, RunTrigger
from sentinel.telemetry import RingBuffer, Telemetry

from conftest import FakeClock


def run_record(clock: FakeClock, seconds: float = 2.0, **kwargs) -> RunRecord:
    return RunRecord(
        trigger=RunTrigger.SCHEDULED,
        started_at=clock(),
        finished_at=clock() + timedelta(seconds=seconds),
        **kwargs,
    )


def test_ring_buffer_overwrites_oldest() -> None:
    ring = RingBuffer(3)
    for i in range(5):
        ring.append(i)
    assert len(ring) == 3
    assert ring.capacity == 3
    assert ring.snapshot() == [2, 3, 4]
    assert ring.snapshot(2) == [3, 4]
    assert ring.snapshot(0) == []


def test_ring_buffer_rejects_zero_capacity() -> None:
    with pytest.raises(ValueError):
        RingBuffer(0)


def test_log_is_bounded_and_mirrored(clock: FakeClock, caplog: pytest.LogCaptureFixture) -> None:
    telemetry = Telemetry(log_capacity=2, clock=clock)
    with caplog.at_level(logging.INFO, logger="sentinel"):
        telemetry.log("info", "one")
        telemetry.log("WARNING", "two")
        telemetry.log("error", "three")
    entries = telemetry.recent_logs()
    assert [e.message for e in entries] == ["two", "three"]
    assert entries[0].level == "warning"
    assert entries[0].timestamp == clock()
    assert "three" in caplog.text


def test_metrics_aggregate_history(clock: FakeClock) -> None:
    telemetry = Telemetry(history_capacity=2, clock=clock)
    telemetry.record_run(run_record(clock, 2, sources_scanned=2, candidates_fetched=10, drafts_created=1))
    telemetry.record_run(run_record(clock, 4, sources_scanned=2, candidates_fetched=5, drafts_created=2, errors=["x"]))
    telemetry.record_run(run_record(clock, 6, sources_scanned=2, candidates_fetched=1, errors=["y"]))
    clock.advance(seconds=30)

    metrics = telemetry.metrics(sources_count=4, cache_size=7, degraded=True)
    # totals cover every run, the averages only the retained window
    assert metrics.total_processed == 16
    assert metrics.total_created == 3
    assert metrics.average_processing_time == pytest.approx(5.0)
    assert metrics.error_rate == pytest.approx(0.5)
    assert metrics.uptime == pytest.approx(30.0)
    assert metrics.sources_count == 4
    assert metrics.cache_size == 7
    assert metrics.degraded
    assert len(telemetry.recent_runs()) == 2
    assert telemetry.history_capacity == 2


def test_metrics_empty(clock: FakeClock) -> None:
    metrics = Telemetry(clock=clock).metrics()
    assert metrics.average_processing_time == 0.0
    assert metrics.error_rate == 0.0
