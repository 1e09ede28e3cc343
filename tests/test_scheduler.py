"""Tests for the APScheduler wrapper."""

from __future__ import annotations

import pytest

from sentinel.infra.scheduler import JobScheduler, validate_cron_expression


async def job() -> None:
    pass


@pytest.mark.parametrize(
    "expression, valid",
    [
        ("*/30 * * * *", True),
        ("0 9 * * 1-5", True),
        ("0 9 * *", False),
        ("0 25 * * *", False),
        ("0 0 9 * * *", False),
    ],
)
def test_validate_cron_expression(expression: str, valid: bool) -> None:
    assert validate_cron_expression(expression) is valid


async def test_jobs_register_and_replace() -> None:
    scheduler = JobScheduler()
    await scheduler.start()
    try:
        scheduler.add_interval_job(job, seconds=15, job_id="tick")
        scheduler.add_interval_job(job, minutes=5, job_id="tick")
        scheduler.add_cron_job(job, "*/30 * * * *", job_id="publish")
        assert scheduler.running
        assert set(scheduler.list_jobs()) == {"tick", "publish"}

        scheduler.remove_job("tick")
        scheduler.remove_job("tick")
        assert not scheduler.has_job("tick")
        assert scheduler.has_job("publish")
    finally:
        await scheduler.stop()
    assert not scheduler.running


def test_invalid_jobs_rejected() -> None:
    scheduler = JobScheduler()
    with pytest.raises(ValueError):
        scheduler.add_interval_job(job, job_id="nothing")
    with pytest.raises(ValueError):
        scheduler.add_cron_job(job, "every day", job_id="bad")
