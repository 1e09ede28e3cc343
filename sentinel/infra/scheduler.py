"""
Scheduler infrastructure for running periodic tasks.
"""

import logging
from typing import Any, Callable, Dict, Optional

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.interval import IntervalTrigger
from croniter import croniter


logger = logging.getLogger(__name__)


def validate_cron_expression(cron_expression: str) -> bool:
    """Validate a 5-field cron expression using croniter."""
    if len(cron_expression.split()) != 5:
        return False
    return croniter.is_valid(cron_expression)


class JobScheduler:
    """Async timer wrapper around APScheduler.

    Jobs live in the in-memory store only: the run scheduler and the
    auto-publish engine re-register their jobs on every start.
    """

    def __init__(self, timezone: str = "UTC"):
        job_defaults = {
            "coalesce": True,
            "max_instances": 1,
            "misfire_grace_time": 60,
        }
        self._scheduler = AsyncIOScheduler(job_defaults=job_defaults, timezone=timezone)
        self._started = False

    @property
    def running(self) -> bool:
        return self._started

    async def start(self) -> None:
        """Start the scheduler (needs a running event loop)."""
        if not self._started:
            self._scheduler.start()
            self._started = True
            logger.info("Scheduler started")

    async def stop(self) -> None:
        """Stop the scheduler."""
        if self._started:
            self._scheduler.shutdown(wait=False)
            self._started = False
            logger.info("Scheduler stopped")

    def add_interval_job(
        self,
        func: Callable,
        seconds: Optional[int] = None,
        minutes: Optional[int] = None,
        hours: Optional[int] = None,
        job_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Add a job that runs at regular intervals."""
        trigger_kwargs = {}
        if seconds is not None:
            trigger_kwargs["seconds"] = seconds
        if minutes is not None:
            trigger_kwargs["minutes"] = minutes
        if hours is not None:
            trigger_kwargs["hours"] = hours

        if not trigger_kwargs:
            raise ValueError("At least one of seconds, minutes, or hours must be specified")

        self._scheduler.add_job(
            func,
            trigger=IntervalTrigger(**trigger_kwargs),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Added interval job: {job_id or func.__name__}")

    def add_cron_job(
        self,
        func: Callable,
        cron_expression: str,
        job_id: Optional[str] = None,
        **kwargs,
    ) -> None:
        """Add a job that runs on a cron schedule (minute hour day month day_of_week)."""
        if not validate_cron_expression(cron_expression):
            raise ValueError(f"Invalid cron expression: {cron_expression}")

        self._scheduler.add_job(
            func,
            trigger=CronTrigger.from_crontab(cron_expression, timezone=self._scheduler.timezone),
            id=job_id,
            replace_existing=True,
            **kwargs,
        )
        logger.info(f"Added cron job: {job_id or func.__name__} ({cron_expression})")

    def remove_job(self, job_id: str) -> None:
        """Remove a job by ID; unknown ids are ignored."""
        try:
            self._scheduler.remove_job(job_id)
        except JobLookupError:
            return
        logger.info(f"Removed job: {job_id}")

    def has_job(self, job_id: str) -> bool:
        return self._scheduler.get_job(job_id) is not None

    def list_jobs(self) -> Dict[str, Any]:
        """List all scheduled jobs."""
        jobs = {}
        for job in self._scheduler.get_jobs():
            jobs[job.id] = {
                "name": job.name,
                "next_run": getattr(job, "next_run_time", None),
                "trigger": str(job.trigger),
            }
        return jobs
