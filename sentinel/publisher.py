"""
Auto-publish engine: promotes eligible Sentinel drafts and queues announcements.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import AsyncIterator, Awaitable, Callable, Dict, Optional

from .config import AutoPublishSettings
from .drafts import extract_keywords, extract_tags
from .errors import ConcurrencyConflict, SentinelError
from .infra.scheduler import JobScheduler
from .models import SENTINEL_AUTHOR, AutoPublishResult, Draft, DraftStatus, utcnow
from .notifications import NotificationQueue
from .store import SentinelStore
from .telemetry import Telemetry

logger = logging.getLogger(__name__)

AUTO_PUBLISH_JOB_ID = "sentinel-auto-publish"


class AutoPublishEngine:
    """Single-flight promotion pass over the draft store.

    Eligible drafts are Sentinel-authored, in ``draft`` status, long enough
    and, when ``require_manual_approval`` is set, approved. Publishing and
    notifying are not transactional: the notification is queued after the
    draft is saved and its failure never touches the draft again.
    """

    def __init__(
        self,
        settings: AutoPublishSettings,
        store: SentinelStore,
        notifications: NotificationQueue,
        telemetry: Telemetry,
        *,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.settings = settings
        self.store = store
        self.notifications = notifications
        self.telemetry = telemetry
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self.last_result: Optional[AutoPublishResult] = None
        self.last_run_at: Optional[datetime] = None

    @property
    def running(self) -> bool:
        return self._lock.locked()

    def is_eligible(self, draft: Draft) -> Optional[str]:
        """None when ``draft`` may be published, else the reason it may not."""
        if draft.status != DraftStatus.DRAFT:
            return f"status is {draft.status.value}"
        if draft.author != SENTINEL_AUTHOR:
            return f"authored by {draft.author}"
        if len(draft.content.en) < self.settings.min_content_length:
            return f"content too short ({len(draft.content.en)} < {self.settings.min_content_length})"
        if self.settings.require_manual_approval and not draft.approved:
            return "awaiting manual approval"
        return None

    async def auto_publish_sentinel_drafts(self) -> AutoPublishResult:
        """Promote up to ``max_drafts_per_run`` eligible drafts, oldest first."""
        if self._lock.locked():
            raise ConcurrencyConflict("Auto-publish is already running")
        async with self._lock:
            return await self._publish_pass()

    async def _publish_pass(self) -> AutoPublishResult:
        s = self.settings
        result = AutoPublishResult()
        pending = await self.store.count_drafts(status=DraftStatus.DRAFT)
        self.telemetry.log("info", f"[Auto-Publish] Found {pending} Sentinel drafts")

        async for draft in self._candidates():
            if result.published >= s.max_drafts_per_run:
                break
            result.processed += 1
            reason = self.is_eligible(draft)
            if reason is not None:
                result.skipped += 1
                logger.debug(f"Skipping draft {draft.id}: {reason}")
                continue

            if result.published > 0 and s.delay_between_articles_s > 0:
                await self._sleep(s.delay_between_articles_s)

            try:
                published = await self.store.update_draft(self._promote(draft))
            except SentinelError as e:
                result.errors.append(f"{draft.id}: {e}")
                self.telemetry.log("error", f"[Auto-Publish] Failed to publish '{draft.title.en[:60]}': {e}")
                continue

            result.published += 1
            self.telemetry.log("info", f"[Auto-Publish] Published: {published.title.en}")
            if s.notify:
                self.notifications.enqueue(published)

        self.last_result = result
        self.last_run_at = self._clock()
        self.telemetry.log(
            "info",
            f"[Auto-Publish] Completed: {result.published} published, {result.skipped} skipped "
            f"of {result.processed} processed",
        )
        return result

    async def _candidates(self) -> AsyncIterator[Draft]:
        """Sentinel drafts oldest first, fetched ``scan_limit`` at a time until the table is exhausted."""
        approved = True if self.settings.require_manual_approval else None
        cursor: Optional[Draft] = None
        while True:
            page = await self.store.find_drafts(
                status=DraftStatus.DRAFT,
                author=SENTINEL_AUTHOR,
                approved=approved,
                limit=self.settings.scan_limit,
                oldest_first=True,
                after=cursor,
            )
            for draft in page:
                yield draft
            if len(page) < self.settings.scan_limit:
                return
            cursor = page[-1]

    def _promote(self, draft: Draft) -> Draft:
        update: Dict[str, object] = {"status": DraftStatus.PUBLISHED, "published_at": self._clock()}
        if not draft.tags:
            update["tags"] = extract_tags(draft.content.en, draft.title.en)
        if not draft.keywords:
            update["keywords"] = extract_keywords(draft.content.en, draft.title.en)
        return draft.model_copy(update=update)

    # ------------------------------------------------------------------- #
    # Own schedule

    def schedule(self, scheduler: JobScheduler) -> bool:
        """Register the periodic pass when enabled. Returns whether a job was added."""
        scheduler.remove_job(AUTO_PUBLISH_JOB_ID)
        s = self.settings
        if not s.enabled or not (s.cron or s.interval_minutes):
            return False
        if s.cron:
            scheduler.add_cron_job(self.scheduled_pass, s.cron, job_id=AUTO_PUBLISH_JOB_ID)
        else:
            scheduler.add_interval_job(self.scheduled_pass, minutes=s.interval_minutes, job_id=AUTO_PUBLISH_JOB_ID)
        return True

    async def scheduled_pass(self) -> Optional[AutoPublishResult]:
        if not self.settings.enabled:
            return None
        try:
            return await self.auto_publish_sentinel_drafts()
        except ConcurrencyConflict:
            logger.info("Scheduled auto-publish skipped: previous pass still running")
            return None
        except SentinelError as e:
            self.telemetry.log("error", f"[Auto-Publish] Scheduled pass failed: {e}")
            return None

    async def stats(self) -> Dict[str, object]:
        today = self._clock().replace(hour=0, minute=0, second=0, microsecond=0)
        return {
            "totalDrafts": await self.store.count_drafts(status=DraftStatus.DRAFT),
            "totalPublished": await self.store.count_drafts(status=DraftStatus.PUBLISHED),
            "todayPublished": await self.store.count_drafts(status=DraftStatus.PUBLISHED, published_since=today),
            "telegramEnabled": self.notifications.enabled,
            "lastRunAt": self.last_run_at,
            "lastResult": self.last_result.model_dump(by_alias=True) if self.last_result else None,
        }
