"""
Best-effort notification fan-out as an explicit, retryable task queue.

Publishing enqueues a task and moves on; a worker delivers it through the
configured Notifier. A failed delivery comes back as a NotificationResult,
is retried a bounded number of times and then parked in a dead-letter ring.
Nothing here can revert a publish.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Awaitable, Callable, List, Optional

from .interfaces import Notifier
from .models import Draft, NotificationResult, utcnow
from .telemetry import RingBuffer

logger = logging.getLogger(__name__)

# Failed deliveries go to their own logger so operators can route them separately
failure_logger = logging.getLogger("sentinel.notifications.failures")


@dataclass
class NotificationTask:
    draft: Draft
    attempts: int = 0
    last_error: Optional[str] = None
    enqueued_at: datetime = field(default_factory=utcnow)


class NotificationFailureHandler:
    """Receives every failed delivery attempt."""

    def __init__(self, dead_letters: RingBuffer[NotificationTask]):
        self.dead_letters = dead_letters

    def attempt_failed(self, task: NotificationTask, result: NotificationResult, will_retry: bool) -> None:
        failure_logger.warning(
            f"Notification for '{task.draft.title.en[:60]}' failed "
            f"(attempt {task.attempts}): {result.error}" + ("; will retry" if will_retry else "")
        )
        if not will_retry:
            self.dead_letters.append(task)
            failure_logger.error(f"Notification for draft {task.draft.id} dead-lettered after {task.attempts} attempts")


class NotificationQueue:
    """asyncio queue with one delivery worker."""

    def __init__(
        self,
        notifier: Optional[Notifier],
        *,
        max_attempts: int = 3,
        retry_delay_s: float = 30.0,
        dead_letter_capacity: int = 100,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.notifier = notifier
        self.max_attempts = max_attempts
        self.retry_delay_s = retry_delay_s
        self._sleep = sleep
        self._queue: "asyncio.Queue[NotificationTask]" = asyncio.Queue()
        self._worker: Optional[asyncio.Task] = None
        self._retry_tasks: set = set()
        self.dead_letters: RingBuffer[NotificationTask] = RingBuffer(dead_letter_capacity)
        self.failures = NotificationFailureHandler(self.dead_letters)
        self.delivered: RingBuffer[NotificationResult] = RingBuffer(dead_letter_capacity)

    @property
    def enabled(self) -> bool:
        return self.notifier is not None

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def enqueue(self, draft: Draft) -> bool:
        """Queue an announcement for ``draft``; False when no channel is configured."""
        if self.notifier is None:
            return False
        self._queue.put_nowait(NotificationTask(draft=draft))
        return True

    async def start(self) -> None:
        if self._worker is None or self._worker.done():
            self._worker = asyncio.create_task(self._run(), name="sentinel-notifications")
            logger.info(f"Notification worker started ({self.notifier.name if self.notifier else 'no channel'})")

    async def stop(self) -> None:
        for task in list(self._retry_tasks):
            task.cancel()
        if self._worker is not None:
            self._worker.cancel()
            try:
                await self._worker
            except asyncio.CancelledError:
                pass
            self._worker = None
        if self.notifier is not None:
            await self.notifier.close()

    async def drain(self) -> List[NotificationResult]:
        """Deliver everything queued right now, inline. Retries are attempted immediately."""
        results = []
        while not self._queue.empty():
            task = self._queue.get_nowait()
            results.append(await self._deliver(task, requeue=False))
            self._queue.task_done()
        return results

    # ------------------------------------------------------------------- #
    async def _run(self) -> None:
        while True:
            task = await self._queue.get()
            try:
                await self._deliver(task, requeue=True)
            except Exception:
                logger.exception("Notification worker error")
            finally:
                self._queue.task_done()

    async def _deliver(self, task: NotificationTask, *, requeue: bool) -> NotificationResult:
        while True:
            task.attempts += 1
            result = await self._attempt(task)
            if result.ok:
                self.delivered.append(result)
                logger.info(f"Notification sent for '{task.draft.title.en[:60]}'")
                return result

            task.last_error = result.error
            will_retry = task.attempts < self.max_attempts
            self.failures.attempt_failed(task, result, will_retry)
            if not will_retry:
                return result
            if requeue:
                self._schedule_retry(task)
                return result

    async def _attempt(self, task: NotificationTask) -> NotificationResult:
        try:
            return await self.notifier.notify(task.draft)
        except Exception as e:
            # Notifiers should return failures; a raise is folded into one
            return NotificationResult.failed(f"{type(e).__name__}: {e}")

    def _schedule_retry(self, task: NotificationTask) -> None:
        async def _later() -> None:
            await self._sleep(self.retry_delay_s)
            self._queue.put_nowait(task)

        retry = asyncio.create_task(_later())
        self._retry_tasks.add(retry)
        retry.add_done_callback(self._retry_tasks.discard)
