"""
Rate limiter and backoff controller for the enrichment (AI) API.
"""

from __future__ import annotations

import logging
import threading
from datetime import datetime, timedelta
from typing import Callable, Optional

from pydantic import BaseModel

from .config import RateLimitSettings
from .models import utcnow

logger = logging.getLogger(__name__)


class RateLimitState(BaseModel):
    """Snapshot of the limiter, for telemetry."""

    window_start: datetime
    request_count: int
    max_requests: int
    consecutive_failures: int
    backoff_until: Optional[datetime] = None
    degraded: bool = False


class RateLimiter:
    """Fixed-window request quota plus failure-driven backoff.

    Once ``failure_threshold`` consecutive failures are recorded the limiter
    is *degraded*: callers skip the enrichment call and synthesize instead of
    blocking. After the backoff window expires a single trial request is let through;
    its success clears the degraded state, its failure extends the backoff.
    """

    def __init__(self, settings: Optional[RateLimitSettings] = None, clock: Callable[[], datetime] = utcnow):
        self.settings = settings or RateLimitSettings()
        self._clock = clock
        self._lock = threading.Lock()
        self._window_start = clock()
        self._request_count = 0
        self._consecutive_failures = 0
        self._backoff_until: Optional[datetime] = None

    # ------------------------------------------------------------------- #
    @property
    def consecutive_failures(self) -> int:
        return self._consecutive_failures

    @property
    def backoff_until(self) -> Optional[datetime]:
        return self._backoff_until

    @property
    def degraded(self) -> bool:
        return self._consecutive_failures >= self.settings.failure_threshold

    def allow(self) -> bool:
        """Reserve one request if under quota and not backing off."""
        now = self._clock()
        with self._lock:
            if self._backoff_until is not None and now < self._backoff_until:
                return False
            if now - self._window_start >= timedelta(seconds=self.settings.window_seconds):
                self._window_start = now
                self._request_count = 0
            if self._request_count >= self.settings.max_requests:
                logger.debug("Enrichment quota exhausted for current window")
                return False
            self._request_count += 1
            return True

    def record_success(self) -> None:
        with self._lock:
            if self._consecutive_failures >= self.settings.failure_threshold:
                logger.info("Enrichment API recovered, leaving degraded mode")
            self._consecutive_failures = 0
            self._backoff_until = None

    def record_failure(self, retry_after: Optional[float] = None) -> None:
        now = self._clock()
        with self._lock:
            self._consecutive_failures += 1
            delay = 0.0
            if self._consecutive_failures >= self.settings.failure_threshold:
                delay = self.backoff_seconds(self._consecutive_failures)
            if retry_after is not None:
                delay = max(delay, retry_after)
            if delay > 0:
                self._backoff_until = now + timedelta(seconds=delay)
                logger.warning(
                    f"Enrichment backoff for {delay:.0f}s "
                    f"({self._consecutive_failures} consecutive failures)"
                )

    def backoff_seconds(self, failures: int) -> float:
        """Backoff length after ``failures`` consecutive failures."""
        s = self.settings
        step = max(0, failures - s.failure_threshold)
        if s.backoff_policy == "linear":
            delay = s.backoff_base_seconds * (step + 1)
        else:
            delay = s.backoff_base_seconds * (2 ** step)
        return min(delay, s.backoff_max_seconds)

    def state(self) -> RateLimitState:
        with self._lock:
            return RateLimitState(
                window_start=self._window_start,
                request_count=self._request_count,
                max_requests=self.settings.max_requests,
                consecutive_failures=self._consecutive_failures,
                backoff_until=self._backoff_until,
                degraded=self._consecutive_failures >= self.settings.failure_threshold,
            )
