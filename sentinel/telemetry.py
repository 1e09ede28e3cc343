"""
Bounded in-memory telemetry: log ring buffer, run history and metrics.
"""

from __future__ import annotations

import logging
import threading
from collections import deque
from datetime import datetime
from typing import Callable, Deque, Dict, Generic, List, Optional, TypeVar

from .models import LogEntry, MetricsSnapshot, RunRecord, utcnow

logger = logging.getLogger("sentinel")

T = TypeVar("T")

_LEVELS = {
    "debug": logging.DEBUG,
    "info": logging.INFO,
    "warning": logging.WARNING,
    "error": logging.ERROR,
}


class RingBuffer(Generic[T]):
    """Fixed-capacity buffer; appending to a full buffer overwrites the oldest item."""

    def __init__(self, capacity: int):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self._items: Deque[T] = deque(maxlen=capacity)
        self._lock = threading.Lock()

    @property
    def capacity(self) -> int:
        return self._items.maxlen or 0

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def append(self, item: T) -> None:
        with self._lock:
            self._items.append(item)

    def snapshot(self, limit: Optional[int] = None) -> List[T]:
        """Items oldest-first; ``limit`` keeps only the newest ``limit``."""
        with self._lock:
            items = list(self._items)
        if limit is not None:
            items = items[-limit:] if limit > 0 else []
        return items


class Telemetry:
    """Operational telemetry consumed by the admin UI.

    Only the run scheduler and the auto-publish engine write here; everything
    else reads snapshots.
    """

    def __init__(
        self,
        log_capacity: int = 200,
        history_capacity: int = 100,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._clock = clock
        self._started_at = clock()
        self._logs: RingBuffer[LogEntry] = RingBuffer(log_capacity)
        self._runs: RingBuffer[RunRecord] = RingBuffer(history_capacity)
        self._totals_lock = threading.Lock()
        self._total_processed = 0
        self._total_created = 0

    def log(self, level: str, message: str) -> LogEntry:
        """Append a log line and mirror it to the ``sentinel`` logger."""
        level = level.lower()
        entry = LogEntry(timestamp=self._clock(), level=level, message=message)
        logger.log(_LEVELS.get(level, logging.INFO), message)
        self._logs.append(entry)
        return entry

    @property
    def history_capacity(self) -> int:
        return self._runs.capacity

    def record_run(self, record: RunRecord) -> None:
        self._runs.append(record)
        with self._totals_lock:
            self._total_processed += record.candidates_fetched
            self._total_created += record.drafts_created

    def recent_logs(self, limit: Optional[int] = None) -> List[LogEntry]:
        return self._logs.snapshot(limit)

    def recent_runs(self, limit: Optional[int] = None) -> List[RunRecord]:
        return self._runs.snapshot(limit)

    def metrics(
        self,
        *,
        sources_count: int = 0,
        cache_size: int = 0,
        duplicate_source_urls: Optional[Dict[str, List[str]]] = None,
        degraded: bool = False,
    ) -> MetricsSnapshot:
        runs = self._runs.snapshot()
        scanned = sum(r.sources_scanned for r in runs)
        errors = sum(len(r.errors) for r in runs)
        with self._totals_lock:
            total_processed, total_created = self._total_processed, self._total_created
        return MetricsSnapshot(
            total_processed=total_processed,
            total_created=total_created,
            average_processing_time=(sum(r.duration_seconds for r in runs) / len(runs)) if runs else 0.0,
            error_rate=min(1.0, errors / scanned) if scanned else 0.0,
            uptime=(self._clock() - self._started_at).total_seconds(),
            sources_count=sources_count,
            cache_size=cache_size,
            duplicate_source_urls=duplicate_source_urls or {},
            degraded=degraded,
        )
