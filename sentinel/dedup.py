"""
Bounded store of previously-seen content fingerprints.
"""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Iterable, Optional

from .models import utcnow

logger = logging.getLogger(__name__)


@dataclass
class DedupEntry:
    first_seen: datetime
    last_seen: datetime


class DedupCache:
    """Fingerprint cache with a sliding TTL and a hard capacity.

    Entries live for ``retention`` after they were last remembered. Once
    ``capacity`` is exceeded the least recently remembered entries are
    dropped first, independent of their age.
    """

    def __init__(
        self,
        retention: timedelta = timedelta(hours=48),
        capacity: int = 20_000,
        clock: Callable[[], datetime] = utcnow,
    ):
        if capacity < 1:
            raise ValueError("capacity must be >= 1")
        self.retention = retention
        self.capacity = capacity
        self._clock = clock
        self._entries: "OrderedDict[str, DedupEntry]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        with self._lock:
            return len(self._entries)

    def __contains__(self, fp: str) -> bool:
        return self.seen(fp)

    def seen(self, fp: str) -> bool:
        """True if ``fp`` was remembered and is still inside the retention window."""
        now = self._clock()
        with self._lock:
            entry = self._entries.get(fp)
            if entry is None:
                return False
            if now - entry.last_seen > self.retention:
                del self._entries[fp]
                return False
            return True

    def remember(self, fp: str, ts: Optional[datetime] = None) -> None:
        ts = ts or self._clock()
        with self._lock:
            entry = self._entries.get(fp)
            if entry is None:
                self._entries[fp] = DedupEntry(first_seen=ts, last_seen=ts)
            else:
                entry.last_seen = max(entry.last_seen, ts)
                self._entries.move_to_end(fp)
            self._evict_locked(self._clock())

    def warm(self, fingerprints: Iterable[tuple]) -> int:
        """Preload ``(fingerprint, seen_at)`` pairs, e.g. from the draft store."""
        count = 0
        for fp, ts in sorted(fingerprints, key=lambda pair: pair[1]):
            self.remember(fp, ts)
            count += 1
        logger.info(f"Dedup cache warmed with {count} fingerprints")
        return count

    def evict(self, now: Optional[datetime] = None) -> int:
        """Drop expired entries and enforce capacity. Returns entries removed."""
        with self._lock:
            return self._evict_locked(now or self._clock())

    def clear(self) -> None:
        with self._lock:
            self._entries.clear()

    def _evict_locked(self, now: datetime) -> int:
        removed = 0
        cutoff = now - self.retention
        # Ordered by last remember, so expired entries sit at the front
        while self._entries:
            fp, entry = next(iter(self._entries.items()))
            if entry.last_seen >= cutoff:
                break
            del self._entries[fp]
            removed += 1
        while len(self._entries) > self.capacity:
            self._entries.popitem(last=False)
            removed += 1
        return removed
