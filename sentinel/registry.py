"""
Source registry: configured content sources and their rolling health.
"""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Union

from pydantic import ValidationError as PydanticValidationError

from .errors import SourceNotFound, ValidationError
from .models import Source, SourceCategory, SourcePriority, SourceType, utcnow
from .normalize import canonicalize_url

logger = logging.getLogger(__name__)


@dataclass
class SourceFilter:
    """Optional criteria for :meth:`SourceRegistry.list`."""

    enabled: Optional[bool] = None
    type: Optional[SourceType] = None
    category: Optional[SourceCategory] = None
    priority: Optional[SourcePriority] = None

    def matches(self, source: Source) -> bool:
        if self.enabled is not None and source.enabled != self.enabled:
            return False
        if self.type is not None and source.type != self.type:
            return False
        if self.category is not None and source.category != self.category:
            return False
        if self.priority is not None and source.priority != self.priority:
            return False
        return True


def _validate(source: Union[Source, Mapping[str, Any]]) -> Source:
    try:
        if isinstance(source, Source):
            # Re-validate: assignment after construction bypasses validators
            data = source.model_dump(exclude_unset=True)
            data["id"] = source.id
            return Source.model_validate(data)
        return Source.model_validate(dict(source))
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid source: {e}") from e


class SourceRegistry:
    """Owns every Source. All reads hand out copies, all writes are locked."""

    def __init__(
        self,
        sources: Iterable[Union[Source, Mapping[str, Any]]] = (),
        *,
        smoothing: float = 0.2,
        clock: Callable[[], datetime] = utcnow,
    ):
        self._sources: Dict[str, Source] = {}
        self._lock = threading.RLock()
        self._smoothing = smoothing
        self._clock = clock
        for source in sources:
            self.upsert(source)

    def __len__(self) -> int:
        with self._lock:
            return len(self._sources)

    def list(self, filter: Optional[SourceFilter] = None) -> List[Source]:
        """Sources matching ``filter``, high priority first."""
        with self._lock:
            selected = [s for s in self._sources.values() if filter is None or filter.matches(s)]
        selected.sort(key=lambda s: (s.priority.rank, s.name.lower()))
        return [s.model_copy(deep=True) for s in selected]

    def enabled(self) -> List[Source]:
        return self.list(SourceFilter(enabled=True))

    def get(self, source_id: str) -> Source:
        with self._lock:
            source = self._sources.get(source_id)
            if source is None:
                raise SourceNotFound(f"Unknown source: {source_id}")
            return source.model_copy(deep=True)

    def upsert(self, source: Union[Source, Mapping[str, Any]]) -> Source:
        """Create or replace a source. Health stats of an existing source survive."""
        validated = _validate(source)
        with self._lock:
            existing = self._sources.get(validated.id)
            if existing is not None and "health" not in validated.model_fields_set:
                validated = validated.model_copy(update={"health": existing.health})
            self._sources[validated.id] = validated
            action = "Updated" if existing is not None else "Added"
        logger.info(f"{action} source {validated.name} ({validated.type.value}, {validated.priority.value})")
        return validated.model_copy(deep=True)

    def replace_all(self, sources: Iterable[Union[Source, Mapping[str, Any]]]) -> List[Source]:
        """Swap the whole source list atomically; nothing changes on a validation error."""
        validated = [_validate(s) for s in sources]
        with self._lock:
            previous = self._sources
            self._sources = {}
            for source in validated:
                old = previous.get(source.id)
                if old is not None and "health" not in source.model_fields_set:
                    source = source.model_copy(update={"health": old.health})
                self._sources[source.id] = source
        logger.info(f"Source list replaced ({len(validated)} sources)")
        return self.list()

    def set_enabled(self, source_id: str, enabled: bool) -> Source:
        with self._lock:
            source = self._require(source_id)
            updated = source.model_copy(update={"enabled": enabled})
            self._sources[source_id] = updated
        logger.info(f"Source {updated.name} {'enabled' if enabled else 'disabled'}")
        return updated.model_copy(deep=True)

    def delete(self, source_id: str) -> None:
        with self._lock:
            source = self._require(source_id)
            del self._sources[source_id]
        logger.info(f"Deleted source {source.name}")

    def record_health(
        self,
        source_id: str,
        *,
        success: bool,
        latency_ms: Optional[float] = None,
        error: Optional[str] = None,
    ) -> Source:
        """Fold one fetch outcome into the source's rolling stats."""
        now = self._clock()
        alpha = self._smoothing
        with self._lock:
            source = self._require(source_id)
            health = source.health.model_copy()
            health.last_checked = now
            health.success_rate = alpha * (1.0 if success else 0.0) + (1 - alpha) * health.success_rate
            if latency_ms is not None:
                if health.avg_latency_ms is None:
                    health.avg_latency_ms = latency_ms
                else:
                    health.avg_latency_ms = alpha * latency_ms + (1 - alpha) * health.avg_latency_ms
            if success:
                health.last_success = now
                health.last_error = None
            else:
                health.error_count += 1
                health.last_error = error or "unknown error"
            updated = source.model_copy(update={"health": health})
            self._sources[source_id] = updated
        return updated.model_copy(deep=True)

    def duplicate_urls(self) -> Dict[str, List[str]]:
        """Canonical URLs configured on more than one source -> source names."""
        by_url: Dict[str, List[str]] = defaultdict(list)
        with self._lock:
            for source in self._sources.values():
                by_url[canonicalize_url(source.url)].append(source.name)
        return {url: names for url, names in by_url.items() if len(names) > 1}

    def _require(self, source_id: str) -> Source:
        source = self._sources.get(source_id)
        if source is None:
            raise SourceNotFound(f"Unknown source: {source_id}")
        return source
