"""
JSON API fetcher (NewsAPI-style payloads).
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from ..models import Candidate, Source, SourceType
from .base import BaseFetcher

logger = logging.getLogger(__name__)

_LIST_KEYS = ("articles", "items", "data", "results")


def _items(payload: Any) -> List[Dict[str, Any]]:
    if isinstance(payload, list):
        items = payload
    elif isinstance(payload, dict):
        items = next((payload[k] for k in _LIST_KEYS if isinstance(payload.get(k), list)), [])
    else:
        items = []
    return [item for item in items if isinstance(item, dict)]


def _first(item: Dict[str, Any], *keys: str) -> Optional[str]:
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


def _parse_dt(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class ApiFetcher(BaseFetcher):
    """Reads a JSON list of articles, either top-level or under a well-known key."""

    source_type = SourceType.API

    async def fetch(self, source: Source) -> List[Candidate]:
        payload = await self.http.get_json(source.url)
        candidates = []
        for item in _items(payload)[: self.max_items]:
            url = _first(item, "url", "link")
            title = _first(item, "title", "headline")
            if not url or not title:
                continue
            body = " ".join(
                part for part in (_first(item, "description", "summary"), _first(item, "content", "body", "text")) if part
            )
            candidates.append(
                self.normalizer.candidate(
                    source_id=source.id,
                    source_name=source.name,
                    url=url,
                    title=title,
                    body=body,
                    guid=_first(item, "id", "guid") or url,
                    published_at=_parse_dt(_first(item, "publishedAt", "published_at", "date")),
                    image_url=_first(item, "urlToImage", "image", "image_url", "thumbnail"),
                    language=_first(item, "language", "lang") or source.filters.language,
                )
            )
        logger.debug(f"{source.name}: {len(candidates)} API items")
        return candidates
