"""
RSS / Atom feed fetcher.
"""

from __future__ import annotations

import calendar
import logging
from datetime import datetime, timezone
from typing import Any, List, Optional

import feedparser

from ..models import Candidate, Source, SourceType
from .base import BaseFetcher

logger = logging.getLogger(__name__)


def entry_published(entry: Any) -> Optional[datetime]:
    """Publication time of a feedparser entry, UTC."""
    parsed = entry.get("published_parsed") or entry.get("updated_parsed")
    if not parsed:
        return None
    return datetime.fromtimestamp(calendar.timegm(parsed), tz=timezone.utc)


def entry_body(entry: Any) -> str:
    """Longest of content:encoded / summary / description."""
    parts = [c.get("value", "") for c in entry.get("content") or []]
    parts.append(entry.get("summary") or "")
    parts.append(entry.get("description") or "")
    return max(parts, key=len)


def entry_image(entry: Any) -> Optional[str]:
    for media in entry.get("media_content") or []:
        if media.get("url"):
            return media["url"]
    for thumb in entry.get("media_thumbnail") or []:
        if thumb.get("url"):
            return thumb["url"]
    for enclosure in entry.get("enclosures") or []:
        if (enclosure.get("type") or "").startswith("image/") and enclosure.get("href"):
            return enclosure["href"]
    return None


def parse_feed(text: str) -> Any:
    """Parse a feed document; returns None when it is not a feed at all."""
    parsed = feedparser.parse(text)
    if parsed.bozo and not parsed.entries:
        return None
    return parsed


class RssFetcher(BaseFetcher):
    """Downloads a feed with the shared HTTP client and parses it with feedparser."""

    source_type = SourceType.RSS

    async def fetch(self, source: Source) -> List[Candidate]:
        text = await self.http.get_text(source.url)
        parsed = parse_feed(text)
        if parsed is None:
            raise ValueError(f"not a valid feed: {source.url}")
        language = parsed.feed.get("language") or source.filters.language
        candidates = []
        for entry in parsed.entries[: self.max_items]:
            candidate = self.entry_candidate(entry, source, language=language)
            if candidate is not None:
                candidates.append(candidate)
        logger.debug(f"{source.name}: {len(candidates)} feed entries")
        return candidates

    def entry_candidate(self, entry: Any, source: Source, *, language: Optional[str] = None) -> Optional[Candidate]:
        link = entry.get("link")
        title = entry.get("title")
        if not link or not title:
            return None
        return self.normalizer.candidate(
            source_id=source.id,
            source_name=source.name,
            url=link,
            title=title,
            body=entry_body(entry),
            guid=entry.get("id") or link,
            published_at=entry_published(entry),
            image_url=entry_image(entry),
            language=language,
        )
