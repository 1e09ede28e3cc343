"""
Ad-hoc single URL import, outside the source rotation.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

import aiohttp

from ..errors import SourceFetchError, ValidationError
from ..extract import extract_article
from ..infra.http import HttpClient, ResponseTooLarge
from ..models import Candidate, Source, SourceType
from ..normalize import Normalizer, canonicalize_url
from .rss import RssFetcher, parse_feed
from .scraper import ManualFetcher

logger = logging.getLogger(__name__)

IMPORT_SOURCE_ID = "import"


class UrlImporter:
    """Turns one URL into one Candidate.

    The URL is tried as a feed first (the entry linking back to it, else the
    newest entry) and otherwise read as an article page.
    """

    def __init__(self, http: HttpClient, normalizer: Normalizer):
        self.http = http
        self._rss = RssFetcher(http, normalizer)
        self._page = ManualFetcher(http, normalizer)

    @staticmethod
    def pseudo_source(url: str) -> Source:
        parsed = urlparse(url.strip())
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValidationError(f"Not an absolute http(s) URL: {url!r}")
        return Source(id=IMPORT_SOURCE_ID, name=parsed.netloc, url=url, type=SourceType.MANUAL)

    async def fetch(self, url: str) -> Optional[Candidate]:
        source = self.pseudo_source(url)
        try:
            text = await self.http.get_text(source.url)
        except (aiohttp.ClientError, asyncio.TimeoutError, ResponseTooLarge) as e:
            raise SourceFetchError(IMPORT_SOURCE_ID, f"{url}: {e or type(e).__name__}") from e

        parsed = parse_feed(text)
        if parsed is not None and parsed.entries:
            wanted = canonicalize_url(url)
            entry = next(
                (e for e in parsed.entries if e.get("link") and canonicalize_url(e["link"]) == wanted),
                parsed.entries[0],
            )
            logger.debug(f"Import {url}: read as feed entry {entry.get('link')}")
            return self._rss.entry_candidate(entry, source, language=parsed.feed.get("language"))

        article = extract_article(text, source.url)
        if not article.title or not article.body:
            return None
        return self._page.article_candidate(article, source)
