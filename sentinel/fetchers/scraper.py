"""
HTML scraping fetchers: listing pages and single article pages.
"""

from __future__ import annotations

import asyncio
import logging
from typing import List

import aiohttp

from ..extract import discover_links, extract_article
from ..infra.http import ResponseTooLarge
from ..models import Candidate, Source, SourceType
from .base import BaseFetcher

logger = logging.getLogger(__name__)


class ScraperFetcher(BaseFetcher):
    """Discovers article links on a listing page and extracts each article."""

    source_type = SourceType.SCRAPER

    async def fetch(self, source: Source) -> List[Candidate]:
        listing = await self.http.get_text(source.url)
        links = discover_links(listing, source.url, limit=self.max_items)
        candidates = []
        for link in links:
            try:
                html = await self.http.get_text(link)
            except (aiohttp.ClientError, asyncio.TimeoutError, ResponseTooLarge) as e:
                # One broken article must not cost the whole listing
                logger.warning(f"{source.name}: skipping {link}: {e}")
                continue
            article = extract_article(html, link)
            if article.title and article.body:
                candidates.append(self.article_candidate(article, source))
        logger.debug(f"{source.name}: {len(candidates)} scraped articles from {len(links)} links")
        return candidates


class ManualFetcher(BaseFetcher):
    """The source URL is one article page."""

    source_type = SourceType.MANUAL

    async def fetch(self, source: Source) -> List[Candidate]:
        html = await self.http.get_text(source.url)
        article = extract_article(html, source.url)
        if not article.title or not article.body:
            return []
        return [self.article_candidate(article, source)]
