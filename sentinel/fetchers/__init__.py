"""
Fetcher variants, dispatched by Source.type.
"""

from __future__ import annotations

import logging
from typing import Dict, Iterable, List, Optional

from ..infra.http import HttpClient
from ..interfaces import Fetcher
from ..models import Candidate, Source, SourceType
from ..normalize import Normalizer
from .api import ApiFetcher
from .importer import UrlImporter
from .rss import RssFetcher, parse_feed
from .scraper import ManualFetcher, ScraperFetcher

logger = logging.getLogger(__name__)

__all__ = [
    "ApiFetcher",
    "FetcherSet",
    "ManualFetcher",
    "RssFetcher",
    "ScraperFetcher",
    "UrlImporter",
    "parse_feed",
]


class FetcherSet:
    """Maps each SourceType to the fetcher that handles it."""

    def __init__(self, fetchers: Iterable[Fetcher]):
        self._fetchers: Dict[SourceType, Fetcher] = {}
        for fetcher in fetchers:
            self._fetchers[fetcher.source_type] = fetcher

    @classmethod
    def default(cls, http: HttpClient, normalizer: Normalizer, max_items: int = 20) -> "FetcherSet":
        return cls(
            [
                RssFetcher(http, normalizer, max_items),
                ApiFetcher(http, normalizer, max_items),
                ScraperFetcher(http, normalizer, max_items),
                ManualFetcher(http, normalizer, max_items),
            ]
        )

    def for_type(self, source_type: SourceType) -> Optional[Fetcher]:
        return self._fetchers.get(source_type)

    async def fetch(self, source: Source) -> List[Candidate]:
        fetcher = self._fetchers.get(source.type)
        if fetcher is None:
            raise LookupError(f"no fetcher registered for source type {source.type.value}")
        return await fetcher.fetch(source)
