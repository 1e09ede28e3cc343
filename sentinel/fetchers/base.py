"""
Shared plumbing for the fetcher variants.
"""

from __future__ import annotations

from ..infra.http import HttpClient
from ..interfaces import Fetcher
from ..models import Source
from ..normalize import Normalizer
from ..extract import ExtractedArticle


class BaseFetcher(Fetcher):
    """Holds the HTTP client, the normalizer and the per-source item cap."""

    source_type = None

    def __init__(self, http: HttpClient, normalizer: Normalizer, max_items: int = 20):
        self.http = http
        self.normalizer = normalizer
        self.max_items = max_items

    def article_candidate(self, article: ExtractedArticle, source: Source):
        return self.normalizer.candidate(
            source_id=source.id,
            source_name=source.name,
            url=article.url,
            title=article.title,
            body=article.body,
            guid=article.url,
            published_at=article.published_at,
            image_url=article.image_url,
            language=article.language or source.filters.language,
        )
