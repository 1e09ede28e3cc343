"""Tests for HTML extraction, the fetcher variants and the URL importer."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict

import aiohttp
import pytest

from sentinel.errors import SourceFetchError, ValidationError
from sentinel.extract import discover_links, extract_article
from sentinel.fetchers import ApiFetcher, FetcherSet, ManualFetcher, RssFetcher, ScraperFetcher, UrlImporter
from sentinel.models import Source, SourceType
from sentinel.normalize import Normalizer


class FakeHttp:
    """Serves canned documents by URL; unknown URLs fail like a refused connection."""

    def __init__(self, pages: Dict[str, Any]):
        self.pages = pages
        self.requested = []

    async def get_text(self, url: str, **kwargs: Any) -> str:
        self.requested.append(url)
        if url not in self.pages:
            raise aiohttp.ClientConnectionError(f"cannot connect to {url}")
        return self.pages[url]

    async def get_json(self, url: str, **kwargs: Any) -> Any:
        self.requested.append(url)
        return self.pages[url]


RSS = """<?xml version="1.0" encoding="UTF-8"?>
<rss version="2.0" xmlns:media="http://search.yahoo.com/mrss/">
  <channel>
    <title>Khmer Times</title>
    <language>en-us</language>
    <item>
      <title>Siem Reap airport traffic doubles</title>
      <link>https://news.example.com/siem-reap-airport?utm_source=rss</link>
      <guid>story-1</guid>
      <pubDate>Sat, 01 Mar 2025 06:30:00 GMT</pubDate>
      <description>&lt;p&gt;Passenger numbers at the new airport doubled in February.&lt;/p&gt;</description>
      <media:content url="https://cdn.example.com/airport.jpg" medium="image" />
    </item>
    <item>
      <title>Second story</title>
      <link>https://news.example.com/second-story</link>
      <description>Short summary of the second story.</description>
    </item>
    <item>
      <description>Entry without title or link is skipped.</description>
    </item>
  </channel>
</rss>"""

ARTICLE = """<html lang="en-US"><head>
<title>Fallback title</title>
<meta property="og:title" content="Rice exports climb in first quarter" />
<meta property="og:image" content="/images/rice.jpg" />
<meta property="article:published_time" content="2025-03-01T05:00:00Z" />
<script>var tracking = true;</script>
</head><body>
<nav><p>Home | News | Sport | Business | Contact us today for more</p></nav>
<article>
  <h1>Rice exports climb</h1>
  <p>Cambodia shipped more milled rice in the first quarter than in any previous year.</p>
  <p>Short.</p>
  <p>Exporters credited new buyers in Europe and China for most of the additional demand.</p>
</article>
<footer><p>Copyright notice that should never appear in the article body text.</p></footer>
</body></html>"""

LISTING = """<html><body>
<h2><a href="/business/rice-exports-climb">Rice exports climb</a></h2>
<h2><a href="/business/rice-exports-climb#comments">Rice exports climb (comments)</a></h2>
<h2><a href="/business">Business</a></h2>
<h3><a href="https://other.example.org/story-elsewhere">Elsewhere</a></h3>
<h3><a href="/tech/broken-link-story">Broken</a></h3>
</body></html>"""


def source(**kwargs: Any) -> Source:
    defaults = dict(id="src", name="Source", url="https://news.example.com/feed")
    defaults.update(kwargs)
    return Source(**defaults)


# =============================================================================
# Extraction
# =============================================================================


def test_extract_article() -> None:
    article = extract_article(ARTICLE, "https://news.example.com/business/rice-exports-climb")
    assert article.title == "Rice exports climb in first quarter"
    assert article.body.startswith("Cambodia shipped more milled rice")
    assert "Short." not in article.body
    assert "Copyright" not in article.body
    assert "tracking" not in article.body
    assert article.image_url == "https://news.example.com/images/rice.jpg"
    assert article.language == "en-US"
    assert article.published_at == datetime(2025, 3, 1, 5, 0, tzinfo=timezone.utc)


def test_discover_links_same_host_articles_only() -> None:
    links = discover_links(LISTING, "https://news.example.com/business")
    assert links == [
        "https://news.example.com/business/rice-exports-climb",
        "https://news.example.com/tech/broken-link-story",
    ]


# =============================================================================
# Fetchers
# =============================================================================


async def test_rss_fetcher_normalizes_entries() -> None:
    http = FakeHttp({"https://news.example.com/feed": RSS})
    candidates = await RssFetcher(http, Normalizer()).fetch(source())

    assert len(candidates) == 2
    first = candidates[0]
    assert first.title == "Siem Reap airport traffic doubles"
    assert first.url == "https://news.example.com/siem-reap-airport"
    assert first.body == "Passenger numbers at the new airport doubled in February."
    assert first.guid == "story-1"
    assert first.language == "en"
    assert first.image_url == "https://cdn.example.com/airport.jpg"
    assert first.published_at == datetime(2025, 3, 1, 6, 30, tzinfo=timezone.utc)
    assert first.source_name == "Source"


async def test_rss_fetcher_respects_max_items() -> None:
    http = FakeHttp({"https://news.example.com/feed": RSS})
    candidates = await RssFetcher(http, Normalizer(), max_items=1).fetch(source())
    assert len(candidates) == 1


async def test_rss_fetcher_rejects_non_feed() -> None:
    http = FakeHttp({"https://news.example.com/feed": "this is { not xml"})
    with pytest.raises(ValueError):
        await RssFetcher(http, Normalizer()).fetch(source())


async def test_api_fetcher_reads_newsapi_payload() -> None:
    payload = {
        "status": "ok",
        "articles": [
            {
                "title": "Angkor visitor numbers rise",
                "url": "https://api.example.com/angkor",
                "description": "More tourists visited the temples.",
                "content": "Ticket sales rose by a fifth compared with last year.",
                "urlToImage": "https://cdn.example.com/angkor.jpg",
                "publishedAt": "2025-03-01T04:00:00Z",
            },
            {"title": "Missing url"},
        ],
    }
    http = FakeHttp({"https://api.example.com/v2/top": payload})
    src = source(url="https://api.example.com/v2/top", type=SourceType.API)
    candidates = await ApiFetcher(http, Normalizer()).fetch(src)

    assert len(candidates) == 1
    candidate = candidates[0]
    assert candidate.body == "More tourists visited the temples. Ticket sales rose by a fifth compared with last year."
    assert candidate.image_url == "https://cdn.example.com/angkor.jpg"
    assert candidate.published_at == datetime(2025, 3, 1, 4, 0, tzinfo=timezone.utc)


async def test_scraper_fetcher_skips_broken_links() -> None:
    http = FakeHttp(
        {
            "https://news.example.com/business": LISTING,
            "https://news.example.com/business/rice-exports-climb": ARTICLE,
        }
    )
    src = source(url="https://news.example.com/business", type=SourceType.SCRAPER)
    candidates = await ScraperFetcher(http, Normalizer()).fetch(src)

    assert [c.title for c in candidates] == ["Rice exports climb in first quarter"]
    assert "https://news.example.com/tech/broken-link-story" in http.requested


async def test_manual_fetcher_reads_single_page() -> None:
    url = "https://news.example.com/business/rice-exports-climb"
    http = FakeHttp({url: ARTICLE})
    candidates = await ManualFetcher(http, Normalizer()).fetch(source(url=url, type=SourceType.MANUAL))
    assert len(candidates) == 1
    assert candidates[0].language == "en"


async def test_fetcher_set_dispatches_by_type() -> None:
    http = FakeHttp({"https://news.example.com/feed": RSS})
    fetchers = FetcherSet.default(http, Normalizer())
    assert isinstance(fetchers.for_type(SourceType.SCRAPER), ScraperFetcher)
    assert len(await fetchers.fetch(source())) == 2

    only_rss = FetcherSet([RssFetcher(http, Normalizer())])
    with pytest.raises(LookupError):
        await only_rss.fetch(source(type=SourceType.API))


# =============================================================================
# URL import
# =============================================================================


async def test_importer_reads_article_page() -> None:
    url = "https://news.example.com/business/rice-exports-climb"
    candidate = await UrlImporter(FakeHttp({url: ARTICLE}), Normalizer()).fetch(url)
    assert candidate.source_id == "import"
    assert candidate.source_name == "news.example.com"
    assert candidate.title == "Rice exports climb in first quarter"


async def test_importer_picks_matching_feed_entry() -> None:
    url = "https://news.example.com/feed"
    http = FakeHttp({url: RSS})
    candidate = await UrlImporter(http, Normalizer()).fetch(url)
    assert candidate.title == "Siem Reap airport traffic doubles"


async def test_importer_errors() -> None:
    importer = UrlImporter(FakeHttp({"https://news.example.com/empty": "<html><body></body></html>"}), Normalizer())
    with pytest.raises(ValidationError):
        await importer.fetch("javascript:alert(1)")
    with pytest.raises(SourceFetchError):
        await importer.fetch("https://news.example.com/missing")
    assert await importer.fetch("https://news.example.com/empty") is None
