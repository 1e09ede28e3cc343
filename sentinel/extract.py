"""
HTML article extraction with BeautifulSoup.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import List, Optional
from urllib.parse import urljoin, urlparse

from bs4 import BeautifulSoup

from .normalize import collapse_whitespace

logger = logging.getLogger(__name__)

# Containers tried in order before falling back to every <p> on the page
_BODY_SELECTORS = ("article", "[itemprop=articleBody]", ".article-content", ".entry-content", "main")
_MIN_PARAGRAPH_CHARS = 40


@dataclass
class ExtractedArticle:
    url: str
    title: str
    body: str
    image_url: Optional[str] = None
    language: Optional[str] = None
    published_at: Optional[datetime] = None


def _meta(soup: BeautifulSoup, *names: str) -> Optional[str]:
    for name in names:
        tag = soup.find("meta", attrs={"property": name}) or soup.find("meta", attrs={"name": name})
        if tag and tag.get("content"):
            return tag["content"].strip()
    return None


def _parse_iso(value: Optional[str]) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def find_image(soup: BeautifulSoup, base_url: str) -> Optional[str]:
    """og:image, then twitter:image, then the first sizeable <img> in the article."""
    image = _meta(soup, "og:image", "og:image:url", "twitter:image", "twitter:image:src")
    if not image:
        container = soup.find("article") or soup
        for img in container.find_all("img"):
            src = img.get("src") or img.get("data-src")
            if not src or src.startswith("data:"):
                continue
            if any(token in src.lower() for token in ("logo", "icon", "avatar", "sprite")):
                continue
            image = src
            break
    return urljoin(base_url, image) if image else None


def extract_article(html: str, url: str) -> ExtractedArticle:
    """Pull title, body text, lead image and language out of an article page."""
    soup = BeautifulSoup(html, "html.parser")
    for tag in soup(["script", "style", "noscript", "nav", "footer", "aside", "form"]):
        tag.decompose()

    title = _meta(soup, "og:title", "twitter:title")
    if not title:
        h1 = soup.find("h1")
        title = h1.get_text(" ") if h1 else (soup.title.string if soup.title and soup.title.string else "")

    paragraphs: List[str] = []
    for selector in _BODY_SELECTORS:
        container = soup.select_one(selector)
        if container is None:
            continue
        paragraphs = [collapse_whitespace(p.get_text(" ")) for p in container.find_all("p")]
        paragraphs = [p for p in paragraphs if len(p) >= _MIN_PARAGRAPH_CHARS]
        if paragraphs:
            break
    if not paragraphs:
        paragraphs = [collapse_whitespace(p.get_text(" ")) for p in soup.find_all("p")]
        paragraphs = [p for p in paragraphs if len(p) >= _MIN_PARAGRAPH_CHARS]
    body = "\n\n".join(paragraphs)
    if not body:
        body = _meta(soup, "og:description", "description") or ""

    html_tag = soup.find("html")
    language = html_tag.get("lang") if html_tag else None

    return ExtractedArticle(
        url=url,
        title=collapse_whitespace(title),
        body=body,
        image_url=find_image(soup, url),
        language=language or None,
        published_at=_parse_iso(_meta(soup, "article:published_time", "og:published_time")),
    )


def discover_links(html: str, base_url: str, limit: int = 20) -> List[str]:
    """Article-looking links on a listing page, same host only, in page order."""
    soup = BeautifulSoup(html, "html.parser")
    host = urlparse(base_url).netloc.lower()
    base_path = urlparse(base_url).path.rstrip("/")
    seen = set()
    links: List[str] = []
    anchors = soup.select("article a[href], h2 a[href], h3 a[href]") or soup.find_all("a", href=True)
    for a in anchors:
        href = urljoin(base_url, a["href"].strip())
        parsed = urlparse(href)
        if parsed.scheme not in ("http", "https") or parsed.netloc.lower() != host:
            continue
        path = parsed.path.rstrip("/")
        # Listing pages link to themselves and to sections; articles sit deeper
        if not path or path == base_path or (path.count("/") < 2 and "-" not in path):
            continue
        clean = href.split("#", 1)[0]
        if clean in seen:
            continue
        seen.add(clean)
        links.append(clean)
        if len(links) >= limit:
            break
    logger.debug(f"Discovered {len(links)} article links on {base_url}")
    return links
