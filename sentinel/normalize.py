"""
Normalization of fetched items into canonical Candidates.
"""

from __future__ import annotations

import hashlib
import re
from datetime import datetime
from typing import Iterable, Optional
from urllib.parse import parse_qsl, urlencode, urlparse, urlunparse

from bs4 import BeautifulSoup

from .models import Candidate, utcnow

TRACKING_PARAMS = {
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "utm_name",
    "utm_reader",
    "utm_referrer",
    "gclid",
    "fbclid",
    "dclid",
    "msclkid",
    "mc_cid",
    "mc_eid",
    "igshid",
    "ref",
    "ref_src",
    "ref_url",
    "cmpid",
    "ocid",
}

_WS_RE = re.compile(r"\s+")


def collapse_whitespace(text: Optional[str]) -> str:
    """Collapse any run of whitespace into a single space and strip the ends."""
    if not text:
        return ""
    return _WS_RE.sub(" ", text).strip()


def strip_html(text: Optional[str]) -> str:
    """Return the visible text of an HTML fragment, whitespace collapsed."""
    if not text:
        return ""
    if "<" not in text:
        return collapse_whitespace(text)
    soup = BeautifulSoup(text, "html.parser")
    return collapse_whitespace(soup.get_text(" "))


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for dedup.

    - Lowercase scheme + hostname
    - Remove fragments
    - Strip tracking query parameters (any ``utm_*`` plus the known trackers)
    - Sort the remaining query parameters
    """
    if not url:
        return ""
    strip = set(strip_params) if strip_params is not None else TRACKING_PARAMS
    p = urlparse(url.strip())
    scheme = (p.scheme or "https").lower()
    netloc = (p.netloc or "").lower()
    path = p.path or "/"

    kept = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        key = k.lower()
        if key in strip or key.startswith("utm_"):
            continue
        kept.append((k, v))
    kept.sort(key=lambda kv: (kv[0].lower(), kv[1]))

    return urlunparse((scheme, netloc, path, p.params, urlencode(kept, doseq=True), ""))


def fingerprint(title: str, body: str, *, body_prefix_chars: int = 500) -> str:
    """Stable content hash, insensitive to case and whitespace.

    Only the title and the first ``body_prefix_chars`` characters of the
    normalized body take part, so the same story re-published by another
    source (with a different URL or trailing boilerplate) collides.
    """
    norm_title = collapse_whitespace(title).lower()
    norm_body = collapse_whitespace(body).lower()[:body_prefix_chars]
    return hashlib.sha256(f"{norm_title}\n{norm_body}".encode("utf-8")).hexdigest()


class Normalizer:
    """Turns raw fields from any fetcher variant into a Candidate."""

    def __init__(self, body_prefix_chars: int = 500):
        self.body_prefix_chars = body_prefix_chars

    def candidate(
        self,
        *,
        source_id: str,
        url: str,
        title: str,
        body: str,
        guid: Optional[str] = None,
        published_at: Optional[datetime] = None,
        image_url: Optional[str] = None,
        language: Optional[str] = None,
        source_name: Optional[str] = None,
        fetched_at: Optional[datetime] = None,
    ) -> Candidate:
        clean_title = strip_html(title)
        clean_body = strip_html(body)
        return Candidate(
            source_id=source_id,
            url=canonicalize_url(url),
            title=clean_title,
            body=clean_body,
            fingerprint=fingerprint(clean_title, clean_body, body_prefix_chars=self.body_prefix_chars),
            fetched_at=fetched_at or utcnow(),
            guid=guid,
            published_at=published_at,
            image_url=image_url,
            language=language.split("-")[0].lower() if language else None,
            source_name=source_name,
        )
