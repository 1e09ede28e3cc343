"""
Turning accepted candidates into Drafts, with or without enrichment.
"""

from __future__ import annotations

import logging
import re
from collections import Counter
from typing import List, Optional

from .enrichment import EnrichmentGateway
from .models import (
    Candidate,
    Draft,
    DraftStatus,
    Enrichment,
    Evaluation,
    LocalizedText,
    Source,
)

logger = logging.getLogger(__name__)

MAX_TAGS = 7
DESCRIPTION_CHARS = 200

COMMON_TAGS = (
    "Cambodia", "News", "Politics", "Business", "Technology",
    "Health", "Education", "Environment", "Sports", "Entertainment",
    "International", "Local", "Breaking News", "Analysis", "Feature",
)
LOCATION_TAGS = ("Phnom Penh", "Siem Reap", "Battambang")

STOP_WORDS = frozenset(
    "the a an and or but in on at to for of with by is are was were be been have has had "
    "do does did will would could should may might can this that these those".split()
)

_SLUG_RE = re.compile(r"[^a-z0-9]+")


def slugify(title: str) -> str:
    return _SLUG_RE.sub("-", title.lower()).strip("-")


def summarize(text: str, limit: int = DESCRIPTION_CHARS) -> str:
    """First sentences of ``text`` that fit into ``limit`` characters."""
    if len(text) <= limit:
        return text
    cut = text[:limit]
    end = max(cut.rfind(". "), cut.rfind("! "), cut.rfind("? "))
    if end > limit // 2:
        return cut[: end + 1]
    return cut.rsplit(" ", 1)[0].rstrip(",;:") + "…"


def extract_tags(content: str, title: str) -> List[str]:
    """Tags from a fixed vocabulary, padded to at least three."""
    content_l, title_l = content.lower(), title.lower()
    tags = [tag for tag in COMMON_TAGS if tag.lower() in content_l or tag.lower() in title_l]
    tags.extend(tag for tag in LOCATION_TAGS if tag.lower() in content_l and tag not in tags)
    if len(tags) < 3:
        tags.extend(t for t in ("Cambodia", "News") if t not in tags)
    return tags[:MAX_TAGS]


def extract_keywords(content: str, title: str, limit: int = 10) -> str:
    """Most frequent non-stop words longer than three characters, comma separated."""
    words = f"{title} {content}".lower().split()
    counts = Counter(w for w in words if len(w) > 3 and w not in STOP_WORDS)
    return ", ".join(word for word, _ in counts.most_common(limit))


class DraftBuilder:
    """Builds a Draft from an accepted candidate.

    With an enrichment gateway available the model's rewrite is used; when
    it is absent, rate limited or failing the draft is synthesized from the
    candidate itself and ``enrichment_model`` stays empty.
    """

    def __init__(self, gateway: Optional[EnrichmentGateway] = None):
        self.gateway = gateway

    async def build(self, candidate: Candidate, source: Optional[Source], verdict: Evaluation) -> Draft:
        enrichment = await self.gateway.enrich(candidate, source) if self.gateway is not None else None
        if enrichment is None:
            return self.synthesize(candidate, source, verdict)
        return self._from_enrichment(candidate, source, verdict, enrichment)

    def synthesize(self, candidate: Candidate, source: Optional[Source], verdict: Evaluation) -> Draft:
        description = summarize(candidate.body)
        return self._draft(
            candidate,
            verdict,
            title=LocalizedText(en=candidate.title, kh=candidate.title),
            description=LocalizedText(en=description, kh=description),
            content=LocalizedText(en=candidate.body, kh=candidate.body),
            category=source.category.value if source is not None else "other",
            tags=extract_tags(candidate.body, candidate.title),
            keywords=None,
            enrichment_model=None,
        )

    def _from_enrichment(
        self,
        candidate: Candidate,
        source: Optional[Source],
        verdict: Evaluation,
        enrichment: Enrichment,
    ) -> Draft:
        return self._draft(
            candidate,
            verdict,
            title=LocalizedText(en=enrichment.title, kh=enrichment.title_kh or enrichment.title),
            description=LocalizedText(en=enrichment.description, kh=enrichment.description_kh or enrichment.description),
            content=LocalizedText(en=enrichment.content, kh=enrichment.content_kh or enrichment.content),
            category=(enrichment.category or (source.category.value if source is not None else "other")).lower(),
            tags=enrichment.tags[:MAX_TAGS],
            keywords=enrichment.keywords,
            enrichment_model=enrichment.model,
        )

    def _draft(self, candidate: Candidate, verdict: Evaluation, **fields) -> Draft:
        title = fields["title"].en
        return Draft(
            slug=slugify(title) or f"article-{candidate.fingerprint[:12]}",
            source_id=candidate.source_id,
            source_name=candidate.source_name,
            source_url=candidate.url,
            guid=candidate.guid,
            fingerprint=candidate.fingerprint,
            quality_score=verdict.quality_score,
            safety_flags=list(verdict.safety_flags),
            status=DraftStatus.PENDING_REVIEW if verdict.safety_flags else DraftStatus.DRAFT,
            thumbnail=candidate.image_url,
            **fields,
        )
