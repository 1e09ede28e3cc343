"""
Quality & safety gate: decides which candidates may become drafts.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional

from .config import QualitySettings, SafetySettings
from .dedup import DedupCache
from .enrichment import EnrichmentGateway
from .models import Candidate, Evaluation, RejectReason, Source, SourceCategory, SourcePriority, utcnow

logger = logging.getLogger(__name__)

HEURISTIC_ONLY_FLAG = "safety:heuristic-only"


def _term_pattern(term: str) -> re.Pattern:
    return re.compile(r"\b" + re.escape(term.lower()) + r"\b")


class QualityGate:
    """Runs the checks in order and stops at the first rejection:

    1. dedup (fingerprint seen within retention)
    2. length / language / recency filters
    3. safety and bias screening, optionally via the remote classifier
    4. weighted quality score against ``quality_threshold``
    """

    def __init__(
        self,
        quality: QualitySettings,
        safety: SafetySettings,
        dedup: DedupCache,
        gateway: Optional[EnrichmentGateway] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.quality = quality
        self.safety = safety
        self.dedup = dedup
        self.gateway = gateway
        self._clock = clock
        self._blocked = [(t, _term_pattern(t)) for t in safety.blocked_terms]
        self._sensitive = [(t, _term_pattern(t)) for t in safety.sensitive_terms]
        self._loaded = [_term_pattern(t) for t in safety.loaded_terms]

    async def evaluate(
        self,
        candidate: Candidate,
        *,
        source: Optional[Source] = None,
        category_mix: Optional[Dict[SourceCategory, int]] = None,
        enforce_threshold: bool = True,
    ) -> Evaluation:
        if self.dedup.seen(candidate.fingerprint):
            return Evaluation.reject(RejectReason.DUPLICATE)

        rejection = self._check_filters(candidate, source)
        if rejection is not None:
            return Evaluation.reject(rejection)

        flags: List[str] = []
        text = f"{candidate.title} {candidate.body}".lower()

        blocked = [term for term, pattern in self._blocked if pattern.search(text)]
        if blocked:
            return Evaluation.reject(RejectReason.UNSAFE, flags=[f"blocked:{t}" for t in blocked])

        flags.extend(f"sensitive:{term}" for term, pattern in self._sensitive if pattern.search(text))

        loaded = sum(len(pattern.findall(text)) for pattern in self._loaded)
        if loaded >= self.safety.bias_reject_threshold:
            return Evaluation.reject(RejectReason.BIASED, flags=flags + [f"bias:loaded-language:{loaded}"])

        if self.safety.use_classifier:
            labels = await self.gateway.classify(candidate) if self.gateway is not None else None
            if labels is None:
                flags.append(HEURISTIC_ONLY_FLAG)
            else:
                hits = [label for label in labels if label in self.safety.blocked_classifier_flags]
                if hits:
                    return Evaluation.reject(RejectReason.UNSAFE, flags=flags + [f"classifier:{h}" for h in hits])
                flags.extend(f"classifier:{label}" for label in labels)

        score = self.score(candidate, source, category_mix)
        if enforce_threshold and score < self.quality.quality_threshold:
            return Evaluation.reject(RejectReason.LOW_QUALITY, score=score, flags=flags)

        return Evaluation(accept=True, quality_score=score, safety_flags=flags)

    # ------------------------------------------------------------------- #
    def _check_filters(self, candidate: Candidate, source: Optional[Source]) -> Optional[RejectReason]:
        filters = source.filters if source is not None else None
        length = len(candidate.body)

        min_length = self.quality.min_content_length
        if filters is not None and filters.min_length is not None:
            min_length = max(min_length, filters.min_length)
        if length < min_length:
            return RejectReason.TOO_SHORT
        if filters is not None and filters.max_length is not None and length > filters.max_length:
            return RejectReason.TOO_LONG

        if filters is not None and filters.language and candidate.language:
            if candidate.language != filters.language.split("-")[0].lower():
                return RejectReason.LANGUAGE

        if self.quality.max_age_hours is not None and candidate.published_at is not None:
            if self._clock() - candidate.published_at > timedelta(hours=self.quality.max_age_hours):
                return RejectReason.STALE
        return None

    def score(
        self,
        candidate: Candidate,
        source: Optional[Source] = None,
        category_mix: Optional[Dict[SourceCategory, int]] = None,
    ) -> float:
        """Weighted blend of credibility, length, keyword strength and category balance, in 0..1."""
        q = self.quality
        priority = source.priority if source is not None else SourcePriority.MEDIUM
        components: Dict[str, float] = {
            "priority": q.credibility.get(priority, 0.0),
            "length": min(1.0, len(candidate.body) / q.ideal_length),
            "balance": self._balance(source, category_mix),
        }

        keywords = {k.lower() for k in (source.keywords if source is not None else [])}
        keywords.update(k.lower() for k in q.global_keywords)
        if keywords:
            text = f"{candidate.title} {candidate.body}".lower()
            matches = sum(1 for k in keywords if _term_pattern(k).search(text))
            components["keywords"] = min(1.0, matches / q.keyword_saturation)

        total_weight = sum(q.weights.get(name, 0.0) for name in components)
        if total_weight <= 0:
            return 0.0
        blended = sum(q.weights.get(name, 0.0) * value for name, value in components.items()) / total_weight
        return round(max(0.0, min(1.0, blended)), 4)

    def _balance(self, source: Optional[Source], category_mix: Optional[Dict[SourceCategory, int]]) -> float:
        """1.0 while the source's category is under its target share of this run, less once over."""
        if source is None or not category_mix:
            return 1.0
        total = sum(category_mix.values())
        if total == 0:
            return 1.0
        share = category_mix.get(source.category, 0) / total
        target = self.quality.category_targets.get(source.category, 0.0)
        if share < target or share == 0:
            return 1.0
        return target / share
