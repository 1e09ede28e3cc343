"""Shared fixtures and fakes for the Sentinel test suite."""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Union

import pytest

from sentinel.config import SentinelConfig, parse_config
from sentinel.errors import EnrichmentError
from sentinel.fetchers import FetcherSet
from sentinel.interfaces import Enricher, Fetcher, Notifier
from sentinel.models import (
    Candidate,
    Draft,
    Enrichment,
    LocalizedText,
    NotificationResult,
    Source,
    SourceType,
)
from sentinel.normalize import Normalizer
from sentinel.service import SentinelService
from sentinel.store import SentinelStore


# =============================================================================
# Clock and sleep
# =============================================================================


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 3, 1, 8, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


class RecordingSleep:
    """Stand-in for asyncio.sleep that returns immediately and remembers the delays."""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        await asyncio.sleep(0)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def sleep() -> RecordingSleep:
    return RecordingSleep()


# =============================================================================
# Content helpers
# =============================================================================

_normalizer = Normalizer()


def article_body(topic: str, sentences: int = 6) -> str:
    """Plain, neutral filler text about ``topic``."""
    return " ".join(
        f"Officials in Phnom Penh said the {topic} programme reached stage {i} this week "
        f"after months of planning with local partners."
        for i in range(1, sentences + 1)
    )


def make_candidate(
    source_id: str = "s1",
    title: str = "Mekong ferry service expands",
    body: Optional[str] = None,
    url: Optional[str] = None,
    **kwargs: Any,
) -> Candidate:
    slug = title.lower().replace(" ", "-")
    return _normalizer.candidate(
        source_id=source_id,
        source_name=kwargs.pop("source_name", source_id.upper()),
        url=url or f"https://{source_id}.example.com/news/{slug}",
        title=title,
        body=body if body is not None else article_body(title.lower()),
        **kwargs,
    )


def make_draft(
    title: str = "Rice exports climb",
    content: Optional[str] = None,
    **kwargs: Any,
) -> Draft:
    content = content if content is not None else article_body(title.lower())
    fields: Dict[str, Any] = dict(
        title=LocalizedText(en=title, kh=title),
        description=LocalizedText(en=content[:120], kh=content[:120]),
        content=LocalizedText(en=content, kh=content),
        slug=title.lower().replace(" ", "-"),
        source_id="s1",
        source_name="S1",
        source_url=f"https://s1.example.com/news/{title.lower().replace(' ', '-')}",
        fingerprint=f"fp-{title.lower().replace(' ', '-')}",
        quality_score=0.6,
    )
    fields.update(kwargs)
    return Draft(**fields)


# =============================================================================
# Fake collaborators
# =============================================================================


FetchResult = Union[List[Candidate], Exception, Callable[[], Any]]


class StaticFetcher(Fetcher):
    """Returns canned candidates per source id.

    A value may be a list, an exception to raise, or an async callable
    producing the list (used to block or slow a fetch).
    """

    def __init__(self, results: Optional[Dict[str, FetchResult]] = None, source_type: SourceType = SourceType.RSS):
        self.results: Dict[str, FetchResult] = dict(results or {})
        self._source_type = source_type
        self.calls: List[str] = []

    @property
    def source_type(self) -> SourceType:
        return self._source_type

    async def fetch(self, source: Source) -> List[Candidate]:
        self.calls.append(source.id)
        result = self.results.get(source.id, [])
        if isinstance(result, Exception):
            raise result
        if callable(result):
            return await result()
        return list(result)


class FakeEnricher(Enricher):
    def __init__(self, *, fail: bool = False, labels: Optional[List[str]] = None):
        self.fail = fail
        self.labels = labels or []
        self.enrich_calls = 0
        self.classify_calls = 0

    @property
    def model(self) -> str:
        return "fake-model"

    async def enrich(self, candidate: Candidate, source: Optional[Source] = None) -> Enrichment:
        self.enrich_calls += 1
        if self.fail:
            raise EnrichmentError("model unavailable")
        return Enrichment(
            title=f"Rewritten: {candidate.title}",
            description=candidate.body[:100],
            content=candidate.body,
            category="Business",
            tags=["cambodia", "business"],
            keywords="cambodia, business",
            model=self.model,
        )

    async def classify(self, candidate: Candidate) -> List[str]:
        self.classify_calls += 1
        if self.fail:
            raise EnrichmentError("model unavailable")
        return list(self.labels)


class FakeNotifier(Notifier):
    """Collects drafts; ``outcomes`` is consumed per call (True = ok, False = fail, Exception = raise)."""

    def __init__(self, outcomes: Optional[List[Union[bool, Exception]]] = None):
        self.outcomes = list(outcomes or [])
        self.sent: List[Draft] = []
        self.closed = False

    @property
    def name(self) -> str:
        return "FakeNotifier"

    async def notify(self, draft: Draft) -> NotificationResult:
        outcome = self.outcomes.pop(0) if self.outcomes else True
        if isinstance(outcome, Exception):
            raise outcome
        if not outcome:
            return NotificationResult.failed("channel unavailable")
        self.sent.append(draft)
        return NotificationResult(ok=True, message_id=str(len(self.sent)))

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Store and service
# =============================================================================


@pytest.fixture
async def store(tmp_path: Path):
    store = SentinelStore.at(str(tmp_path / "sentinel.db"))
    await store.connect()
    yield store
    await store.close()


def build_config(tmp_path: Path, **overrides: Any) -> SentinelConfig:
    raw: Dict[str, Any] = {
        "run": {"auto_persist": True, "max_per_run": 3, "cooldown_ms": 60_000, "fetch_timeout_s": 5},
        "quality": {"min_content_length": 50, "quality_threshold": 0.2, "max_age_hours": None},
        "enrichment": {"enabled": False},
        "telegram": {"enabled": False},
        "auto_publish": {"min_content_length": 100, "max_drafts_per_run": 10, "delay_between_articles_s": 0},
        "storage": {"db_path": str(tmp_path / "sentinel.db")},
        "sources": [
            {"id": "s1", "name": "S1", "url": "https://s1.example.com/feed", "priority": "high", "category": "local"},
            {"id": "s2", "name": "S2", "url": "https://s2.example.com/feed", "priority": "low", "category": "tech"},
        ],
    }
    for section, values in overrides.items():
        if isinstance(values, dict):
            raw.setdefault(section, {}).update(values)
        else:
            raw[section] = values
    return parse_config(raw)


@pytest.fixture
async def make_service(tmp_path: Path, clock: FakeClock, sleep: RecordingSleep):
    """Factory for opened SentinelServices wired to fakes."""
    services: List[SentinelService] = []

    async def factory(
        results: Optional[Dict[str, FetchResult]] = None,
        *,
        enricher: Optional[Enricher] = None,
        notifier: Optional[Notifier] = None,
        **overrides: Any,
    ) -> SentinelService:
        fetcher = StaticFetcher(results)
        service = SentinelService(
            build_config(tmp_path, **overrides),
            fetchers=FetcherSet([fetcher]),
            enricher=enricher,
            notifier=notifier,
            clock=clock,
            sleep=sleep,
        )
        service.fake_fetcher = fetcher
        await service.open()
        services.append(service)
        return service

    yield factory

    for service in services:
        await service.close()
