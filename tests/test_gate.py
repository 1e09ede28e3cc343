"""Tests for the quality & safety gate."""

from __future__ import annotations

from datetime import timedelta

import pytest

from sentinel.config import QualitySettings, RateLimitSettings, SafetySettings
from sentinel.dedup import DedupCache
from sentinel.enrichment import EnrichmentGateway
from sentinel.gate import HEURISTIC_ONLY_FLAG, QualityGate
from sentinel.models import RejectReason, Source, SourceCategory
from sentinel.ratelimit import RateLimiter

from conftest import FakeClock, FakeEnricher, article_body, make_candidate


def make_gate(clock: FakeClock, gateway=None, **quality) -> QualityGate:
    settings = dict(min_content_length=50, quality_threshold=0.2, max_age_hours=24)
    settings.update(quality)
    return QualityGate(
        QualitySettings(**settings),
        SafetySettings(use_classifier=gateway is not None),
        DedupCache(clock=clock),
        gateway,
        clock,
    )


def source(**kwargs) -> Source:
    defaults = dict(id="s1", name="S1", url="https://s1.example.com/feed", priority="high", category="local")
    defaults.update(kwargs)
    return Source(**defaults)


async def test_accepts_clean_candidate(clock: FakeClock) -> None:
    verdict = await make_gate(clock).evaluate(make_candidate(), source=source())
    assert verdict.accept
    assert verdict.reason is None
    assert verdict.safety_flags == []
    assert 0.0 < verdict.quality_score <= 1.0


async def test_rejects_duplicate_first(clock: FakeClock) -> None:
    gate = make_gate(clock)
    candidate = make_candidate(body="too short")
    gate.dedup.remember(candidate.fingerprint)
    verdict = await gate.evaluate(candidate)
    assert verdict.reason == RejectReason.DUPLICATE


@pytest.mark.parametrize(
    "body, filters, reason",
    [
        ("tiny", {}, RejectReason.TOO_SHORT),
        (article_body("ferry"), {"min_length": 5000}, RejectReason.TOO_SHORT),
        (article_body("ferry"), {"max_length": 100}, RejectReason.TOO_LONG),
    ],
)
async def test_length_filters(clock: FakeClock, body, filters, reason) -> None:
    verdict = await make_gate(clock).evaluate(make_candidate(body=body), source=source(filters=filters))
    assert verdict.reason == reason


async def test_language_filter(clock: FakeClock) -> None:
    candidate = make_candidate(language="fr")
    verdict = await make_gate(clock).evaluate(candidate, source=source(filters={"language": "en-US"}))
    assert verdict.reason == RejectReason.LANGUAGE


async def test_stale_items_rejected(clock: FakeClock) -> None:
    candidate = make_candidate(published_at=clock() - timedelta(hours=25))
    verdict = await make_gate(clock).evaluate(candidate)
    assert verdict.reason == RejectReason.STALE


async def test_blocked_term_is_unsafe(clock: FakeClock) -> None:
    candidate = make_candidate(body=article_body("ferry") + " Footage showed a beheading.")
    verdict = await make_gate(clock).evaluate(candidate)
    assert verdict.reason == RejectReason.UNSAFE
    assert verdict.safety_flags == ["blocked:beheading"]


async def test_sensitive_term_is_flagged_not_rejected(clock: FakeClock) -> None:
    candidate = make_candidate(body=article_body("ferry") + " The election commission approved the plan.")
    verdict = await make_gate(clock).evaluate(candidate, source=source())
    assert verdict.accept
    assert verdict.safety_flags == ["sensitive:election"]


async def test_loaded_language_is_biased(clock: FakeClock) -> None:
    text = " It was shocking, outrageous and disgraceful, pure propaganda."
    verdict = await make_gate(clock).evaluate(make_candidate(body=article_body("ferry") + text))
    assert verdict.reason == RejectReason.BIASED


async def test_low_quality_below_threshold(clock: FakeClock) -> None:
    gate = make_gate(clock, quality_threshold=0.99)
    verdict = await gate.evaluate(make_candidate(), source=source(priority="low"))
    assert verdict.reason == RejectReason.LOW_QUALITY
    assert verdict.quality_score < 0.99

    preview = await gate.evaluate(make_candidate(), source=source(priority="low"), enforce_threshold=False)
    assert preview.accept


def test_score_follows_configured_weights(clock: FakeClock) -> None:
    gate = make_gate(clock, weights={"priority": 1.0}, credibility={"high": 0.9, "medium": 0.5, "low": 0.1})
    assert gate.score(make_candidate(), source(priority="high")) == pytest.approx(0.9)
    assert gate.score(make_candidate(), source(priority="low")) == pytest.approx(0.1)


def test_score_prefers_higher_priority_and_keywords(clock: FakeClock) -> None:
    gate = make_gate(clock)
    candidate = make_candidate()
    assert gate.score(candidate, source(priority="high")) > gate.score(candidate, source(priority="low"))
    with_keywords = gate.score(candidate, source(keywords=["ferry service", "stage"]))
    assert with_keywords >= gate.score(candidate, source())


def test_balance_penalizes_overrepresented_category(clock: FakeClock) -> None:
    gate = make_gate(clock, weights={"balance": 1.0})
    local = source(category="local")
    assert gate.score(make_candidate(), local, {SourceCategory.TECH: 3}) == pytest.approx(1.0)
    # local target is 0.4, share 1.0
    assert gate.score(make_candidate(), local, {SourceCategory.LOCAL: 2}) == pytest.approx(0.4)


async def test_classifier_labels(clock: FakeClock) -> None:
    limiter = RateLimiter(RateLimitSettings(), clock)
    gate = make_gate(clock, gateway=EnrichmentGateway(FakeEnricher(labels=["political-bias"]), limiter))
    verdict = await gate.evaluate(make_candidate(), source=source())
    assert verdict.accept
    assert verdict.safety_flags == ["classifier:political-bias"]

    gate = make_gate(clock, gateway=EnrichmentGateway(FakeEnricher(labels=["violence"]), limiter))
    verdict = await gate.evaluate(make_candidate(), source=source())
    assert verdict.reason == RejectReason.UNSAFE


async def test_classifier_failure_falls_back_to_heuristics(clock: FakeClock) -> None:
    limiter = RateLimiter(RateLimitSettings(), clock)
    gate = make_gate(clock, gateway=EnrichmentGateway(FakeEnricher(fail=True), limiter))
    verdict = await gate.evaluate(make_candidate(), source=source())
    assert verdict.accept
    assert HEURISTIC_ONLY_FLAG in verdict.safety_flags
    assert limiter.consecutive_failures == 1
