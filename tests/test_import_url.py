"""Tests for ad-hoc URL import through the service."""

from __future__ import annotations

from typing import Optional

from sentinel.models import Candidate, RunTrigger

from conftest import article_body, make_candidate


class StubImporter:
    def __init__(self, candidate: Optional[Candidate]):
        self.candidate = candidate
        self.urls = []

    async def fetch(self, url: str) -> Optional[Candidate]:
        self.urls.append(url)
        return self.candidate


URL = "https://news.example.com/business/rice-exports-climb"


def imported(**kwargs) -> Candidate:
    return make_candidate("import", "Rice exports climb", url=URL, source_name="news.example.com", **kwargs)


async def test_preview_import_never_writes(make_service) -> None:
    service = await make_service()
    service.runner.importer = StubImporter(imported())

    result = await service.import_url(URL)

    assert result.success
    assert not result.persisted
    assert result.draft.title.en == "Rice exports climb"
    assert await service.store.find_drafts() == []
    assert await service.store.recent_runs() == []
    assert len(service.dedup) == 0
    assert service.runner.state.cooldown_until is None


async def test_persisted_import_creates_one_draft(make_service) -> None:
    service = await make_service()
    service.runner.importer = StubImporter(imported())

    result = await service.import_url(URL, persist=True)

    assert result.success and result.persisted
    drafts = await service.store.find_drafts()
    assert len(drafts) == 1
    assert drafts[0].source_url == URL
    assert drafts[0].source_id == "import"
    assert service.dedup.seen(drafts[0].fingerprint)

    again = await service.import_url(URL, persist=True)
    assert not again.success
    assert len(await service.store.find_drafts()) == 1


async def test_import_ignores_quality_threshold(make_service) -> None:
    service = await make_service(quality={"quality_threshold": 0.99})
    service.runner.importer = StubImporter(imported())
    result = await service.import_url(URL)
    assert result.success
    assert result.evaluation.quality_score < 0.99


async def test_import_still_applies_safety(make_service) -> None:
    service = await make_service()
    body = article_body("rice") + " Footage showed a beheading."
    service.runner.importer = StubImporter(imported(body=body))
    result = await service.import_url(URL, persist=True)
    assert not result.success
    assert result.evaluation.reason.value == "unsafe"
    assert await service.store.find_drafts() == []


async def test_import_without_content(make_service) -> None:
    service = await make_service()
    service.runner.importer = StubImporter(None)
    result = await service.import_url(URL, persist=True)
    assert not result.success
    assert "No article content" in result.message


async def test_import_does_not_block_scheduled_runs(make_service) -> None:
    service = await make_service({"s1": [make_candidate("s1")]})
    service.runner.importer = StubImporter(imported())
    await service.import_url(URL, persist=True)
    record = await service.run_once()
    assert record.trigger == RunTrigger.MANUAL
    assert record.drafts_created == 1


async def test_invalid_url_is_reported(make_service) -> None:
    service = await make_service()
    result = await service.import_url("not a url")
    assert not result.success
    assert "http" in result.message
