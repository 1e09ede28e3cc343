"""
SentinelService: wires the pipeline together and is the one surface the
admin layer (CLI, HTTP API, dashboard) talks to.
"""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Mapping, Optional, Union

from .config import SentinelConfig
from .dedup import DedupCache
from .drafts import DraftBuilder
from .enrichment import EnrichmentGateway, OpenAICompatibleEnricher
from .errors import ValidationError
from .fetchers import FetcherSet, UrlImporter
from .gate import QualityGate
from .infra.http import HttpClient
from .infra.scheduler import JobScheduler
from .interfaces import Enricher, Notifier
from .models import (
    AutoPublishResult,
    Draft,
    DraftStatus,
    ImportResult,
    LogEntry,
    MetricsSnapshot,
    RunRecord,
    Source,
    utcnow,
)
from .normalize import Normalizer
from .notifications import NotificationQueue
from .publisher import AutoPublishEngine
from .ratelimit import RateLimiter
from .registry import SourceFilter, SourceRegistry
from .runner import RunScheduler
from .sinks.telegram_sink import TelegramSink
from .store import SentinelStore
from .telemetry import Telemetry

logger = logging.getLogger(__name__)

RUNTIME_SETTINGS_KEY = "runtime"


def _build_enricher(config: SentinelConfig, http: HttpClient) -> Optional[Enricher]:
    if not config.enrichment.enabled:
        return None
    if not config.enrichment.api_key:
        logger.warning("No enrichment API key configured, drafts will be synthesized")
        return None
    return OpenAICompatibleEnricher(config.enrichment, http)


def _build_notifier(config: SentinelConfig) -> Optional[Notifier]:
    t = config.telegram
    if not t.enabled:
        return None
    if not t.bot_token or not t.channel_id:
        logger.warning("Telegram enabled but bot token or channel id missing, notifications disabled")
        return None
    return TelegramSink(t)


class SentinelService:
    """Composition root plus the read/mutate/command facade."""

    def __init__(
        self,
        config: SentinelConfig,
        *,
        store: Optional[SentinelStore] = None,
        fetchers: Optional[FetcherSet] = None,
        enricher: Optional[Enricher] = None,
        notifier: Optional[Notifier] = None,
        http: Optional[HttpClient] = None,
        scheduler: Optional[JobScheduler] = None,
        clock: Callable[[], datetime] = utcnow,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._config = config
        self._clock = clock
        self.http = http or HttpClient(timeout=config.run.fetch_timeout_s)
        self.telemetry = Telemetry(config.telemetry.log_capacity, config.telemetry.history_capacity, clock)
        self.registry = SourceRegistry(config.sources, smoothing=config.telemetry.health_smoothing, clock=clock)
        self.dedup = DedupCache(timedelta(hours=config.dedup.retention_hours), config.dedup.capacity, clock)
        self.limiter = RateLimiter(config.rate_limit, clock)
        self.normalizer = Normalizer(config.dedup.body_prefix_chars)
        self.fetchers = fetchers or FetcherSet.default(self.http, self.normalizer, config.run.max_articles_per_source)
        self.gateway = EnrichmentGateway(
            enricher if enricher is not None else _build_enricher(config, self.http),
            self.limiter,
            timeout=config.enrichment.timeout_s,
        )
        self.gate = QualityGate(config.quality, config.safety, self.dedup, self.gateway, clock)
        self.builder = DraftBuilder(self.gateway)
        self.store = store or SentinelStore.at(config.storage.db_path)
        self.notifications = NotificationQueue(
            notifier if notifier is not None else _build_notifier(config),
            max_attempts=config.notifications.max_attempts,
            retry_delay_s=config.notifications.retry_delay_s,
            dead_letter_capacity=config.notifications.dead_letter_capacity,
            sleep=sleep,
        )
        self.publisher = AutoPublishEngine(
            config.auto_publish, self.store, self.notifications, self.telemetry, clock=clock, sleep=sleep
        )
        self.runner = RunScheduler(
            config.run,
            registry=self.registry,
            fetchers=self.fetchers,
            gate=self.gate,
            builder=self.builder,
            store=self.store,
            dedup=self.dedup,
            telemetry=self.telemetry,
            importer=UrlImporter(self.http, self.normalizer),
            gateway=self.gateway,
            clock=clock,
        )
        self.scheduler = scheduler or JobScheduler(timezone=config.run.timezone)
        self._opened = False
        self._started = False

    # ------------------------------------------------------------------- #
    # Lifecycle

    async def open(self) -> None:
        """Connect the store and restore persisted sources, runtime settings and dedup state."""
        if self._opened:
            return
        self._opened = True
        await self.store.connect()

        stored = await self.store.load_sources()
        if stored:
            self.registry.replace_all(stored)
        else:
            await self.store.save_sources(self.registry.list())

        runtime = await self.store.get_setting(RUNTIME_SETTINGS_KEY)
        if runtime:
            self.runner.restore(**runtime)

        since = self._clock() - self.dedup.retention
        self.dedup.warm(await self.store.recent_fingerprints(since))

        for record in reversed(await self.store.recent_runs(self.telemetry.history_capacity)):
            self.telemetry.record_run(record)

    async def start(self) -> None:
        """Open, then start the timers and the notification worker."""
        if self._started:
            return
        await self.open()
        await self.scheduler.start()
        self.runner.attach(self.scheduler)
        self.publisher.schedule(self.scheduler)
        await self.notifications.start()
        self._started = True
        self.telemetry.log("info", f"[Sentinel-PP-01] Service started with {len(self.registry)} sources")

    async def close(self) -> None:
        if self._started:
            await self.scheduler.stop()
            self._started = False
        await self.notifications.stop()
        await self.http.close()
        await self.store.close()
        self._opened = False

    async def __aenter__(self) -> "SentinelService":
        await self.open()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()

    # ------------------------------------------------------------------- #
    # Reads

    def config(self) -> Dict[str, Any]:
        state = self.runner.state
        return {
            "enabled": state.enabled,
            "autoPersist": state.auto_persist,
            "frequencyMs": state.frequency_ms,
            "sources": [s.model_dump(by_alias=True, mode="json") for s in self.registry.list()],
            "lastRunAt": state.last_run_at,
        }

    def runtime(self) -> Dict[str, Any]:
        return self.runner.snapshot()

    def sources(self, filter: Optional[SourceFilter] = None) -> List[Source]:
        return self.registry.list(filter)

    def recent_logs(self, limit: Optional[int] = None) -> List[LogEntry]:
        return self.telemetry.recent_logs(limit)

    def recent_runs(self, limit: Optional[int] = None) -> List[RunRecord]:
        return self.telemetry.recent_runs(limit)

    async def run_history(self, limit: int = 20) -> List[RunRecord]:
        """Run records from the store, newest first (survives restarts)."""
        return await self.store.recent_runs(limit)

    def metrics(self) -> MetricsSnapshot:
        return self.telemetry.metrics(
            sources_count=len(self.registry),
            cache_size=len(self.dedup),
            duplicate_source_urls=self.registry.duplicate_urls(),
            degraded=self.gateway.degraded,
        )

    async def auto_publish_stats(self) -> Dict[str, Any]:
        return await self.publisher.stats()

    async def list_drafts(self, status: Optional[DraftStatus] = None, limit: int = 20) -> List[Draft]:
        return await self.store.find_drafts(status=status, limit=limit)

    # ------------------------------------------------------------------- #
    # Mutations

    async def set_enabled(self, enabled: bool) -> None:
        if enabled:
            self.runner.enable()
        else:
            self.runner.stop()
        await self._save_runtime()

    async def set_auto_persist(self, auto_persist: bool) -> None:
        self.runner.set_auto_persist(auto_persist)
        await self._save_runtime()

    async def set_frequency_ms(self, frequency_ms: int) -> None:
        try:
            self.runner.set_frequency_ms(frequency_ms)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        await self._save_runtime()

    async def set_max_per_run(self, max_per_run: int) -> None:
        try:
            self.runner.set_max_per_run(max_per_run)
        except ValueError as e:
            raise ValidationError(str(e)) from e
        await self._save_runtime()

    async def replace_sources(self, sources: Iterable[Union[Source, Mapping[str, Any]]]) -> List[Source]:
        updated = self.registry.replace_all(sources)
        await self.store.save_sources(updated)
        return updated

    async def upsert_source(self, source: Union[Source, Mapping[str, Any]]) -> Source:
        saved = self.registry.upsert(source)
        await self.store.save_sources(self.registry.list())
        return saved

    async def set_source_enabled(self, source_id: str, enabled: bool) -> Source:
        saved = self.registry.set_enabled(source_id, enabled)
        await self.store.save_sources(self.registry.list())
        return saved

    async def delete_source(self, source_id: str) -> None:
        self.registry.delete(source_id)
        await self.store.save_sources(self.registry.list())

    async def approve_draft(self, draft_id: str, approved: bool = True) -> Draft:
        draft = await self.store.approve_draft(draft_id, approved)
        self.telemetry.log("info", f"[Sentinel-PP-01] Draft {'approved' if approved else 'unapproved'}: {draft.title.en}")
        return draft

    async def _save_runtime(self) -> None:
        state = self.runner.state
        await self.store.set_setting(
            RUNTIME_SETTINGS_KEY,
            {
                "enabled": state.enabled,
                "auto_persist": state.auto_persist,
                "frequency_ms": state.frequency_ms,
                "max_per_run": state.max_per_run,
            },
        )

    # ------------------------------------------------------------------- #
    # Commands

    async def run_once(self, force: bool = False) -> RunRecord:
        return await self.runner.run_once(force=force)

    async def stop(self) -> None:
        self.runner.stop()
        await self._save_runtime()

    async def import_url(self, url: str, persist: bool = False) -> ImportResult:
        return await self.runner.import_url(url, persist=persist)

    async def auto_publish_sentinel_drafts(self) -> AutoPublishResult:
        return await self.publisher.auto_publish_sentinel_drafts()
