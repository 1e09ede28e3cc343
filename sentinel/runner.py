"""
Run scheduler: timing, mutual exclusion, cooldown and the ingestion run itself.

States are derived from one owned SchedulerState:

    Disabled --enable--> Idle --tick / run_once--> Running --done--> Cooldown --elapsed--> Idle
    any --stop--> Disabled

Only one ingestion run (or URL import) is active at a time; a second trigger
is rejected with ConcurrencyConflict instead of being queued.
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional, Set

from .config import RunSettings
from .dedup import DedupCache
from .drafts import DraftBuilder
from .enrichment import EnrichmentGateway
from .errors import (
    ConcurrencyConflict,
    CooldownActive,
    PersistenceError,
    SentinelError,
    SourceFetchError,
    SourceNotFound,
)
from .fetchers import FetcherSet, UrlImporter
from .gate import QualityGate
from .infra.scheduler import JobScheduler
from .models import (
    Candidate,
    ImportResult,
    Preview,
    RejectReason,
    RunRecord,
    RunTrigger,
    SchedulerStatus,
    Source,
    SourceCategory,
    utcnow,
)
from .registry import SourceRegistry
from .store import SentinelStore
from .telemetry import Telemetry

logger = logging.getLogger(__name__)

TICK_JOB_ID = "sentinel-tick"
LOG_PREFIX = "[Sentinel-PP-01]"


@dataclass
class SchedulerState:
    """Everything the scheduler knows about itself. Mutated only by RunScheduler."""

    enabled: bool = False
    auto_persist: bool = False
    frequency_ms: int = 300_000
    max_per_run: int = 3
    running: bool = False
    cooldown_until: Optional[datetime] = None
    next_run_at: Optional[datetime] = None
    last_run_at: Optional[datetime] = None
    last_created: int = 0
    last_processed: int = 0

    def status(self, now: datetime) -> SchedulerStatus:
        if self.running:
            return SchedulerStatus.RUNNING
        if not self.enabled:
            return SchedulerStatus.DISABLED
        if self.cooldown_until is not None and now < self.cooldown_until:
            return SchedulerStatus.COOLDOWN
        return SchedulerStatus.IDLE


@dataclass
class _RunProgress:
    trigger: RunTrigger
    started_at: datetime
    persist: bool
    max_per_run: int
    sources_scanned: int = 0
    candidates_fetched: int = 0
    duplicates_skipped: int = 0
    candidates_rejected: int = 0
    candidates_deferred: int = 0
    drafts_created: int = 0
    previews: List[Preview] = field(default_factory=list)
    errors: List[str] = field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    degraded: bool = False
    seen: Set[str] = field(default_factory=set)
    category_mix: Dict[SourceCategory, int] = field(default_factory=Counter)

    @property
    def accepted(self) -> int:
        return self.drafts_created if self.persist else len(self.previews)

    @property
    def cap_reached(self) -> bool:
        return self.accepted >= self.max_per_run

    def to_record(self, finished_at: datetime) -> RunRecord:
        return RunRecord(
            trigger=self.trigger,
            started_at=self.started_at,
            finished_at=finished_at,
            sources_scanned=self.sources_scanned,
            candidates_fetched=self.candidates_fetched,
            duplicates_skipped=self.duplicates_skipped,
            candidates_rejected=self.candidates_rejected,
            candidates_deferred=self.candidates_deferred,
            drafts_created=self.drafts_created,
            previews=list(self.previews),
            errors=list(self.errors),
            cancelled=self.cancelled,
            timed_out=self.timed_out,
            degraded=self.degraded,
        )


@dataclass
class _FetchOutcome:
    candidates: List[Candidate] = field(default_factory=list)
    error: Optional[SourceFetchError] = None
    skipped: bool = False


class RunScheduler:
    """Owns the scheduler state and executes ingestion runs."""

    def __init__(
        self,
        settings: RunSettings,
        *,
        registry: SourceRegistry,
        fetchers: FetcherSet,
        gate: QualityGate,
        builder: DraftBuilder,
        store: SentinelStore,
        dedup: DedupCache,
        telemetry: Telemetry,
        importer: Optional[UrlImporter] = None,
        gateway: Optional[EnrichmentGateway] = None,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.settings = settings
        self.registry = registry
        self.fetchers = fetchers
        self.gate = gate
        self.builder = builder
        self.store = store
        self.dedup = dedup
        self.telemetry = telemetry
        self.importer = importer
        self.gateway = gateway
        self._clock = clock
        self._state = SchedulerState(
            enabled=settings.enabled,
            auto_persist=settings.auto_persist,
            frequency_ms=settings.frequency_ms,
            max_per_run=settings.max_per_run,
            next_run_at=clock() if settings.enabled else None,
        )
        self._lock = asyncio.Lock()
        self._cancel = asyncio.Event()

    # ------------------------------------------------------------------- #
    # State

    @property
    def state(self) -> SchedulerState:
        """A copy of the current state."""
        return dataclasses.replace(self._state)

    @property
    def running(self) -> bool:
        return self._state.running

    def status(self) -> SchedulerStatus:
        return self._state.status(self._clock())

    def snapshot(self) -> Dict[str, object]:
        s = self._state
        return {
            "status": s.status(self._clock()).value,
            "enabled": s.enabled,
            "running": s.running,
            "autoPersist": s.auto_persist,
            "frequencyMs": s.frequency_ms,
            "nextRunAt": s.next_run_at,
            "lastRunAt": s.last_run_at,
            "lastCreated": s.last_created,
            "lastProcessed": s.last_processed,
            "cooldownUntil": s.cooldown_until,
            "maxPerRun": s.max_per_run,
            "sourcesCount": len(self.registry),
        }

    def restore(self, **values) -> None:
        """Apply persisted runtime settings (enabled, auto_persist, frequency_ms, max_per_run)."""
        if "enabled" in values:
            if values["enabled"]:
                self.enable()
            else:
                self._state.enabled = False
                self._state.next_run_at = None
        if "auto_persist" in values:
            self._state.auto_persist = bool(values["auto_persist"])
        if "frequency_ms" in values:
            self.set_frequency_ms(int(values["frequency_ms"]))
        if "max_per_run" in values:
            self.set_max_per_run(int(values["max_per_run"]))

    def enable(self) -> None:
        if self._state.enabled:
            return
        self._state.enabled = True
        self._state.next_run_at = self._clock()
        self.telemetry.log("info", f"{LOG_PREFIX} Enabled (every {self._state.frequency_ms // 1000}s)")

    def set_auto_persist(self, value: bool) -> None:
        self._state.auto_persist = value

    def set_frequency_ms(self, frequency_ms: int) -> None:
        if frequency_ms <= 0:
            raise ValueError("frequency_ms must be > 0")
        self._state.frequency_ms = frequency_ms
        if self._state.enabled and self._state.last_run_at is not None:
            self._state.next_run_at = self._state.last_run_at + timedelta(milliseconds=frequency_ms)

    def set_max_per_run(self, max_per_run: int) -> None:
        if max_per_run < 1:
            raise ValueError("max_per_run must be >= 1")
        self._state.max_per_run = max_per_run

    def stop(self) -> None:
        """Disable the timer and ask an active run to wind down after the current source."""
        self._state.enabled = False
        self._state.next_run_at = None
        if self._state.running:
            self._cancel.set()
            self.telemetry.log("info", f"{LOG_PREFIX} Stop requested, finishing current source")
        else:
            self.telemetry.log("info", f"{LOG_PREFIX} Disabled")

    # ------------------------------------------------------------------- #
    # Triggers

    def attach(self, scheduler: JobScheduler) -> None:
        """Register the periodic tick with the job timer."""
        scheduler.add_interval_job(self.tick, seconds=self.settings.tick_seconds, job_id=TICK_JOB_ID)

    def is_due(self, now: Optional[datetime] = None) -> bool:
        now = now or self._clock()
        s = self._state
        if not s.enabled or s.running or self._lock.locked():
            return False
        if s.cooldown_until is not None and now < s.cooldown_until:
            return False
        return s.next_run_at is None or now >= s.next_run_at

    async def tick(self) -> Optional[RunRecord]:
        """Timer callback: start a scheduled run when one is due."""
        if not self.is_due():
            return None
        try:
            return await self.run(RunTrigger.SCHEDULED)
        except ConcurrencyConflict:
            return None

    async def run_once(self, force: bool = False) -> RunRecord:
        """Manual run. ``force`` skips the cooldown, never the busy check."""
        return await self.run(RunTrigger.MANUAL, force=force)

    async def run(self, trigger: RunTrigger, *, force: bool = False) -> RunRecord:
        if self._lock.locked():
            raise ConcurrencyConflict("Sentinel run already in progress")
        cooldown_until = self._state.cooldown_until
        if not force and cooldown_until is not None and self._clock() < cooldown_until:
            raise CooldownActive(cooldown_until)
        async with self._lock:
            record = await self._execute(trigger)
        try:
            await self.store.save_run(record)
        except PersistenceError as e:
            logger.error(f"Could not persist run record {record.id}: {e}")
        return record

    # ------------------------------------------------------------------- #
    # Run

    async def _execute(self, trigger: RunTrigger) -> RunRecord:
        progress = _RunProgress(
            trigger=trigger,
            started_at=self._clock(),
            persist=self._state.auto_persist,
            max_per_run=self._state.max_per_run,
        )
        self._cancel.clear()
        self._state.running = True
        mode = "persisting" if progress.persist else "preview"
        self.telemetry.log("info", f"{LOG_PREFIX} Run started ({trigger.value}, {mode}, max {progress.max_per_run})")
        try:
            await asyncio.wait_for(self._scan(progress), timeout=self.settings.max_run_duration_s)
        except asyncio.TimeoutError:
            progress.timed_out = True
            progress.errors.append(f"run exceeded {self.settings.max_run_duration_s:.0f}s and was closed")
            self.telemetry.log("error", f"{LOG_PREFIX} Run watchdog fired after {self.settings.max_run_duration_s:.0f}s")
        except Exception as e:
            logger.exception("Sentinel run aborted by an internal error")
            progress.errors.append(f"internal error: {e}")
            self.telemetry.log("error", f"{LOG_PREFIX} Run aborted: {e}")
        finally:
            record = self._close(progress)
        return record

    def _close(self, progress: _RunProgress) -> RunRecord:
        finished_at = self._clock()
        if self.gateway is not None and self.gateway.degraded:
            progress.degraded = True
        record = progress.to_record(finished_at)

        s = self._state
        s.running = False
        s.last_run_at = finished_at
        s.last_created = progress.accepted
        s.last_processed = progress.candidates_fetched
        s.cooldown_until = finished_at + timedelta(milliseconds=self.settings.cooldown_ms)
        s.next_run_at = finished_at + timedelta(milliseconds=s.frequency_ms) if s.enabled else None
        self._cancel.clear()

        self.telemetry.record_run(record)
        outcome = "cancelled" if record.cancelled else "timed out" if record.timed_out else "completed"
        created = f"{record.drafts_created} drafts created" if progress.persist else f"{len(record.previews)} previews"
        self.telemetry.log(
            "warning" if record.errors else "info",
            f"{LOG_PREFIX} Run {outcome}: {record.sources_scanned} sources, {record.candidates_fetched} items, "
            f"{created}, {record.duplicates_skipped} duplicates, {record.candidates_rejected} rejected, "
            f"{len(record.errors)} errors in {record.duration_seconds:.1f}s",
        )
        return record

    async def _scan(self, progress: _RunProgress) -> None:
        sources = self.registry.enabled()
        semaphore = asyncio.Semaphore(self.settings.fetch_concurrency)
        tasks = [asyncio.create_task(self._fetch_source(source, semaphore)) for source in sources]
        try:
            for source, task in zip(sources, tasks):
                if self._cancel.is_set():
                    progress.cancelled = True
                    # In-flight fetches finish, queued ones see the flag and skip
                    await asyncio.gather(*tasks, return_exceptions=True)
                    break
                outcome = await task
                if outcome.skipped:
                    continue
                progress.sources_scanned += 1
                if outcome.error is not None:
                    progress.errors.append(str(outcome.error))
                    continue
                progress.candidates_fetched += len(outcome.candidates)
                for candidate in outcome.candidates:
                    await self._process(candidate, source, progress)
        finally:
            for task in tasks:
                if not task.done():
                    task.cancel()

    async def _fetch_source(self, source: Source, semaphore: asyncio.Semaphore) -> _FetchOutcome:
        async with semaphore:
            if self._cancel.is_set():
                return _FetchOutcome(skipped=True)
            started = time.monotonic()
            try:
                candidates = await asyncio.wait_for(self.fetchers.fetch(source), timeout=self.settings.fetch_timeout_s)
            except asyncio.TimeoutError:
                error = SourceFetchError(source.id, f"{source.name}: timed out after {self.settings.fetch_timeout_s:.0f}s")
            except Exception as e:
                # Any failure of one source stays with that source
                error = SourceFetchError(source.id, f"{source.name}: {e or type(e).__name__}")
            else:
                self._record_health(source, True, started)
                return _FetchOutcome(candidates=candidates)

        self._record_health(source, False, started, error.message)
        self.telemetry.log("warning", f"{LOG_PREFIX} Fetch failed for {error.message}")
        return _FetchOutcome(error=error)

    def _record_health(self, source: Source, success: bool, started: float, error: Optional[str] = None) -> None:
        latency_ms = (time.monotonic() - started) * 1000
        try:
            self.registry.record_health(source.id, success=success, latency_ms=latency_ms, error=error)
        except SourceNotFound:
            logger.debug(f"Source {source.id} removed during run, health not recorded")

    async def _process(self, candidate: Candidate, source: Source, progress: _RunProgress) -> None:
        fp = candidate.fingerprint
        if fp in progress.seen:
            progress.duplicates_skipped += 1
            return

        if progress.cap_reached:
            progress.seen.add(fp)
            progress.candidates_deferred += 1
            return

        try:
            await self._admit(candidate, source, progress)
        except PersistenceError as e:
            progress.errors.append(str(e))
            self.telemetry.log("error", f"{LOG_PREFIX} {e}")
        except Exception as e:
            # One bad candidate never ends the run
            logger.exception(f"Failed to process '{candidate.title[:60]}' from {source.name}")
            progress.errors.append(f"{source.name}: '{candidate.title[:60]}': {e or type(e).__name__}")
            self.telemetry.log("error", f"{LOG_PREFIX} Candidate failed: {candidate.title[:60]}")

    async def _admit(self, candidate: Candidate, source: Source, progress: _RunProgress) -> None:
        fp = candidate.fingerprint
        verdict = await self.gate.evaluate(candidate, source=source, category_mix=progress.category_mix)
        if not verdict.accept:
            if verdict.reason == RejectReason.DUPLICATE:
                progress.duplicates_skipped += 1
            else:
                progress.candidates_rejected += 1
                logger.debug(f"Rejected '{candidate.title[:60]}' ({verdict.reason.value}, {verdict.quality_score})")
            return
        # Rejected stories stay open to other sources
        progress.seen.add(fp)

        if await self.store.draft_exists(fingerprint=fp, url=candidate.url):
            progress.duplicates_skipped += 1
            if progress.persist:
                self.dedup.remember(fp)
            return

        draft = await self.builder.build(candidate, source, verdict)
        if draft.enrichment_model is None and self.gateway is not None and self.gateway.enabled:
            progress.degraded = True

        if not progress.persist:
            progress.previews.append(Preview.from_draft(draft))
        else:
            await self.store.create_draft(draft)
            self.dedup.remember(fp)
            progress.drafts_created += 1
            self.telemetry.log("info", f"{LOG_PREFIX} Draft created: {draft.title.en}")
        progress.category_mix[source.category] += 1

    # ------------------------------------------------------------------- #
    # Import

    async def import_url(self, url: str, persist: bool = False) -> ImportResult:
        """Import one URL. ``persist=False`` never writes to the store."""
        if self.importer is None:
            raise SentinelError("URL import is not configured")
        if self._lock.locked():
            raise ConcurrencyConflict("Sentinel run already in progress")
        async with self._lock:
            self._state.running = True
            try:
                return await asyncio.wait_for(self._import(url, persist), timeout=self.settings.max_run_duration_s)
            except asyncio.TimeoutError:
                return ImportResult(success=False, message=f"Import timed out: {url}")
            finally:
                self._state.running = False

    async def _import(self, url: str, persist: bool) -> ImportResult:
        try:
            candidate = await self.importer.fetch(url)
        except SentinelError as e:
            self.telemetry.log("warning", f"{LOG_PREFIX} Import failed: {e}")
            return ImportResult(success=False, message=str(e))
        if candidate is None:
            return ImportResult(success=False, message=f"No article content found at {url}")

        verdict = await self.gate.evaluate(candidate, enforce_threshold=False)
        if not verdict.accept:
            return ImportResult(success=False, message=f"Rejected: {verdict.reason.value}", evaluation=verdict)

        try:
            if await self.store.draft_exists(fingerprint=candidate.fingerprint, url=candidate.url):
                return ImportResult(success=False, message="Already imported", evaluation=verdict)
            draft = await self.builder.build(candidate, None, verdict)
            if not persist:
                return ImportResult(success=True, message="Preview only, nothing stored", draft=draft, evaluation=verdict)
            await self.store.create_draft(draft)
        except PersistenceError as e:
            self.telemetry.log("error", f"{LOG_PREFIX} Import failed: {e}")
            return ImportResult(success=False, message=str(e), evaluation=verdict)

        self.dedup.remember(candidate.fingerprint)
        self.telemetry.log("info", f"{LOG_PREFIX} Imported draft: {draft.title.en}")
        return ImportResult(success=True, message="Draft created", persisted=True, draft=draft, evaluation=verdict)
