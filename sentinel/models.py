"""
Core data models for the Sentinel pipeline.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

SENTINEL_AUTHOR = "sentinel"


def utcnow() -> datetime:
    """Timezone-aware current UTC time."""
    return datetime.now(tz=timezone.utc)


def new_id() -> str:
    return uuid.uuid4().hex


class SentinelModel(BaseModel):
    """Base model: snake_case in Python, camelCase for the admin layer."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --------------------------------------------------------------------------- #
# Closed sets


class SourceType(str, Enum):
    RSS = "rss"
    API = "api"
    SCRAPER = "scraper"
    MANUAL = "manual"


class SourceCategory(str, Enum):
    LOCAL = "local"
    INTERNATIONAL = "international"
    TECH = "tech"
    DEVELOPMENT = "development"
    ACADEMIC = "academic"


class SourcePriority(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        """Sort key: high sources are processed first."""
        return {"high": 0, "medium": 1, "low": 2}[self.value]


class DraftStatus(str, Enum):
    DRAFT = "draft"
    PENDING_REVIEW = "pending_review"
    PUBLISHED = "published"
    REJECTED = "rejected"


class RunTrigger(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    IMPORT = "import"


class SchedulerStatus(str, Enum):
    DISABLED = "disabled"
    IDLE = "idle"
    RUNNING = "running"
    COOLDOWN = "cooldown"


class RejectReason(str, Enum):
    DUPLICATE = "duplicate"
    TOO_SHORT = "too_short"
    TOO_LONG = "too_long"
    LANGUAGE = "language"
    STALE = "stale"
    UNSAFE = "unsafe"
    BIASED = "biased"
    LOW_QUALITY = "low_quality"


# --------------------------------------------------------------------------- #
# Sources


class SourceFilters(SentinelModel):
    language: Optional[str] = None
    region: Optional[str] = None
    min_length: Optional[int] = Field(default=None, ge=0)
    max_length: Optional[int] = Field(default=None, ge=0)


class SourceHealth(SentinelModel):
    """Rolling health statistics, maintained by the registry."""

    last_checked: Optional[datetime] = None
    last_success: Optional[datetime] = None
    error_count: int = 0
    success_rate: float = 1.0
    last_error: Optional[str] = None
    avg_latency_ms: Optional[float] = None


class Source(SentinelModel):
    """A configured content origin."""

    id: str = Field(default_factory=new_id)
    name: str = Field(min_length=1)
    url: str
    type: SourceType = SourceType.RSS
    category: SourceCategory = SourceCategory.INTERNATIONAL
    priority: SourcePriority = SourcePriority.MEDIUM
    enabled: bool = True
    keywords: List[str] = Field(default_factory=list)
    filters: SourceFilters = Field(default_factory=SourceFilters)
    health: SourceHealth = Field(default_factory=SourceHealth)

    @field_validator("url")
    @classmethod
    def _check_url(cls, value: str) -> str:
        value = value.strip()
        parsed = urlparse(value)
        if parsed.scheme not in ("http", "https") or not parsed.netloc:
            raise ValueError(f"not an absolute http(s) URL: {value!r}")
        return value

    @field_validator("keywords")
    @classmethod
    def _clean_keywords(cls, value: List[str]) -> List[str]:
        return [k.strip() for k in value if k and k.strip()]


# --------------------------------------------------------------------------- #
# Pipeline records


class Candidate(SentinelModel):
    """A raw fetched item before acceptance. Never persisted directly."""

    source_id: str
    url: str
    title: str
    body: str
    fingerprint: str
    fetched_at: datetime = Field(default_factory=utcnow)
    guid: Optional[str] = None
    published_at: Optional[datetime] = None
    image_url: Optional[str] = None
    language: Optional[str] = None
    source_name: Optional[str] = None


class Evaluation(SentinelModel):
    """Verdict of the quality & safety gate."""

    accept: bool
    quality_score: float = 0.0
    safety_flags: List[str] = Field(default_factory=list)
    reason: Optional[RejectReason] = None

    @classmethod
    def reject(cls, reason: RejectReason, *, score: float = 0.0, flags: Optional[List[str]] = None) -> "Evaluation":
        return cls(accept=False, quality_score=score, safety_flags=flags or [], reason=reason)


class LocalizedText(SentinelModel):
    en: str
    kh: Optional[str] = None


class Draft(SentinelModel):
    """A persisted article authored by the pipeline."""

    id: str = Field(default_factory=new_id)
    title: LocalizedText
    description: LocalizedText
    content: LocalizedText
    slug: str
    source_id: str
    source_name: Optional[str] = None
    source_url: Optional[str] = None
    guid: Optional[str] = None
    fingerprint: str
    quality_score: float = Field(default=0.0, ge=0.0, le=1.0)
    safety_flags: List[str] = Field(default_factory=list)
    status: DraftStatus = DraftStatus.DRAFT
    author: str = SENTINEL_AUTHOR
    approved: bool = False
    category: str = "other"
    tags: List[str] = Field(default_factory=list)
    keywords: Optional[str] = None
    thumbnail: Optional[str] = None
    enrichment_model: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    published_at: Optional[datetime] = None


class Preview(SentinelModel):
    """What a run would have written when it is not persisting."""

    title: str
    url: Optional[str] = None
    source_name: Optional[str] = None
    category: str = "other"
    quality_score: float = 0.0
    description: str = ""

    @classmethod
    def from_draft(cls, draft: Draft) -> "Preview":
        return cls(
            title=draft.title.en,
            url=draft.source_url,
            source_name=draft.source_name,
            category=draft.category,
            quality_score=draft.quality_score,
            description=draft.description.en[:200],
        )


class RunRecord(SentinelModel):
    """One scheduler execution. Frozen once built."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    id: str = Field(default_factory=new_id)
    trigger: RunTrigger
    started_at: datetime
    finished_at: datetime
    sources_scanned: int = 0
    candidates_fetched: int = 0
    duplicates_skipped: int = 0
    candidates_rejected: int = 0
    candidates_deferred: int = 0
    drafts_created: int = 0
    previews: List[Preview] = Field(default_factory=list)
    errors: List[str] = Field(default_factory=list)
    cancelled: bool = False
    timed_out: bool = False
    degraded: bool = False

    @property
    def duration_seconds(self) -> float:
        return max(0.0, (self.finished_at - self.started_at).total_seconds())


class LogEntry(SentinelModel):
    timestamp: datetime = Field(default_factory=utcnow)
    level: str
    message: str


class MetricsSnapshot(SentinelModel):
    total_processed: int = 0
    total_created: int = 0
    average_processing_time: float = 0.0
    error_rate: float = 0.0
    uptime: float = 0.0
    sources_count: int = 0
    cache_size: int = 0
    duplicate_source_urls: Dict[str, List[str]] = Field(default_factory=dict)
    degraded: bool = False


class AutoPublishResult(SentinelModel):
    processed: int = 0
    published: int = 0
    skipped: int = 0
    errors: List[str] = Field(default_factory=list)


class ImportResult(SentinelModel):
    success: bool
    message: Optional[str] = None
    persisted: bool = False
    draft: Optional[Draft] = None
    evaluation: Optional[Evaluation] = None


class NotificationResult(SentinelModel):
    """Outcome of a notification attempt. Errors are values, not exceptions."""

    ok: bool
    message_id: Optional[str] = None
    url: Optional[str] = None
    error: Optional[str] = None

    @classmethod
    def failed(cls, error: str) -> "NotificationResult":
        return cls(ok=False, error=error)


class Enrichment(SentinelModel):
    """Rewritten article returned by the enrichment (AI) capability."""

    title: str
    description: str
    content: str
    category: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    keywords: Optional[str] = None
    title_kh: Optional[str] = None
    description_kh: Optional[str] = None
    content_kh: Optional[str] = None
    model: Optional[str] = None
