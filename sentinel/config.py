"""
Configuration loading: YAML file + environment overrides, validated with pydantic.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, model_validator

from .errors import ValidationError
from .models import Source, SourceCategory, SourcePriority

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = "config.yaml"


class RunSettings(BaseModel):
    """Ingestion run scheduling."""

    enabled: bool = False
    auto_persist: bool = False
    frequency_ms: int = Field(default=300_000, gt=0)
    cooldown_ms: int = Field(default=60_000, ge=0)
    max_per_run: int = Field(default=3, ge=1)
    max_run_duration_s: float = Field(default=900.0, gt=0)
    fetch_timeout_s: float = Field(default=30.0, gt=0)
    fetch_concurrency: int = Field(default=4, ge=1)
    tick_seconds: int = Field(default=15, ge=1)
    max_articles_per_source: int = Field(default=20, ge=1)
    timezone: str = "UTC"


class DedupSettings(BaseModel):
    retention_hours: float = Field(default=48.0, gt=0)
    capacity: int = Field(default=20_000, ge=1)
    body_prefix_chars: int = Field(default=500, ge=0)


class RateLimitSettings(BaseModel):
    max_requests: int = Field(default=60, ge=1)
    window_seconds: float = Field(default=3600.0, gt=0)
    failure_threshold: int = Field(default=3, ge=1)
    backoff_policy: Literal["exponential", "linear"] = "exponential"
    backoff_base_seconds: float = Field(default=30.0, ge=0)
    backoff_max_seconds: float = Field(default=1800.0, ge=0)


class QualitySettings(BaseModel):
    """Tunable scoring policy of the quality gate."""

    min_content_length: int = Field(default=200, ge=0)
    quality_threshold: float = Field(default=0.45, ge=0.0, le=1.0)
    ideal_length: int = Field(default=1500, ge=1)
    keyword_saturation: int = Field(default=3, ge=1)
    max_age_hours: Optional[float] = Field(default=48.0, gt=0)
    global_keywords: List[str] = Field(
        default_factory=lambda: ["cambodia", "phnom penh", "asean", "mekong", "siem reap"]
    )
    weights: Dict[str, float] = Field(
        default_factory=lambda: {"priority": 0.35, "length": 0.25, "keywords": 0.25, "balance": 0.15}
    )
    credibility: Dict[SourcePriority, float] = Field(
        default_factory=lambda: {
            SourcePriority.HIGH: 1.0,
            SourcePriority.MEDIUM: 0.7,
            SourcePriority.LOW: 0.4,
        }
    )
    category_targets: Dict[SourceCategory, float] = Field(
        default_factory=lambda: {
            SourceCategory.LOCAL: 0.4,
            SourceCategory.INTERNATIONAL: 0.3,
            SourceCategory.TECH: 0.15,
            SourceCategory.DEVELOPMENT: 0.1,
            SourceCategory.ACADEMIC: 0.05,
        }
    )


class SafetySettings(BaseModel):
    blocked_terms: List[str] = Field(default_factory=lambda: ["graphic violence", "child abuse", "beheading"])
    sensitive_terms: List[str] = Field(default_factory=lambda: ["election", "protest", "military", "border dispute"])
    loaded_terms: List[str] = Field(
        default_factory=lambda: ["shocking", "outrageous", "disgraceful", "traitor", "regime", "propaganda"]
    )
    bias_reject_threshold: int = Field(default=4, ge=1)
    use_classifier: bool = False
    blocked_classifier_flags: List[str] = Field(default_factory=lambda: ["hate", "violence", "sexual", "misinformation"])


class EnrichmentSettings(BaseModel):
    enabled: bool = True
    api_key: Optional[str] = None
    base_url: str = "https://generativelanguage.googleapis.com/v1beta/openai"
    model: str = "gemini-2.0-flash"
    timeout_s: float = Field(default=45.0, gt=0)
    translate_kh: bool = False


class TelegramSettings(BaseModel):
    enabled: bool = False
    bot_token: Optional[str] = None
    channel_id: Optional[str] = None
    channel_username: Optional[str] = None
    base_url: str = "https://razewire.com"


class NotificationSettings(BaseModel):
    max_attempts: int = Field(default=3, ge=1)
    retry_delay_s: float = Field(default=30.0, ge=0)
    dead_letter_capacity: int = Field(default=100, ge=1)


class AutoPublishSettings(BaseModel):
    enabled: bool = False
    min_content_length: int = Field(default=100, ge=0)
    max_drafts_per_run: int = Field(default=10, ge=1)
    delay_between_articles_s: float = Field(default=2.0, ge=0)
    require_manual_approval: bool = False
    notify: bool = True
    scan_limit: int = Field(default=50, ge=1)
    cron: Optional[str] = None
    interval_minutes: Optional[int] = Field(default=None, ge=1)

    @model_validator(mode="after")
    def _one_schedule(self) -> "AutoPublishSettings":
        if self.cron and self.interval_minutes:
            raise ValueError("auto_publish: set either cron or interval_minutes, not both")
        return self


class TelemetrySettings(BaseModel):
    log_capacity: int = Field(default=200, ge=1)
    history_capacity: int = Field(default=100, ge=1)
    health_smoothing: float = Field(default=0.2, gt=0.0, le=1.0)


class StorageSettings(BaseModel):
    db_path: str = "sentinel.db"


class SentinelConfig(BaseModel):
    """Root configuration object."""

    run: RunSettings = Field(default_factory=RunSettings)
    dedup: DedupSettings = Field(default_factory=DedupSettings)
    rate_limit: RateLimitSettings = Field(default_factory=RateLimitSettings)
    quality: QualitySettings = Field(default_factory=QualitySettings)
    safety: SafetySettings = Field(default_factory=SafetySettings)
    enrichment: EnrichmentSettings = Field(default_factory=EnrichmentSettings)
    telegram: TelegramSettings = Field(default_factory=TelegramSettings)
    notifications: NotificationSettings = Field(default_factory=NotificationSettings)
    auto_publish: AutoPublishSettings = Field(default_factory=AutoPublishSettings)
    telemetry: TelemetrySettings = Field(default_factory=TelemetrySettings)
    storage: StorageSettings = Field(default_factory=StorageSettings)
    sources: List[Source] = Field(default_factory=list)


def _env_bool(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


# env var -> (section, key, converter)
_ENV_OVERRIDES = {
    "SENTINEL_ENABLED": ("run", "enabled", _env_bool),
    "SENTINEL_FREQUENCY_MS": ("run", "frequency_ms", int),
    "SENTINEL_MAX_PER_RUN": ("run", "max_per_run", int),
    "SCHEDULER_TIMEZONE": ("run", "timezone", str),
    "SENTINEL_DB_PATH": ("storage", "db_path", str),
    "GOOGLE_API_KEY": ("enrichment", "api_key", str),
    "SENTINEL_AI_API_KEY": ("enrichment", "api_key", str),
    "SENTINEL_TRANSLATE_KH": ("enrichment", "translate_kh", _env_bool),
    "TELEGRAM_BOT_TOKEN": ("telegram", "bot_token", str),
    "TELEGRAM_CHANNEL_ID": ("telegram", "channel_id", str),
    "TELEGRAM_CHANNEL_USERNAME": ("telegram", "channel_username", str),
    "FRONTEND_URL": ("telegram", "base_url", str),
}


def apply_env_overrides(raw: Dict[str, Any], environ: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
    """Overlay environment variables on a raw configuration mapping."""
    environ = os.environ if environ is None else environ
    for var, (section, key, convert) in _ENV_OVERRIDES.items():
        value = environ.get(var)
        if value is None or value == "":
            continue
        try:
            raw.setdefault(section, {})[key] = convert(value)
        except ValueError:
            logger.warning(f"Ignoring invalid value for {var}: {value!r}")
    return raw


def parse_config(raw: Dict[str, Any]) -> SentinelConfig:
    """Validate a raw mapping into a SentinelConfig."""
    try:
        return SentinelConfig.model_validate(raw)
    except PydanticValidationError as e:
        raise ValidationError(f"Invalid configuration: {e}") from e


def load_config(path: Optional[str] = None, environ: Optional[Dict[str, str]] = None) -> SentinelConfig:
    """Load configuration from YAML file (if present) and the environment."""
    path = path or os.getenv("SENTINEL_CONFIG", DEFAULT_CONFIG_PATH)
    raw: Dict[str, Any] = {}
    config_file = Path(path)
    if config_file.exists():
        with config_file.open() as f:
            raw = yaml.safe_load(f) or {}
        logger.info(f"Loaded configuration from {config_file}")
    else:
        logger.warning(f"Config file not found: {config_file}, using defaults")

    return parse_config(apply_env_overrides(raw, environ))
