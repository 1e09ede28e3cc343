"""
Error taxonomy for the Sentinel pipeline.
"""

from __future__ import annotations

from datetime import datetime
from typing import Optional


class SentinelError(Exception):
    """Base class for every error raised by the pipeline."""


class SourceFetchError(SentinelError):
    """Network or parse failure for a single source. Never fatal to a run."""

    def __init__(self, source_id: str, message: str):
        super().__init__(f"{source_id}: {message}")
        self.source_id = source_id
        self.message = message


class EnrichmentError(SentinelError):
    """The enrichment (AI) call failed or returned an unusable payload."""


class RateLimitExceeded(EnrichmentError):
    """The enrichment API refused the call because of its quota."""

    def __init__(self, message: str = "rate limit exceeded", retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class ValidationError(SentinelError):
    """Malformed configuration, rejected at write time."""


class ConcurrencyConflict(SentinelError):
    """A trigger arrived while the guarded operation is already running."""


class CooldownActive(ConcurrencyConflict):
    """A run was requested before the cooldown window elapsed."""

    def __init__(self, until: datetime):
        super().__init__(f"cooldown active until {until.isoformat()}")
        self.until = until


class PersistenceError(SentinelError):
    """A write to the document store failed."""


class SourceNotFound(SentinelError, KeyError):
    """No source with the requested id."""

    def __str__(self) -> str:
        return Exception.__str__(self)


class DraftNotFound(SentinelError, KeyError):
    """No draft with the requested id."""

    def __str__(self) -> str:
        return Exception.__str__(self)
