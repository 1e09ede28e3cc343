"""
Core interfaces for the Sentinel pipeline.

Fetchers, the enrichment capability, notification channels and the document
store are the external collaborators; everything else talks to them through
these abstract bases.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Tuple

from .models import (
    Candidate,
    Draft,
    DraftStatus,
    Enrichment,
    NotificationResult,
    RunRecord,
    Source,
    SourceType,
)


class Fetcher(ABC):
    """Retrieves raw items for one source type and normalizes them into Candidates."""

    @property
    @abstractmethod
    def source_type(self) -> SourceType:
        """The Source.type this fetcher handles."""
        pass

    @abstractmethod
    async def fetch(self, source: Source) -> List[Candidate]:
        """Fetch and normalize the current items of ``source``."""
        pass


class Enricher(ABC):
    """AI rewrite / classification capability."""

    @property
    @abstractmethod
    def model(self) -> str:
        """Identifier recorded on drafts it produced."""
        pass

    @abstractmethod
    async def enrich(self, candidate: Candidate, source: Optional[Source] = None) -> Enrichment:
        """Rewrite a candidate into article form."""
        pass

    @abstractmethod
    async def classify(self, candidate: Candidate) -> List[str]:
        """Return safety labels for a candidate (empty when clean)."""
        pass


class Notifier(ABC):
    """A channel announcing published articles."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Human-readable name for this channel."""
        pass

    @abstractmethod
    async def notify(self, draft: Draft) -> NotificationResult:
        """Announce ``draft``. Failures are returned, not raised."""
        pass

    async def close(self) -> None:
        """Release transport resources."""
        pass


class DocumentStore(ABC):
    """Persistence for sources, drafts, run history and runtime settings."""

    @abstractmethod
    async def create_draft(self, draft: Draft) -> Draft:
        pass

    @abstractmethod
    async def get_draft(self, draft_id: str) -> Draft:
        pass

    @abstractmethod
    async def update_draft(self, draft: Draft) -> Draft:
        pass

    @abstractmethod
    async def find_drafts(
        self,
        *,
        status: Optional[DraftStatus] = None,
        author: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Draft]:
        pass

    @abstractmethod
    async def draft_exists(self, *, fingerprint: Optional[str] = None, url: Optional[str] = None) -> bool:
        pass

    @abstractmethod
    async def recent_fingerprints(self, since: datetime) -> List[Tuple[str, datetime]]:
        pass

    @abstractmethod
    async def save_run(self, record: RunRecord) -> None:
        pass
