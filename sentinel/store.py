"""
Draft/publish store: sources, drafts, run history and runtime settings in SQLite.
"""

from __future__ import annotations

import json
import logging
from datetime import datetime
from typing import Any, List, Optional, Tuple

import aiosqlite

from .errors import DraftNotFound, PersistenceError
from .infra.db import Database
from .interfaces import DocumentStore
from .models import SENTINEL_AUTHOR, Draft, DraftStatus, RunRecord, Source, utcnow

logger = logging.getLogger(__name__)


def _ts(value: Optional[datetime]) -> Optional[str]:
    return value.isoformat() if value is not None else None


class SentinelStore(DocumentStore):
    """Document-style tables: the model is stored as JSON next to its indexed columns."""

    def __init__(self, db: Database):
        self.db = db

    @classmethod
    def at(cls, db_path: str) -> "SentinelStore":
        return cls(Database(db_path))

    async def connect(self) -> None:
        await self.db.connect()

    async def close(self) -> None:
        await self.db.close()

    # ------------------------------------------------------------------- #
    # Sources

    async def save_sources(self, sources: List[Source]) -> None:
        """Replace the stored source list."""
        now = _ts(utcnow())
        try:
            async with self.db.transaction() as conn:
                await conn.execute("DELETE FROM sources")
                for position, source in enumerate(sources):
                    await conn.execute(
                        "INSERT INTO sources (id, position, data, updated_at) VALUES (?, ?, ?, ?)",
                        (source.id, position, source.model_dump_json(), now),
                    )
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save sources: {e}") from e

    async def load_sources(self) -> List[Source]:
        rows = await self.db.fetch_all("SELECT data FROM sources ORDER BY position")
        return [Source.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------- #
    # Drafts

    def _draft_row(self, draft: Draft) -> dict:
        return {
            "id": draft.id,
            "status": draft.status.value,
            "author": draft.author,
            "approved": int(draft.approved),
            "fingerprint": draft.fingerprint,
            "source_url": draft.source_url,
            "created_at": _ts(draft.created_at),
            "published_at": _ts(draft.published_at),
            "data": draft.model_dump_json(),
        }

    async def create_draft(self, draft: Draft) -> Draft:
        row = self._draft_row(draft)
        columns = ", ".join(row)
        placeholders = ", ".join("?" * len(row))
        try:
            await self.db.execute(f"INSERT INTO drafts ({columns}) VALUES ({placeholders})", tuple(row.values()))
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to create draft '{draft.title.en[:60]}': {e}") from e
        logger.debug(f"Stored draft {draft.id} ({draft.status.value})")
        return draft

    async def update_draft(self, draft: Draft) -> Draft:
        try:
            await self.db.upsert("drafts", self._draft_row(draft), ["id"])
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to update draft {draft.id}: {e}") from e
        return draft

    async def get_draft(self, draft_id: str) -> Draft:
        row = await self.db.fetch_one("SELECT data FROM drafts WHERE id = ?", (draft_id,))
        if row is None:
            raise DraftNotFound(f"Unknown draft: {draft_id}")
        return Draft.model_validate_json(row["data"])

    async def find_drafts(
        self,
        *,
        status: Optional[DraftStatus] = None,
        author: Optional[str] = None,
        approved: Optional[bool] = None,
        limit: Optional[int] = None,
        oldest_first: bool = False,
        after: Optional[Draft] = None,
    ) -> List[Draft]:
        """Drafts matching the filters, ordered by (created_at, id).

        ``after`` is a keyset cursor: only drafts past it in the chosen order
        are returned, so a caller can page while it changes earlier rows.
        """
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if author is not None:
            clauses.append("author = ?")
            params.append(author)
        if approved is not None:
            clauses.append("approved = ?")
            params.append(int(approved))
        if after is not None:
            op = ">" if oldest_first else "<"
            clauses.append(f"(created_at {op} ? OR (created_at = ? AND id {op} ?))")
            params.extend([_ts(after.created_at), _ts(after.created_at), after.id])
        sql = "SELECT data FROM drafts"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        order = "ASC" if oldest_first else "DESC"
        sql += f" ORDER BY created_at {order}, id {order}"
        if limit is not None:
            sql += " LIMIT ?"
            params.append(limit)
        rows = await self.db.fetch_all(sql, tuple(params))
        return [Draft.model_validate_json(row["data"]) for row in rows]

    async def approve_draft(self, draft_id: str, approved: bool = True) -> Draft:
        draft = await self.get_draft(draft_id)
        update: dict = {"approved": approved}
        # Moderation clears a safety hold
        if approved and draft.status == DraftStatus.PENDING_REVIEW:
            update["status"] = DraftStatus.DRAFT
        return await self.update_draft(draft.model_copy(update=update))

    async def draft_exists(self, *, fingerprint: Optional[str] = None, url: Optional[str] = None) -> bool:
        clauses, params = [], []
        if fingerprint:
            clauses.append("fingerprint = ?")
            params.append(fingerprint)
        if url:
            clauses.append("source_url = ?")
            params.append(url)
        if not clauses:
            return False
        try:
            row = await self.db.fetch_one(f"SELECT 1 FROM drafts WHERE {' OR '.join(clauses)} LIMIT 1", tuple(params))
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to look up draft: {e}") from e
        return row is not None

    async def recent_fingerprints(self, since: datetime) -> List[Tuple[str, datetime]]:
        rows = await self.db.fetch_all(
            "SELECT fingerprint, created_at FROM drafts WHERE created_at >= ? ORDER BY created_at",
            (_ts(since),),
        )
        return [(row["fingerprint"], datetime.fromisoformat(row["created_at"])) for row in rows]

    async def count_drafts(
        self,
        *,
        status: Optional[DraftStatus] = None,
        author: Optional[str] = SENTINEL_AUTHOR,
        published_since: Optional[datetime] = None,
    ) -> int:
        clauses, params = [], []
        if status is not None:
            clauses.append("status = ?")
            params.append(status.value)
        if author is not None:
            clauses.append("author = ?")
            params.append(author)
        if published_since is not None:
            clauses.append("published_at >= ?")
            params.append(_ts(published_since))
        sql = "SELECT COUNT(*) AS n FROM drafts"
        if clauses:
            sql += " WHERE " + " AND ".join(clauses)
        row = await self.db.fetch_one(sql, tuple(params))
        return int(row["n"]) if row else 0

    # ------------------------------------------------------------------- #
    # Runs

    async def save_run(self, record: RunRecord) -> None:
        try:
            await self.db.upsert(
                "runs",
                {
                    "id": record.id,
                    "trigger": record.trigger.value,
                    "started_at": _ts(record.started_at),
                    "finished_at": _ts(record.finished_at),
                    "data": record.model_dump_json(),
                },
                ["id"],
            )
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save run {record.id}: {e}") from e

    async def recent_runs(self, limit: int = 20) -> List[RunRecord]:
        rows = await self.db.fetch_all("SELECT data FROM runs ORDER BY started_at DESC LIMIT ?", (limit,))
        return [RunRecord.model_validate_json(row["data"]) for row in rows]

    # ------------------------------------------------------------------- #
    # Runtime settings

    async def get_setting(self, key: str, default: Any = None) -> Any:
        row = await self.db.fetch_one("SELECT value FROM settings WHERE key = ?", (key,))
        return json.loads(row["value"]) if row is not None else default

    async def set_setting(self, key: str, value: Any) -> None:
        try:
            await self.db.upsert(
                "settings",
                {"key": key, "value": json.dumps(value), "updated_at": _ts(utcnow())},
                ["key"],
            )
        except aiosqlite.Error as e:
            raise PersistenceError(f"Failed to save setting {key}: {e}") from e
