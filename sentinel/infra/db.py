"""
Database infrastructure with SQLite and async support.
"""

import logging
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import aiosqlite


logger = logging.getLogger(__name__)


# version -> statements; applied once, in order
MIGRATIONS: Dict[int, List[str]] = {
    1: [
        """
        CREATE TABLE IF NOT EXISTS sources (
            id TEXT PRIMARY KEY,
            position INTEGER NOT NULL DEFAULT 0,
            data TEXT NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
        """,
        """
        CREATE TABLE IF NOT EXISTS drafts (
            id TEXT PRIMARY KEY,
            status TEXT NOT NULL,
            author TEXT NOT NULL,
            approved INTEGER NOT NULL DEFAULT 0,
            fingerprint TEXT NOT NULL,
            source_url TEXT,
            created_at TIMESTAMP NOT NULL,
            published_at TIMESTAMP,
            data TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_drafts_status_author ON drafts(status, author)",
        "CREATE INDEX IF NOT EXISTS idx_drafts_fingerprint ON drafts(fingerprint)",
        "CREATE INDEX IF NOT EXISTS idx_drafts_source_url ON drafts(source_url)",
        "CREATE INDEX IF NOT EXISTS idx_drafts_created_at ON drafts(created_at)",
        """
        CREATE TABLE IF NOT EXISTS runs (
            id TEXT PRIMARY KEY,
            trigger TEXT NOT NULL,
            started_at TIMESTAMP NOT NULL,
            finished_at TIMESTAMP NOT NULL,
            data TEXT NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_runs_started_at ON runs(started_at)",
        """
        CREATE TABLE IF NOT EXISTS settings (
            key TEXT PRIMARY KEY,
            value TEXT NOT NULL,
            updated_at TIMESTAMP NOT NULL
        )
        """,
    ],
}


class Database:
    """Async SQLite database wrapper."""

    def __init__(self, db_path: str = "sentinel.db"):
        # Handle sqlite+aiosqlite:///path format
        if db_path.startswith("sqlite"):
            actual_path = db_path.split("///")[-1] if "///" in db_path else db_path.split("//")[-1]
            self.db_path = Path(actual_path)
        else:
            self.db_path = Path(db_path)
        self._connection: Optional[aiosqlite.Connection] = None

    async def connect(self) -> None:
        """Connect to the database and run migrations."""
        if self._connection:
            return

        if self.db_path.parent and not self.db_path.parent.exists():
            self.db_path.parent.mkdir(parents=True, exist_ok=True)

        self._connection = await aiosqlite.connect(self.db_path, timeout=30)
        self._connection.row_factory = aiosqlite.Row
        # WAL lets the CLI read while the service writes
        await self._connection.execute("PRAGMA journal_mode=WAL;")
        await self._connection.execute("PRAGMA busy_timeout=30000;")
        await self._run_migrations()

    async def close(self) -> None:
        """Close the database connection."""
        if self._connection:
            await self._connection.close()
            self._connection = None

    @asynccontextmanager
    async def transaction(self):
        """Context manager for database transactions."""
        if not self._connection:
            await self.connect()

        try:
            await self._connection.execute("BEGIN")
            yield self._connection
            await self._connection.commit()
        except Exception:
            await self._connection.rollback()
            raise

    async def execute(self, sql: str, params: Tuple[Any, ...] = ()) -> aiosqlite.Cursor:
        """Execute a SQL statement and commit it."""
        if not self._connection:
            await self.connect()
        cursor = await self._connection.execute(sql, params)
        await self._connection.commit()
        return cursor

    async def fetch_one(self, sql: str, params: Tuple[Any, ...] = ()) -> Optional[aiosqlite.Row]:
        """Fetch one row."""
        if not self._connection:
            await self.connect()
        async with self._connection.execute(sql, params) as cursor:
            return await cursor.fetchone()

    async def fetch_all(self, sql: str, params: Tuple[Any, ...] = ()) -> List[aiosqlite.Row]:
        """Fetch all rows."""
        if not self._connection:
            await self.connect()
        async with self._connection.execute(sql, params) as cursor:
            return list(await cursor.fetchall())

    async def upsert(
        self,
        table: str,
        data: Dict[str, Any],
        pk_columns: List[str],
    ) -> None:
        """Upsert data into a table."""
        columns = list(data.keys())
        placeholders = ", ".join("?" * len(columns))

        update_columns = [col for col in columns if col not in pk_columns]
        if update_columns:
            update_clause = ", ".join(f"{col} = excluded.{col}" for col in update_columns)
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO UPDATE SET {update_clause}"
        else:
            conflict_clause = f"ON CONFLICT({', '.join(pk_columns)}) DO NOTHING"

        sql = f"""
            INSERT INTO {table} ({', '.join(columns)})
            VALUES ({placeholders})
            {conflict_clause}
        """
        await self.execute(sql, tuple(data.values()))

    async def _run_migrations(self) -> None:
        """Run database migrations."""
        await self._connection.execute("""
            CREATE TABLE IF NOT EXISTS migrations (
                version INTEGER PRIMARY KEY,
                applied_at TIMESTAMP DEFAULT CURRENT_TIMESTAMP
            )
        """)
        async with self._connection.execute("SELECT version FROM migrations") as cursor:
            applied = {row[0] for row in await cursor.fetchall()}

        for version in sorted(MIGRATIONS):
            if version in applied:
                continue
            for statement in MIGRATIONS[version]:
                await self._connection.execute(statement)
            await self._connection.execute("INSERT INTO migrations (version) VALUES (?)", (version,))
            logger.info(f"Applied database migration {version}")
        await self._connection.commit()
