"""
Persistent store for cache entries.

A single SQLite table holds one row per key:

    cache_entries(key TEXT PRIMARY KEY, data TEXT, timestamp DATETIME)

The store knows nothing about expiration; it offers point lookup, upsert,
deletes by key and by cutoff time, and wildcard key enumeration. Every
operation commits immediately so it is durable and visible to the next call.
"""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any, Generator, Iterable

import aiosqlite
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

from smartcache.exceptions import StorageUnavailable
from smartcache.logging import get_logger
from smartcache.types import CacheEntry, format_timestamp, parse_timestamp

logger = get_logger(__name__)

SCHEMA_VERSION = 1


def _is_locked(exc: BaseException) -> bool:
    """Whether an error is SQLite's transient lock contention."""
    return isinstance(exc, aiosqlite.OperationalError) and (
        "locked" in str(exc).lower() or "busy" in str(exc).lower()
    )


_retry_locked = retry(
    retry=retry_if_exception(_is_locked),
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=1),
    reraise=True,
)


def like_to_glob(pattern: str) -> str:
    """Translate a ``%``-wildcard pattern into a case-sensitive GLOB pattern.

    ``%`` matches any sequence; every other character is literal.
    """
    out: list[str] = []
    for ch in pattern:
        if ch == "%":
            out.append("*")
        elif ch in "*?[":
            out.append(f"[{ch}]")
        else:
            out.append(ch)
    return "".join(out)


class CacheStore:
    """SQLite-backed key/value/timestamp store.

    One aiosqlite connection in autocommit mode is shared by all callers;
    aiosqlite runs the statements on its own thread one at a time, and each
    statement commits on its own, so a failed write never discards another
    caller's completed one.
    """

    def __init__(self, db_path: str | Path) -> None:
        """Initialize the store.

        Args:
            db_path: Path of the SQLite file. ``":memory:"`` is accepted.
        """
        self.db_path = db_path if str(db_path) == ":memory:" else Path(db_path)
        self._db: aiosqlite.Connection | None = None

    @property
    def is_open(self) -> bool:
        return self._db is not None

    @contextmanager
    def _guard(self, operation: str) -> Generator[None, None, None]:
        """Translate storage failures into StorageUnavailable."""
        try:
            yield
        except (aiosqlite.Error, OSError) as e:
            logger.error(
                "Cache store operation failed",
                operation=operation,
                db_path=str(self.db_path),
                error=str(e),
            )
            raise StorageUnavailable(
                f"Cache store {operation} failed",
                context={
                    "db_path": str(self.db_path),
                    "operation": operation,
                    "error": str(e),
                },
            ) from e

    def _conn(self, operation: str) -> aiosqlite.Connection:
        if self._db is None:
            raise StorageUnavailable(
                "Cache store is not open. Call init() first.",
                context={"db_path": str(self.db_path), "operation": operation},
            )
        return self._db

    async def init(self) -> None:
        """Open the database and create the schema."""
        if self._db is not None:
            return

        with self._guard("init"):
            if isinstance(self.db_path, Path):
                self.db_path.parent.mkdir(parents=True, exist_ok=True)

            db = await aiosqlite.connect(self.db_path, isolation_level=None)
            try:
                db.row_factory = aiosqlite.Row
                await self._create_schema(db)
            except BaseException:
                await db.close()
                raise
            self._db = db

        logger.info("Cache store initialized", db_path=str(self.db_path))

    async def _create_schema(self, db: aiosqlite.Connection) -> None:
        async with db.execute("PRAGMA user_version") as cursor:
            row = await cursor.fetchone()
        version = row[0] if row else 0

        if version not in (0, SCHEMA_VERSION):
            raise StorageUnavailable(
                "Unsupported cache schema version",
                context={
                    "db_path": str(self.db_path),
                    "found": version,
                    "expected": SCHEMA_VERSION,
                },
            )

        await db.execute("""
            CREATE TABLE IF NOT EXISTS cache_entries (
                key TEXT PRIMARY KEY,
                data TEXT NOT NULL,
                timestamp DATETIME NOT NULL
            )
        """)
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_cache_timestamp ON cache_entries(timestamp)"
        )
        await db.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")

    async def close(self) -> None:
        """Close the database connection."""
        if self._db:
            db, self._db = self._db, None
            with self._guard("close"):
                await db.close()

    @_retry_locked
    async def _write(self, operation: str, sql: str, params: Iterable[Any] = ()) -> int:
        db = self._conn(operation)
        async with db.execute(sql, tuple(params)) as cursor:
            return cursor.rowcount

    async def upsert(self, key: str, value: str, timestamp: datetime) -> None:
        """Insert or replace the row for ``key``.

        Args:
            key: Cache key.
            value: Encoded payload.
            timestamp: Write time.
        """
        with self._guard("upsert"):
            await self._write(
                "upsert",
                """
                INSERT INTO cache_entries (key, data, timestamp) VALUES (?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    data = excluded.data,
                    timestamp = excluded.timestamp
                """,
                (key, value, format_timestamp(timestamp)),
            )

    async def get(self, key: str) -> CacheEntry | None:
        """Look up a row by key.

        Returns:
            CacheEntry or None if not found.
        """
        db = self._conn("get")
        with self._guard("get"):
            async with db.execute(
                "SELECT key, data, timestamp FROM cache_entries WHERE key = ?", (key,)
            ) as cursor:
                row = await cursor.fetchone()

        if not row:
            return None

        return self._row_to_entry(row)

    async def delete_key(self, key: str, written_at: datetime | None = None) -> bool:
        """Delete the row for ``key``. No-op if absent.

        Args:
            key: Cache key.
            written_at: If given, only delete when the row still carries this
                write time, leaving a concurrently replaced value in place.

        Returns:
            True if a row was deleted.
        """
        with self._guard("delete_key"):
            if written_at is None:
                deleted = await self._write(
                    "delete_key", "DELETE FROM cache_entries WHERE key = ?", (key,)
                )
            else:
                deleted = await self._write(
                    "delete_key",
                    "DELETE FROM cache_entries WHERE key = ? AND timestamp = ?",
                    (key, format_timestamp(written_at)),
                )
        return deleted > 0

    async def delete_all(self) -> int:
        """Delete every row.

        Returns:
            Number of rows deleted.
        """
        with self._guard("delete_all"):
            return await self._write("delete_all", "DELETE FROM cache_entries")

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete all rows written strictly before ``cutoff``.

        Returns:
            Number of rows deleted.
        """
        with self._guard("delete_older_than"):
            return await self._write(
                "delete_older_than",
                "DELETE FROM cache_entries WHERE timestamp < ?",
                (format_timestamp(cutoff),),
            )

    async def keys_matching(self, pattern: str) -> list[str]:
        """List keys matching a pattern where ``%`` matches any sequence.

        Matching is case-sensitive and every other character is literal.

        Args:
            pattern: Pattern such as ``"/users/%"`` or ``"%users%"``.

        Returns:
            Matching keys in ascending order.
        """
        db = self._conn("keys_matching")
        with self._guard("keys_matching"):
            async with db.execute(
                "SELECT key FROM cache_entries WHERE key GLOB ? ORDER BY key ASC",
                (like_to_glob(pattern),),
            ) as cursor:
                rows = await cursor.fetchall()

        return [row["key"] for row in rows]

    async def count(self) -> int:
        """Get total count of rows."""
        db = self._conn("count")
        with self._guard("count"):
            async with db.execute("SELECT COUNT(*) FROM cache_entries") as cursor:
                row = await cursor.fetchone()
        return row[0] if row else 0

    async def oldest_timestamp(self) -> datetime | None:
        """Write time of the oldest row, or None when empty."""
        db = self._conn("oldest_timestamp")
        with self._guard("oldest_timestamp"):
            async with db.execute("SELECT MIN(timestamp) FROM cache_entries") as cursor:
                row = await cursor.fetchone()
        if not row or row[0] is None:
            return None
        return parse_timestamp(row[0])

    def _row_to_entry(self, row: aiosqlite.Row) -> CacheEntry:
        return CacheEntry(
            key=row["key"],
            value=row["data"],
            timestamp=parse_timestamp(row["timestamp"]),
        )
