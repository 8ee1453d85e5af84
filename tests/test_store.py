"""
Tests for the SQLite cache store.
"""

from __future__ import annotations

import asyncio

from datetime import datetime, timedelta, timezone
from pathlib import Path

import aiosqlite
import pytest

from smartcache.exceptions import StorageUnavailable
from smartcache.store import CacheStore, like_to_glob

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


class TestCacheStoreBasics:
    """Test basic store operations."""

    @pytest.mark.asyncio
    async def test_upsert_and_get(self, store: CacheStore) -> None:
        """Test storing and retrieving a row."""
        await store.upsert("k", '{"a": 1}', T0)

        entry = await store.get("k")
        assert entry is not None
        assert entry.key == "k"
        assert entry.value == '{"a": 1}'
        assert entry.timestamp == T0

    @pytest.mark.asyncio
    async def test_get_nonexistent_returns_none(self, store: CacheStore) -> None:
        """Test that a missing key returns None."""
        assert await store.get("missing") is None

    @pytest.mark.asyncio
    async def test_upsert_replaces_existing_row(self, store: CacheStore) -> None:
        """Test that a second write replaces value and timestamp."""
        await store.upsert("k", '"first"', T0)
        await store.upsert("k", '"second"', T0 + timedelta(seconds=5))

        entry = await store.get("k")
        assert entry is not None
        assert entry.value == '"second"'
        assert entry.timestamp == T0 + timedelta(seconds=5)
        assert await store.count() == 1

    @pytest.mark.asyncio
    async def test_naive_timestamp_treated_as_utc(self, store: CacheStore) -> None:
        """Test that naive datetimes are stored as UTC."""
        await store.upsert("k", "1", datetime(2026, 1, 1, 12, 0, 0))

        entry = await store.get("k")
        assert entry is not None
        assert entry.timestamp == T0

    @pytest.mark.asyncio
    async def test_data_is_durable_across_reopen(self, db_path: Path) -> None:
        """Test that rows survive closing and reopening the database."""
        first = CacheStore(db_path)
        await first.init()
        await first.upsert("k", '"v"', T0)
        await first.close()

        second = CacheStore(db_path)
        await second.init()
        try:
            entry = await second.get("k")
            assert entry is not None
            assert entry.value == '"v"'
        finally:
            await second.close()

    @pytest.mark.asyncio
    async def test_failed_write_keeps_concurrent_write(self, store: CacheStore) -> None:
        """Test that a failing write does not discard another caller's write."""
        results = await asyncio.gather(
            store.upsert("good", "1", T0),
            store.upsert("bad", None, T0),  # type: ignore[arg-type]
            return_exceptions=True,
        )

        assert results[0] is None
        assert isinstance(results[1], StorageUnavailable)

        entry = await store.get("good")
        assert entry is not None
        assert entry.value == "1"
        assert await store.get("bad") is None

    @pytest.mark.asyncio
    async def test_writes_around_failed_statement_persist(self, store: CacheStore) -> None:
        """Test that writes around a failing statement all persist."""
        await store.upsert("a", "1", T0)

        results = await asyncio.gather(
            store.upsert("b", "2", T0),
            store.upsert("bad", None, T0),  # type: ignore[arg-type]
            store.delete_key("a"),
            return_exceptions=True,
        )

        assert isinstance(results[1], StorageUnavailable)
        assert results[2] is True
        assert await store.keys_matching("%") == ["b"]


class TestCacheStoreDeletes:
    """Test delete operations."""

    @pytest.mark.asyncio
    async def test_delete_key(self, store: CacheStore) -> None:
        """Test deleting a single key."""
        await store.upsert("a", "1", T0)
        await store.upsert("b", "2", T0)

        assert await store.delete_key("a") is True
        assert await store.get("a") is None
        assert await store.get("b") is not None

    @pytest.mark.asyncio
    async def test_delete_key_is_idempotent(self, store: CacheStore) -> None:
        """Test that deleting a missing key is a no-op."""
        assert await store.delete_key("missing") is False
        await store.upsert("a", "1", T0)
        assert await store.delete_key("a") is True
        assert await store.delete_key("a") is False

    @pytest.mark.asyncio
    async def test_delete_key_with_stale_timestamp_keeps_newer_row(
        self, store: CacheStore
    ) -> None:
        """Test that a conditional delete leaves a replaced row in place."""
        await store.upsert("k", '"old"', T0)
        await store.upsert("k", '"new"', T0 + timedelta(seconds=1))

        assert await store.delete_key("k", written_at=T0) is False
        entry = await store.get("k")
        assert entry is not None
        assert entry.value == '"new"'

        assert await store.delete_key("k", written_at=T0 + timedelta(seconds=1)) is True
        assert await store.get("k") is None

    @pytest.mark.asyncio
    async def test_delete_all(self, store: CacheStore) -> None:
        """Test clearing every row."""
        for i in range(3):
            await store.upsert(f"k{i}", str(i), T0)

        assert await store.delete_all() == 3
        assert await store.count() == 0

    @pytest.mark.asyncio
    async def test_delete_older_than_is_strict(self, store: CacheStore) -> None:
        """Test that only rows strictly before the cutoff are deleted."""
        await store.upsert("old", "1", T0)
        await store.upsert("edge", "2", T0 + timedelta(seconds=10))
        await store.upsert("new", "3", T0 + timedelta(seconds=20))

        deleted = await store.delete_older_than(T0 + timedelta(seconds=10))

        assert deleted == 1
        assert await store.get("old") is None
        assert await store.get("edge") is not None
        assert await store.get("new") is not None

    @pytest.mark.asyncio
    async def test_delete_older_than_orders_subsecond_timestamps(
        self, store: CacheStore
    ) -> None:
        """Test cutoff comparison with whole-second and fractional timestamps."""
        await store.upsert("whole", "1", T0)
        await store.upsert("fraction", "2", T0 + timedelta(microseconds=500))

        deleted = await store.delete_older_than(T0 + timedelta(microseconds=1))

        assert deleted == 1
        assert await store.get("whole") is None
        assert await store.get("fraction") is not None


class TestCacheStoreKeyMatching:
    """Test wildcard key enumeration."""

    @pytest.fixture
    async def populated(self, store: CacheStore) -> CacheStore:
        for key in ["/users/1", "/users/2", "/posts/1", "/Users/3", "user_x", "userAx"]:
            await store.upsert(key, "1", T0)
        return store

    @pytest.mark.asyncio
    async def test_prefix_pattern(self, populated: CacheStore) -> None:
        """Test anchored prefix matching."""
        assert await populated.keys_matching("/users/%") == ["/users/1", "/users/2"]

    @pytest.mark.asyncio
    async def test_substring_pattern(self, populated: CacheStore) -> None:
        """Test substring matching anywhere in the key."""
        assert await populated.keys_matching("%/1") == ["/posts/1", "/users/1"]

    @pytest.mark.asyncio
    async def test_matching_is_case_sensitive(self, populated: CacheStore) -> None:
        """Test that upper and lower case keys are distinguished."""
        assert await populated.keys_matching("/Users/%") == ["/Users/3"]

    @pytest.mark.asyncio
    async def test_underscore_is_literal(self, populated: CacheStore) -> None:
        """Test that only % acts as a wildcard."""
        assert await populated.keys_matching("user_%") == ["user_x"]

    def test_like_to_glob_escapes_glob_characters(self) -> None:
        """Test translation of patterns into GLOB syntax."""
        assert like_to_glob("a%b") == "a*b"
        assert like_to_glob("a*b?[c]") == "a[*]b[?][[]c]"


class TestCacheStoreErrors:
    """Test failure handling."""

    @pytest.mark.asyncio
    async def test_use_before_init_raises(self, db_path: Path) -> None:
        """Test that an unopened store raises StorageUnavailable."""
        store = CacheStore(db_path)
        with pytest.raises(StorageUnavailable):
            await store.get("k")
        with pytest.raises(StorageUnavailable):
            await store.upsert("k", "1", T0)

    @pytest.mark.asyncio
    async def test_use_after_close_raises(self, db_path: Path) -> None:
        """Test that a closed store raises StorageUnavailable."""
        store = CacheStore(db_path)
        await store.init()
        await store.close()
        await store.close()

        with pytest.raises(StorageUnavailable):
            await store.count()

    @pytest.mark.asyncio
    async def test_unopenable_path_raises(self, temp_dir: Path) -> None:
        """Test that a directory in place of the database file fails cleanly."""
        bad_path = temp_dir / "is_a_dir"
        bad_path.mkdir()

        store = CacheStore(bad_path)
        with pytest.raises(StorageUnavailable) as exc_info:
            await store.init()

        assert exc_info.value.context["operation"] == "init"
        assert not store.is_open

    @pytest.mark.asyncio
    async def test_unknown_schema_version_refused(self, db_path: Path) -> None:
        """Test that a database from a newer schema is not opened."""
        db_path.parent.mkdir(parents=True, exist_ok=True)
        async with aiosqlite.connect(db_path) as db:
            await db.execute("PRAGMA user_version = 7")
            await db.commit()

        store = CacheStore(db_path)
        with pytest.raises(StorageUnavailable) as exc_info:
            await store.init()

        assert exc_info.value.context["found"] == 7

    @pytest.mark.asyncio
    async def test_oldest_timestamp(self, store: CacheStore) -> None:
        """Test the oldest write time lookup."""
        assert await store.oldest_timestamp() is None
        await store.upsert("b", "1", T0 + timedelta(seconds=3))
        await store.upsert("a", "1", T0)
        assert await store.oldest_timestamp() == T0
