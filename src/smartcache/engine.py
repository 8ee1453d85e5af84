"""
Cache engine.

Wraps a CacheStore with expiration semantics:
- lazy eviction: a read that finds a stale row deletes it and reports a miss
- periodic maintenance: an asyncio task sweeps rows older than the sweep TTL

An engine is an explicit object. Open one with ``CacheEngine.open(...)`` and
pass it to every consumer; there is no process-wide instance.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path
from typing import TYPE_CHECKING, Any

from smartcache import codec
from smartcache.exceptions import ConfigurationError, SmartCacheError
from smartcache.logging import get_logger, log_context
from smartcache.store import CacheStore
from smartcache.types import CachedValue, Clock, to_timedelta, utc_now

if TYPE_CHECKING:
    from smartcache.config import Settings

logger = get_logger(__name__)

DEFAULT_TTL = timedelta(minutes=10)
DEFAULT_MAINTENANCE_INTERVAL = timedelta(minutes=30)


@dataclass(frozen=True)
class CacheConfig:
    """Engine configuration, validated on construction.

    Attributes:
        default_ttl: TTL used by reads that do not pass one.
        maintenance_interval: Period between maintenance sweeps.
        sweep_ttl: Age after which the sweep purges a row. Defaults to
            ``default_ttl``. This bounds retention for every entry, so a read
            with a longer per-call TTL can still find its row already swept.
        start_maintenance: Arm the periodic sweep when the engine opens.
    """

    default_ttl: timedelta = DEFAULT_TTL
    maintenance_interval: timedelta = DEFAULT_MAINTENANCE_INTERVAL
    sweep_ttl: timedelta | None = None
    start_maintenance: bool = True

    def __post_init__(self) -> None:
        if self.default_ttl <= timedelta(0):
            raise ConfigurationError(
                "default_ttl must be positive",
                context={"default_ttl": self.default_ttl},
            )
        if self.maintenance_interval <= timedelta(0):
            raise ConfigurationError(
                "maintenance_interval must be positive",
                context={"maintenance_interval": self.maintenance_interval},
            )
        if self.sweep_ttl is not None and self.sweep_ttl < self.default_ttl:
            raise ConfigurationError(
                "sweep_ttl must not be shorter than default_ttl",
                context={"sweep_ttl": self.sweep_ttl, "default_ttl": self.default_ttl},
            )

    @property
    def effective_sweep_ttl(self) -> timedelta:
        return self.sweep_ttl if self.sweep_ttl is not None else self.default_ttl

    @classmethod
    def from_settings(cls, settings: Settings, start_maintenance: bool = True) -> CacheConfig:
        """Build a config from application settings."""
        return cls(
            default_ttl=settings.default_ttl,
            maintenance_interval=settings.maintenance_interval,
            sweep_ttl=settings.sweep_ttl,
            start_maintenance=start_maintenance,
        )


class CacheEngine:
    """Persistent, time-bounded key/value cache.

    The engine owns its CacheStore: ``open`` initializes it and ``close``
    releases it. Reads and writes are not locked at this level; concurrent
    calls rely on SQLite's single-row atomicity.

    Example:
        engine = await CacheEngine.open(".cache/smart_cache.sqlite")
        await engine.set("user:1", {"name": "Ada"})
        user = await engine.get("user:1", ttl=timedelta(minutes=5))
        await engine.close()
    """

    def __init__(
        self,
        store: CacheStore,
        config: CacheConfig | None = None,
        clock: Clock = utc_now,
    ) -> None:
        """Create an engine around an already-initialized store.

        Prefer ``CacheEngine.open``, which also initializes the store and
        arms maintenance.

        Args:
            store: The backing store. The engine takes ownership of it.
            config: Engine configuration.
            clock: Source of the current UTC time.
        """
        self._store = store
        self.config = config or CacheConfig()
        self._clock = clock
        self._maintenance_interval = self.config.maintenance_interval
        self._maintenance_task: asyncio.Task[None] | None = None
        self._closed = False

    @classmethod
    async def open(
        cls,
        db_path: str | Path,
        config: CacheConfig | None = None,
        clock: Clock = utc_now,
    ) -> CacheEngine:
        """Open the store at ``db_path`` and return a ready engine.

        Raises:
            StorageUnavailable: If the database cannot be opened.
        """
        store = CacheStore(db_path)
        await store.init()
        engine = cls(store, config=config, clock=clock)
        if engine.config.start_maintenance:
            engine.schedule_maintenance()
        logger.info(
            "Cache engine opened",
            db_path=str(db_path),
            default_ttl=engine.default_ttl.total_seconds(),
            maintenance_interval=engine.maintenance_interval.total_seconds(),
            sweep_ttl=engine.sweep_ttl.total_seconds(),
        )
        return engine

    @classmethod
    async def from_settings(cls, settings: Settings, clock: Clock = utc_now) -> CacheEngine:
        """Open an engine configured from application settings."""
        return await cls.open(
            settings.CACHE_DB_PATH, config=CacheConfig.from_settings(settings), clock=clock
        )

    async def __aenter__(self) -> CacheEngine:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    @property
    def default_ttl(self) -> timedelta:
        return self.config.default_ttl

    @property
    def maintenance_interval(self) -> timedelta:
        return self._maintenance_interval

    @property
    def sweep_ttl(self) -> timedelta:
        return self.config.effective_sweep_ttl

    @property
    def store(self) -> CacheStore:
        return self._store

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def maintenance_scheduled(self) -> bool:
        return self._maintenance_task is not None and not self._maintenance_task.done()

    def now(self) -> datetime:
        return self._clock()

    async def get(
        self,
        key: str,
        ttl: timedelta | float | None = None,
        *,
        as_type: Any = None,
    ) -> Any | None:
        """Get a value if present and not older than ``ttl``.

        Args:
            key: Cache key.
            ttl: Freshness window for this read (defaults to default_ttl).
            as_type: Expected type of the stored value.

        Returns:
            The decoded value, or None on a miss or an expired entry.

        Raises:
            SerializationError: If the stored payload does not decode as
                ``as_type``.
            StorageUnavailable: If the store fails.
        """
        cached = await self.get_entry(key, ttl, as_type=as_type)
        return cached.value if cached is not None else None

    async def get_entry(
        self,
        key: str,
        ttl: timedelta | float | None = None,
        *,
        as_type: Any = None,
    ) -> CachedValue[Any] | None:
        """Like ``get`` but also returns the entry's write time."""
        effective_ttl = self.default_ttl if ttl is None else to_timedelta(ttl)

        with log_context(operation="get", cache_key=key):
            entry = await self._store.get(key)
            if entry is None:
                logger.debug("Cache miss")
                return None

            if not entry.is_fresh(self.now(), effective_ttl):
                # Only remove the row we read; a concurrent set may have replaced it
                await self._store.delete_key(key, written_at=entry.timestamp)
                logger.debug(
                    "Cache entry expired",
                    ttl=effective_ttl.total_seconds(),
                    written_at=entry.timestamp.isoformat(),
                )
                return None

            if effective_ttl > self.sweep_ttl:
                logger.debug(
                    "Read TTL exceeds sweep TTL; retention is bounded by the sweep",
                    ttl=effective_ttl.total_seconds(),
                    sweep_ttl=self.sweep_ttl.total_seconds(),
                )

            try:
                value = codec.decode(entry.value, as_type)
            except SmartCacheError as e:
                e.context.setdefault("key", key)
                raise

            logger.debug("Cache hit")
            return CachedValue(key=key, value=value, timestamp=entry.timestamp)

    async def set(self, key: str, value: Any) -> None:
        """Store ``value`` under ``key`` with the current time.

        Raises:
            SerializationError: If the value cannot be encoded.
            StorageUnavailable: If the store fails.
        """
        try:
            payload = codec.encode(value)
        except SmartCacheError as e:
            e.context.setdefault("key", key)
            raise

        with log_context(operation="set", cache_key=key):
            await self._store.upsert(key, payload, self.now())
            logger.debug("Cache entry stored", size=len(payload))

    async def remove(self, key: str) -> None:
        """Remove a single entry. No-op if missing."""
        with log_context(operation="remove", cache_key=key):
            if await self._store.delete_key(key):
                logger.debug("Cache entry removed")

    async def remove_by_pattern(self, pattern: str) -> int:
        """Remove every entry whose key contains ``pattern``.

        Keys are listed first and then deleted one by one, so a key written
        during the sweep may or may not be removed.

        Returns:
            Number of entries removed.
        """
        removed = 0
        with log_context(operation="remove_by_pattern"):
            for key in await self._store.keys_matching(f"%{pattern}%"):
                if await self._store.delete_key(key):
                    removed += 1
            logger.info("Removed cache entries by pattern", pattern=pattern, removed=removed)
        return removed

    async def get_keys_by_prefix(self, prefix: str) -> list[str]:
        """List keys starting with ``prefix``."""
        return await self._store.keys_matching(f"{prefix}%")

    async def clear(self) -> None:
        """Remove every entry."""
        with log_context(operation="clear"):
            removed = await self._store.delete_all()
            logger.info("Cache cleared", removed=removed)

    async def maintenance(self) -> int:
        """Purge entries older than the sweep TTL.

        Returns:
            Number of entries purged.
        """
        with log_context(operation="maintenance"):
            cutoff = self.now() - self.sweep_ttl
            purged = await self._store.delete_older_than(cutoff)
            logger.info("Cache maintenance complete", purged=purged, cutoff=cutoff.isoformat())
        return purged

    def schedule_maintenance(self, interval: timedelta | float | None = None) -> None:
        """Arm the periodic maintenance task, replacing any pending one.

        Must be called from a running event loop.

        Args:
            interval: New period. Defaults to the current interval.
        """
        if self._closed:
            raise SmartCacheError("Cannot schedule maintenance on a closed cache engine")

        new_interval = (
            self._maintenance_interval if interval is None else to_timedelta(interval)
        )
        if new_interval <= timedelta(0):
            raise ConfigurationError(
                "maintenance_interval must be positive",
                context={"maintenance_interval": new_interval},
            )

        self.cancel_maintenance()
        self._maintenance_interval = new_interval
        self._maintenance_task = asyncio.get_running_loop().create_task(
            self._maintenance_loop(new_interval.total_seconds()),
            name="smartcache-maintenance",
        )

    def cancel_maintenance(self) -> None:
        """Cancel the pending maintenance task, if any."""
        if self._maintenance_task is not None and not self._maintenance_task.done():
            self._maintenance_task.cancel()
        self._maintenance_task = None

    async def _maintenance_loop(self, interval_seconds: float) -> None:
        while True:
            await asyncio.sleep(interval_seconds)
            try:
                await self.maintenance()
            except Exception as e:
                logger.warning(
                    "Cache maintenance failed; will retry next interval",
                    error=str(e),
                    error_type=type(e).__name__,
                )

    async def close(self) -> None:
        """Stop maintenance and close the store. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        task = self._maintenance_task
        self.cancel_maintenance()
        if task is not None:
            await asyncio.gather(task, return_exceptions=True)

        await self._store.close()
        logger.info("Cache engine closed")
