"""
Core types for the cache.

This module defines the data structures shared across the package:
- CacheEntry: the single persisted record (key, encoded value, write time)
- CachedValue: a decoded value together with its write time
- Helper functions for timestamps
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Generic, TypeVar

T = TypeVar("T")

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    """Get current UTC time with timezone info."""
    return datetime.now(timezone.utc)


def format_timestamp(ts: datetime) -> str:
    """Render a timestamp as fixed-width ISO-8601 UTC text.

    Microseconds are always included so that text ordering in SQLite matches
    time ordering.
    """
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts.astimezone(timezone.utc).isoformat(timespec="microseconds")


def parse_timestamp(value: str) -> datetime:
    """Parse a timestamp written by format_timestamp."""
    ts = datetime.fromisoformat(value)
    if ts.tzinfo is None:
        ts = ts.replace(tzinfo=timezone.utc)
    return ts


def to_timedelta(value: timedelta | float | int | None) -> timedelta | None:
    """Coerce seconds or a timedelta into a timedelta."""
    if value is None or isinstance(value, timedelta):
        return value
    return timedelta(seconds=float(value))


@dataclass(frozen=True)
class CacheEntry:
    """A persisted cache row.

    Attributes:
        key: Unique key (primary key).
        value: Text-encoded payload, opaque to the store.
        timestamp: Time of the last write (refreshed on every upsert).
    """

    key: str
    value: str
    timestamp: datetime

    def expires_at(self, ttl: timedelta) -> datetime:
        """Time after which this entry is stale for the given TTL."""
        return self.timestamp + ttl

    def is_fresh(self, now: datetime, ttl: timedelta) -> bool:
        """Whether the entry is valid for a read at ``now`` with ``ttl``."""
        return now <= self.expires_at(ttl)


@dataclass(frozen=True)
class CachedValue(Generic[T]):
    """A decoded cache value and the time it was written."""

    key: str
    value: T
    timestamp: datetime

    def age(self, now: datetime) -> timedelta:
        """How long ago the value was written."""
        return now - self.timestamp

    def to_dict(self) -> dict[str, Any]:
        return {
            "key": self.key,
            "value": self.value,
            "timestamp": format_timestamp(self.timestamp),
        }
