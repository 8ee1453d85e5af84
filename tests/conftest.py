"""
Pytest configuration and fixtures for cache tests.
"""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import AsyncGenerator, Generator
from unittest.mock import patch

import pytest

from smartcache.config import clear_settings_cache
from smartcache.engine import CacheConfig, CacheEngine
from smartcache.store import CacheStore


class FakeClock:
    """Manually advanced UTC clock."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.current

    def advance(self, seconds: float = 0.0, **kwargs: float) -> datetime:
        self.current += timedelta(seconds=seconds, **kwargs)
        return self.current


@pytest.fixture
def temp_dir(tmp_path: Path) -> Path:
    """Provide a temporary directory for test outputs."""
    return tmp_path


@pytest.fixture
def db_path(temp_dir: Path) -> Path:
    """Path of a fresh cache database."""
    return temp_dir / "cache" / "smart_cache.sqlite"


@pytest.fixture
def clock() -> FakeClock:
    """Provide a controllable clock."""
    return FakeClock()


@pytest.fixture
async def store(db_path: Path) -> AsyncGenerator[CacheStore, None]:
    """Create an initialized cache store for testing."""
    store = CacheStore(db_path)
    await store.init()
    yield store
    await store.close()


@pytest.fixture
async def engine(db_path: Path, clock: FakeClock) -> AsyncGenerator[CacheEngine, None]:
    """Create an engine with a 10s default TTL and no background sweep."""
    engine = await CacheEngine.open(
        db_path,
        config=CacheConfig(
            default_ttl=timedelta(seconds=10),
            maintenance_interval=timedelta(minutes=30),
            start_maintenance=False,
        ),
        clock=clock,
    )
    yield engine
    await engine.close()


@pytest.fixture
def mock_env_vars(temp_dir: Path) -> Generator[dict[str, str], None, None]:
    """Provide cache environment variables for testing."""
    env_vars = {
        "CACHE_DB_PATH": str(temp_dir / "env" / "cache.sqlite"),
        "CACHE_DEFAULT_TTL_SECONDS": "30",
        "CACHE_MAINTENANCE_INTERVAL_SECONDS": "120",
        "LOG_LEVEL": "WARNING",
    }

    with patch.dict(os.environ, env_vars, clear=False):
        clear_settings_cache()
        yield env_vars


@pytest.fixture(autouse=True)
def reset_settings_cache() -> Generator[None, None, None]:
    """Automatically reset settings cache before and after each test."""
    clear_settings_cache()
    yield
    clear_settings_cache()
