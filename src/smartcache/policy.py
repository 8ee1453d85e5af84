"""
Cache key and TTL resolution for outgoing requests.

Per-request cache options travel in ``httpx.Request.extensions``:

    client.get(url, extensions={"cache": True, "cache_key": "users", "cache_expiration": 30})

Resolution is pure: the same request identity and configuration always give
the same key and TTL.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from typing import Any, Callable, Mapping

import httpx

from smartcache.types import to_timedelta

CACHE_EXTENSION = "cache"
CACHE_KEY_EXTENSION = "cache_key"
CACHE_EXPIRATION_EXTENSION = "cache_expiration"

KeyBuilder = Callable[[httpx.Request], str]


@dataclass(frozen=True)
class RequestCacheOptions:
    """Caching options attached to a single request.

    Attributes:
        enabled: Whether the request opted into caching.
        key: Explicit cache key, overriding any key builder.
        ttl: Explicit TTL for this request.
    """

    enabled: bool = False
    key: str | None = None
    ttl: timedelta | None = None

    @classmethod
    def from_extensions(cls, extensions: Mapping[str, Any]) -> RequestCacheOptions:
        key = extensions.get(CACHE_KEY_EXTENSION)
        return cls(
            enabled=extensions.get(CACHE_EXTENSION) is True,
            key=str(key) if key is not None else None,
            ttl=to_timedelta(extensions.get(CACHE_EXPIRATION_EXTENSION)),
        )

    @classmethod
    def from_request(cls, request: httpx.Request) -> RequestCacheOptions:
        return cls.from_extensions(request.extensions)

    def to_extensions(self) -> dict[str, Any]:
        """Render as request extensions."""
        extensions: dict[str, Any] = {CACHE_EXTENSION: self.enabled}
        if self.key is not None:
            extensions[CACHE_KEY_EXTENSION] = self.key
        if self.ttl is not None:
            extensions[CACHE_EXPIRATION_EXTENSION] = self.ttl
        return extensions


def cache_extensions(
    key: str | None = None,
    ttl: timedelta | float | None = None,
) -> dict[str, Any]:
    """Extensions that opt a request into caching."""
    return RequestCacheOptions(enabled=True, key=key, ttl=to_timedelta(ttl)).to_extensions()


def request_identity(request: httpx.Request) -> str:
    """Canonical identity of a request: its full URL."""
    return str(request.url)


def resolve_cache_key(
    request: httpx.Request,
    options: RequestCacheOptions,
    key_builder: KeyBuilder | None = None,
) -> str:
    """Explicit key, else the key builder's result, else the request URL."""
    if options.key is not None:
        return options.key
    if key_builder is not None:
        return key_builder(request)
    return request_identity(request)


def resolve_ttl(
    options: RequestCacheOptions,
    default_ttl: timedelta | None,
    engine_ttl: timedelta,
) -> timedelta:
    """Explicit TTL, else the interceptor default, else the engine default."""
    if options.ttl is not None:
        return options.ttl
    if default_ttl is not None:
        return default_ttl
    return engine_ttl


@dataclass(frozen=True)
class CachePolicy:
    """Interceptor-level defaults for key and TTL resolution."""

    key_builder: KeyBuilder | None = None
    default_ttl: timedelta | None = None

    def cache_key(self, request: httpx.Request, options: RequestCacheOptions | None = None) -> str:
        if options is None:
            options = RequestCacheOptions.from_request(request)
        return resolve_cache_key(request, options, self.key_builder)

    def ttl(self, options: RequestCacheOptions, engine_ttl: timedelta) -> timedelta:
        return resolve_ttl(options, self.default_ttl, engine_ttl)
