"""
Request interception for httpx.

CacheInterceptor exposes two extension points around a request:
- on_request (pre-dispatch): serve a fresh cached response or pass through
- on_response (post-dispatch): store successful responses

CachingTransport binds those hooks to any httpx async transport, so an
``httpx.AsyncClient`` gains caching without changes at the call sites:

    engine = await CacheEngine.open(".cache/smart_cache.sqlite")
    interceptor = CacheInterceptor(engine)
    async with create_cached_client(interceptor) as client:
        response = await client.get(url, extensions=cache_extensions(ttl=30))
        if response.extensions.get("from_cache"):
            ...

Transport errors are never caught here and never cached.
"""

from __future__ import annotations

import base64
from datetime import timedelta
from typing import Any

import httpx
from pydantic import BaseModel

from smartcache.engine import CacheEngine
from smartcache.logging import get_logger, log_context
from smartcache.policy import CachePolicy, KeyBuilder, RequestCacheOptions

logger = get_logger(__name__)

FROM_CACHE_EXTENSION = "from_cache"
CACHE_TIMESTAMP_EXTENSION = "cache_timestamp"
RESPONSE_CACHE_KEY_EXTENSION = "cache_key"


class CachedResponse(BaseModel):
    """Response body as stored in the cache."""

    status_code: int = 200
    content_type: str | None = None
    encoding: str = "utf-8"
    body: str
    is_base64: bool = False

    @classmethod
    def from_response(cls, response: httpx.Response) -> CachedResponse:
        """Capture a fully read response."""
        encoding = response.encoding or "utf-8"
        content = response.content
        try:
            body, is_b64 = content.decode(encoding), False
        except (UnicodeDecodeError, LookupError):
            body, is_b64 = base64.b64encode(content).decode("ascii"), True

        return cls(
            status_code=response.status_code,
            content_type=response.headers.get("content-type"),
            encoding=encoding,
            body=body,
            is_base64=is_b64,
        )

    def content(self) -> bytes:
        if self.is_base64:
            return base64.b64decode(self.body)
        return self.body.encode(self.encoding)

    def to_response(
        self,
        request: httpx.Request,
        extensions: dict[str, Any] | None = None,
    ) -> httpx.Response:
        """Synthesize an httpx response for ``request``."""
        headers = {"content-type": self.content_type} if self.content_type else {}
        return httpx.Response(
            status_code=self.status_code,
            headers=headers,
            content=self.content(),
            request=request,
            extensions=extensions or {},
        )


class CacheInterceptor:
    """Decides cache hits and writes results back for httpx requests.

    Key and TTL are resolved per request:
    - key: ``cache_key`` extension, else ``key_builder(request)``, else the URL
    - TTL: ``cache_expiration`` extension, else ``default_ttl``, else the
      engine's default TTL

    Only responses whose status equals ``cacheable_status`` are stored.
    """

    def __init__(
        self,
        engine: CacheEngine,
        default_ttl: timedelta | None = None,
        key_builder: KeyBuilder | None = None,
        cacheable_status: int = 200,
    ) -> None:
        self.engine = engine
        self.policy = CachePolicy(key_builder=key_builder, default_ttl=default_ttl)
        self.cacheable_status = cacheable_status

    async def on_request(self, request: httpx.Request) -> httpx.Response | None:
        """Pre-dispatch hook.

        Returns:
            A synthesized response flagged ``from_cache`` on a fresh hit, or
            None to let the request go to the transport.
        """
        options = RequestCacheOptions.from_request(request)
        if not options.enabled:
            return None

        key = self.policy.cache_key(request, options)
        ttl = self.policy.ttl(options, self.engine.default_ttl)

        with log_context(operation="intercept", cache_key=key):
            cached = await self.engine.get_entry(key, ttl, as_type=CachedResponse)
            if cached is None:
                logger.debug("Dispatching request", method=request.method)
                return None

            logger.debug("Serving response from cache", method=request.method)
            return cached.value.to_response(
                request,
                extensions={
                    FROM_CACHE_EXTENSION: True,
                    CACHE_TIMESTAMP_EXTENSION: cached.timestamp,
                    RESPONSE_CACHE_KEY_EXTENSION: key,
                },
            )

    async def on_response(
        self, request: httpx.Request, response: httpx.Response
    ) -> httpx.Response:
        """Post-dispatch hook.

        Stores the body when caching was requested and the status is the
        cacheable one; the response is annotated with the cache key. Any
        other response is returned untouched.
        """
        options = RequestCacheOptions.from_request(request)
        if not options.enabled or response.status_code != self.cacheable_status:
            return response

        key = self.policy.cache_key(request, options)
        with log_context(operation="intercept", cache_key=key):
            await response.aread()
            await self.engine.set(key, CachedResponse.from_response(response))
            logger.debug("Cached response", method=request.method, size=len(response.content))

        response.extensions = {
            **response.extensions,
            FROM_CACHE_EXTENSION: False,
            RESPONSE_CACHE_KEY_EXTENSION: key,
        }
        return response

    async def invalidate(self, key: str) -> None:
        """Remove the entry for ``key``."""
        await self.engine.remove(key)

    async def invalidate_for_url(self, url: str | httpx.URL) -> None:
        """Remove the entry a plain ``GET url`` would be cached under."""
        request = httpx.Request("GET", url)
        await self.engine.remove(self.policy.cache_key(request, RequestCacheOptions()))


class CachingTransport(httpx.AsyncBaseTransport):
    """httpx transport that runs a CacheInterceptor around an inner transport."""

    def __init__(
        self,
        interceptor: CacheInterceptor,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.interceptor = interceptor
        self._transport = transport or httpx.AsyncHTTPTransport()

    async def handle_async_request(self, request: httpx.Request) -> httpx.Response:
        cached = await self.interceptor.on_request(request)
        if cached is not None:
            return cached

        response = await self._transport.handle_async_request(request)
        try:
            return await self.interceptor.on_response(request, response)
        except BaseException:
            await response.aclose()
            raise

    async def aclose(self) -> None:
        await self._transport.aclose()


def create_cached_client(
    interceptor: CacheInterceptor,
    transport: httpx.AsyncBaseTransport | None = None,
    **client_kwargs: Any,
) -> httpx.AsyncClient:
    """Build an ``httpx.AsyncClient`` whose requests go through ``interceptor``.

    Args:
        interceptor: The cache interceptor.
        transport: Inner transport doing the real I/O.
        **client_kwargs: Passed to ``httpx.AsyncClient``.
    """
    return httpx.AsyncClient(
        transport=CachingTransport(interceptor, transport),
        **client_kwargs,
    )
