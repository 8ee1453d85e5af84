"""
smartcache - a persistent, time-bounded cache for outbound HTTP requests.
"""

from smartcache.engine import CacheConfig, CacheEngine
from smartcache.exceptions import (
    ConfigurationError,
    SerializationError,
    SmartCacheError,
    StorageUnavailable,
)
from smartcache.interceptor import (
    CachedResponse,
    CacheInterceptor,
    CachingTransport,
    create_cached_client,
)
from smartcache.policy import CachePolicy, RequestCacheOptions, cache_extensions
from smartcache.store import CacheStore
from smartcache.types import CachedValue, CacheEntry

__version__ = "0.1.0"

__all__ = [
    "CacheConfig",
    "CacheEngine",
    "CacheEntry",
    "CacheInterceptor",
    "CachePolicy",
    "CacheStore",
    "CachedResponse",
    "CachedValue",
    "CachingTransport",
    "ConfigurationError",
    "RequestCacheOptions",
    "SerializationError",
    "SmartCacheError",
    "StorageUnavailable",
    "__version__",
    "cache_extensions",
    "create_cached_client",
]
