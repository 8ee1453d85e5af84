"""
Custom exception hierarchy for the cache.

All exceptions inherit from SmartCacheError, which provides optional context
for structured error handling and logging.

A cache miss or an expired entry is never an error; those are reported as
``None``. Transport errors raised by httpx pass through untouched.
"""

from __future__ import annotations

from typing import Any


class SmartCacheError(Exception):
    """Base exception for all cache errors.

    Attributes:
        message: Human-readable error message.
        context: Optional structured context for logging/debugging.
    """

    def __init__(self, message: str, context: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def __str__(self) -> str:
        if self.context:
            ctx_str = ", ".join(f"{k}={v!r}" for k, v in self.context.items())
            return f"{self.message} ({ctx_str})"
        return self.message

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}({self.message!r}, context={self.context!r})"


class ConfigurationError(SmartCacheError):
    """Raised when engine configuration is invalid.

    Examples:
        - Non-positive default TTL
        - Non-positive maintenance interval
    """

    pass


class StorageUnavailable(SmartCacheError):
    """Raised when the backing store cannot be opened, read or written.

    Context should include:
        - db_path: Path of the SQLite file
        - operation: The store operation that failed
        - error: The underlying error message
    """

    pass


class SerializationError(SmartCacheError):
    """Raised when a payload cannot be encoded, or decoded as the requested type.

    Kept distinct from a miss so callers can detect a key that was reused
    with an incompatible type.

    Context should include:
        - key: The cache key
        - expected: The requested type, if any
    """

    pass
