"""
Structured logging for the cache.

Provides:
- Context variables for the current operation and cache key (using contextvars)
- JSONFormatter for machine-readable logs to file
- RichHandler for pretty console output
- ContextLogger wrapper that attaches context and keyword fields to log calls
- setup_logging() that configures both file and console handlers
- log_context() for scoped context
- get_logger() factory
"""

from __future__ import annotations

import json
import logging
from contextlib import contextmanager
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Generator

from rich.console import Console
from rich.logging import RichHandler
from rich.text import Text

ROOT_LOGGER = "smartcache"

_operation_var: ContextVar[str | None] = ContextVar("operation", default=None)
_cache_key_var: ContextVar[str | None] = ContextVar("cache_key", default=None)


def get_operation() -> str | None:
    """Get the current cache operation from context."""
    return _operation_var.get()


def get_cache_key() -> str | None:
    """Get the current cache key from context."""
    return _cache_key_var.get()


@contextmanager
def log_context(
    operation: str | None = None,
    cache_key: str | None = None,
) -> Generator[None, None, None]:
    """Context manager for scoped logging context.

    Args:
        operation: Operation name (e.g. "get", "maintenance").
        cache_key: Cache key being operated on.

    Yields:
        None. Context variables are set for the duration of the context.
    """
    op_token = _operation_var.set(operation) if operation is not None else None
    key_token = _cache_key_var.set(cache_key) if cache_key is not None else None
    try:
        yield
    finally:
        if key_token is not None:
            _cache_key_var.reset(key_token)
        if op_token is not None:
            _operation_var.reset(op_token)


class JSONFormatter(logging.Formatter):
    """JSON formatter for machine-readable log files.

    Produces JSON Lines format with structured context.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_obj: dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        operation = get_operation()
        cache_key = get_cache_key()
        if operation:
            log_obj["operation"] = operation
        if cache_key:
            log_obj["cache_key"] = cache_key

        if hasattr(record, "extra"):
            log_obj["extra"] = record.extra

        if record.exc_info:
            log_obj["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_obj, default=str)


class ContextRichHandler(RichHandler):
    """Rich handler that includes context in console output."""

    def get_level_text(self, record: logging.LogRecord) -> Text:
        level_text = super().get_level_text(record)

        operation = get_operation()
        cache_key = get_cache_key()
        if not operation and not cache_key:
            return level_text

        text = level_text.copy()
        if operation:
            text.append(f" {operation}", style="cyan")
        if cache_key:
            # Long URLs make the console unreadable
            short_key = cache_key if len(cache_key) <= 48 else cache_key[:45] + "..."
            text.append(f" {short_key}", style="magenta")
        return text


class ContextLogger:
    """Logger wrapper that automatically attaches context to log calls.

    Keyword arguments other than the standard logging ones are collected
    into the record's ``extra`` mapping.
    """

    def __init__(self, logger: logging.Logger) -> None:
        self._logger = logger

    @property
    def name(self) -> str:
        return self._logger.name

    def _log(
        self,
        level: int,
        msg: str,
        *args: Any,
        exc_info: bool = False,
        **kwargs: Any,
    ) -> None:
        if not self._logger.isEnabledFor(level):
            return

        extra = kwargs.pop("extra", {})

        operation = get_operation()
        cache_key = get_cache_key()
        if operation:
            extra["operation"] = operation
        if cache_key:
            extra["cache_key"] = cache_key

        for key in list(kwargs.keys()):
            if key not in ("exc_info", "stack_info", "stacklevel"):
                extra[key] = kwargs.pop(key)

        self._logger.log(level, msg, *args, exc_info=exc_info, extra={"extra": extra})

    def debug(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.DEBUG, msg, *args, **kwargs)

    def info(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.INFO, msg, *args, **kwargs)

    def warning(self, msg: str, *args: Any, **kwargs: Any) -> None:
        self._log(logging.WARNING, msg, *args, **kwargs)

    def error(self, msg: str, *args: Any, exc_info: bool = False, **kwargs: Any) -> None:
        self._log(logging.ERROR, msg, *args, exc_info=exc_info, **kwargs)

    def exception(self, msg: str, *args: Any, **kwargs: Any) -> None:
        """Log exception with traceback."""
        self._log(logging.ERROR, msg, *args, exc_info=True, **kwargs)


_console: Console | None = None
_setup_done: bool = False


def get_console() -> Console:
    """Get the global rich console."""
    global _console
    if _console is None:
        _console = Console(stderr=True)
    return _console


def setup_logging(
    log_level: str = "INFO",
    log_file: Path | None = None,
    console_output: bool = True,
) -> None:
    """Set up logging with JSON file handler and rich console handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL).
        log_file: Path to log file. If None, only console logging is enabled.
        console_output: Whether to enable console output.
    """
    global _setup_done

    root_logger = logging.getLogger(ROOT_LOGGER)
    root_logger.setLevel(getattr(logging, log_level.upper()))
    root_logger.handlers.clear()

    if log_file:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file, mode="a", encoding="utf-8")
        file_handler.setFormatter(JSONFormatter())
        file_handler.setLevel(logging.DEBUG)
        root_logger.addHandler(file_handler)

    if console_output:
        rich_handler = ContextRichHandler(
            console=get_console(),
            show_time=True,
            show_path=False,
            rich_tracebacks=True,
            tracebacks_show_locals=False,
            markup=False,
        )
        rich_handler.setLevel(getattr(logging, log_level.upper()))
        root_logger.addHandler(rich_handler)

    root_logger.propagate = False

    for noisy_logger in ["httpx", "httpcore", "aiosqlite", "asyncio"]:
        logging.getLogger(noisy_logger).setLevel(logging.WARNING)

    _setup_done = True


def get_logger(name: str) -> ContextLogger:
    """Get a context-aware logger.

    Args:
        name: Logger name (usually __name__).

    Returns:
        ContextLogger wrapper around the standard logger.
    """
    if not _setup_done:
        setup_logging()

    if not name.startswith(ROOT_LOGGER):
        name = f"{ROOT_LOGGER}.{name}"

    return ContextLogger(logging.getLogger(name))
