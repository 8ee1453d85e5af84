"""
CLI for inspecting and maintaining a cache database.

Commands:
    smartcache stats - Show entry count and age of the oldest entry
    smartcache keys PREFIX - List keys starting with PREFIX
    smartcache get KEY - Print a cached value
    smartcache remove KEY - Remove one entry
    smartcache remove-pattern PATTERN - Remove entries whose key contains PATTERN
    smartcache clear - Remove every entry
    smartcache maintenance - Purge entries older than the sweep TTL
    smartcache config - Show current configuration
    smartcache version - Print version
"""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Annotated, Any, Awaitable, Callable, Optional, TypeVar

import orjson
import typer
from pydantic import ValidationError
from rich.console import Console
from rich.table import Table

from smartcache import __version__
from smartcache.config import Settings, clear_settings_cache, get_settings
from smartcache.engine import CacheConfig, CacheEngine
from smartcache.exceptions import SmartCacheError
from smartcache.logging import setup_logging

app = typer.Typer(
    name="smartcache",
    help="SmartCache - persistent, time-bounded cache for HTTP responses",
    no_args_is_help=True,
)

console = Console()
error_console = Console(stderr=True)

T = TypeVar("T")

DbOption = Annotated[
    Optional[Path],
    typer.Option("--db", "-d", help="Cache database file (defaults to CACHE_DB_PATH)"),
]


def _load_settings() -> Settings:
    try:
        clear_settings_cache()
        settings = get_settings()
    except ValidationError as e:
        error_console.print(f"[red]Error:[/red] Configuration is invalid.\n{e}")
        raise typer.Exit(1) from e
    setup_logging(settings.LOG_LEVEL, settings.LOG_FILE)
    return settings


def _run(db: Path | None, action: Callable[[CacheEngine], Awaitable[T]]) -> T:
    """Open the engine without background maintenance and run ``action``."""
    settings = _load_settings()
    db_path = db if db is not None else settings.CACHE_DB_PATH
    config = CacheConfig.from_settings(settings, start_maintenance=False)

    async def runner() -> T:
        async with await CacheEngine.open(db_path, config=config) as engine:
            return await action(engine)

    try:
        return asyncio.run(runner())
    except SmartCacheError as e:
        error_console.print(f"[red]Error:[/red] {e}")
        raise typer.Exit(1) from e


@app.command()
def stats(db: DbOption = None) -> None:
    """Show entry count and age of the oldest entry."""

    async def action(engine: CacheEngine) -> dict[str, Any]:
        oldest = await engine.store.oldest_timestamp()
        return {
            "entries": await engine.store.count(),
            "oldest": oldest.isoformat() if oldest else None,
            "oldest_age_s": (engine.now() - oldest).total_seconds() if oldest else None,
            "default_ttl_s": engine.default_ttl.total_seconds(),
            "sweep_ttl_s": engine.sweep_ttl.total_seconds(),
        }

    result = _run(db, action)

    table = Table(title="Cache", show_header=True)
    table.add_column("Metric", style="cyan")
    table.add_column("Value", style="green")
    for key, value in result.items():
        table.add_row(key, str(value) if value is not None else "-")
    console.print(table)


@app.command()
def keys(
    prefix: Annotated[str, typer.Argument(help="Key prefix")] = "",
    db: DbOption = None,
) -> None:
    """List keys starting with PREFIX."""

    async def action(engine: CacheEngine) -> list[str]:
        return await engine.get_keys_by_prefix(prefix)

    for key in _run(db, action):
        console.print(key, markup=False, highlight=False)


@app.command()
def get(
    key: Annotated[str, typer.Argument(help="Cache key")],
    ttl: Annotated[
        Optional[float],
        typer.Option("--ttl", "-t", help="Freshness window in seconds"),
    ] = None,
    db: DbOption = None,
) -> None:
    """Print a cached value as JSON."""

    async def action(engine: CacheEngine) -> Any:
        return await engine.get_entry(key, ttl)

    cached = _run(db, action)
    if cached is None:
        error_console.print(f"[yellow]Miss:[/yellow] {key}")
        raise typer.Exit(1)

    console.print(
        orjson.dumps(cached.to_dict(), option=orjson.OPT_INDENT_2).decode("utf-8"),
        markup=False,
    )


@app.command()
def remove(
    key: Annotated[str, typer.Argument(help="Cache key")],
    db: DbOption = None,
) -> None:
    """Remove one entry."""

    async def action(engine: CacheEngine) -> None:
        await engine.remove(key)

    _run(db, action)
    console.print(f"Removed [bold]{key}[/bold]")


@app.command("remove-pattern")
def remove_pattern(
    pattern: Annotated[str, typer.Argument(help="Substring to match anywhere in the key")],
    db: DbOption = None,
) -> None:
    """Remove every entry whose key contains PATTERN."""

    async def action(engine: CacheEngine) -> int:
        return await engine.remove_by_pattern(pattern)

    removed = _run(db, action)
    console.print(f"Removed {removed} entries")


@app.command()
def clear(
    yes: Annotated[bool, typer.Option("--yes", "-y", help="Do not ask for confirmation")] = False,
    db: DbOption = None,
) -> None:
    """Remove every entry."""
    if not yes:
        typer.confirm("Remove every cache entry?", abort=True)

    async def action(engine: CacheEngine) -> None:
        await engine.clear()

    _run(db, action)
    console.print("Cache cleared")


@app.command()
def maintenance(db: DbOption = None) -> None:
    """Purge entries older than the sweep TTL."""

    async def action(engine: CacheEngine) -> int:
        return await engine.maintenance()

    purged = _run(db, action)
    console.print(f"Purged {purged} expired entries")


@app.command()
def config() -> None:
    """Show current configuration."""
    settings = _load_settings()

    table = Table(title="Settings", show_header=True)
    table.add_column("Setting", style="cyan")
    table.add_column("Value", style="green")
    for key, value in settings.display().items():
        display_value = str(value) if value is not None else "[dim]not set[/dim]"
        table.add_row(key, display_value)

    console.print(table)


@app.command()
def version() -> None:
    """Print the version number."""
    console.print(f"smartcache version {__version__}")


def main() -> None:
    """Entry point for the CLI."""
    app()


if __name__ == "__main__":
    main()
