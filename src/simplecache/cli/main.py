"""Main CLI entry point for simplecache.

Provides command-line inspection and maintenance of cache entries.
"""

import sys
from typing import Optional

import click
import orjson
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from simplecache.config import CacheConfig, parse_ttl
from simplecache.manager import Cache
from simplecache.sentinels import NO_EXPIRY
from simplecache.validation import get_ttl_remaining

# Global console for Rich output
console = Console()


def open_cache(ctx_cache_dir: Optional[str] = None) -> Cache:
    """Build a Cache for the CLI.

    Priority for the cache directory:
    1. Explicit --cache-dir flag
    2. SIMPLECACHE_DIR environment variable
    3. Default location

    Args:
        ctx_cache_dir: Cache directory from CLI context

    Returns:
        Cache instance
    """
    config = CacheConfig.from_env()
    if ctx_cache_dir:
        config = CacheConfig.from_options(config, cache_path=ctx_cache_dir)
    return Cache(config)


def _ttl_option(value: Optional[str]):
    if value is None:
        return None
    try:
        return parse_ttl(value)
    except ValueError:
        raise click.BadParameter(f"not a number of minutes: {value}", param_hint="--ttl")


def _format_seconds(seconds: Optional[float]) -> str:
    if seconds is None:
        return "-"
    if seconds < 120:
        return f"{seconds:.1f}s"
    if seconds < 7200:
        return f"{seconds / 60:.1f}m"
    return f"{seconds / 3600:.1f}h"


@click.group()
@click.option(
    "--cache-dir",
    "-C",
    type=click.Path(file_okay=False),
    help="Cache root directory (default: SIMPLECACHE_DIR env var or ~/.simplecache)",
)
@click.pass_context
def cli(ctx, cache_dir):
    """simplecache CLI - Inspect and manage cache entries.

    Keys use '.' to separate directories, e.g. 'user.42'.
    """
    ctx.ensure_object(dict)
    ctx.obj["cache_dir"] = cache_dir


@cli.command("show")
@click.argument("key")
@click.option("--ttl", help="Maximum age in minutes ('none' for no expiry)")
@click.pass_context
def show(ctx, key, ttl):
    """Print the payload of a valid entry.

    Example:
        simplecache show user.42 --ttl 10
    """
    cache = open_cache(ctx.obj.get("cache_dir"))
    missing = object()
    payload = cache.read(key, _ttl_option(ttl), fallback=missing)

    if payload is missing:
        console.print(f"[yellow]No valid entry for '{escape(key)}'[/yellow]")
        sys.exit(1)

    console.print_json(data=payload)


@cli.command("has")
@click.argument("key")
@click.option("--ttl", help="Maximum age in minutes ('none' for no expiry)")
@click.pass_context
def has(ctx, key, ttl):
    """Check if a valid entry exists (exit status 1 if not)."""
    cache = open_cache(ctx.obj.get("cache_dir"))

    if cache.has(key, _ttl_option(ttl)):
        console.print(f"[green]✓[/green] '{escape(key)}' is cached")
    else:
        console.print(f"[yellow]✗[/yellow] '{escape(key)}' is not cached")
        sys.exit(1)


@cli.command("age")
@click.argument("key")
@click.pass_context
def age(ctx, key):
    """Print seconds since an entry was last written."""
    cache = open_cache(ctx.obj.get("cache_dir"))
    seconds = cache.age(key)

    if seconds is None:
        console.print(f"[yellow]No entry for '{escape(key)}'[/yellow]")
        sys.exit(1)

    console.print(f"{seconds:.1f}")


@cli.command("write")
@click.argument("key")
@click.argument("payload")
@click.pass_context
def write(ctx, key, payload):
    """Store a JSON payload under a key.

    Example:
        simplecache write user.42 '{"n": 1}'
    """
    try:
        data = orjson.loads(payload)
    except orjson.JSONDecodeError as e:
        raise click.BadParameter(f"invalid JSON: {e}", param_hint="PAYLOAD")

    cache = open_cache(ctx.obj.get("cache_dir"))
    if not cache.write(key, data):
        console.print(f"[red]✗[/red] Could not write '{escape(key)}'", style="red")
        sys.exit(1)

    console.print(f"[green]✓[/green] Wrote '{escape(key)}'")


@cli.command("delete")
@click.argument("key")
@click.option(
    "--dir",
    "also_delete_directory",
    is_flag=True,
    help="Also remove the key's directory and every entry below it",
)
@click.pass_context
def delete(ctx, key, also_delete_directory):
    """Delete an entry.

    Example:
        simplecache delete user.42
        simplecache delete user --dir
    """
    cache = open_cache(ctx.obj.get("cache_dir"))
    if not cache.delete(key, also_delete_directory):
        console.print(f"[red]✗[/red] Could not delete '{escape(key)}'", style="red")
        sys.exit(1)

    console.print(f"[green]✓[/green] Deleted '{escape(key)}'")


@cli.command("info")
@click.argument("key")
@click.option("--ttl", help="Maximum age in minutes ('none' for no expiry)")
@click.pass_context
def info(ctx, key, ttl):
    """Show where an entry lives and how fresh it is."""
    cache = open_cache(ctx.obj.get("cache_dir"))
    ttl_value = _ttl_option(ttl)
    effective_ttl = cache.config.default_ttl if ttl_value is None else ttl_value
    path = cache.path_for(key)

    table = Table(title=f"Cache entry '{escape(key)}'")
    table.add_column("Field", style="cyan", no_wrap=True)
    table.add_column("Value", style="white")

    table.add_row("Path", str(path))
    table.add_row("Exists", "yes" if path.is_file() else "no")
    table.add_row("Age", _format_seconds(cache.age(key)))
    table.add_row("TTL", "none" if effective_ttl is NO_EXPIRY else f"{effective_ttl} min")
    table.add_row("Remaining", _format_seconds(get_ttl_remaining(path, effective_ttl)))
    table.add_row("Valid", "yes" if cache.has(key, ttl_value) else "no")

    console.print(table)


if __name__ == "__main__":
    cli()
