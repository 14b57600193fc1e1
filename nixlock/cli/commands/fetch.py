"""``nixlock fetch STORE_PATH DEST`` — download and unpack a cached path."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from nixlock.config import config
from nixlock.core.cache_client import BinaryCache, CacheError
from nixlock.core.decompress import UnsupportedCompressionError
from nixlock.core.lock_store import LockFileError, LockStore
from nixlock.core.nar import NarFormatError
from nixlock.core.narinfo import NarInfoFormatError
from nixlock.core.resolver import NotInCacheError, Resolver

console = Console()


def fetch_cmd(
    store_path: str = typer.Argument(..., help="Store path to fetch."),
    destination: Path = typer.Argument(..., help="Directory (or file) to unpack into."),
    cache_url: str = typer.Option(
        config.cache_url,
        "--cache",
        "-c",
        help="Binary cache root URL.",
    ),
    lock_path: Path = typer.Option(
        config.lock_path,
        "--lock",
        "-l",
        help="Lockfile consulted for the archive URL before asking the cache.",
    ),
) -> None:
    """Fetch STORE_PATH from the binary cache and unpack it into DEST."""
    try:
        store = LockStore.load(lock_path, cache_url=cache_url)
    except LockFileError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    with BinaryCache(
        cache_url,
        timeout=config.http_timeout_seconds,
        metadata_suffix=config.metadata_suffix,
    ) as cache:
        resolver = Resolver(cache, store)
        try:
            resolver.materialize(
                store_path, destination, policy=config.extraction_policy()
            )
        except (
            NotInCacheError,
            CacheError,
            NarInfoFormatError,
            NarFormatError,
            UnsupportedCompressionError,
            FileExistsError,
            IsADirectoryError,
        ) as e:
            console.print(f"[bold red]Fetch failed:[/bold red] {e}")
            raise typer.Exit(code=1)

    console.print(f"[green]Unpacked[/green] {store_path} -> {destination}")
