"""``nixlock crawl ROOT`` — resolve a closure and record it in the lockfile.

Walks the reference graph of ROOT breadth-first against the binary cache,
installs one record per resolved store path and saves the lockfile.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nixlock.config import config
from nixlock.core.cache_client import BinaryCache
from nixlock.core.crawler import ClosureCrawler, CrawlPolicy, UnresolvedReferenceError
from nixlock.core.lock_store import LockFileError, LockStore

console = Console()


def crawl_cmd(
    root: str = typer.Argument(..., help="Store path (or basename) whose closure to crawl."),
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
        help="Path to the lockfile to update.",
    ),
    workers: int = typer.Option(
        config.max_workers,
        "--workers",
        "-w",
        help="Concurrent metadata lookups per BFS level.",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Fail on the first path the cache cannot resolve.",
    ),
    pin: str = typer.Option(
        None,
        "--pin",
        help="Record this nixpkgs revision in the lockfile.",
    ),
) -> None:
    """Crawl the runtime closure of ROOT and save the lockfile."""
    try:
        store = LockStore.load(lock_path, cache_url=cache_url)
    except LockFileError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    policy = CrawlPolicy(
        continue_on_unresolved_reference=(
            config.continue_on_unresolved_reference and not strict
        )
    )
    with BinaryCache(
        cache_url,
        timeout=config.http_timeout_seconds,
        metadata_suffix=config.metadata_suffix,
    ) as cache:
        crawler = ClosureCrawler(cache, store, max_workers=workers, policy=policy)
        try:
            result = crawler.crawl_detailed(root)
        except UnresolvedReferenceError as e:
            console.print(f"[bold red]Crawl failed:[/bold red] {e}")
            raise typer.Exit(code=1)

    if root in result.unresolved:
        console.print(
            f"[bold red]Crawl failed:[/bold red] root {root} could not be resolved: "
            f"{result.unresolved[root]}"
        )
        raise typer.Exit(code=1)

    if pin:
        store.set_pinned_revision(pin)

    try:
        saved = store.save()
    except LockFileError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    table = Table(title=f"Closure of {root}")
    table.add_column("#", justify="right", style="dim")
    table.add_column("Store path", style="cyan")
    table.add_column("Status", justify="center")
    for index, reference in enumerate(result.closure):
        if reference in result.unresolved:
            status = f"[yellow]unresolved[/yellow] [dim]{result.unresolved[reference]}[/dim]"
        else:
            status = "[green]locked[/green]"
        table.add_row(str(index), reference, status)

    console.print()
    console.print(table)
    console.print(
        Panel(
            "\n".join([
                f"[bold]Paths:[/bold]       {len(result.closure)}",
                f"[bold]Resolved:[/bold]    {len(result.resolved)}",
                f"[bold]Unresolved:[/bold]  {len(result.unresolved)}",
                f"[bold]Lockfile:[/bold]    {saved}",
            ]),
            title="[bold]nixlock crawl[/bold]",
            border_style="green" if result.complete else "yellow",
            padding=(1, 2),
        )
    )
