"""``nixlock show`` — summarize the lockfile contents."""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from nixlock.config import config
from nixlock.core.lock_store import LockFileError, LockStore
from nixlock.core.store_path import store_name

console = Console()


def show_cmd(
    lock_path: Path = typer.Option(
        config.lock_path,
        "--lock",
        "-l",
        help="Path to the lockfile.",
    ),
    builds: bool = typer.Option(
        False,
        "--builds",
        "-b",
        help="List build records instead of store paths.",
    ),
) -> None:
    """Show the store paths (or build records) held in the lockfile."""
    if not lock_path.exists():
        console.print(f"[bold red]Error:[/bold red] lockfile {lock_path} not found.")
        raise typer.Exit(code=1)
    try:
        store = LockStore.load(lock_path)
    except LockFileError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    lockfile = store.snapshot()
    if builds:
        table = Table(title="Build records")
        table.add_column("Label", style="cyan")
        table.add_column("Output")
        table.add_column("Closure", justify="right")
        for label in sorted(lockfile.flakes):
            record = lockfile.flakes[label]
            table.add_row(label, record.output_store_path, str(len(record.closure)))
    else:
        table = Table(title="Store paths")
        table.add_column("Name", style="cyan")
        table.add_column("Compression")
        table.add_column("Size", justify="right")
        table.add_column("References", justify="right")
        for key in sorted(lockfile.store_paths):
            entry = lockfile.store_paths[key]
            table.add_row(
                store_name(key),
                entry.compression or "none",
                str(entry.file_size),
                str(len(entry.references)),
            )

    console.print(table)
    console.print(
        Panel(
            "\n".join([
                f"[bold]Version:[/bold]      {lockfile.version}",
                f"[bold]nixpkgs:[/bold]      {lockfile.nixpkgs_commit or '[dim]unpinned[/dim]'}",
                f"[bold]Store paths:[/bold]  {len(lockfile.store_paths)}",
                f"[bold]Builds:[/bold]       {len(lockfile.flakes)}",
                f"[bold]Sources:[/bold]      {len(lockfile.sources)}",
                f"[bold]Digest:[/bold]       {store.digest()}",
            ]),
            title=f"[bold]{lock_path}[/bold]",
            border_style="blue",
            padding=(1, 2),
        )
    )
