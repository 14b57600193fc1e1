"""``nixlock unpack SRC DEST`` — extract a NAR file from disk.

Useful for archives downloaded out of band. Symlinks dropped by the
extraction policy are listed after the extraction.
"""

from __future__ import annotations

from pathlib import Path

import typer
from rich.console import Console

from nixlock.config import config
from nixlock.core.decompress import (
    SUPPORTED_COMPRESSIONS,
    UnsupportedCompressionError,
    unpack_compressed_nar,
)
from nixlock.core.nar import ExtractionPolicy, NarFormatError

console = Console()


def unpack_cmd(
    source: Path = typer.Argument(..., help="NAR archive to extract."),
    destination: Path = typer.Argument(..., help="Where to place the archive root."),
    compression: str = typer.Option(
        "none",
        "--compression",
        "-z",
        help=f"Archive compression: {', '.join(SUPPORTED_COMPRESSIONS)}.",
    ),
    strict: bool = typer.Option(
        False,
        "--strict",
        help="Create every symlink, including store and dangling ones.",
    ),
) -> None:
    """Extract the NAR at SOURCE into DESTINATION."""
    if not source.is_file():
        console.print(f"[bold red]Error:[/bold red] {source} is not a file.")
        raise typer.Exit(code=1)

    policy = ExtractionPolicy.strict() if strict else config.extraction_policy()
    try:
        with source.open("rb") as stream:
            skipped = unpack_compressed_nar(stream, compression, destination, policy)
    except (
        NarFormatError,
        UnsupportedCompressionError,
        FileExistsError,
        IsADirectoryError,
    ) as e:
        console.print(f"[bold red]Unpack failed:[/bold red] {e}")
        raise typer.Exit(code=1)

    console.print(f"[green]Unpacked[/green] {source} -> {destination}")
    for path in skipped:
        console.print(f"  [yellow]skipped symlink[/yellow] {path}")
