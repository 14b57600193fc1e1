"""``nixlock hash DIGEST`` — print the hex form of a nix base-32 digest."""

from __future__ import annotations

import typer
from rich.console import Console

from nixlock.core.hasher import HashFormatError, nix_hash_to_hex, split_digest

console = Console()


def hash_cmd(
    digest: str = typer.Argument(..., help="Digest such as sha256:1b9p...; prefix optional."),
    with_prefix: bool = typer.Option(
        False,
        "--prefix",
        "-p",
        help="Keep the algorithm prefix in the output.",
    ),
) -> None:
    """Convert DIGEST from nix base-32 to lowercase hex."""
    try:
        hex_digest = nix_hash_to_hex(digest)
    except HashFormatError as e:
        console.print(f"[bold red]Error:[/bold red] {e}")
        raise typer.Exit(code=1)

    if with_prefix:
        algorithm, _ = split_digest(digest)
        hex_digest = f"{algorithm}:{hex_digest}"
    # Plain output for scripting
    console.print(hex_digest, highlight=False)
