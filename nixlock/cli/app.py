"""Main Typer application — imports and registers all CLI commands.

Entry point: ``nixlock`` (configured via pyproject.toml project.scripts).

Commands: crawl, fetch, unpack, hash, show.
"""

from __future__ import annotations

import logging

import typer
from rich.logging import RichHandler

from nixlock.cli.commands.crawl import crawl_cmd
from nixlock.cli.commands.fetch import fetch_cmd
from nixlock.cli.commands.hash_cmd import hash_cmd
from nixlock.cli.commands.show import show_cmd
from nixlock.cli.commands.unpack import unpack_cmd
from nixlock.config import config

app = typer.Typer(
    name="nixlock",
    help="nixlock: resolve Nix store closures against a binary cache and lock them.",
    no_args_is_help=True,
    rich_markup_mode="rich",
    add_completion=False,
)


@app.callback()
def main_callback(
    log_level: str = typer.Option(
        config.log_level,
        "--log-level",
        help="Logging level (DEBUG, INFO, WARNING, ERROR).",
    ),
) -> None:
    """Configure logging for every subcommand."""
    logging.basicConfig(
        level=log_level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(rich_tracebacks=True, show_path=False)],
        force=True,
    )


# Register subcommands
app.command(name="crawl", help="Resolve a store path closure into the lockfile.")(crawl_cmd)
app.command(name="fetch", help="Download and unpack a cached store path.")(fetch_cmd)
app.command(name="unpack", help="Unpack a local NAR archive.")(unpack_cmd)
app.command(name="hash", help="Convert a nix base-32 digest to hex.")(hash_cmd)
app.command(name="show", help="Summarize the lockfile.")(show_cmd)


def main() -> None:
    """CLI entry point."""
    app()


if __name__ == "__main__":
    main()
