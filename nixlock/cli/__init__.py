"""nixlock CLI — Typer-based command-line interface.

Provides the ``nixlock`` command with subcommands for crawling closures into
the lockfile, fetching and unpacking archives, converting cache digests and
inspecting the lockfile.

All output uses Rich for formatted terminal display.
"""
