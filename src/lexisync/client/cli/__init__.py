"""Command-line interface for lexisync.

This module provides the main CLI entry point and assembles all commands.

Commands:
- login: Authenticate against a PocketBase server
- logout: Forget the saved credentials
- sync: Full bidirectional sync of vocabulary and history
- push: Push-only sync of the local collections
- status: Show login state, local counts and last sync time
"""

from __future__ import annotations

import logging
import sys

import click

from lexisync.client.cli.auth import login, logout
from lexisync.client.cli.sync import push, status, sync

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def setup_logging(verbose: bool) -> None:
    """Configure the lexisync logger to write to stderr."""
    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))

    root_logger = logging.getLogger("lexisync")
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)
    root_logger.setLevel(logging.DEBUG if verbose else logging.WARNING)


@click.group()
@click.option("--verbose", "-v", is_flag=True, help="Show debug logging.")
def cli(verbose: bool) -> None:
    """LexiSync - vocabulary and watch-history sync with PocketBase."""
    setup_logging(verbose)


cli.add_command(login)
cli.add_command(logout)
cli.add_command(sync)
cli.add_command(push)
cli.add_command(status)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    "cli",
    "main",
    "setup_logging",
]
