"""Command-line interface for gitmirror.

This module provides the main CLI entry point and assembles all commands.

Commands:
- sync: Copy new commits from a source repository to a destination
- status: Show the last sync point and pending commits
- check-rules: Validate strip and rewrite rules
"""

from __future__ import annotations

import click

from gitmirror.cli.config import (
    get_cache_dir,
    get_config_dir,
    get_config_file,
    get_git_config,
    load_config,
)
from gitmirror.cli.rules import check_rules
from gitmirror.cli.sync import status, sync


@click.group()
@click.version_option(package_name="gitmirror")
def cli() -> None:
    """gitmirror - Mirror commits between git repositories."""


# Sync commands
cli.add_command(sync)
cli.add_command(status)

# Rule commands
cli.add_command(check_rules)


def main() -> None:
    """Entry point for the CLI."""
    cli()


__all__ = [
    # Main entry points
    "cli",
    "main",
    # Config utilities
    "get_cache_dir",
    "get_config_dir",
    "get_config_file",
    "get_git_config",
    "load_config",
]
