"""Configuration utilities for the gitmirror CLI.

This module provides the user configuration file shared by all commands.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import click


def get_config_dir() -> Path:
    """Get the configuration directory for gitmirror.

    Returns:
        Path to ~/.gitmirror.
    """
    return Path.home() / ".gitmirror"


def get_config_file() -> Path:
    """Get the path to the config file."""
    return get_config_dir() / "config.json"


def load_config() -> dict[str, Any]:
    """Load the user config file.

    Returns:
        The parsed settings, empty if the file does not exist.

    Raises:
        click.FileError: If the file is not a JSON object.
    """
    config_file = get_config_file()
    if not config_file.exists():
        return {}
    try:
        config = json.loads(config_file.read_text())
    except json.JSONDecodeError as e:
        raise click.FileError(str(config_file), hint=f"invalid JSON: {e}") from e
    if not isinstance(config, dict):
        raise click.FileError(str(config_file), hint="expected a JSON object")
    return config


def get_cache_dir() -> str | None:
    """Get the configured cache directory, if any."""
    return load_config().get("cache_dir")


def get_git_config() -> dict[str, str]:
    """Get git configuration applied to every repository.

    Returns:
        Mapping of git config keys to values, empty if none is configured.
    """
    config = load_config().get("git_config") or {}
    return {str(key): str(value) for key, value in config.items()}
