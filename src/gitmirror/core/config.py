"""Shared configuration classes for gitmirror.

This module defines the repository spec accepted on the command line and
the resolution of the repository cache directory.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BRANCH = "master"

# Environment variable overriding the cache directory
CACHE_DIR_ENV = "GITMIRROR_CACHE_DIR"

# Used when nothing else configures the cache directory
DEFAULT_CACHE_DIR = Path("/var/tmp/gitmirror")


class SpecError(ValueError):
    """Raised for malformed repository specs or git config pairs."""


@dataclass(frozen=True)
class RepoSpec:
    """A repository view named on the command line.

    Attributes:
        url: Git remote URL (or local path) of the repository.
        prefix: Directory within the repository the view is limited to.
        branch: Branch to synchronize.
    """

    url: str
    prefix: str = ""
    branch: str = DEFAULT_BRANCH

    def __str__(self) -> str:
        return f"{self.url},{self.prefix},{self.branch}"

    @classmethod
    def parse(cls, spec: str) -> RepoSpec:
        """Parse "url", "url,prefix" or "url,prefix,branch".

        Raises:
            SpecError: If the spec has more than three fields or no URL.
        """
        parts = spec.split(",")
        if len(parts) > 3 or not parts[0]:
            raise SpecError(f"invalid spec {spec!r}: expected url[,prefix[,branch]]")
        url = parts[0]
        prefix = parts[1] if len(parts) > 1 else ""
        branch = parts[2] if len(parts) > 2 and parts[2] else DEFAULT_BRANCH
        return cls(url=url, prefix=prefix, branch=branch)


def parse_git_config(text: str) -> dict[str, str]:
    """Parse comma-separated "key=value" pairs passed through to git.

    Raises:
        SpecError: If a pair has no "=".
    """
    config: dict[str, str] = {}
    for pair in text.split(","):
        if not pair:
            continue
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise SpecError(f"bad config {pair!r}: expected key=value")
        config[key] = value
    return config


def resolve_cache_dir(explicit: str | Path | None = None, configured: str | None = None) -> Path:
    """Pick the directory holding cached repository checkouts.

    Order: explicit value, $GITMIRROR_CACHE_DIR, the configured value,
    $TEST_TMPDIR/gitmirror, then /var/tmp/gitmirror.

    Args:
        explicit: Directory given on the command line.
        configured: Directory from the user config file.
    """
    if explicit:
        return Path(explicit).expanduser()
    env = os.environ.get(CACHE_DIR_ENV)
    if env:
        return Path(env).expanduser()
    if configured:
        return Path(configured).expanduser()
    test_tmp = os.environ.get("TEST_TMPDIR")
    if test_tmp:
        return Path(test_tmp) / "gitmirror"
    return DEFAULT_CACHE_DIR
