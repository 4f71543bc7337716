"""Helpers for moving paths between repository views."""

from __future__ import annotations

import posixpath


def in_prefix(path: str, prefix: str) -> bool:
    """Check whether a repository path lies under a view prefix."""
    return path.startswith(prefix)


def strip_prefix(path: str, prefix: str) -> str:
    """Make a repository path relative to a view prefix."""
    if not prefix:
        return path
    return path.removeprefix(prefix).lstrip("/")


def join_prefix(prefix: str, path: str) -> str:
    """Place a view-relative path under another prefix."""
    if not prefix:
        return path
    return posixpath.normpath(posixpath.join(prefix, path))


def rebase_path(path: str, src_prefix: str, dst_prefix: str) -> str:
    """Move a path from one view prefix to another."""
    return join_prefix(dst_prefix, strip_prefix(path, src_prefix))
