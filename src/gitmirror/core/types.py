"""Shared types for gitmirror.

This module defines enums used by both the sync engine and the CLI.
"""

from __future__ import annotations

from enum import Enum


class CommitAction(str, Enum):
    """What a sync run did with a source commit.

    Used by the SyncEngine to report per-commit outcomes and by the CLI
    to render them.
    """

    APPLIED = "applied"
    DUMPED = "dumped"
    SKIPPED = "skipped"
