"""Shared types and dataclasses for sync runs.

This module provides:
- SyncError, CommitError: Exception classes
- CommitOutcome: What happened to one source commit
- SyncStatus: Last sync point and pending commits
- SyncResult: Overall sync run result
- CommitCallback: Type alias for per-commit callbacks
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field

from gitmirror.core.commit import Commit
from gitmirror.core.types import CommitAction


class SyncError(Exception):
    """Base exception for sync errors."""


class CommitError(SyncError):
    """Copying a single commit failed.

    The underlying error is chained as ``__cause__``.

    Attributes:
        commit: The source commit being copied.
    """

    def __init__(self, commit: Commit, message: str) -> None:
        self.commit = commit
        super().__init__(f"{commit.short}: {message}")


@dataclass
class CommitOutcome:
    """Result of copying one source commit.

    Attributes:
        commit: The source commit.
        action: Whether it was applied, dumped or skipped.
        message_stripped: True if the message was replaced by a stub.
        lfs_objects: Touched lfs pointer paths, relative to the destination prefix.
    """

    commit: Commit
    action: CommitAction
    message_stripped: bool = False
    lfs_objects: list[str] = field(default_factory=list)


# Type alias for per-commit callback
CommitCallback = Callable[[CommitOutcome], None]


@dataclass
class SyncStatus:
    """Where the destination stands relative to the source.

    Attributes:
        last_synced: Newest valid sync commit in the destination, if any.
        pending: Source commits still to copy, oldest first.
    """

    last_synced: Commit | None
    pending: list[Commit] = field(default_factory=list)

    @property
    def initial(self) -> bool:
        """True if nothing has been synced yet."""
        return self.last_synced is None

    @property
    def source_id(self) -> str | None:
        """Source digest named by the newest trailer of the last sync commit."""
        if self.last_synced is None:
            return None
        ids = self.last_synced.source_ids
        return ids[-1] if ids else None


@dataclass
class SyncResult:
    """Result of a sync run."""

    last_synced: Commit | None
    candidates: int = 0
    outcomes: list[CommitOutcome] = field(default_factory=list)
    pushed: bool = False

    def _digests(self, *actions: CommitAction) -> list[str]:
        return [o.commit.digest for o in self.outcomes if o.action in actions]

    @property
    def applied(self) -> list[str]:
        """Digests of source commits applied (or dumped) to the destination."""
        return self._digests(CommitAction.APPLIED, CommitAction.DUMPED)

    @property
    def skipped(self) -> list[str]:
        """Digests of source commits with no diffs left after the rules."""
        return self._digests(CommitAction.SKIPPED)

    @property
    def message_stripped(self) -> list[str]:
        return [o.commit.digest for o in self.outcomes if o.message_stripped]

    @property
    def lfs_objects(self) -> list[str]:
        return [path for o in self.outcomes for path in o.lfs_objects]
