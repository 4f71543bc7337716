"""Sync module - Copies commits between repository views.

Components:
- **SyncEngine**: Locates the last sync point and copies newer commits
- **SyncResult / SyncStatus**: What a run did, or would do
- **SyncError / CommitError**: Algorithm and per-commit failures
"""

from gitmirror.sync.engine import STRIPPED_BODY, STRIPPED_SUBJECT, SyncEngine
from gitmirror.sync.types import (
    CommitCallback,
    CommitError,
    CommitOutcome,
    SyncError,
    SyncResult,
    SyncStatus,
)

__all__ = [
    # Engine
    "STRIPPED_BODY",
    "STRIPPED_SUBJECT",
    "SyncEngine",
    # Types
    "CommitCallback",
    "CommitError",
    "CommitOutcome",
    "SyncError",
    "SyncResult",
    "SyncStatus",
]
