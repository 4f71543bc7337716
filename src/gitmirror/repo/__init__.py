"""Repository access for the sync engine.

Components:
- **RepoView**: Protocol the engine uses to read and write repositories
- **GitRepo**: RepoView over a cached, locked clone, driven by the git executable
- **FileLock**: Advisory lock held on a cached clone while it is open
- **open_pair**: Opens source and destination in a fixed order
"""

from gitmirror.repo.base import RepoError, RepoView
from gitmirror.repo.git import GitError, GitRepo, checkout_name, open_pair
from gitmirror.repo.lock import FileLock

__all__ = [
    "FileLock",
    "GitError",
    "GitRepo",
    "RepoError",
    "RepoView",
    "checkout_name",
    "open_pair",
]
