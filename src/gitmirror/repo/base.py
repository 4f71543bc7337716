"""Abstract repository view used by the sync engine.

The engine only talks to repositories through this protocol. GitRepo is
the implementation backed by the git executable; tests substitute
in-memory fakes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, BinaryIO, Protocol

if TYPE_CHECKING:
    from gitmirror.core.commit import Commit
    from gitmirror.core.patch import Patch


class RepoError(Exception):
    """Base exception for repository errors."""


class RepoView(Protocol):
    """A view of a repository limited to a path prefix."""

    @property
    def url(self) -> str: ...

    @property
    def prefix(self) -> str: ...

    @property
    def branch(self) -> str: ...

    def log(self, *args: str) -> list[Commit]:
        """List commits touching the prefix, newest first."""
        ...

    def patch(self, digest: str, dst_prefix: str = "") -> Patch:
        """Derive the patch of a commit, limited to the prefix.

        Paths lose the view prefix and gain ``dst_prefix``.
        """
        ...

    def apply(self, patch: Patch) -> None:
        """Commit a patch on top of the checkout. Empty patches are no-ops."""
        ...

    def push(self, remote: str, branch: str, lfs: bool = False) -> None: ...

    def configure(self, key: str, value: str) -> None: ...

    def list_lfs_pointers(self) -> list[str]:
        """Paths of lfs pointer files, relative to the prefix."""
        ...

    def copy_lfs_object(self, src: RepoView, pointer: str) -> bool:
        """Fetch the object behind a pointer from src. False if already present."""
        ...

    def smudge_lfs(self, pointer: bytes, out: BinaryIO) -> None:
        """Write the object content for pointer file data to out."""
        ...

    def linearize(self) -> None: ...

    def close(self) -> None: ...
