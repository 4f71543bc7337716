"""Repository views backed by cached git checkouts.

This module provides:
- GitRepo: A RepoView over a locked, cached clone of a remote
- GitError: A git invocation failed
- checkout_name: Directory name of the cached clone of a URL
- open_pair: Open source and destination in a deadlock-free order

Every operation shells out to git. Failures are raised as GitError
carrying the arguments and git's standard error; nothing is retried.
"""

from __future__ import annotations

import hashlib
import logging
import os
import posixpath
import subprocess
from collections.abc import Mapping
from pathlib import Path
from typing import BinaryIO

from gitmirror.core.commit import Commit, parse_log
from gitmirror.core.config import DEFAULT_BRANCH, RepoSpec, resolve_cache_dir
from gitmirror.core.digest import DEFAULT_ALGORITHM, HEX_LENGTHS, DigestError, parse_digest, short
from gitmirror.core.patch import (
    Diff,
    MalformedPatchError,
    Patch,
    format_patch,
    parse_patch_sections,
)
from gitmirror.core.paths import in_prefix, join_prefix, rebase_path, strip_prefix
from gitmirror.repo.base import RepoError, RepoView
from gitmirror.repo.lock import FileLock

logger = logging.getLogger(__name__)

_META_PATH_PREFIXES = (b"--- a/", b"+++ b/")

# Parent filter keeping only the first parent of every commit
_LINEARIZE_FILTER = 'cut -f 2,3 -d " "'


class GitError(RepoError):
    """A git command exited with a non-zero status.

    Attributes:
        root: Checkout the command ran in.
        git_args: Arguments passed to git.
        returncode: Exit status.
        stderr: Captured standard error.
    """

    def __init__(self, root: Path, args: list[str], returncode: int, stderr: str) -> None:
        self.root = root
        self.git_args = list(args)
        self.returncode = returncode
        self.stderr = stderr
        message = f"{root}: git {' '.join(args)}: exit status {returncode}"
        if stderr.strip():
            message += "\n" + stderr.strip()
        super().__init__(message)


def checkout_name(url: str) -> str:
    """Name of the cache directory holding the clone of url.

    The URL's base name keeps directories recognizable; a hash of the
    full URL keeps them unique.
    """
    base = posixpath.basename(url.rstrip("/"))
    base = posixpath.splitext(base)[0]
    return base + hashlib.sha256(url.encode()).hexdigest()[:8]


def _normalize_url(url: str) -> str:
    # Clones run inside the checkout, so local paths must be absolute
    path = Path(url).expanduser()
    if path.exists():
        return str(path.resolve())
    return url


class GitRepo:
    """A cached, locked git checkout viewed through a path prefix.

    Use GitRepo.open() to create instances. The checkout is locked for
    as long as the repo is open; close it (or use it as a context
    manager) to release the lock.
    """

    def __init__(
        self,
        url: str,
        root: Path,
        prefix: str = "",
        branch: str = DEFAULT_BRANCH,
        config: Mapping[str, str] | None = None,
    ) -> None:
        """Initialize a repo (use GitRepo.open instead)."""
        self._url = url
        self._root = Path(root)
        self._prefix = prefix
        self._branch = branch
        self._config: dict[str, str] = dict(config or {})
        self._algorithm = DEFAULT_ALGORITHM
        self._lock = FileLock(self._root.with_name(self._root.name + ".lock"))

    @classmethod
    def open(
        cls,
        url: str,
        prefix: str = "",
        branch: str = DEFAULT_BRANCH,
        cache_dir: Path | str | None = None,
        config: Mapping[str, str] | None = None,
    ) -> GitRepo:
        """Open a view of the repository at url, limited to prefix.

        The cached clone is created on first use, then reset to the
        remote branch. Blocks until the checkout's lock is available.

        Args:
            url: Remote URL or local path of the repository.
            prefix: Directory within the repository the view is limited to.
            branch: Branch to operate on.
            cache_dir: Directory holding cached clones.
            config: git configuration applied to every invocation.

        Raises:
            GitError: If cloning, fetching or resetting fails.
        """
        url = _normalize_url(url)
        cache = Path(cache_dir) if cache_dir else resolve_cache_dir()
        cache.mkdir(parents=True, exist_ok=True, mode=0o700)
        repo = cls(url, cache / checkout_name(url), prefix, branch, config)
        repo._lock.acquire()
        try:
            if not (repo._root / ".git").exists():
                logger.info(f"cloning {url} into {repo._root}")
                repo._root.mkdir(parents=True, exist_ok=True)
                repo._git("clone", "--single-branch", "--branch", branch, url, str(repo._root))
            repo._git("fetch", "origin", branch)
            repo._git("reset", "--hard", "FETCH_HEAD")
            # Clear a potentially interrupted run
            repo._git("am", "--abort", check=False)
            repo._algorithm = repo._object_format()
        except BaseException:
            repo.close()
            raise
        return repo

    @property
    def url(self) -> str:
        return self._url

    @property
    def root(self) -> Path:
        return self._root

    @property
    def prefix(self) -> str:
        return self._prefix

    @property
    def branch(self) -> str:
        return self._branch

    def __str__(self) -> str:
        return f"{self._url},{self._prefix},{self._branch}"

    def __enter__(self) -> GitRepo:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        """Release the checkout's lock. The repo must not be used afterwards."""
        self._lock.release()

    def configure(self, key: str, value: str) -> None:
        """Set a git configuration value for every later invocation.

        Values set here override the user's own git configuration.
        """
        self._config[key] = value

    def linearize(self) -> None:
        """Rewrite the checkout's history so that no commit is a merge."""
        self._git(
            "filter-branch", "-f", "--parent-filter", _LINEARIZE_FILTER,
            env={"FILTER_BRANCH_SQUELCH_WARNING": "1"},
        )

    def log(self, *args: str) -> list[Commit]:
        """Return the commits listed by "git log args...", limited to the prefix."""
        argv = ["log", "--format=medium", "--no-decorate", "--no-show-signature", *args]
        if self._prefix:
            argv += ["--", self._prefix]
        out = self._git(*argv)
        return parse_log(out.decode("utf-8", "replace"), self._algorithm)

    def patch(self, digest: str, dst_prefix: str = "") -> Patch:
        """Derive the patch for a commit.

        Diffs outside the prefix are dropped. Remaining paths, including
        the ---/+++ lines of each diff, lose the prefix and gain dst_prefix.

        The diffs are listed on their own first and cut off the full
        output, so a commit message that looks like a patch is kept whole.

        Raises:
            GitError: If format-patch fails.
            MalformedPatchError: If its output cannot be parsed.
        """
        args = [
            "format-patch",
            "--always",  # keep empty commits
            "--no-renames",
            "--no-stat",
            "--no-signature",
            "--src-prefix=a/",
            "--dst-prefix=b/",
            "--stdout",
        ]
        raw_diffs = self._git(*args, "--format=", "-1", digest)
        raw = self._git(*args, "-1", digest)
        if not raw.endswith(raw_diffs):
            raise MalformedPatchError(f"parse patch {short(digest)}: diffs do not end the patch")
        message = raw[: len(raw) - len(raw_diffs)]
        try:
            patch = parse_patch_sections(message, raw_diffs, self._algorithm)
        except MalformedPatchError as e:
            raise MalformedPatchError(f"parse patch {short(digest)}: {e}") from e

        diffs: list[Diff] = []
        for diff in patch.diffs:
            if not in_prefix(diff.path, self._prefix):
                logger.debug(f"dropping diff with path {diff.path} not in prefix {self._prefix}")
                continue
            diffs.append(
                Diff(
                    path=rebase_path(diff.path, self._prefix, dst_prefix),
                    meta=self._rebase_meta(diff.meta, dst_prefix),
                    body=diff.body,
                )
            )
        patch.diffs = diffs
        return patch

    def _rebase_meta(self, meta: bytes, dst_prefix: str) -> bytes:
        lines = []
        for line in meta.split(b"\n"):
            if line.startswith(_META_PATH_PREFIXES):
                head, path = line[:6], line[6:].decode("utf-8", "surrogateescape")
                path = rebase_path(path, self._prefix, dst_prefix)
                line = head + path.encode("utf-8", "surrogateescape")
            lines.append(line)
        return b"\n".join(lines)

    def apply(self, patch: Patch) -> None:
        """Commit the patch on top of the checkout with git am."""
        if not patch.diffs:
            logger.debug(f"not applying empty patch {short(patch.id)}")
            return
        logger.debug(f"applying patch {short(patch.id)}")
        self._git("am", "--keep-non-patch", "--keep-cr", input=format_patch(patch))

    def push(self, remote: str, branch: str, lfs: bool = False) -> None:
        """Push HEAD to branch on remote, lfs objects first when requested."""
        if lfs:
            self._git("lfs", "push", remote, branch)
        self._git("push", remote, f"HEAD:{branch}")

    def list_lfs_pointers(self) -> list[str]:
        """Paths of lfs pointer files in the view, relative to the prefix.

        Raises:
            RepoError: If git lfs ls-files output is malformed.
        """
        out = self._git("lfs", "ls-files").decode("utf-8", "replace")
        pointers: list[str] = []
        for line in out.splitlines():
            if not line:
                continue
            parts = line.split()
            if len(parts) != 3:
                raise RepoError(f"malformed git lfs ls-files output {line!r}")
            path = parts[2]
            if not in_prefix(path, self._prefix):
                logger.debug(f"skipping lfs file {path}: not in prefix {self._prefix}")
                continue
            pointers.append(strip_prefix(path, self._prefix))
        return pointers

    def copy_lfs_object(self, src: RepoView, pointer: str) -> bool:
        """Copy the lfs object behind a pointer file from src.

        Args:
            src: Repository holding the object.
            pointer: Pointer path relative to this view's prefix.

        Returns:
            False if the object was already present, True if it was copied.

        Raises:
            RepoError: If the pointer file has no valid oid.
            GitError: If smudging in src fails.
        """
        data = (self._root / join_prefix(self._prefix, pointer)).read_bytes()
        oid = _pointer_oid(data)
        obj = self._root / ".git" / "lfs" / "objects" / oid[:2] / oid[2:4] / oid
        if obj.exists():
            logger.debug(f"object {short(oid)} for pointer {pointer} already exists")
            return False
        logger.debug(f"copying object {short(oid)} for pointer {pointer}")
        obj.parent.mkdir(parents=True, exist_ok=True)
        tmp = obj.with_name(obj.name + ".gitmirror")
        try:
            with open(tmp, "wb") as out:
                src.smudge_lfs(data, out)
            os.replace(tmp, obj)
        finally:
            tmp.unlink(missing_ok=True)
        return True

    def smudge_lfs(self, pointer: bytes, out: BinaryIO) -> None:
        """Write the content behind pointer file data to out."""
        self._run(["lfs", "smudge"], input=pointer, stdout=out)

    def _object_format(self) -> str:
        out = self._git("rev-parse", "--show-object-format", check=False).decode().strip()
        return out if out in HEX_LENGTHS else DEFAULT_ALGORITHM

    def _git(
        self,
        *args: str,
        input: bytes | None = None,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> bytes:
        result = self._run(list(args), input=input, check=check, env=env)
        return result.stdout or b""

    def _run(
        self,
        args: list[str],
        input: bytes | None = None,
        stdout: BinaryIO | int = subprocess.PIPE,
        check: bool = True,
        env: Mapping[str, str] | None = None,
    ) -> subprocess.CompletedProcess[bytes]:
        cmd = ["git", "-C", str(self._root)]
        for key, value in self._config.items():
            cmd += ["-c", f"{key}={value}"]
        cmd += args
        full_env = dict(os.environ)
        if args and args[0] != "lfs":
            full_env["GIT_LFS_SKIP_SMUDGE"] = "1"
        if env:
            full_env.update(env)

        logger.debug(f"{self._root}: git {' '.join(args)}")
        result = subprocess.run(
            cmd,
            input=input,
            stdout=stdout,
            stderr=subprocess.PIPE,
            env=full_env,
            check=False,
        )
        stderr = result.stderr.decode("utf-8", "replace")
        if result.returncode != 0:
            if check:
                raise GitError(self._root, args, result.returncode, stderr)
            logger.debug(f"{self._root}: git {' '.join(args)}: exit status {result.returncode}")
        elif stderr.strip():
            logger.debug(f"{self._root}: git {' '.join(args)}: ok\n{stderr.rstrip()}")
        return result


def _pointer_oid(data: bytes) -> str:
    for line in data.split(b"\n"):
        if not line.startswith(b"oid "):
            continue
        algorithm, _, hex_digest = line[4:].decode("ascii", "replace").strip().partition(":")
        try:
            return parse_digest(hex_digest, algorithm)
        except DigestError as e:
            raise RepoError(f"invalid lfs pointer oid: {e}") from e
    raise RepoError("pointer file is missing oid")


def open_pair(
    src: RepoSpec,
    dst: RepoSpec,
    cache_dir: Path | str | None = None,
    config: Mapping[str, str] | None = None,
) -> tuple[GitRepo, GitRepo]:
    """Open source and destination repositories.

    Checkouts are always locked in URL order, so that concurrent runs
    between the same repositories in opposite directions cannot deadlock.

    Returns:
        The (source, destination) pair.

    Raises:
        RepoError: If the specs name the same URL.
    """
    if src.url == dst.url:
        raise RepoError("source and destination cannot be the same")
    first, second = sorted((src, dst), key=lambda spec: spec.url)

    def _open(spec: RepoSpec) -> GitRepo:
        return GitRepo.open(spec.url, spec.prefix, spec.branch, cache_dir=cache_dir, config=config)

    opened = [_open(first)]
    try:
        opened.append(_open(second))
    except BaseException:
        opened[0].close()
        raise
    if first is src:
        return opened[0], opened[1]
    return opened[1], opened[0]
