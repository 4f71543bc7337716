"""Common fixtures and helpers for tests driving the real git executable.

Each remote is a bare repository plus a working checkout used to
prepare and inspect its history. Git identity and global configuration
are isolated per test.
"""

from __future__ import annotations

import shutil
import subprocess
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

import pytest

requires_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")
requires_git_lfs = pytest.mark.skipif(
    shutil.which("git-lfs") is None, reason="git-lfs not installed"
)

IDENTITY = {
    "GIT_AUTHOR_NAME": "your name",
    "GIT_AUTHOR_EMAIL": "you@example.com",
    "GIT_COMMITTER_NAME": "committer",
    "GIT_COMMITTER_EMAIL": "committer@example.com",
}

BRANCH = "master"


def run_git(cwd: Path, *args: str, input: bytes | None = None) -> str:
    """Run git in cwd and return its standard output."""
    result = subprocess.run(
        ["git", *args],
        cwd=cwd,
        input=input,
        capture_output=True,
        check=False,
    )
    if result.returncode != 0:
        raise AssertionError(
            f"git {' '.join(args)} failed in {cwd}:\n{result.stderr.decode()}"
        )
    return result.stdout.decode()


@dataclass
class Checkout:
    """A working checkout of a test remote."""

    path: Path

    def git(self, *args: str) -> str:
        return run_git(self.path, *args)

    def write(self, relative_path: str, content: str) -> Path:
        """Create or overwrite a file in the checkout."""
        file_path = self.path / relative_path
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(content)
        return file_path

    def commit(self, message: str, allow_empty: bool = False) -> str:
        """Commit every change and return the new digest."""
        self.git("add", "--all")
        args = ["commit", "-q", "-m", message]
        if allow_empty:
            args.append("--allow-empty")
        self.git(*args)
        return self.git("rev-parse", "HEAD").strip()

    def push(self) -> None:
        self.git("push", "-q", "origin", f"HEAD:{BRANCH}")

    def pull(self) -> None:
        self.git("pull", "-q", "--ff-only", "origin", BRANCH)

    def files(self, exclude: tuple[str, ...] = ()) -> dict[str, str]:
        """Map of tracked-tree file paths to contents, .git excluded."""
        found: dict[str, str] = {}
        for path in sorted(self.path.rglob("*")):
            relative = path.relative_to(self.path).as_posix()
            if relative.split("/")[0] == ".git" or not path.is_file():
                continue
            if relative in exclude:
                continue
            found[relative] = path.read_text()
        return found

    def messages(self) -> list[str]:
        """Commit messages of the checkout, newest first."""
        out = self.git("log", "--format=%B%x00")
        return [m.strip() for m in out.split("\x00") if m.strip()]


@dataclass
class Remote:
    """A bare repository and its working checkout."""

    url: str
    work: Checkout


@pytest.fixture
def git_env(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Path:
    """Isolate git from the user's configuration.

    Returns:
        The cache directory for gitmirror checkouts.
    """
    for key, value in IDENTITY.items():
        monkeypatch.setenv(key, value)
    monkeypatch.setenv("GIT_CONFIG_GLOBAL", str(tmp_path / "gitconfig"))
    monkeypatch.setenv("GIT_CONFIG_NOSYSTEM", "1")
    cache_dir = tmp_path / "cache"
    monkeypatch.setenv("GITMIRROR_CACHE_DIR", str(cache_dir))
    return cache_dir


@pytest.fixture
def make_remote(tmp_path: Path, git_env: Path) -> Callable[[str], Remote]:
    """Factory creating empty remotes with a working checkout."""

    def _make(name: str) -> Remote:
        bare = tmp_path / name
        run_git(tmp_path, "init", "-q", "--bare", f"--initial-branch={BRANCH}", str(bare))
        work = Checkout(tmp_path / f"{name}_checkout")
        run_git(tmp_path, "init", "-q", f"--initial-branch={BRANCH}", str(work.path))
        work.git("remote", "add", "origin", str(bare))
        return Remote(url=str(bare), work=work)

    return _make
