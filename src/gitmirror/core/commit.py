"""Commit log entries and the sync trailer.

This module provides:
- Header, Commit: Entries of ``git log`` output
- parse_log: Parse ``git log --format=medium`` output
- format_trailer, TRAILER_RE, TRAILER_GREP: The sync trailer format

Every copied commit carries a trailer line naming the source commit it
was copied from. The writer always emits ``fbshipit-source-id``; the
readers also accept ``shipit-source-id`` and leading whitespace, so that
histories written by other mirroring tools are recognized.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from gitmirror.core.digest import DEFAULT_ALGORITHM, DigestError, parse_digest, short

TRAILER_KEY = "fbshipit-source-id"

# Python side of the trailer format
TRAILER_RE = re.compile(
    r"^[ \t]*(?:fb)?shipit-source-id: ([0-9a-f]+)[ \t]*$", re.MULTILINE
)

# git side of the trailer format, for "git log --extended-regexp --grep"
TRAILER_GREP = r"^[[:space:]]*(fb)?shipit-source-id: [0-9a-f]+$"

_INDENT = "    "


class LogParseError(ValueError):
    """Raised when git log output cannot be parsed."""


def format_trailer(digest: str) -> str:
    """Return the trailer line pointing at the given source commit."""
    return f"{TRAILER_KEY}: {short(digest)}"


@dataclass(frozen=True)
class Header:
    """A commit header line such as "Author" or "Merge"."""

    key: str
    value: str


@dataclass
class Commit:
    """A single commit as listed by git log.

    Attributes:
        digest: Full hex digest of the commit.
        headers: Header lines in log order. Keys may repeat.
        body: Commit message with log indentation removed.
    """

    digest: str
    headers: list[Header] = field(default_factory=list)
    body: str = ""

    def __str__(self) -> str:
        return f"{self.short}: {self.title}"

    @property
    def short(self) -> str:
        return short(self.digest)

    @property
    def title(self) -> str:
        """The first line of the commit message."""
        return self.body.split("\n", 1)[0]

    @property
    def source_ids(self) -> list[str]:
        """Source digests named by sync trailers, oldest first."""
        return TRAILER_RE.findall(self.body)


def parse_log(output: str, algorithm: str = DEFAULT_ALGORITHM) -> list[Commit]:
    """Parse git log output in the "medium" format.

    Args:
        output: Standard output of git log.
        algorithm: Hash algorithm of the repository.

    Returns:
        Commits in log order (newest first unless reordered by arguments).

    Raises:
        LogParseError: If a commit line or header is malformed.
    """
    commits: list[Commit] = []
    for section in _sections(output.split("\n")):
        commits.append(_parse_commit(section, algorithm))
    return commits


def _sections(lines: list[str]) -> list[list[str]]:
    sections: list[list[str]] = []
    for line in lines:
        if line.startswith("commit "):
            sections.append([line])
        elif sections:
            sections[-1].append(line)
    return sections


def _parse_commit(lines: list[str], algorithm: str) -> Commit:
    fields = lines[0].split()
    try:
        digest = parse_digest(fields[1], algorithm)
    except (IndexError, DigestError) as e:
        raise LogParseError(f"invalid commit line {lines[0]!r}") from e

    commit = Commit(digest=digest)
    pos = 1
    while pos < len(lines) and lines[pos]:
        key, sep, value = lines[pos].partition(":")
        if not sep:
            raise LogParseError(f"invalid header {lines[pos]!r} in commit {commit.short}")
        commit.headers.append(Header(key, value.lstrip()))
        pos += 1

    message = [line.removeprefix(_INDENT) for line in lines[pos + 1:]]
    while message and not message[-1].strip():
        message.pop()
    commit.body = "\n".join(message)
    return commit
