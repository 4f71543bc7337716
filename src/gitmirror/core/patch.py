"""Mailbox-style patch representation, parsing and serialization.

This module provides:
- Diff: A change to a single file
- Patch: A single atomic change derived from one commit
- parse_patch, parse_patch_sections: Parse the output of ``git format-patch``
- write_patch, format_patch: Serialize a patch for ``git am``
- MalformedPatchError, MissingSubjectError: Parse errors

Parsing is split in two passes: ``tokenize`` turns the raw bytes into a
flat sequence of typed tokens, and ``_PatchBuilder`` consumes them in a
single pass. Neither pass mutates the input.
"""

from __future__ import annotations

import re
from collections.abc import Generator, Iterator
from dataclasses import dataclass, field
from datetime import UTC, datetime
from email.utils import getaddresses, parsedate_to_datetime
from enum import Enum, auto
from typing import BinaryIO

from gitmirror.core.digest import DEFAULT_ALGORITHM, DigestError, parse_digest, short

ZERO_WIDTH_SPACE = "\u200b"

# Body lines with these prefixes would be read back as patch structure
ESCAPED_PREFIXES = ("diff", "---", "+++")

# Fixed date written on the envelope line, as git does
ENVELOPE_DATE = "Mon Sep 17 00:00:00 2001"

LFS_OID_MARKER = b"oid"

_DAYS = ("Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun")
_MONTHS = (
    "Jan", "Feb", "Mar", "Apr", "May", "Jun",
    "Jul", "Aug", "Sep", "Oct", "Nov", "Dec",
)

_DIFF_HEADER_RE = re.compile(rb"^diff --git a/(\S+)")
_HEADER_RE = re.compile(r"^([A-Za-z0-9-]+):[ \t]*(.*)$", re.DOTALL)
_ANGLE_ADDR_RE = re.compile(r"<[^<>\s]+>")
# git appends "-- \n<version>\n" to format-patch output
_SIGNATURE_RE = re.compile(rb"\n-- \n[^\n]*\n*\Z")

_ENCODING = "utf-8"
_ERRORS = "surrogateescape"


class MalformedPatchError(ValueError):
    """Raised when patch text does not follow the mailbox patch format."""


class MissingSubjectError(MalformedPatchError):
    """Raised when a patch has no Subject header."""


@dataclass(frozen=True)
class Diff:
    """A set of changes to a single file.

    Attributes:
        path: Path of the file being changed.
        meta: Mode, index and ---/+++ lines, treated opaquely.
        body: Hunks, starting at the first "@@" line. Only git interprets them.
    """

    path: str
    meta: bytes = b""
    body: bytes = b""


@dataclass
class Patch:
    """A single, atomic change originating in a repository.

    Patches are derived from commits and applied to another repository
    to recreate the commit there, possibly after rewriting.

    Attributes:
        id: Hex digest of the commit the patch was derived from.
        author: Author as "Name <address>", kept exactly as in the patch.
        time: Commit time (timezone-aware).
        subject: Subject line.
        body: Commit description.
        diffs: File changes, in patch order. May be empty.
    """

    id: str
    author: str
    time: datetime
    subject: str
    body: str = ""
    diffs: list[Diff] = field(default_factory=list)

    def __str__(self) -> str:
        return (
            f"patch {short(self.id)} {self.author} {self.time.isoformat()} "
            f"{self.subject} ({len(self.diffs)} diffs)"
        )

    def paths(self) -> set[str]:
        """Return the set of paths touched by this patch."""
        return {diff.path for diff in self.diffs}

    def maybe_contains_lfs_pointer(self) -> bool:
        """Coarse check for git-lfs pointers in the patch.

        Every lfs pointer file declares an ``oid`` field, so a False result
        means the patch definitely touches no pointer.
        """
        return any(LFS_OID_MARKER in diff.body for diff in self.diffs)


class TokenKind(Enum):
    """Kinds of tokens produced by ``tokenize``."""

    ENVELOPE = auto()  # "From <digest> <date>"
    HEADER = auto()  # unfolded "Key: value"
    BODY = auto()  # one line of the description
    SEPARATOR = auto()  # "---" between description and diffs
    DIFF = auto()  # "diff --git a/... b/..."
    HUNK = auto()  # "@@ ..."
    LINE = auto()  # any other line inside a diff section


@dataclass(frozen=True)
class Token:
    kind: TokenKind
    value: bytes


def tokenize(raw: bytes) -> Iterator[Token]:
    """Split mailbox patch text into typed tokens.

    The description ends at the first "---" line, so description lines
    that look like patch structure must be escaped (see ``escape_body``).
    Lines between the separator and the first diff (the diffstat, blank
    lines) produce no tokens, nor does git's trailing signature.

    Raises:
        MalformedPatchError: If the text does not start with an envelope line.
    """
    lines = _split_lines(_SIGNATURE_RE.sub(b"\n", raw))
    pos = yield from _message_tokens(lines)
    yield from _diff_tokens(lines[pos:])


def tokenize_sections(message: bytes, diffs: bytes) -> Iterator[Token]:
    """Tokenize a patch whose message and diffs were produced separately.

    Every line after the headers of ``message`` is description, apart
    from a final "---" separator, so an unescaped description may hold
    any text. ``diffs`` is the output of ``git format-patch --format=``
    without a signature.

    Raises:
        MalformedPatchError: If the message does not start with an envelope line.
    """
    lines = _split_lines(message)
    end = len(lines)
    while end and lines[end - 1] == b"":
        end -= 1
    separator = end > 0 and lines[end - 1] == b"---"
    if separator:
        end -= 1
    yield from _message_tokens(lines[:end], stop_at_separator=False)
    if separator:
        yield Token(TokenKind.SEPARATOR, b"---")
    yield from _diff_tokens(_split_lines(diffs))


def _split_lines(raw: bytes) -> list[bytes]:
    lines = raw.split(b"\n")
    if lines and lines[-1] == b"":
        lines.pop()
    return lines


def _message_tokens(
    lines: list[bytes], stop_at_separator: bool = True
) -> Generator[Token, None, int]:
    """Yield envelope, header and body tokens; return the index after them."""
    if not lines or not lines[0].startswith(b"From "):
        raise MalformedPatchError("patch does not begin with a From line")
    yield Token(TokenKind.ENVELOPE, lines[0])

    pos = 1
    header: bytes | None = None
    while pos < len(lines):
        line = lines[pos]
        pos += 1
        if line == b"":
            break
        if line[:1] in (b" ", b"\t") and header is not None:
            header += line
            continue
        if header is not None:
            yield Token(TokenKind.HEADER, header)
        header = line
    if header is not None:
        yield Token(TokenKind.HEADER, header)

    while pos < len(lines):
        line = lines[pos]
        pos += 1
        if stop_at_separator and line == b"---":
            yield Token(TokenKind.SEPARATOR, line)
            break
        yield Token(TokenKind.BODY, line)
    return pos


def _diff_tokens(lines: list[bytes]) -> Iterator[Token]:
    in_diff = False
    for line in lines:
        if line.startswith(b"diff "):
            in_diff = True
            yield Token(TokenKind.DIFF, line)
        elif not in_diff:
            continue
        elif line.startswith(b"@@"):
            yield Token(TokenKind.HUNK, line)
        else:
            yield Token(TokenKind.LINE, line)


class _PatchBuilder:
    """Single-pass consumer of patch tokens."""

    def __init__(self, algorithm: str) -> None:
        self._algorithm = algorithm
        self._id: str | None = None
        self._headers: dict[str, str] = {}
        self._body: list[bytes] = []
        self._diffs: list[Diff] = []
        self._path: str | None = None
        self._meta: list[bytes] = []
        self._hunks: list[bytes] | None = None

    def feed(self, token: Token) -> None:
        kind = token.kind
        if kind is TokenKind.ENVELOPE:
            self._envelope(token.value)
        elif kind is TokenKind.HEADER:
            self._header(token.value)
        elif kind is TokenKind.BODY:
            self._body.append(token.value)
        elif kind is TokenKind.DIFF:
            self._end_diff()
            match = _DIFF_HEADER_RE.match(token.value)
            if match is None:
                raise MalformedPatchError(f"diff is missing header: {_decode(token.value)!r}")
            self._path = _decode(match.group(1))
            self._meta = []
            self._hunks = None
        elif kind is TokenKind.HUNK and self._hunks is None:
            self._hunks = [token.value]
        elif self._hunks is not None:
            self._hunks.append(token.value)
        elif kind is not TokenKind.SEPARATOR:
            self._meta.append(token.value)

    def _envelope(self, line: bytes) -> None:
        fields = line.split()
        if len(fields) < 2:
            raise MalformedPatchError(f"malformed envelope line {_decode(line)!r}")
        try:
            self._id = parse_digest(_decode(fields[1]), self._algorithm)
        except DigestError as e:
            raise MalformedPatchError(str(e)) from e

    def _header(self, line: bytes) -> None:
        match = _HEADER_RE.match(_decode(line))
        if match is None:
            raise MalformedPatchError(f"malformed header {_decode(line)!r}")
        key = match.group(1).lower()
        # First occurrence wins, as with mail header lookup
        self._headers.setdefault(key, match.group(2).strip())

    def _end_diff(self) -> None:
        if self._path is None:
            return
        hunks = self._hunks or []
        self._diffs.append(
            Diff(path=self._path, meta=_join(self._meta), body=_join(hunks))
        )
        self._path = None

    def build(self) -> Patch:
        self._end_diff()
        if self._id is None:
            raise MalformedPatchError("patch has no envelope line")
        subject = self._headers.get("subject", "")
        if not subject:
            raise MissingSubjectError("patch is missing subject")
        return Patch(
            id=self._id,
            author=_parse_author(self._headers.get("from", "")),
            time=_parse_date(self._headers.get("date", "")),
            subject=subject,
            body=_decode(_join(self._body)),
            diffs=self._diffs,
        )


def parse_patch(raw: bytes, algorithm: str = DEFAULT_ALGORITHM) -> Patch:
    """Parse a single mailbox-style patch, as produced by git format-patch.

    Args:
        raw: The patch text.
        algorithm: Hash algorithm of the originating repository.

    Returns:
        The parsed Patch.

    Raises:
        MalformedPatchError: If the envelope, headers or a diff header are invalid.
        MissingSubjectError: If the patch has no subject.
    """
    builder = _PatchBuilder(algorithm)
    for token in tokenize(raw):
        builder.feed(token)
    return builder.build()


def parse_patch_sections(
    message: bytes, diffs: bytes, algorithm: str = DEFAULT_ALGORITHM
) -> Patch:
    """Parse a patch from its message and diff sections.

    Used for git output, where the description is not escaped and may
    contain lines such as "---" or "diff --git ...".

    Raises:
        MalformedPatchError: If the envelope, headers or a diff header are invalid.
        MissingSubjectError: If the patch has no subject.
    """
    builder = _PatchBuilder(algorithm)
    for token in tokenize_sections(message, diffs):
        builder.feed(token)
    return builder.build()


def escape_body(body: str) -> str:
    """Prefix diff-like description lines with a zero width space.

    git am misreads a description that itself contains a patch, so lines
    starting with "diff", "---" or "+++" are made inert. The marker does
    not print and is left in place on the receiving side.
    """
    return "\n".join(
        ZERO_WIDTH_SPACE + line if line.startswith(ESCAPED_PREFIXES) else line
        for line in body.split("\n")
    )


def write_patch(patch: Patch, stream: BinaryIO) -> None:
    """Serialize a patch in the format accepted by git am."""
    stream.write(format_patch(patch))


def format_patch(patch: Patch) -> bytes:
    """Return the serialized patch."""
    head = (
        f"From {patch.id} {ENVELOPE_DATE}\n"
        f"From: {patch.author}\n"
        f"Date: {format_date(patch.time)}\n"
        f"Subject: {patch.subject}\n"
        f"\n"
        f"{escape_body(patch.body)}\n"
        f"---\n"
        f"\n"
    )
    parts = [head.encode(_ENCODING, _ERRORS)]
    for diff in patch.diffs:
        parts.append(f"diff --git a/{diff.path} b/{diff.path}\n".encode(_ENCODING, _ERRORS))
        for block in (diff.meta, diff.body):
            if block:
                parts.append(block + b"\n")
    return b"".join(parts)


def format_date(time: datetime) -> str:
    """Format a time as "Mon, 2 Jan 2006 15:04:05 -0700"."""
    if time.tzinfo is None:
        time = time.replace(tzinfo=UTC)
    offset = time.utcoffset()
    minutes = int(offset.total_seconds() // 60) if offset is not None else 0
    sign = "-" if minutes < 0 else "+"
    hours, minutes = divmod(abs(minutes), 60)
    return (
        f"{_DAYS[time.weekday()]}, {time.day} {_MONTHS[time.month - 1]} {time.year} "
        f"{time:%H:%M:%S} {sign}{hours:02d}{minutes:02d}"
    )


def _parse_author(value: str) -> str:
    if not value:
        raise MalformedPatchError("patch has no From address")
    addresses = [addr for _, addr in getaddresses([value]) if addr]
    if len(addresses) == 1:
        return value
    # Names and local parts may hold characters like "[" and "]" that the
    # address-list grammar rejects; a single bracketed address is accepted.
    if len(_ANGLE_ADDR_RE.findall(value)) == 1 and value.endswith(">"):
        return value
    raise MalformedPatchError(
        f"patch must have exactly one From address, got {len(addresses)}: {value!r}"
    )


def _parse_date(value: str) -> datetime:
    if not value:
        raise MalformedPatchError("patch has no Date header")
    try:
        time = parsedate_to_datetime(value)
    except (TypeError, ValueError) as e:
        raise MalformedPatchError(f"invalid patch date {value!r}") from e
    if time.tzinfo is None:
        time = time.replace(tzinfo=UTC)
    return time


def _join(lines: list[bytes]) -> bytes:
    end = len(lines)
    while end and lines[end - 1] == b"":
        end -= 1
    return b"\n".join(lines[:end])


def _decode(raw: bytes) -> str:
    return raw.decode(_ENCODING, _ERRORS)
