"""Rules for stripping and rewriting commits on their way to the destination.

This module provides:
- StripPath, StripMessage, StripCommit, Rewrite: The rule variants
- parse_rule, format_rule: Convert rules from and to their command-line form
- RuleSet: Evaluates a fixed list of rules against commits and patches
- FilterOutcome: Result of running a patch through a RuleSet

Rule syntax:
    strip:<path-re>                     drop diffs to matching files
    strip-message:<path-re>             hide the message of commits that
                                        only touch matching files
    strip-commit:<hex-prefix>           drop the commit entirely
    rewrite:<path-re>:/<old-re>/<new>/  replace text in matching files;
                                        "/" may be any character

Rules are evaluated twice per run: once while copying, and again while
validating old trailer commits in the destination. Both passes must see
the same paths, so rules always match paths relative to the destination
prefix.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from typing import TYPE_CHECKING

from gitmirror.core.digest import SHORT_LENGTH, is_hex
from gitmirror.core.paths import strip_prefix

if TYPE_CHECKING:
    from gitmirror.core.commit import Commit
    from gitmirror.core.patch import Diff, Patch
    from gitmirror.repo import RepoView

logger = logging.getLogger(__name__)

REWRITE_USAGE = "rewrite:<path-re>:/<old-re>/<new>/"


class RuleError(ValueError):
    """Raised for malformed rules."""


@dataclass(frozen=True)
class StripPath:
    """Drop diffs whose path matches."""

    pattern: re.Pattern[str]


@dataclass(frozen=True)
class StripMessage:
    """Stub out the message of commits whose diffs all match."""

    pattern: re.Pattern[str]


@dataclass(frozen=True)
class StripCommit:
    """Drop commits whose digest starts with the prefix."""

    prefix: str


@dataclass(frozen=True)
class Rewrite:
    """Regex-replace each line of diffs whose path matches.

    Attributes:
        path: Pattern matched against the diff path.
        old: Pattern matched against each line of the diff body.
        new: Literal replacement.
    """

    path: re.Pattern[str]
    old: re.Pattern[bytes]
    new: bytes


Rule = StripPath | StripMessage | StripCommit | Rewrite


def parse_rule(text: str) -> Rule:
    """Parse a rule from its "kind:param" form.

    Raises:
        RuleError: If the kind is unknown or the parameter is invalid.
    """
    kind, sep, param = text.partition(":")
    if not sep:
        raise RuleError(f"invalid rule {text!r}: expected kind:param")
    if kind == "strip":
        return StripPath(_compile(param, "strip"))
    if kind == "strip-message":
        return StripMessage(_compile(param, "strip-message"))
    if kind == "strip-commit":
        if len(param) < SHORT_LENGTH or not is_hex(param):
            raise RuleError(
                f"strip-commit: {param!r} must be at least {SHORT_LENGTH} hex digits"
            )
        return StripCommit(param.lower())
    if kind == "rewrite":
        return _parse_rewrite(param)
    raise RuleError(f"invalid rule type {kind!r} in {text!r}")


def format_rule(rule: Rule) -> str:
    """Render a rule back into its "kind:param" form."""
    match rule:
        case StripPath(pattern=pattern):
            return f"strip:{pattern.pattern}"
        case StripMessage(pattern=pattern):
            return f"strip-message:{pattern.pattern}"
        case StripCommit(prefix=prefix):
            return f"strip-commit:{prefix}"
        case Rewrite(path=path, old=old, new=new):
            old_text = old.pattern.decode()
            new_text = new.decode()
            delim = next((c for c in "/|#!,@%" if c not in old_text + new_text), "/")
            return f"rewrite:{path.pattern}:{delim}{old_text}{delim}{new_text}{delim}"


def _parse_rewrite(param: str) -> Rewrite:
    path, sep, spec = param.partition(":")
    if not sep or len(spec) < 3:
        raise RuleError(f"rewrite: {param!r} must be of form {REWRITE_USAGE}")
    delim = spec[0]
    parts = spec[1:].split(delim)
    if len(parts) != 3 or parts[2] != "":
        raise RuleError(f"rewrite: {param!r} must be of form {REWRITE_USAGE}")
    try:
        old = re.compile(parts[0].encode())
    except re.error as e:
        raise RuleError(f"rewrite: invalid 'from' regexp {parts[0]!r}: {e}") from e
    return Rewrite(
        path=_compile(path, "rewrite path"),
        old=old,
        new=parts[1].encode(),
    )


def _compile(pattern: str, what: str) -> re.Pattern[str]:
    try:
        return re.compile(pattern)
    except re.error as e:
        raise RuleError(f"{what}: invalid regexp {pattern!r}: {e}") from e


@dataclass
class FilterOutcome:
    """Result of ``RuleSet.filter_patch``.

    Attributes:
        diffs: Surviving diffs, rewritten.
        stripped: Paths of dropped diffs.
        strip_message: True if every surviving diff matched a strip-message rule.
    """

    diffs: list[Diff] = field(default_factory=list)
    stripped: list[str] = field(default_factory=list)
    strip_message: bool = False


class RuleSet:
    """A fixed, ordered set of rules."""

    def __init__(self, rules: Iterable[Rule] = ()) -> None:
        self._rules = tuple(rules)

    @classmethod
    def parse(cls, texts: Iterable[str]) -> RuleSet:
        """Parse every rule up front, failing on the first invalid one."""
        return cls(parse_rule(text) for text in texts)

    @property
    def rules(self) -> tuple[Rule, ...]:
        return self._rules

    def __len__(self) -> int:
        return len(self._rules)

    def is_commit_stripped(self, commit: Commit) -> bool:
        """Check whether a strip-commit rule excludes the commit."""
        digest = commit.digest.lower()
        for rule in self._rules:
            match rule:
                case StripCommit(prefix=prefix) if digest.startswith(prefix):
                    return True
        return False

    def is_path_stripped(self, path: str) -> tuple[bool, str | None]:
        """Check a path against the strip rules.

        Returns:
            Whether the path is stripped, and the matching pattern.
        """
        for rule in self._rules:
            match rule:
                case StripPath(pattern=pattern) if pattern.search(path):
                    return True, pattern.pattern
        return False, None

    def is_message_path_stripped(self, path: str) -> tuple[bool, str | None]:
        """Check a path against the strip-message rules."""
        for rule in self._rules:
            match rule:
                case StripMessage(pattern=pattern) if pattern.search(path):
                    return True, pattern.pattern
        return False, None

    def rewrite_diff(self, diff: Diff, path: str | None = None) -> Diff:
        """Apply every matching rewrite rule to a diff body.

        Rules run in declaration order, each on the output of the previous.

        Args:
            diff: The diff to rewrite.
            path: Path to match rules against; defaults to the diff path.
        """
        path = diff.path if path is None else path
        body = diff.body
        for rule in self._rules:
            match rule:
                case Rewrite(path=pattern, old=old, new=new) if pattern.search(path):
                    body = b"\n".join(
                        old.sub(lambda _: new, line) for line in body.split(b"\n")
                    )
        if body == diff.body:
            return diff
        return replace(diff, body=body)

    def filter_patch(self, patch: Patch, prefix: str = "") -> FilterOutcome:
        """Strip and rewrite the diffs of a patch.

        Args:
            patch: Patch whose paths carry the destination prefix.
            prefix: Destination prefix, removed before matching rules.
        """
        outcome = FilterOutcome()
        message_matches: list[bool] = []
        for diff in patch.diffs:
            path = strip_prefix(diff.path, prefix)
            stripped, pattern = self.is_path_stripped(path)
            if stripped:
                logger.debug(f"file {diff.path} matches rule {pattern}: stripping")
                outcome.stripped.append(diff.path)
                continue
            matched, pattern = self.is_message_path_stripped(path)
            if matched:
                logger.debug(f"file {diff.path} matches message rule {pattern}")
            message_matches.append(matched)
            outcome.diffs.append(self.rewrite_diff(diff, path))
        outcome.strip_message = bool(message_matches) and all(message_matches)
        return outcome

    def is_commit_applicable(self, commit: Commit, view: RepoView) -> bool:
        """Check whether copying the commit under these rules changes anything.

        The commit's patch is derived from ``view`` without any destination
        prefix, so paths are relative to the view's prefix.

        Raises:
            Whatever ``view.patch`` raises.
        """
        if self.is_commit_stripped(commit):
            return False
        patch = view.patch(commit.digest)
        for diff in patch.diffs:
            if not self.is_path_stripped(diff.path)[0]:
                return True
        return False
