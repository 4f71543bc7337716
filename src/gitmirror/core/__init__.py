"""Core module - Patches, commits, rules, and configuration."""

from gitmirror.core.commit import (
    TRAILER_GREP,
    TRAILER_RE,
    Commit,
    Header,
    LogParseError,
    format_trailer,
    parse_log,
)
from gitmirror.core.config import RepoSpec, SpecError, parse_git_config, resolve_cache_dir
from gitmirror.core.digest import DigestError, parse_digest
from gitmirror.core.patch import (
    Diff,
    MalformedPatchError,
    MissingSubjectError,
    Patch,
    format_patch,
    parse_patch,
    parse_patch_sections,
    write_patch,
)
from gitmirror.core.rules import (
    FilterOutcome,
    Rewrite,
    Rule,
    RuleError,
    RuleSet,
    StripCommit,
    StripMessage,
    StripPath,
    format_rule,
    parse_rule,
)
from gitmirror.core.types import CommitAction

__all__ = [
    # Commits
    "TRAILER_GREP",
    "TRAILER_RE",
    "Commit",
    "Header",
    "LogParseError",
    "format_trailer",
    "parse_log",
    # Config
    "RepoSpec",
    "SpecError",
    "parse_git_config",
    "resolve_cache_dir",
    # Digests
    "DigestError",
    "parse_digest",
    # Patches
    "Diff",
    "MalformedPatchError",
    "MissingSubjectError",
    "Patch",
    "format_patch",
    "parse_patch",
    "parse_patch_sections",
    "write_patch",
    # Rules
    "FilterOutcome",
    "Rewrite",
    "Rule",
    "RuleError",
    "RuleSet",
    "StripCommit",
    "StripMessage",
    "StripPath",
    "format_rule",
    "parse_rule",
    # Types
    "CommitAction",
]
