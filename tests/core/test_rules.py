"""Tests for strip and rewrite rules."""

from datetime import UTC, datetime
from unittest.mock import MagicMock

import pytest

from gitmirror.core.commit import Commit
from gitmirror.core.patch import Diff, Patch
from gitmirror.core.rules import (
    Rewrite,
    RuleError,
    RuleSet,
    StripCommit,
    StripMessage,
    StripPath,
    format_rule,
    parse_rule,
)

DIGEST = "abcdef0123456789abcdef0123456789abcdef01"


def make_patch(*paths: str, body: bytes = b"@@ -0,0 +1 @@\n+hello") -> Patch:
    """Create a patch touching the given paths."""
    return Patch(
        id=DIGEST,
        author="your name <you@example.com>",
        time=datetime(2018, 4, 3, tzinfo=UTC),
        subject="change",
        diffs=[Diff(path=path, body=body) for path in paths],
    )


class TestParseRule:
    """Tests for parse_rule."""

    def test_strip(self) -> None:
        """strip:<re> gives a StripPath rule."""
        rule = parse_rule("strip:^BUILD$")
        assert isinstance(rule, StripPath)
        assert rule.pattern.pattern == "^BUILD$"

    def test_strip_message(self) -> None:
        """strip-message:<re> gives a StripMessage rule."""
        rule = parse_rule("strip-message:secret/")
        assert isinstance(rule, StripMessage)

    def test_strip_commit(self) -> None:
        """strip-commit takes a hex prefix, normalized to lower case."""
        assert parse_rule("strip-commit:ABCDEF0") == StripCommit("abcdef0")

    def test_rewrite(self) -> None:
        """rewrite:<path>:/<old>/<new>/ splits on its first character."""
        rule = parse_rule("rewrite:\\.go$:|grail\\.com/x|example.com/y|")
        assert isinstance(rule, Rewrite)
        assert rule.path.pattern == "\\.go$"
        assert rule.old.pattern == b"grail\\.com/x"
        assert rule.new == b"example.com/y"

    @pytest.mark.parametrize(
        "text",
        [
            "strip",
            "unknown:foo",
            "strip:(",
            "strip-message:[",
            "strip-commit:abc",
            "strip-commit:xyzxyzxyz",
            "rewrite:foo",
            "rewrite:foo:/a/b",
            "rewrite:foo:/a/b/c/",
            "rewrite:foo:/(/b/",
            "rewrite:(:/a/b/",
        ],
    )
    def test_invalid_rules(self, text: str) -> None:
        """Malformed rules raise RuleError."""
        with pytest.raises(RuleError):
            parse_rule(text)

    @pytest.mark.parametrize(
        "text",
        ["strip:^BUILD$", "strip-message:^docs/", "strip-commit:abcdef0", "rewrite:x:/a/b/"],
    )
    def test_format_rule(self, text: str) -> None:
        """format_rule gives back the command-line form."""
        assert format_rule(parse_rule(text)) == text

    def test_format_rewrite_picks_free_delimiter(self) -> None:
        """A delimiter not used by the patterns is chosen."""
        text = format_rule(parse_rule("rewrite:x:|a/b|c|"))
        assert text == "rewrite:x:|a/b|c|"
        assert parse_rule(text) == parse_rule("rewrite:x:|a/b|c|")


class TestRuleSet:
    """Tests for RuleSet evaluation."""

    def test_parse_keeps_order(self) -> None:
        """Rules are kept in declaration order."""
        rules = RuleSet.parse(["strip:a", "strip-commit:1234567"])
        assert len(rules) == 2
        assert isinstance(rules.rules[0], StripPath)
        assert isinstance(rules.rules[1], StripCommit)

    def test_parse_fails_on_first_error(self) -> None:
        """Any invalid rule fails the whole set."""
        with pytest.raises(RuleError):
            RuleSet.parse(["strip:a", "bogus"])

    def test_is_commit_stripped(self) -> None:
        """Digest prefixes select commits."""
        rules = RuleSet.parse(["strip-commit:abcdef0"])
        assert rules.is_commit_stripped(Commit(DIGEST))
        assert not rules.is_commit_stripped(Commit("1" * 40))

    def test_is_path_stripped(self) -> None:
        """Paths are searched, so patterns need anchors to match exactly."""
        rules = RuleSet.parse(["strip:^BUILD$"])
        assert rules.is_path_stripped("BUILD") == (True, "^BUILD$")
        assert rules.is_path_stripped("sub/BUILD") == (False, None)

    def test_empty_ruleset_keeps_everything(self) -> None:
        """No rules means no changes."""
        patch = make_patch("a", "b")
        outcome = RuleSet().filter_patch(patch)
        assert outcome.diffs == patch.diffs
        assert outcome.stripped == []
        assert not outcome.strip_message


class TestFilterPatch:
    """Tests for RuleSet.filter_patch."""

    def test_strips_matching_diffs(self) -> None:
        """Stripped diffs are dropped and reported."""
        rules = RuleSet.parse(["strip:^BUILD$"])
        outcome = rules.filter_patch(make_patch("BUILD", "main.go"))
        assert [d.path for d in outcome.diffs] == ["main.go"]
        assert outcome.stripped == ["BUILD"]

    def test_matches_relative_to_prefix(self) -> None:
        """Rules see paths without the destination prefix."""
        rules = RuleSet.parse(["strip:^BUILD$"])
        outcome = rules.filter_patch(make_patch("remote/BUILD", "remote/x"), "remote/")
        assert [d.path for d in outcome.diffs] == ["remote/x"]

    def test_strip_message_when_all_match(self) -> None:
        """The message is stripped only if every surviving diff matches."""
        rules = RuleSet.parse(["strip-message:^secret/"])
        assert rules.filter_patch(make_patch("secret/a", "secret/b")).strip_message
        assert not rules.filter_patch(make_patch("secret/a", "public")).strip_message

    def test_strip_message_ignores_stripped_diffs(self) -> None:
        """Stripped diffs do not count against message stripping."""
        rules = RuleSet.parse(["strip:^BUILD$", "strip-message:^secret/"])
        outcome = rules.filter_patch(make_patch("BUILD", "secret/a"))
        assert outcome.strip_message

    def test_no_message_strip_without_diffs(self) -> None:
        """A patch stripped to nothing does not strip the message."""
        rules = RuleSet.parse(["strip:.", "strip-message:."])
        outcome = rules.filter_patch(make_patch("a"))
        assert outcome.diffs == []
        assert not outcome.strip_message

    def test_rewrites_matching_files(self) -> None:
        """Rewrite rules change the bodies of matching files only."""
        rules = RuleSet.parse(["rewrite:\\.txt$:/hello/goodbye/"])
        outcome = rules.filter_patch(make_patch("a.txt", "a.md"))
        assert outcome.diffs[0].body == b"@@ -0,0 +1 @@\n+goodbye"
        assert outcome.diffs[1].body == b"@@ -0,0 +1 @@\n+hello"

    def test_rewrites_compose_in_order(self) -> None:
        """Each rewrite sees the output of the previous one."""
        rules = RuleSet.parse(["rewrite:.:/hello/bye/", "rewrite:.:/bye/ciao/"])
        outcome = rules.filter_patch(make_patch("a"))
        assert outcome.diffs[0].body == b"@@ -0,0 +1 @@\n+ciao"

    def test_rewrite_replacement_is_literal(self) -> None:
        """Backslashes in the replacement are not group references."""
        rules = RuleSet.parse(["rewrite:.:/(hello)/\\1/"])
        outcome = rules.filter_patch(make_patch("a"))
        assert outcome.diffs[0].body == b"@@ -0,0 +1 @@\n+\\1"

    def test_does_not_modify_patch(self) -> None:
        """The input patch keeps its diffs."""
        patch = make_patch("BUILD", "a")
        RuleSet.parse(["strip:^BUILD$", "rewrite:.:/hello/x/"]).filter_patch(patch)
        assert [d.path for d in patch.diffs] == ["BUILD", "a"]
        assert patch.diffs[1].body == b"@@ -0,0 +1 @@\n+hello"


class TestIsCommitApplicable:
    """Tests for RuleSet.is_commit_applicable."""

    @pytest.fixture
    def view(self) -> MagicMock:
        """Create a mock repository view."""
        return MagicMock()

    def test_applicable_when_a_diff_survives(self, view: MagicMock) -> None:
        """A commit with any surviving diff is applicable."""
        view.patch.return_value = make_patch("BUILD", "a")
        rules = RuleSet.parse(["strip:^BUILD$"])
        assert rules.is_commit_applicable(Commit(DIGEST), view)
        view.patch.assert_called_once_with(DIGEST)

    def test_not_applicable_when_all_stripped(self, view: MagicMock) -> None:
        """A commit whose diffs are all stripped is not applicable."""
        view.patch.return_value = make_patch("BUILD")
        rules = RuleSet.parse(["strip:^BUILD$"])
        assert not rules.is_commit_applicable(Commit(DIGEST), view)

    def test_stripped_commit_skips_patch(self, view: MagicMock) -> None:
        """Stripped commits are rejected without deriving a patch."""
        rules = RuleSet.parse(["strip-commit:abcdef0"])
        assert not rules.is_commit_applicable(Commit(DIGEST), view)
        view.patch.assert_not_called()
