"""Sync engine copying commits from a source view to a destination view.

This module provides:
- SyncEngine: Finds the last sync point and copies newer source commits

A run goes through these steps:

1. Find the newest destination commit carrying a sync trailer that is
   still meaningful under the current rules.
2. List the source commits after the commit that trailer names (or the
   whole source history on the first sync).
3. Drop source commits that are themselves copies, or stripped by rule.
4. Copy the remaining commits oldest first: derive the patch, add the
   trailer, strip and rewrite diffs, then apply it (or dump it).
5. Push, if anything was applied and a push was requested.

The destination's history is the only record of progress, so a run that
fails halfway can simply be repeated.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING, BinaryIO

from gitmirror.core.commit import TRAILER_GREP, Commit, format_trailer
from gitmirror.core.digest import short
from gitmirror.core.patch import MalformedPatchError, Patch, write_patch
from gitmirror.core.paths import strip_prefix
from gitmirror.core.rules import RuleSet
from gitmirror.core.types import CommitAction
from gitmirror.repo.base import RepoError
from gitmirror.sync.types import (
    CommitCallback,
    CommitError,
    CommitOutcome,
    SyncError,
    SyncResult,
    SyncStatus,
)

if TYPE_CHECKING:
    from gitmirror.repo.base import RepoView

logger = logging.getLogger(__name__)

STRIPPED_SUBJECT = "Stripped commit"
STRIPPED_BODY = "Commit message stripped.\n\n"

DEFAULT_REMOTE = "origin"


class SyncEngine:
    """Copies commits from a source view to a destination view."""

    def __init__(
        self,
        src: RepoView,
        dst: RepoView,
        rules: RuleSet | None = None,
        dump_stream: BinaryIO | None = None,
        commit_callback: CommitCallback | None = None,
    ) -> None:
        """Initialize the sync engine.

        Args:
            src: Repository view commits are copied from.
            dst: Repository view commits are copied to.
            rules: Strip and rewrite rules.
            dump_stream: If set, patches are written here instead of being applied.
            commit_callback: Optional callback after each source commit.
        """
        self._src = src
        self._dst = dst
        self._rules = rules if rules is not None else RuleSet()
        self._dump = dump_stream
        self._commit_callback = commit_callback

    def find_last_sync(self) -> Commit | None:
        """Find the newest destination commit that records a valid sync.

        A destination may be the target of several unrelated sources, so a
        trailer alone is not trusted: the commit must survive the current
        rules, or the walk moves on to older trailer commits.

        Returns:
            The sync commit, or None if the destination was never synced.
        """
        skip = 0
        while True:
            found = self._dst.log(
                "-1", f"--skip={skip}", "--extended-regexp", f"--grep={TRAILER_GREP}"
            )
            if not found:
                return None
            candidate = found[0]
            skip += 1
            if self._rules.is_commit_stripped(candidate):
                logger.info(f"ignoring sync commit {candidate}: stripped by rule")
                continue
            if not self._rules.is_commit_applicable(candidate, self._dst):
                logger.info(f"ignoring sync commit {candidate}: no diffs survive the rules")
                continue
            return candidate

    def pending_commits(self, last: Commit | None) -> list[Commit]:
        """List source commits still to copy, oldest first.

        Args:
            last: The destination's last sync commit, from find_last_sync.

        Raises:
            SyncError: If the last sync commit has no source id.
        """
        if last is None:
            logger.info("performing initial sync")
            commits = self._src.log("--no-merges")
        else:
            ids = last.source_ids
            if not ids:
                raise SyncError(f"no source id found in commit {last}")
            # Squashed commits list their ids oldest first
            newest = ids[-1]
            logger.info(f"synchronizing: last commit {last.short}, source {newest}")
            commits = self._src.log(f"{newest}..HEAD", "--ancestry-path", "--no-merges")

        pending: list[Commit] = []
        for commit in commits:
            # Copies from elsewhere must not travel back, for multi-way syncs
            if commit.source_ids:
                logger.debug(f"skipping copied commit {commit}")
                continue
            if self._rules.is_commit_stripped(commit):
                logger.info(f"skipping stripped commit {commit}")
                continue
            pending.append(commit)
        pending.reverse()
        return pending

    def status(self) -> SyncStatus:
        """Report the last sync point and pending commits without copying."""
        last = self.find_last_sync()
        return SyncStatus(last_synced=last, pending=self.pending_commits(last))

    def run(self, push: bool = False) -> SyncResult:
        """Perform a sync run.

        Args:
            push: Push the destination branch if any commit was applied.

        Returns:
            SyncResult describing every candidate commit.

        Raises:
            CommitError: If deriving or applying a commit fails.
            RepoError: If listing history or pushing fails.
        """
        last = self.find_last_sync()
        pending = self.pending_commits(last)
        logger.info(f"{len(pending)} commits to copy")

        result = SyncResult(last_synced=last, candidates=len(pending))
        for commit in pending:
            outcome = self._copy(commit)
            result.outcomes.append(outcome)
            if self._commit_callback:
                self._commit_callback(outcome)

        if not push or self._dump is not None:
            return result
        if not result.applied:
            logger.info("nothing to do")
            return result
        logger.info(f"pushing changes to {self._dst.url} {self._dst.branch}")
        self._dst.push(DEFAULT_REMOTE, self._dst.branch, lfs=bool(result.lfs_objects))
        result.pushed = True
        return result

    def _copy(self, commit: Commit) -> CommitOutcome:
        try:
            patch = self._src.patch(commit.digest, self._dst.prefix)
        except (RepoError, MalformedPatchError) as e:
            raise CommitError(commit, f"patch: {e}") from e

        trailer = format_trailer(patch.id)
        if patch.body:
            patch.body += "\n\n"
        patch.body += trailer

        filtered = self._rules.filter_patch(patch, self._dst.prefix)
        if not filtered.diffs:
            logger.info(f"skipping empty patch {short(patch.id)}")
            return CommitOutcome(commit, CommitAction.SKIPPED)
        patch.diffs = filtered.diffs
        if filtered.strip_message:
            logger.info(f"stripping message of {short(patch.id)}")
            patch.subject = STRIPPED_SUBJECT
            patch.body = STRIPPED_BODY + trailer

        if self._dump is not None:
            write_patch(patch, self._dump)
            return CommitOutcome(
                commit, CommitAction.DUMPED, message_stripped=filtered.strip_message
            )

        logger.info(f"applying {commit}")
        try:
            self._dst.apply(patch)
            lfs_objects = self._copy_lfs_objects(patch)
        except RepoError as e:
            raise CommitError(commit, f"apply {patch}: {e}") from e
        return CommitOutcome(
            commit,
            CommitAction.APPLIED,
            message_stripped=filtered.strip_message,
            lfs_objects=lfs_objects,
        )

    def _copy_lfs_objects(self, patch: Patch) -> list[str]:
        """Copy the lfs objects of pointers touched by an applied patch.

        Only touched pointers are considered, so unrelated objects are
        never downloaded.
        """
        if not patch.maybe_contains_lfs_pointer():
            logger.debug(f"{patch}: patch contains no lfs pointers")
            return []
        paths = {strip_prefix(path, self._dst.prefix) for path in patch.paths()}
        touched: list[str] = []
        for pointer in self._dst.list_lfs_pointers():
            if pointer not in paths:
                continue
            self._dst.copy_lfs_object(self._src, pointer)
            touched.append(pointer)
        return touched
