"""Sync commands for the gitmirror CLI.

Commands:
- sync: Copy new commits from a source view to a destination view
- status: Show the last sync point and the commits a sync would copy
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path
from typing import Any, NoReturn

import click

from gitmirror.cli.config import get_cache_dir, get_git_config
from gitmirror.core.config import RepoSpec, SpecError, parse_git_config, resolve_cache_dir
from gitmirror.core.patch import MalformedPatchError
from gitmirror.core.rules import RuleError, RuleSet
from gitmirror.repo import RepoError, open_pair
from gitmirror.sync import CommitError, CommitOutcome, SyncEngine, SyncError

# Exit status for patches that cannot be parsed
EXIT_MALFORMED_PATCH = 3


class ClickEchoHandler(logging.Handler):
    """Logging handler writing records to stderr through click.echo."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            click.echo(self.format(record), err=True)
        except Exception:
            self.handleError(record)


def setup_logging(verbose: bool) -> None:
    """Route gitmirror log records to stderr.

    Args:
        verbose: Log at DEBUG instead of INFO.
    """
    logger = logging.getLogger("gitmirror")
    for handler in list(logger.handlers):
        if isinstance(handler, ClickEchoHandler):
            logger.removeHandler(handler)
    handler = ClickEchoHandler()
    handler.setFormatter(logging.Formatter("%(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)


def exit_code(error: Exception) -> int:
    """Exit status for an error escaping a command."""
    if isinstance(error, CommitError) and error.__cause__ is not None:
        error = error.__cause__  # type: ignore[assignment]
    if isinstance(error, MalformedPatchError):
        return EXIT_MALFORMED_PATCH
    return 1


def fail(error: Exception) -> NoReturn:
    """Report an error and exit with its status."""
    click.echo(f"Error: {error}", err=True)
    sys.exit(exit_code(error))


@dataclass
class Invocation:
    """Validated arguments shared by the sync and status commands."""

    src: RepoSpec
    dst: RepoSpec
    rules: RuleSet
    git_config: dict[str, str]
    cache_dir: Path


def prepare(
    src: str,
    dst: str,
    rules: tuple[str, ...],
    git_config: str,
    cache_dir: Path | None,
) -> Invocation:
    """Parse and check command-line arguments before opening any repository.

    Raises:
        click.UsageError: If a spec, rule or config pair is invalid, or
            source and destination are the same repository.
    """
    try:
        src_spec = RepoSpec.parse(src)
    except SpecError as e:
        raise click.BadParameter(str(e), param_hint="SRC") from e
    try:
        dst_spec = RepoSpec.parse(dst)
    except SpecError as e:
        raise click.BadParameter(str(e), param_hint="DST") from e
    if src_spec.url == dst_spec.url:
        raise click.UsageError("source and destination cannot be the same")

    try:
        rule_set = RuleSet.parse(rules)
    except RuleError as e:
        raise click.BadParameter(str(e), param_hint="RULE") from e

    # Command-line pairs override the config file
    config = get_git_config()
    try:
        config.update(parse_git_config(git_config))
    except SpecError as e:
        raise click.BadParameter(str(e), param_hint="--config") from e

    return Invocation(
        src=src_spec,
        dst=dst_spec,
        rules=rule_set,
        git_config=config,
        cache_dir=resolve_cache_dir(cache_dir, get_cache_dir()),
    )


def repo_options(func: Callable[..., Any]) -> Callable[..., Any]:
    """Options and arguments shared by commands operating on a repo pair."""
    decorators = [
        click.option(
            "--config",
            "git_config",
            default="",
            metavar="K=V,...",
            help="Git configuration pairs applied to both repositories.",
        ),
        click.option(
            "--cache-dir",
            type=click.Path(file_okay=False, path_type=Path),
            default=None,
            help="Directory holding cached checkouts.",
        ),
        click.option("--verbose", "-v", is_flag=True, help="Log git invocations."),
        click.argument("src"),
        click.argument("dst"),
        click.argument("rules", nargs=-1),
    ]
    for decorator in reversed(decorators):
        func = decorator(func)
    return func


@click.command()
@click.option("--push", is_flag=True, help="Push the destination branch after applying.")
@click.option("--dump", is_flag=True, help="Write patches to stdout instead of applying them.")
@click.option("--linearize", is_flag=True, help="Drop merges from the source history first.")
@repo_options
def sync(
    push: bool,
    dump: bool,
    linearize: bool,
    git_config: str,
    cache_dir: Path | None,
    verbose: bool,
    src: str,
    dst: str,
    rules: tuple[str, ...],
) -> None:
    """Copy new commits from SRC to DST.

    SRC and DST are url[,prefix[,branch]]. Each RULE is one of
    strip:<path-re>, strip-message:<path-re>, strip-commit:<hex> or
    rewrite:<path-re>:/<old-re>/<new>/.
    """
    if push and dump:
        raise click.UsageError("--push and --dump are mutually exclusive")
    invocation = prepare(src, dst, rules, git_config, cache_dir)
    setup_logging(verbose)

    dump_stream = click.get_binary_stream("stdout") if dump else None

    def on_commit(outcome: CommitOutcome) -> None:
        suffix = " (message stripped)" if outcome.message_stripped else ""
        click.echo(f"  {outcome.action.value} {outcome.commit}{suffix}", err=dump)

    try:
        src_repo, dst_repo = open_pair(
            invocation.src,
            invocation.dst,
            cache_dir=invocation.cache_dir,
            config=invocation.git_config,
        )
        with src_repo, dst_repo:
            if linearize:
                src_repo.linearize()
            engine = SyncEngine(
                src_repo,
                dst_repo,
                invocation.rules,
                dump_stream=dump_stream,
                commit_callback=on_commit,
            )
            result = engine.run(push=push)
    except (SyncError, RepoError, MalformedPatchError) as e:
        fail(e)

    if dump_stream is not None:
        dump_stream.flush()

    verb = "Dumped" if dump else "Applied"
    summary = f"{verb} {len(result.applied)} of {result.candidates} commits"
    if result.skipped:
        summary += f", {len(result.skipped)} skipped"
    if result.lfs_objects:
        summary += f", {len(result.lfs_objects)} lfs objects"
    if result.pushed:
        summary += f", pushed to {invocation.dst.branch}"
    click.echo(summary, err=dump)


@click.command()
@repo_options
def status(
    git_config: str,
    cache_dir: Path | None,
    verbose: bool,
    src: str,
    dst: str,
    rules: tuple[str, ...],
) -> None:
    """Show the last sync point and the commits a sync would copy."""
    invocation = prepare(src, dst, rules, git_config, cache_dir)
    setup_logging(verbose)

    try:
        src_repo, dst_repo = open_pair(
            invocation.src,
            invocation.dst,
            cache_dir=invocation.cache_dir,
            config=invocation.git_config,
        )
        with src_repo, dst_repo:
            state = SyncEngine(src_repo, dst_repo, invocation.rules).status()
    except (SyncError, RepoError, MalformedPatchError) as e:
        fail(e)

    if state.initial:
        click.echo("Never synced")
    else:
        click.echo(f"Last sync: {state.last_synced} (source {state.source_id})")
    click.echo(f"{len(state.pending)} commits pending")
    for commit in state.pending:
        click.echo(f"  {commit}")
