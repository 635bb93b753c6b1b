"""Command-line entry point.

Usage:
    renote help
    renote generate --repo longhorn/longhorn --version v1.6.0 \\
        --milestone v1.6.0 --min-kubernetes-version v1.21 --output note.md
    renote diff previous.json current.json
    renote changelog --repo longhorn/longhorn-manager --branch master \\
        --tag v1.6.0 --markdown-folding

Exit code is 0 on success and the exit_code of the RenoteError otherwise.
Classification problems do not fail the run; they are listed on stderr.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import re
import sys
import tempfile
from pathlib import Path

from pydantic import ValidationError

from renote import __version__
from renote.changelog import DEFAULT_SINCE_DAYS, build_changelogs, format_changelogs
from renote.config import load_config
from renote.diff import carried_over, diff, format_diff, has_changes
from renote.engine import BuildRequest, ReleaseNoteBuilder
from renote.errors import ConfigError, OutputError, RenoteError
from renote.hooks import run_filter_hook
from renote.logging_config import get_logger, setup_logging
from renote.publish import publish_release
from renote.renderer import Renderer, load_template
from renote.runtime import RunContext
from renote.schemas import REPO_PATTERN, ReleaseNote, Section
from renote.tracker import GitHubTracker

logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Argument parsing
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="renote",
        description="Generate release notes from GitHub milestones",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument(
        "--log-level", "-l",
        default=os.environ.get("LOG_LEVEL", "INFO"),
        type=str.upper,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Log level (default: INFO or $LOG_LEVEL)",
    )
    parser.add_argument(
        "--log-format",
        choices=["console", "json"],
        default=None,
        help="Log rendering (default: $RENOTE_LOG_FORMAT or console)",
    )
    parser.add_argument(
        "--github-token",
        default=None,
        help="GitHub token (default: $GITHUB_TOKEN)",
    )
    parser.add_argument(
        "--config", "-c",
        default=None,
        help="renote YAML config (default: $RENOTE_CONFIG or the built-in one)",
    )

    commands = parser.add_subparsers(dest="command")
    commands.add_parser("help", help="Show this help")

    gen = commands.add_parser("generate", help="Generate a release note")
    gen.add_argument("--repo", required=True, help="GitHub repo as owner/name")
    gen.add_argument("--version", dest="release_version", required=True, help="Release version or tag")
    gen.add_argument("--milestone", required=True, help="GitHub milestone title")
    gen.add_argument("--label", dest="labels", action="append", default=[],
                     help="Also include items with this label outside the milestone")
    gen.add_argument("--exclude-label", dest="exclude_labels", action="append", default=[],
                     help="Drop items carrying this label")
    gen.add_argument("--since-days", type=int, default=None,
                     help="Ignore items closed more than N days ago")
    gen.add_argument("--template", "-t", default=None, help="Release note template (YAML)")
    gen.add_argument("--output", "-o", default=None, help="Write the note here instead of stdout")
    gen.add_argument("--snapshot", default=None, help="Also write the note as JSON for later diffs")
    gen.add_argument("--previous", default=None, help="JSON snapshot of the previous note to diff against")
    gen.add_argument("--var", dest="variables", action="append", default=[],
                     metavar="KEY=VALUE", help="Extra template placeholder")
    gen.add_argument("--min-kubernetes-version", default=None,
                     help="Minimum supported Kubernetes version")
    gen.add_argument("--upgrade-from", action="append", default=[],
                     help="Version an upgrade is supported from")
    gen.add_argument("--not-applicable", action="append", default=[],
                     choices=[s.value for s in Section],
                     help="Mark an empty section as N/A")
    gen.add_argument("--pre-note", default=None, help="File (or text) placed before the note")
    gen.add_argument("--post-note", default=None, help="File (or text) placed after the note")
    gen.add_argument("--contributor", dest="contributors", action="append", default=[],
                     help="Extra contributor login")
    gen.add_argument("--dry-run", action="store_true",
                     help="Print the note without writing files or publishing")
    gen.add_argument("--publish", action="store_true", help="Create a GitHub release with gh")
    gen.add_argument("--title", default=None, help="GitHub release title")
    gen.add_argument("--branch", default=None, help="Target branch of the release")
    gen.add_argument("--draft", action="store_true", help="Create a draft release")
    gen.add_argument("--prerelease", action="store_true", help="Create a pre-release")
    gen.add_argument("--artifact", dest="artifacts", action="append", default=[],
                     metavar="GLOB", help="Upload matching files to the release")
    gen.add_argument("--filter-issue-hook", default=None,
                     help="Script printing issue numbers to leave out of the note")
    gen.add_argument("--include-pull-requests", action=argparse.BooleanOptionalAction,
                     default=None, help="List pull requests too (default: from config)")

    diff_cmd = commands.add_parser("diff", help="Diff two JSON snapshots")
    diff_cmd.add_argument("previous", help="Previous note snapshot")
    diff_cmd.add_argument("current", help="Current note snapshot")

    changelog_cmd = commands.add_parser("changelog", help="Commit log between two tags, per repo")
    changelog_cmd.add_argument("--repo", dest="repos", action="append", required=True,
                               help="GitHub repo as owner/name (repeatable)")
    changelog_cmd.add_argument("--branch", required=True, help="Branch the tags are on")
    changelog_cmd.add_argument("--tag", required=True, help="Tag to log up to")
    changelog_cmd.add_argument("--prev-tag", default=None,
                               help="Tag to log from (default: the previous release)")
    changelog_cmd.add_argument("--since-days", type=int, default=DEFAULT_SINCE_DAYS,
                               help="Fallback window when the previous tag has no date")
    changelog_cmd.add_argument("--public", action="store_true",
                               help="Skip pre-releases when looking for the previous tag")
    changelog_cmd.add_argument("--markdown-folding", action="store_true",
                               help="Fold each repo's log in a <details> block")
    changelog_cmd.add_argument("--output", "-o", default=None, help="Write here instead of stdout")

    return parser


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def make_tracker(context: RunContext) -> GitHubTracker:
    return GitHubTracker(context)


def parse_variables(pairs: list[str]) -> dict[str, str]:
    variables = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key.strip():
            raise ConfigError(f"Expected KEY=VALUE for --var, got '{pair}'")
        variables[key.strip()] = value
    return variables


def read_note(value: str | None) -> str:
    """Contents of a pre/post note file; anything else is used as literal text."""
    if not value:
        return ""
    path = Path(value)
    if path.is_file():
        try:
            return path.read_text(encoding="utf-8")
        except OSError as exc:
            raise ConfigError(f"Cannot read note file {path}: {exc.strerror or exc}") from exc
    logger.warning("note_file_not_found", path=value)
    return value


def load_snapshot(path: str | Path) -> ReleaseNote:
    file_path = Path(path)
    if not file_path.is_file():
        raise ConfigError(f"Snapshot not found: {file_path}")
    try:
        return ReleaseNote.model_validate_json(file_path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise ConfigError(f"Cannot read snapshot {file_path}: {exc.strerror or exc}") from exc
    except ValidationError as exc:
        raise ConfigError(f"Invalid snapshot {file_path}: {exc}") from exc


def write_atomic(path: str | Path, text: str) -> Path:
    """Write text so readers see either the old file or the complete new one.

    Raises:
        OutputError: The file or its directory cannot be written.
    """
    target = Path(path)
    try:
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(dir=target.parent, prefix=f".{target.name}.", suffix=".tmp")
    except OSError as exc:
        raise OutputError(f"Cannot write {target}: {exc.strerror or exc}") from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(text)
        os.replace(tmp, target)
    except OSError as exc:
        Path(tmp).unlink(missing_ok=True)
        raise OutputError(f"Cannot write {target}: {exc.strerror or exc}") from exc
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise
    return target


def emit(text: str, output: str | None) -> None:
    """Write to the output file, or to stdout when there is none."""
    if output:
        write_atomic(output, text)
        logger.info("output_written", path=output)
    else:
        sys.stdout.write(text)


def report_issues(issues) -> None:
    if not issues:
        return
    print(f"warning: {len(issues)} item(s) need manual triage:", file=sys.stderr)
    for issue in issues:
        print(f"  - {issue}", file=sys.stderr)


def report_diff(previous: ReleaseNote, current: ReleaseNote, stream) -> None:
    section_diffs = diff(previous, current)
    if not has_changes(section_diffs):
        logger.info("no_changes", previous=previous.version, current=current.version)
    stream.write(format_diff(section_diffs))
    for item in carried_over(section_diffs):
        logger.warning("known_issue_carried_over", item=item.id, title=item.title)


# ---------------------------------------------------------------------------
# Commands
# ---------------------------------------------------------------------------


def cmd_generate(args: argparse.Namespace) -> int:
    config = load_config(args.config)
    template = load_template(args.template)
    variables = parse_variables(args.variables)
    pre_note = read_note(args.pre_note)
    post_note = read_note(args.post_note)
    previous = load_snapshot(args.previous) if args.previous else None
    skip_ids = run_filter_hook(args.filter_issue_hook) if args.filter_issue_hook else []

    try:
        request = BuildRequest(
            repo=args.repo,
            version=args.release_version,
            milestone=args.milestone,
            labels=args.labels,
            exclude_labels=args.exclude_labels,
            since_days=args.since_days,
            min_kubernetes_version=args.min_kubernetes_version,
            upgrade_from=args.upgrade_from,
            not_applicable=args.not_applicable,
            extra_contributors=args.contributors,
            include_pull_requests=args.include_pull_requests,
            skip_ids=skip_ids,
        )
    except ValidationError as exc:
        raise ConfigError(f"Invalid arguments: {exc}") from exc

    context = RunContext.from_env(config, args.github_token)
    builder = ReleaseNoteBuilder(make_tracker(context), config)
    result = asyncio.run(builder.build(request))
    report_issues(result.issues)

    renderer = Renderer(template, variables)
    markdown = renderer.render(result.note, pre_note=pre_note, post_note=post_note)

    if previous is not None:
        report_diff(previous, result.note, sys.stderr)

    if args.dry_run:
        sys.stdout.write(markdown)
        return 0

    emit(markdown, args.output)
    if args.snapshot:
        write_atomic(args.snapshot, result.note.model_dump_json(indent=2) + "\n")
        logger.info("snapshot_written", path=args.snapshot)

    if args.publish:
        title = args.title or f"{renderer.context_for(result.note)['project']} {request.version}"
        if args.output:
            publish_release(request.repo, request.version, Path(args.output), title,
                            args.branch, args.draft, args.prerelease, args.artifacts)
        else:
            with tempfile.TemporaryDirectory() as tmp:
                notes_path = write_atomic(Path(tmp) / "release-note.md", markdown)
                publish_release(request.repo, request.version, notes_path, title,
                                args.branch, args.draft, args.prerelease, args.artifacts)
    return 0


def cmd_diff(args: argparse.Namespace) -> int:
    report_diff(load_snapshot(args.previous), load_snapshot(args.current), sys.stdout)
    return 0


def cmd_changelog(args: argparse.Namespace) -> int:
    for repo in args.repos:
        if not re.match(REPO_PATTERN, repo):
            raise ConfigError(f"Expected owner/name for --repo, got '{repo}'")

    config = load_config(args.config)
    context = RunContext.from_env(config, args.github_token)
    changelogs = asyncio.run(
        build_changelogs(
            make_tracker(context),
            args.repos,
            args.branch,
            args.tag,
            previous_tag=args.prev_tag,
            since_days=args.since_days,
            public=args.public,
            concurrency=config.tracker.concurrency,
            timeout=config.tracker.timeout,
        )
    )
    emit(format_changelogs(changelogs, folding=args.markdown_folding), args.output)
    return 0


def main(argv: list[str] | None = None) -> int:
    """CLI entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(log_format=args.log_format, log_level=args.log_level)

    if args.command in (None, "help"):
        parser.print_help()
        return 0

    handlers = {"generate": cmd_generate, "diff": cmd_diff, "changelog": cmd_changelog}
    try:
        return handlers[args.command](args)
    except RenoteError as exc:
        logger.error("run_failed", error=str(exc), kind=type(exc).__name__)
        print(f"renote: error: {exc}", file=sys.stderr)
        return exc.exit_code


if __name__ == "__main__":
    sys.exit(main())
