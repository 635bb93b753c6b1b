"""Commit changelogs between two tags, for one or more repositories.

For each repo the flow is:
1. Pick the previous tag: --prev-tag, or the release published before the
   tag (skipping pre-releases with --public)
2. Resolve both tags to commits
3. List the branch's commits since the previous tag's commit date and keep
   the ones from the tag back to, but excluding, the previous tag

Repos are processed concurrently; output keeps the order they were given in.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta
from functools import partial
from typing import Any, Protocol

from renote.errors import TrackerError
from renote.logging_config import get_logger
from renote.schemas import Commit, RepoChangelog
from renote.tracker.pool import run_bounded

logger = get_logger(__name__)

DEFAULT_SINCE_DAYS = 14


class CommitSource(Protocol):
    """The part of the GitHub client a changelog needs."""

    async def get_commit(self, repo: str, ref: str) -> Commit: ...

    async def list_commits(
        self, repo: str, branch: str, since: datetime | None = None
    ) -> list[Commit]: ...

    async def list_releases(self, repo: str) -> list[dict[str, Any]]: ...


def _is_prerelease(release: dict[str, Any]) -> bool:
    return bool(release.get("prerelease")) or "-" in release["tag_name"].lstrip("v")


def find_previous_tag(releases: Sequence[dict[str, Any]], tag: str, public: bool = False) -> str:
    """The tag released before `tag`, newest releases first.

    When `tag` has no release yet, the newest release counts as the previous
    one. With `public`, pre-releases are skipped.

    Raises:
        TrackerError: No earlier release exists
    """
    ordered = sorted(
        (r for r in releases if not r.get("draft")),
        key=lambda r: r.get("created_at") or "",
        reverse=True,
    )
    tags = [r["tag_name"] for r in ordered]
    candidates = ordered[tags.index(tag) + 1:] if tag in tags else ordered

    for release in candidates:
        if public and _is_prerelease(release):
            continue
        return release["tag_name"]
    raise TrackerError(f"No release found before {tag}")


def commits_between(commits: Sequence[Commit], tag_sha: str, previous_sha: str) -> list[Commit]:
    """Commits from tag_sha back to previous_sha (exclusive), newest first.

    `commits` is a branch listing, newest first. Commits newer than the tag
    are skipped; an empty list means the tag is not on the branch.
    """
    result: list[Commit] = []
    tag_found = False
    for commit in commits:
        if not tag_found:
            if commit.sha != tag_sha:
                continue
            tag_found = True
        if commit.sha == previous_sha:
            break
        result.append(commit)
    return result


async def repo_changelog(
    source: CommitSource,
    repo: str,
    branch: str,
    tag: str,
    previous_tag: str | None = None,
    since_days: int = DEFAULT_SINCE_DAYS,
    public: bool = False,
    now: Callable[[], datetime] = lambda: datetime.now(UTC),
) -> RepoChangelog:
    """Build the changelog of one repo.

    Raises:
        TrackerError: A tag does not exist, or no previous release is found
    """
    if not previous_tag:
        previous_tag = find_previous_tag(await source.list_releases(repo), tag, public)

    tag_commit = await source.get_commit(repo, tag)
    previous_commit = await source.get_commit(repo, previous_tag)
    since = previous_commit.committed_at or now() - timedelta(days=since_days)

    commits = commits_between(
        await source.list_commits(repo, branch, since), tag_commit.sha, previous_commit.sha
    )
    if not commits:
        logger.warning("changelog_empty", repo=repo, tag=tag, previous_tag=previous_tag)

    logger.info(
        "changelog_built",
        repo=repo,
        tag=tag,
        previous_tag=previous_tag,
        commits=len(commits),
    )
    return RepoChangelog(repo=repo, tag=tag, previous_tag=previous_tag, commits=commits)


async def build_changelogs(
    source: CommitSource,
    repos: Sequence[str],
    branch: str,
    tag: str,
    previous_tag: str | None = None,
    since_days: int = DEFAULT_SINCE_DAYS,
    public: bool = False,
    concurrency: int = 4,
    timeout: float | None = None,
) -> list[RepoChangelog]:
    """Changelogs of several repos, fetched concurrently, in `repos` order."""
    calls = [
        partial(
            repo_changelog,
            source,
            repo,
            branch,
            tag,
            previous_tag=previous_tag,
            since_days=since_days,
            public=public,
        )
        for repo in repos
    ]
    return await run_bounded(calls, concurrency=concurrency, timeout=timeout)


def format_commit(commit: Commit) -> str:
    line = f"- {commit.summary} [{commit.sha[:8]}]({commit.url})"
    if commit.author:
        line += f" by @{commit.author}"
    return line


def format_changelogs(changelogs: Sequence[RepoChangelog], folding: bool = False) -> str:
    """Markdown, one block per repo: a heading, or a <details> fold with `folding`."""
    blocks = []
    for changelog in changelogs:
        lines = "\n".join(format_commit(commit) for commit in changelog.commits)
        if folding:
            blocks.append(
                f"<details>\n<summary>{changelog.repo}</summary>\n\n{lines}\n</details>\n"
            )
        else:
            blocks.append(f"### {changelog.repo}\n{lines}\n")
    return "\n".join(blocks)
