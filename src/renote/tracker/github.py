"""GitHub issues client for collecting release items.

This module fetches the issues and pull requests of a release from GitHub's
REST API and turns them into ReleaseItems. It handles:
- Milestone title -> number resolution
- Pagination, following the Link header until there is no next page
- Retries with exponential backoff for transient failures (tenacity)
- Rate limits: when GitHub says when the limit resets, sleep until then,
  and hold the next request once the remaining quota reaches zero

Design notes:
- Uses httpx for async HTTP requests; tests swap in httpx.MockTransport
- Run state (token, sleep, clock, rate-limit counters) comes from RunContext
- A Protocol keeps the engine independent of the concrete client

GitHub API docs: https://docs.github.com/en/rest/issues/issues
"""

from __future__ import annotations

import re
from datetime import UTC, datetime
from email.utils import parsedate_to_datetime
from typing import Any, Protocol

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    RetryError,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from renote.errors import (
    AuthError,
    FetchExhausted,
    RateLimitError,
    TrackerError,
    TransientError,
)
from renote.logging_config import get_logger
from renote.runtime import RunContext
from renote.schemas import Commit, ReleaseItem, TrackerQuery

logger = get_logger(__name__)

SUPERSEDED_BY_RE = re.compile(r"superseded[\s-]+by:?\s*#(\d+)", re.IGNORECASE)

# ---------------------------------------------------------------------------
# Protocol (Interface)
# ---------------------------------------------------------------------------


class TrackerProtocol(Protocol):
    """Interface for anything that can answer a TrackerQuery."""

    async def fetch(self, query: TrackerQuery) -> list[ReleaseItem]:
        """Fetch every item matching the query, across all pages.

        Raises:
            AuthError: If the credential is missing or rejected
            FetchExhausted: If transient failures outlast the retry budget
        """
        ...


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def parse_superseded_by(body: str | None) -> int | None:
    """Extract the successor number from a "Superseded by #123" line."""
    if not body:
        return None
    match = SUPERSEDED_BY_RE.search(body)
    return int(match.group(1)) if match else None


def item_from_issue(raw: dict[str, Any]) -> ReleaseItem:
    """Convert a GitHub issue payload into a ReleaseItem."""
    labels = frozenset(
        label["name"] if isinstance(label, dict) else str(label)
        for label in raw.get("labels") or []
    )
    return ReleaseItem(
        id=raw["number"],
        title=raw["title"],
        labels=labels,
        closed_at=raw.get("closed_at"),
        is_pull_request="pull_request" in raw,
        superseded_by=parse_superseded_by(raw.get("body")),
        url=raw.get("html_url", ""),
        assignees=tuple(a["login"] for a in raw.get("assignees") or []),
        state=raw.get("state", "closed"),
    )


def commit_from_payload(raw: dict[str, Any]) -> Commit:
    """Convert a GitHub commit payload into a Commit."""
    commit = raw.get("commit") or {}
    committer = commit.get("committer") or commit.get("author") or {}
    return Commit(
        sha=raw["sha"],
        message=commit.get("message", ""),
        url=raw.get("html_url", ""),
        author=(raw.get("author") or {}).get("login"),
        committed_at=committer.get("date"),
    )


def matches_query(item: ReleaseItem, query: TrackerQuery) -> bool:
    """Client-side filters GitHub cannot apply: excluded labels and close date."""
    if item.labels.intersection(query.exclude_labels):
        return False
    if query.since and item.closed_at and item.closed_at < query.since:
        return False
    return True


# ---------------------------------------------------------------------------
# Concrete Implementation
# ---------------------------------------------------------------------------


class GitHubTracker:
    """GitHub REST client using httpx.

    Usage:
        tracker = GitHubTracker(RunContext.from_env(config))
        items = await tracker.fetch(TrackerQuery(repo="longhorn/longhorn",
                                                 milestone="v1.6.0"))
    """

    def __init__(
        self,
        context: RunContext,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        """Initialize the GitHub tracker.

        Args:
            context: Per-run context carrying the token and settings
            transport: Optional httpx transport (tests use MockTransport)
        """
        if not context.token:
            raise AuthError("A GitHub token is required")

        self._context = context
        self._settings = context.config.tracker
        self._transport = transport
        self._headers: dict[str, str] = {
            "Accept": "application/vnd.github.v3+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "Authorization": f"Bearer {context.token}",
        }
        self._milestones: dict[tuple[str, str], int] = {}
        self._backoff = wait_exponential(
            multiplier=self._settings.backoff_min,
            min=self._settings.backoff_min,
            max=self._settings.backoff_max,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self._settings.base_url,
            headers=self._headers,
            timeout=self._settings.request_timeout,
            transport=self._transport,
        )

    async def fetch(self, query: TrackerQuery) -> list[ReleaseItem]:
        """Fetch all issues and PRs matching the query.

        Makes these API calls:
        1. GET /repos/{repo}/milestones - only when the query names a milestone
        2. GET /repos/{repo}/issues - once per page

        Args:
            query: What to search for

        Returns:
            Matching items in tracker order

        Raises:
            AuthError: Invalid credential (never retried)
            TrackerError: Unknown milestone or unexpected response
            FetchExhausted: Transient failures outlasted max_attempts
        """
        async with self._client() as client:
            params: dict[str, Any] = {
                "state": query.state,
                "per_page": query.page_size,
                "sort": "created",
                "direction": "asc",
            }
            if query.milestone:
                params["milestone"] = await self._milestone_number(
                    client, query.repo, query.milestone
                )
            if query.labels:
                params["labels"] = ",".join(query.labels)
            if query.since:
                params["since"] = query.since.strftime("%Y-%m-%dT%H:%M:%SZ")

            raw_items = await self._paginate(
                client, f"/repos/{query.repo}/issues", params, query.page
            )

        items = [item_from_issue(raw) for raw in raw_items]
        kept = [item for item in items if matches_query(item, query)]
        logger.info(
            "query_fetched",
            repo=query.repo,
            milestone=query.milestone,
            labels=query.labels,
            fetched=len(items),
            kept=len(kept),
        )
        return kept

    async def get_commit(self, repo: str, ref: str) -> Commit:
        """Resolve a tag, branch or sha to its commit.

        Raises:
            TrackerError: The ref does not exist (404)
        """
        async with self._client() as client:
            resp = await self._get(client, f"/repos/{repo}/commits/{ref}", {})
        return commit_from_payload(resp.json())

    async def list_commits(
        self, repo: str, branch: str, since: datetime | None = None
    ) -> list[Commit]:
        """Commits reachable from branch, newest first, optionally since a time."""
        params: dict[str, Any] = {"sha": branch, "per_page": self._settings.page_size}
        if since:
            params["since"] = since.strftime("%Y-%m-%dT%H:%M:%SZ")

        async with self._client() as client:
            raw_commits = await self._paginate(client, f"/repos/{repo}/commits", params)

        commits = [commit_from_payload(raw) for raw in raw_commits]
        logger.info("commits_fetched", repo=repo, branch=branch, commits=len(commits))
        return commits

    async def list_releases(self, repo: str) -> list[dict[str, Any]]:
        """Raw release payloads of a repo (tag_name, prerelease, created_at, ...)."""
        async with self._client() as client:
            return await self._paginate(
                client,
                f"/repos/{repo}/releases",
                {"per_page": self._settings.page_size},
            )

    async def _milestone_number(
        self, client: httpx.AsyncClient, repo: str, title: str
    ) -> int:
        key = (repo, title)
        if key not in self._milestones:
            milestones = await self._paginate(
                client,
                f"/repos/{repo}/milestones",
                {"state": "all", "per_page": self._settings.page_size},
            )
            for milestone in milestones:
                self._milestones[(repo, milestone["title"])] = milestone["number"]

        if key not in self._milestones:
            raise TrackerError(f"Milestone '{title}' not found in {repo}")
        return self._milestones[key]

    async def _paginate(
        self,
        client: httpx.AsyncClient,
        url: str,
        params: dict[str, Any],
        first_page: int = 1,
    ) -> list[dict]:
        """Collect every page of a list endpoint.

        GitHub returns a 'Link' header with a rel="next" URL while more
        pages exist; the page number is the cursor.
        """
        all_items: list[dict] = []
        page = first_page

        while True:
            resp = await self._get(client, url, {**params, "page": page})
            all_items.extend(resp.json())
            if self._parse_next_link(resp.headers.get("link", "")) is None:
                break
            page += 1

        return all_items

    async def _get(
        self, client: httpx.AsyncClient, url: str, params: dict[str, Any]
    ) -> httpx.Response:
        """GET with retries. Only TransientError is retried."""
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._settings.max_attempts),
            wait=self._wait,
            retry=retry_if_exception_type(TransientError),
            sleep=self._context.sleep,
            before_sleep=self._log_retry,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    return await self._send(client, url, params)
        except RetryError as exc:
            last = exc.last_attempt.exception()
            raise FetchExhausted(
                f"GET {url} failed after {self._settings.max_attempts} "
                f"attempts: {last}"
            ) from last
        raise FetchExhausted(f"GET {url} made no attempts")

    async def _send(
        self, client: httpx.AsyncClient, url: str, params: dict[str, Any]
    ) -> httpx.Response:
        delay = self._context.rate_limit.pending_wait(self._context.clock())
        if delay > 0:
            logger.warning("rate_limit_exhausted", url=url, wait=delay)
            self._context.rate_limit.waits += 1
            await self._context.sleep(delay)

        try:
            resp = await client.get(url, params=params)
        except httpx.TransportError as exc:
            raise TransientError(f"GET {url}: {exc}") from exc

        self._context.rate_limit.update(resp.headers)
        self._raise_for_status(resp)
        return resp

    def _raise_for_status(self, resp: httpx.Response) -> None:
        status = resp.status_code
        if status < 400:
            return

        path = resp.request.url.path
        if status == 401:
            raise AuthError("GitHub rejected the token (401). Check GITHUB_TOKEN.")

        if status in (403, 429):
            retry_after = self._retry_after(resp)
            if retry_after is not None:
                raise RateLimitError(
                    f"Rate limited on {path}, resets in {retry_after:.0f}s",
                    retry_after=retry_after,
                )
            if status == 403:
                raise AuthError(
                    f"GitHub refused access to {path} (403). Check the token scopes."
                )
            raise TransientError(f"Too many requests on {path} (429)")

        if status >= 500:
            raise TransientError(f"GitHub returned {status} for {path}")
        if status == 404:
            raise TrackerError(f"{path} not found (404)")
        raise TrackerError(f"GitHub returned {status} for {path}: {resp.text[:200]}")

    def _retry_after(self, resp: httpx.Response) -> float | None:
        """Seconds until the rate limit resets, if GitHub told us."""
        retry_after = resp.headers.get("retry-after", "").strip()
        if retry_after.isdigit():
            return float(retry_after)
        if retry_after:
            try:
                when = parsedate_to_datetime(retry_after)
            except (TypeError, ValueError):
                when = None
            if when is not None:
                if when.tzinfo is None:
                    when = when.replace(tzinfo=UTC)
                return max(0.0, when.timestamp() - self._context.clock())

        remaining = resp.headers.get("x-ratelimit-remaining", "").strip()
        reset = resp.headers.get("x-ratelimit-reset", "").strip()
        if remaining == "0" and reset.isdigit():
            return max(0.0, float(reset) - self._context.clock())
        return None

    def _wait(self, retry_state: RetryCallState) -> float:
        """Sleep until the reset for rate limits, else back off exponentially."""
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        if isinstance(exc, RateLimitError):
            # This sleep covers the reset, so the next request must not wait again.
            self._context.rate_limit.remaining = None
            self._context.rate_limit.waits += 1
            return exc.retry_after
        return self._backoff(retry_state)

    def _log_retry(self, retry_state: RetryCallState) -> None:
        exc = retry_state.outcome.exception() if retry_state.outcome else None
        logger.warning(
            "tracker_retry",
            attempt=retry_state.attempt_number,
            wait=retry_state.next_action.sleep if retry_state.next_action else None,
            error=str(exc),
        )

    @staticmethod
    def _parse_next_link(link_header: str) -> str | None:
        """Extract the 'next' URL from a GitHub Link header."""
        if not link_header:
            return None
        for part in link_header.split(","):
            if 'rel="next"' in part:
                return part.split(";")[0].strip().strip("<>")
        return None


# ---------------------------------------------------------------------------
# Mock Implementation (for testing)
# ---------------------------------------------------------------------------


class MockTracker:
    """Tracker that answers from predefined items.

    Responses are keyed by milestone title for milestone queries and by
    "label:<name>" for label queries. Every query is recorded in `queries`.

    Usage:
        tracker = MockTracker({"v1.6.0": [item1, item2], "label:backport": [item3]})
        items = await tracker.fetch(TrackerQuery(repo="o/r", milestone="v1.6.0"))
    """

    def __init__(self, responses: dict[str, list[ReleaseItem]] | None = None) -> None:
        self._responses = responses or {}
        self.queries: list[TrackerQuery] = []

    async def fetch(self, query: TrackerQuery) -> list[ReleaseItem]:
        self.queries.append(query)
        if query.milestone:
            items = self._responses.get(query.milestone, [])
        else:
            items = []
            for label in query.labels:
                items.extend(self._responses.get(f"label:{label}", []))
        return [item for item in items if matches_query(item, query)]
