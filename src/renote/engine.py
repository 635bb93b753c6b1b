"""Orchestrates a release-note build.

The builder follows this flow:
1. Turn the request into tracker queries (the milestone, plus one query per
   extra label for items tracked outside the milestone)
2. Fetch all queries concurrently
3. Deduplicate, skip pull requests and filtered ids, then classify every
   item by label
4. Aggregate into ordered sections, dropping superseded items
5. Assemble the ReleaseNote

Rendering is left to the caller so the same note can be rendered, diffed
and snapshotted.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

from pydantic import BaseModel, Field

from renote.aggregator import aggregate, contributors, dedupe
from renote.classifier import Classifier
from renote.config import RenoteConfig
from renote.errors import ClassificationError
from renote.logging_config import get_logger
from renote.schemas import REPO_PATTERN, ReleaseItem, ReleaseNote, Section, TrackerQuery
from renote.tracker import TrackerProtocol, fetch_all

logger = get_logger(__name__)


class BuildRequest(BaseModel):
    """What to build a release note for.

    Attributes:
        repo: Repository in "owner/name" format
        version: Release version or tag
        milestone: Milestone title holding the release's items
        labels: Extra labels; each adds a query outside the milestone
        exclude_labels: Items with any of these labels are dropped
        since_days: Ignore items closed more than this many days ago
        min_kubernetes_version: Minimum supported cluster version
        upgrade_from: Versions an upgrade is supported from
        not_applicable: Sections to mark "N/A" when empty
        extra_contributors: Logins credited besides the assignees
        include_pull_requests: Overrides the config switch when set
        skip_ids: Items to leave out (from --filter-issue-hook)
    """

    repo: str = Field(..., pattern=REPO_PATTERN)
    version: str = Field(..., min_length=1)
    milestone: str = Field(..., min_length=1)
    labels: list[str] = Field(default_factory=list)
    exclude_labels: list[str] = Field(default_factory=list)
    since_days: int | None = Field(None, ge=1)
    min_kubernetes_version: str | None = None
    upgrade_from: list[str] = Field(default_factory=list)
    not_applicable: list[Section] = Field(default_factory=list)
    extra_contributors: list[str] = Field(default_factory=list)
    include_pull_requests: bool | None = None
    skip_ids: list[int] = Field(default_factory=list)


@dataclass
class BuildResult:
    note: ReleaseNote
    issues: list[ClassificationError] = field(default_factory=list)


class ReleaseNoteBuilder:
    """Builds ReleaseNotes from a tracker.

    Usage:
        builder = ReleaseNoteBuilder(GitHubTracker(context), config)
        result = await builder.build(BuildRequest(repo=..., version=..., milestone=...))
    """

    def __init__(
        self,
        tracker: TrackerProtocol,
        config: RenoteConfig,
        now: Callable[[], datetime] = lambda: datetime.now(UTC),
    ) -> None:
        self.tracker = tracker
        self.config = config
        self.classifier = Classifier(config.classification)
        self._now = now

    def queries(self, request: BuildRequest) -> list[TrackerQuery]:
        exclude = sorted(set(self.config.exclude_labels) | set(request.exclude_labels))
        since_days = request.since_days or self.config.since_days
        since = self._now() - timedelta(days=since_days) if since_days else None
        common = {
            "repo": request.repo,
            "exclude_labels": exclude,
            "since": since,
            "page_size": self.config.tracker.page_size,
        }

        queries = [TrackerQuery(milestone=request.milestone, **common)]
        for label in request.labels:
            queries.append(TrackerQuery(labels=[label], **common))
        return queries

    def _filter(self, items: list[ReleaseItem], request: BuildRequest) -> list[ReleaseItem]:
        include_prs = request.include_pull_requests
        if include_prs is None:
            include_prs = self.config.include_pull_requests
        skip = set(request.skip_ids)

        kept = []
        for item in items:
            if item.is_pull_request and not include_prs:
                logger.debug("pull_request_skipped", item=item.id)
                continue
            if item.id in skip:
                logger.info("item_filtered", item=item.id)
                continue
            kept.append(item)
        return kept

    async def build(self, request: BuildRequest) -> BuildResult:
        """Fetch, classify and aggregate the items of one release.

        Raises:
            AuthError, FetchExhausted, TrackerError: From the tracker
        """
        logger.info(
            "build_started",
            repo=request.repo,
            version=request.version,
            milestone=request.milestone,
            labels=request.labels,
        )
        try:
            items = await fetch_all(
                self.tracker,
                self.queries(request),
                concurrency=self.config.tracker.concurrency,
                timeout=self.config.tracker.timeout,
            )
        except Exception as e:
            logger.error("build_failed", repo=request.repo, error=str(e))
            raise

        items = self._filter(dedupe(items), request)
        classification = self.classifier.classify_all(items)
        sections = aggregate(
            classification.classified,
            present_ids={item.id for item, _ in classification.classified},
        )
        included = [item for section_items in sections.values() for item in section_items]

        note = ReleaseNote(
            version=request.version,
            repo=request.repo,
            milestone=request.milestone,
            min_kubernetes_version=request.min_kubernetes_version,
            upgrade_from=request.upgrade_from,
            sections=sections,
            not_applicable=request.not_applicable,
            contributors=contributors(included, request.extra_contributors),
            unclassified=classification.triage_items,
        )

        logger.info(
            "build_complete",
            repo=request.repo,
            version=request.version,
            items=len(included),
            triage=len(classification.issues),
        )
        return BuildResult(note=note, issues=classification.issues)
