"""Tests for the build orchestrator.

These run the whole pipeline (fetch -> classify -> aggregate -> render)
against a MockTracker, so they double as end-to-end scenarios.

Run with: pytest tests/test_engine.py -v
"""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from renote.config import RenoteConfig, load_config
from renote.engine import BuildRequest, ReleaseNoteBuilder
from renote.errors import AuthError
from renote.renderer import load_template, render
from renote.schemas import ReleaseItem, Section, TrackerQuery
from renote.tracker import MockTracker

NOW = datetime(2024, 2, 1, tzinfo=UTC)


def item(number: int, *labels: str, day: int = 1, **extra) -> ReleaseItem:
    return ReleaseItem(
        id=number,
        title=f"Item {number}",
        labels=frozenset(labels),
        closed_at=datetime(2024, 1, day, tzinfo=UTC),
        url=f"https://github.com/longhorn/longhorn/issues/{number}",
        **extra,
    )


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def config() -> RenoteConfig:
    return load_config()


@pytest.fixture
def request_() -> BuildRequest:
    return BuildRequest(
        repo="longhorn/longhorn",
        version="v1.6.0",
        milestone="v1.6.0",
        min_kubernetes_version="v1.21",
    )


def builder_for(tracker: MockTracker, config: RenoteConfig) -> ReleaseNoteBuilder:
    return ReleaseNoteBuilder(tracker, config, now=lambda: NOW)


# ---------------------------------------------------------------------------
# Query planning
# ---------------------------------------------------------------------------


class TestQueries:
    def test_milestone_plus_label_queries(self, config: RenoteConfig, request_: BuildRequest) -> None:
        request_.labels = ["backport/1.6", "require/doc"]
        request_.exclude_labels = ["wontfix", "area/ci"]
        queries = builder_for(MockTracker(), config).queries(request_)

        assert [q.milestone for q in queries] == ["v1.6.0", None, None]
        assert [q.labels for q in queries] == [[], ["backport/1.6"], ["require/doc"]]
        assert "area/ci" in queries[0].exclude_labels
        assert "invalid" in queries[0].exclude_labels

    def test_since_days(self, config: RenoteConfig, request_: BuildRequest) -> None:
        request_.since_days = 14
        query: TrackerQuery = builder_for(MockTracker(), config).queries(request_)[0]
        assert query.since == datetime(2024, 1, 18, tzinfo=UTC)


# ---------------------------------------------------------------------------
# Builds
# ---------------------------------------------------------------------------


class TestBuild:
    @pytest.mark.asyncio
    async def test_bug_deprecation_scenario(self, config: RenoteConfig, request_: BuildRequest) -> None:
        """bug, deprecation, bug superseded by an item outside the run."""
        tracker = MockTracker(
            {
                "v1.6.0": [
                    item(1, "kind/bug", day=3),
                    item(2, "kind/deprecation", day=2),
                    item(3, "kind/bug", day=1, superseded_by=99),
                ]
            }
        )
        result = await builder_for(tracker, config).build(request_)
        note = result.note

        assert [i.id for i in note.items_in(Section.RESOLVED_ISSUES)] == [3, 1]
        assert [i.id for i in note.items_in(Section.DEPRECATION)] == [2]
        assert note.items_in(Section.KNOWN_ISSUES) == []

        markdown = render(note, load_template())
        assert "## Known Issues\n\n## Resolved Issues" in markdown

    @pytest.mark.asyncio
    async def test_superseded_item_dropped_when_successor_fetched(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        tracker = MockTracker(
            {"v1.6.0": [item(1, "kind/bug"), item(2, "kind/bug", superseded_by=1)]}
        )
        note = (await builder_for(tracker, config).build(request_)).note
        assert [i.id for i in note.items_in(Section.RESOLVED_ISSUES)] == [1]

    @pytest.mark.asyncio
    async def test_items_from_several_queries_deduplicated(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        request_.labels = ["backport/1.6"]
        shared = item(5, "kind/bug", "backport/1.6")
        tracker = MockTracker(
            {
                "v1.6.0": [item(1, "kind/bug"), shared],
                "label:backport/1.6": [shared, item(6, "kind/bug", "backport/1.6")],
            }
        )
        note = (await builder_for(tracker, config).build(request_)).note
        ids = [i.id for items in note.sections.values() for i in items]
        assert sorted(ids) == [1, 5, 6]
        assert len(tracker.queries) == 2

    @pytest.mark.asyncio
    async def test_triage_does_not_abort(self, config: RenoteConfig, request_: BuildRequest) -> None:
        tracker = MockTracker({"v1.6.0": [item(1, "kind/bug"), item(2, "question")]})
        result = await builder_for(tracker, config).build(request_)

        assert [i.id for i in result.note.unclassified] == [2]
        assert len(result.issues) == 1
        assert [i.id for i in result.note.items_in(Section.RESOLVED_ISSUES)] == [1]

    @pytest.mark.asyncio
    async def test_contributors(self, config: RenoteConfig, request_: BuildRequest) -> None:
        request_.extra_contributors = ["release-bot"]
        tracker = MockTracker({"v1.6.0": [item(1, "kind/bug", assignees=("dev2", "dev1"))]})
        note = (await builder_for(tracker, config).build(request_)).note
        assert note.contributors == ["dev1", "dev2", "release-bot"]

    @pytest.mark.asyncio
    async def test_identical_state_renders_identically(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        items = [item(n, "kind/bug", day=n % 5 + 1) for n in range(1, 20)]
        first = await builder_for(MockTracker({"v1.6.0": items}), config).build(request_)
        second = await builder_for(
            MockTracker({"v1.6.0": list(reversed(items))}), config
        ).build(request_)

        template = load_template()
        assert render(first.note, template) == render(second.note, template)

    @pytest.mark.asyncio
    async def test_tracker_errors_propagate(self, config: RenoteConfig, request_: BuildRequest) -> None:
        class BrokenTracker:
            async def fetch(self, query: TrackerQuery) -> list[ReleaseItem]:
                raise AuthError("bad token")

        with pytest.raises(AuthError):
            await ReleaseNoteBuilder(BrokenTracker(), config).build(request_)

    @pytest.mark.asyncio
    async def test_successor_in_triage_keeps_predecessor(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        tracker = MockTracker(
            {"v1.6.0": [item(1, "question"), item(2, "kind/bug", superseded_by=1)]}
        )
        result = await builder_for(tracker, config).build(request_)

        assert [i.id for i in result.note.items_in(Section.RESOLVED_ISSUES)] == [2]
        assert [i.id for i in result.note.unclassified] == [1]


class TestFiltering:
    @pytest.mark.asyncio
    async def test_pull_requests_skipped_by_default(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        tracker = MockTracker(
            {"v1.6.0": [item(10, "kind/bug"), item(11, "kind/bug", is_pull_request=True)]}
        )
        note = (await builder_for(tracker, config).build(request_)).note
        assert [i.id for i in note.items_in(Section.RESOLVED_ISSUES)] == [10]

    @pytest.mark.asyncio
    async def test_pull_requests_included_when_configured(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        config.include_pull_requests = True
        tracker = MockTracker(
            {"v1.6.0": [item(10, "kind/bug"), item(11, "kind/bug", is_pull_request=True)]}
        )
        note = (await builder_for(tracker, config).build(request_)).note
        assert [i.id for i in note.items_in(Section.RESOLVED_ISSUES)] == [10, 11]

    @pytest.mark.asyncio
    async def test_request_overrides_pull_request_switch(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        request_.include_pull_requests = True
        tracker = MockTracker({"v1.6.0": [item(11, "kind/bug", is_pull_request=True)]})
        note = (await builder_for(tracker, config).build(request_)).note
        assert [i.id for i in note.items_in(Section.RESOLVED_ISSUES)] == [11]

    @pytest.mark.asyncio
    async def test_skip_ids_removed_before_classification(
        self, config: RenoteConfig, request_: BuildRequest
    ) -> None:
        request_.skip_ids = [2, 3]
        tracker = MockTracker(
            {"v1.6.0": [item(1, "kind/bug"), item(2, "kind/bug"), item(3, "question")]}
        )
        result = await builder_for(tracker, config).build(request_)

        assert [i.id for i in result.note.items_in(Section.RESOLVED_ISSUES)] == [1]
        assert result.issues == []
