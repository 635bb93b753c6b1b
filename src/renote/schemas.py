"""Pydantic models shared by every stage of a renote run.

These schemas are the contract between the tracker client, the classifier,
the aggregator, the renderer and the diff step:
- ReleaseItem: one issue or pull request as fetched from the tracker
- Section: the fixed, ordered subdivisions of a release note
- ReleaseNote: the aggregate that gets rendered (and optionally snapshotted)
- TrackerQuery: parameters of a single tracker search
- Commit, RepoChangelog: commit logs between two tags

Key design decisions:
- ReleaseItem is frozen; nothing downstream of the tracker mutates it
- Section order is the declaration order of the enum
- ReleaseNote serializes to JSON so a previous run can be diffed later
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field, field_serializer, model_validator


# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class Section(str, Enum):
    """Release-note section, declared in document order."""

    INSTALLATION = "installation"
    UPGRADE = "upgrade"
    DEPRECATION = "deprecation"
    KNOWN_ISSUES = "known_issues"
    RESOLVED_ISSUES = "resolved_issues"

    @property
    def heading(self) -> str:
        return _SECTION_HEADINGS[self]


_SECTION_HEADINGS = {
    Section.INSTALLATION: "Installation",
    Section.UPGRADE: "Upgrade",
    Section.DEPRECATION: "Deprecation & Incompatibilities",
    Section.KNOWN_ISSUES: "Known Issues",
    Section.RESOLVED_ISSUES: "Resolved Issues",
}

# Every rendered note contains each of these exactly once, in this order.
REQUIRED_SECTIONS: tuple[Section, ...] = tuple(Section)

REPO_PATTERN = r"^[^/\s]+/[^/\s]+$"


class DiffStatus(str, Enum):
    """How an item changed between two release notes."""

    ADDED = "added"
    REMOVED = "removed"
    UNCHANGED = "unchanged"


# ---------------------------------------------------------------------------
# Tracker data
# ---------------------------------------------------------------------------


class ReleaseItem(BaseModel):
    """A tracked issue or pull request resolved for a release.

    Attributes:
        id: Tracker-native number (e.g. the GitHub issue number)
        title: Issue or PR title
        labels: Label names attached to the item
        closed_at: Close/merge timestamp, None for open items
        is_pull_request: True when the item is a PR rather than an issue
        superseded_by: Number of the item whose fix subsumes this one
        url: Browser URL of the item
        assignees: Logins of the assignees
        state: "open" or "closed"
    """

    model_config = ConfigDict(frozen=True)

    id: int = Field(..., gt=0, description="Tracker-native item number")
    title: str = Field(..., min_length=1, description="Item title")
    labels: frozenset[str] = Field(default_factory=frozenset)
    closed_at: datetime | None = Field(None, description="Close/merge time")
    is_pull_request: bool = False
    superseded_by: int | None = Field(None, gt=0)
    url: str = ""
    assignees: tuple[str, ...] = ()
    state: str = "closed"

    @field_serializer("labels")
    def _serialize_labels(self, labels: frozenset[str]) -> list[str]:
        return sorted(labels)


class TrackerQuery(BaseModel):
    """Parameters for one paginated tracker search. Never persisted."""

    repo: str = Field(..., pattern=REPO_PATTERN, description="owner/name")
    milestone: str | None = None
    labels: list[str] = Field(default_factory=list)
    exclude_labels: list[str] = Field(default_factory=list)
    state: str = "all"
    since: datetime | None = None
    page_size: int = Field(100, ge=1, le=100)
    page: int = Field(1, ge=1)


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class ReleaseNote(BaseModel):
    """Everything needed to render one release note.

    Attributes:
        version: Release version or tag (e.g. "v1.6.0")
        repo: Repository the items were collected from
        milestone: Milestone the items were collected for
        min_kubernetes_version: Minimum supported cluster version
        upgrade_from: Versions an upgrade to this release is supported from
        sections: Ordered items per section
        not_applicable: Sections explicitly marked "N/A"
        contributors: Sorted contributor logins
        unclassified: Items left for manual triage
    """

    version: str = Field(..., min_length=1)
    repo: str = ""
    milestone: str = ""
    min_kubernetes_version: str | None = None
    upgrade_from: list[str] = Field(default_factory=list)
    sections: dict[Section, list[ReleaseItem]] = Field(default_factory=dict)
    not_applicable: list[Section] = Field(default_factory=list)
    contributors: list[str] = Field(default_factory=list)
    unclassified: list[ReleaseItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def check_unique_items(self) -> ReleaseNote:
        """An item may appear in at most one section, and only once."""
        seen: dict[int, Section] = {}
        for section, items in self.sections.items():
            for item in items:
                if item.id in seen:
                    raise ValueError(
                        f"Item #{item.id} appears in both "
                        f"{seen[item.id].value} and {section.value}"
                    )
                seen[item.id] = section
        return self

    def items_in(self, section: Section) -> list[ReleaseItem]:
        return self.sections.get(section, [])


class DiffEntry(BaseModel):
    """One item in a section diff."""

    status: DiffStatus
    item: ReleaseItem


class SectionDiff(BaseModel):
    """Diff of a single section between two release notes."""

    section: Section
    entries: list[DiffEntry] = Field(default_factory=list)

    def with_status(self, status: DiffStatus) -> list[ReleaseItem]:
        return [e.item for e in self.entries if e.status == status]


# ---------------------------------------------------------------------------
# Changelog
# ---------------------------------------------------------------------------


class Commit(BaseModel):
    """A commit as listed by the GitHub commits API.

    Attributes:
        sha: Full commit hash
        message: Full commit message
        url: Browser URL of the commit
        author: Login of the GitHub user, None when GitHub cannot map it
        committed_at: Committer timestamp
    """

    model_config = ConfigDict(frozen=True)

    sha: str = Field(..., min_length=7)
    message: str = ""
    url: str = ""
    author: str | None = None
    committed_at: datetime | None = None

    @property
    def summary(self) -> str:
        return self.message.splitlines()[0] if self.message else ""


class RepoChangelog(BaseModel):
    """Commits of one repository between two tags, newest first."""

    repo: str
    tag: str
    previous_tag: str
    commits: list[Commit] = Field(default_factory=list)
