"""Error taxonomy for renote.

Every error the CLI can surface derives from RenoteError and carries the
process exit code used when it aborts a run. Classification errors are the
exception: they are collected into a triage list and never abort.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from renote.schemas import ReleaseItem, Section


class RenoteError(Exception):
    """Base class for all renote errors."""

    exit_code = 1


class ConfigError(RenoteError):
    """Invalid or unreadable configuration, template or snapshot file."""

    exit_code = 2


# ---------------------------------------------------------------------------
# Tracker
# ---------------------------------------------------------------------------


class TrackerError(RenoteError):
    """Non-retryable tracker failure (unknown milestone, bad response)."""

    exit_code = 4


class AuthError(TrackerError):
    """Missing or rejected GitHub credential. Never retried."""

    exit_code = 3


class TransientError(TrackerError):
    """Network fault or server error that is worth retrying."""


class RateLimitError(TransientError):
    """The tracker asked us to wait before the next request.

    Attributes:
        retry_after: Seconds until the rate limit resets.
    """

    def __init__(self, message: str, retry_after: float) -> None:
        super().__init__(message)
        self.retry_after = retry_after


class FetchExhausted(TrackerError):
    """Retries ran out. The run fails instead of rendering a partial note."""


class RunTimeout(FetchExhausted):
    """The overall fetch deadline passed before all queries completed."""


# ---------------------------------------------------------------------------
# Classification (non-fatal)
# ---------------------------------------------------------------------------


class ClassificationError(RenoteError):
    """An item could not be placed into exactly one section."""

    def __init__(self, message: str, item: ReleaseItem) -> None:
        super().__init__(message)
        self.item = item


class AmbiguousLabelError(ClassificationError):
    """Labels with equal precedence point at different sections."""

    def __init__(self, item: ReleaseItem, sections: list[Section]) -> None:
        names = ", ".join(s.value for s in sections)
        super().__init__(
            f"#{item.id} matches sections with equal precedence: {names}", item
        )
        self.sections = sections


class UnclassifiedError(ClassificationError):
    """No label rule matched the item."""

    def __init__(self, item: ReleaseItem) -> None:
        labels = ", ".join(sorted(item.labels)) or "no labels"
        super().__init__(f"#{item.id} matches no section ({labels})", item)


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


class RenderError(RenoteError):
    """The release note would be structurally invalid."""

    exit_code = 5


class MissingSectionError(RenderError):
    """A required section has no content and is not marked N/A."""

    def __init__(self, section: Section) -> None:
        super().__init__(
            f"Section '{section.heading}' has no items, no boilerplate and is "
            "not marked N/A"
        )
        self.section = section


class TemplateError(RenderError):
    """Unresolved placeholder or invalid template syntax."""


# ---------------------------------------------------------------------------
# Publishing
# ---------------------------------------------------------------------------


class PublishError(RenoteError):
    """Creating the GitHub release failed."""

    exit_code = 6


class RuntimeDependencyError(PublishError):
    """A required external binary is not on PATH."""


# ---------------------------------------------------------------------------
# Output
# ---------------------------------------------------------------------------


class OutputError(RenoteError):
    """The note or snapshot could not be written."""

    exit_code = 7
