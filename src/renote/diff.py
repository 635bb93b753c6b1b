"""Compare two release notes section by section.

The diff is informational only; neither note is modified. Its main use is
spotting known issues that are still listed release after release, which
usually means they need an owner.
"""

from __future__ import annotations

from renote.schemas import (
    REQUIRED_SECTIONS,
    DiffEntry,
    DiffStatus,
    ReleaseItem,
    ReleaseNote,
    Section,
    SectionDiff,
)

_MARKERS = {
    DiffStatus.ADDED: "+",
    DiffStatus.REMOVED: "-",
    DiffStatus.UNCHANGED: " ",
}


def diff(previous: ReleaseNote, current: ReleaseNote) -> list[SectionDiff]:
    """Diff two notes.

    Returns one SectionDiff per required section, in document order. Within
    a section, removed items come first (in their previous order), followed
    by the current items marked added or unchanged (in current order).
    Items are matched by tracker id.
    """
    result = []
    for section in REQUIRED_SECTIONS:
        before = previous.items_in(section)
        after = current.items_in(section)
        before_ids = {item.id for item in before}
        after_ids = {item.id for item in after}

        entries = [
            DiffEntry(status=DiffStatus.REMOVED, item=item)
            for item in before
            if item.id not in after_ids
        ]
        entries.extend(
            DiffEntry(
                status=DiffStatus.UNCHANGED if item.id in before_ids else DiffStatus.ADDED,
                item=item,
            )
            for item in after
        )
        result.append(SectionDiff(section=section, entries=entries))
    return result


def has_changes(section_diffs: list[SectionDiff]) -> bool:
    return any(
        entry.status != DiffStatus.UNCHANGED
        for section_diff in section_diffs
        for entry in section_diff.entries
    )


def carried_over(section_diffs: list[SectionDiff]) -> list[ReleaseItem]:
    """Known issues listed in both notes."""
    for section_diff in section_diffs:
        if section_diff.section == Section.KNOWN_ISSUES:
            return section_diff.with_status(DiffStatus.UNCHANGED)
    return []


def format_diff(section_diffs: list[SectionDiff]) -> str:
    """Human-readable preview, one line per item."""
    lines = []
    for section_diff in section_diffs:
        lines.append(f"## {section_diff.section.heading}")
        if not section_diff.entries:
            lines.append("  (empty)")
        for entry in section_diff.entries:
            lines.append(f"{_MARKERS[entry.status]} #{entry.item.id} {entry.item.title}")
        lines.append("")
    return "\n".join(lines)
