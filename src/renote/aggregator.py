"""Deduplication, supersession and ordering of classified items.

The same issue can come back from several queries (the milestone query and a
label query, say). The aggregator makes sure each tracker id shows up once in
the final note, drops items whose fix is subsumed by another item of the same
run, and orders every section reproducibly:

    closed_at ascending, ties by id ascending, open items last

Identical tracker state therefore always yields identical section contents,
which keeps rendered notes diffable across runs.
"""

from __future__ import annotations

from collections.abc import Collection, Iterable

from renote.logging_config import get_logger
from renote.schemas import REQUIRED_SECTIONS, ReleaseItem, Section

logger = get_logger(__name__)


def dedupe(items: Iterable[ReleaseItem]) -> list[ReleaseItem]:
    """Keep one item per tracker id, in first-seen order.

    A later fetch of the same id replaces the earlier one only when it
    differs (e.g. labels changed between queries).
    """
    by_id: dict[int, ReleaseItem] = {}
    for item in items:
        previous = by_id.get(item.id)
        if previous is None:
            by_id[item.id] = item
        elif previous != item:
            logger.debug("duplicate_replaced", item=item.id)
            by_id[item.id] = item
    return list(by_id.values())


def sort_key(item: ReleaseItem) -> tuple[int, float, int]:
    if item.closed_at is None:
        return (1, 0.0, item.id)
    return (0, item.closed_at.timestamp(), item.id)


def _chain_end(start: int, successors: dict[int, int], present: set[int]) -> int:
    """Follow superseded_by links from start to the item that is kept.

    A link only counts when its target is part of the run. In a cycle the
    lowest id of the cycle is kept.
    """
    path = [start]
    current = start
    while True:
        successor = successors.get(current)
        if successor is None or successor not in present:
            return current
        if successor in path:
            return min(path[path.index(successor):])
        path.append(successor)
        current = successor


def drop_superseded(
    items: Iterable[ReleaseItem], present_ids: Collection[int] | None = None
) -> list[ReleaseItem]:
    """Remove items whose fix is subsumed by another item of the same run.

    Chains (#3 superseded by #2, #2 superseded by #1) collapse onto their
    last item. Only that item is kept.

    Args:
        items: Candidate items
        present_ids: Ids rendered in this run. Defaults to the ids of `items`.
    """
    items = list(items)
    present = set(present_ids) if present_ids is not None else {i.id for i in items}
    present.update(i.id for i in items)
    successors = {i.id: i.superseded_by for i in items if i.superseded_by is not None}

    kept = []
    for item in items:
        end = _chain_end(item.id, successors, present)
        if end != item.id:
            logger.info("item_superseded", item=item.id, successor=end)
            continue
        kept.append(item)
    return kept


def aggregate(
    classified: Iterable[tuple[ReleaseItem, Section]],
    present_ids: Collection[int] | None = None,
) -> dict[Section, list[ReleaseItem]]:
    """Group classified items into ordered, duplicate-free sections.

    Args:
        classified: (item, section) pairs from the classifier
        present_ids: Ids that reach the note, for supersession checks

    Returns:
        A mapping with every section as a key (possibly empty), each list
        sorted by close time then id.
    """
    pairs = list(classified)
    section_of: dict[int, Section] = {}
    for item, section in pairs:
        section_of[item.id] = section

    items = dedupe(item for item, _ in pairs)
    if present_ids is None:
        present_ids = {item.id for item in items}
    items = drop_superseded(items, present_ids)

    sections: dict[Section, list[ReleaseItem]] = {s: [] for s in REQUIRED_SECTIONS}
    for item in items:
        sections[section_of[item.id]].append(item)
    for section_items in sections.values():
        section_items.sort(key=sort_key)

    logger.info(
        "aggregation_complete",
        **{section.value: len(section_items) for section, section_items in sections.items()},
    )
    return sections


def contributors(items: Iterable[ReleaseItem], extra: Iterable[str] = ()) -> list[str]:
    """Sorted, unique assignee logins plus any extra contributors."""
    logins = {login.lstrip("@") for login in extra if login.strip()}
    for item in items:
        logins.update(item.assignees)
    return sorted(logins, key=lambda login: (login.casefold(), login))
