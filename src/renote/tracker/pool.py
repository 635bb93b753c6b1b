"""Bounded concurrent execution of independent tracker calls."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from functools import partial
from typing import TypeVar

from renote.errors import RunTimeout
from renote.logging_config import get_logger
from renote.schemas import ReleaseItem, TrackerQuery
from renote.tracker.github import TrackerProtocol

logger = get_logger(__name__)

T = TypeVar("T")


async def run_bounded(
    calls: Sequence[Callable[[], Awaitable[T]]],
    concurrency: int = 4,
    timeout: float | None = None,
) -> list[T]:
    """Run every call and return the results in call order.

    At most `concurrency` calls are in flight at once. Results are only
    returned once every call has finished; if any call fails, the others
    are cancelled and that failure propagates.

    Args:
        calls: Zero-argument coroutine functions
        concurrency: Size of the worker pool
        timeout: Deadline in seconds for all calls together

    Raises:
        RunTimeout: If the deadline passes first
        RenoteError: The first failure raised by a call
    """
    semaphore = asyncio.Semaphore(concurrency)

    async def run(call: Callable[[], Awaitable[T]]) -> T:
        async with semaphore:
            return await call()

    try:
        async with asyncio.timeout(timeout):
            async with asyncio.TaskGroup() as group:
                tasks = [group.create_task(run(call)) for call in calls]
    except TimeoutError as exc:
        raise RunTimeout(
            f"{len(calls)} tracker calls did not finish within {timeout}s"
        ) from exc
    except ExceptionGroup as group_error:
        raise group_error.exceptions[0]

    return [task.result() for task in tasks]


async def fetch_all(
    tracker: TrackerProtocol,
    queries: Sequence[TrackerQuery],
    concurrency: int = 4,
    timeout: float | None = None,
) -> list[ReleaseItem]:
    """Run every query and return all items, in query order. See run_bounded."""
    results = await run_bounded(
        [partial(tracker.fetch, query) for query in queries],
        concurrency=concurrency,
        timeout=timeout,
    )
    items = [item for result in results for item in result]
    logger.info("fetch_complete", queries=len(queries), items=len(items))
    return items
