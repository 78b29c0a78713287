"""Bounded fan-out for per-file remote and storage calls."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, TypeVar

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Sequence

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    max_workers: int,
) -> list[R]:
    """Run ``worker`` over ``items`` with at most ``max_workers`` in flight.

    Results keep the order of ``items``. The worker is expected to turn
    per-item failures into values; an exception escaping it propagates and
    cancels the remaining calls.
    """
    if max_workers < 1:
        msg = "max_workers must be at least 1"
        raise ValueError(msg)

    if max_workers == 1:
        return [await worker(item) for item in items]

    semaphore = asyncio.Semaphore(max_workers)

    async def _guarded(item: T) -> R:
        async with semaphore:
            return await worker(item)

    try:
        async with asyncio.TaskGroup() as tg:
            tasks = [tg.create_task(_guarded(item)) for item in items]
    except ExceptionGroup as group:
        # Callers expect the worker's exception type, not the group.
        raise group.exceptions[0] from group
    return [task.result() for task in tasks]
