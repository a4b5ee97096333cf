"""Bounded-concurrency fan-out over a fixed list of jobs."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_pool(
    items: Sequence[T],
    limit: int,
    worker: Callable[[T, int], Awaitable[R]],
) -> list[R]:
    """
    Apply ``worker(item, index)`` to every item with at most ``limit`` in flight.

    ``min(limit, len(items))`` runners share one cursor and claim the next
    unclaimed index until the list is exhausted. Results are stored by index,
    so ``result[i]`` always belongs to ``items[i]`` whatever the completion
    order.

    The first worker exception cancels the remaining runners and propagates.
    Callers that want partial results must catch inside ``worker``.
    """
    if limit < 1:
        raise ValueError(f"limit must be a positive integer, got {limit}")

    results: list[R | None] = [None] * len(items)
    if not items:
        return []

    cursor = iter(range(len(items)))

    async def runner() -> None:
        # next() on a shared iterator never suspends, so each claim is atomic.
        for idx in cursor:
            results[idx] = await worker(items[idx], idx)

    tasks = [asyncio.ensure_future(runner()) for _ in range(min(limit, len(items)))]
    try:
        await asyncio.gather(*tasks)
    except BaseException:
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    return results  # type: ignore[return-value]


__all__ = ["run_pool"]
