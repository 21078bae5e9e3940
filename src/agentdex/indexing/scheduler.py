"""Batch scheduling: bounded block ranges and ordered, contiguous application.

All ranges are inclusive on both ends: [start, end].
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Generator
from dataclasses import dataclass, field
from itertools import islice

from loguru import logger

from agentdex.core.interfaces import IChainProvider, IProviderFactory
from agentdex.core.models import BatchStats


def iter_chunks(a: int, b: int, step: int) -> Generator[tuple[int, int], None, None]:
    """Yield inclusive [start, end] block ranges of size at most `step`."""
    x = a
    while x <= b:
        y = min(b, x + step - 1)
        yield (x, y)
        x = y + 1


def build_ranges(last_indexed: int, tip: int, batch_size: int, max_batches: int) -> list[tuple[int, int]]:
    """Ordered, gapless ranges starting at `last_indexed + 1`, at most `max_batches` of them."""
    if last_indexed >= tip:
        return []
    return list(islice(iter_chunks(last_indexed + 1, tip, batch_size), max_batches))


# fetch(provider, start, end) -> fetched payload; apply(fetched) -> stats
FetchFn = Callable[[IChainProvider, int, int], Awaitable[object]]
ApplyFn = Callable[[object], Awaitable[BatchStats]]


@dataclass(kw_only=True)
class ScheduleResult:
    """Outcome of one contract's ranges for one cycle."""

    last_applied: int | None = None
    stats: BatchStats = field(default_factory=BatchStats)


async def run_ranges(
    ranges: list[tuple[int, int]],
    *,
    fetch: FetchFn,
    apply: ApplyFn,
    shared_provider: IChainProvider,
    factory: IProviderFactory,
    label: str = "",
) -> ScheduleResult:
    """
    Fetch `ranges` (concurrently when there is more than one) and apply them in order.

    - A single range runs inline on `shared_provider`.
    - Several ranges are fetched concurrently, each on its own provider
      borrowed from `factory`.
    - Ranges are applied strictly in order. The first failed fetch or apply
      stops the cycle; ranges after it are cancelled and never applied.

    Returns the end of the highest contiguous applied range (None if none).
    """
    result = ScheduleResult()
    if not ranges:
        return result

    if len(ranges) == 1:
        a, b = ranges[0]
        try:
            fetched = await fetch(shared_provider, a, b)
            result.stats.merge(await apply(fetched))
        except Exception as e:
            result.stats.ranges_failed += 1
            logger.error(f"[Indexer] {label} range {a}-{b} failed: {e!r}")
            return result
        result.stats.ranges_applied += 1
        result.last_applied = b
        return result

    async def _fetch_fresh(a: int, b: int) -> object:
        async with factory.session() as provider:
            return await fetch(provider, a, b)

    tasks = [asyncio.create_task(_fetch_fresh(a, b)) for a, b in ranges]
    try:
        for (a, b), task in zip(ranges, tasks):
            try:
                fetched = await task
                result.stats.merge(await apply(fetched))
            except Exception as e:
                result.stats.ranges_failed += 1
                logger.error(
                    f"[Indexer] {label} range {a}-{b} failed, holding cursor at {result.last_applied}: {e!r}"
                )
                break
            result.stats.ranges_applied += 1
            result.last_applied = b
    finally:
        for task in tasks:
            if not task.done():
                task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
    return result
