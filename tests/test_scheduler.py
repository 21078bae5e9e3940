from typing import Any
from unittest.mock import AsyncMock

import pytest

from agentdex.core.models import BatchStats
from agentdex.indexing.scheduler import build_ranges, iter_chunks, run_ranges

from conftest import FakeFactory


def test_iter_chunks_inclusive() -> None:
    assert list(iter_chunks(1, 25, 10)) == [(1, 10), (11, 20), (21, 25)]
    assert list(iter_chunks(5, 4, 10)) == []


def test_build_ranges_contiguous_from_cursor() -> None:
    assert build_ranges(99, 350, 100, 10) == [(100, 199), (200, 299), (300, 350)]


def test_build_ranges_capped_by_max_batches() -> None:
    ranges = build_ranges(0, 10_000, 100, 3)
    assert ranges == [(1, 100), (101, 200), (201, 300)]


def test_build_ranges_caught_up() -> None:
    assert build_ranges(500, 500, 100, 10) == []
    assert build_ranges(600, 500, 100, 10) == []


def _apply_recorder(applied: list[tuple[int, int]], fail_on: int | None = None) -> AsyncMock:
    async def _apply(fetched: tuple[int, int]) -> BatchStats:
        if fetched[0] == fail_on:
            raise RuntimeError("database is locked")
        applied.append(fetched)
        return BatchStats(total_logs=1, applied=1)

    return AsyncMock(side_effect=_apply)


@pytest.mark.asyncio
async def test_single_range_runs_inline(mock_rpc: Any) -> None:
    factory = FakeFactory(mock_rpc)
    fetch = AsyncMock(side_effect=lambda provider, a, b: (a, b))
    applied: list[tuple[int, int]] = []

    result = await run_ranges(
        [(1, 10)], fetch=fetch, apply=_apply_recorder(applied), shared_provider=mock_rpc, factory=factory
    )

    assert result.last_applied == 10
    assert applied == [(1, 10)]
    assert factory.borrowed == 0
    fetch.assert_awaited_once_with(mock_rpc, 1, 10)


@pytest.mark.asyncio
async def test_all_ranges_applied_in_order(mock_rpc: Any) -> None:
    factory = FakeFactory(mock_rpc)
    fetch = AsyncMock(side_effect=lambda provider, a, b: (a, b))
    applied: list[tuple[int, int]] = []
    ranges = [(1, 10), (11, 20), (21, 30)]

    result = await run_ranges(
        ranges, fetch=fetch, apply=_apply_recorder(applied), shared_provider=mock_rpc, factory=factory
    )

    assert result.last_applied == 30
    assert applied == ranges
    assert factory.borrowed == 3
    assert result.stats.ranges_applied == 3
    assert result.stats.applied == 3


@pytest.mark.asyncio
async def test_fetch_failure_stops_at_last_contiguous_range(mock_rpc: Any) -> None:
    async def fetch(provider: Any, a: int, b: int) -> tuple[int, int]:
        if a == 11:
            raise TimeoutError("eth_getLogs timed out")
        return (a, b)

    applied: list[tuple[int, int]] = []
    result = await run_ranges(
        [(1, 10), (11, 20), (21, 30)],
        fetch=fetch,
        apply=_apply_recorder(applied),
        shared_provider=mock_rpc,
        factory=FakeFactory(mock_rpc),
    )

    assert result.last_applied == 10
    # the range after the gap is never applied even though its fetch succeeded
    assert applied == [(1, 10)]
    assert result.stats.ranges_failed == 1


@pytest.mark.asyncio
async def test_apply_failure_stops_later_ranges(mock_rpc: Any) -> None:
    applied: list[tuple[int, int]] = []
    result = await run_ranges(
        [(1, 10), (11, 20), (21, 30)],
        fetch=AsyncMock(side_effect=lambda provider, a, b: (a, b)),
        apply=_apply_recorder(applied, fail_on=11),
        shared_provider=mock_rpc,
        factory=FakeFactory(mock_rpc),
    )

    assert result.last_applied == 10
    assert applied == [(1, 10)]


@pytest.mark.asyncio
async def test_first_range_failure_applies_nothing(mock_rpc: Any) -> None:
    applied: list[tuple[int, int]] = []
    result = await run_ranges(
        [(1, 10)],
        fetch=AsyncMock(side_effect=ConnectionError("refused")),
        apply=_apply_recorder(applied),
        shared_provider=mock_rpc,
        factory=FakeFactory(mock_rpc),
    )

    assert result.last_applied is None
    assert applied == []
    assert result.stats.ranges_failed == 1


@pytest.mark.asyncio
async def test_no_ranges(mock_rpc: Any) -> None:
    result = await run_ranges(
        [], fetch=AsyncMock(), apply=AsyncMock(), shared_provider=mock_rpc, factory=FakeFactory(mock_rpc)
    )
    assert result.last_applied is None
