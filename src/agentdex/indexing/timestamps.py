"""Per-range block timestamp cache."""

from __future__ import annotations

from datetime import UTC, datetime

from loguru import logger

from agentdex.core.interfaces import IChainProvider


def to_datetime(ts: int) -> datetime:
    return datetime.fromtimestamp(ts, tz=UTC)


class BlockTimestampCache:
    """Resolve block timestamps once per block number.

    A failed lookup is logged and cached as None; the caller stores the row
    without a timestamp and the startup backfill fills it later.
    """

    def __init__(self, provider: IChainProvider, chain_id: int) -> None:
        self._provider = provider
        self._chain_id = chain_id
        self._cache: dict[int, datetime | None] = {}

    def seed(self, block_number: int, ts: int | None) -> None:
        """Record a timestamp already known from the log payload."""
        if ts is not None:
            self._cache[block_number] = to_datetime(ts)

    async def get(self, block_number: int) -> datetime | None:
        if block_number in self._cache:
            return self._cache[block_number]
        try:
            value: datetime | None = to_datetime(await self._provider.get_block_timestamp(block_number))
        except Exception as e:
            logger.warning(
                f"[Indexer] chain {self._chain_id}: timestamp for block {block_number} unavailable: {e}"
            )
            value = None
        self._cache[block_number] = value
        return value

    def snapshot(self) -> dict[int, datetime | None]:
        return dict(self._cache)
