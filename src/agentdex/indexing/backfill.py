"""Startup reconciliation: block timestamp backfill and owner repair."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import BACKFILL_PROGRESS_EVERY
from agentdex.core.config import IndexerConfig
from agentdex.core.interfaces import IChainProvider
from agentdex.indexing.timestamps import to_datetime
from agentdex.storage.repositories import AgentRepository, TimestampRepository


@dataclass(kw_only=True)
class BackfillResult:
    blocks: int = 0
    filled: int = 0
    failed: int = 0


async def backfill_timestamps(
    config: IndexerConfig,
    session_maker: async_sessionmaker[AsyncSession],
    provider_for: Callable[[str, int], IChainProvider],
) -> BackfillResult:
    """
    Fill `block_timestamp` on every stored row that has a block number but no timestamp.

    - One provider per chain, created on demand through `provider_for(rpc_url, timeout_s)`.
    - Pairs of chains that are not configured are skipped.
    - A failed lookup or update is logged and leaves the rows for the next run.
    """
    async with session_maker() as session:
        pairs = await TimestampRepository(session).missing_pairs()

    result = BackfillResult()
    if not pairs:
        logger.info("[Backfill] No rows missing block timestamps")
        return result

    logger.info(f"[Backfill] {len(pairs)} blocks missing timestamps")
    providers: dict[int, IChainProvider] = {}
    try:
        for i, (chain_id, block_number) in enumerate(pairs, start=1):
            chain = config.chain(chain_id)
            if chain is None:
                continue
            provider = providers.get(chain_id)
            if provider is None:
                provider = providers[chain_id] = provider_for(chain.rpc_url, config.rpc_timeout_s)

            result.blocks += 1
            try:
                ts = await provider.get_block_timestamp(block_number)
            except Exception as e:
                result.failed += 1
                logger.warning(f"[Backfill] chain {chain_id} block {block_number}: lookup failed: {e}")
                continue

            try:
                async with session_maker() as session:
                    async with session.begin():
                        result.filled += await TimestampRepository(session).fill(
                            chain_id, block_number, to_datetime(ts)
                        )
            except SQLAlchemyError as e:
                result.failed += 1
                logger.warning(f"[Backfill] chain {chain_id} block {block_number}: update failed: {e!r}")
                continue

            if i % BACKFILL_PROGRESS_EVERY == 0:
                logger.info(f"[Backfill] {i}/{len(pairs)} blocks processed")
    finally:
        for provider in providers.values():
            await provider.aclose()

    logger.success(
        f"[Backfill] Done: {result.blocks} blocks, {result.filled} rows filled, {result.failed} failed"
    )
    return result


async def repair_agent_owners(session_maker: async_sessionmaker[AsyncSession]) -> int:
    """Restore owners blanked by earlier URI updates from the Registered activity rows."""
    async with session_maker() as session:
        async with session.begin():
            repaired = await AgentRepository(session).repair_owners()
    if repaired:
        logger.success(f"[Indexer] Restored owner on {repaired} agents")
    return repaired
