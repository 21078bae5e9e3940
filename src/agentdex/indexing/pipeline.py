"""Per-chain indexing pipeline: fetch → decode → apply → advance cursor.

This module provides:
- `ContractTarget`: one indexed contract (address, start block, registry, handler)
- `fetch_range` / `apply_range`: the two halves of one batch
- `index_contract`: runs the scheduled ranges of one contract and moves its cursor
- `index_chain`: one cycle over every contract of a chain
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime

from loguru import logger
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import IDENTITY_LABEL, MARKETPLACE_LABEL, REPUTATION_LABEL
from agentdex.core.config import ChainConfig, IndexerConfig
from agentdex.core.errors import DecodeError
from agentdex.core.interfaces import IChainProvider, IMetadataScheduler, IProviderFactory
from agentdex.core.models import BatchStats, EventLog, Meta
from agentdex.decoding.decoder import decode_event
from agentdex.decoding.specs import EventRegistry, get_event_registry_topic0s
from agentdex.indexing.context import ApplyContext, EventHandler
from agentdex.indexing.identity import IDENTITY_REGISTRY, apply_identity_event
from agentdex.indexing.marketplace import MARKETPLACE_REGISTRY, apply_marketplace_event
from agentdex.indexing.reputation import REPUTATION_REGISTRY, apply_reputation_event
from agentdex.indexing.scheduler import build_ranges, run_ranges
from agentdex.indexing.timestamps import BlockTimestampCache
from agentdex.storage.repositories import CursorRepository, Repositories


# ---------------------------------------------------------------------------
# Targets
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ContractTarget:
    """One contract indexed on one chain."""

    label: str
    address: str
    start_block: int
    registry: EventRegistry
    handler: EventHandler

    @property
    def topic0s(self) -> list[str]:
        return get_event_registry_topic0s(self.registry)


def build_targets(chain: ChainConfig) -> list[ContractTarget]:
    """Identity, reputation and (when configured) marketplace targets for `chain`."""
    targets = [
        ContractTarget(
            IDENTITY_LABEL, chain.identity_address, chain.start_block, IDENTITY_REGISTRY, apply_identity_event
        ),
        ContractTarget(
            REPUTATION_LABEL,
            chain.reputation_address,
            chain.start_block,
            REPUTATION_REGISTRY,
            apply_reputation_event,
        ),
    ]
    if chain.marketplace_address:
        targets.append(
            ContractTarget(
                MARKETPLACE_LABEL,
                chain.marketplace_address,
                chain.effective_marketplace_start,
                MARKETPLACE_REGISTRY,
                apply_marketplace_event,
            )
        )
    return targets


# ---------------------------------------------------------------------------
# Runtime
# ---------------------------------------------------------------------------


@dataclass(slots=True)
class ChainRuntime:
    """
    Wiring for one chain, expressed in terms of interfaces.

    - `provider` is the chain's shared handle (tip, inline ranges, contract reads).
    - `factory` hands out one fresh handle per concurrently fetched range.
    - `metadata` receives detached enrichment jobs after each commit.
    """

    chain: ChainConfig
    config: IndexerConfig
    session_maker: async_sessionmaker[AsyncSession]
    provider: IChainProvider
    factory: IProviderFactory
    metadata: IMetadataScheduler
    targets: list[ContractTarget]


@dataclass(slots=True)
class FetchedRange:
    """Logs and block timestamps of one inclusive range, ready to apply."""

    start: int
    end: int
    logs: list[EventLog]
    timestamps: dict[int, datetime | None]


# ---------------------------------------------------------------------------
# One batch
# ---------------------------------------------------------------------------


async def fetch_range(
    provider: IChainProvider,
    chain_id: int,
    target: ContractTarget,
    start: int,
    end: int,
) -> FetchedRange:
    """Fetch logs for [start, end] and resolve each distinct block's timestamp once."""
    logs = await provider.get_logs(
        address=target.address,
        topic0s=target.topic0s,
        from_block=start,
        to_block=end,
    )
    cache = BlockTimestampCache(provider, chain_id)
    for lg in logs:
        cache.seed(lg.block_number, lg.block_timestamp)
    for block in sorted({lg.block_number for lg in logs}):
        await cache.get(block)
    return FetchedRange(start=start, end=end, logs=logs, timestamps=cache.snapshot())


async def apply_range(
    runtime: ChainRuntime,
    target: ContractTarget,
    fetched: FetchedRange,
) -> BatchStats:
    """Decode and apply one range inside a single transaction.

    Store errors propagate (rollback, cursor untouched). Undecodable logs are
    logged and skipped. Metadata jobs are spawned after the commit.
    """
    chain_id = runtime.chain.chain_id
    stats = BatchStats(total_logs=len(fetched.logs))
    ctx: ApplyContext | None = None

    async with runtime.session_maker() as session:
        async with session.begin():
            ctx = ApplyContext(chain=runtime.chain, repos=Repositories(session), provider=runtime.provider)
            for lg in fetched.logs:
                meta = Meta(
                    block_number=lg.block_number,
                    block_timestamp=fetched.timestamps.get(lg.block_number),
                    tx_hash=lg.tx_hash,
                    log_index=lg.log_index,
                    address=lg.address,
                )
                try:
                    ev = decode_event(topics=lg.topics, data=lg.data_bytes(), meta=meta, registry=target.registry)
                except DecodeError as e:
                    stats.decode_failed += 1
                    logger.error(
                        f"[Indexer] chain {chain_id} {target.label}: skipping undecodable log "
                        f"{lg.tx_hash}:{lg.log_index} at block {lg.block_number}: {e}"
                    )
                    continue
                if ev is None:
                    stats.unknown_topic += 1
                    continue
                await target.handler(ctx, ev)
                stats.applied += 1

    for agent_id, uri in ctx.metadata_jobs:
        runtime.metadata.spawn(agent_id, chain_id, uri)
    return stats


# ---------------------------------------------------------------------------
# One contract / one chain
# ---------------------------------------------------------------------------


async def read_cursor(runtime: ChainRuntime, target: ContractTarget) -> int:
    """Last indexed block, defaulting to `start_block - 1`. Read errors propagate."""
    async with runtime.session_maker() as session:
        last = await CursorRepository(session).get_cursor(runtime.chain.chain_id, target.address)
    return target.start_block - 1 if last is None else last


async def index_contract(
    runtime: ChainRuntime,
    target: ContractTarget,
    last_indexed: int,
    tip: int,
) -> int:
    """Index up to `parallel_batches` ranges after `last_indexed`; return the new cursor."""
    chain_id = runtime.chain.chain_id
    ranges = build_ranges(last_indexed, tip, runtime.config.batch_size, runtime.config.parallel_batches)
    if not ranges:
        return last_indexed

    async def _fetch(provider: IChainProvider, a: int, b: int) -> FetchedRange:
        return await fetch_range(provider, chain_id, target, a, b)

    async def _apply(fetched: FetchedRange) -> BatchStats:
        return await apply_range(runtime, target, fetched)

    result = await run_ranges(
        ranges,
        fetch=_fetch,
        apply=_apply,
        shared_provider=runtime.provider,
        factory=runtime.factory,
        label=f"chain {chain_id} {target.label}",
    )
    if result.last_applied is None:
        return last_indexed

    try:
        async with runtime.session_maker() as session:
            async with session.begin():
                await CursorRepository(session).set_cursor(
                    chain_id, target.address, result.last_applied, target.label
                )
    except SQLAlchemyError as e:
        # the range is reprocessed next cycle; writes are idempotent
        logger.error(f"[Indexer] chain {chain_id} {target.label}: cursor write failed: {e!r}")
        return last_indexed

    s = result.stats
    logger.info(
        f"[Indexer] chain {chain_id} {target.label}: {ranges[0][0]}-{result.last_applied} "
        f"(tip {tip}) logs={s.total_logs} applied={s.applied} "
        f"decode_failed={s.decode_failed} ranges={s.ranges_applied}/{len(ranges)}"
    )
    return result.last_applied


async def index_chain(runtime: ChainRuntime) -> bool:
    """Run one cycle for a chain. Returns True when every contract was already at the tip.

    Cursor read errors abort the cycle for this chain. Failures of one
    contract never affect the others.
    """
    chain_id = runtime.chain.chain_id
    tip = await runtime.provider.latest_block()
    lasts = [await read_cursor(runtime, t) for t in runtime.targets]

    if all(last >= tip for last in lasts):
        return True

    results = await asyncio.gather(
        *(index_contract(runtime, t, last, tip) for t, last in zip(runtime.targets, lasts)),
        return_exceptions=True,
    )
    for target, res in zip(runtime.targets, results):
        if isinstance(res, BaseException):
            logger.error(f"[Indexer] chain {chain_id} {target.label}: cycle failed: {res!r}")
    return False
