"""Top-level driver: startup reconciliation, then catch-up / poll cycles per chain."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.clients.rpc import RPC, RPCFactory
from agentdex.core.config import IndexerConfig
from agentdex.indexing.backfill import BackfillResult, backfill_timestamps, repair_agent_owners
from agentdex.indexing.marketplace import sync_marketplace_config
from agentdex.indexing.metadata import MetadataResolver
from agentdex.indexing.pipeline import ChainRuntime, build_targets, index_chain


async def run_cycle(runtimes: Sequence[ChainRuntime]) -> bool:
    """Run one cycle over every chain. Returns True when all chains were idle."""
    all_caught_up = True
    for runtime in runtimes:
        try:
            caught_up = await index_chain(runtime)
        except Exception as e:
            # a chain whose tip or cursors cannot be read counts as idle, so a dead RPC is polled, not spun on
            logger.error(f"[Indexer] chain {runtime.chain.chain_id} cycle failed: {e!r}")
            continue
        all_caught_up = all_caught_up and caught_up
    return all_caught_up


async def run_loop(
    runtimes: Sequence[ChainRuntime],
    *,
    poll_interval_s: float,
    max_cycles: int | None = None,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> int:
    """
    Cycle until cancelled (or `max_cycles` is reached).

    - Sleeps `poll_interval_s` only after a cycle where every chain was caught up.
    - Otherwise starts the next cycle immediately to drain the backlog.

    Returns the number of cycles run.
    """
    cycles = 0
    while max_cycles is None or cycles < max_cycles:
        caught_up = await run_cycle(runtimes)
        cycles += 1
        if caught_up:
            await sleep(poll_interval_s)
    return cycles


class Indexer:
    """Owns the RPC handles and the metadata resolver for every configured chain."""

    def __init__(
        self,
        config: IndexerConfig,
        session_maker: async_sessionmaker[AsyncSession],
    ) -> None:
        self.config = config
        self.session_maker = session_maker
        self.metadata = MetadataResolver(
            session_maker,
            timeout_s=config.metadata_timeout_s,
            ipfs_gateway=config.ipfs_gateway,
        )
        self.runtimes: list[ChainRuntime] = [
            ChainRuntime(
                chain=chain,
                config=config,
                session_maker=session_maker,
                provider=RPC(chain.rpc_url, timeout_s=config.rpc_timeout_s),
                factory=RPCFactory(
                    chain.rpc_url, timeout_s=config.rpc_timeout_s, max_handles=config.parallel_batches
                ),
                metadata=self.metadata,
                targets=build_targets(chain),
            )
            for chain in config.chains
        ]

    async def sync_configs(self) -> int:
        synced = 0
        for runtime in self.runtimes:
            if await sync_marketplace_config(runtime.chain, runtime.provider, self.session_maker):
                synced += 1
        return synced

    async def backfill(self) -> BackfillResult:
        return await backfill_timestamps(
            self.config,
            self.session_maker,
            lambda url, timeout_s: RPC(url, timeout_s=timeout_s),
        )

    async def startup(self) -> None:
        """Config sync, timestamp backfill and owner repair. Never fatal."""
        steps: list[tuple[str, Callable[[], Awaitable[object]]]] = [
            ("marketplace config sync", self.sync_configs),
            ("timestamp backfill", self.backfill),
            ("owner repair", lambda: repair_agent_owners(self.session_maker)),
        ]
        for name, step in steps:
            try:
                await step()
            except Exception as e:
                logger.error(f"[Indexer] Startup {name} failed: {e!r}")

    async def run(self, *, max_cycles: int | None = None) -> int:
        chains = ", ".join(f"{r.chain.name} ({r.chain.chain_id})" for r in self.runtimes)
        logger.info(f"[Indexer] Starting on {chains}")
        return await run_loop(self.runtimes, poll_interval_s=self.config.poll_interval_s, max_cycles=max_cycles)

    async def aclose(self) -> None:
        await self.metadata.aclose()
        for runtime in self.runtimes:
            await runtime.provider.aclose()
