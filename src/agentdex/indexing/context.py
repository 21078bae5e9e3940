"""Shared state for applying the decoded events of one block range."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field

from agentdex.core.config import ChainConfig
from agentdex.core.interfaces import IChainProvider
from agentdex.decoding.decoder import ParsedEvent
from agentdex.storage.repositories import Repositories


@dataclass(slots=True)
class ApplyContext:
    """
    Everything an event handler may touch while one range is applied.

    - `repos` share a single session, i.e. a single database transaction.
    - `provider` is used for synchronous contract reads (bundle items).
    - `metadata_jobs` collects (agent_id, uri) pairs; they are spawned only
      after the range's transaction has committed.
    """

    chain: ChainConfig
    repos: Repositories
    provider: IChainProvider
    metadata_jobs: list[tuple[int, str]] = field(default_factory=list)

    @property
    def chain_id(self) -> int:
        return self.chain.chain_id

    def schedule_metadata(self, agent_id: int, uri: str) -> None:
        if uri:
            self.metadata_jobs.append((agent_id, uri))


EventHandler = Callable[[ApplyContext, ParsedEvent], Awaitable[None]]


async def dispatch(handlers: dict[str, EventHandler], ctx: ApplyContext, event: ParsedEvent) -> None:
    """Route `event` to the handler registered under its name."""
    handler = handlers.get(event.name)
    if handler is None:
        raise KeyError(f"no handler for event {event.name}")
    await handler(ctx, event)
