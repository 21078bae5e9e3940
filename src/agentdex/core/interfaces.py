from __future__ import annotations

from collections.abc import Sequence
from contextlib import AbstractAsyncContextManager
from typing import List, Protocol, runtime_checkable

from agentdex.core.models import EventLog


# ---------------------------------------------------------------------------
# IChainProvider
# ---------------------------------------------------------------------------

@runtime_checkable
class IChainProvider(Protocol):
    """
    Abstract provider for one EVM chain.

    Domain expectations:
    - It returns EventLog objects already mapped into internal domain models.
    - It hides the underlying RPC / archive technology.
    - Every method is a suspension point and may raise on transient I/O.
    """

    async def latest_block(self) -> int:
        """
        Return the current chain head height.
        """
        ...

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> List[EventLog]:
        """
        Return all logs for (address, topic0s) over the inclusive block range,
        ordered by (block_number, log_index).

        Implementations:
        - RPC-based (`agentdex.clients.rpc.RPC`)
        - In-memory or synthetic provider for testing
        """
        ...

    async def get_block_timestamp(self, number: int) -> int:
        """
        Return the unix timestamp of a block header.
        """
        ...

    async def call(self, address: str, data: bytes) -> bytes:
        """
        Execute a read-only contract call and return the raw ABI output.
        """
        ...

    async def aclose(self) -> None:
        """
        Release any network resources held by the provider.
        """
        ...


# ---------------------------------------------------------------------------
# IProviderFactory
# ---------------------------------------------------------------------------

@runtime_checkable
class IProviderFactory(Protocol):
    """
    Source of independent provider handles, one per concurrent batch task.

    Domain expectations:
    - Handles borrowed through `session()` are never shared between tasks.
    - The handle is closed when the context exits.
    """

    def session(self) -> AbstractAsyncContextManager[IChainProvider]:
        """
        Borrow a fresh provider for the duration of an `async with` block.
        """
        ...


# ---------------------------------------------------------------------------
# IMetadataScheduler
# ---------------------------------------------------------------------------

@runtime_checkable
class IMetadataScheduler(Protocol):
    """
    Detached task capability for agent metadata enrichment.

    Domain expectations:
    - `spawn` returns immediately; the work runs in the background.
    - Failures are captured by a logging sink and never observed by the caller.
    """

    def spawn(self, agent_id: int, chain_id: int, uri: str) -> None:
        """
        Schedule a fetch of `uri` and merge its fields into the agent row.
        """
        ...
