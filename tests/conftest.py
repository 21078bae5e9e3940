from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from typing import Any
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from eth_abi import encode as abi_encode
from eth_utils import keccak
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker

from agentdex.core.config import ChainConfig, IndexerConfig
from agentdex.core.models import BatchStats, EventLog
from agentdex.decoding.specs import EventRegistry, spec_by_name
from agentdex.indexing.pipeline import ChainRuntime, FetchedRange, apply_range, build_targets
from agentdex.storage import create_engine, create_session_maker, init_models

CHAIN_ID = 143
IDENTITY = "0x8004a169fb4a3325136eb29fa0ceb6d2e539a432"
REPUTATION = "0x8004baa17c55a88189ae136b182e5fda19de9b63"
MARKETPLACE = "0x" + "ab" * 20
START_BLOCK = 1000

ALICE = "0x" + "a1" * 20
BOB = "0x" + "b0" * 20
CAROL = "0x" + "c4" * 20
TOKEN = "0x" + "70" * 20


# ---------- raw log builder ----------


def _topic(value: Any, typ: str) -> str:
    if typ == "address":
        return "0x" + "0" * 24 + value.lower()[2:]
    if typ.startswith(("uint", "int")):
        return "0x" + (value % 2**256).to_bytes(32, "big").hex()
    if typ == "string":
        return "0x" + keccak(text=value).hex()
    return value


def build_log(
    registry: EventRegistry,
    name: str,
    *,
    address: str,
    block: int = START_BLOCK,
    log_index: int = 0,
    tx_hash: str | None = None,
    **values: Any,
) -> EventLog:
    """Encode `values` into a raw log of event `name` exactly as a node would return it."""
    spec = spec_by_name(registry, name)
    topics = [spec.topic0] + [_topic(values[tf.name], tf.type) for tf in spec.topic_fields]
    fields = sorted(spec.data_fields, key=lambda f: f.position)
    data = abi_encode(spec.data_types, [values[f.name] for f in fields]) if fields else b""
    return EventLog(
        address=address,
        topics=tuple(topics),
        data_hex="0x" + data.hex(),
        block_number=block,
        tx_hash=tx_hash or f"0x{block:032x}{log_index:032x}",
        log_index=log_index,
    )


# ---------- fakes ----------


class FakeFactory:
    """Provider factory handing out the same mock for every borrowed session."""

    def __init__(self, provider: Any) -> None:
        self.provider = provider
        self.borrowed = 0

    @asynccontextmanager
    async def session(self) -> AsyncIterator[Any]:
        self.borrowed += 1
        yield self.provider


# ---------- fixtures ----------


@pytest.fixture
def mock_rpc():
    rpc = AsyncMock()
    rpc.get_logs = AsyncMock(return_value=[])
    rpc.latest_block = AsyncMock(return_value=100)
    rpc.get_block_timestamp = AsyncMock(return_value=1_700_000_000)
    rpc.call = AsyncMock(side_effect=RuntimeError("execution reverted"))
    rpc.aclose = AsyncMock()
    return rpc


@pytest.fixture
def chain() -> ChainConfig:
    return ChainConfig(
        chain_id=CHAIN_ID,
        name="monad-mainnet",
        rpc_url="https://rpc.test",
        identity_address=IDENTITY,
        reputation_address=REPUTATION,
        start_block=START_BLOCK,
        marketplace_address=MARKETPLACE,
    )


@pytest.fixture
def indexer_config(chain: ChainConfig) -> IndexerConfig:
    return IndexerConfig(chains=(chain,), batch_size=10, parallel_batches=3, poll_interval_s=0.5)


@pytest_asyncio.fixture
async def engine() -> AsyncIterator[AsyncEngine]:
    engine = create_engine("sqlite+aiosqlite:///:memory:")
    await init_models(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return create_session_maker(engine)


@pytest.fixture
def metadata_scheduler() -> MagicMock:
    scheduler = MagicMock()
    scheduler.spawn = MagicMock()
    return scheduler


@pytest.fixture
def runtime(
    chain: ChainConfig,
    indexer_config: IndexerConfig,
    session_maker: async_sessionmaker[AsyncSession],
    mock_rpc: Any,
    metadata_scheduler: MagicMock,
) -> ChainRuntime:
    return ChainRuntime(
        chain=chain,
        config=indexer_config,
        session_maker=session_maker,
        provider=mock_rpc,
        factory=FakeFactory(mock_rpc),
        metadata=metadata_scheduler,
        targets=build_targets(chain),
    )


@pytest.fixture
def apply_logs(runtime: ChainRuntime) -> Callable[[str, Sequence[EventLog]], Awaitable[BatchStats]]:
    """Apply `logs` to the contract labelled `label` as one committed range."""

    async def _apply(label: str, logs: Sequence[EventLog]) -> BatchStats:
        target = next(t for t in runtime.targets if t.label == label)
        blocks = [lg.block_number for lg in logs] or [START_BLOCK]
        fetched = FetchedRange(start=min(blocks), end=max(blocks), logs=list(logs), timestamps={})
        return await apply_range(runtime, target, fetched)

    return _apply
