from dataclasses import replace
from typing import Any
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import IDENTITY_LABEL, MARKETPLACE_LABEL, REPUTATION_LABEL
from agentdex.core.models import EventLog
from agentdex.indexing.identity import IDENTITY_REGISTRY, apply_identity_event
from agentdex.indexing.pipeline import (
    ChainRuntime,
    ContractTarget,
    FetchedRange,
    apply_range,
    build_targets,
    fetch_range,
    index_chain,
    index_contract,
    read_cursor,
)
from agentdex.storage.models import ActivityLog, Agent
from agentdex.storage.repositories import CursorRepository

from conftest import ALICE, CHAIN_ID, IDENTITY, MARKETPLACE, START_BLOCK, build_log


def _target(runtime: ChainRuntime, label: str) -> ContractTarget:
    return next(t for t in runtime.targets if t.label == label)


def _registered(agent_id: int, block: int, log_index: int = 0) -> EventLog:
    return build_log(
        IDENTITY_REGISTRY,
        "Registered",
        address=IDENTITY,
        block=block,
        log_index=log_index,
        agentId=agent_id,
        agentURI=f"ipfs://Qm{agent_id}",
        owner=ALICE,
    )


async def _agents(session_maker: async_sessionmaker[AsyncSession]) -> list[int]:
    async with session_maker() as session:
        rows = await session.execute(select(Agent.agent_id).order_by(Agent.agent_id))
        return list(rows.scalars().all())


def test_build_targets(chain: Any) -> None:
    targets = build_targets(chain)
    assert [t.label for t in targets] == [IDENTITY_LABEL, REPUTATION_LABEL, MARKETPLACE_LABEL]
    assert targets[2].address == MARKETPLACE
    assert targets[2].start_block == START_BLOCK
    assert len(targets[2].topic0s) == 27


def test_build_targets_without_marketplace(chain: Any) -> None:
    assert [t.label for t in build_targets(replace(chain, marketplace_address=None))] == [
        IDENTITY_LABEL,
        REPUTATION_LABEL,
    ]


@pytest.mark.asyncio
async def test_fetch_range_resolves_each_block_once(runtime: ChainRuntime, mock_rpc: Any) -> None:
    logs = [_registered(1, 1000), _registered(2, 1000, 1), _registered(3, 1002)]
    mock_rpc.get_logs.return_value = logs

    async def ts(block: int) -> int:
        if block == 1002:
            raise ConnectionError("reset")
        return 1_700_000_000

    mock_rpc.get_block_timestamp.side_effect = ts
    target = _target(runtime, IDENTITY_LABEL)

    fetched = await fetch_range(mock_rpc, CHAIN_ID, target, 1000, 1009)

    assert fetched.logs == logs
    assert fetched.timestamps[1000] is not None
    assert fetched.timestamps[1000].timestamp() == 1_700_000_000
    assert fetched.timestamps[1002] is None
    assert mock_rpc.get_block_timestamp.await_count == 2
    kwargs = mock_rpc.get_logs.await_args.kwargs
    assert kwargs["address"] == IDENTITY
    assert kwargs["from_block"] == 1000 and kwargs["to_block"] == 1009
    assert set(kwargs["topic0s"]) == set(IDENTITY_REGISTRY)


@pytest.mark.asyncio
async def test_fetch_range_uses_timestamp_from_log(runtime: ChainRuntime, mock_rpc: Any) -> None:
    lg = _registered(1, 1000)
    mock_rpc.get_logs.return_value = [
        EventLog(
            address=lg.address,
            topics=lg.topics,
            data_hex=lg.data_hex,
            block_number=lg.block_number,
            tx_hash=lg.tx_hash,
            log_index=lg.log_index,
            block_timestamp=1_600_000_000,
        )
    ]

    fetched = await fetch_range(mock_rpc, CHAIN_ID, _target(runtime, IDENTITY_LABEL), 1000, 1000)

    assert fetched.timestamps[1000].timestamp() == 1_600_000_000
    mock_rpc.get_block_timestamp.assert_not_awaited()


@pytest.mark.asyncio
async def test_apply_range_skips_undecodable_and_unknown_logs(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession]
) -> None:
    good = _registered(1, 1000)
    truncated = EventLog(
        address=IDENTITY,
        topics=_registered(2, 1000).topics,
        data_hex="0x" + "00" * 8,
        block_number=1000,
        tx_hash="0x" + "ee" * 32,
        log_index=1,
    )
    unknown = EventLog(
        address=IDENTITY,
        topics=("0x" + "99" * 32,),
        data_hex="0x",
        block_number=1000,
        tx_hash="0x" + "ee" * 32,
        log_index=2,
    )
    fetched = FetchedRange(start=1000, end=1000, logs=[good, truncated, unknown], timestamps={})

    stats = await apply_range(runtime, _target(runtime, IDENTITY_LABEL), fetched)

    assert stats.total_logs == 3
    assert stats.applied == 1
    assert stats.decode_failed == 1
    assert stats.unknown_topic == 1
    assert await _agents(session_maker) == [1]


@pytest.mark.asyncio
async def test_apply_range_failure_rolls_back_and_spawns_nothing(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession], metadata_scheduler: MagicMock
) -> None:
    async def explode_on_second(ctx: Any, ev: Any) -> None:
        await apply_identity_event(ctx, ev)
        if ev["agentId"] == 2:
            raise RuntimeError("disk full")

    target = ContractTarget(IDENTITY_LABEL, IDENTITY, START_BLOCK, IDENTITY_REGISTRY, explode_on_second)
    fetched = FetchedRange(start=1000, end=1000, logs=[_registered(1, 1000), _registered(2, 1000, 1)], timestamps={})

    with pytest.raises(RuntimeError):
        await apply_range(runtime, target, fetched)

    assert await _agents(session_maker) == []
    metadata_scheduler.spawn.assert_not_called()


@pytest.mark.asyncio
async def test_index_contract_advances_cursor(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession], mock_rpc: Any
) -> None:
    async def get_logs(*, address: str, topic0s: Any, from_block: int, to_block: int) -> list[EventLog]:
        return [_registered(from_block, from_block)]

    mock_rpc.get_logs.side_effect = get_logs
    target = _target(runtime, IDENTITY_LABEL)

    new_cursor = await index_contract(runtime, target, START_BLOCK - 1, 1100)

    # batch size 10 x 3 parallel batches
    assert new_cursor == 1029
    assert await _agents(session_maker) == [1000, 1010, 1020]
    assert await read_cursor(runtime, target) == 1029


@pytest.mark.asyncio
async def test_index_contract_holds_cursor_before_failed_range(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession], mock_rpc: Any
) -> None:
    async def get_logs(*, address: str, topic0s: Any, from_block: int, to_block: int) -> list[EventLog]:
        if from_block == 1010:
            raise TimeoutError("eth_getLogs timed out")
        return [_registered(from_block, from_block)]

    mock_rpc.get_logs.side_effect = get_logs
    target = _target(runtime, IDENTITY_LABEL)

    assert await index_contract(runtime, target, START_BLOCK - 1, 1100) == 1009
    assert await _agents(session_maker) == [1000]
    assert await read_cursor(runtime, target) == 1009


@pytest.mark.asyncio
async def test_index_contract_caught_up(runtime: ChainRuntime, mock_rpc: Any) -> None:
    assert await index_contract(runtime, _target(runtime, IDENTITY_LABEL), 1100, 1100) == 1100
    mock_rpc.get_logs.assert_not_awaited()


@pytest.mark.asyncio
async def test_read_cursor_defaults_to_start_block(runtime: ChainRuntime) -> None:
    assert await read_cursor(runtime, _target(runtime, REPUTATION_LABEL)) == START_BLOCK - 1


@pytest.mark.asyncio
async def test_index_chain_caught_up(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession], mock_rpc: Any
) -> None:
    async with session_maker() as session:
        async with session.begin():
            for t in runtime.targets:
                await CursorRepository(session).set_cursor(CHAIN_ID, t.address, 1100, t.label)
    mock_rpc.latest_block.return_value = 1100

    with patch("agentdex.indexing.pipeline.index_contract", new=AsyncMock()) as fake:
        assert await index_chain(runtime) is True
    fake.assert_not_awaited()


@pytest.mark.asyncio
async def test_index_chain_isolates_contract_failures(runtime: ChainRuntime, mock_rpc: Any) -> None:
    mock_rpc.latest_block.return_value = 2000
    done: list[str] = []

    async def fake_index(rt: ChainRuntime, target: ContractTarget, last: int, tip: int) -> int:
        if target.label == REPUTATION_LABEL:
            raise ConnectionError("rpc down")
        assert last == START_BLOCK - 1
        assert tip == 2000
        done.append(target.label)
        return tip

    with patch("agentdex.indexing.pipeline.index_contract", side_effect=fake_index):
        assert await index_chain(runtime) is False

    assert sorted(done) == sorted([IDENTITY_LABEL, MARKETPLACE_LABEL])


@pytest.mark.asyncio
async def test_index_chain_tip_failure_propagates(runtime: ChainRuntime, mock_rpc: Any) -> None:
    mock_rpc.latest_block.side_effect = ConnectionError("rpc down")
    with pytest.raises(ConnectionError):
        await index_chain(runtime)


@pytest.mark.asyncio
async def test_metadata_spawned_for_each_registration(
    runtime: ChainRuntime, metadata_scheduler: MagicMock
) -> None:
    fetched = FetchedRange(start=1000, end=1000, logs=[_registered(1, 1000), _registered(2, 1000, 1)], timestamps={})

    await apply_range(runtime, _target(runtime, IDENTITY_LABEL), fetched)

    assert [c.args for c in metadata_scheduler.spawn.call_args_list] == [
        (1, CHAIN_ID, "ipfs://Qm1"),
        (2, CHAIN_ID, "ipfs://Qm2"),
    ]


@pytest.mark.asyncio
async def test_apply_range_skips_log_with_malformed_hex(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession]
) -> None:
    malformed = replace(_registered(2, 1000, 1), data_hex="0xzz")
    fetched = FetchedRange(start=1000, end=1000, logs=[_registered(1, 1000), malformed], timestamps={})

    stats = await apply_range(runtime, _target(runtime, IDENTITY_LABEL), fetched)

    assert stats.applied == 1
    assert stats.decode_failed == 1
    assert await _agents(session_maker) == [1]


@pytest.mark.asyncio
async def test_cursor_write_failure_reapplies_next_cycle(
    runtime: ChainRuntime, session_maker: async_sessionmaker[AsyncSession], mock_rpc: Any
) -> None:
    async def get_logs(*, address: str, topic0s: Any, from_block: int, to_block: int) -> list[EventLog]:
        return [_registered(from_block, from_block)]

    mock_rpc.get_logs.side_effect = get_logs
    target = _target(runtime, IDENTITY_LABEL)
    locked = OperationalError("UPDATE indexer_state", {}, Exception("database is locked"))

    with patch.object(CursorRepository, "set_cursor", side_effect=locked):
        assert await index_contract(runtime, target, START_BLOCK - 1, 1100) == START_BLOCK - 1
    assert await read_cursor(runtime, target) == START_BLOCK - 1
    assert await _agents(session_maker) == [1000, 1010, 1020]

    assert await index_contract(runtime, target, START_BLOCK - 1, 1100) == 1029
    assert await read_cursor(runtime, target) == 1029
    assert await _agents(session_maker) == [1000, 1010, 1020]
    async with session_maker() as session:
        assert await session.scalar(select(func.count()).select_from(ActivityLog)) == 3
