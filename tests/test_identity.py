from typing import Any
from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import IDENTITY_LABEL
from agentdex.indexing.identity import IDENTITY_REGISTRY
from agentdex.storage.models import ActivityLog
from agentdex.storage.repositories import AgentRepository

from conftest import ALICE, BOB, CHAIN_ID, IDENTITY, build_log


def _registered(agent_id: int = 1, uri: str = "ipfs://QmOne", owner: str = ALICE, **kw: Any):
    return build_log(IDENTITY_REGISTRY, "Registered", address=IDENTITY, agentId=agent_id, agentURI=uri, owner=owner, **kw)


async def _agent(session_maker: async_sessionmaker[AsyncSession], agent_id: int = 1):
    async with session_maker() as session:
        return await AgentRepository(session).get(agent_id, CHAIN_ID)


async def _activity(session_maker: async_sessionmaker[AsyncSession]) -> list[ActivityLog]:
    async with session_maker() as session:
        rows = await session.execute(select(ActivityLog).order_by(ActivityLog.block_number, ActivityLog.log_index))
        return list(rows.scalars().all())


@pytest.mark.asyncio
async def test_registered_creates_agent_and_spawns_metadata(
    apply_logs: Any, session_maker: async_sessionmaker[AsyncSession], metadata_scheduler: MagicMock
) -> None:
    stats = await apply_logs(IDENTITY_LABEL, [_registered()])

    assert stats.applied == 1
    agent = await _agent(session_maker)
    assert agent is not None
    assert agent.owner == ALICE
    assert agent.uri == "ipfs://QmOne"
    assert agent.active is True
    assert agent.block_number == 1000

    activity = await _activity(session_maker)
    assert [a.event_type for a in activity] == ["Registered"]
    assert activity[0].event_data == {"owner": ALICE, "uri": "ipfs://QmOne"}

    metadata_scheduler.spawn.assert_called_once_with(1, CHAIN_ID, "ipfs://QmOne")


@pytest.mark.asyncio
async def test_empty_uri_is_not_resolved(apply_logs: Any, metadata_scheduler: MagicMock) -> None:
    await apply_logs(IDENTITY_LABEL, [_registered(uri="")])
    metadata_scheduler.spawn.assert_not_called()


@pytest.mark.asyncio
async def test_uri_updated_keeps_owner(apply_logs: Any, session_maker: async_sessionmaker[AsyncSession]) -> None:
    await apply_logs(IDENTITY_LABEL, [_registered()])
    updated = build_log(
        IDENTITY_REGISTRY,
        "URIUpdated",
        address=IDENTITY,
        block=1005,
        agentId=1,
        newURI="https://agent.example/card.json",
        updatedBy=BOB,
    )
    await apply_logs(IDENTITY_LABEL, [updated])

    agent = await _agent(session_maker)
    assert agent.owner == ALICE
    assert agent.uri == "https://agent.example/card.json"
    assert agent.block_number == 1005

    activity = await _activity(session_maker)
    assert activity[-1].event_type == "URIUpdated"
    assert activity[-1].event_data == {"new_uri": "https://agent.example/card.json", "updated_by": BOB}


@pytest.mark.asyncio
async def test_metadata_set_merges_keys(apply_logs: Any, session_maker: async_sessionmaker[AsyncSession]) -> None:
    logs = [_registered()]
    for i, (key, value) in enumerate([("color", b"\x01"), ("size", b"\x02\x03")], start=1):
        logs.append(
            build_log(
                IDENTITY_REGISTRY,
                "MetadataSet",
                address=IDENTITY,
                log_index=i,
                agentId=1,
                indexedMetadataKey=key,
                metadataKey=key,
                metadataValue=value,
            )
        )
    await apply_logs(IDENTITY_LABEL, logs)

    agent = await _agent(session_maker)
    assert agent.meta == {"color": "0x01", "size": "0x0203"}


@pytest.mark.asyncio
async def test_metadata_set_for_unknown_agent(apply_logs: Any, session_maker: async_sessionmaker[AsyncSession]) -> None:
    lg = build_log(
        IDENTITY_REGISTRY,
        "MetadataSet",
        address=IDENTITY,
        agentId=99,
        indexedMetadataKey="k",
        metadataKey="k",
        metadataValue=b"",
    )
    await apply_logs(IDENTITY_LABEL, [lg])

    assert await _agent(session_maker, 99) is None
    assert [a.event_type for a in await _activity(session_maker)] == ["MetadataSet"]


@pytest.mark.asyncio
async def test_replaying_a_range_is_idempotent(apply_logs: Any, session_maker: async_sessionmaker[AsyncSession]) -> None:
    logs = [_registered(), _registered(agent_id=2, owner=BOB, log_index=1)]
    await apply_logs(IDENTITY_LABEL, logs)
    await apply_logs(IDENTITY_LABEL, logs)

    async with session_maker() as session:
        count = await session.scalar(select(func.count()).select_from(ActivityLog))
    assert count == 2
    assert (await _agent(session_maker, 2)).owner == BOB
