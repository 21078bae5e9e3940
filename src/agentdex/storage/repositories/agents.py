"""
Agent repository.

Upserts follow per-field last-write-wins: the owner is never replaced by an
empty value. Descriptive fields come only from the metadata resolver.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from loguru import logger
from sqlalchemy import Select, case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.storage.models import ActivityLog, Agent, utcnow
from agentdex.storage.upsert import dialect_insert

# Fields merged with COALESCE(new, old) on conflict
_COALESCE_FIELDS = ("uri", "block_timestamp")


class AgentRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    @staticmethod
    def select_agent(agent_id: int, chain_id: int, *, for_update: bool = False) -> Select[tuple[Agent]]:
        stmt = select(Agent).where(Agent.agent_id == agent_id, Agent.chain_id == chain_id)
        # row lock so concurrent JSON merges (indexer and resolver) serialize
        return stmt.with_for_update() if for_update else stmt

    async def get(self, agent_id: int, chain_id: int, *, for_update: bool = False) -> Agent | None:
        stmt = self.select_agent(agent_id, chain_id, for_update=for_update)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def upsert_agent(
        self,
        *,
        agent_id: int,
        chain_id: int,
        owner: str,
        uri: str | None,
        active: bool,
        block_number: int,
        block_timestamp: datetime | None,
        tx_hash: str,
    ) -> None:
        """Insert or patch an agent row. `owner=""` keeps the stored owner."""
        values: dict[str, Any] = {
            "agent_id": agent_id,
            "chain_id": chain_id,
            "owner": owner,
            "active": active,
            "block_number": block_number,
            "tx_hash": tx_hash,
            "updated_at": utcnow(),
        }
        if uri is not None:
            values["uri"] = uri
        if block_timestamp is not None:
            values["block_timestamp"] = block_timestamp

        stmt = dialect_insert(self.session, Agent).values(**values)
        set_: dict[str, Any] = {
            "owner": case((stmt.excluded.owner == "", Agent.owner), else_=stmt.excluded.owner),
            "active": stmt.excluded.active,
            "block_number": stmt.excluded.block_number,
            "tx_hash": stmt.excluded.tx_hash,
            "updated_at": stmt.excluded.updated_at,
        }
        # only columns present in this insert, so column defaults never clobber stored values
        for key in _COALESCE_FIELDS:
            if key in values:
                set_[key] = func.coalesce(getattr(stmt.excluded, key), getattr(Agent, key))
        stmt = stmt.on_conflict_do_update(index_elements=["agent_id", "chain_id"], set_=set_)
        await self.session.execute(stmt)

    async def merge_metadata(self, agent_id: int, chain_id: int, key: str, value: Any) -> bool:
        """Set one key of the agent's JSON metadata, keeping the other keys.

        Returns False (no-op) when the agent does not exist.
        """
        agent = await self.get(agent_id, chain_id, for_update=True)
        if agent is None:
            return False
        agent.meta = {**(agent.meta or {}), key: value}
        agent.updated_at = utcnow()
        await self.session.flush()
        return True

    async def apply_uri_metadata(
        self,
        agent_id: int,
        chain_id: int,
        *,
        name: str | None,
        description: str | None,
        image: str | None,
        categories: list[str] | None,
        x402_support: bool | None,
        endpoints: list[dict[str, Any]] | None,
        capabilities: list[str] | None,
    ) -> bool:
        """Merge a resolved metadata document into the agent row."""
        agent = await self.get(agent_id, chain_id, for_update=True)
        if agent is None:
            return False
        for field, val in (
            ("name", name),
            ("description", description),
            ("image", image),
            ("categories", categories),
            ("x402_support", x402_support),
        ):
            if val is not None:
                setattr(agent, field, val)
        agent.meta = {**(agent.meta or {}), "endpoints": endpoints, "capabilities": capabilities}
        agent.updated_at = utcnow()
        await self.session.flush()
        return True

    async def repair_owners(self) -> int:
        """Restore empty owners from each agent's Registered activity payload."""
        stmt = (
            select(Agent, ActivityLog.event_data)
            .join(
                ActivityLog,
                (ActivityLog.agent_id == Agent.agent_id) & (ActivityLog.chain_id == Agent.chain_id),
            )
            .where(ActivityLog.event_type == "Registered", (Agent.owner == "") | Agent.owner.is_(None))
            .order_by(ActivityLog.block_number.desc())
        )
        result = await self.session.execute(stmt)
        repaired = 0
        for agent, event_data in result.all():
            owner = (event_data or {}).get("owner")
            if agent.owner or not owner:
                continue
            agent.owner = owner
            agent.updated_at = utcnow()
            repaired += 1
            logger.debug(f"[Agents] Restored owner of agent {agent.agent_id} on chain {agent.chain_id}")
        await self.session.flush()
        return repaired
