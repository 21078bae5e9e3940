"""Activity feed repository (append-only, deduplicated by log position)."""

from __future__ import annotations

from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.core.models import Meta
from agentdex.storage.models import ActivityLog
from agentdex.storage.upsert import dialect_insert


class ActivityRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_activity(
        self,
        *,
        agent_id: int,
        chain_id: int,
        event_type: str,
        event_data: dict[str, Any],
        meta: Meta,
    ) -> bool:
        """Append one feed row. Returns False when the log was already recorded."""
        stmt = (
            dialect_insert(self.session, ActivityLog)
            .values(
                agent_id=agent_id,
                chain_id=chain_id,
                event_type=event_type,
                event_data=event_data,
                block_number=meta.block_number,
                block_timestamp=meta.block_timestamp,
                tx_hash=meta.tx_hash,
                log_index=meta.log_index,
            )
            .on_conflict_do_nothing(index_elements=["chain_id", "tx_hash", "log_index"])
            .returning(ActivityLog.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
