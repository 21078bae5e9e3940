"""Queries for the block-timestamp backfill."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import select, union, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.storage.models import TIMESTAMPED_MODELS


class TimestampRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def missing_pairs(self) -> list[tuple[int, int]]:
        """Distinct (chain_id, block_number) with a block number but no timestamp, ordered."""
        selects = [
            select(model.chain_id.label("chain_id"), model.block_number.label("block_number")).where(
                model.block_timestamp.is_(None),
                model.block_number.is_not(None),
            )
            for model in TIMESTAMPED_MODELS
        ]
        sub = union(*selects).subquery()
        stmt = select(sub.c.chain_id, sub.c.block_number).order_by(sub.c.chain_id, sub.c.block_number)
        result = await self.session.execute(stmt)
        return [(int(c), int(b)) for c, b in result.all()]

    async def fill(self, chain_id: int, block_number: int, block_timestamp: datetime) -> int:
        """Set the timestamp on every row of that block that still lacks one."""
        touched = 0
        for model in TIMESTAMPED_MODELS:
            stmt = (
                update(model)
                .where(
                    model.chain_id == chain_id,
                    model.block_number == block_number,
                    model.block_timestamp.is_(None),
                )
                .values(block_timestamp=block_timestamp)
                .execution_options(synchronize_session=False)
            )
            result = await self.session.execute(stmt)
            touched += result.rowcount
        return touched
