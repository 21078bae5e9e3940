"""
Cursor repository.

Persists the last fully indexed block per (chain, contract).
"""

from __future__ import annotations

from sqlalchemy import case, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.storage.models import IndexerState, utcnow
from agentdex.storage.upsert import dialect_insert


class CursorRepository:
    """Read / forward-only write access to `indexer_state`."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get_cursor(self, chain_id: int, contract_address: str) -> int | None:
        """Return the last indexed block, or None when the pair was never indexed."""
        stmt = select(IndexerState.last_block).where(
            IndexerState.chain_id == chain_id,
            IndexerState.contract_address == contract_address.lower(),
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def set_cursor(
        self,
        chain_id: int,
        contract_address: str,
        block: int,
        label: str | None = None,
    ) -> None:
        """Upsert the cursor. A lower `block` than the stored one never wins."""
        stmt = dialect_insert(self.session, IndexerState).values(
            chain_id=chain_id,
            contract_address=contract_address.lower(),
            last_block=block,
            contract_name=label,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["chain_id", "contract_address"],
            set_={
                "last_block": case(
                    (stmt.excluded.last_block > IndexerState.last_block, stmt.excluded.last_block),
                    else_=IndexerState.last_block,
                ),
                "contract_name": func.coalesce(stmt.excluded.contract_name, IndexerState.contract_name),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def list_cursors(self) -> list[IndexerState]:
        """Return every cursor row ordered by chain and label."""
        stmt = select(IndexerState).order_by(IndexerState.chain_id, IndexerState.contract_name)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())
