"""Feedback and feedback-response repository."""

from __future__ import annotations

from decimal import Decimal

from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.core.models import Meta
from agentdex.storage.models import Feedback, FeedbackResponse
from agentdex.storage.upsert import dialect_insert


class FeedbackRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def insert_feedback(
        self,
        *,
        agent_id: int,
        chain_id: int,
        client_address: str,
        feedback_index: int,
        value: int,
        value_decimals: int,
        tag1: str | None,
        tag2: str | None,
        endpoint: str | None,
        feedback_uri: str | None,
        feedback_hash: str | None,
        meta: Meta,
    ) -> bool:
        """Insert once per (agent, chain, index); replays are ignored."""
        stmt = (
            dialect_insert(self.session, Feedback)
            .values(
                agent_id=agent_id,
                chain_id=chain_id,
                client_address=client_address,
                feedback_index=feedback_index,
                value=Decimal(value),
                value_decimals=value_decimals,
                tag1=tag1,
                tag2=tag2,
                endpoint=endpoint,
                feedback_uri=feedback_uri,
                feedback_hash=feedback_hash,
                revoked=False,
                block_number=meta.block_number,
                block_timestamp=meta.block_timestamp,
                tx_hash=meta.tx_hash,
                log_index=meta.log_index,
            )
            .on_conflict_do_nothing(index_elements=["agent_id", "chain_id", "feedback_index"])
            .returning(Feedback.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None

    async def revoke_feedback(self, agent_id: int, chain_id: int, feedback_index: int) -> int:
        """Flag a feedback as revoked. Returns the number of rows touched (0 when unknown)."""
        stmt = (
            update(Feedback)
            .where(
                Feedback.agent_id == agent_id,
                Feedback.chain_id == chain_id,
                Feedback.feedback_index == feedback_index,
            )
            .values(revoked=True)
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        return result.rowcount

    async def insert_response(
        self,
        *,
        agent_id: int,
        chain_id: int,
        feedback_index: int,
        client_address: str,
        responder: str,
        response_uri: str | None,
        response_hash: str | None,
        meta: Meta,
    ) -> bool:
        stmt = (
            dialect_insert(self.session, FeedbackResponse)
            .values(
                feedback_id=feedback_index,
                agent_id=agent_id,
                chain_id=chain_id,
                client_address=client_address,
                responder=responder,
                response_uri=response_uri,
                response_hash=response_hash,
                block_number=meta.block_number,
                block_timestamp=meta.block_timestamp,
                tx_hash=meta.tx_hash,
                log_index=meta.log_index,
            )
            .on_conflict_do_nothing(index_elements=["chain_id", "tx_hash", "log_index"])
            .returning(FeedbackResponse.id)
        )
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none() is not None
