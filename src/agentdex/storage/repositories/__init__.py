"""Repositories over one `AsyncSession` (one database transaction)."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.storage.repositories.activity import ActivityRepository
from agentdex.storage.repositories.agents import AgentRepository
from agentdex.storage.repositories.cursor import CursorRepository
from agentdex.storage.repositories.feedbacks import FeedbackRepository
from agentdex.storage.repositories.marketplace import MarketplaceRepository
from agentdex.storage.repositories.timestamps import TimestampRepository


class Repositories:
    """Every repository bound to the same session, so one commit covers them all."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session
        self.agents = AgentRepository(session)
        self.feedbacks = FeedbackRepository(session)
        self.activity = ActivityRepository(session)
        self.marketplace = MarketplaceRepository(session)


__all__ = [
    "ActivityRepository",
    "AgentRepository",
    "CursorRepository",
    "FeedbackRepository",
    "MarketplaceRepository",
    "Repositories",
    "TimestampRepository",
]
