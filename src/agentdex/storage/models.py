"""
Database models.

One SQLAlchemy model per indexed table. Every event-sourced row carries its
provenance (block number, block timestamp, tx hash) and is keyed by a
natural key so replaying a block range is idempotent.
"""

from __future__ import annotations

from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import BigInteger, Boolean, DateTime, Index, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from agentdex.constants import STATUS_ACTIVE
from agentdex.storage.types import ExactNumeric, JSONType


def utcnow() -> datetime:
    return datetime.now(UTC)


class Base(DeclarativeBase):
    """Declarative base for all models."""


class TimestampMixin:
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class ProvenanceMixin:
    """Block provenance of the event that created the row."""

    block_number: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    block_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tx_hash: Mapped[str] = mapped_column(Text, nullable=False)


# ---------------------------------------------------------------------------
# Cursor
# ---------------------------------------------------------------------------


class IndexerState(Base):
    """Last fully indexed block per (chain, contract)."""

    __tablename__ = "indexer_state"

    chain_id: Mapped[int] = mapped_column(Integer, primary_key=True)
    contract_address: Mapped[str] = mapped_column(String(42), primary_key=True)
    last_block: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    contract_name: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# ---------------------------------------------------------------------------
# Identity / reputation
# ---------------------------------------------------------------------------


class Agent(TimestampMixin, Base):
    """An ERC-8004 agent (identity NFT) on one chain."""

    __tablename__ = "agents"
    __table_args__ = (UniqueConstraint("agent_id", "chain_id", name="uq_agents_agent_chain"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    owner: Mapped[str] = mapped_column(Text, nullable=False, default="")
    uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict[str, Any] | None] = mapped_column("metadata", JSONType, default=dict)
    name: Mapped[str | None] = mapped_column(Text, nullable=True, index=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    image: Mapped[str | None] = mapped_column(Text, nullable=True)
    categories: Mapped[list[str] | None] = mapped_column(JSONType, nullable=True)
    x402_support: Mapped[bool | None] = mapped_column(Boolean, default=False)
    active: Mapped[bool] = mapped_column(Boolean, default=True, index=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    block_timestamp: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    tx_hash: Mapped[str | None] = mapped_column(Text, nullable=True)


class Feedback(ProvenanceMixin, Base):
    """Reputation feedback. `value` is the raw mantissa, scaled by `value_decimals`."""

    __tablename__ = "feedbacks"
    __table_args__ = (
        UniqueConstraint("agent_id", "chain_id", "feedback_index", name="uq_feedbacks_natural"),
        Index("idx_feedbacks_agent", "agent_id", "chain_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    client_address: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    feedback_index: Mapped[int] = mapped_column(BigInteger, nullable=False)
    value: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    value_decimals: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    tag1: Mapped[str | None] = mapped_column(Text, nullable=True)
    tag2: Mapped[str | None] = mapped_column(Text, nullable=True)
    endpoint: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    feedback_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    revoked: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)

    @property
    def exact_value(self) -> Decimal:
        """Mantissa scaled by the decimals, without any float rounding."""
        return self.value.scaleb(-self.value_decimals)


class FeedbackResponse(ProvenanceMixin, Base):
    __tablename__ = "feedback_responses"
    __table_args__ = (
        UniqueConstraint("chain_id", "tx_hash", "log_index", name="uq_feedback_responses_log"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    feedback_id: Mapped[int] = mapped_column(BigInteger, nullable=False, index=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    client_address: Mapped[str | None] = mapped_column(Text, nullable=True)
    responder: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_uri: Mapped[str | None] = mapped_column(Text, nullable=True)
    response_hash: Mapped[str | None] = mapped_column(Text, nullable=True)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class ActivityLog(ProvenanceMixin, Base):
    """Append-only feed row, one per indexed event (dedup by log position)."""

    __tablename__ = "activity_log"
    __table_args__ = (
        UniqueConstraint("chain_id", "tx_hash", "log_index", name="uq_activity_log"),
        Index("idx_activity_agent", "agent_id", "chain_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    agent_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    event_type: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    event_data: Mapped[dict[str, Any] | None] = mapped_column(JSONType, default=dict)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ---------------------------------------------------------------------------
# Marketplace
# ---------------------------------------------------------------------------


class StatusMixin:
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=STATUS_ACTIVE, index=True)


class Listing(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    __tablename__ = "marketplace_listings"
    __table_args__ = (UniqueConstraint("listing_id", "chain_id", name="uq_listings_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    listing_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    seller: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    nft_contract: Mapped[str] = mapped_column(Text, nullable=False)
    token_id: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buyer: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold_price: Mapped[Decimal | None] = mapped_column(ExactNumeric, nullable=True)


class Offer(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    __tablename__ = "marketplace_offers"
    __table_args__ = (UniqueConstraint("offer_id", "chain_id", name="uq_offers_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    offerer: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    nft_contract: Mapped[str] = mapped_column(Text, nullable=False)
    token_id: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)
    accepted_by: Mapped[str | None] = mapped_column(Text, nullable=True)


class CollectionOffer(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    __tablename__ = "marketplace_collection_offers"
    __table_args__ = (UniqueConstraint("offer_id", "chain_id", name="uq_collection_offers_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    offer_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    offerer: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    nft_contract: Mapped[str] = mapped_column(Text, nullable=False)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)
    accepted_by: Mapped[str | None] = mapped_column(Text, nullable=True)
    accepted_token_id: Mapped[Decimal | None] = mapped_column(ExactNumeric, nullable=True)


class Auction(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    """English auction."""

    __tablename__ = "marketplace_auctions"
    __table_args__ = (UniqueConstraint("auction_id", "chain_id", name="uq_auctions_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    auction_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    seller: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    nft_contract: Mapped[str] = mapped_column(Text, nullable=False)
    token_id: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    start_price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    reserve_price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    buy_now_price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    highest_bid: Mapped[Decimal] = mapped_column(ExactNumeric, default=Decimal(0), nullable=False)
    highest_bidder: Mapped[str | None] = mapped_column(Text, nullable=True)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    bid_count: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    winner: Mapped[str | None] = mapped_column(Text, nullable=True)
    settled_price: Mapped[Decimal | None] = mapped_column(ExactNumeric, nullable=True)


class AuctionBid(ProvenanceMixin, Base):
    __tablename__ = "marketplace_auction_bids"
    __table_args__ = (
        UniqueConstraint("chain_id", "tx_hash", "log_index", name="uq_auction_bids_log"),
        Index("idx_mab_auction", "auction_id", "chain_id"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    auction_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    bidder: Mapped[str] = mapped_column(Text, nullable=False)
    amount: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    log_index: Mapped[int] = mapped_column(Integer, nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class DutchAuction(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    """Dutch auction (linear price decay)."""

    __tablename__ = "marketplace_dutch_auctions"
    __table_args__ = (UniqueConstraint("auction_id", "chain_id", name="uq_dutch_auctions_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    auction_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    seller: Mapped[str] = mapped_column(Text, nullable=False)
    nft_contract: Mapped[str] = mapped_column(Text, nullable=False)
    token_id: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    start_price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    end_price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    start_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    end_time: Mapped[int] = mapped_column(BigInteger, nullable=False)
    buyer: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold_price: Mapped[Decimal | None] = mapped_column(ExactNumeric, nullable=True)


class Bundle(ProvenanceMixin, StatusMixin, TimestampMixin, Base):
    """Bundle listing. Token ids are kept as decimal strings inside the JSON array."""

    __tablename__ = "marketplace_bundles"
    __table_args__ = (UniqueConstraint("bundle_id", "chain_id", name="uq_bundles_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    bundle_id: Mapped[int] = mapped_column(BigInteger, nullable=False)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    seller: Mapped[str] = mapped_column(Text, nullable=False, index=True)
    nft_contracts: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    token_ids: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    payment_token: Mapped[str] = mapped_column(Text, nullable=False)
    price: Mapped[Decimal] = mapped_column(ExactNumeric, nullable=False)
    expiry: Mapped[int] = mapped_column(BigInteger, nullable=False)
    item_count: Mapped[int] = mapped_column(Integer, nullable=False)
    buyer: Mapped[str | None] = mapped_column(Text, nullable=True)
    sold_price: Mapped[Decimal | None] = mapped_column(ExactNumeric, nullable=True)


class MarketplaceConfig(Base):
    __tablename__ = "marketplace_config"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False, unique=True)
    platform_fee_bps: Mapped[int | None] = mapped_column(Integer, nullable=True)
    fee_recipient: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


class PaymentToken(Base):
    __tablename__ = "marketplace_payment_tokens"
    __table_args__ = (UniqueConstraint("chain_id", "token_address", name="uq_payment_tokens_natural"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    chain_id: Mapped[int] = mapped_column(Integer, nullable=False)
    token_address: Mapped[str] = mapped_column(Text, nullable=False)
    active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    block_number: Mapped[int | None] = mapped_column(BigInteger, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False
    )


# Tables whose rows carry (chain_id, block_number, block_timestamp); used by the backfill.
TIMESTAMPED_MODELS: tuple[type[Base], ...] = (
    Agent,
    Feedback,
    FeedbackResponse,
    ActivityLog,
    Listing,
    Offer,
    CollectionOffer,
    Auction,
    AuctionBid,
    DutchAuction,
    Bundle,
)
