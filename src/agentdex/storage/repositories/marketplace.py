"""
Marketplace repository.

Every marketplace entity (listing, offer, collection offer, auction, dutch
auction, bundle) is keyed by its on-chain id + chain id and follows the same
one-way state machine:

    Active -> Sold | Accepted | Cancelled | Ended | ReserveNotMet

Creation is an upsert on the natural key. Transitions and field patches are
conditional updates that only match rows still `Active`, so a terminal status
is never reverted and a transition for a row that does not exist yet is a
no-op.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any

from loguru import logger
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from agentdex.constants import STATUS_ACTIVE
from agentdex.core.models import Meta
from agentdex.storage.models import (
    Auction,
    AuctionBid,
    Base,
    Bundle,
    CollectionOffer,
    DutchAuction,
    Listing,
    MarketplaceConfig,
    Offer,
    PaymentToken,
    utcnow,
)
from agentdex.storage.upsert import dialect_insert


@dataclass(frozen=True)
class EntityKind:
    """A marketplace table and the column holding its on-chain id."""

    model: type[Base]
    key: str
    # creation fields a replayed create event must not overwrite
    mutable: tuple[str, ...] = ()


LISTING = EntityKind(Listing, "listing_id", mutable=("price",))
OFFER = EntityKind(Offer, "offer_id")
COLLECTION_OFFER = EntityKind(CollectionOffer, "offer_id")
AUCTION = EntityKind(Auction, "auction_id", mutable=("end_time",))
DUTCH_AUCTION = EntityKind(DutchAuction, "auction_id")
BUNDLE = EntityKind(Bundle, "bundle_id")


class MarketplaceRepository:
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    # ------------------------------------------------------------------
    # Entities
    # ------------------------------------------------------------------

    async def upsert_created(
        self,
        kind: EntityKind,
        entity_id: int,
        chain_id: int,
        values: dict[str, Any],
        meta: Meta,
    ) -> None:
        """Insert a newly created entity (status Active) or refresh its creation fields."""
        row = {
            kind.key: entity_id,
            "chain_id": chain_id,
            **values,
            "status": STATUS_ACTIVE,
            "block_number": meta.block_number,
            "block_timestamp": meta.block_timestamp,
            "tx_hash": meta.tx_hash,
            "updated_at": utcnow(),
        }
        stmt = dialect_insert(self.session, kind.model).values(**row)
        skip = {kind.key, "chain_id", "status", "block_timestamp", *kind.mutable}
        set_: dict[str, Any] = {k: getattr(stmt.excluded, k) for k in row if k not in skip}
        set_["block_timestamp"] = func.coalesce(
            stmt.excluded.block_timestamp, getattr(kind.model, "block_timestamp")
        )
        stmt = stmt.on_conflict_do_update(index_elements=[kind.key, "chain_id"], set_=set_)
        await self.session.execute(stmt)

    async def _update_active(
        self,
        kind: EntityKind,
        entity_id: int,
        chain_id: int,
        values: dict[str, Any],
    ) -> bool:
        model = kind.model
        stmt = (
            update(model)
            .where(
                getattr(model, kind.key) == entity_id,
                getattr(model, "chain_id") == chain_id,
                getattr(model, "status") == STATUS_ACTIVE,
            )
            .values(**values, updated_at=utcnow())
            .execution_options(synchronize_session=False)
        )
        result = await self.session.execute(stmt)
        if result.rowcount == 0:
            logger.debug(
                f"[Marketplace] No active {model.__tablename__} row for id {entity_id} "
                f"on chain {chain_id}; update skipped"
            )
            return False
        return True

    async def transition(
        self,
        kind: EntityKind,
        entity_id: int,
        chain_id: int,
        status: str,
        **fields: Any,
    ) -> bool:
        """Move an Active entity to `status`, setting `fields`. False when nothing matched."""
        return await self._update_active(kind, entity_id, chain_id, {"status": status, **fields})

    async def patch_active(self, kind: EntityKind, entity_id: int, chain_id: int, **fields: Any) -> bool:
        """Patch fields of an Active entity without changing its status."""
        return await self._update_active(kind, entity_id, chain_id, fields)

    async def get_target(
        self, kind: EntityKind, entity_id: int, chain_id: int
    ) -> tuple[str, Decimal | None] | None:
        """Return (nft_contract, token_id) of an entity, or None when unknown.

        Collection offers have no token id until accepted; it is returned as None.
        """
        model = kind.model
        token_col = getattr(model, "token_id", None)
        columns = [getattr(model, "nft_contract")]
        if token_col is not None:
            columns.append(token_col)
        stmt = select(*columns).where(
            getattr(model, kind.key) == entity_id,
            getattr(model, "chain_id") == chain_id,
        )
        row = (await self.session.execute(stmt)).first()
        if row is None:
            return None
        return row[0], (row[1] if token_col is not None else None)

    # ------------------------------------------------------------------
    # Bids
    # ------------------------------------------------------------------

    async def record_bid(
        self,
        *,
        auction_id: int,
        chain_id: int,
        bidder: str,
        amount: int,
        meta: Meta,
    ) -> bool:
        """Store a bid once per log and bump the auction's highest bid / bid count."""
        stmt = (
            dialect_insert(self.session, AuctionBid)
            .values(
                auction_id=auction_id,
                chain_id=chain_id,
                bidder=bidder,
                amount=Decimal(amount),
                block_number=meta.block_number,
                block_timestamp=meta.block_timestamp,
                tx_hash=meta.tx_hash,
                log_index=meta.log_index,
            )
            .on_conflict_do_nothing(index_elements=["chain_id", "tx_hash", "log_index"])
            .returning(AuctionBid.id)
        )
        inserted = (await self.session.execute(stmt)).scalar_one_or_none() is not None
        if not inserted:
            return False
        await self.patch_active(
            AUCTION,
            auction_id,
            chain_id,
            highest_bid=Decimal(amount),
            highest_bidder=bidder,
            bid_count=Auction.bid_count + 1,
        )
        return True

    # ------------------------------------------------------------------
    # Config / payment tokens
    # ------------------------------------------------------------------

    async def upsert_config(
        self,
        chain_id: int,
        *,
        platform_fee_bps: int | None = None,
        fee_recipient: str | None = None,
    ) -> None:
        """Upsert the chain's marketplace config; None leaves a field unchanged."""
        stmt = dialect_insert(self.session, MarketplaceConfig).values(
            chain_id=chain_id,
            platform_fee_bps=platform_fee_bps,
            fee_recipient=fee_recipient,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["chain_id"],
            set_={
                "platform_fee_bps": func.coalesce(
                    stmt.excluded.platform_fee_bps, MarketplaceConfig.platform_fee_bps
                ),
                "fee_recipient": func.coalesce(stmt.excluded.fee_recipient, MarketplaceConfig.fee_recipient),
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def set_payment_token(self, chain_id: int, token_address: str, active: bool, block_number: int) -> None:
        stmt = dialect_insert(self.session, PaymentToken).values(
            chain_id=chain_id,
            token_address=token_address.lower(),
            active=active,
            block_number=block_number,
            updated_at=utcnow(),
        )
        stmt = stmt.on_conflict_do_update(
            index_elements=["chain_id", "token_address"],
            set_={
                "active": stmt.excluded.active,
                "block_number": stmt.excluded.block_number,
                "updated_at": stmt.excluded.updated_at,
            },
        )
        await self.session.execute(stmt)

    async def get_config(self, chain_id: int) -> MarketplaceConfig | None:
        stmt = select(MarketplaceConfig).where(MarketplaceConfig.chain_id == chain_id)
        return (await self.session.execute(stmt)).scalar_one_or_none()
