"""Marketplace dispatcher.

Handles listings, offers, collection offers, English and Dutch auctions,
bundles and admin config events. Whenever the NFT involved is an agent
identity token (nft_contract == the chain's identity registry), an extra
`marketplace:<Event>` activity row is written to that agent's feed.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any

from loguru import logger
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import (
    STATUS_ACCEPTED,
    STATUS_CANCELLED,
    STATUS_ENDED,
    STATUS_RESERVE_NOT_MET,
    STATUS_SOLD,
)
from agentdex.core.config import ChainConfig
from agentdex.core.interfaces import IChainProvider
from agentdex.core.models import Meta
from agentdex.decoding.calls import decode_output, encode_call
from agentdex.decoding.decoder import ParsedEvent
from agentdex.decoding.registries import (
    FEE_RECIPIENT,
    GET_BUNDLE_LISTING,
    PLATFORM_FEE_BPS,
    make_marketplace_registry,
)
from agentdex.indexing.context import ApplyContext, EventHandler, dispatch
from agentdex.storage.repositories import MarketplaceRepository
from agentdex.storage.repositories.marketplace import (
    AUCTION,
    BUNDLE,
    COLLECTION_OFFER,
    DUTCH_AUCTION,
    LISTING,
    OFFER,
    EntityKind,
)

MARKETPLACE_REGISTRY = make_marketplace_registry()

_MAX_AGENT_ID = 2**63


# ---------------------------------------------------------------------------
# Agent feed cross-posting
# ---------------------------------------------------------------------------


def token_to_agent_id(token_id: Any) -> int | None:
    """Parse a token id as an agent id; None when it is not a non-negative int64."""
    try:
        d = Decimal(token_id)
    except (InvalidOperation, TypeError, ValueError):
        return None
    if not d.is_finite() or d != d.to_integral_value():
        return None
    v = int(d)
    if not 0 <= v < _MAX_AGENT_ID:
        return None
    return v


async def maybe_agent_activity(
    ctx: ApplyContext,
    nft_contract: str | None,
    token_id: Any,
    event_name: str,
    event_data: dict[str, Any],
    meta: Meta,
) -> None:
    """Append `marketplace:<event_name>` to the agent's feed when the NFT is an agent."""
    if not nft_contract or nft_contract.lower() != ctx.chain.identity_address.lower():
        return
    agent_id = token_to_agent_id(token_id)
    if agent_id is None:
        return
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type=f"marketplace:{event_name}",
        event_data=event_data,
        meta=meta,
    )


async def _activity_for_existing(
    ctx: ApplyContext,
    kind: EntityKind,
    entity_id: int,
    event_name: str,
    event_data: dict[str, Any],
    meta: Meta,
    token_id: Any = None,
) -> None:
    target = await ctx.repos.marketplace.get_target(kind, entity_id, ctx.chain_id)
    if target is None:
        return
    nft_contract, stored_token = target
    await maybe_agent_activity(
        ctx, nft_contract, token_id if token_id is not None else stored_token, event_name, event_data, meta
    )


async def _transition(
    ctx: ApplyContext,
    ev: ParsedEvent,
    kind: EntityKind,
    id_field: str,
    status: str,
    event_data: dict[str, Any],
    **fields: Any,
) -> None:
    entity_id = ev[id_field]
    await ctx.repos.marketplace.transition(kind, entity_id, ctx.chain_id, status, **fields)
    await _activity_for_existing(ctx, kind, entity_id, ev.name, event_data, ev.meta)


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def on_listed(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_created(
        LISTING,
        ev["listingId"],
        ctx.chain_id,
        {
            "seller": ev["seller"],
            "nft_contract": ev["nftContract"],
            "token_id": Decimal(ev["tokenId"]),
            "payment_token": ev["paymentToken"],
            "price": Decimal(ev["price"]),
            "expiry": ev["expiry"],
        },
        ev.meta,
    )
    await maybe_agent_activity(
        ctx,
        ev["nftContract"],
        ev["tokenId"],
        ev.name,
        {
            "listing_id": ev["listingId"],
            "seller": ev["seller"],
            "price": str(ev["price"]),
            "payment_token": ev["paymentToken"],
        },
        ev.meta,
    )


async def on_bought(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx,
        ev,
        LISTING,
        "listingId",
        STATUS_SOLD,
        {"listing_id": ev["listingId"], "buyer": ev["buyer"], "price": str(ev["price"])},
        buyer=ev["buyer"],
        sold_price=Decimal(ev["price"]),
    )


async def on_listing_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(ctx, ev, LISTING, "listingId", STATUS_CANCELLED, {"listing_id": ev["listingId"]})


async def on_listing_price_updated(ctx: ApplyContext, ev: ParsedEvent) -> None:
    listing_id = ev["listingId"]
    await ctx.repos.marketplace.patch_active(LISTING, listing_id, ctx.chain_id, price=Decimal(ev["newPrice"]))
    await _activity_for_existing(
        ctx, LISTING, listing_id, ev.name, {"listing_id": listing_id, "new_price": str(ev["newPrice"])}, ev.meta
    )


# ---------------------------------------------------------------------------
# Offers
# ---------------------------------------------------------------------------


async def on_offer_made(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_created(
        OFFER,
        ev["offerId"],
        ctx.chain_id,
        {
            "offerer": ev["offerer"],
            "nft_contract": ev["nftContract"],
            "token_id": Decimal(ev["tokenId"]),
            "payment_token": ev["paymentToken"],
            "amount": Decimal(ev["amount"]),
            "expiry": ev["expiry"],
        },
        ev.meta,
    )
    await maybe_agent_activity(
        ctx,
        ev["nftContract"],
        ev["tokenId"],
        ev.name,
        {"offer_id": ev["offerId"], "offerer": ev["offerer"], "amount": str(ev["amount"])},
        ev.meta,
    )


async def on_offer_accepted(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx,
        ev,
        OFFER,
        "offerId",
        STATUS_ACCEPTED,
        {"offer_id": ev["offerId"], "seller": ev["seller"]},
        accepted_by=ev["seller"],
    )


async def on_offer_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(ctx, ev, OFFER, "offerId", STATUS_CANCELLED, {"offer_id": ev["offerId"]})


async def on_collection_offer_made(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_created(
        COLLECTION_OFFER,
        ev["offerId"],
        ctx.chain_id,
        {
            "offerer": ev["offerer"],
            "nft_contract": ev["nftContract"],
            "payment_token": ev["paymentToken"],
            "amount": Decimal(ev["amount"]),
            "expiry": ev["expiry"],
        },
        ev.meta,
    )


async def on_collection_offer_accepted(ctx: ApplyContext, ev: ParsedEvent) -> None:
    offer_id = ev["offerId"]
    await ctx.repos.marketplace.transition(
        COLLECTION_OFFER,
        offer_id,
        ctx.chain_id,
        STATUS_ACCEPTED,
        accepted_by=ev["seller"],
        accepted_token_id=Decimal(ev["tokenId"]),
    )
    await _activity_for_existing(
        ctx,
        COLLECTION_OFFER,
        offer_id,
        ev.name,
        {"offer_id": offer_id, "seller": ev["seller"], "token_id": str(ev["tokenId"])},
        ev.meta,
        token_id=ev["tokenId"],
    )


async def on_collection_offer_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.transition(COLLECTION_OFFER, ev["offerId"], ctx.chain_id, STATUS_CANCELLED)


# ---------------------------------------------------------------------------
# English auctions
# ---------------------------------------------------------------------------


async def on_auction_created(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_created(
        AUCTION,
        ev["auctionId"],
        ctx.chain_id,
        {
            "seller": ev["seller"],
            "nft_contract": ev["nftContract"],
            "token_id": Decimal(ev["tokenId"]),
            "payment_token": ev["paymentToken"],
            "start_price": Decimal(ev["startPrice"]),
            "reserve_price": Decimal(ev["reservePrice"]),
            "buy_now_price": Decimal(ev["buyNowPrice"]),
            "start_time": ev["startTime"],
            "end_time": ev["endTime"],
        },
        ev.meta,
    )
    await maybe_agent_activity(
        ctx,
        ev["nftContract"],
        ev["tokenId"],
        ev.name,
        {"auction_id": ev["auctionId"], "seller": ev["seller"], "start_price": str(ev["startPrice"])},
        ev.meta,
    )


async def on_bid_placed(ctx: ApplyContext, ev: ParsedEvent) -> None:
    auction_id = ev["auctionId"]
    await ctx.repos.marketplace.record_bid(
        auction_id=auction_id,
        chain_id=ctx.chain_id,
        bidder=ev["bidder"],
        amount=ev["amount"],
        meta=ev.meta,
    )
    await _activity_for_existing(
        ctx,
        AUCTION,
        auction_id,
        ev.name,
        {"auction_id": auction_id, "bidder": ev["bidder"], "amount": str(ev["amount"])},
        ev.meta,
    )


async def on_auction_settled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx,
        ev,
        AUCTION,
        "auctionId",
        STATUS_ENDED,
        {"auction_id": ev["auctionId"], "winner": ev["winner"], "amount": str(ev["amount"])},
        winner=ev["winner"],
        settled_price=Decimal(ev["amount"]),
    )


async def on_auction_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(ctx, ev, AUCTION, "auctionId", STATUS_CANCELLED, {"auction_id": ev["auctionId"]})


async def on_auction_extended(ctx: ApplyContext, ev: ParsedEvent) -> None:
    auction_id = ev["auctionId"]
    await ctx.repos.marketplace.patch_active(AUCTION, auction_id, ctx.chain_id, end_time=ev["newEndTime"])
    await _activity_for_existing(
        ctx, AUCTION, auction_id, ev.name, {"auction_id": auction_id, "new_end_time": ev["newEndTime"]}, ev.meta
    )


async def on_auction_buy_now(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx,
        ev,
        AUCTION,
        "auctionId",
        STATUS_ENDED,
        {"auction_id": ev["auctionId"], "buyer": ev["buyer"], "price": str(ev["price"])},
        winner=ev["buyer"],
        settled_price=Decimal(ev["price"]),
    )


async def on_auction_reserve_not_met(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx, ev, AUCTION, "auctionId", STATUS_RESERVE_NOT_MET, {"auction_id": ev["auctionId"]}
    )


# ---------------------------------------------------------------------------
# Dutch auctions
# ---------------------------------------------------------------------------


async def on_dutch_auction_created(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_created(
        DUTCH_AUCTION,
        ev["auctionId"],
        ctx.chain_id,
        {
            "seller": ev["seller"],
            "nft_contract": ev["nftContract"],
            "token_id": Decimal(ev["tokenId"]),
            "payment_token": ev["paymentToken"],
            "start_price": Decimal(ev["startPrice"]),
            "end_price": Decimal(ev["endPrice"]),
            "start_time": ev["startTime"],
            "end_time": ev["endTime"],
        },
        ev.meta,
    )
    await maybe_agent_activity(
        ctx,
        ev["nftContract"],
        ev["tokenId"],
        ev.name,
        {"auction_id": ev["auctionId"], "seller": ev["seller"], "start_price": str(ev["startPrice"])},
        ev.meta,
    )


async def on_dutch_auction_bought(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx,
        ev,
        DUTCH_AUCTION,
        "auctionId",
        STATUS_SOLD,
        {"auction_id": ev["auctionId"], "buyer": ev["buyer"], "price": str(ev["price"])},
        buyer=ev["buyer"],
        sold_price=Decimal(ev["price"]),
    )


async def on_dutch_auction_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await _transition(
        ctx, ev, DUTCH_AUCTION, "auctionId", STATUS_CANCELLED, {"auction_id": ev["auctionId"]}
    )


# ---------------------------------------------------------------------------
# Bundles
# ---------------------------------------------------------------------------


async def read_bundle_items(
    provider: IChainProvider, marketplace: str, bundle_id: int
) -> tuple[list[str], list[str]] | None:
    """Read (nft_contracts, token_ids) of a bundle; None when the call fails."""
    signature, out_types = GET_BUNDLE_LISTING
    try:
        raw = await provider.call(marketplace, encode_call(signature, [bundle_id]))
        _seller, nft_contracts, token_ids, *_ = decode_output(out_types, raw)
    except Exception as e:
        logger.warning(f"[Marketplace] getBundleListing({bundle_id}) failed, items left unset: {e}")
        return None
    return list(nft_contracts), [str(t) for t in token_ids]


async def on_bundle_listed(ctx: ApplyContext, ev: ParsedEvent) -> None:
    bundle_id = ev["bundleId"]
    values: dict[str, Any] = {
        "seller": ev["seller"],
        "payment_token": ev["paymentToken"],
        "price": Decimal(ev["price"]),
        "expiry": ev["expiry"],
        "item_count": ev["itemCount"],
    }
    # a failed read leaves the columns out: empty on insert, untouched on replay
    items = await read_bundle_items(ctx.provider, ev.meta.address, bundle_id)
    if items is not None:
        values["nft_contracts"], values["token_ids"] = items
    await ctx.repos.marketplace.upsert_created(BUNDLE, bundle_id, ctx.chain_id, values, ev.meta)


async def on_bundle_bought(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.transition(
        BUNDLE,
        ev["bundleId"],
        ctx.chain_id,
        STATUS_SOLD,
        buyer=ev["buyer"],
        sold_price=Decimal(ev["price"]),
    )


async def on_bundle_cancelled(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.transition(BUNDLE, ev["bundleId"], ctx.chain_id, STATUS_CANCELLED)


# ---------------------------------------------------------------------------
# Admin
# ---------------------------------------------------------------------------


async def on_platform_fee_updated(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_config(ctx.chain_id, platform_fee_bps=ev["newFee"])


async def on_fee_recipient_updated(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.upsert_config(ctx.chain_id, fee_recipient=ev["newRecipient"])


async def on_payment_token_added(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.set_payment_token(ctx.chain_id, ev["token"], True, ev.meta.block_number)


async def on_payment_token_removed(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await ctx.repos.marketplace.set_payment_token(ctx.chain_id, ev["token"], False, ev.meta.block_number)


MARKETPLACE_HANDLERS: dict[str, EventHandler] = {
    "Listed": on_listed,
    "Bought": on_bought,
    "ListingCancelled": on_listing_cancelled,
    "ListingPriceUpdated": on_listing_price_updated,
    "OfferMade": on_offer_made,
    "OfferAccepted": on_offer_accepted,
    "OfferCancelled": on_offer_cancelled,
    "CollectionOfferMade": on_collection_offer_made,
    "CollectionOfferAccepted": on_collection_offer_accepted,
    "CollectionOfferCancelled": on_collection_offer_cancelled,
    "AuctionCreated": on_auction_created,
    "BidPlaced": on_bid_placed,
    "AuctionSettled": on_auction_settled,
    "AuctionCancelled": on_auction_cancelled,
    "AuctionExtended": on_auction_extended,
    "AuctionBuyNow": on_auction_buy_now,
    "AuctionReserveNotMet": on_auction_reserve_not_met,
    "DutchAuctionCreated": on_dutch_auction_created,
    "DutchAuctionBought": on_dutch_auction_bought,
    "DutchAuctionCancelled": on_dutch_auction_cancelled,
    "BundleListed": on_bundle_listed,
    "BundleBought": on_bundle_bought,
    "BundleListingCancelled": on_bundle_cancelled,
    "PlatformFeeUpdated": on_platform_fee_updated,
    "FeeRecipientUpdated": on_fee_recipient_updated,
    "PaymentTokenAdded": on_payment_token_added,
    "PaymentTokenRemoved": on_payment_token_removed,
}


async def apply_marketplace_event(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await dispatch(MARKETPLACE_HANDLERS, ctx, ev)


# ---------------------------------------------------------------------------
# Startup config sync
# ---------------------------------------------------------------------------


async def sync_marketplace_config(
    chain: ChainConfig,
    provider: IChainProvider,
    session_maker: async_sessionmaker[AsyncSession],
) -> bool:
    """Read platformFeeBps / feeRecipient from the contract and upsert them.

    Initialization does not always emit events, so this runs at startup.
    Read failures are logged and skipped. Returns True when something was stored.
    """
    if not chain.marketplace_address:
        return False

    fee_bps: int | None = None
    recipient: str | None = None
    for (signature, out_types), label in ((PLATFORM_FEE_BPS, "platformFeeBps"), (FEE_RECIPIENT, "feeRecipient")):
        try:
            raw = await provider.call(chain.marketplace_address, encode_call(signature))
            (value,) = decode_output(out_types, raw)
        except Exception as e:
            logger.warning(f"[Marketplace] chain {chain.chain_id}: {label}() read failed: {e}")
            continue
        if label == "platformFeeBps":
            fee_bps = int(value)
        else:
            recipient = value

    if fee_bps is None and recipient is None:
        return False

    async with session_maker() as session:
        async with session.begin():
            await MarketplaceRepository(session).upsert_config(
                chain.chain_id, platform_fee_bps=fee_bps, fee_recipient=recipient
            )
    logger.info(
        f"[Marketplace] chain {chain.chain_id}: config synced (fee_bps={fee_bps}, recipient={recipient})"
    )
    return True
