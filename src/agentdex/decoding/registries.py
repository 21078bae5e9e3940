"""Event registries for the ERC-8004 registries and the marketplace.

All registries are built from Solidity signatures via `make_registry` and can
be merged with `{**a, **b}` syntax.

Available registries:
- Identity registry events: make_identity_registry()
- Reputation registry events: make_reputation_registry()
- Marketplace events: make_marketplace_registry()
"""

from __future__ import annotations

from .registry_builder import make_registry
from .specs import EventRegistry


# -------------------------
# Identity registry
# -------------------------

IDENTITY_EVENTS = [
    "Registered(uint256 indexed agentId, string agentURI, address indexed owner)",
    "URIUpdated(uint256 indexed agentId, string newURI, address indexed updatedBy)",
    "MetadataSet(uint256 indexed agentId, string indexed indexedMetadataKey, string metadataKey, bytes metadataValue)",
]


def make_identity_registry() -> EventRegistry:
    """Return registry for agent identity events."""
    return make_registry(IDENTITY_EVENTS)


# -------------------------
# Reputation registry
# -------------------------

REPUTATION_EVENTS = [
    "NewFeedback(uint256 indexed agentId, address indexed clientAddress, uint64 feedbackIndex, int128 value, uint8 valueDecimals, string indexed indexedTag1, string tag1, string tag2, string endpoint, string feedbackURI, bytes32 feedbackHash)",
    "FeedbackRevoked(uint256 indexed agentId, address indexed clientAddress, uint64 indexed feedbackIndex)",
    "ResponseAppended(uint256 indexed agentId, address indexed clientAddress, uint64 feedbackIndex, address indexed responder, string responseURI, bytes32 responseHash)",
]


def make_reputation_registry() -> EventRegistry:
    """Return registry for reputation feedback events."""
    return make_registry(REPUTATION_EVENTS)


# -------------------------
# Marketplace
# -------------------------

MARKETPLACE_EVENTS = [
    # fixed-price listings
    "Listed(uint256 indexed listingId, address indexed seller, address indexed nftContract, uint256 tokenId, address paymentToken, uint256 price, uint256 expiry)",
    "Bought(uint256 indexed listingId, address indexed buyer, uint256 price)",
    "ListingCancelled(uint256 indexed listingId)",
    "ListingPriceUpdated(uint256 indexed listingId, uint256 newPrice)",
    # offers
    "OfferMade(uint256 indexed offerId, address indexed offerer, address indexed nftContract, uint256 tokenId, address paymentToken, uint256 amount, uint256 expiry)",
    "OfferAccepted(uint256 indexed offerId, address indexed seller)",
    "OfferCancelled(uint256 indexed offerId)",
    "CollectionOfferMade(uint256 indexed offerId, address indexed offerer, address indexed nftContract, address paymentToken, uint256 amount, uint256 expiry)",
    "CollectionOfferAccepted(uint256 indexed offerId, address indexed seller, uint256 tokenId)",
    "CollectionOfferCancelled(uint256 indexed offerId)",
    # english auctions
    "AuctionCreated(uint256 indexed auctionId, address indexed seller, address indexed nftContract, uint256 tokenId, address paymentToken, uint256 startPrice, uint256 reservePrice, uint256 buyNowPrice, uint256 startTime, uint256 endTime)",
    "BidPlaced(uint256 indexed auctionId, address indexed bidder, uint256 amount)",
    "AuctionSettled(uint256 indexed auctionId, address indexed winner, uint256 amount)",
    "AuctionCancelled(uint256 indexed auctionId)",
    "AuctionExtended(uint256 indexed auctionId, uint256 newEndTime)",
    "AuctionBuyNow(uint256 indexed auctionId, address indexed buyer, uint256 price)",
    "AuctionReserveNotMet(uint256 indexed auctionId)",
    # dutch auctions
    "DutchAuctionCreated(uint256 indexed auctionId, address indexed seller, address indexed nftContract, uint256 tokenId, address paymentToken, uint256 startPrice, uint256 endPrice, uint256 startTime, uint256 endTime)",
    "DutchAuctionBought(uint256 indexed auctionId, address indexed buyer, uint256 price)",
    "DutchAuctionCancelled(uint256 indexed auctionId)",
    # bundles
    "BundleListed(uint256 indexed bundleId, address indexed seller, uint256 itemCount, address paymentToken, uint256 price, uint256 expiry)",
    "BundleBought(uint256 indexed bundleId, address indexed buyer, uint256 price)",
    "BundleListingCancelled(uint256 indexed bundleId)",
    # admin
    "PlatformFeeUpdated(uint256 oldFee, uint256 newFee)",
    "FeeRecipientUpdated(address indexed oldRecipient, address indexed newRecipient)",
    "PaymentTokenAdded(address indexed token)",
    "PaymentTokenRemoved(address indexed token)",
]


def make_marketplace_registry() -> EventRegistry:
    """Return registry for every marketplace event."""
    return make_registry(MARKETPLACE_EVENTS)


# Read-only marketplace calls: (signature, output types)
GET_BUNDLE_LISTING = (
    "getBundleListing(uint256)",
    ["address", "address[]", "uint256[]", "address", "uint256", "uint256", "bool"],
)
PLATFORM_FEE_BPS = ("platformFeeBps()", ["uint256"])
FEE_RECIPIENT = ("feeRecipient()", ["address"])
