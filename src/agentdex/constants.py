"""Shared indexer constants."""

from __future__ import annotations

# Both Monad RPCs cap eth_getLogs at a 100 block range.
BLOCK_BATCH_SIZE = 100
# Total blocks per cycle = BLOCK_BATCH_SIZE * PARALLEL_BATCHES.
PARALLEL_BATCHES = 10
POLL_INTERVAL_SECS = 2.0

METADATA_TIMEOUT_SECS = 10.0
DEFAULT_IPFS_GATEWAY = "https://ipfs.io/ipfs/"

# Cursor labels stored in indexer_state.contract_name
IDENTITY_LABEL = "IdentityRegistry"
REPUTATION_LABEL = "ReputationRegistry"
MARKETPLACE_LABEL = "MoltMarketplace"

BACKFILL_PROGRESS_EVERY = 50

# Marketplace entity statuses
STATUS_ACTIVE = "Active"
STATUS_SOLD = "Sold"
STATUS_ACCEPTED = "Accepted"
STATUS_CANCELLED = "Cancelled"
STATUS_ENDED = "Ended"
STATUS_RESERVE_NOT_MET = "ReserveNotMet"
