"""Immutable runtime configuration.

`ChainConfig` and `IndexerConfig` are built once at startup (see
`agentdex.core.settings.build_indexer_config`) and passed explicitly into the
pipeline. Nothing below the CLI reads the environment.
"""

from __future__ import annotations

from dataclasses import dataclass, field

import httpx
from eth_utils import is_address

from agentdex.constants import (
    BLOCK_BATCH_SIZE,
    DEFAULT_IPFS_GATEWAY,
    METADATA_TIMEOUT_SECS,
    PARALLEL_BATCHES,
    POLL_INTERVAL_SECS,
)
from agentdex.core.errors import ConfigError


def normalize_address(value: str, *, what: str) -> str:
    """Return `value` as lowercase 0x-hex or raise ConfigError."""
    if not isinstance(value, str) or not is_address(value):
        raise ConfigError(f"Invalid {what} address: {value!r}")
    return value.lower()


def validate_rpc_url(value: str, *, chain_id: int) -> str:
    """Reject RPC URLs that are not absolute http(s) URLs."""
    try:
        url = httpx.URL(value)
    except (httpx.InvalidURL, TypeError) as e:
        raise ConfigError(f"Chain {chain_id}: unparseable RPC URL {value!r}") from e
    if url.scheme not in ("http", "https") or not url.host:
        raise ConfigError(f"Chain {chain_id}: RPC URL must be http(s), got {value!r}")
    return value


@dataclass(frozen=True)
class ChainConfig:
    """Static per-chain configuration (addresses are lowercase 0x-hex)."""

    chain_id: int
    name: str
    rpc_url: str
    identity_address: str
    reputation_address: str
    start_block: int
    marketplace_address: str | None = None
    marketplace_start_block: int | None = None

    def __post_init__(self) -> None:
        # frozen: normalize through object.__setattr__
        object.__setattr__(self, "rpc_url", validate_rpc_url(self.rpc_url, chain_id=self.chain_id))
        object.__setattr__(
            self, "identity_address", normalize_address(self.identity_address, what="identity")
        )
        object.__setattr__(
            self, "reputation_address", normalize_address(self.reputation_address, what="reputation")
        )
        if self.marketplace_address:
            object.__setattr__(
                self,
                "marketplace_address",
                normalize_address(self.marketplace_address, what="marketplace"),
            )
        else:
            object.__setattr__(self, "marketplace_address", None)
        if self.start_block < 0:
            raise ConfigError(f"Chain {self.chain_id}: start block must be >= 0")

    @property
    def effective_marketplace_start(self) -> int:
        """Marketplace start block, falling back to the chain start block."""
        if self.marketplace_start_block is None:
            return self.start_block
        return self.marketplace_start_block


@dataclass(frozen=True)
class IndexerConfig:
    """Configuration for the indexer loop and its collaborators."""

    chains: tuple[ChainConfig, ...] = field(default_factory=tuple)
    batch_size: int = BLOCK_BATCH_SIZE
    parallel_batches: int = PARALLEL_BATCHES
    poll_interval_s: float = POLL_INTERVAL_SECS
    metadata_timeout_s: float = METADATA_TIMEOUT_SECS
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY
    rpc_timeout_s: int = 20

    def __post_init__(self) -> None:
        if self.batch_size < 1:
            raise ConfigError("batch_size must be >= 1")
        if self.parallel_batches < 1:
            raise ConfigError("parallel_batches must be >= 1")

    def chain(self, chain_id: int) -> ChainConfig | None:
        """Return the config for `chain_id`, or None when it is not configured."""
        for c in self.chains:
            if c.chain_id == chain_id:
                return c
        return None
