"""
Environment settings.

Loads configuration from environment variables using pydantic-settings and
turns it into the immutable `IndexerConfig` consumed by the pipeline.
"""

from __future__ import annotations

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from agentdex.constants import (
    BLOCK_BATCH_SIZE,
    DEFAULT_IPFS_GATEWAY,
    METADATA_TIMEOUT_SECS,
    PARALLEL_BATCHES,
    POLL_INTERVAL_SECS,
)
from agentdex.core.config import ChainConfig, IndexerConfig

MAINNET_CHAIN_ID = 143
TESTNET_CHAIN_ID = 10143

MAINNET_IDENTITY = "0x8004A169FB4a3325136EB29fA0ceB6D2e539a432"
MAINNET_REPUTATION = "0x8004BAa17C55a88189AE136b182e5fdA19dE9b63"
MAINNET_START_BLOCK = 52_952_790

TESTNET_IDENTITY = "0x8004A818BFB912233c491871b3d84c89A494BD9e"
TESTNET_REPUTATION = "0x8004B663056A597Dffe9eCcC1965A193B7388713"
TESTNET_START_BLOCK = 10_391_697


class Settings(BaseSettings):
    """Indexer settings loaded from environment variables."""

    # Database
    database_url: str = "sqlite+aiosqlite:///./agentdex.db"
    database_echo: bool = False

    enable_indexer: bool = False

    # Chains
    index_mainnet: bool = True
    index_testnet: bool = True
    monad_mainnet_rpc: str = "https://rpc.monad.xyz"
    monad_testnet_rpc: str = "https://testnet-rpc.monad.xyz"
    mainnet_marketplace_address: str | None = None
    mainnet_marketplace_start_block: int | None = None
    testnet_marketplace_address: str | None = None
    testnet_marketplace_start_block: int | None = None

    # Pipeline tuning
    block_batch_size: int = Field(default=BLOCK_BATCH_SIZE, gt=0)
    parallel_batches: int = Field(default=PARALLEL_BATCHES, gt=0)
    poll_interval_secs: float = Field(default=POLL_INTERVAL_SECS, ge=0)
    rpc_timeout_secs: int = Field(default=20, gt=0)
    metadata_timeout_secs: float = Field(default=METADATA_TIMEOUT_SECS, gt=0)
    ipfs_gateway: str = DEFAULT_IPFS_GATEWAY

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("mainnet_marketplace_address", "testnet_marketplace_address")
    @classmethod
    def empty_address_is_none(cls, v: str | None) -> str | None:
        """Treat an empty marketplace address as unset."""
        if v is not None and not v.strip():
            return None
        return v

    @field_validator("ipfs_gateway")
    @classmethod
    def gateway_trailing_slash(cls, v: str) -> str:
        """Gateway URLs are joined with a CID, so keep exactly one trailing slash."""
        return v.rstrip("/") + "/"


def load_settings(**overrides) -> Settings:
    """Read settings from the environment (keyword overrides win)."""
    return Settings(**overrides)


def build_chain_configs(settings: Settings) -> tuple[ChainConfig, ...]:
    """Return the enabled chains. Raises ConfigError on invalid values."""
    chains: list[ChainConfig] = []
    if settings.index_mainnet:
        chains.append(
            ChainConfig(
                chain_id=MAINNET_CHAIN_ID,
                name="monad-mainnet",
                rpc_url=settings.monad_mainnet_rpc,
                identity_address=MAINNET_IDENTITY,
                reputation_address=MAINNET_REPUTATION,
                start_block=MAINNET_START_BLOCK,
                marketplace_address=settings.mainnet_marketplace_address,
                marketplace_start_block=settings.mainnet_marketplace_start_block,
            )
        )
    if settings.index_testnet:
        chains.append(
            ChainConfig(
                chain_id=TESTNET_CHAIN_ID,
                name="monad-testnet",
                rpc_url=settings.monad_testnet_rpc,
                identity_address=TESTNET_IDENTITY,
                reputation_address=TESTNET_REPUTATION,
                start_block=TESTNET_START_BLOCK,
                marketplace_address=settings.testnet_marketplace_address,
                marketplace_start_block=settings.testnet_marketplace_start_block,
            )
        )
    return tuple(chains)


def build_indexer_config(settings: Settings) -> IndexerConfig:
    """Freeze `settings` into the config object passed through the pipeline."""
    return IndexerConfig(
        chains=build_chain_configs(settings),
        batch_size=settings.block_batch_size,
        parallel_batches=settings.parallel_batches,
        poll_interval_s=settings.poll_interval_secs,
        metadata_timeout_s=settings.metadata_timeout_secs,
        ipfs_gateway=settings.ipfs_gateway,
        rpc_timeout_s=settings.rpc_timeout_secs,
    )
