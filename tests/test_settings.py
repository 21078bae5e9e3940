import pytest

from agentdex.core.config import ChainConfig, IndexerConfig, normalize_address
from agentdex.core.errors import ConfigError
from agentdex.core.settings import (
    MAINNET_CHAIN_ID,
    TESTNET_CHAIN_ID,
    build_chain_configs,
    build_indexer_config,
    load_settings,
)

from conftest import IDENTITY, REPUTATION


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch, tmp_path) -> None:
    # keep a developer's .env out of the way
    monkeypatch.chdir(tmp_path)
    for name in (
        "INDEX_MAINNET",
        "INDEX_TESTNET",
        "MAINNET_MARKETPLACE_ADDRESS",
        "TESTNET_MARKETPLACE_ADDRESS",
        "MONAD_MAINNET_RPC",
        "BLOCK_BATCH_SIZE",
        "IPFS_GATEWAY",
    ):
        monkeypatch.delenv(name, raising=False)


def test_defaults_build_both_chains() -> None:
    config = build_indexer_config(load_settings())

    assert [c.chain_id for c in config.chains] == [MAINNET_CHAIN_ID, TESTNET_CHAIN_ID]
    assert config.batch_size == 100
    assert config.parallel_batches == 10
    assert config.poll_interval_s == 2.0
    assert config.ipfs_gateway == "https://ipfs.io/ipfs/"
    mainnet = config.chain(MAINNET_CHAIN_ID)
    assert mainnet.identity_address == "0x8004a169fb4a3325136eb29fa0ceb6d2e539a432"
    assert mainnet.start_block == 52_952_790
    assert mainnet.marketplace_address is None


def test_env_overrides(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("INDEX_TESTNET", "false")
    monkeypatch.setenv("BLOCK_BATCH_SIZE", "50")
    monkeypatch.setenv("MAINNET_MARKETPLACE_ADDRESS", "0x" + "AB" * 20)
    monkeypatch.setenv("IPFS_GATEWAY", "https://gw.example/ipfs")

    settings = load_settings()
    config = build_indexer_config(settings)

    assert [c.chain_id for c in config.chains] == [MAINNET_CHAIN_ID]
    assert config.batch_size == 50
    assert config.chains[0].marketplace_address == "0x" + "ab" * 20
    assert config.chains[0].effective_marketplace_start == 52_952_790
    assert settings.ipfs_gateway == "https://gw.example/ipfs/"


def test_empty_marketplace_address_is_unset(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAINNET_MARKETPLACE_ADDRESS", "  ")
    assert build_chain_configs(load_settings())[0].marketplace_address is None


def test_invalid_marketplace_address_is_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MAINNET_MARKETPLACE_ADDRESS", "0x1234")
    with pytest.raises(ConfigError):
        build_chain_configs(load_settings())


def test_invalid_rpc_url_is_fatal(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("MONAD_MAINNET_RPC", "ws://rpc.monad.xyz")
    with pytest.raises(ConfigError):
        build_chain_configs(load_settings())


def test_marketplace_start_block_override() -> None:
    chain = ChainConfig(
        chain_id=1,
        name="test",
        rpc_url="http://localhost:8545",
        identity_address=IDENTITY,
        reputation_address=REPUTATION,
        start_block=10,
        marketplace_address="0x" + "ab" * 20,
        marketplace_start_block=500,
    )
    assert chain.effective_marketplace_start == 500


def test_indexer_config_validation() -> None:
    with pytest.raises(ConfigError):
        IndexerConfig(batch_size=0)
    with pytest.raises(ConfigError):
        IndexerConfig(parallel_batches=0)


def test_normalize_address() -> None:
    assert normalize_address(IDENTITY.upper().replace("0X", "0x"), what="x") == IDENTITY
    with pytest.raises(ConfigError):
        normalize_address("not-an-address", what="x")
