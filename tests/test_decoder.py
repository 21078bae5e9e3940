import pytest
from eth_abi import encode as abi_encode
from eth_utils import keccak

from agentdex.core.errors import DecodeError
from agentdex.core.models import Meta
from agentdex.decoding.calls import decode_output, encode_call
from agentdex.decoding.decoder import decode_event
from agentdex.decoding.registries import make_identity_registry, make_reputation_registry
from agentdex.decoding.specs import TopicFieldSpec
from agentdex.decoding.utils import normalize_abi_value, parse_topic_field

from conftest import ALICE, IDENTITY, REPUTATION, build_log


def _meta(address: str = IDENTITY) -> Meta:
    return Meta(block_number=1000, block_timestamp=None, tx_hash="0xtx", log_index=0, address=address)


def test_decode_registered_with_dynamic_string() -> None:
    registry = make_identity_registry()
    lg = build_log(registry, "Registered", address=IDENTITY, agentId=7, agentURI="ipfs://QmAgent", owner=ALICE)

    parsed = decode_event(topics=lg.topics, data=lg.data_bytes(), meta=_meta(), registry=registry)

    assert parsed is not None
    assert parsed.name == "Registered"
    assert parsed["agentId"] == 7
    assert parsed["agentURI"] == "ipfs://QmAgent"
    assert parsed["owner"] == ALICE


def test_decode_metadata_set_keeps_indexed_string_hash() -> None:
    registry = make_identity_registry()
    lg = build_log(
        registry,
        "MetadataSet",
        address=IDENTITY,
        agentId=1,
        indexedMetadataKey="color",
        metadataKey="color",
        metadataValue=b"\x01\x02",
    )

    parsed = decode_event(topics=lg.topics, data=lg.data_bytes(), meta=_meta(), registry=registry)

    assert parsed is not None
    assert parsed["indexedMetadataKey"] == "0x" + keccak(text="color").hex()
    assert parsed["metadataKey"] == "color"
    assert parsed["metadataValue"] == "0x0102"


def test_decode_negative_int128_and_bytes32() -> None:
    registry = make_reputation_registry()
    lg = build_log(
        registry,
        "NewFeedback",
        address=REPUTATION,
        agentId=3,
        clientAddress=ALICE,
        feedbackIndex=1,
        value=-250,
        valueDecimals=2,
        indexedTag1="speed",
        tag1="speed",
        tag2="",
        endpoint="",
        feedbackURI="",
        feedbackHash=b"\x11" * 32,
    )

    parsed = decode_event(topics=lg.topics, data=lg.data_bytes(), meta=_meta(REPUTATION), registry=registry)

    assert parsed is not None
    assert parsed["value"] == -250
    assert parsed["valueDecimals"] == 2
    assert parsed["feedbackHash"] == "0x" + "11" * 32


def test_decode_event_unknown_topic() -> None:
    parsed = decode_event(topics=["0x" + "99" * 32], data=b"", meta=_meta(), registry=make_identity_registry())
    assert parsed is None


def test_decode_event_without_topics() -> None:
    assert decode_event(topics=[], data=b"", meta=_meta(), registry=make_identity_registry()) is None


def test_decode_event_wrong_topic_count() -> None:
    registry = make_identity_registry()
    lg = build_log(registry, "Registered", address=IDENTITY, agentId=7, agentURI="x", owner=ALICE)

    with pytest.raises(DecodeError):
        decode_event(topics=lg.topics[:2], data=lg.data_bytes(), meta=_meta(), registry=registry)


def test_decode_event_truncated_data() -> None:
    registry = make_identity_registry()
    lg = build_log(registry, "Registered", address=IDENTITY, agentId=7, agentURI="a long agent uri", owner=ALICE)

    with pytest.raises(DecodeError):
        decode_event(topics=lg.topics, data=lg.data_bytes()[:40], meta=_meta(), registry=registry)


def test_parse_topic_field_signed_range() -> None:
    spec = TopicFieldSpec("v", 1, "int8")
    assert parse_topic_field("0x" + "ff" * 32, spec) == -1
    with pytest.raises(ValueError):
        parse_topic_field("0x" + "00" * 31 + "ff", spec)


def test_parse_topic_field_rejects_short_topic() -> None:
    with pytest.raises(ValueError):
        parse_topic_field("0x1234", TopicFieldSpec("a", 1, "address"))


def test_normalize_abi_value_arrays() -> None:
    value = ("0xABCDEFabcdefABCDEFabcdefABCDEFabcdefABCD",)
    assert normalize_abi_value(value, "address[]") == ["0xabcdefabcdefabcdefabcdefabcdefabcdefabcd"]


def test_encode_call_and_decode_output() -> None:
    data = encode_call("getBundleListing(uint256)", [7])
    assert len(data) == 36
    assert data[4:] == (7).to_bytes(32, "big")

    raw = abi_encode(["address", "address[]", "uint256[]"], [ALICE, [IDENTITY], [5]])
    seller, contracts, token_ids = decode_output(["address", "address[]", "uint256[]"], raw)
    assert seller == ALICE
    assert contracts == [IDENTITY]
    assert token_ids == [5]


def test_encode_call_arity() -> None:
    with pytest.raises(ValueError):
        encode_call("getBundleListing(uint256)", [])


def test_decode_output_bad_payload() -> None:
    with pytest.raises(DecodeError):
        decode_output(["uint256"], b"\x01")
