"""Decoding utilities: topic parsers and ABI value normalization."""

from __future__ import annotations

from typing import Any

from .specs import TopicFieldSpec


def _int_bits(typ: str, prefix: str) -> int:
    rest = typ[len(prefix):]
    return int(rest) if rest else 256


def parse_topic_field(topic_hex: str, spec: TopicFieldSpec) -> Any:
    """Parse one indexed topic according to the declared type."""
    t = spec.type
    h = topic_hex.lower()
    if len(h) != 66 or not h.startswith("0x"):
        raise ValueError(f"topic is not 32 bytes: {topic_hex!r}")
    if t == "address":
        return "0x" + h[-40:]
    if t.startswith("uint"):
        return int(h, 16)
    if t.startswith("int"):
        v = int(h, 16)
        bits = _int_bits(t, "int")
        # two's complement over the full word, then range check
        if v >= 2**255:
            v -= 2**256
        if not -(2 ** (bits - 1)) <= v < 2 ** (bits - 1):
            raise ValueError(f"{t} out of range: {v}")
        return v
    if t == "bool":
        return int(h, 16) != 0
    # bytes32, and hashed dynamic types (string/bytes/arrays): raw hex
    return h


def normalize_abi_value(value: Any, typ: str) -> Any:
    """Convert an eth_abi output into the plain representation used downstream.

    - addresses → lowercase 0x-hex
    - bytes / bytesN → 0x-hex
    - arrays → lists (recursively)
    """
    if typ.endswith("]"):
        inner = typ[: typ.rindex("[")]
        return [normalize_abi_value(v, inner) for v in value]
    if typ == "address":
        return str(value).lower()
    if typ.startswith("bytes"):
        return "0x" + bytes(value).hex()
    return value
