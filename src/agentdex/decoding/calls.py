"""ABI encoding for read-only contract calls."""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi import encode as abi_encode
from eth_abi.exceptions import DecodingError

from agentdex.core.errors import DecodeError
from agentdex.decoding.registry_builder import split_signature, function_selector
from agentdex.decoding.utils import normalize_abi_value


def encode_call(signature: str, args: Sequence[Any] = ()) -> bytes:
    """Return selector + ABI-encoded arguments for `signature`."""
    _, params = split_signature(signature)
    types = [p.split()[0] for p in params]
    if len(types) != len(args):
        raise ValueError(f"{signature}: expected {len(types)} args, got {len(args)}")
    return function_selector(signature) + (abi_encode(types, list(args)) if types else b"")


def decode_output(types: Sequence[str], data: bytes) -> list[Any]:
    """Decode call output into normalized values (see `normalize_abi_value`)."""
    try:
        raw = abi_decode(list(types), data)
    except (DecodingError, UnicodeDecodeError, OverflowError) as e:
        raise DecodeError(f"bad call output ({e})") from e
    return [normalize_abi_value(v, t) for v, t in zip(raw, types)]
