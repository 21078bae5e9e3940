"""Generic event decoder.

This module translates raw logs into `ParsedEvent` using an `EventRegistry`
built from event signatures. Indexed parameters are read from topics; the
data section is decoded with eth_abi so dynamic types (string, bytes,
arrays) are supported.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

from eth_abi import decode as abi_decode
from eth_abi.exceptions import DecodingError

from agentdex.core.errors import DecodeError
from agentdex.core.models import Meta
from agentdex.decoding.specs import EventRegistry, EventSpec
from agentdex.decoding.utils import normalize_abi_value, parse_topic_field

# ---------- parsed event ----------


@dataclass(slots=True)
class ParsedEvent:
    """Decoded event: name, provenance and a flat dict of parameter values."""

    name: str
    meta: Meta
    values: dict[str, Any]

    def __getitem__(self, key: str) -> Any:
        return self.values[key]


# ---------- helper functions ----------


def _validate_and_get_spec(topics: Sequence[str], registry: EventRegistry) -> EventSpec | None:
    """Return the spec for topic0, or None when there is no topic or it is unknown."""
    if not topics:
        return None
    return registry.get(topics[0].lower())


def _decode_topics(spec: EventSpec, topics: Sequence[str]) -> dict[str, Any]:
    if len(topics) != len(spec.topic_fields) + 1:
        raise DecodeError(
            f"{spec.name}: expected {len(spec.topic_fields) + 1} topics, got {len(topics)}"
        )
    out: dict[str, Any] = {}
    for tf in spec.topic_fields:
        try:
            out[tf.name] = parse_topic_field(topics[tf.index], tf)
        except ValueError as e:
            raise DecodeError(f"{spec.name}.{tf.name}: {e}") from e
    return out


def _decode_data(spec: EventSpec, data: bytes) -> dict[str, Any]:
    if not spec.data_fields:
        return {}
    try:
        raw = abi_decode(spec.data_types, data)
    except (DecodingError, UnicodeDecodeError, OverflowError) as e:
        raise DecodeError(f"{spec.name}: bad data payload ({e})") from e
    fields = sorted(spec.data_fields, key=lambda f: f.position)
    return {f.name: normalize_abi_value(v, f.type) for f, v in zip(fields, raw)}


# ---------- main decoder ----------


def decode_event(
    *,
    topics: Sequence[str],
    data: bytes,
    meta: Meta,
    registry: EventRegistry,
) -> ParsedEvent | None:
    """Decode a raw log (topics + data) into a `ParsedEvent`.

    Returns None when topic0 is not in `registry`. Raises `DecodeError` when
    topic0 is known but the topics or data do not match the signature.
    """
    spec = _validate_and_get_spec(topics, registry)
    if spec is None:
        return None

    values = _decode_topics(spec, topics)
    values.update(_decode_data(spec, data))
    return ParsedEvent(name=spec.name, meta=meta, values=values)
