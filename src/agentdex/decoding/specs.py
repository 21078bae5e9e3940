"""Event specification primitives and registry typing.

Defines lightweight dataclasses to describe how to decode events:
- `TopicFieldSpec` / `DataFieldSpec`: typed sources for indexed topics / ABI data
- `EventSpec`: one event rule (topic0, name, fields)
- `EventRegistry`: mapping from topic0 → EventSpec
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass


@dataclass(frozen=True)
class TopicFieldSpec:
    """Describe one indexed topic field (by 1-based topic index and ABI type)."""

    name: str
    index: int
    type: str  # e.g., "address", "uint256", "string" (kept as its hash)


@dataclass(frozen=True)
class DataFieldSpec:
    """Describe one non-indexed parameter (position inside the ABI-encoded data)."""

    name: str
    position: int
    type: str  # e.g., "address", "uint256", "string", "bytes", "int128"


@dataclass(frozen=True)
class EventSpec:
    """One event decoding rule."""

    topic0: str
    name: str
    signature: str  # canonical, e.g. "Listed(uint256,address,...)"
    topic_fields: tuple[TopicFieldSpec, ...]
    data_fields: tuple[DataFieldSpec, ...]

    @property
    def data_types(self) -> list[str]:
        """ABI types of the data section in encoding order."""
        return [f.type for f in sorted(self.data_fields, key=lambda f: f.position)]


# The full registry keyed by topic0 (lowercased 0x-hex).
EventRegistry = dict[str, EventSpec]


def get_event_specs_topic0s(event_specs: Iterable[EventSpec]) -> list[str]:
    return [event_spec.topic0 for event_spec in event_specs]


def get_event_registry_topic0s(registry: EventRegistry) -> list[str]:
    return get_event_specs_topic0s(registry.values())


def spec_by_name(registry: EventRegistry, name: str) -> EventSpec:
    """Return the spec named `name` (KeyError when absent)."""
    for spec in registry.values():
        if spec.name == name:
            return spec
    raise KeyError(name)
