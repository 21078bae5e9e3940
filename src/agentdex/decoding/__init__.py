"""Event decoding.

This package provides:
- Event specification system (EventSpec, TopicFieldSpec, DataFieldSpec)
- Generic decoder that translates raw logs into ParsedEvent objects
- Registries for the identity, reputation and marketplace contracts
- ABI helpers for read-only contract calls
"""

from agentdex.decoding.calls import decode_output, encode_call
from agentdex.decoding.decoder import ParsedEvent, decode_event
from agentdex.decoding.registries import (
    make_identity_registry,
    make_marketplace_registry,
    make_reputation_registry,
)
from agentdex.decoding.registry_builder import event_spec_from_signature, function_selector, make_registry
from agentdex.decoding.specs import (
    DataFieldSpec,
    EventRegistry,
    EventSpec,
    TopicFieldSpec,
    get_event_registry_topic0s,
)

__all__ = [
    "ParsedEvent",
    "decode_event",
    "decode_output",
    "encode_call",
    "event_spec_from_signature",
    "function_selector",
    "make_registry",
    "make_identity_registry",
    "make_marketplace_registry",
    "make_reputation_registry",
    "DataFieldSpec",
    "EventRegistry",
    "EventSpec",
    "TopicFieldSpec",
    "get_event_registry_topic0s",
]
