"""Registry builder utilities for creating event registries from signatures.

This module provides the core tools for building EventRegistry instances:
- Generic `make_registry()` function for single or multiple signatures
- Signature parsing helpers for converting Solidity event signatures to EventSpec
- `function_selector()` for read-only contract calls
"""

from __future__ import annotations

from eth_utils import keccak

from .specs import DataFieldSpec, EventRegistry, EventSpec, TopicFieldSpec


# ---- Helpers: build specs from event signature ----
def _split_params(params_str: str) -> list[str]:
    """Split the parameter list by commas while respecting nested tuple types."""
    items: list[str] = []
    depth = 0
    buf: list[str] = []
    for ch in params_str:
        if ch == '(':
            depth += 1
            buf.append(ch)
        elif ch == ')':
            depth -= 1
            buf.append(ch)
        elif ch == ',' and depth == 0:
            items.append(''.join(buf).strip())
            buf = []
        else:
            buf.append(ch)
    if buf:
        items.append(''.join(buf).strip())
    return [i for i in items if i]


def _parse_param(p: str, fallback_name: str) -> tuple[str, str, bool]:
    """Parse one parameter fragment into (name, abi_type, indexed)."""
    s = ' '.join(p.strip().split())
    indexed = False
    if ' indexed ' in f' {s} ':
        indexed = True
        s = f' {s} '.replace(' indexed ', ' ').strip()
    tokens = s.split()
    if len(tokens) == 1:
        # Unnamed parameter
        return (fallback_name, tokens[0], indexed)
    # Last token is the name, the rest is the type (can include tuple syntax)
    return (tokens[-1], ' '.join(tokens[:-1]), indexed)


def split_signature(signature: str) -> tuple[str, list[str]]:
    """Split "Name(type a, type b)" into ("Name", ["type a", "type b"])."""
    sig = signature.strip()
    open_paren = sig.find('(')
    close_paren = sig.rfind(')')
    if open_paren == -1 or close_paren == -1 or close_paren < open_paren:
        raise ValueError(f"Invalid signature: {signature}")
    return sig[:open_paren].strip(), _split_params(sig[open_paren + 1 : close_paren])


def event_spec_from_signature(signature: str) -> EventSpec:
    """Build an EventSpec from a Solidity event signature string.

    Example input:
      "Bought(uint256 indexed listingId, address indexed buyer, uint256 price)"
    """
    name, param_parts = split_signature(signature)

    parsed: list[tuple[str, str, bool]] = []
    for i, part in enumerate(param_parts):
        parsed.append(_parse_param(part, fallback_name=f"arg{i}"))

    # topic0 hashes the canonical type list (no names, no 'indexed')
    canonical = f"{name}({','.join(t for (_, t, _) in parsed)})"
    topic0 = '0x' + keccak(text=canonical).hex()

    topic_fields: list[TopicFieldSpec] = []
    data_fields: list[DataFieldSpec] = []
    for n, t, is_indexed in parsed:
        if is_indexed:
            topic_fields.append(TopicFieldSpec(n, len(topic_fields) + 1, t))
        else:
            data_fields.append(DataFieldSpec(n, len(data_fields), t))
    if len(topic_fields) > 3:
        raise ValueError(f"Too many indexed parameters in {signature}")

    return EventSpec(
        topic0=topic0,
        name=name,
        signature=canonical,
        topic_fields=tuple(topic_fields),
        data_fields=tuple(data_fields),
    )


def make_registry(signatures: str | list[str]) -> EventRegistry:
    """Create a registry from one or multiple event signatures.

    Args:
        signatures: Single signature string or list of signature strings

    Returns:
        EventRegistry with entries for each signature
    """
    reg: EventRegistry = {}
    sig_list = [signatures] if isinstance(signatures, str) else signatures
    for signature in sig_list:
        spec = event_spec_from_signature(signature)
        reg[spec.topic0] = spec
    return reg


def function_selector(signature: str) -> bytes:
    """Return the 4-byte selector of a function signature (names allowed)."""
    name, param_parts = split_signature(signature)
    types = [_parse_param(p, fallback_name="_")[1] for p in param_parts]
    return keccak(text=f"{name}({','.join(types)})")[:4]
