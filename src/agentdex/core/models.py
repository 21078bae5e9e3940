"""Core data records shared by the RPC client, decoder and dispatchers.

- `EventLog`: raw log as fetched from RPC, minimally normalized.
- `Meta`: provenance of one decoded log (block, timestamp, tx, index).
- `BatchStats`: per-contract counters for one indexing cycle.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime

from agentdex.core.errors import DecodeError


@dataclass(slots=True, frozen=True)
class EventLog:
    """Raw log as fetched from RPC, minimally normalized."""

    address: str  # lowercased 0x...
    topics: tuple[str, ...]  # lowercased 0x...
    data_hex: str  # "0x..."
    block_number: int
    tx_hash: str  # lowercased 0x...
    log_index: int
    block_timestamp: int | None = None

    def data_bytes(self) -> bytes:
        """Return the data payload as raw bytes. Raises DecodeError on malformed hex."""
        h = self.data_hex[2:] if self.data_hex.lower().startswith("0x") else self.data_hex
        try:
            return bytes.fromhex(h) if h else b""
        except ValueError as e:
            raise DecodeError(f"malformed data payload {self.data_hex[:18]!r}: {e}") from e


@dataclass(slots=True)
class Meta:
    """Provenance for a single log used during decoding and persistence."""

    block_number: int
    block_timestamp: datetime | None
    tx_hash: str
    log_index: int
    address: str


@dataclass(kw_only=True)
class BatchStats:
    """
    Counters for one contract over one cycle.

    Mutated by the pipeline as ranges are fetched and applied:
    - how many ranges were applied / failed
    - how many logs were fetched
    - how many events were applied, unknown or undecodable
    """

    ranges_applied: int = 0
    ranges_failed: int = 0
    total_logs: int = 0
    applied: int = 0
    unknown_topic: int = 0
    decode_failed: int = 0

    def merge(self, other: BatchStats) -> None:
        """Add `other`'s counters into self."""
        self.ranges_applied += other.ranges_applied
        self.ranges_failed += other.ranges_failed
        self.total_logs += other.total_logs
        self.applied += other.applied
        self.unknown_topic += other.unknown_topic
        self.decode_failed += other.decode_failed
