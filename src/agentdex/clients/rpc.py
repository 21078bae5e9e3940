"""Lightweight JSON-RPC client for Ethereum-compatible nodes.

This module provides:
- `RPC`: an async client with sane timeouts/connection limits
- `RPCFactory`: builds short-lived `RPC` handles for one chain
- Helper utilities to format block numbers and topics

It returns `EventLog` records ready for downstream decoding.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Sequence
from contextlib import asynccontextmanager
from typing import Any

import httpx

from agentdex.core.errors import RPCError
from agentdex.core.models import EventLog


def to_hex_block(x: int) -> str:
    """Return a 0x-prefixed hex block number."""
    return hex(x)


def topics_param(topic0s: Sequence[str]) -> list[list[str]]:
    """Format topic0 signatures for eth_getLogs RPC call."""
    return [[t.lower() for t in topic0s]]


def _hex_to_int(value: Any) -> int | None:
    if isinstance(value, str) and value.startswith("0x"):
        return int(value, 16)
    if isinstance(value, int):
        return value
    return None


class RPC:
    """Minimal async RPC client.

    Parameters
    ----------
    url : str
        RPC endpoint URL.
    timeout_s : int
        Per-operation timeout in seconds (connect/read/write).
    max_connections : int
        Maximum concurrent connections to keep in the pool.
    transport : httpx.AsyncBaseTransport | None
        Optional transport override (tests use `httpx.MockTransport`).
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: int = 20,
        max_connections: int = 16,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self._next_id = 0
        self.client = httpx.AsyncClient(
            timeout=httpx.Timeout(
                connect=timeout_s,
                read=timeout_s,
                write=timeout_s,
                pool=max(30, timeout_s * 3),
            ),
            limits=httpx.Limits(
                max_connections=max_connections,
                max_keepalive_connections=max(1, max_connections // 2),
            ),
            http2=transport is None,
            transport=transport,
        )

    async def __aenter__(self) -> RPC:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def _request(self, method: str, params: list[Any]) -> Any:
        """POST one JSON-RPC request and return its `result` field."""
        self._next_id += 1
        payload = {"jsonrpc": "2.0", "id": self._next_id, "method": method, "params": params}
        r = await self.client.post(self.url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not isinstance(data, dict):
            raise RPCError(f"{method}: malformed response")
        if "error" in data:
            e = data["error"] or {}
            raise RPCError(f"RPC error: {e.get('code')} {e.get('message')}", code=e.get("code"))
        if "result" not in data:
            raise RPCError(f"{method}: response has no result")
        return data["result"]

    async def latest_block(self) -> int:
        """Return the latest block number as an int."""
        result = await self._request("eth_blockNumber", [])
        return int(result, 16)

    async def get_logs(
        self,
        *,
        address: str,
        topic0s: Sequence[str],
        from_block: int,
        to_block: int,
    ) -> list[EventLog]:
        """Fetch logs for an address and a set of topic0 signatures within a block range."""
        params = [
            {
                "address": address.lower(),
                "fromBlock": to_hex_block(from_block),
                "toBlock": to_hex_block(to_block),
                "topics": topics_param(topic0s),
            }
        ]
        result = await self._request("eth_getLogs", params)

        out: list[EventLog] = []
        for rl in result or []:
            topics = tuple((t if isinstance(t, str) else t.decode()).lower() for t in rl.get("topics", []))
            out.append(
                EventLog(
                    address=rl["address"].lower(),
                    topics=topics,
                    data_hex=str(rl.get("data") or "0x"),
                    block_number=int(rl["blockNumber"], 16),
                    tx_hash=(rl.get("transactionHash") or "").lower(),
                    log_index=int(rl["logIndex"], 16),
                    block_timestamp=_hex_to_int(rl.get("blockTimestamp")),
                )
            )
        # Nodes return logs in order, but do not rely on it.
        out.sort(key=lambda lg: (lg.block_number, lg.log_index))
        return out

    async def get_block_timestamp(self, number: int) -> int:
        """Return the unix timestamp of block `number`."""
        block = await self._request("eth_getBlockByNumber", [to_hex_block(number), False])
        if not block:
            raise RPCError(f"Block {number} not found")
        ts = _hex_to_int(block.get("timestamp"))
        if ts is None:
            raise RPCError(f"Block {number} has no timestamp")
        return ts

    async def call(self, address: str, data: bytes) -> bytes:
        """eth_call `data` against `address` at the latest block; return raw output."""
        result = await self._request(
            "eth_call",
            [{"to": address.lower(), "data": "0x" + data.hex()}, "latest"],
        )
        if not isinstance(result, str):
            raise RPCError("eth_call: non-string result")
        h = result[2:] if result.startswith("0x") else result
        return bytes.fromhex(h)

    async def aclose(self) -> None:
        """Close the underlying HTTP client."""
        await self.client.aclose()


class RPCFactory:
    """Create short-lived RPC handles for one endpoint.

    Each concurrent batch task gets its own handle instead of sharing one
    client across long-lived in-flight calls. At most `max_handles` handles
    are open at once.
    """

    def __init__(
        self,
        url: str,
        *,
        timeout_s: int = 20,
        max_handles: int = 10,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.url = url
        self.timeout_s = timeout_s
        self._transport = transport
        self._slots = asyncio.Semaphore(max_handles)

    def create(self) -> RPC:
        """Return a new, caller-owned RPC handle."""
        return RPC(self.url, timeout_s=self.timeout_s, max_connections=4, transport=self._transport)

    @asynccontextmanager
    async def session(self) -> AsyncIterator[RPC]:
        """Borrow a fresh handle for the duration of the block; closed on exit."""
        async with self._slots:
            rpc = self.create()
            try:
                yield rpc
            finally:
                await rpc.aclose()
