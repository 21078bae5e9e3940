"""Agent metadata resolver.

Fetches the EIP-8004 registration document behind an agent URI and merges
it into the agent row. Supported URIs:

- `data:application/json[;base64],...`: decoded inline, no network access
- `ipfs://<cid>[/path]`: rewritten to the configured HTTP gateway
- `http(s)://...`: fetched directly

Resolution always runs detached from indexing. Failures end up in the log
and leave the agent's descriptive fields untouched.
"""

from __future__ import annotations

import asyncio
import base64
import binascii
from urllib.parse import unquote_to_bytes

import httpx
from loguru import logger
from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from agentdex.constants import DEFAULT_IPFS_GATEWAY, METADATA_TIMEOUT_SECS
from agentdex.core.errors import AgentdexError
from agentdex.storage.repositories import AgentRepository


class MetadataError(AgentdexError):
    """Unsupported URI or unusable metadata payload."""


class AgentEndpoint(BaseModel):
    model_config = ConfigDict(extra="ignore")

    url: str
    protocol: str | None = None


class AgentUriMetadata(BaseModel):
    """EIP-8004 agent registration document (fields we index)."""

    model_config = ConfigDict(extra="ignore")

    name: str | None = None
    description: str | None = None
    image: str | None = None
    categories: list[str] | None = None
    x402_support: bool | None = Field(
        default=None, validation_alias=AliasChoices("x402_support", "x402Support", "x402support")
    )
    endpoints: list[AgentEndpoint] | None = None
    capabilities: list[str] | None = None


# ---------------------------------------------------------------------------
# URI handling
# ---------------------------------------------------------------------------


def decode_data_uri(uri: str) -> bytes:
    """Return the payload of a `data:application/json[;base64],...` URI."""
    header, sep, payload = uri[len("data:"):].partition(",")
    if not sep:
        raise MetadataError("data URI has no payload separator")
    params = [p.strip().lower() for p in header.split(";")]
    media_type = params[0] or "text/plain"
    if media_type != "application/json":
        raise MetadataError(f"unsupported data URI media type {media_type!r}")
    if "base64" in params[1:]:
        try:
            return base64.b64decode(payload, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MetadataError(f"bad base64 payload: {e}") from e
    return unquote_to_bytes(payload)


def gateway_url(uri: str, gateway: str = DEFAULT_IPFS_GATEWAY) -> str:
    """Rewrite `ipfs://<cid>[/path]` to `<gateway><cid>[/path]`."""
    path = uri[len("ipfs://"):]
    if path.startswith("ipfs/"):
        path = path[len("ipfs/"):]
    if not path:
        raise MetadataError("ipfs URI has no CID")
    return gateway.rstrip("/") + "/" + path


def parse_metadata(payload: bytes | str) -> AgentUriMetadata:
    try:
        return AgentUriMetadata.model_validate_json(payload)
    except ValidationError as e:
        raise MetadataError(f"invalid metadata document: {e.error_count()} error(s)") from e


async def fetch_metadata(
    uri: str,
    client: httpx.AsyncClient,
    *,
    gateway: str = DEFAULT_IPFS_GATEWAY,
) -> AgentUriMetadata:
    """Resolve `uri` into a metadata document.

    Raises MetadataError for unsupported URIs or bad payloads and
    httpx.HTTPError for network failures (timeouts included).
    """
    uri = uri.strip()
    lowered = uri.lower()
    if lowered.startswith("data:"):
        return parse_metadata(decode_data_uri(uri))
    if lowered.startswith("ipfs://"):
        url = gateway_url(uri, gateway)
    elif lowered.startswith(("http://", "https://")):
        url = uri
    else:
        raise MetadataError(f"unsupported URI scheme: {uri[:32]!r}")

    r = await client.get(url)
    r.raise_for_status()
    return parse_metadata(r.content)


# ---------------------------------------------------------------------------
# Resolver (detached task capability)
# ---------------------------------------------------------------------------


class MetadataResolver:
    """Spawn-and-forget metadata enrichment.

    `spawn` schedules a background task and returns at once. The task logs
    its own failures; nothing is ever raised to the spawner. `drain` waits
    for in-flight tasks (used at shutdown and in tests).
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        *,
        timeout_s: float = METADATA_TIMEOUT_SECS,
        ipfs_gateway: str = DEFAULT_IPFS_GATEWAY,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._session_maker = session_maker
        self._gateway = ipfs_gateway
        self._timeout_s = timeout_s
        self._client = httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            follow_redirects=True,
            transport=transport,
        )
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def spawn(self, agent_id: int, chain_id: int, uri: str) -> None:
        task = asyncio.create_task(self._run(agent_id, chain_id, uri))
        # keep a strong reference until done
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def _run(self, agent_id: int, chain_id: int, uri: str) -> None:
        try:
            await self.resolve(agent_id, chain_id, uri)
        except Exception as e:
            logger.exception(f"[Metadata] agent {agent_id} chain {chain_id}: unexpected failure: {e!r}")

    async def resolve(self, agent_id: int, chain_id: int, uri: str) -> bool:
        """Fetch `uri` and merge it into the agent row. Returns True on success."""
        logger.info(f"[Metadata] agent {agent_id} chain {chain_id}: fetching {uri[:120]}")
        try:
            # total deadline; the client timeout only bounds each read
            doc = await asyncio.wait_for(
                fetch_metadata(uri, self._client, gateway=self._gateway), timeout=self._timeout_s
            )
        except (httpx.HTTPError, MetadataError, TimeoutError) as e:
            logger.error(f"[Metadata] agent {agent_id} chain {chain_id}: fetch failed: {e!r}")
            return False

        try:
            async with self._session_maker() as session:
                async with session.begin():
                    found = await AgentRepository(session).apply_uri_metadata(
                        agent_id,
                        chain_id,
                        name=doc.name,
                        description=doc.description,
                        image=doc.image,
                        categories=doc.categories,
                        x402_support=doc.x402_support,
                        endpoints=[e.model_dump() for e in doc.endpoints] if doc.endpoints is not None else None,
                        capabilities=doc.capabilities,
                    )
        except SQLAlchemyError as e:
            logger.error(f"[Metadata] agent {agent_id} chain {chain_id}: update failed: {e!r}")
            return False

        if not found:
            logger.warning(f"[Metadata] agent {agent_id} chain {chain_id}: agent row missing, metadata dropped")
            return False
        logger.success(f"[Metadata] agent {agent_id} chain {chain_id}: updated (name={doc.name!r})")
        return True

    async def drain(self) -> None:
        """Wait for every in-flight resolution."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def aclose(self) -> None:
        await self.drain()
        await self._client.aclose()
