"""Identity registry dispatcher: Registered, URIUpdated, MetadataSet."""

from __future__ import annotations

from loguru import logger

from agentdex.decoding.decoder import ParsedEvent
from agentdex.decoding.registries import make_identity_registry
from agentdex.indexing.context import ApplyContext, EventHandler, dispatch

IDENTITY_REGISTRY = make_identity_registry()


async def on_registered(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    owner = ev["owner"]
    uri = ev["agentURI"]
    meta = ev.meta

    await ctx.repos.agents.upsert_agent(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        owner=owner,
        uri=uri,
        active=True,
        block_number=meta.block_number,
        block_timestamp=meta.block_timestamp,
        tx_hash=meta.tx_hash,
    )
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="Registered",
        event_data={"owner": owner, "uri": uri},
        meta=meta,
    )
    logger.info(f"[Identity] chain {ctx.chain_id}: agent {agent_id} registered by {owner}")
    ctx.schedule_metadata(agent_id, uri)


async def on_uri_updated(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    new_uri = ev["newURI"]
    meta = ev.meta

    # empty owner keeps the registered owner
    await ctx.repos.agents.upsert_agent(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        owner="",
        uri=new_uri,
        active=True,
        block_number=meta.block_number,
        block_timestamp=meta.block_timestamp,
        tx_hash=meta.tx_hash,
    )
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="URIUpdated",
        event_data={"new_uri": new_uri, "updated_by": ev["updatedBy"]},
        meta=meta,
    )
    ctx.schedule_metadata(agent_id, new_uri)


async def on_metadata_set(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    key = ev["metadataKey"]
    value = ev["metadataValue"]  # 0x-hex of the raw bytes

    merged = await ctx.repos.agents.merge_metadata(agent_id, ctx.chain_id, key, value)
    if not merged:
        logger.debug(f"[Identity] chain {ctx.chain_id}: MetadataSet for unknown agent {agent_id}")
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="MetadataSet",
        event_data={"key": key, "value": value},
        meta=ev.meta,
    )


IDENTITY_HANDLERS: dict[str, EventHandler] = {
    "Registered": on_registered,
    "URIUpdated": on_uri_updated,
    "MetadataSet": on_metadata_set,
}


async def apply_identity_event(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await dispatch(IDENTITY_HANDLERS, ctx, ev)
