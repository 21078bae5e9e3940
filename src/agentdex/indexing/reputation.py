"""Reputation registry dispatcher: NewFeedback, FeedbackRevoked, ResponseAppended."""

from __future__ import annotations

from decimal import Decimal

from loguru import logger

from agentdex.decoding.decoder import ParsedEvent
from agentdex.decoding.registries import make_reputation_registry
from agentdex.indexing.context import ApplyContext, EventHandler, dispatch

REPUTATION_REGISTRY = make_reputation_registry()


def _none_if_empty(s: str | None) -> str | None:
    return s if s else None


def display_value(value: int, decimals: int) -> str:
    """Human-readable feedback value (mantissa / 10**decimals) for the activity feed."""
    return format(Decimal(value).scaleb(-decimals), "f")


async def on_new_feedback(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    client = ev["clientAddress"]
    feedback_index = ev["feedbackIndex"]
    value = ev["value"]
    decimals = ev["valueDecimals"]
    tag1 = _none_if_empty(ev["tag1"])
    tag2 = _none_if_empty(ev["tag2"])
    endpoint = _none_if_empty(ev["endpoint"])
    feedback_uri = _none_if_empty(ev["feedbackURI"])

    await ctx.repos.feedbacks.insert_feedback(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        client_address=client,
        feedback_index=feedback_index,
        value=value,
        value_decimals=decimals,
        tag1=tag1,
        tag2=tag2,
        endpoint=endpoint,
        feedback_uri=feedback_uri,
        feedback_hash=ev["feedbackHash"],
        meta=ev.meta,
    )
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="NewFeedback",
        event_data={
            "client": client,
            "feedback_index": feedback_index,
            "value": display_value(value, decimals),
            "value_decimals": decimals,
            "tag1": tag1,
            "tag2": tag2,
            "endpoint": endpoint,
            "feedback_uri": feedback_uri,
        },
        meta=ev.meta,
    )


async def on_feedback_revoked(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    feedback_index = ev["feedbackIndex"]

    touched = await ctx.repos.feedbacks.revoke_feedback(agent_id, ctx.chain_id, feedback_index)
    if not touched:
        logger.debug(
            f"[Reputation] chain {ctx.chain_id}: revoke of unknown feedback {feedback_index} for agent {agent_id}"
        )
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="FeedbackRevoked",
        event_data={"client": ev["clientAddress"], "feedback_index": feedback_index},
        meta=ev.meta,
    )


async def on_response_appended(ctx: ApplyContext, ev: ParsedEvent) -> None:
    agent_id = ev["agentId"]
    response_uri = _none_if_empty(ev["responseURI"])

    await ctx.repos.feedbacks.insert_response(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        feedback_index=ev["feedbackIndex"],
        client_address=ev["clientAddress"],
        responder=ev["responder"],
        response_uri=response_uri,
        response_hash=ev["responseHash"],
        meta=ev.meta,
    )
    await ctx.repos.activity.insert_activity(
        agent_id=agent_id,
        chain_id=ctx.chain_id,
        event_type="ResponseAppended",
        event_data={
            "client": ev["clientAddress"],
            "feedback_index": ev["feedbackIndex"],
            "responder": ev["responder"],
            "response_uri": response_uri,
            "response_hash": ev["responseHash"],
        },
        meta=ev.meta,
    )


REPUTATION_HANDLERS: dict[str, EventHandler] = {
    "NewFeedback": on_new_feedback,
    "FeedbackRevoked": on_feedback_revoked,
    "ResponseAppended": on_response_appended,
}


async def apply_reputation_event(ctx: ApplyContext, ev: ParsedEvent) -> None:
    await dispatch(REPUTATION_HANDLERS, ctx, ev)
