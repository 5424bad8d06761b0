from __future__ import annotations

from fastapi import APIRouter, Depends, Request

from persona_chat.api.provider import provider_http_error
from persona_chat.core.security import sanitize_text
from persona_chat.providers.base import ProviderError
from persona_chat.schemas.chat import (
    ChatMessageRequest,
    ChatMessageResponse,
    EngineStatsResponse,
    GroupReplyItemOut,
    GroupReplyRequest,
    GroupReplyResponse,
)
from persona_chat.services.chat_engine import ChatEngine, get_chat_engine
from persona_chat.services.group_chat import GroupMember
from persona_chat.services.reply_pacer import ReplyPacer
from persona_chat.services.scene_registry import Priority

router = APIRouter(prefix="/api", tags=["chat"])

MAX_MESSAGE_LEN = 4000


def get_reply_pacer(request: Request) -> ReplyPacer:
    """Dependency to access the reply pacer from app state."""

    return request.app.state.reply_pacer


@router.post("/chat/{role_id}", response_model=ChatMessageResponse)
async def chat(
    role_id: str,
    payload: ChatMessageRequest,
    engine: ChatEngine = Depends(get_chat_engine),
    pacer: ReplyPacer = Depends(get_reply_pacer),
) -> ChatMessageResponse:
    """Generate one character reply, optionally paced over a WebSocket channel."""

    try:
        reply = await engine.chat(
            role_id,
            sanitize_text(payload.message, MAX_MESSAGE_LEN),
            scene=payload.scene,
            context=[item.model_dump() for item in payload.context],
            priority=Priority.parse(payload.priority) if payload.priority else None,
            skip_cache=payload.skip_cache,
        )
    except ProviderError as exc:
        raise provider_http_error(exc) from exc

    if payload.channel_id:
        pacer.deliver_chat(payload.channel_id, role_id, reply)
    return ChatMessageResponse(
        role_id=role_id,
        scene=payload.scene,
        text=reply.text,
        bubbles=reply.bubbles,
        narration=reply.narration,
    )


@router.post("/group/{group_id}/reply", response_model=GroupReplyResponse)
async def group_reply(
    group_id: str,
    payload: GroupReplyRequest,
    engine: ChatEngine = Depends(get_chat_engine),
    pacer: ReplyPacer = Depends(get_reply_pacer),
) -> GroupReplyResponse:
    """Generate the interleaved replies of a group to one user message."""

    roster = [
        GroupMember(
            role_id=member.role_id,
            name=member.name,
            personality=member.personality,
            background=member.background,
            wake_hour=member.wake_hour,
            sleep_hour=member.sleep_hour,
        )
        for member in payload.members
    ]
    try:
        items = await engine.group_reply(sanitize_text(payload.message, MAX_MESSAGE_LEN), roster)
    except ProviderError as exc:
        raise provider_http_error(exc) from exc

    if payload.deliver:
        pacer.deliver_group(group_id, items)
    return GroupReplyResponse(
        group_id=group_id,
        items=[GroupReplyItemOut.model_validate(item) for item in items],
    )


@router.get("/stats", response_model=EngineStatsResponse)
async def get_stats(engine: ChatEngine = Depends(get_chat_engine)) -> EngineStatsResponse:
    """Return queue, cache and memory counters."""

    return EngineStatsResponse.model_validate(engine.get_stats())
