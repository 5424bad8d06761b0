from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel

PriorityName = Literal["high", "medium", "low"]


class ContextMessage(APIModel):
    """One extra prior turn supplied by the caller."""

    role: Literal["system", "user", "assistant"] = "user"
    content: str


class ChatMessageRequest(APIModel):
    """Payload for a one-on-one chat turn."""

    message: str = Field(min_length=1)
    scene: str = Field(default="private_chat")
    context: List[ContextMessage] = Field(default_factory=list)
    priority: Optional[PriorityName] = Field(default=None)
    skip_cache: bool = Field(default=False)
    channel_id: Optional[str] = Field(default=None)


class ChatMessageResponse(APIModel):
    """A generated reply split into chat bubbles."""

    role_id: str
    scene: str
    text: str
    bubbles: List[str]
    narration: Optional[str] = None


class GroupMemberIn(APIModel):
    """Roster entry for a group reply."""

    role_id: str
    name: str
    personality: Literal["active", "normal", "quiet"] = "normal"
    background: str = ""
    wake_hour: Optional[int] = Field(default=None, ge=0, le=24)
    sleep_hour: Optional[int] = Field(default=None, ge=0, le=24)


class GroupReplyRequest(APIModel):
    """Payload for generating group replies."""

    message: str = Field(min_length=1)
    members: List[GroupMemberIn] = Field(min_length=1)
    deliver: bool = Field(default=False)


class GroupReplyItemOut(APIModel):
    """One bubble of the group timeline."""

    sender_id: str
    sender_name: str
    text: str
    kind: Literal["message", "system"]
    position: int
    delay_ms: float


class GroupReplyResponse(APIModel):
    """Ordered group timeline."""

    group_id: str
    items: List[GroupReplyItemOut]


class EngineStatsResponse(APIModel):
    """Engine counters."""

    queue_length: int
    active_requests: int
    cache_size: int
    memory_size: int
    role_count: int
