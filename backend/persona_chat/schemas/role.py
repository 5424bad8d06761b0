from __future__ import annotations

from datetime import datetime
from typing import List, Literal, Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel


class RoleUpsertRequest(APIModel):
    """Payload for registering or updating a role identity."""

    name: str = Field(min_length=1)
    background: str = ""
    personality: str = "friendly"
    traits: List[str] = Field(default_factory=list)


class MemoryRecordIn(APIModel):
    """Memory line pushed by an outside module, e.g. a world event."""

    content: str = Field(min_length=1)
    scene: str = "private_chat"
    source: Literal["user", "assistant", "event"] = "event"
    promote: Optional[bool] = None


class MemoryRecordOut(APIModel):
    content: str
    scene: str
    source: str
    timestamp: datetime


class RoleResponse(APIModel):
    """Role identity with its memory lists."""

    id: str
    name: str
    background: str
    personality: str
    traits: List[str]
    memories: List[MemoryRecordOut]
    long_term: List[MemoryRecordOut]
    registered: bool
