from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Literal

from persona_chat.utils.time_utils import utc_now

MemorySource = Literal["user", "assistant", "event"]

DEFAULT_ROLE_NAME = "助手"
DEFAULT_TONE = "friendly"


@dataclass(frozen=True)
class MemoryRecord:
    """One remembered line owned by a single role."""

    content: str
    scene: str = "private_chat"
    source: MemorySource = "user"
    timestamp: datetime = field(default_factory=utc_now)


@dataclass(frozen=True)
class RoleProfile:
    """Static identity supplied when a role is registered."""

    name: str = DEFAULT_ROLE_NAME
    background: str = ""
    personality: str = DEFAULT_TONE
    traits: tuple[str, ...] = ()


@dataclass
class ConsistencyState:
    """Tone, traits and the rolling memory lists of a role."""

    tone: str = DEFAULT_TONE
    traits: list[str] = field(default_factory=list)
    memories: list[MemoryRecord] = field(default_factory=list)
    long_term: list[MemoryRecord] = field(default_factory=list)


@dataclass
class Role:
    """A simulated character's identity and memory."""

    id: str
    name: str = DEFAULT_ROLE_NAME
    background: str = ""
    personality: str = DEFAULT_TONE
    consistency: ConsistencyState = field(default_factory=ConsistencyState)

    @property
    def memory_count(self) -> int:
        return len(self.consistency.memories) + len(self.consistency.long_term)
