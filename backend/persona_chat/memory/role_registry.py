from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, Optional

from persona_chat.memory.types import (
    DEFAULT_ROLE_NAME,
    DEFAULT_TONE,
    ConsistencyState,
    MemoryRecord,
    Role,
    RoleProfile,
)

logger = logging.getLogger(__name__)


class RoleRegistry:
    """Role identities plus a bounded short-term / long-term memory pool per role.

    Every operation is total over the role id: unknown roles read as the
    default assistant and are created on their first memory write.
    """

    def __init__(
        self,
        short_term_cap: int = 20,
        long_term_cap: int = 100,
        promote_overflow: bool = True,
    ) -> None:
        self._roles: dict[str, Role] = {}
        self.configure(short_term_cap, long_term_cap, promote_overflow)

    def configure(self, short_term_cap: int, long_term_cap: int, promote_overflow: bool) -> None:
        """Apply memory caps; existing lists are trimmed on their next write."""

        self._short_term_cap = max(1, short_term_cap)
        self._long_term_cap = max(0, long_term_cap)
        self._promote_overflow = promote_overflow

    def register_role(self, role_id: str, profile: RoleProfile | Mapping[str, Any]) -> Role:
        """Create or overwrite a role's identity, keeping any existing memory."""

        if not isinstance(profile, RoleProfile):
            profile = _profile_from_mapping(profile)
        existing = self._roles.get(role_id)
        consistency = existing.consistency if existing else ConsistencyState()
        consistency.tone = profile.personality or DEFAULT_TONE
        consistency.traits = list(profile.traits)
        role = Role(
            id=role_id,
            name=profile.name or DEFAULT_ROLE_NAME,
            background=profile.background,
            personality=profile.personality or DEFAULT_TONE,
            consistency=consistency,
        )
        self._roles[role_id] = role
        return role

    def get_role(self, role_id: str) -> Role:
        """Return the registered role or a detached default assistant."""

        role = self._roles.get(role_id)
        if role:
            return role
        return Role(id=role_id)

    def has_role(self, role_id: str) -> bool:
        return role_id in self._roles

    def update_memory(
        self, role_id: str, record: MemoryRecord, promote: Optional[bool] = None
    ) -> None:
        """Append a memory, evicting or promoting the oldest entry past the cap."""

        role = self._roles.get(role_id)
        if role is None:
            role = Role(id=role_id)
            self._roles[role_id] = role
        state = role.consistency
        state.memories.append(record)
        should_promote = self._promote_overflow if promote is None else promote
        while len(state.memories) > self._short_term_cap:
            oldest = state.memories.pop(0)
            if should_promote and self._long_term_cap:
                state.long_term.append(oldest)
        while len(state.long_term) > self._long_term_cap:
            state.long_term.pop(0)

    def recent_memories(self, role_id: str, limit: int = 6) -> list[MemoryRecord]:
        role = self._roles.get(role_id)
        if not role or limit <= 0:
            return []
        return list(role.consistency.memories[-limit:])

    def memory_size(self) -> int:
        return sum(role.memory_count for role in self._roles.values())

    @property
    def role_count(self) -> int:
        return len(self._roles)

    def restore(self, role: Role) -> None:
        """Insert a role loaded from persistence, enforcing the current caps."""

        state = role.consistency
        overflow = max(0, len(state.memories) - self._short_term_cap)
        if overflow:
            state.long_term.extend(state.memories[:overflow])
            del state.memories[:overflow]
        if len(state.long_term) > self._long_term_cap:
            del state.long_term[: len(state.long_term) - self._long_term_cap]
        self._roles[role.id] = role
        logger.debug("Restored role %s with %d memories", role.id, role.memory_count)


def _profile_from_mapping(data: Mapping[str, Any]) -> RoleProfile:
    traits = data.get("traits") or ()
    return RoleProfile(
        name=str(data.get("name") or DEFAULT_ROLE_NAME),
        background=str(data.get("background") or ""),
        personality=str(data.get("personality") or DEFAULT_TONE),
        traits=tuple(str(item) for item in traits),
    )
