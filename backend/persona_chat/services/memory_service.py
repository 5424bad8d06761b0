from __future__ import annotations

import logging
from abc import ABC, abstractmethod

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.core.config import Settings
from persona_chat.memory.types import Role
from persona_chat.repos.role_repo import RoleRepo

logger = logging.getLogger(__name__)

PERSIST_MODES = ("off", "sqlite")


class MemoryService(ABC):
    """Abstract persistence of role identities and their memory pools."""

    enabled: bool = False

    @abstractmethod
    async def load_roles(self) -> list[Role]:
        """Return every persisted role."""

    @abstractmethod
    async def save_role(self, role: Role) -> None:
        """Persist the current state of one role."""


class NoopMemoryService(MemoryService):
    """Disabled persistence; memory lives only in the process."""

    enabled = False

    async def load_roles(self) -> list[Role]:
        return []

    async def save_role(self, role: Role) -> None:
        return None


class SQLMemoryService(MemoryService):
    """Snapshot roles into the application database after every write."""

    enabled = True

    def __init__(self, sessionmaker: async_sessionmaker[AsyncSession]) -> None:
        self._sessionmaker = sessionmaker

    async def load_roles(self) -> list[Role]:
        async with self._sessionmaker() as db:
            roles = await RoleRepo(db).load_roles()
        logger.info("Restored %d roles from storage", len(roles))
        return roles

    async def save_role(self, role: Role) -> None:
        async with self._sessionmaker() as db:
            async with db.begin():
                await RoleRepo(db).save_role(role)


def create_memory_service(
    *,
    sessionmaker: async_sessionmaker[AsyncSession],
    settings: Settings,
) -> MemoryService:
    """Build the persistence backend selected by ``MEMORY_PERSIST_MODE``."""

    mode = (settings.memory_persist_mode or "off").strip().lower()
    if mode not in PERSIST_MODES:
        logger.warning("Unknown MEMORY_PERSIST_MODE %r; persistence disabled", mode)
        return NoopMemoryService()
    if mode == "off":
        return NoopMemoryService()
    return SQLMemoryService(sessionmaker)
