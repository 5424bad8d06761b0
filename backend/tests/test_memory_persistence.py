from __future__ import annotations

import pytest

from persona_chat.core.config import Settings
from persona_chat.db.base import create_engine, create_sessionmaker, init_db
from persona_chat.memory.role_registry import RoleRegistry
from persona_chat.memory.types import MemoryRecord, RoleProfile
from persona_chat.services.memory_service import (
    NoopMemoryService,
    SQLMemoryService,
    create_memory_service,
)


@pytest.fixture
async def sessionmaker(tmp_path):
    engine = create_engine(f"sqlite+aiosqlite:///{tmp_path / 'memory.db'}")
    await init_db(engine)
    yield create_sessionmaker(engine)
    await engine.dispose()


@pytest.mark.anyio
async def test_persist_mode_selects_backend(sessionmaker) -> None:
    assert isinstance(
        create_memory_service(sessionmaker=sessionmaker, settings=Settings(MEMORY_PERSIST_MODE="off")),
        NoopMemoryService,
    )
    assert isinstance(
        create_memory_service(sessionmaker=sessionmaker, settings=Settings(MEMORY_PERSIST_MODE="sqlite")),
        SQLMemoryService,
    )
    assert isinstance(
        create_memory_service(sessionmaker=sessionmaker, settings=Settings(MEMORY_PERSIST_MODE="redis")),
        NoopMemoryService,
    )


@pytest.mark.anyio
async def test_roles_survive_a_restart(sessionmaker) -> None:
    service = SQLMemoryService(sessionmaker)
    registry = RoleRegistry(short_term_cap=2, long_term_cap=5)
    registry.register_role("r1", RoleProfile(name="小明", background="学生", traits=("active",)))
    for content in ("一", "二", "三"):
        registry.update_memory("r1", MemoryRecord(content=content, source="user"))
    await service.save_role(registry.get_role("r1"))

    registry.update_memory("r1", MemoryRecord(content="四", source="assistant"))
    await service.save_role(registry.get_role("r1"))

    restored = RoleRegistry(short_term_cap=2, long_term_cap=5)
    for role in await service.load_roles():
        restored.restore(role)

    role = restored.get_role("r1")
    assert role.name == "小明"
    assert role.consistency.traits == ["active"]
    assert [item.content for item in role.consistency.memories] == ["三", "四"]
    assert [item.content for item in role.consistency.long_term] == ["一", "二"]
    assert role.consistency.memories[-1].source == "assistant"


@pytest.mark.anyio
async def test_restore_enforces_current_caps(sessionmaker) -> None:
    service = SQLMemoryService(sessionmaker)
    registry = RoleRegistry(short_term_cap=10)
    for index in range(6):
        registry.update_memory("r1", MemoryRecord(content=str(index)))
    await service.save_role(registry.get_role("r1"))

    smaller = RoleRegistry(short_term_cap=4, long_term_cap=1)
    for role in await service.load_roles():
        smaller.restore(role)

    state = smaller.get_role("r1").consistency
    assert [item.content for item in state.memories] == ["2", "3", "4", "5"]
    assert [item.content for item in state.long_term] == ["1"]
