from __future__ import annotations

from fastapi import APIRouter, Depends

from persona_chat.core.security import sanitize_text
from persona_chat.memory.types import MemoryRecord, Role, RoleProfile
from persona_chat.schemas.role import (
    MemoryRecordIn,
    MemoryRecordOut,
    RoleResponse,
    RoleUpsertRequest,
)
from persona_chat.services.chat_engine import ChatEngine, get_chat_engine

router = APIRouter(prefix="/api/roles", tags=["roles"])

MAX_NAME_LEN = 100
MAX_BACKGROUND_LEN = 4000
MAX_MEMORY_LEN = 2000


@router.put("/{role_id}", response_model=RoleResponse)
async def upsert_role(
    role_id: str,
    payload: RoleUpsertRequest,
    engine: ChatEngine = Depends(get_chat_engine),
) -> RoleResponse:
    """Register a role or replace its identity; memory is kept."""

    role = await engine.register_role(
        role_id,
        RoleProfile(
            name=sanitize_text(payload.name, MAX_NAME_LEN),
            background=sanitize_text(payload.background, MAX_BACKGROUND_LEN),
            personality=payload.personality,
            traits=tuple(payload.traits),
        ),
    )
    return _role_response(role, registered=True)


@router.get("/{role_id}", response_model=RoleResponse)
async def get_role(role_id: str, engine: ChatEngine = Depends(get_chat_engine)) -> RoleResponse:
    """Return a role; unknown ids read as the default assistant."""

    return _role_response(engine.get_role(role_id), registered=engine.roles.has_role(role_id))


@router.post("/{role_id}/memory", response_model=RoleResponse)
async def add_memory(
    role_id: str,
    payload: MemoryRecordIn,
    engine: ChatEngine = Depends(get_chat_engine),
) -> RoleResponse:
    """Append one memory line to a role, creating the role if needed."""

    role = await engine.update_memory(
        role_id,
        MemoryRecord(
            content=sanitize_text(payload.content, MAX_MEMORY_LEN),
            scene=payload.scene,
            source=payload.source,
        ),
        promote=payload.promote,
    )
    return _role_response(role, registered=True)


def _role_response(role: Role, registered: bool) -> RoleResponse:
    state = role.consistency
    return RoleResponse(
        id=role.id,
        name=role.name,
        background=role.background,
        personality=role.personality,
        traits=list(state.traits),
        memories=[MemoryRecordOut.model_validate(item) for item in state.memories],
        long_term=[MemoryRecordOut.model_validate(item) for item in state.long_term],
        registered=registered,
    )
