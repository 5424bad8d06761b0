from __future__ import annotations

from fastapi import APIRouter, Depends

from persona_chat.schemas.personal import (
    PersonaIn,
    PersonaRequest,
    PersonalContextResponse,
    RemindersRequest,
)
from persona_chat.services.chat_engine import ChatEngine, get_chat_engine
from persona_chat.services.personal_context import Reminder, UserPersona

router = APIRouter(prefix="/api/personal", tags=["personal"])


@router.put("/persona", response_model=PersonalContextResponse)
async def set_persona(
    payload: PersonaRequest,
    engine: ChatEngine = Depends(get_chat_engine),
) -> PersonalContextResponse:
    """Set or clear the active user persona."""

    persona = payload.persona
    engine.personal_context.set_persona(
        UserPersona(name=persona.name, gender=persona.gender, background=persona.background)
        if persona
        else None
    )
    return _context_response(engine)


@router.put("/reminders", response_model=PersonalContextResponse)
async def set_reminders(
    payload: RemindersRequest,
    engine: ChatEngine = Depends(get_chat_engine),
) -> PersonalContextResponse:
    """Replace the reminder list used for prompt assembly."""

    engine.personal_context.set_reminders(
        Reminder(
            id=item.id,
            content=item.content,
            date=item.date,
            reminder_time=item.reminder_time,
        )
        for item in payload.reminders
    )
    return _context_response(engine)


def _context_response(engine: ChatEngine) -> PersonalContextResponse:
    persona = engine.personal_context.active_persona()
    return PersonalContextResponse(
        persona=PersonaIn.model_validate(persona) if persona else None,
        reminder_count=len(engine.personal_context.reminders),
    )
