from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel


class PersonaIn(APIModel):
    """User identity the characters should address."""

    name: str = Field(min_length=1)
    gender: Literal["male", "female", "other"] = "other"
    background: str = ""


class PersonaRequest(APIModel):
    """Active user persona; ``null`` clears it."""

    persona: Optional[PersonaIn] = None


class ReminderIn(APIModel):
    id: str
    content: str = Field(min_length=1)
    date: str = Field(pattern=r"^\d{4}-\d{2}-\d{2}$")
    reminder_time: str = Field(default="", pattern=r"^(\d{2}:\d{2})?$")


class RemindersRequest(APIModel):
    """Replaces the full reminder list."""

    reminders: List[ReminderIn] = Field(default_factory=list)


class PersonalContextResponse(APIModel):
    persona: Optional[PersonaIn]
    reminder_count: int
