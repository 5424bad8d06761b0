from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Iterable, Optional, Protocol


@dataclass(frozen=True)
class UserPersona:
    """The user identity the characters are talking to."""

    name: str
    gender: str = "other"
    background: str = ""


@dataclass(frozen=True)
class Reminder:
    """A calendar reminder pushed by the personal-data module."""

    id: str
    content: str
    date: str
    reminder_time: str = ""


class PersonalContextProvider(Protocol):
    """Source of the active persona and today's reminders."""

    def active_persona(self) -> Optional[UserPersona]:
        """Return the active user persona, if any."""

    def due_reminders(self, now: datetime) -> list[Reminder]:
        """Return reminders due on the day of ``now``."""


class InMemoryPersonalContext:
    """Holds whatever the personal-data module last pushed."""

    def __init__(self) -> None:
        self._persona: Optional[UserPersona] = None
        self._reminders: list[Reminder] = []

    def set_persona(self, persona: Optional[UserPersona]) -> None:
        self._persona = persona

    def set_reminders(self, reminders: Iterable[Reminder]) -> None:
        self._reminders = list(reminders)

    def active_persona(self) -> Optional[UserPersona]:
        return self._persona

    def due_reminders(self, now: datetime) -> list[Reminder]:
        today = now.date().isoformat()
        due = [item for item in self._reminders if item.date == today]
        return sorted(due, key=lambda item: item.reminder_time)

    @property
    def reminders(self) -> list[Reminder]:
        return list(self._reminders)
