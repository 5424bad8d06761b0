from __future__ import annotations

import logging
import random
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Literal, Optional, Sequence

from persona_chat.memory.role_registry import RoleRegistry
from persona_chat.memory.types import RoleProfile
from persona_chat.services.dispatcher import ChatRequest, Dispatcher
from persona_chat.services.fallbacks import GROUP_OFFLINE_NOTICE
from persona_chat.services.message_splitter import split_message
from persona_chat.utils.time_utils import local_now

logger = logging.getLogger(__name__)

GROUP_SCENE = "group_chat"
SYSTEM_SENDER = "system"
_TRAIT_DELTAS = {"active": 0.2, "quiet": -0.2}
BASE_PROBABILITY = 0.5
MENTION_PROBABILITY = 0.95


@dataclass(frozen=True)
class GroupMember:
    """One character on a group roster."""

    role_id: str
    name: str
    personality: str = "normal"
    background: str = ""
    wake_hour: Optional[int] = None
    sleep_hour: Optional[int] = None

    def is_online(self, hour: int) -> bool:
        if self.sleep_hour is not None and hour >= self.sleep_hour:
            return False
        if self.wake_hour is not None and hour < self.wake_hour:
            return False
        return True


@dataclass
class GroupReplyItem:
    """A single bubble in the merged group timeline."""

    sender_id: str
    sender_name: str
    text: str
    kind: Literal["message", "system"] = "message"
    position: int = 0
    delay_ms: float = 0.0


class GroupChatOrchestrator:
    """Turn one user message into an interleaved multi-member group timeline."""

    def __init__(
        self,
        dispatcher: Dispatcher,
        roles: RoleRegistry,
        delay_min_ms: int = 500,
        delay_max_ms: int = 2000,
        position_step_ms: int = 500,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._roles = roles
        self._rng = rng or random.Random()
        self._clock = clock or local_now
        self.configure(delay_min_ms, delay_max_ms, position_step_ms)

    def configure(self, delay_min_ms: int, delay_max_ms: int, position_step_ms: int) -> None:
        self._delay_min_ms = max(0, delay_min_ms)
        self._delay_max_ms = max(self._delay_min_ms, delay_max_ms)
        self._position_step_ms = max(0, position_step_ms)

    async def generate_replies(
        self,
        message: str,
        roster: Sequence[GroupMember],
        now: Optional[datetime] = None,
    ) -> list[GroupReplyItem]:
        """Produce the ordered, delayed group replies to ``message``.

        Members are asked one after another so each sees what the earlier
        responders said. Configuration errors from the backend propagate.
        """

        hour = (now or self._clock()).hour
        online = [member for member in roster if member.is_online(hour)]
        if not online:
            return [
                GroupReplyItem(
                    sender_id=SYSTEM_SENDER,
                    sender_name=SYSTEM_SENDER,
                    text=GROUP_OFFLINE_NOTICE,
                    kind="system",
                )
            ]

        sequence: list[GroupReplyItem] = []
        for member in self.select_responders(online, message):
            self._ensure_role(member)
            for piece in await self._member_replies(member, message, sequence):
                index = self._insert_position(sequence, member)
                sequence.insert(
                    index,
                    GroupReplyItem(sender_id=member.role_id, sender_name=member.name, text=piece),
                )

        for position, item in enumerate(sequence):
            item.position = position
            item.delay_ms = self._delay_for(position)
        logger.debug("Group reply produced %d items from %d online members", len(sequence), len(online))
        return sequence

    def select_responders(self, members: Sequence[GroupMember], message: str) -> list[GroupMember]:
        selected: list[GroupMember] = []
        for member in members:
            probability = self.response_probability(member, message)
            if self._rng.random() < probability:
                selected.append(member)
        if not selected and members:
            selected.append(self._rng.choice(list(members)))
        return selected

    @staticmethod
    def response_probability(member: GroupMember, message: str) -> float:
        probability = BASE_PROBABILITY + _TRAIT_DELTAS.get(member.personality, 0.0)
        if f"@{member.name}" in message:
            probability = max(probability, MENTION_PROBABILITY)
        return min(1.0, max(0.0, probability))

    def _ensure_role(self, member: GroupMember) -> None:
        if self._roles.has_role(member.role_id):
            return
        self._roles.register_role(
            member.role_id,
            RoleProfile(
                name=member.name,
                background=member.background,
                personality=member.personality,
                traits=(member.personality,),
            ),
        )

    async def _member_replies(
        self, member: GroupMember, message: str, sequence: list[GroupReplyItem]
    ) -> list[str]:
        pieces: list[str] = []
        reply_count = self._rng.randint(1, 3)
        for attempt in range(reply_count):
            context = [
                {"role": "user", "content": f"{item.sender_name}: {item.text}"} for item in sequence
            ]
            request = ChatRequest(
                scene=GROUP_SCENE,
                role_id=member.role_id,
                message=message,
                context=context,
                metadata={"group_member": member.name},
                skip_cache=attempt > 0,
            )
            reply = await self._dispatcher.enqueue(request)
            pieces.extend(split_message(reply, 1, 4))
        return pieces

    def _insert_position(self, sequence: list[GroupReplyItem], member: GroupMember) -> int:
        last = next(
            (
                index
                for index in range(len(sequence) - 1, -1, -1)
                if sequence[index].sender_id == member.role_id
            ),
            None,
        )
        if last is None:
            return self._rng.randint(0, len(sequence))
        return last + min(self._rng.randint(1, 3), len(sequence) - last)

    def _delay_for(self, position: int) -> float:
        jitter = self._rng.uniform(0, self._delay_max_ms - self._delay_min_ms)
        return self._delay_min_ms + jitter + position * self._position_step_ms
