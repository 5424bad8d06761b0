from __future__ import annotations

import asyncio
import logging
import random
from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Optional, Sequence

from fastapi import Request

from persona_chat.core.config import Settings
from persona_chat.memory.role_registry import RoleRegistry
from persona_chat.memory.types import MemoryRecord, Role, RoleProfile
from persona_chat.services.dispatcher import ChatRequest, Dispatcher
from persona_chat.services.group_chat import GroupChatOrchestrator, GroupMember, GroupReplyItem
from persona_chat.services.invoker import BackendInvoker, Invoker
from persona_chat.services.memory_service import MemoryService, NoopMemoryService
from persona_chat.services.message_splitter import split_message
from persona_chat.services.narration import NarrationGenerator
from persona_chat.services.personal_context import InMemoryPersonalContext
from persona_chat.services.prompt_builder import PromptBuilder
from persona_chat.services.provider_service import ProviderService
from persona_chat.services.response_cache import ResponseCache
from persona_chat.services.scene_registry import DEFAULT_SCENE, Priority, SceneRegistry
from persona_chat.utils.time_utils import local_now

logger = logging.getLogger(__name__)


@dataclass
class ChatReply:
    """A finished one-on-one reply, already cut into bubbles."""

    text: str
    bubbles: list[str] = field(default_factory=list)
    narration: Optional[str] = None


@dataclass(frozen=True)
class EngineStats:
    queue_length: int
    active_requests: int
    cache_size: int
    memory_size: int
    role_count: int


class ChatEngine:
    """Owns every orchestration component for one application instance."""

    def __init__(
        self,
        settings: Settings,
        provider_service: ProviderService,
        memory_service: Optional[MemoryService] = None,
        personal_context: Optional[InMemoryPersonalContext] = None,
        invoker: Optional[Invoker] = None,
        scenes: Optional[SceneRegistry] = None,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ) -> None:
        self._settings = settings
        self._provider_service = provider_service
        self._memory_service = memory_service or NoopMemoryService()
        self._clock = clock or (lambda: local_now(self._settings.local_timezone))
        rng = rng or random.Random()

        self.scenes = scenes or SceneRegistry()
        self.roles = RoleRegistry(
            short_term_cap=settings.memory_short_term_cap,
            long_term_cap=settings.memory_long_term_cap,
            promote_overflow=settings.memory_promote_overflow,
        )
        self.cache = ResponseCache(ttl_sec=settings.cache_ttl_sec)
        self.prompt_builder = PromptBuilder(history_window=settings.memory_history_window)
        self.personal_context = personal_context or InMemoryPersonalContext()
        self.invoker = invoker or BackendInvoker(provider_service)
        self.dispatcher = Dispatcher(
            scenes=self.scenes,
            roles=self.roles,
            cache=self.cache,
            prompt_builder=self.prompt_builder,
            invoker=self.invoker,
            personal_context=self.personal_context,
            memory_service=self._memory_service,
            max_concurrent=settings.queue_max_concurrent,
            interval_sec=settings.queue_interval_ms / 1000,
            max_retries=settings.queue_max_retries,
            rng=rng,
            clock=self._clock,
        )
        self.narration = NarrationGenerator(
            self.invoker,
            interval=settings.narration_interval,
            probability=settings.narration_probability,
            rng=rng,
        )
        self.group = GroupChatOrchestrator(
            self.dispatcher,
            self.roles,
            delay_min_ms=settings.group_delay_min_ms,
            delay_max_ms=settings.group_delay_max_ms,
            position_step_ms=settings.group_position_step_ms,
            rng=rng,
            clock=self._clock,
        )

    async def start(self) -> None:
        """Restore persisted roles and start the dispatch loop."""

        for role in await self._memory_service.load_roles():
            self.roles.restore(role)
        self.dispatcher.start()

    async def shutdown(self) -> None:
        await self.dispatcher.shutdown()

    def reload(self, settings: Settings) -> None:
        """Push changed settings into every owned component."""

        self._settings = settings
        self.roles.configure(
            settings.memory_short_term_cap,
            settings.memory_long_term_cap,
            settings.memory_promote_overflow,
        )
        self.prompt_builder.update_history_window(settings.memory_history_window)
        self.cache.ttl_sec = settings.cache_ttl_sec
        self.dispatcher.configure(
            settings.queue_max_concurrent,
            settings.queue_interval_ms / 1000,
            settings.queue_max_retries,
        )
        self.narration.reload(settings)
        self.group.configure(
            settings.group_delay_min_ms,
            settings.group_delay_max_ms,
            settings.group_position_step_ms,
        )

    def set_memory_service(self, memory_service: MemoryService) -> None:
        self._memory_service = memory_service
        self.dispatcher.set_memory_service(memory_service)

    def enqueue(self, request: ChatRequest) -> "asyncio.Future[str]":
        return self.dispatcher.enqueue(request)

    async def request(
        self,
        role_id: str,
        message: str,
        scene: str = DEFAULT_SCENE,
        context: Optional[Sequence[Mapping[str, Any]]] = None,
        priority: Optional[Priority] = None,
        skip_cache: bool = False,
        metadata: Optional[dict[str, Any]] = None,
    ) -> str:
        """Queue one generation and wait for its text.

        Backend configuration problems raise ``ProviderError`` here instead
        of being turned into a fallback reply.
        """

        await self._provider_service.ensure_ready()
        future = self.dispatcher.enqueue(
            ChatRequest(
                scene=scene,
                role_id=role_id,
                message=message,
                context=[dict(item) for item in context or ()],
                metadata=dict(metadata or {}),
                priority=priority,
                skip_cache=skip_cache,
            )
        )
        return await future

    async def chat(
        self,
        role_id: str,
        message: str,
        scene: str = DEFAULT_SCENE,
        context: Optional[Sequence[Mapping[str, Any]]] = None,
        priority: Optional[Priority] = None,
        skip_cache: bool = False,
    ) -> ChatReply:
        """Generate a reply, split it into bubbles and maybe add narration."""

        text = await self.request(
            role_id, message, scene=scene, context=context, priority=priority, skip_cache=skip_cache
        )
        bubbles = split_message(
            text, self._settings.split_min_count, self._settings.split_max_count
        )
        narration = None
        if self.narration.should_fire():
            role = self.roles.get_role(role_id)
            narration = await self.narration.generate(
                f"用户：{message}\n{role.name}：{text}", role, scene, now=self._clock()
            )
        return ChatReply(text=text, bubbles=bubbles, narration=narration)

    async def group_reply(
        self,
        message: str,
        roster: Sequence[GroupMember],
        now: Optional[datetime] = None,
    ) -> list[GroupReplyItem]:
        await self._provider_service.ensure_ready()
        return await self.group.generate_replies(message, roster, now=now)

    async def register_role(self, role_id: str, profile: RoleProfile | Mapping[str, Any]) -> Role:
        role = self.roles.register_role(role_id, profile)
        await self._persist(role)
        return role

    def get_role(self, role_id: str) -> Role:
        return self.roles.get_role(role_id)

    async def update_memory(
        self, role_id: str, record: MemoryRecord, promote: Optional[bool] = None
    ) -> Role:
        self.roles.update_memory(role_id, record, promote=promote)
        role = self.roles.get_role(role_id)
        await self._persist(role)
        return role

    def get_stats(self) -> EngineStats:
        return EngineStats(
            queue_length=self.dispatcher.queue_length,
            active_requests=self.dispatcher.active_requests,
            cache_size=len(self.cache),
            memory_size=self.roles.memory_size(),
            role_count=self.roles.role_count,
        )

    async def _persist(self, role: Role) -> None:
        if not self._memory_service.enabled:
            return
        try:
            await self._memory_service.save_role(role)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist role %s", role.id)


def get_chat_engine(request: Request) -> ChatEngine:
    """Dependency to access the chat engine from app state."""

    return request.app.state.chat_engine
