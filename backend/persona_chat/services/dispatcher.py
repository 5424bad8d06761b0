from __future__ import annotations

import asyncio
import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from persona_chat.memory.role_registry import RoleRegistry
from persona_chat.memory.types import MemoryRecord
from persona_chat.providers.base import ProviderError
from persona_chat.services.fallbacks import fallback_reply
from persona_chat.services.invoker import Invoker
from persona_chat.services.memory_service import MemoryService, NoopMemoryService
from persona_chat.services.personal_context import InMemoryPersonalContext, PersonalContextProvider
from persona_chat.services.prompt_builder import PromptBuilder
from persona_chat.services.response_cache import ResponseCache
from persona_chat.services.scene_registry import Priority, SceneRegistry
from persona_chat.utils.time_utils import local_now, utc_now

logger = logging.getLogger(__name__)


def _new_request_id() -> str:
    return f"req_{uuid.uuid4().hex[:12]}"


@dataclass
class ChatRequest:
    """One pending generation owned by the dispatcher until it resolves."""

    scene: str
    role_id: str
    message: str
    context: list[dict] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)
    # None means "use the scene's default priority".
    priority: Optional[Priority] = None
    skip_cache: bool = False
    id: str = field(default_factory=_new_request_id)
    submitted_at: datetime = field(default_factory=utc_now)
    retries: int = 0
    future: Optional["asyncio.Future[str]"] = field(default=None, repr=False, compare=False)


class DispatchRetry(Exception):
    """Raised inside an in-flight task after its request was requeued."""

    def __init__(self, request_id: str, attempt: int) -> None:
        super().__init__(f"Request {request_id} requeued (attempt {attempt})")
        self.request_id = request_id
        self.attempt = attempt


class Dispatcher:
    """Priority queue with bounded concurrency in front of the backend.

    Requests are ordered by priority class and FIFO within a class. One loop
    task starts at most ``max_concurrent`` generations and sleeps
    ``interval_sec`` after each start. Every request resolves exactly once:
    with generated text, a cached reply, a scene fallback, or (for
    configuration errors) the ``ProviderError`` itself.
    """

    def __init__(
        self,
        *,
        scenes: SceneRegistry,
        roles: RoleRegistry,
        cache: ResponseCache,
        prompt_builder: PromptBuilder,
        invoker: Invoker,
        personal_context: Optional[PersonalContextProvider] = None,
        memory_service: Optional[MemoryService] = None,
        max_concurrent: int = 3,
        interval_sec: float = 0.5,
        max_retries: int = 3,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._scenes = scenes
        self._roles = roles
        self._cache = cache
        self._prompt_builder = prompt_builder
        self._invoker = invoker
        self._personal_context = personal_context or InMemoryPersonalContext()
        self._memory_service = memory_service or NoopMemoryService()
        self._rng = rng or random.Random()
        self._clock = clock or local_now
        self._sleep = sleep

        self._queue: list[ChatRequest] = []
        self._active = 0
        self._inflight: dict[asyncio.Task, ChatRequest] = {}
        self._wakeup = asyncio.Event()
        self._loop_task: Optional[asyncio.Task] = None
        self.configure(max_concurrent, interval_sec, max_retries)

    def configure(self, max_concurrent: int, interval_sec: float, max_retries: int) -> None:
        """Apply queue limits; takes effect on the next loop iteration."""

        self._max_concurrent = max(1, max_concurrent)
        self._interval_sec = max(0.0, interval_sec)
        self._max_retries = max(0, max_retries)
        self._wakeup.set()

    def set_memory_service(self, memory_service: MemoryService) -> None:
        self._memory_service = memory_service

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def active_requests(self) -> int:
        return self._active

    @property
    def max_concurrent(self) -> int:
        return self._max_concurrent

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    def start(self) -> None:
        """Start the dispatch loop on the running event loop."""

        if self.is_running:
            return
        self._loop_task = asyncio.create_task(self._run_loop(), name="dispatcher-loop")
        logger.debug("Dispatcher loop started")

    async def shutdown(self) -> None:
        """Cancel the loop, in-flight generations and every pending request."""

        loop_task, self._loop_task = self._loop_task, None
        tasks = list(self._inflight)
        pending = list(self._inflight.values()) + self._queue
        self._queue = []
        if loop_task:
            loop_task.cancel()
        for task in tasks:
            task.cancel()
        await asyncio.gather(
            *(task for task in [loop_task, *tasks] if task), return_exceptions=True
        )
        for request in pending:
            if request.future and not request.future.done():
                request.future.cancel()
        self._inflight.clear()
        self._active = 0
        logger.debug("Dispatcher stopped; cancelled %d pending requests", len(pending))

    def enqueue(self, request: ChatRequest) -> "asyncio.Future[str]":
        """Accept a request and return the future that will hold its reply.

        Must be called from inside the event loop. A cache hit returns an
        already resolved future without touching the queue.
        """

        future: asyncio.Future[str] = asyncio.get_running_loop().create_future()
        request.future = future
        if request.priority is None:
            request.priority = self._scenes.get(request.scene).priority

        if not request.skip_cache:
            cached = self._cache.get(self._cache_key(request))
            if cached is not None:
                logger.debug("Cache hit for %s (%s/%s)", request.id, request.scene, request.role_id)
                future.set_result(cached)
                return future

        self._insert(request)
        logger.debug(
            "Queued %s scene=%s role=%s priority=%s depth=%d",
            request.id,
            request.scene,
            request.role_id,
            request.priority.name,
            len(self._queue),
        )
        self.start()
        self._wakeup.set()
        return future

    def _insert(self, request: ChatRequest) -> None:
        # Stable: goes before the first request of a strictly lower class.
        for index, queued in enumerate(self._queue):
            if queued.priority > request.priority:
                self._queue.insert(index, request)
                return
        self._queue.append(request)

    async def _run_loop(self) -> None:
        while True:
            if not self._queue or self._active >= self._max_concurrent:
                self._wakeup.clear()
                await self._wakeup.wait()
                continue
            request = self._queue.pop(0)
            self._active += 1
            task = asyncio.create_task(self._process(request), name=f"dispatch-{request.id}")
            self._inflight[task] = request
            task.add_done_callback(self._on_task_done)
            await self._sleep(self._interval_sec)

    def _on_task_done(self, task: asyncio.Task) -> None:
        if self._inflight.pop(task, None) is not None:
            self._active = max(0, self._active - 1)
        self._wakeup.set()

    async def _process(self, request: ChatRequest) -> None:
        try:
            await self._dispatch(request)
        except DispatchRetry as exc:
            logger.info("%s", exc)
        except Exception:  # noqa: BLE001
            logger.exception("Request %s failed outside the backend call; using fallback reply", request.id)
            self._resolve(request, fallback_reply(request.scene, self._rng))

    async def _dispatch(self, request: ChatRequest) -> None:
        scene = self._scenes.get(request.scene)
        role = self._roles.get_role(request.role_id)
        now = self._clock()
        messages = self._prompt_builder.build_messages(
            scene,
            role,
            request,
            memories=self._roles.recent_memories(
                request.role_id, self._prompt_builder.history_window
            ),
            persona=self._personal_context.active_persona(),
            reminders=self._personal_context.due_reminders(now),
            now=now,
        )
        try:
            text = await self._invoker.call(messages, scene)
        except ProviderError as exc:
            if exc.is_configuration_error:
                logger.warning("Request %s failed: %s (%s)", request.id, exc.message, exc.code)
                self._fail(request, exc)
                return
            self._retry_or_fallback(request, exc)
        except Exception as exc:  # noqa: BLE001
            self._retry_or_fallback(request, exc)
        else:
            await self._complete(request, text)

    def _retry_or_fallback(self, request: ChatRequest, exc: Exception) -> None:
        if request.retries < self._max_retries:
            request.retries += 1
            logger.warning(
                "Request %s failed (%s); retry %d/%d",
                request.id,
                exc,
                request.retries,
                self._max_retries,
            )
            self._queue.insert(0, request)
            self._wakeup.set()
            raise DispatchRetry(request.id, request.retries) from exc

        fallback = fallback_reply(request.scene, self._rng)
        logger.warning(
            "Request %s exhausted %d retries (%s); using fallback reply",
            request.id,
            self._max_retries,
            exc,
        )
        self._resolve(request, fallback)

    async def _complete(self, request: ChatRequest, text: str) -> None:
        if text:
            self._cache.put(self._cache_key(request), text)
        self._roles.update_memory(
            request.role_id, MemoryRecord(content=request.message, scene=request.scene, source="user")
        )
        if text:
            self._roles.update_memory(
                request.role_id, MemoryRecord(content=text, scene=request.scene, source="assistant")
            )
        await self._persist_role(request.role_id)
        self._resolve(request, text)
        self._cache.sweep()

    async def _persist_role(self, role_id: str) -> None:
        if not self._memory_service.enabled:
            return
        try:
            await self._memory_service.save_role(self._roles.get_role(role_id))
        except Exception:  # noqa: BLE001
            logger.exception("Failed to persist memory for role %s", role_id)

    def _cache_key(self, request: ChatRequest) -> str:
        return self._cache.key(request.scene, request.role_id, request.message)

    @staticmethod
    def _resolve(request: ChatRequest, text: str) -> None:
        if request.future and not request.future.done():
            request.future.set_result(text)

    @staticmethod
    def _fail(request: ChatRequest, exc: BaseException) -> None:
        if request.future and not request.future.done():
            request.future.set_exception(exc)
