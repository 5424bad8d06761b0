from __future__ import annotations

import asyncio
import logging
import random
from datetime import datetime

import pytest

from persona_chat.memory.role_registry import RoleRegistry
from persona_chat.providers.base import ProviderError
from persona_chat.services.dispatcher import ChatRequest, Dispatcher
from persona_chat.services.fallbacks import FALLBACK_REPLIES
from persona_chat.services.prompt_builder import PromptBuilder
from persona_chat.services.response_cache import ResponseCache
from persona_chat.services.scene_registry import Priority, SceneRegistry

NOW = datetime(2024, 5, 1, 12, 0, 0)


class ScriptedInvoker:
    """Returns queued outcomes in order, then a default reply."""

    def __init__(self, *outcomes: object, default: str = "好的，收到。") -> None:
        self.outcomes = list(outcomes)
        self.default = default
        self.calls: list[str] = []

    async def call(self, messages: list[dict], scene) -> str:
        self.calls.append(messages[-1]["content"])
        await asyncio.sleep(0)
        if self.outcomes:
            outcome = self.outcomes.pop(0)
            if isinstance(outcome, BaseException):
                raise outcome
            return outcome
        return self.default


class GatedInvoker:
    """Blocks every call until released and tracks the peak concurrency."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.active = 0
        self.peak = 0

    async def call(self, messages: list[dict], scene) -> str:
        self.active += 1
        self.peak = max(self.peak, self.active)
        try:
            await self.gate.wait()
        finally:
            self.active -= 1
        return "ok"


def build_dispatcher(invoker, **kwargs) -> tuple[Dispatcher, RoleRegistry, ResponseCache]:
    roles = RoleRegistry()
    cache = ResponseCache()
    options = {
        "prompt_builder": PromptBuilder(),
        "interval_sec": 0,
        "rng": random.Random(7),
        "clock": lambda: NOW,
    }
    options.update(kwargs)
    dispatcher = Dispatcher(scenes=SceneRegistry(), roles=roles, cache=cache, invoker=invoker, **options)
    return dispatcher, roles, cache


@pytest.mark.anyio
async def test_reply_is_cached_and_reused_within_ttl():
    invoker = ScriptedInvoker(default="你好呀，很高兴见到你！")
    dispatcher, roles, cache = build_dispatcher(invoker)

    text = await dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="你好"))

    assert text == "你好呀，很高兴见到你！"
    assert cache.get(cache.key("private_chat", "r1", "你好")) == text
    memories = roles.get_role("r1").consistency.memories
    assert [(item.source, item.content) for item in memories] == [("user", "你好"), ("assistant", text)]

    again = dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="你好"))
    assert again.done()
    assert again.result() == text
    assert invoker.calls == ["你好"]
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_skip_cache_forces_a_new_generation():
    invoker = ScriptedInvoker("第一次", "第二次")
    dispatcher, _, _ = build_dispatcher(invoker)

    first = await dispatcher.enqueue(ChatRequest(scene="group_chat", role_id="r1", message="在吗"))
    second = await dispatcher.enqueue(
        ChatRequest(scene="group_chat", role_id="r1", message="在吗", skip_cache=True)
    )

    assert (first, second) == ("第一次", "第二次")
    assert len(invoker.calls) == 2
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_dequeue_order_is_priority_then_arrival():
    invoker = ScriptedInvoker()
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=1)

    futures = [
        dispatcher.enqueue(ChatRequest(scene="forum", role_id="r1", message="low-1")),
        dispatcher.enqueue(ChatRequest(scene="moments", role_id="r1", message="medium-1")),
        dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="high-1")),
        dispatcher.enqueue(ChatRequest(scene="card", role_id="r1", message="high-2")),
        dispatcher.enqueue(
            ChatRequest(scene="private_chat", role_id="r1", message="low-2", priority=Priority.LOW)
        ),
    ]
    assert dispatcher.queue_length == 5

    await asyncio.gather(*futures)

    assert invoker.calls == ["high-1", "high-2", "medium-1", "low-1", "low-2"]
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_in_flight_never_exceeds_max_concurrent():
    invoker = GatedInvoker()
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=3)

    futures = [
        dispatcher.enqueue(ChatRequest(scene="private_chat", role_id=f"r{index}", message="hi"))
        for index in range(7)
    ]
    for _ in range(20):
        await asyncio.sleep(0)

    assert dispatcher.active_requests == 3
    assert dispatcher.queue_length == 4

    invoker.gate.set()
    assert await asyncio.gather(*futures) == ["ok"] * 7
    assert invoker.peak == 3
    assert dispatcher.active_requests == 0
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_failed_request_is_retried_ahead_of_the_queue():
    invoker = ScriptedInvoker(RuntimeError("temporary"), "A", "B")
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=1)

    first = dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="a"))
    second = dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="b"))

    assert await first == "A"
    assert await second == "B"
    assert invoker.calls == ["a", "a", "b"]
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_exhausted_retries_resolve_with_scene_fallback():
    failure = ProviderError("PROVIDER_UPSTREAM", "down", retryable=True, status_code=503)
    invoker = ScriptedInvoker(*([failure] * 10))
    dispatcher, roles, cache = build_dispatcher(invoker, max_retries=3)

    text = await dispatcher.enqueue(ChatRequest(scene="group_chat", role_id="r1", message="hi"))

    assert text in FALLBACK_REPLIES["group_chat"]
    assert len(invoker.calls) == 4
    assert len(cache) == 0
    assert roles.role_count == 0
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_unknown_scene_falls_back_to_private_chat_table():
    invoker = ScriptedInvoker(*([RuntimeError("x")] * 5))
    dispatcher, _, _ = build_dispatcher(invoker, max_retries=0)

    text = await dispatcher.enqueue(ChatRequest(scene="diary", role_id="r1", message="hi"))

    assert text in FALLBACK_REPLIES["private_chat"]
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_configuration_error_fails_future_without_retry():
    invoker = ScriptedInvoker(ProviderError("API_KEY_REQUIRED", "API key is required for openai."))
    dispatcher, _, cache = build_dispatcher(invoker)

    with pytest.raises(ProviderError) as exc_info:
        await dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="hi"))

    assert exc_info.value.code == "API_KEY_REQUIRED"
    assert invoker.calls == ["hi"]
    assert len(cache) == 0
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_empty_reply_resolves_but_is_not_cached():
    invoker = ScriptedInvoker("")
    dispatcher, _, cache = build_dispatcher(invoker)

    text = await dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="hi"))

    assert text == ""
    assert len(cache) == 0
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_shutdown_cancels_pending_requests():
    invoker = GatedInvoker()
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=1)
    futures = [
        dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message=str(index)))
        for index in range(3)
    ]
    await asyncio.sleep(0)

    await dispatcher.shutdown()

    assert all(future.cancelled() for future in futures)
    assert dispatcher.queue_length == 0
    assert not dispatcher.is_running


class GatedSleep:
    """Stands in for the pacing sleep and holds the loop until released."""

    def __init__(self) -> None:
        self.gate = asyncio.Event()
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)
        await self.gate.wait()


class BrokenPromptBuilder(PromptBuilder):
    def build_messages(self, *args, **kwargs):
        raise ValueError("template error")


@pytest.mark.anyio
async def test_next_dispatch_waits_for_the_interval():
    invoker = ScriptedInvoker()
    sleep = GatedSleep()
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=3, interval_sec=0.25, sleep=sleep)

    first = dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="a"))
    second = dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="b"))

    assert await asyncio.wait_for(first, 1) == "好的，收到。"
    for _ in range(10):
        await asyncio.sleep(0)

    # A free slot is not enough; the loop is still inside its pacing sleep.
    assert invoker.calls == ["a"]
    assert dispatcher.queue_length == 1
    assert dispatcher.active_requests == 0
    assert sleep.delays == [0.25]

    sleep.gate.set()
    assert await asyncio.wait_for(second, 1) == "好的，收到。"
    assert invoker.calls == ["a", "b"]
    assert sleep.delays[:2] == [0.25, 0.25]
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_interval_pacing_keeps_the_in_flight_cap():
    invoker = GatedInvoker()
    dispatcher, _, _ = build_dispatcher(invoker, max_concurrent=2, interval_sec=0.01)

    futures = [
        dispatcher.enqueue(ChatRequest(scene="private_chat", role_id=f"r{index}", message="hi"))
        for index in range(4)
    ]
    await asyncio.sleep(0.1)

    assert invoker.peak == 2
    assert dispatcher.active_requests == 2
    assert dispatcher.queue_length == 2

    invoker.gate.set()
    assert await asyncio.wait_for(asyncio.gather(*futures), 1) == ["ok"] * 4
    assert invoker.peak == 2
    await dispatcher.shutdown()


@pytest.mark.anyio
async def test_prompt_failure_still_resolves_with_fallback(caplog):
    invoker = ScriptedInvoker()
    dispatcher, roles, _ = build_dispatcher(invoker, prompt_builder=BrokenPromptBuilder())

    with caplog.at_level(logging.ERROR):
        text = await asyncio.wait_for(
            dispatcher.enqueue(ChatRequest(scene="private_chat", role_id="r1", message="hi")), 1
        )

    assert text in FALLBACK_REPLIES["private_chat"]
    assert invoker.calls == []
    assert roles.role_count == 0
    assert dispatcher.active_requests == 0
    assert "failed outside the backend call" in caplog.text
    await dispatcher.shutdown()
