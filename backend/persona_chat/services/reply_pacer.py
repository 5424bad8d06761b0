from __future__ import annotations

import asyncio
import logging
import random
from typing import Awaitable, Callable, Optional, Sequence

from persona_chat.api.websocket import WebSocketManager
from persona_chat.services.chat_engine import ChatReply
from persona_chat.services.group_chat import GroupReplyItem

logger = logging.getLogger(__name__)


class ReplyPacer:
    """Deliver replies over WebSocket at a human-looking pace.

    Chat bubbles go out with a random gap between them, followed by the
    narration. Group items go out in timeline order, each no earlier than its
    own delay measured from the start of delivery.
    """

    def __init__(
        self,
        ws_manager: WebSocketManager,
        gap_min_sec: float = 0.5,
        gap_max_sec: float = 1.5,
        rng: Optional[random.Random] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._ws_manager = ws_manager
        self._gap_min_sec = gap_min_sec
        self._gap_max_sec = max(gap_min_sec, gap_max_sec)
        self._rng = rng or random.Random()
        self._sleep = sleep
        self._tasks: set[asyncio.Task] = set()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def deliver_chat(self, channel_id: str, role_id: str, reply: ChatReply) -> asyncio.Task:
        return self._track(self._send_chat(channel_id, role_id, reply), f"pace-chat-{channel_id}")

    def deliver_group(self, channel_id: str, items: Sequence[GroupReplyItem]) -> asyncio.Task:
        return self._track(self._send_group(channel_id, list(items)), f"pace-group-{channel_id}")

    async def shutdown(self) -> None:
        tasks = list(self._tasks)
        self._tasks.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _track(self, coro: Awaitable[None], name: str) -> asyncio.Task:
        task = asyncio.create_task(coro, name=name)
        self._tasks.add(task)
        task.add_done_callback(self._on_done)
        return task

    def _on_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if not task.cancelled() and task.exception() is not None:
            logger.error("Paced delivery failed", exc_info=task.exception())

    async def _send_chat(self, channel_id: str, role_id: str, reply: ChatReply) -> None:
        total = len(reply.bubbles)
        for index, bubble in enumerate(reply.bubbles):
            if index:
                await self._sleep(self._gap())
            await self._ws_manager.broadcast(
                channel_id,
                {
                    "event": "bubble",
                    "role_id": role_id,
                    "text": bubble,
                    "index": index,
                    "total": total,
                },
            )
        if reply.narration:
            await self._sleep(self._gap())
            await self._ws_manager.broadcast(
                channel_id, {"event": "narration", "role_id": role_id, "text": reply.narration}
            )
        await self._ws_manager.broadcast(channel_id, {"event": "reply_done", "role_id": role_id})

    async def _send_group(self, channel_id: str, items: list[GroupReplyItem]) -> None:
        elapsed_ms = 0.0
        for item in items:
            wait_ms = max(0.0, item.delay_ms - elapsed_ms)
            if wait_ms:
                await self._sleep(wait_ms / 1000)
                elapsed_ms += wait_ms
            await self._ws_manager.broadcast(
                channel_id,
                {
                    "event": "group_message" if item.kind == "message" else "group_system",
                    "sender_id": item.sender_id,
                    "sender_name": item.sender_name,
                    "text": item.text,
                    "position": item.position,
                },
            )
        await self._ws_manager.broadcast(channel_id, {"event": "group_done"})

    def _gap(self) -> float:
        return self._rng.uniform(self._gap_min_sec, self._gap_max_sec)
