from __future__ import annotations

import logging
import random
from datetime import datetime
from typing import Optional

from persona_chat.core.config import Settings
from persona_chat.memory.types import Role
from persona_chat.services.fallbacks import fallback_narration
from persona_chat.services.invoker import Invoker
from persona_chat.services.scene_registry import Priority, SceneConfig
from persona_chat.utils.time_utils import local_now

logger = logging.getLogger(__name__)

NARRATION_SCENE = SceneConfig(
    tag="narration",
    temperature=0.8,
    max_tokens=100,
    template="你是一个优秀的小说旁白生成器。",
    priority=Priority.LOW,
)

_WEEKDAYS = ("星期一", "星期二", "星期三", "星期四", "星期五", "星期六", "星期日")
_CLOSING_PUNCTUATION = ("。", "！", "？", ".", "!", "?", "…", "”", "」")

NARRATION_RULES = (
    "生成一段简短的旁白，要求：\n"
    "1. 必须是完整的句子，有开头有结尾\n"
    "2. 控制在30-80字之间\n"
    "3. 描述场景氛围、角色动作或心理活动\n"
    "4. 不要使用第一人称\n"
    "5. 确保句子自然结束，不要用省略号结尾（除非特意表达停顿）"
)


class NarrationGenerator:
    """Third-person narration inserted between chat replies.

    Fires on every ``interval``-th turn and otherwise with ``probability``.
    Generation never raises: backend problems fall back to canned lines.
    """

    def __init__(
        self,
        invoker: Invoker,
        interval: int = 3,
        probability: float = 0.3,
        rng: Optional[random.Random] = None,
    ) -> None:
        self._invoker = invoker
        self._rng = rng or random.Random()
        self._counter = 0
        self._interval = max(1, interval)
        self._probability = min(1.0, max(0.0, probability))

    def reload(self, settings: Settings) -> None:
        """Apply narration cadence settings."""

        self._interval = max(1, settings.narration_interval)
        self._probability = min(1.0, max(0.0, settings.narration_probability))

    def should_fire(self) -> bool:
        self._counter += 1
        if self._counter >= self._interval:
            self._counter = 0
            return True
        return self._rng.random() < self._probability

    async def generate(
        self,
        context: str,
        role: Role,
        scene: str,
        now: Optional[datetime] = None,
    ) -> str:
        now = now or local_now()
        messages = [
            {"role": "system", "content": NARRATION_SCENE.template},
            {"role": "user", "content": self._build_prompt(context, role, scene, now)},
        ]
        try:
            text = (await self._invoker.call(messages, NARRATION_SCENE)).strip()
        except Exception:  # noqa: BLE001
            logger.warning("Narration generation failed for %s; using fallback", role.id, exc_info=True)
            return fallback_narration(role.name, self._rng)
        if not text:
            logger.info("Empty narration for %s; using fallback", role.id)
            return fallback_narration(role.name, self._rng)
        if not text.endswith(_CLOSING_PUNCTUATION):
            text += "。"
        return text

    @staticmethod
    def _build_prompt(context: str, role: Role, scene: str, now: datetime) -> str:
        return (
            f"场景：{scene}\n"
            f"时间：{_WEEKDAYS[now.weekday()]} {now.strftime('%H:%M')}\n"
            f"角色：{role.name}\n"
            f"最近对话：{context}\n\n"
            f"{NARRATION_RULES}"
        )
