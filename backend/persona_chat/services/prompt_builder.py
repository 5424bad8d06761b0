from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Iterable, List, Optional

from persona_chat.memory.types import DEFAULT_ROLE_NAME, MemoryRecord, Role
from persona_chat.services.personal_context import Reminder, UserPersona
from persona_chat.services.scene_registry import SceneConfig, SceneFeature

if TYPE_CHECKING:
    from persona_chat.services.dispatcher import ChatRequest

_FEATURE_DIRECTIVES: tuple[tuple[SceneFeature, str], ...] = (
    (SceneFeature.MEMORY, "记住之前的对话内容。"),
    (SceneFeature.EMOTION, "表现出适当的情感。"),
    (SceneFeature.BRIEF, "保持回复简短。"),
    (SceneFeature.FORMAL, "使用正式的语言。"),
)

_GENDER_LABELS = {"male": "男", "female": "女"}


class PromptBuilder:
    """Compose chat prompts for LLM generation.

    The message list is always: one system message, the role's recent memory
    turns, caller-supplied context, then the new user message.
    """

    def __init__(self, history_window: int = 6) -> None:
        self._history_window = max(0, history_window)

    def update_history_window(self, history_window: int) -> None:
        """Apply a runtime change to the number of remembered turns replayed."""

        self._history_window = max(0, history_window)

    @property
    def history_window(self) -> int:
        return self._history_window

    def build_messages(
        self,
        scene: SceneConfig,
        role: Role,
        request: "ChatRequest",
        memories: Iterable[MemoryRecord] = (),
        persona: Optional[UserPersona] = None,
        reminders: Iterable[Reminder] = (),
        now: Optional[datetime] = None,
    ) -> List[dict]:
        """Create the message list for an LLM provider."""

        system_prompt = self.build_system_prompt(
            scene, role, persona=persona, reminders=reminders, now=now or datetime.now()
        )
        messages: list[dict] = [{"role": "system", "content": system_prompt}]

        recent = list(memories)[-self._history_window :] if self._history_window else []
        for record in recent:
            messages.append(
                {
                    "role": "assistant" if record.source == "assistant" else "user",
                    "content": record.content,
                }
            )
        for item in request.context:
            messages.append(
                {"role": item.get("role") or "user", "content": str(item.get("content", ""))}
            )
        messages.append({"role": "user", "content": request.message})
        return messages

    def build_system_prompt(
        self,
        scene: SceneConfig,
        role: Role,
        *,
        persona: Optional[UserPersona],
        reminders: Iterable[Reminder],
        now: datetime,
    ) -> str:
        prompt = scene.template.replace("{{name}}", role.name or DEFAULT_ROLE_NAME)
        prompt = prompt.replace("{{background}}", role.background or "")

        if persona:
            prompt += self._persona_block(persona)

        for feature, directive in _FEATURE_DIRECTIVES:
            if scene.has(feature):
                prompt += f"\n{directive}"

        prompt += f"\n当前时间：{now.strftime('%Y/%m/%d %H:%M:%S')}"

        reminder_lines = [
            f"\n- {item.content} ({item.reminder_time})" if item.reminder_time else f"\n- {item.content}"
            for item in reminders
        ]
        if reminder_lines:
            prompt += "\n\n今日提醒事项：" + "".join(reminder_lines)
        return prompt

    @staticmethod
    def _persona_block(persona: UserPersona) -> str:
        gender = _GENDER_LABELS.get(persona.gender.strip().lower(), "其他")
        return (
            "\n\n用户信息：\n"
            f"- 名字：{persona.name}\n"
            f"- 性别：{gender}\n"
            f"- 背景：{persona.background or '普通用户'}\n\n"
            "请根据用户的性别、背景和身份做出合适的回应。"
        )
