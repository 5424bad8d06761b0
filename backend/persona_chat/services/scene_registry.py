from __future__ import annotations

from dataclasses import dataclass
from enum import Flag, IntEnum, auto
from typing import Iterable, Optional

DEFAULT_SCENE = "private_chat"


class Priority(IntEnum):
    """Queue priority classes; lower values are served first."""

    HIGH = 0
    MEDIUM = 1
    LOW = 2

    @classmethod
    def parse(cls, value: "str | int | Priority") -> "Priority":
        if isinstance(value, Priority):
            return value
        if isinstance(value, int):
            return cls(value)
        return cls[value.strip().upper()]


class SceneFeature(Flag):
    """Capability tags that switch on extra prompt directives."""

    NONE = 0
    MEMORY = auto()
    EMOTION = auto()
    PERSONALITY = auto()
    BRIEF = auto()
    SOCIAL = auto()
    FORMAL = auto()
    DETAILED = auto()
    CASUAL = auto()
    CREATIVE = auto()
    UNDERSTANDING = auto()
    INTERACTIVE = auto()


@dataclass(frozen=True)
class SceneConfig:
    """Generation parameters and prompt shape of one scene."""

    tag: str
    temperature: float
    max_tokens: int
    template: str
    features: SceneFeature = SceneFeature.NONE
    priority: Priority = Priority.MEDIUM

    def has(self, feature: SceneFeature) -> bool:
        return feature in self.features


BUILTIN_SCENES: tuple[SceneConfig, ...] = (
    SceneConfig(
        tag="private_chat",
        temperature=0.85,
        max_tokens=800,
        template="你是{{name}}，{{background}}。保持角色性格，自然对话。",
        features=SceneFeature.MEMORY | SceneFeature.EMOTION | SceneFeature.PERSONALITY,
        priority=Priority.HIGH,
    ),
    SceneConfig(
        tag="group_chat",
        temperature=0.9,
        max_tokens=300,
        template="你是群成员{{name}}。简短回复，符合群聊氛围。",
        features=SceneFeature.BRIEF | SceneFeature.SOCIAL,
        priority=Priority.MEDIUM,
    ),
    SceneConfig(
        tag="forum",
        temperature=0.7,
        max_tokens=1000,
        template="你是{{name}}，在论坛发表观点。保持理性、有深度。",
        features=SceneFeature.FORMAL | SceneFeature.DETAILED,
        priority=Priority.LOW,
    ),
    SceneConfig(
        tag="moments",
        temperature=0.85,
        max_tokens=300,
        template="你是{{name}}，在朋友圈分享生活。轻松、积极、真实。",
        features=SceneFeature.CASUAL | SceneFeature.EMOTION | SceneFeature.CREATIVE,
        priority=Priority.MEDIUM,
    ),
    SceneConfig(
        tag="card",
        temperature=0.8,
        max_tokens=400,
        template="你是{{name}}，理解并回应卡片内容。",
        features=SceneFeature.UNDERSTANDING | SceneFeature.INTERACTIVE,
        priority=Priority.HIGH,
    ),
)


class SceneRegistry:
    """Read-only lookup from scene tag to its configuration."""

    def __init__(
        self,
        scenes: Optional[Iterable[SceneConfig]] = None,
        fallback_tag: str = DEFAULT_SCENE,
    ) -> None:
        self._scenes = {scene.tag: scene for scene in (scenes or BUILTIN_SCENES)}
        if fallback_tag not in self._scenes:
            raise ValueError(f"Fallback scene {fallback_tag!r} is not registered.")
        self._fallback_tag = fallback_tag

    def get(self, tag: Optional[str]) -> SceneConfig:
        """Return the scene config, or the fallback scene for unknown tags."""

        return self._scenes.get(tag or "", self._scenes[self._fallback_tag])
