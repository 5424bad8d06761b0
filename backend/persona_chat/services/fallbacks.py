from __future__ import annotations

import random
from typing import Optional

from persona_chat.services.scene_registry import DEFAULT_SCENE

FALLBACK_REPLIES: dict[str, tuple[str, ...]] = {
    "private_chat": ("嗯嗯，我明白了", "好的呢~", "收到！", "哈哈，是这样的"),
    "group_chat": ("+1", "赞同", "有道理", "确实"),
    "forum": ("这是个很好的观点", "值得讨论", "我也这么认为"),
    "moments": ("👍", "很棒！", "真不错", "支持！"),
    "card": ("收到卡片了", "很有意思的内容", "我看到了"),
}

FALLBACK_NARRATIONS: tuple[str, ...] = (
    "{name}停顿了一下，似乎在思考着什么。",
    "房间里安静了片刻，只有轻微的呼吸声。",
    "{name}的表情变得柔和起来。",
    "窗外的光线洒进来，照在两人之间。",
    "时间仿佛在这一刻慢了下来。",
)

GROUP_OFFLINE_NOTICE = "（群里现在没有人在线）"


def fallback_reply(scene: str, rng: Optional[random.Random] = None) -> str:
    """Pick a canned reply for the scene; unknown scenes use the private-chat table."""

    choices = FALLBACK_REPLIES.get(scene) or FALLBACK_REPLIES[DEFAULT_SCENE]
    return (rng or random).choice(choices)


def fallback_narration(name: str, rng: Optional[random.Random] = None) -> str:
    return (rng or random).choice(FALLBACK_NARRATIONS).format(name=name)
