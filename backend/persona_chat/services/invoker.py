from __future__ import annotations

import logging
from typing import Protocol

from persona_chat.providers.base import GenerationParams
from persona_chat.services.provider_service import ProviderService
from persona_chat.services.scene_registry import SceneConfig

logger = logging.getLogger(__name__)


class Invoker(Protocol):
    """Anything that turns a message list into reply text."""

    async def call(self, messages: list[dict], scene: SceneConfig) -> str:
        """Run one generation and return the reply text."""


class BackendInvoker:
    """Issue one generation call against the currently configured backend.

    The adapter and runtime config are resolved per call so a provider change
    applies to the next request without restarting anything.
    """

    def __init__(self, provider_service: ProviderService) -> None:
        self._provider_service = provider_service

    async def call(self, messages: list[dict], scene: SceneConfig) -> str:
        adapter, runtime_cfg = await self._provider_service.get_generation_config()
        params = GenerationParams(
            temperature=(
                runtime_cfg.temperature
                if runtime_cfg.temperature is not None
                else scene.temperature
            ),
            max_tokens=runtime_cfg.max_tokens or scene.max_tokens,
        )
        result = await adapter.generate(runtime_cfg, messages, params)
        logger.debug(
            "Generated %d chars via %s/%s (in=%s out=%s)",
            len(result.content or ""),
            result.model_provider,
            result.model_name,
            result.token_in,
            result.token_out,
        )
        return result.content or ""
