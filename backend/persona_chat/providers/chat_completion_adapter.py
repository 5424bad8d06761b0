from __future__ import annotations

from typing import Any, Optional

from persona_chat.providers.base import (
    GenerationParams,
    HTTPProviderAdapter,
    LLMResult,
    ProviderError,
    ProviderRuntimeConfig,
    require_api_key,
    require_base_url,
)


class ChatCompletionAdapter(HTTPProviderAdapter):
    """Adapter for OpenAI-compatible ``/chat/completions`` endpoints.

    Covers OpenAI itself and the relay/compatible services (DeepSeek,
    SiliconFlow, OpenRouter, Volcano Ark, custom gateways). The configured base
    URL already carries the version segment, e.g. ``https://api.openai.com/v1``.
    """

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        url = require_base_url(cfg.base_url, cfg.provider) + "/models"
        headers = self._auth_headers(cfg)
        data = await self._request_json("GET", url, headers=headers)
        models = [item.get("id") for item in data.get("data", []) if item.get("id")]
        if not models:
            raise ProviderError("PROVIDER_NO_MODELS", "No models returned by provider.")
        return models

    async def generate(
        self,
        cfg: ProviderRuntimeConfig,
        messages: list[dict],
        params: GenerationParams | None = None,
    ) -> LLMResult:
        params = params or GenerationParams()
        url = require_base_url(cfg.base_url, cfg.provider) + "/chat/completions"
        headers = self._auth_headers(cfg)
        payload = {
            "model": cfg.model_name,
            "messages": messages,
            "temperature": params.temperature,
            "max_tokens": params.max_tokens,
            "stream": False,
        }
        data = await self._request_json("POST", url, headers=headers, json=payload)
        return LLMResult(
            content=self._parse_content(data),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_usage_int(data, "prompt_tokens"),
            token_out=self._get_usage_int(data, "completion_tokens"),
        )

    @staticmethod
    def _auth_headers(cfg: ProviderRuntimeConfig) -> dict[str, str]:
        api_key = require_api_key(cfg.api_key, cfg.provider)
        return {"Authorization": f"Bearer {api_key}"}

    @staticmethod
    def _parse_content(data: dict[str, Any]) -> str:
        # A reply without a usable content field is an empty answer, not an error.
        choices = data.get("choices") or []
        if not choices or not isinstance(choices[0], dict):
            return ""
        message = choices[0].get("message") or {}
        content = message.get("content") if isinstance(message, dict) else None
        return content if isinstance(content, str) else ""

    @staticmethod
    def _get_usage_int(data: dict[str, Any], key: str) -> Optional[int]:
        usage = data.get("usage") or {}
        value = usage.get(key)
        return int(value) if isinstance(value, int) else None
