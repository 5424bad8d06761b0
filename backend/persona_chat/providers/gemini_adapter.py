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


class GeminiAdapter(HTTPProviderAdapter):
    """Adapter for the Google ``generateContent`` API."""

    async def list_models(self, cfg: ProviderRuntimeConfig) -> list[str]:
        url = require_base_url(cfg.base_url, "Gemini") + "/models"
        data = await self._request_json("GET", url, headers=self._key_headers(cfg.api_key))
        models = [
            self._strip_model_prefix(item.get("name"))
            for item in data.get("models", [])
            if item.get("name")
        ]
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
        model_name = self._strip_model_prefix(cfg.model_name)
        url = require_base_url(cfg.base_url, "Gemini") + f"/models/{model_name}:generateContent"
        payload = self._build_payload(messages, params)
        data = await self._request_json(
            "POST", url, headers=self._key_headers(cfg.api_key), json=payload
        )
        usage = data.get("usageMetadata") or {}
        return LLMResult(
            content=self._parse_content(data),
            model_provider=cfg.provider,
            model_name=cfg.model_name,
            token_in=self._get_int(usage, "promptTokenCount"),
            token_out=self._get_int(usage, "candidatesTokenCount"),
        )

    @staticmethod
    def _strip_model_prefix(model_name: str) -> str:
        if model_name.startswith("models/"):
            return model_name[len("models/") :]
        return model_name

    @staticmethod
    def _key_headers(api_key: Optional[str]) -> dict[str, str]:
        return {"x-goog-api-key": require_api_key(api_key, "Gemini")}

    @staticmethod
    def _build_payload(messages: list[dict], params: GenerationParams) -> dict[str, Any]:
        system_text = None
        contents: list[dict[str, Any]] = []
        for message in messages:
            role = message.get("role")
            text = message.get("content", "")
            if role == "system" and system_text is None:
                system_text = text
                continue
            gemini_role = "model" if role == "assistant" else "user"
            contents.append({"role": gemini_role, "parts": [{"text": text}]})
        payload: dict[str, Any] = {
            "contents": contents or [{"role": "user", "parts": [{"text": ""}]}],
            "generationConfig": {
                "temperature": params.temperature,
                "maxOutputTokens": params.max_tokens,
            },
        }
        if system_text:
            payload["system_instruction"] = {"parts": [{"text": system_text}]}
        return payload

    @staticmethod
    def _parse_content(data: dict[str, Any]) -> str:
        # Blocked or truncated candidates come back without parts; treat as empty.
        candidates = data.get("candidates") or []
        if not candidates or not isinstance(candidates[0], dict):
            return ""
        parts = (candidates[0].get("content") or {}).get("parts") or []
        texts = [part.get("text") for part in parts if isinstance(part, dict) and part.get("text")]
        return "\n".join(texts)

    @staticmethod
    def _get_int(data: dict[str, Any], key: str) -> Optional[int]:
        value = data.get(key)
        return int(value) if isinstance(value, int) else None
