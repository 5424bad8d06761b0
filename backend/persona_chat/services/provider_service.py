from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from fastapi import Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from persona_chat.core.config import Settings, get_settings
from persona_chat.db.models import ProviderConfig
from persona_chat.providers.base import (
    LLMAdapter,
    MockAdapter,
    ProviderError,
    ProviderRuntimeConfig,
)
from persona_chat.providers.chat_completion_adapter import ChatCompletionAdapter
from persona_chat.providers.gemini_adapter import GeminiAdapter
from persona_chat.repos.provider_repo import ProviderRepo
from persona_chat.utils.crypto import SecretCipher, mask_secret

logger = logging.getLogger(__name__)

CHAT_COMPLETION_PROVIDERS = ("openai", "deepseek", "siliconflow", "openrouter", "volcano", "custom")
CONTENT_GENERATION_PROVIDERS = ("google", "gemini")
SUPPORTED_PROVIDERS = CHAT_COMPLETION_PROVIDERS + CONTENT_GENERATION_PROVIDERS + ("mock",)
# Providers that can be used without a credential.
KEYLESS_PROVIDERS = frozenset({"custom", "mock"})
MOCK_MODEL = "mock-1"


@dataclass
class ProviderStatus:
    """Display-safe view of the active backend configuration."""

    provider: str
    base_url: Optional[str]
    model_name: Optional[str]
    api_key_hint: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    source: str
    ready: bool


class ProviderService:
    """Manage backend configuration and adapter access.

    A configuration stored through :meth:`set_provider` wins; otherwise the
    ``LLM_*`` environment defaults are used.
    """

    def __init__(
        self,
        sessionmaker: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        adapters: Optional[dict[str, LLMAdapter]] = None,
    ) -> None:
        self._sessionmaker = sessionmaker
        self._settings = settings or get_settings()
        self._adapters = adapters or self._build_adapters(self._settings.provider_timeout_sec)

    @staticmethod
    def _build_adapters(timeout_sec: float) -> dict[str, LLMAdapter]:
        chat_completion = ChatCompletionAdapter(timeout_sec=timeout_sec)
        gemini = GeminiAdapter(timeout_sec=timeout_sec)
        adapters: dict[str, LLMAdapter] = {name: chat_completion for name in CHAT_COMPLETION_PROVIDERS}
        adapters.update({name: gemini for name in CONTENT_GENERATION_PROVIDERS})
        adapters["mock"] = MockAdapter()
        return adapters

    def set_adapters(self, adapters: dict[str, LLMAdapter]) -> None:
        """Override adapter registry (useful for tests)."""

        self._adapters = adapters

    def reload(self, settings: Settings) -> None:
        """Rebuild the HTTP adapters after a timeout change."""

        self._settings = settings
        self._adapters = self._build_adapters(settings.provider_timeout_sec)

    async def ensure_ready(self) -> None:
        """Ensure a provider with a selected model is configured."""

        _, runtime_cfg = await self.get_generation_config()
        if runtime_cfg.provider in KEYLESS_PROVIDERS:
            return
        if not runtime_cfg.api_key:
            raise ProviderError(
                "API_KEY_REQUIRED", f"API key is required for {runtime_cfg.provider}."
            )

    async def get_generation_config(self) -> tuple[LLMAdapter, ProviderRuntimeConfig]:
        """Return the adapter and runtime configuration for generation."""

        runtime_cfg = await self._load_runtime_config()
        if not runtime_cfg.model_name:
            raise ProviderError("PROVIDER_NOT_READY", "Provider and model must be configured.")
        return self._get_adapter(runtime_cfg.provider), runtime_cfg

    async def get_status(self) -> ProviderStatus:
        """Describe the active configuration with the API key masked."""

        async with self._sessionmaker() as db:
            config = await ProviderRepo(db).get_config()
        runtime_cfg = await self._load_runtime_config(config)
        return ProviderStatus(
            provider=runtime_cfg.provider,
            base_url=runtime_cfg.base_url,
            model_name=runtime_cfg.model_name or None,
            api_key_hint=mask_secret(runtime_cfg.api_key),
            temperature=runtime_cfg.temperature,
            max_tokens=runtime_cfg.max_tokens,
            source="stored" if config else "environment",
            ready=bool(runtime_cfg.model_name)
            and (runtime_cfg.provider in KEYLESS_PROVIDERS or bool(runtime_cfg.api_key)),
        )

    async def set_provider(
        self,
        provider: str,
        api_key: Optional[str],
        base_url: Optional[str],
        model_name: Optional[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
    ) -> ProviderConfig:
        """Store backend configuration after validating it against the model list."""

        provider = self._normalize_provider(provider)
        adapter = self._get_adapter(provider)
        async with self._sessionmaker() as db:
            repo = ProviderRepo(db)
            existing = await repo.get_config()
            base_url = (base_url or "").strip() or self._default_base_url(provider)
            encrypted_key = self._resolve_api_key(provider, api_key, existing)
            runtime_cfg = ProviderRuntimeConfig(
                provider=provider,
                model_name=model_name or "",
                base_url=base_url,
                api_key=self._decrypt_key(encrypted_key),
            )
            models = self._normalize_models(await adapter.list_models(runtime_cfg))
            if model_name and model_name not in models:
                raise ProviderError("PROVIDER_MODEL_INVALID", "Selected model is not available.")

            config = await repo.upsert_config(
                provider=provider,
                base_url=base_url,
                api_key_encrypted=encrypted_key,
                model_name=model_name,
                temperature=temperature,
                max_tokens=max_tokens,
            )
            await db.commit()
        logger.info("Provider set to %s (model=%s)", provider, model_name or "-")
        return config

    async def list_models(self, provider: Optional[str] = None) -> list[str]:
        """Fetch available models from the active (or named) provider."""

        runtime_cfg = await self._load_runtime_config()
        if provider and self._normalize_provider(provider) != runtime_cfg.provider:
            raise ProviderError("PROVIDER_CONFIG_MISSING", "Provider config not found.")
        adapter = self._get_adapter(runtime_cfg.provider)
        return self._normalize_models(await adapter.list_models(runtime_cfg))

    async def select_model(self, model_name: str) -> ProviderConfig:
        """Update the selected model of the stored configuration."""

        model_name = model_name.strip()
        if not model_name:
            raise ProviderError("PROVIDER_MODEL_INVALID", "Model name must not be empty.")

        async with self._sessionmaker() as db:
            config = await ProviderRepo(db).get_config()
            if not config:
                raise ProviderError("PROVIDER_CONFIG_MISSING", "Provider config not found.")
            runtime_cfg = self._runtime_from_record(config, model_name=model_name)

        models = self._normalize_models(
            await self._get_adapter(runtime_cfg.provider).list_models(runtime_cfg)
        )
        if model_name not in models:
            raise ProviderError("PROVIDER_MODEL_INVALID", "Selected model is not available.")

        async with self._sessionmaker() as db:
            repo = ProviderRepo(db)
            async with db.begin():
                config = await repo.update_model(model_name)
            if not config:
                raise ProviderError("PROVIDER_CONFIG_MISSING", "Provider config not found.")
            return config

    async def _load_runtime_config(
        self, config: Optional[ProviderConfig] = None
    ) -> ProviderRuntimeConfig:
        if config is None:
            async with self._sessionmaker() as db:
                config = await ProviderRepo(db).get_config()
        if config:
            return self._runtime_from_record(config)

        provider = self._normalize_provider(self._settings.llm_provider or "openai")
        model_name = self._settings.llm_model
        if provider == "mock" and not model_name:
            model_name = MOCK_MODEL
        return ProviderRuntimeConfig(
            provider=provider,
            model_name=model_name,
            base_url=self._settings.llm_base_url or self._default_base_url(provider),
            api_key=self._settings.llm_api_key or None,
        )

    def _runtime_from_record(
        self, config: ProviderConfig, model_name: Optional[str] = None
    ) -> ProviderRuntimeConfig:
        return ProviderRuntimeConfig(
            provider=config.provider,
            model_name=model_name or config.model_name or (MOCK_MODEL if config.provider == "mock" else ""),
            base_url=config.base_url or self._default_base_url(config.provider),
            api_key=self._decrypt_key(config.api_key_encrypted),
            temperature=config.temperature,
            max_tokens=config.max_tokens,
        )

    def _get_adapter(self, provider: str) -> LLMAdapter:
        adapter = self._adapters.get(provider)
        if not adapter:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return adapter

    def _default_base_url(self, provider: str) -> Optional[str]:
        if provider == "openai":
            return self._settings.openai_base_url
        if provider in CONTENT_GENERATION_PROVIDERS:
            return self._settings.gemini_base_url
        if provider == "deepseek":
            return self._settings.deepseek_base_url
        if provider == "siliconflow":
            return self._settings.siliconflow_base_url
        if provider == "openrouter":
            return self._settings.openrouter_base_url
        if provider == "volcano":
            return self._settings.volcano_base_url
        if provider in KEYLESS_PROVIDERS:
            return None
        raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")

    @staticmethod
    def _normalize_provider(provider: str) -> str:
        normalized = provider.strip().lower()
        if normalized not in SUPPORTED_PROVIDERS:
            raise ProviderError("PROVIDER_UNSUPPORTED", f"Unsupported provider: {provider}")
        return normalized

    @staticmethod
    def _normalize_models(models: list[str]) -> list[str]:
        deduped: list[str] = []
        seen: set[str] = set()
        for model in models:
            candidate = model.strip()
            if not candidate or candidate in seen:
                continue
            seen.add(candidate)
            deduped.append(candidate)
        return deduped

    def _resolve_api_key(
        self,
        provider: str,
        api_key: Optional[str],
        existing: Optional[ProviderConfig],
    ) -> Optional[str]:
        if api_key:
            return self._encrypt_key(api_key)
        if existing and existing.provider == provider:
            return existing.api_key_encrypted
        if provider not in KEYLESS_PROVIDERS:
            raise ProviderError("API_KEY_REQUIRED", f"API key is required for {provider}.")
        return None

    def _encrypt_key(self, api_key: str) -> str:
        try:
            cipher = SecretCipher(self._settings.app_secret_key)
        except ValueError as exc:
            raise ProviderError(
                "APP_SECRET_MISSING", "APP_SECRET_KEY must be set to store API keys."
            ) from exc
        return cipher.encrypt(api_key)

    def _decrypt_key(self, encrypted: Optional[str]) -> Optional[str]:
        if not encrypted:
            return None
        try:
            cipher = SecretCipher(self._settings.app_secret_key)
        except ValueError as exc:
            raise ProviderError(
                "APP_SECRET_MISSING", "APP_SECRET_KEY must be set to read API keys."
            ) from exc
        return cipher.decrypt(encrypted)


def get_provider_service(request: Request) -> ProviderService:
    """Dependency to access the provider service from app state."""

    return request.app.state.provider_service
