from __future__ import annotations

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from persona_chat.db.models import ProviderConfig
from persona_chat.utils.time_utils import utc_now

DEFAULT_CONFIG_ID = "default"


class ProviderRepo:
    """Repository for provider configuration persistence."""

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def get_config(self, config_id: str = DEFAULT_CONFIG_ID) -> Optional[ProviderConfig]:
        """Fetch the stored provider configuration."""

        return await self._db.get(ProviderConfig, config_id)

    async def upsert_config(
        self,
        provider: str,
        base_url: Optional[str],
        api_key_encrypted: Optional[str],
        model_name: Optional[str],
        temperature: Optional[float] = None,
        max_tokens: Optional[int] = None,
        config_id: str = DEFAULT_CONFIG_ID,
    ) -> ProviderConfig:
        """Insert or update the provider configuration."""

        existing = await self.get_config(config_id)
        if existing:
            existing.provider = provider
            existing.base_url = base_url
            existing.api_key_encrypted = api_key_encrypted
            existing.model_name = model_name
            existing.temperature = temperature
            existing.max_tokens = max_tokens
            existing.updated_at = utc_now()
            await self._db.flush()
            return existing

        config = ProviderConfig(
            id=config_id,
            provider=provider,
            base_url=base_url,
            api_key_encrypted=api_key_encrypted,
            model_name=model_name,
            temperature=temperature,
            max_tokens=max_tokens,
            updated_at=utc_now(),
        )
        self._db.add(config)
        await self._db.flush()
        return config

    async def update_model(
        self, model_name: str, config_id: str = DEFAULT_CONFIG_ID
    ) -> Optional[ProviderConfig]:
        """Update the selected model of the stored configuration."""

        config = await self.get_config(config_id)
        if not config:
            return None
        config.model_name = model_name
        config.updated_at = utc_now()
        await self._db.flush()
        return config
