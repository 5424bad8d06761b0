from __future__ import annotations

from functools import lru_cache
from typing import Any, List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    app_env: str = Field(default="dev", alias="APP_ENV")
    app_host: str = Field(default="0.0.0.0", alias="APP_HOST")
    app_port: int = Field(default=8000, alias="APP_PORT")
    # NOTE: Keep as string to avoid pydantic-settings JSON-decoding complex types from .env.
    cors_origins: str = Field(
        default="http://127.0.0.1:5500,http://localhost:5500",
        alias="CORS_ORIGINS",
    )
    db_url: str = Field(default="sqlite+aiosqlite:///./persona_chat.db", alias="DB_URL")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    app_secret_key: str = Field(default="", alias="APP_SECRET_KEY")
    local_timezone: str = Field(default="Asia/Shanghai", alias="LOCAL_TIMEZONE")

    # Backend used when the settings surface has not stored a provider yet.
    llm_provider: str = Field(default="openai", alias="LLM_PROVIDER")
    llm_base_url: str = Field(default="", alias="LLM_BASE_URL")
    llm_api_key: str = Field(default="", alias="LLM_API_KEY")
    llm_model: str = Field(default="", alias="LLM_MODEL")
    provider_timeout_sec: float = Field(default=30, alias="PROVIDER_TIMEOUT_SEC")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    gemini_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta", alias="GEMINI_BASE_URL"
    )
    deepseek_base_url: str = Field(default="https://api.deepseek.com", alias="DEEPSEEK_BASE_URL")
    siliconflow_base_url: str = Field(
        default="https://api.siliconflow.cn/v1", alias="SILICONFLOW_BASE_URL"
    )
    openrouter_base_url: str = Field(default="https://api.ppinfra.com/v1", alias="OPENROUTER_BASE_URL")
    volcano_base_url: str = Field(
        default="https://ark.cn-beijing.volces.com/api/v3", alias="VOLCANO_BASE_URL"
    )

    queue_max_concurrent: int = Field(default=3, alias="QUEUE_MAX_CONCURRENT")
    queue_interval_ms: int = Field(default=500, alias="QUEUE_INTERVAL_MS")
    queue_max_retries: int = Field(default=3, alias="QUEUE_MAX_RETRIES")
    cache_ttl_sec: float = Field(default=300, alias="CACHE_TTL_SEC")

    memory_short_term_cap: int = Field(default=20, alias="MEMORY_SHORT_TERM_CAP")
    memory_long_term_cap: int = Field(default=100, alias="MEMORY_LONG_TERM_CAP")
    memory_promote_overflow: bool = Field(default=True, alias="MEMORY_PROMOTE_OVERFLOW")
    memory_history_window: int = Field(default=6, alias="MEMORY_HISTORY_WINDOW")
    memory_persist_mode: str = Field(default="off", alias="MEMORY_PERSIST_MODE")

    narration_interval: int = Field(default=3, alias="NARRATION_INTERVAL")
    narration_probability: float = Field(default=0.3, alias="NARRATION_PROBABILITY")
    split_min_count: int = Field(default=6, alias="SPLIT_MIN_COUNT")
    split_max_count: int = Field(default=10, alias="SPLIT_MAX_COUNT")
    group_delay_min_ms: int = Field(default=500, alias="GROUP_DELAY_MIN_MS")
    group_delay_max_ms: int = Field(default=2000, alias="GROUP_DELAY_MAX_MS")
    group_position_step_ms: int = Field(default=500, alias="GROUP_POSITION_STEP_MS")

    model_config = SettingsConfigDict(env_file=(".env", "backend/.env"), extra="ignore")

    def parsed_cors_origins(self) -> List[str]:
        """Return CORS origins parsed from env var.

        Supports comma-delimited strings (recommended) and JSON list strings.
        """

        raw = (self.cors_origins or "").strip()
        if not raw:
            return []
        if raw.startswith("["):
            try:
                import json

                value: Any = json.loads(raw)
                if isinstance(value, list):
                    items = [str(item).strip() for item in value]
                    return [item for item in items if item]
            except ValueError:
                pass
        return [item.strip() for item in raw.split(",") if item.strip()]


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached application settings."""

    return Settings()
