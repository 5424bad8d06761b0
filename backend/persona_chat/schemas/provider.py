from __future__ import annotations

from typing import List, Literal, Optional

from pydantic import Field

from persona_chat.schemas.common import APIModel

ProviderName = Literal[
    "openai",
    "google",
    "gemini",
    "deepseek",
    "siliconflow",
    "openrouter",
    "volcano",
    "custom",
    "mock",
]


class ProviderSetRequest(APIModel):
    """Payload for setting the backend configuration."""

    provider: ProviderName
    api_key: Optional[str] = Field(default=None)
    base_url: Optional[str] = Field(default=None)
    model_name: Optional[str] = Field(default=None)
    temperature: Optional[float] = Field(default=None, ge=0, le=2)
    max_tokens: Optional[int] = Field(default=None, ge=1)


class ProviderSetResponse(APIModel):
    """Response returned after setting provider configuration."""

    provider: ProviderName
    model_name: Optional[str]


class ProviderStatusResponse(APIModel):
    """Active backend configuration with the key masked."""

    provider: str
    base_url: Optional[str]
    model_name: Optional[str]
    api_key_hint: str
    temperature: Optional[float]
    max_tokens: Optional[int]
    source: str
    ready: bool


class ProviderModelsResponse(APIModel):
    """Response containing available models for a provider."""

    provider: str
    models: List[str]


class ProviderSelectRequest(APIModel):
    """Payload for selecting a model."""

    model_name: str


class ProviderSelectResponse(APIModel):
    """Response returned after selecting a model."""

    model_name: str
