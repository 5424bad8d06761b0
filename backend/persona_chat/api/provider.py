from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, status

from persona_chat.providers.base import ProviderError
from persona_chat.schemas.provider import (
    ProviderModelsResponse,
    ProviderSelectRequest,
    ProviderSelectResponse,
    ProviderSetRequest,
    ProviderSetResponse,
    ProviderStatusResponse,
)
from persona_chat.services.provider_service import ProviderService, get_provider_service

router = APIRouter(prefix="/api/provider", tags=["provider"])


@router.get("", response_model=ProviderStatusResponse)
async def get_provider(
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderStatusResponse:
    """Return the active backend configuration with the key masked."""

    try:
        provider_status = await provider_service.get_status()
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    return ProviderStatusResponse.model_validate(provider_status)


@router.post("/set", response_model=ProviderSetResponse)
async def set_provider(
    payload: ProviderSetRequest,
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderSetResponse:
    """Set provider configuration and validate availability."""

    try:
        config = await provider_service.set_provider(
            provider=payload.provider,
            api_key=payload.api_key,
            base_url=payload.base_url,
            model_name=payload.model_name,
            temperature=payload.temperature,
            max_tokens=payload.max_tokens,
        )
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    return ProviderSetResponse(provider=config.provider, model_name=config.model_name)


@router.get("/models", response_model=ProviderModelsResponse)
async def list_models(
    provider: Optional[str] = None,
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderModelsResponse:
    """List available models for the active provider."""

    try:
        models = await provider_service.list_models(provider)
        active = provider or (await provider_service.get_status()).provider
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    return ProviderModelsResponse(provider=active, models=models)


@router.post("/select-model", response_model=ProviderSelectResponse)
async def select_model(
    payload: ProviderSelectRequest,
    provider_service: ProviderService = Depends(get_provider_service),
) -> ProviderSelectResponse:
    """Select a model for the configured provider."""

    try:
        config = await provider_service.select_model(payload.model_name)
    except ProviderError as exc:
        raise provider_http_error(exc) from exc
    return ProviderSelectResponse(model_name=config.model_name or "")


def provider_http_error(exc: ProviderError) -> HTTPException:
    """Map a provider error onto an HTTP error response."""

    return HTTPException(
        status_code=_provider_status(exc),
        detail={"code": exc.code, "message": exc.message},
    )


def _provider_status(exc: ProviderError) -> int:
    if exc.code == "APP_SECRET_MISSING":
        return status.HTTP_500_INTERNAL_SERVER_ERROR
    if exc.is_configuration_error:
        return status.HTTP_400_BAD_REQUEST
    return status.HTTP_502_BAD_GATEWAY
