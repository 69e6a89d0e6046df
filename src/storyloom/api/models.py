from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends

from storyloom.api.dependencies import generation_options, get_api_key, get_gateway
from storyloom.api.responses import success
from storyloom.config import settings
from storyloom.llm.gateway import GenerationGateway
from storyloom.llm.registry import list_providers

router = APIRouter(prefix="/api", tags=["models"])


@router.get("/providers")
def get_providers():
    """List supported LLM providers, their default models and configuration state."""
    return success({
        "default": settings.default_provider,
        "providers": list_providers(),
    })


@router.get("/models")
async def get_models(
    provider: Optional[str] = None,
    refresh: bool = False,
    api_key: Optional[str] = Depends(get_api_key),
    gateway: GenerationGateway = Depends(get_gateway),
):
    """Models available to the caller's key for *provider* (cached for an hour)."""
    options = generation_options(api_key, provider)
    models = await gateway.list_models(options.provider, options.api_key, use_cache=not refresh)
    return success({
        "provider": options.provider,
        "models": [m.model_dump(mode="json") for m in models],
    })
