"""Provider discovery endpoints for the visual editor.

Lists the model aliases an LLM block can select, backed by the
`blockflow.providers` registry.
"""

from __future__ import annotations

from typing import Any, Dict, List

from fastapi import APIRouter, HTTPException

from blockflow.providers import PROVIDERS, list_providers

router = APIRouter(tags=["providers"])


@router.get("/providers")
async def get_providers(include_unconfigured: bool = True) -> List[Dict[str, Any]]:
    """
    List provider aliases.

    Query params:
        include_unconfigured: If false, only return providers whose API key is
            set (or that need none).
    """
    providers = list_providers()
    if not include_unconfigured:
        providers = [p for p in providers if p.get("status") == "available"]
    return providers


@router.get("/providers/{provider}/models")
async def list_models(provider: str) -> List[str]:
    """
    Get the API model a provider alias resolves to.

    Args:
        provider: Provider alias (e.g., "openai", "claude")

    Returns:
        List of model names
    """
    spec = PROVIDERS.get(provider)
    if spec is None:
        raise HTTPException(status_code=404, detail=f"Unknown provider '{provider}'")
    return [spec.api_model]
