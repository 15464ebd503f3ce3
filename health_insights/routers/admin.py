"""Admin console endpoints for runtime configuration."""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field

from ..app_config import (
    default_sources,
    environment_overrides,
    resolve_app_config,
    save_app_config,
)
from ..auth import require_admin
from ..config import Settings, get_settings
from ..services.container import ServiceContainer, get_services
from ..services.gateway import GenerationSettings
from ..services.gemini_client import text_part
from ..services.prompts import CONFIG_TEST_PROMPT

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


class ConfigUpdate(BaseModel):
    system_prompt: str | None = Field(default=None, alias="systemPrompt")
    api_key: str | None = Field(default=None, alias="apiKey")
    fallback_model: str | None = Field(default=None, alias="fallbackModel")
    use_fallback: bool | None = Field(default=None, alias="useFallback")
    max_output_tokens: int | None = Field(default=None, alias="maxOutputTokens", ge=1)

    model_config = {"populate_by_name": True}


def _environment_info(settings: Settings) -> dict[str, object]:
    return {
        "environment": settings.environment,
        "serverless": settings.serverless,
        "primaryModel": settings.gemini_primary_model,
        "configFile": str(settings.app_config_path),
        "configFileExists": settings.app_config_path.exists(),
        "environmentOverrides": environment_overrides(),
        "jobStore": settings.job_store_backend,
    }


@router.get("/config")
def read_config(
    admin_id: str = Depends(require_admin),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    """Return the effective configuration without the API key."""

    config = resolve_app_config(default_sources(settings))
    return {"config": config.public_view(), "environment": _environment_info(settings)}


@router.post("/config")
def update_config(
    update: ConfigUpdate,
    admin_id: str = Depends(require_admin),
    settings: Settings = Depends(get_settings),
) -> dict[str, object]:
    changes = update.model_dump(by_alias=True, exclude_none=True)
    if not changes:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No changes provided")

    result = save_app_config(changes, settings)
    logger.info("Admin %s updated configuration keys=%s persisted=%s", admin_id, sorted(changes), result.persisted)
    return {
        "success": result.success,
        "persisted": result.persisted,
        "message": result.message,
        "config": result.config.public_view(),
    }


@router.post("/config/test")
async def test_config(
    admin_id: str = Depends(require_admin),
    services: ServiceContainer = Depends(get_services),
) -> dict[str, object]:
    """Send a one-line prompt to verify the API key and model names."""

    result = await services.gateway.generate(
        None,
        [text_part(CONFIG_TEST_PROMPT)],
        generation=GenerationSettings(max_output_tokens=16),
    )
    return {
        "success": True,
        "model": result.model_used,
        "fallback": result.used_fallback,
        "response": result.text,
    }


__all__ = ["router"]
