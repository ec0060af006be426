# dealpipe/entrypoints/api/routers/health.py
from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends

from ..deps import get_pipeline_config, get_providers, require_api_key
from ....config import PipelineConfig, settings
from ....integrations.outbound import OutboundProviders

router = APIRouter(tags=["health"])


@router.get("/health")
def health() -> dict[str, str]:
    return {"status": "ok"}


@router.get("/debug/config", dependencies=[Depends(require_api_key)])
def debug_config(
    cfg: PipelineConfig = Depends(get_pipeline_config),
    providers: OutboundProviders = Depends(get_providers),
) -> dict[str, Any]:
    def _redact(v: str | None) -> str | None:
        if not v:
            return v
        if len(v) <= 8:
            return "***"
        return v[:4] + "***" + v[-4:]

    return {
        "ENV": settings.ENV,
        "DEALPIPE_DB_URL": settings.DEALPIPE_DB_URL,
        "TWILIO_ACCOUNT_SID": _redact(settings.TWILIO_ACCOUNT_SID),
        "EMAIL_API_KEY_SET": bool(settings.EMAIL_API_KEY),
        "channels": providers.available(),
        "grades": vars(cfg.grades),
        "max_blasts_per_hour": cfg.max_blasts_per_hour,
    }
