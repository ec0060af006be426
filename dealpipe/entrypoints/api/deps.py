# dealpipe/entrypoints/api/deps.py
from __future__ import annotations

from typing import NoReturn

from fastapi import Header, HTTPException, Request

from ...config import PipelineConfig, settings
from ...domain.errors import NotFoundError, PipelineError, RateLimitError, StateConflictError
from ...integrations.outbound import OutboundProviders


def require_api_key(x_api_key: str | None = Header(default=None, alias="X-API-Key")) -> None:
    if settings.API_KEY:
        if not x_api_key or x_api_key != settings.API_KEY:
            raise HTTPException(status_code=401, detail="Invalid API key")


def actor_id(x_user_id: str | None = Header(default=None, alias="X-User-Id")) -> str | None:
    return x_user_id


def get_pipeline_config(request: Request) -> PipelineConfig:
    cfg = getattr(request.app.state, "pipeline_config", None)
    return cfg or PipelineConfig.from_settings(settings)


def get_providers(request: Request) -> OutboundProviders:
    providers = getattr(request.app.state, "providers", None)
    return providers or OutboundProviders.from_settings(settings)


def raise_http(err: PipelineError) -> NoReturn:
    if isinstance(err, NotFoundError):
        raise HTTPException(status_code=404, detail=str(err)) from err
    if isinstance(err, StateConflictError):
        raise HTTPException(status_code=409, detail=str(err)) from err
    if isinstance(err, RateLimitError):
        raise HTTPException(status_code=429, detail={"error": str(err), "limit": err.limit}) from err
    raise HTTPException(status_code=400, detail=str(err)) from err
