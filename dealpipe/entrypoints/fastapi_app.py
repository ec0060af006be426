# dealpipe/entrypoints/fastapi_app.py
from __future__ import annotations

import logging

from fastapi import FastAPI

from ..config import PipelineConfig, settings
from ..db import engine
from ..integrations.outbound import OutboundProviders
from ..models import Base
from .api.routers import blasts, buy_boxes, health, integrations, jobs, leads, performance

log = logging.getLogger(__name__)


def create_app(
    *,
    pipeline_config: PipelineConfig | None = None,
    providers: OutboundProviders | None = None,
) -> FastAPI:
    app = FastAPI(title="dealpipe - Deal Sourcing Pipeline")

    app.state.pipeline_config = pipeline_config or PipelineConfig.from_settings(settings)
    app.state.providers = providers or OutboundProviders.from_settings(settings)

    @app.on_event("startup")
    async def _startup() -> None:
        # Single place where DB tables are created in dev.
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        log.info("dealpipe started; channels=%s", app.state.providers.available())

    # Routers
    app.include_router(health.router)
    app.include_router(leads.router)
    app.include_router(buy_boxes.router)
    app.include_router(blasts.router)
    app.include_router(performance.router)
    app.include_router(integrations.router)
    app.include_router(jobs.router)

    return app
