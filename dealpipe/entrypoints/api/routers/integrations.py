# dealpipe/entrypoints/api/routers/integrations.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import raise_http, require_api_key
from ....db import get_session
from ....domain.errors import PipelineError
from ....integrations.services.sinks import list_webhook_sinks, register_webhook_sink, update_webhook_sink
from ....models import Integration
from ....schemas import WebhookSinkIn, WebhookSinkOut, WebhookSinkPatch

router = APIRouter(tags=["integrations"])


def _out(integ: Integration) -> WebhookSinkOut:
    return WebhookSinkOut(
        id=integ.id,
        name=integ.name,
        type=integ.type.value,
        enabled=integ.enabled,
        created_at=integ.created_at,
    )


@router.post("/integrations", response_model=WebhookSinkOut, dependencies=[Depends(require_api_key)])
async def create_integration(body: WebhookSinkIn, session: AsyncSession = Depends(get_session)) -> WebhookSinkOut:
    try:
        integ = await register_webhook_sink(
            session, name=body.name, url=body.url, secret=body.secret, enabled=body.enabled
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return _out(integ)


@router.patch("/integrations/{integration_id}", response_model=WebhookSinkOut, dependencies=[Depends(require_api_key)])
async def patch_integration(
    integration_id: int,
    body: WebhookSinkPatch,
    session: AsyncSession = Depends(get_session),
) -> WebhookSinkOut:
    try:
        integ = await update_webhook_sink(
            session, integration_id, enabled=body.enabled, url=body.url, secret=body.secret
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return _out(integ)


@router.get("/integrations", response_model=list[WebhookSinkOut], dependencies=[Depends(require_api_key)])
async def get_integrations(session: AsyncSession = Depends(get_session)) -> list[WebhookSinkOut]:
    return [_out(i) for i in await list_webhook_sinks(session)]
