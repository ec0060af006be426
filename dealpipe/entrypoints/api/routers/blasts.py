# dealpipe/entrypoints/api/routers/blasts.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import actor_id, get_pipeline_config, get_providers, raise_http, require_api_key
from ....config import PipelineConfig
from ....db import get_session
from ....domain.errors import PipelineError
from ....integrations.outbound import OutboundProviders
from ....schemas import (
    BlastCreate,
    BlastDetailOut,
    BlastOut,
    BlastResponseIn,
    BlastSendOut,
    BuyerFeedbackOut,
    RecipientOut,
    TemplateIn,
    TemplateOut,
)
from ....service_layer.blasts import (
    cancel_blast,
    create_blast,
    get_blast,
    list_buyer_feedback,
    list_recipients,
    record_response,
    send_blast,
)
from ....service_layer.templates import activate_template, create_template

router = APIRouter(tags=["deal-blasts"])


@router.post("/templates", response_model=TemplateOut, dependencies=[Depends(require_api_key)], tags=["templates"])
async def post_template(body: TemplateIn, session: AsyncSession = Depends(get_session)) -> TemplateOut:
    try:
        tpl = await create_template(
            session,
            key=body.key,
            content=body.content,
            channel=body.channel,
            subject=body.subject,
            activate=body.activate,
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return TemplateOut.model_validate(tpl)


@router.post(
    "/templates/{template_id}/activate",
    response_model=TemplateOut,
    dependencies=[Depends(require_api_key)],
    tags=["templates"],
)
async def post_template_activate(template_id: int, session: AsyncSession = Depends(get_session)) -> TemplateOut:
    try:
        tpl = await activate_template(session, template_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return TemplateOut.model_validate(tpl)


async def _detail(session: AsyncSession, blast_id: int) -> BlastDetailOut:
    blast = await get_blast(session, blast_id)
    recipients = await list_recipients(session, blast.id)
    return BlastDetailOut(
        blast=BlastOut.model_validate(blast),
        recipients=[RecipientOut.model_validate(r) for r in recipients],
    )


@router.post("/deal-blasts", response_model=BlastDetailOut, dependencies=[Depends(require_api_key)])
async def post_blast(
    body: BlastCreate,
    user_id: str | None = Depends(actor_id),
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> BlastDetailOut:
    try:
        blast = await create_blast(
            session,
            lead_id=body.lead_id,
            channel=body.channel,
            message_template_key=body.message_template_key,
            max_recipients=body.max_recipients,
            created_by=user_id,
            config=cfg,
        )
        out = await _detail(session, blast.id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return out


@router.get("/deal-blasts/{blast_id}", response_model=BlastDetailOut)
async def get_blast_detail(blast_id: int, session: AsyncSession = Depends(get_session)) -> BlastDetailOut:
    try:
        return await _detail(session, blast_id)
    except PipelineError as e:
        raise_http(e)


@router.post("/deal-blasts/{blast_id}/send", response_model=BlastSendOut, dependencies=[Depends(require_api_key)])
async def post_blast_send(
    blast_id: int,
    user_id: str | None = Depends(actor_id),
    cfg: PipelineConfig = Depends(get_pipeline_config),
    providers: OutboundProviders = Depends(get_providers),
    session: AsyncSession = Depends(get_session),
) -> BlastSendOut:
    try:
        summary = await send_blast(session, blast_id, user_id=user_id, providers=providers, config=cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return BlastSendOut(**summary)


@router.post("/deal-blasts/{blast_id}/cancel", response_model=BlastOut, dependencies=[Depends(require_api_key)])
async def post_blast_cancel(blast_id: int, session: AsyncSession = Depends(get_session)) -> BlastOut:
    try:
        blast = await cancel_blast(session, blast_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return BlastOut.model_validate(blast)


@router.post(
    "/deal-blasts/{blast_id}/response",
    response_model=RecipientOut,
    dependencies=[Depends(require_api_key)],
)
async def post_blast_response(
    blast_id: int,
    body: BlastResponseIn,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    user_id: str | None = Depends(actor_id),
    session: AsyncSession = Depends(get_session),
) -> RecipientOut:
    try:
        r = await record_response(
            session,
            blast_id,
            recipient_id=body.recipient_id,
            response_text=body.response_text,
            status=body.status,
            config=cfg,
            user_id=user_id,
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return RecipientOut.model_validate(r)


@router.get("/buyer-feedback", response_model=list[BuyerFeedbackOut], tags=["buyers"])
async def get_buyer_feedback(
    lead_id: int | None = Query(default=None),
    buyer_id: int | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[BuyerFeedbackOut]:
    rows = await list_buyer_feedback(session, lead_id=lead_id, buyer_id=buyer_id)
    return [BuyerFeedbackOut.model_validate(f) for f in rows]
