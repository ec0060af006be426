# dealpipe/entrypoints/api/routers/leads.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import actor_id, get_pipeline_config, raise_http, require_api_key
from ....config import PipelineConfig
from ....db import get_session
from ....domain.errors import PipelineError
from ....models import Channel
from ....schemas import (
    BuyerExclusionOut,
    BuyerMatchOut,
    LeadIntake,
    LeadOut,
    MatchingBuyersOut,
    RouteOut,
    RoutingOverrideIn,
    ScoreOut,
    ScoreOverrideIn,
)
from ....service_layer.intake import create_lead, update_lead_intake
from ....service_layer.matching import find_matching_buyers
from ....service_layer.routing import clear_routing_override, get_lead, override_routing
from ....service_layer.scoring import (
    clear_score_override,
    get_lead_score,
    override_lead_score,
    recalculate_lead_score,
    score_payload,
)

router = APIRouter(tags=["leads"])


def _route_out(decision) -> RouteOut:
    return RouteOut(
        route=decision.route,
        priority=decision.priority,
        sla_hours=decision.sla_hours,
        reasons=list(decision.reasons),
        routing_reason=decision.routing_reason,
        blocked_by_cash_flow=decision.blocked_by_cash_flow,
    )


@router.post("/leads", response_model=LeadOut, dependencies=[Depends(require_api_key)])
async def post_lead(
    body: LeadIntake,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> LeadOut:
    try:
        lead = await create_lead(session, body.model_dump(exclude_none=True), cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return LeadOut.model_validate(lead)


@router.get("/leads/{lead_id}", response_model=LeadOut)
async def get_lead_detail(lead_id: int, session: AsyncSession = Depends(get_session)) -> LeadOut:
    try:
        lead = await get_lead(session, lead_id)
    except PipelineError as e:
        raise_http(e)
    return LeadOut.model_validate(lead)


@router.patch("/leads/{lead_id}", response_model=LeadOut, dependencies=[Depends(require_api_key)])
async def patch_lead(
    lead_id: int,
    body: LeadIntake,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> LeadOut:
    try:
        lead = await update_lead_intake(session, lead_id, body.model_dump(exclude_unset=True), cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return LeadOut.model_validate(lead)


@router.get("/leads/{lead_id}/score", response_model=ScoreOut)
async def lead_score(
    lead_id: int,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> ScoreOut:
    try:
        payload = await get_lead_score(session, lead_id, cfg)
    except PipelineError as e:
        raise_http(e)
    # first read may have computed and persisted the score
    await session.commit()
    return ScoreOut(**payload)


@router.post("/leads/{lead_id}/recalculate-score", response_model=ScoreOut, dependencies=[Depends(require_api_key)])
async def recalculate_score(
    lead_id: int,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> ScoreOut:
    try:
        lead = await recalculate_lead_score(session, lead_id, cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return ScoreOut(**score_payload(lead))


@router.post("/leads/{lead_id}/override-score", response_model=ScoreOut, dependencies=[Depends(require_api_key)])
async def post_score_override(
    lead_id: int,
    body: ScoreOverrideIn,
    user_id: str | None = Depends(actor_id),
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> ScoreOut:
    try:
        lead = await override_lead_score(
            session, lead_id, grade=body.grade, reason=body.reason, user_id=user_id, config=cfg
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return ScoreOut(**score_payload(lead))


@router.delete("/leads/{lead_id}/override-score", response_model=ScoreOut, dependencies=[Depends(require_api_key)])
async def delete_score_override(
    lead_id: int,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> ScoreOut:
    try:
        lead = await clear_score_override(session, lead_id, cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return ScoreOut(**score_payload(lead))


@router.post("/leads/{lead_id}/override-routing", response_model=RouteOut, dependencies=[Depends(require_api_key)])
async def post_routing_override(
    lead_id: int,
    body: RoutingOverrideIn,
    user_id: str | None = Depends(actor_id),
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> RouteOut:
    try:
        decision = await override_routing(
            session,
            lead_id,
            route=body.route,
            priority=body.priority,
            reason=body.reason,
            user_id=user_id,
            config=cfg,
        )
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return _route_out(decision)


@router.delete("/leads/{lead_id}/override-routing", response_model=RouteOut, dependencies=[Depends(require_api_key)])
async def delete_routing_override(
    lead_id: int,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> RouteOut:
    try:
        decision = await clear_routing_override(session, lead_id, cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return _route_out(decision)


@router.get("/leads/{lead_id}/matching-buyers", response_model=MatchingBuyersOut)
async def matching_buyers(
    lead_id: int,
    threshold: float = Query(70.0, ge=0, le=100),
    channel: str = Query("internal"),
    limit: int | None = Query(default=None, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> MatchingBuyersOut:
    try:
        ch = Channel(channel)
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid channel: {channel}")
    try:
        result = await find_matching_buyers(session, lead_id, channel=ch, threshold=threshold, max_results=limit)
    except PipelineError as e:
        raise_http(e)

    return MatchingBuyersOut(
        lead_id=lead_id,
        market_key=result.market_key,
        threshold=threshold,
        matches=[BuyerMatchOut(**vars(m)) for m in result.matches],
        excluded=[BuyerExclusionOut(**vars(x)) for x in result.excluded],
    )
