# dealpipe/entrypoints/api/routers/performance.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import actor_id, get_pipeline_config, raise_http, require_api_key
from ....config import PipelineConfig
from ....db import get_session
from ....domain.errors import PipelineError
from ....models import RecommendationStatus
from ....schemas import (
    DecisionIn,
    FeedbackSweepResult,
    GenerateRecommendationsOut,
    PerformanceCreate,
    PerformanceOut,
    PeriodCreate,
    PeriodOut,
    RecommendationOut,
)
from ....service_layer.feedback import recalculate_all_feedback
from ....service_layer.jobruns import tracked_job
from ....service_layer.performance import add_performance_period, create_deal_performance
from ....service_layer.recommendations import (
    accept_recommendation,
    generate_recommendations,
    list_recommendations,
    mark_reviewed,
    reject_recommendation,
)

router = APIRouter(tags=["performance"])


@router.post("/performance", response_model=PerformanceOut, dependencies=[Depends(require_api_key)])
async def post_performance(
    body: PerformanceCreate,
    user_id: str | None = Depends(actor_id),
    session: AsyncSession = Depends(get_session),
) -> PerformanceOut:
    try:
        perf = await create_deal_performance(session, body.model_dump(), user_id=user_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return PerformanceOut.model_validate(perf)


@router.post(
    "/performance/recalculate-feedback",
    response_model=FeedbackSweepResult,
    dependencies=[Depends(require_api_key)],
)
async def post_recalculate_feedback(session: AsyncSession = Depends(get_session)) -> FeedbackSweepResult:
    async with tracked_job(session, "feedback_sweep_api") as job:
        job.summary = await recalculate_all_feedback(session)
    return FeedbackSweepResult(**job.summary)


@router.post(
    "/performance/{performance_id}/periods",
    response_model=PeriodOut,
    dependencies=[Depends(require_api_key)],
)
async def post_period(
    performance_id: int,
    body: PeriodCreate,
    session: AsyncSession = Depends(get_session),
) -> PeriodOut:
    try:
        period = await add_performance_period(session, performance_id, body.model_dump())
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return PeriodOut.model_validate(period)


@router.post(
    "/buy-boxes/{buy_box_id}/recommendations/generate",
    response_model=GenerateRecommendationsOut,
    dependencies=[Depends(require_api_key)],
    tags=["recommendations"],
)
async def post_generate_recommendations(
    buy_box_id: int,
    cfg: PipelineConfig = Depends(get_pipeline_config),
    session: AsyncSession = Depends(get_session),
) -> GenerateRecommendationsOut:
    try:
        res = await generate_recommendations(session, buy_box_id, cfg)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return GenerateRecommendationsOut(
        buy_box_id=res["buy_box_id"],
        eligible=res["eligible"],
        reason=res.get("reason"),
        metrics=res.get("metrics"),
        created=[RecommendationOut.model_validate(r) for r in res["created"]],
    )


@router.get("/recommendations", response_model=list[RecommendationOut], tags=["recommendations"])
async def get_recommendations(
    status: str | None = Query(default=None),
    buy_box_id: int | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[RecommendationOut]:
    try:
        st = RecommendationStatus(status) if status else None
    except ValueError:
        raise HTTPException(status_code=400, detail=f"Invalid status: {status}")
    rows = await list_recommendations(session, status=st, buy_box_id=buy_box_id)
    return [RecommendationOut.model_validate(r) for r in rows]


@router.post(
    "/recommendations/{rec_id}/review",
    response_model=RecommendationOut,
    dependencies=[Depends(require_api_key)],
    tags=["recommendations"],
)
async def post_review(rec_id: int, session: AsyncSession = Depends(get_session)) -> RecommendationOut:
    try:
        rec = await mark_reviewed(session, rec_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return RecommendationOut.model_validate(rec)


@router.post(
    "/recommendations/{rec_id}/accept",
    response_model=RecommendationOut,
    dependencies=[Depends(require_api_key)],
    tags=["recommendations"],
)
async def post_accept(
    rec_id: int,
    body: DecisionIn,
    user_id: str | None = Depends(actor_id),
    session: AsyncSession = Depends(get_session),
) -> RecommendationOut:
    try:
        rec = await accept_recommendation(session, rec_id, decision_note=body.decision_note, user_id=user_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return RecommendationOut.model_validate(rec)


@router.post(
    "/recommendations/{rec_id}/reject",
    response_model=RecommendationOut,
    dependencies=[Depends(require_api_key)],
    tags=["recommendations"],
)
async def post_reject(
    rec_id: int,
    body: DecisionIn,
    user_id: str | None = Depends(actor_id),
    session: AsyncSession = Depends(get_session),
) -> RecommendationOut:
    try:
        rec = await reject_recommendation(session, rec_id, decision_note=body.decision_note, user_id=user_id)
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return RecommendationOut.model_validate(rec)
