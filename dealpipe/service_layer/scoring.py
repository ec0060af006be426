# dealpipe/service_layer/scoring.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineConfig
from ..domain.errors import ValidationError
from ..domain.normalize import scoring_market_key
from ..domain.scoring import DEFAULT_WEIGHTS, ScoreResult, score_lead
from ..models import BuyBox, Grade, Lead, ScoringConfig, ScoringConfigStatus
from .events import log_kpi_event, notify
from .routing import effective_grade, get_lead, route_lead

log = logging.getLogger(__name__)

HIGH_GRADES = (Grade.A, Grade.B)


async def get_active_scoring_config(session: AsyncSession) -> ScoringConfig | None:
    return (
        (
            await session.execute(
                select(ScoringConfig)
                .where(ScoringConfig.status == ScoringConfigStatus.active)
                .order_by(ScoringConfig.version.desc())
            )
        )
        .scalars()
        .first()
    )


async def active_weights(session: AsyncSession) -> dict[str, float]:
    cfg = await get_active_scoring_config(session)
    if cfg is None:
        return dict(DEFAULT_WEIGHTS)
    return {**DEFAULT_WEIGHTS, **(cfg.weights or {})}


async def candidate_buy_boxes(session: AsyncSession, lead: Lead) -> list[BuyBox]:
    key = scoring_market_key(lead)
    if not key:
        return []
    stmt = select(BuyBox).where(BuyBox.market_key == key).where(BuyBox.active == True)  # noqa: E712
    return list((await session.execute(stmt.order_by(BuyBox.id.asc()))).scalars().all())


async def compute_lead_score(session: AsyncSession, lead: Lead, config: PipelineConfig) -> ScoreResult:
    boxes = await candidate_buy_boxes(session, lead)
    return score_lead(lead, boxes, config, weights=await active_weights(session))


def _apply_result(lead: Lead, result: ScoreResult, now: datetime) -> None:
    # merge into the lead; score_override stays untouched
    lead.score = float(result.score)
    lead.grade = result.grade
    lead.lead_tier = result.lead_tier
    mb = result.matched_buy_box
    lead.buy_box_id = mb.id if mb else None
    lead.buy_box_key = mb.market_key if mb else None
    lead.buy_box_label = mb.label if mb else None
    lead.score_reasons = list(result.reasons)
    lead.score_failed_checks = list(result.failed_checks)
    lead.cash_flow = result.cash_flow
    lead.score_evaluated_at = now
    lead.updated_at = now


def score_payload(lead: Lead) -> dict[str, Any]:
    return {
        "lead_id": lead.id,
        "score": lead.score,
        "grade": effective_grade(lead).value,
        "computed_grade": (lead.grade or Grade.Dead).value,
        "lead_tier": lead.lead_tier.value if lead.lead_tier else None,
        "buy_box_id": lead.buy_box_id,
        "buy_box_key": lead.buy_box_key,
        "buy_box_label": lead.buy_box_label,
        "reasons": list(lead.score_reasons or []),
        "failed_checks": list(lead.score_failed_checks or []),
        "cash_flow": lead.cash_flow,
        "override": lead.score_override,
        "evaluated_at": lead.score_evaluated_at,
    }


async def recalculate_lead_score(
    session: AsyncSession,
    lead_id: int,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
    skip_kpi: bool = False,
) -> Lead:
    now = now or datetime.utcnow()
    lead = await get_lead(session, lead_id)

    previous_score = lead.score or 0.0
    previous_grade = effective_grade(lead)

    result = await compute_lead_score(session, lead, config)
    _apply_result(lead, result, now)
    await session.flush()

    new_grade = effective_grade(lead)
    if new_grade in HIGH_GRADES and previous_grade not in HIGH_GRADES and result.matched_buy_box:
        await notify(
            session,
            None,
            "lead.high_grade_match",
            {"lead_id": lead.id, "grade": new_grade.value, "buy_box_label": lead.buy_box_label},
        )

    try:
        await route_lead(session, lead, config, now=now)
    except Exception:
        log.exception("routing after rescoring failed for lead %s", lead.id)

    if not skip_kpi:
        await log_kpi_event(
            session,
            "score_calculated",
            lead_id=lead.id,
            payload={
                "score": lead.score,
                "grade": new_grade.value,
                "previous_score": previous_score,
                "previous_grade": previous_grade.value,
                "buy_box_key": lead.buy_box_key,
                "reasons": len(result.reasons),
                "failed_checks": len(result.failed_checks),
            },
            now=now,
        )
    return lead


async def get_lead_score(
    session: AsyncSession,
    lead_id: int,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    lead = await get_lead(session, lead_id)
    if lead.score_evaluated_at is None:
        lead = await recalculate_lead_score(session, lead_id, config, now=now)
    return score_payload(lead)


async def override_lead_score(
    session: AsyncSession,
    lead_id: int,
    *,
    grade: str | None,
    reason: str | None,
    user_id: str | None,
    config: PipelineConfig,
    now: datetime | None = None,
) -> Lead:
    if not grade:
        raise ValidationError("grade is required")
    try:
        g = Grade(grade)
    except ValueError:
        raise ValidationError(f"Invalid grade: {grade!r}. Use one of {[x.value for x in Grade]}")
    if not reason or not reason.strip():
        raise ValidationError("reason is required for a score override")

    now = now or datetime.utcnow()
    lead = await get_lead(session, lead_id)
    previous_grade = effective_grade(lead)

    lead.score_override = {
        "grade": g.value,
        "reason": reason.strip(),
        "overridden_by": user_id,
        "overridden_at": now.isoformat(),
    }
    lead.updated_at = now
    await session.flush()

    await log_kpi_event(
        session,
        "score_overridden",
        lead_id=lead.id,
        user_id=user_id,
        payload={"grade": g.value, "previous_grade": previous_grade.value, "reason": reason.strip()},
        now=now,
    )

    try:
        await route_lead(session, lead, config, now=now, user_id=user_id)
    except Exception:
        log.exception("routing after score override failed for lead %s", lead.id)
    return lead


async def clear_score_override(
    session: AsyncSession,
    lead_id: int,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> Lead:
    lead = await get_lead(session, lead_id)
    lead.score_override = None
    await session.flush()
    try:
        await route_lead(session, lead, config, now=now)
    except Exception:
        log.exception("routing after clearing override failed for lead %s", lead.id)
    return lead
