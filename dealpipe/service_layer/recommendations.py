# dealpipe/service_layer/recommendations.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineConfig
from ..domain.errors import NotFoundError, StateConflictError, ValidationError
from ..domain.recommendations import outcome_metrics, propose
from ..domain.scoring import DEFAULT_WEIGHTS
from ..models import (
    BuyBox,
    BuyBoxRecommendation,
    DealPerformance,
    RecommendationStatus,
    RecommendationType,
    ScoringConfig,
    ScoringConfigStatus,
    Strategy,
)
from .performance import latest_periods
from .scoring import get_active_scoring_config

log = logging.getLogger(__name__)

ELIGIBLE_STRATEGIES = (Strategy.buy_hold, Strategy.commercial)
DEDUPE_DAYS = 7
OPEN_STATUSES = (RecommendationStatus.proposed, RecommendationStatus.reviewed)

# recommendation type -> cash_flow_config key it rewrites
_CASH_FLOW_KEYS = {
    RecommendationType.dscr_minimum: "required_dscr",
    RecommendationType.vacancy_assumption: "vacancy_rate",
    RecommendationType.expense_assumption: "maintenance_reserve",
}


async def get_buy_box(session: AsyncSession, buy_box_id: int) -> BuyBox:
    bb = (await session.execute(select(BuyBox).where(BuyBox.id == buy_box_id))).scalars().first()
    if not bb:
        raise NotFoundError(f"Buy box {buy_box_id} not found")
    return bb


async def get_recommendation(session: AsyncSession, rec_id: int) -> BuyBoxRecommendation:
    rec = (
        (await session.execute(select(BuyBoxRecommendation).where(BuyBoxRecommendation.id == rec_id)))
        .scalars()
        .first()
    )
    if not rec:
        raise NotFoundError(f"Recommendation {rec_id} not found")
    return rec


async def list_recommendations(
    session: AsyncSession,
    *,
    status: RecommendationStatus | None = None,
    buy_box_id: int | None = None,
) -> list[BuyBoxRecommendation]:
    stmt = select(BuyBoxRecommendation)
    if status is not None:
        stmt = stmt.where(BuyBoxRecommendation.status == status)
    if buy_box_id is not None:
        stmt = stmt.where(BuyBoxRecommendation.buy_box_id == buy_box_id)
    return list((await session.execute(stmt.order_by(BuyBoxRecommendation.id.desc()))).scalars().all())


async def _recent_open_types(session: AsyncSession, buy_box_id: int, now: datetime) -> set[RecommendationType]:
    rows = (
        (
            await session.execute(
                select(BuyBoxRecommendation.type)
                .where(BuyBoxRecommendation.buy_box_id == buy_box_id)
                .where(BuyBoxRecommendation.status.in_(OPEN_STATUSES))
                .where(BuyBoxRecommendation.created_at >= now - timedelta(days=DEDUPE_DAYS))
            )
        )
        .scalars()
        .all()
    )
    return set(rows)


async def generate_recommendations(
    session: AsyncSession,
    buy_box_id: int,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or datetime.utcnow()
    bb = await get_buy_box(session, buy_box_id)

    if bb.strategy not in ELIGIBLE_STRATEGIES:
        return {"buy_box_id": bb.id, "eligible": False, "reason": f"Strategy {bb.strategy.value} not eligible", "created": []}

    since = now - timedelta(days=config.recommendation_lookback_days)
    perfs = list(
        (
            await session.execute(
                select(DealPerformance)
                .where(DealPerformance.buy_box_id == bb.id)
                .where(DealPerformance.closed_date >= since)
            )
        )
        .scalars()
        .all()
    )
    periods = [p for p in await latest_periods(session, perfs) if p is not None]
    if len(periods) < config.recommendation_min_sample_size:
        return {
            "buy_box_id": bb.id,
            "eligible": False,
            "reason": f"Insufficient sample: {len(periods)} < {config.recommendation_min_sample_size}",
            "created": [],
        }

    metrics = outcome_metrics(periods)
    skip = await _recent_open_types(session, bb.id, now)
    created: list[BuyBoxRecommendation] = []
    for p in propose(bb, metrics, default_vacancy_rate=config.financing.vacancy_rate):
        if p.type in skip:
            continue
        rec = BuyBoxRecommendation(
            buy_box_id=bb.id,
            type=p.type,
            status=RecommendationStatus.proposed,
            current_value=p.current_value,
            proposed_value=p.proposed_value,
            confidence=int(p.confidence),
            rationale=p.rationale,
            evidence=p.evidence,
            created_at=now,
        )
        session.add(rec)
        created.append(rec)
    await session.flush()

    log.info("recommendations for buy box %s: %s created, %s deduped", bb.id, len(created), len(skip))
    return {"buy_box_id": bb.id, "eligible": True, "metrics": metrics.to_dict(), "created": created}


async def mark_reviewed(session: AsyncSession, rec_id: int) -> BuyBoxRecommendation:
    rec = await get_recommendation(session, rec_id)
    if rec.status != RecommendationStatus.proposed:
        raise StateConflictError(f"Recommendation {rec.id} is {rec.status.value}; only proposed can be reviewed")
    rec.status = RecommendationStatus.reviewed
    await session.flush()
    return rec


async def _bump_scoring_config(
    session: AsyncSession,
    rec: BuyBoxRecommendation,
    note: str,
    now: datetime,
) -> ScoringConfig:
    current = await get_active_scoring_config(session)
    weights = dict(current.weights) if current else dict(DEFAULT_WEIGHTS)
    assumptions = dict(current.assumptions or {}) if current else {}

    proposed = rec.proposed_value or {}
    weights.update(proposed.get("weights") or {})
    assumptions.update(proposed.get("assumptions") or {})

    latest = (
        (await session.execute(select(ScoringConfig).order_by(ScoringConfig.version.desc()))).scalars().first()
    )
    if current:
        current.status = ScoringConfigStatus.archived
        current.archived_at = now

    cfg = ScoringConfig(
        version=(latest.version if latest else 0) + 1,
        status=ScoringConfigStatus.active,
        weights=weights,
        assumptions=assumptions,
        change_note=note,
        source_recommendation_id=rec.id,
        activated_at=now,
        created_at=now,
    )
    session.add(cfg)
    await session.flush()
    return cfg


async def _apply(session: AsyncSession, rec: BuyBoxRecommendation, note: str, now: datetime) -> None:
    if rec.type == RecommendationType.scoring_weight_adjustment:
        await _bump_scoring_config(session, rec, note, now)
        return

    bb = await get_buy_box(session, rec.buy_box_id)
    if rec.type in _CASH_FLOW_KEYS:
        bb.cash_flow_config = {**(bb.cash_flow_config or {}), _CASH_FLOW_KEYS[rec.type]: rec.proposed_value}
    elif rec.type == RecommendationType.price_ceiling:
        bb.buy_price_max = float(rec.proposed_value)
    elif rec.type == RecommendationType.exclusion_rule:
        phrase = str(rec.proposed_value)
        if phrase not in (bb.exclusions or []):
            bb.exclusions = [*(bb.exclusions or []), phrase]
    bb.updated_at = now


async def accept_recommendation(
    session: AsyncSession,
    rec_id: int,
    *,
    decision_note: str | None,
    user_id: str | None = None,
    now: datetime | None = None,
) -> BuyBoxRecommendation:
    if not decision_note or not decision_note.strip():
        raise ValidationError("decision_note is required")
    now = now or datetime.utcnow()
    rec = await get_recommendation(session, rec_id)
    if rec.status in (RecommendationStatus.accepted, RecommendationStatus.rejected):
        raise StateConflictError(f"Recommendation {rec.id} is already {rec.status.value}")

    await _apply(session, rec, decision_note.strip(), now)
    rec.status = RecommendationStatus.accepted
    rec.decision_note = decision_note.strip()
    rec.decided_by = user_id
    rec.decided_at = now
    rec.applied_at = now
    await session.flush()
    return rec


async def reject_recommendation(
    session: AsyncSession,
    rec_id: int,
    *,
    decision_note: str | None,
    user_id: str | None = None,
    now: datetime | None = None,
) -> BuyBoxRecommendation:
    if not decision_note or not decision_note.strip():
        raise ValidationError("decision_note is required")
    now = now or datetime.utcnow()
    rec = await get_recommendation(session, rec_id)
    if rec.status == RecommendationStatus.accepted:
        raise StateConflictError(f"Recommendation {rec.id} is already accepted")
    if rec.status == RecommendationStatus.rejected:
        raise StateConflictError(f"Recommendation {rec.id} is already rejected")

    rec.status = RecommendationStatus.rejected
    rec.decision_note = decision_note.strip()
    rec.decided_by = user_id
    rec.decided_at = now
    await session.flush()
    return rec
