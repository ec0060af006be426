# dealpipe/service_layer/feedback.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import NotFoundError
from ..domain.performance import WARNING_NONE, aggregate_metrics, buy_box_warnings, buyer_engagement_score
from ..models import BuyBox, Buyer, DealPerformance
from .performance import latest_periods

log = logging.getLogger(__name__)


async def recalculate_buy_box_feedback(
    session: AsyncSession,
    buy_box_id: int,
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Advisory only: writes performance_metadata, never the buy box's criteria.
    """
    now = now or datetime.utcnow()
    bb = (await session.execute(select(BuyBox).where(BuyBox.id == buy_box_id))).scalars().first()
    if not bb:
        raise NotFoundError(f"Buy box {buy_box_id} not found")

    perfs = list(
        (await session.execute(select(DealPerformance).where(DealPerformance.buy_box_id == bb.id))).scalars().all()
    )
    metrics = aggregate_metrics(await latest_periods(session, perfs))
    tier, warnings = buy_box_warnings(metrics)

    bb.performance_metadata = {
        "warning_tier": tier,
        "warnings": warnings,
        "metrics": metrics.to_dict(),
        "last_calculated_at": now.isoformat(),
    }
    await session.flush()
    return bb.performance_metadata


async def recalculate_buyer_engagement(
    session: AsyncSession,
    buyer_id: int,
    *,
    now: datetime | None = None,
) -> float:
    now = now or datetime.utcnow()
    buyer = (await session.execute(select(Buyer).where(Buyer.id == buyer_id))).scalars().first()
    if not buyer:
        raise NotFoundError(f"Buyer {buyer_id} not found")

    perfs = list(
        (await session.execute(select(DealPerformance).where(DealPerformance.buyer_id == buyer.id))).scalars().all()
    )
    metrics = aggregate_metrics(await latest_periods(session, perfs))
    if metrics.total_deals == 0:
        return buyer.engagement_score

    buyer.engagement_score = buyer_engagement_score(metrics)
    buyer.close_rate = round(metrics.performance_rate, 2)
    buyer.last_purchase_date = max(p.closed_date for p in perfs)
    buyer.feedback_metrics = {**metrics.to_dict(), "last_calculated_at": now.isoformat()}
    buyer.updated_at = now
    await session.flush()
    return buyer.engagement_score


async def recalculate_all_feedback(session: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.utcnow()
    buy_box_ids = (
        (
            await session.execute(
                select(DealPerformance.buy_box_id).where(DealPerformance.buy_box_id.is_not(None)).distinct()
            )
        )
        .scalars()
        .all()
    )
    buyer_ids = (await session.execute(select(DealPerformance.buyer_id).distinct())).scalars().all()

    summary = {"buy_boxes_updated": 0, "buyers_updated": 0, "errors": 0}
    for bb_id in buy_box_ids:
        try:
            await recalculate_buy_box_feedback(session, bb_id, now=now)
            summary["buy_boxes_updated"] += 1
        except Exception:
            log.exception("feedback sweep: buy box %s failed", bb_id)
            summary["errors"] += 1
    for buyer_id in buyer_ids:
        try:
            await recalculate_buyer_engagement(session, buyer_id, now=now)
            summary["buyers_updated"] += 1
        except Exception:
            log.exception("feedback sweep: buyer %s failed", buyer_id)
            summary["errors"] += 1

    log.info(
        "feedback sweep: %s buy boxes, %s buyers, %s errors",
        summary["buy_boxes_updated"],
        summary["buyers_updated"],
        summary["errors"],
    )
    return summary


async def get_buy_box_warnings(session: AsyncSession) -> list[dict[str, Any]]:
    rows = (await session.execute(select(BuyBox).order_by(BuyBox.id.asc()))).scalars().all()
    out: list[dict[str, Any]] = []
    for bb in rows:
        meta = bb.performance_metadata or {}
        tier = meta.get("warning_tier") or WARNING_NONE
        if tier == WARNING_NONE:
            continue
        out.append(
            {
                "buy_box_id": bb.id,
                "market_key": bb.market_key,
                "label": bb.label,
                "warning_tier": tier,
                "warnings": list(meta.get("warnings") or []),
                "metrics": meta.get("metrics") or {},
                "last_calculated_at": meta.get("last_calculated_at"),
            }
        )
    return out
