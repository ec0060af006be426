# dealpipe/service_layer/performance.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import NotFoundError, StateConflictError, ValidationError
from ..domain.normalize import canonical_strategy
from ..domain.performance import PeriodActuals, ProForma, compute_variances, grade_period, period_flags
from ..models import DealPerformance, PerformancePeriod

log = logging.getLogger(__name__)

PRO_FORMA_FIELDS = (
    "projected_rent",
    "projected_noi",
    "projected_monthly_cash_flow",
    "projected_dscr",
    "pro_forma_assumptions",
)


def _require(data: dict[str, Any], *keys: str) -> None:
    missing = [k for k in keys if data.get(k) is None]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}")


async def get_performance(session: AsyncSession, performance_id: int) -> DealPerformance:
    perf = (await session.execute(select(DealPerformance).where(DealPerformance.id == performance_id))).scalars().first()
    if not perf:
        raise NotFoundError(f"Deal performance {performance_id} not found")
    return perf


async def create_deal_performance(
    session: AsyncSession,
    data: dict[str, Any],
    *,
    user_id: str | None = None,
    now: datetime | None = None,
) -> DealPerformance:
    _require(
        data,
        "lead_id",
        "buyer_id",
        "strategy",
        "market_key",
        "closed_date",
        "purchase_price",
        "interest_rate",
        "ltv",
        "projected_rent",
        "projected_noi",
        "projected_monthly_cash_flow",
        "projected_dscr",
    )
    strategy = canonical_strategy(data["strategy"])
    if strategy is None:
        raise ValidationError(f"Invalid strategy: {data['strategy']!r}")

    now = now or datetime.utcnow()
    perf = DealPerformance(
        lead_id=int(data["lead_id"]),
        buyer_id=int(data["buyer_id"]),
        buy_box_id=data.get("buy_box_id"),
        strategy=strategy,
        market_key=data["market_key"],
        closed_date=data["closed_date"],
        purchase_price=float(data["purchase_price"]),
        rehab_cost_actual=float(data.get("rehab_cost_actual") or 0.0),
        loan_type=data.get("loan_type") or "DSCR",
        interest_rate=float(data["interest_rate"]),
        ltv=float(data["ltv"]),
        amortization=int(data.get("amortization") or 30),
        projected_rent=float(data["projected_rent"]),
        projected_noi=float(data["projected_noi"]),
        projected_monthly_cash_flow=float(data["projected_monthly_cash_flow"]),
        projected_dscr=float(data["projected_dscr"]),
        pro_forma_assumptions=list(data.get("pro_forma_assumptions") or []),
        pro_forma_locked_at=now,
        pro_forma_locked_by=user_id,
        created_at=now,
    )
    session.add(perf)
    await session.flush()
    return perf


def guard_pro_forma(perf: DealPerformance, changes: dict[str, Any]) -> None:
    """The pro forma is frozen at close; any change to it is a conflict."""
    touched = [k for k in PRO_FORMA_FIELDS if k in changes and changes[k] != getattr(perf, k)]
    if touched:
        raise StateConflictError(
            f"Pro forma for deal performance {perf.id} is locked since {perf.pro_forma_locked_at}; "
            f"cannot change {', '.join(touched)}"
        )


def _pro_forma(perf: DealPerformance) -> ProForma:
    return ProForma(
        projected_rent=perf.projected_rent,
        projected_noi=perf.projected_noi,
        projected_monthly_cash_flow=perf.projected_monthly_cash_flow,
        projected_dscr=perf.projected_dscr,
    )


async def add_performance_period(
    session: AsyncSession,
    performance_id: int,
    data: dict[str, Any],
    *,
    now: datetime | None = None,
    trigger_feedback: bool = True,
) -> PerformancePeriod:
    _require(data, "month", "year", "actual_noi", "actual_monthly_cash_flow", "actual_dscr")
    month, year = int(data["month"]), int(data["year"])
    if not 1 <= month <= 12:
        raise ValidationError("month must be between 1 and 12")
    if year < 2000:
        raise ValidationError("year must be >= 2000")
    vacancy = float(data.get("actual_vacancy_rate") or 0.0)
    if not 0.0 <= vacancy <= 1.0:
        raise ValidationError("actual_vacancy_rate must be between 0 and 1")

    now = now or datetime.utcnow()
    perf = await get_performance(session, performance_id)

    dup = (
        (
            await session.execute(
                select(PerformancePeriod)
                .where(PerformancePeriod.performance_id == perf.id)
                .where(PerformancePeriod.year == year)
                .where(PerformancePeriod.month == month)
            )
        )
        .scalars()
        .first()
    )
    if dup:
        raise StateConflictError(f"Period {year}-{month:02d} already recorded for deal performance {perf.id}")

    actuals = PeriodActuals(
        actual_rent_collected=float(data.get("actual_rent_collected") or 0.0),
        actual_vacancy_rate=vacancy,
        actual_expenses_total=float(data.get("actual_expenses_total") or 0.0),
        actual_noi=float(data["actual_noi"]),
        actual_monthly_cash_flow=float(data["actual_monthly_cash_flow"]),
        actual_dscr=float(data["actual_dscr"]),
    )
    pf = _pro_forma(perf)
    var = compute_variances(actuals, pf)

    period = PerformancePeriod(
        performance_id=perf.id,
        month=month,
        year=year,
        actual_rent_collected=actuals.actual_rent_collected,
        actual_vacancy_rate=actuals.actual_vacancy_rate,
        actual_expenses_total=actuals.actual_expenses_total,
        actual_noi=actuals.actual_noi,
        actual_monthly_cash_flow=actuals.actual_monthly_cash_flow,
        actual_dscr=actuals.actual_dscr,
        cash_flow_variance=round(var.cash_flow, 2),
        dscr_variance=round(var.dscr, 4),
        rent_variance=round(var.rent, 2),
        expense_variance=round(var.expense, 2),
        performance_grade=grade_period(
            actuals.actual_monthly_cash_flow,
            pf.projected_monthly_cash_flow,
            actuals.actual_dscr,
            pf.projected_dscr,
        ),
        flags=period_flags(actuals, pf),
        created_at=now,
    )
    session.add(period)
    await session.flush()

    if trigger_feedback:
        # local import: feedback reads periods through this module
        from .feedback import recalculate_buy_box_feedback, recalculate_buyer_engagement

        if perf.buy_box_id is not None:
            try:
                await recalculate_buy_box_feedback(session, perf.buy_box_id, now=now)
            except Exception:
                log.exception("buy box feedback failed for buy box %s", perf.buy_box_id)
        try:
            await recalculate_buyer_engagement(session, perf.buyer_id, now=now)
        except Exception:
            log.exception("buyer engagement failed for buyer %s", perf.buyer_id)
    return period


async def latest_periods(
    session: AsyncSession,
    performances: list[DealPerformance],
) -> list[PerformancePeriod | None]:
    """Most recent period per deal, in the order of `performances` (None if none yet)."""
    if not performances:
        return []
    ids = [p.id for p in performances]
    rows = (
        (
            await session.execute(
                select(PerformancePeriod)
                .where(PerformancePeriod.performance_id.in_(ids))
                .order_by(PerformancePeriod.year.desc(), PerformancePeriod.month.desc())
            )
        )
        .scalars()
        .all()
    )
    latest: dict[int, PerformancePeriod] = {}
    for row in rows:
        latest.setdefault(row.performance_id, row)
    return [latest.get(i) for i in ids]
