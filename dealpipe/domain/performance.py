# dealpipe/domain/performance.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Iterable

from ..models import PerformanceGrade

MIN_DSCR = 1.25

WARNING_NONE = "none"
WARNING = "WARNING"
CRITICAL = "CRITICAL"


@dataclass(frozen=True)
class ProForma:
    projected_rent: float
    projected_noi: float
    projected_monthly_cash_flow: float
    projected_dscr: float


@dataclass(frozen=True)
class PeriodActuals:
    actual_rent_collected: float
    actual_vacancy_rate: float
    actual_expenses_total: float
    actual_noi: float
    actual_monthly_cash_flow: float
    actual_dscr: float


@dataclass(frozen=True)
class Variances:
    cash_flow: float
    dscr: float
    rent: float
    expense: float


@dataclass(frozen=True)
class PerformanceMetrics:
    total_deals: int = 0
    grade_distribution: dict[str, int] = field(default_factory=lambda: {"A": 0, "B": 0, "C": 0, "D": 0})
    average_cash_flow_variance: float = 0.0
    average_dscr_variance: float = 0.0
    average_rent_variance: float = 0.0
    average_expense_variance: float = 0.0
    performance_rate: float = 0.0  # % of A/B

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_deals": self.total_deals,
            "grade_distribution": dict(self.grade_distribution),
            "average_cash_flow_variance": round(self.average_cash_flow_variance, 2),
            "average_dscr_variance": round(self.average_dscr_variance, 4),
            "average_rent_variance": round(self.average_rent_variance, 2),
            "average_expense_variance": round(self.average_expense_variance, 2),
            "performance_rate": round(self.performance_rate, 2),
        }


def _pct(actual: float, projected: float) -> float:
    if projected == 0:
        return 0.0
    return (actual - projected) / abs(projected) * 100.0


def projected_expenses(pf: ProForma) -> float:
    return pf.projected_noi - pf.projected_monthly_cash_flow


def compute_variances(actuals: PeriodActuals, pf: ProForma) -> Variances:
    return Variances(
        cash_flow=actuals.actual_monthly_cash_flow - pf.projected_monthly_cash_flow,
        dscr=actuals.actual_dscr - pf.projected_dscr,
        rent=actuals.actual_rent_collected - pf.projected_rent,
        expense=actuals.actual_expenses_total - projected_expenses(pf),
    )


def grade_period(
    actual_cash_flow: float,
    projected_cash_flow: float,
    actual_dscr: float,
    projected_dscr: float | None,
    min_dscr: float = MIN_DSCR,
) -> PerformanceGrade:
    required = projected_dscr or min_dscr

    if actual_cash_flow < 0 or actual_dscr < required:
        return PerformanceGrade.D
    if actual_cash_flow >= projected_cash_flow:
        return PerformanceGrade.A
    if _pct(actual_cash_flow, projected_cash_flow) >= -10 and actual_cash_flow > 0 and actual_dscr >= required * 0.9:
        return PerformanceGrade.B
    if actual_cash_flow > 0:
        return PerformanceGrade.C
    return PerformanceGrade.D


def period_flags(actuals: PeriodActuals, pf: ProForma) -> list[str]:
    flags: list[str] = []

    cf_pct = _pct(actuals.actual_monthly_cash_flow, pf.projected_monthly_cash_flow)
    if cf_pct < -20:
        flags.append("significant_cash_flow_shortfall")
    elif cf_pct < -10:
        flags.append("moderate_cash_flow_shortfall")

    if actuals.actual_dscr - pf.projected_dscr < -0.2:
        flags.append("dscr_below_projection")
    if actuals.actual_dscr < MIN_DSCR:
        flags.append("dscr_below_minimum")

    if _pct(actuals.actual_rent_collected, pf.projected_rent) < -15:
        flags.append("rent_collection_shortfall")

    if actuals.actual_vacancy_rate > 0.1:
        flags.append("high_vacancy_rate")
    elif actuals.actual_vacancy_rate > 0.05:
        flags.append("elevated_vacancy_rate")

    if _pct(actuals.actual_expenses_total, projected_expenses(pf)) > 20:
        flags.append("expense_overrun")

    return flags


def aggregate_metrics(latest_periods: Iterable[Any | None]) -> PerformanceMetrics:
    """
    One entry per deal: that deal's most recent period (or None when it has
    not reported yet). Deals without a period still count toward the total.
    """
    periods = list(latest_periods)
    if not periods:
        return PerformanceMetrics()

    dist = {"A": 0, "B": 0, "C": 0, "D": 0}
    sums = {"cash_flow": 0.0, "dscr": 0.0, "rent": 0.0, "expense": 0.0}
    counts = {"cash_flow": 0, "dscr": 0, "rent": 0, "expense": 0}
    good = 0

    for p in periods:
        if p is None:
            continue
        g = getattr(p.performance_grade, "value", p.performance_grade)
        if g:
            dist[g] = dist.get(g, 0) + 1
            if g in ("A", "B"):
                good += 1
        for key, attr in (
            ("cash_flow", "cash_flow_variance"),
            ("dscr", "dscr_variance"),
            ("rent", "rent_variance"),
            ("expense", "expense_variance"),
        ):
            v = getattr(p, attr)
            if v is not None:
                sums[key] += v
                counts[key] += 1

    def _avg(k: str) -> float:
        return sums[k] / counts[k] if counts[k] else 0.0

    return PerformanceMetrics(
        total_deals=len(periods),
        grade_distribution=dist,
        average_cash_flow_variance=_avg("cash_flow"),
        average_dscr_variance=_avg("dscr"),
        average_rent_variance=_avg("rent"),
        average_expense_variance=_avg("expense"),
        performance_rate=good / len(periods) * 100.0,
    )


def buy_box_warnings(metrics: PerformanceMetrics) -> tuple[str, list[str]]:
    """
    Advisory tier + systemic flags. Never changes buy box thresholds.
    """
    if metrics.total_deals == 0:
        return WARNING_NONE, []

    warnings: list[str] = []
    tier = WARNING_NONE
    if metrics.performance_rate < 40:
        tier = CRITICAL
        warnings.append("critical_performance_issue")
    elif metrics.performance_rate < 60:
        tier = WARNING
        warnings.append("performance_concern")

    if metrics.average_cash_flow_variance < -200:
        warnings.append("systematic_cash_flow_shortfall")
    if metrics.average_dscr_variance < -0.2:
        warnings.append("systematic_dscr_shortfall")
    return tier, warnings


def buyer_engagement_score(metrics: PerformanceMetrics) -> float:
    score = metrics.performance_rate

    if metrics.total_deals >= 10:
        score += 5
    elif metrics.total_deals >= 5:
        score += 2

    v = metrics.average_cash_flow_variance
    if v < -300:
        score -= 10
    elif v < -100:
        score -= 5
    elif v > 100:
        score += 5

    return float(round(max(0.0, min(100.0, score))))
