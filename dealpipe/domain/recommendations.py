# dealpipe/domain/recommendations.py
from __future__ import annotations

import statistics
from dataclasses import dataclass, field
from typing import Any, Iterable

from ..config import FinancingAssumptions
from ..models import PerformanceGrade, RecommendationType

MAX_DSCR_MINIMUM = 1.5
VACANCY_FLOOR = 0.08
DEFAULT_VACANCY_RATE = FinancingAssumptions().vacancy_rate


@dataclass(frozen=True)
class OutcomeMetrics:
    sample_size: int
    win_rate: float
    loss_rate: float
    avg_cash_flow_variance: float
    avg_dscr_variance: float
    avg_expense_variance: float
    median_cash_flow: float
    median_dscr: float
    tail_risk_pct: float

    def to_dict(self) -> dict[str, Any]:
        return {k: round(v, 4) if isinstance(v, float) else v for k, v in self.__dict__.items()}


@dataclass(frozen=True)
class Proposal:
    type: RecommendationType
    current_value: Any
    proposed_value: Any
    confidence: int
    rationale: str
    evidence: dict[str, Any] = field(default_factory=dict)


def outcome_metrics(latest_periods: Iterable[Any]) -> OutcomeMetrics | None:
    periods = [p for p in latest_periods if p is not None]
    if not periods:
        return None
    n = len(periods)

    def _mean(attr: str) -> float:
        return sum(getattr(p, attr) or 0.0 for p in periods) / n

    grades = [getattr(p.performance_grade, "value", p.performance_grade) for p in periods]
    cash_flows = [p.actual_monthly_cash_flow for p in periods]
    return OutcomeMetrics(
        sample_size=n,
        win_rate=sum(1 for g in grades if g in (PerformanceGrade.A.value, PerformanceGrade.B.value)) / n * 100,
        loss_rate=sum(1 for g in grades if g == PerformanceGrade.D.value) / n * 100,
        avg_cash_flow_variance=_mean("cash_flow_variance"),
        avg_dscr_variance=_mean("dscr_variance"),
        avg_expense_variance=_mean("expense_variance"),
        median_cash_flow=float(statistics.median(cash_flows)),
        median_dscr=float(statistics.median(p.actual_dscr for p in periods)),
        tail_risk_pct=sum(1 for cf in cash_flows if cf < 0) / n * 100,
    )


def propose(buy_box: Any, m: OutcomeMetrics, default_vacancy_rate: float = DEFAULT_VACANCY_RATE) -> list[Proposal]:
    """
    Rule set over a buy box's realized outcomes. Later rules for the same
    type are skipped so one run proposes each parameter at most once.

    Vacancy is proposed as a rate of gross rent (`cash_flow_config["vacancy_rate"]`),
    never as a dollar reserve.
    """
    cfg: dict[str, Any] = buy_box.cash_flow_config or {}
    required = float(cfg.get("required_dscr") or 1.25)
    evidence = m.to_dict()
    out: list[Proposal] = []
    seen: set[RecommendationType] = set()

    def _add(p: Proposal) -> None:
        if p.type not in seen:
            seen.add(p.type)
            out.append(p)

    if m.tail_risk_pct > 20:
        conf = min(100, round(m.tail_risk_pct * 2))
        _add(
            Proposal(
                type=RecommendationType.dscr_minimum,
                current_value=required,
                proposed_value=round(min(MAX_DSCR_MINIMUM, required + 0.1), 2),
                confidence=conf,
                rationale=f"{m.tail_risk_pct:.1f}% of deals show negative cash flow; tighten DSCR minimum",
                evidence=evidence,
            )
        )
        # a pinned dollar reserve wins over any rate, so only rate-based boxes get a proposal
        vacancy = cfg.get("vacancy_rate")
        current_rate = default_vacancy_rate if vacancy is None else float(vacancy)
        if cfg.get("vacancy_reserve") is None and current_rate < VACANCY_FLOOR:
            _add(
                Proposal(
                    type=RecommendationType.vacancy_assumption,
                    current_value=current_rate,
                    proposed_value=max(VACANCY_FLOOR, round(current_rate * 1.2, 4)),
                    confidence=max(0, conf - 10),
                    rationale="Negative cash-flow tail suggests vacancy is under-reserved",
                    evidence=evidence,
                )
            )

    if m.median_dscr < required:
        _add(
            Proposal(
                type=RecommendationType.dscr_minimum,
                current_value=required,
                proposed_value=round(min(MAX_DSCR_MINIMUM, m.median_dscr + 0.15), 2),
                confidence=max(60, round(100 - m.median_dscr / required * 100)),
                rationale=f"Median realized DSCR {m.median_dscr:.2f} is below the required {required:.2f}",
                evidence=evidence,
            )
        )

    if m.median_cash_flow < 0 and buy_box.buy_price_max:
        _add(
            Proposal(
                type=RecommendationType.price_ceiling,
                current_value=buy_box.buy_price_max,
                proposed_value=round(buy_box.buy_price_max * 0.9, 2),
                confidence=max(50, min(100, round(abs(m.median_cash_flow) / 10))),
                rationale=f"Median realized cash flow is ${m.median_cash_flow:,.2f}/month; lower the price ceiling 10%",
                evidence=evidence,
            )
        )

    maintenance = cfg.get("maintenance_reserve")
    if m.avg_expense_variance > 100 and maintenance:
        _add(
            Proposal(
                type=RecommendationType.expense_assumption,
                current_value=maintenance,
                proposed_value=round(maintenance * 1.15, 2),
                confidence=max(55, min(100, round(m.avg_expense_variance / 5))),
                rationale=f"Expenses run ${m.avg_expense_variance:,.2f}/month over projection on average",
                evidence=evidence,
            )
        )

    return out
