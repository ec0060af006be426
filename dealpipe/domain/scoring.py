# dealpipe/domain/scoring.py
from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any, Iterable

from ..config import GradeThresholds, PipelineConfig
from ..models import Grade, LeadTier, Strategy
from .cash_flow import calculate_cash_flow, cash_flow_inputs_from_lead
from .normalize import lead_text_matches, normalize_condition, normalize_property_type, scoring_market_key

DEFAULT_WEIGHTS: dict[str, float] = {
    "property_type": 20,
    "beds_baths": 15,
    "sqft": 10,
    "year_built": 10,
    "condition": 15,
    "buy_price": 20,
    "arv": 10,
    "location": 10,
}

EXCLUSION_PENALTY = 30

CASH_FLOW_STRATEGIES = {Strategy.buy_hold, Strategy.commercial}


@dataclass(frozen=True)
class MatchedBuyBox:
    id: int | None
    market_key: str
    label: str


@dataclass(frozen=True)
class ScoreResult:
    score: int
    grade: Grade
    lead_tier: LeadTier
    matched_buy_box: MatchedBuyBox | None = None
    reasons: list[str] = field(default_factory=list)
    failed_checks: list[str] = field(default_factory=list)
    cash_flow: dict[str, Any] | None = None
    requires_cash_flow: bool = False

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["grade"] = self.grade.value
        d["lead_tier"] = self.lead_tier.value
        return d


def grade_for_score(score: float, thresholds: GradeThresholds | None = None) -> Grade:
    t = thresholds or GradeThresholds()
    if score >= t.a:
        return Grade.A
    if score >= t.b:
        return Grade.B
    if score >= t.c:
        return Grade.C
    if score >= t.d:
        return Grade.D
    return Grade.Dead


def lead_tier_for(lead: Any, score: float) -> LeadTier:
    if (lead.source or "") == "probate" or score >= 70:
        return LeadTier.hot
    if score >= 50:
        return LeadTier.warm
    return LeadTier.cold


def requires_cash_flow(buy_box: Any) -> bool:
    return bool(buy_box.requires_positive_cash_flow) or buy_box.strategy in CASH_FLOW_STRATEGIES


def _dead(failed: str) -> ScoreResult:
    return ScoreResult(score=0, grade=Grade.Dead, lead_tier=LeadTier.cold, failed_checks=[failed])


def _price_bounds(lead: Any, buy_box: Any, reasons: list[str]) -> tuple[float | None, float | None]:
    lo, hi = buy_box.buy_price_min, buy_box.buy_price_max
    where = (lead.property_address or "") + " " + (lead.city or "")
    where = where.lower()
    for city_name, override in (buy_box.city_overrides or {}).items():
        if city_name.lower() in where:
            override = override or {}
            if override.get("buy_price_min") is not None:
                lo = override["buy_price_min"]
            if override.get("buy_price_max") is not None:
                hi = override["buy_price_max"]
            reasons.append(f"Using city override for {city_name}")
            break
    return lo, hi


def score_against_buy_box(
    lead: Any,
    buy_box: Any,
    *,
    thresholds: GradeThresholds | None = None,
    weights: dict[str, float] | None = None,
) -> ScoreResult:
    """
    Weighted checklist for one buy box. Cash flow is not applied here.
    """
    w = {**DEFAULT_WEIGHTS, **(weights or {})}
    matched = MatchedBuyBox(id=buy_box.id, market_key=buy_box.market_key, label=buy_box.label)
    reasons: list[str] = []
    failed: list[str] = []
    total = 0.0
    earned = 0.0

    # property type: hard gate
    total += w["property_type"]
    allowed_types = [t.upper() for t in (buy_box.property_types or [])]
    ptype = normalize_property_type(lead.property_type)
    if allowed_types:
        if ptype and ptype.upper() in allowed_types:
            earned += w["property_type"]
            reasons.append("Property type matches buy box")
        else:
            failed.append(
                f"Property type mismatch: {ptype or 'unknown'} not in {', '.join(buy_box.property_types)}"
            )
            return ScoreResult(
                score=0,
                grade=Grade.Dead,
                lead_tier=lead_tier_for(lead, 0),
                matched_buy_box=matched,
                reasons=reasons,
                failed_checks=failed,
            )
    else:
        earned += w["property_type"]

    # beds / baths
    total += w["beds_baths"]
    ok = True
    if buy_box.min_beds is not None and (not lead.beds or lead.beds < buy_box.min_beds):
        ok = False
        failed.append(f"Beds insufficient: {lead.beds or 'unknown'} < {buy_box.min_beds}")
    if buy_box.min_baths is not None and (not lead.baths or lead.baths < buy_box.min_baths):
        ok = False
        failed.append(f"Baths insufficient: {lead.baths or 'unknown'} < {buy_box.min_baths}")
    if ok:
        earned += w["beds_baths"]
        reasons.append(f"Beds/Baths meet requirements ({lead.beds or '?'}/{lead.baths or '?'})")

    # sqft
    total += w["sqft"]
    if buy_box.min_sqft is not None:
        if lead.sqft and lead.sqft >= buy_box.min_sqft:
            earned += w["sqft"]
            reasons.append(f"Square footage meets requirement ({lead.sqft} >= {buy_box.min_sqft})")
        else:
            failed.append(f"Square footage insufficient: {lead.sqft or 'unknown'} < {buy_box.min_sqft}")
    else:
        earned += w["sqft"]

    # year built
    total += w["year_built"]
    if buy_box.min_year_built is not None:
        if lead.year_built and lead.year_built >= buy_box.min_year_built:
            earned += w["year_built"]
            reasons.append(f"Year built meets requirement ({lead.year_built} >= {buy_box.min_year_built})")
        else:
            failed.append(f"Year built insufficient: {lead.year_built or 'unknown'} < {buy_box.min_year_built}")
    else:
        earned += w["year_built"]

    # condition
    total += w["condition"]
    condition = normalize_condition(lead.condition_tier)
    allowed_conditions = buy_box.condition_allowed or []
    if allowed_conditions:
        if condition and condition in allowed_conditions:
            earned += w["condition"]
            reasons.append(f"Condition matches allowed types: {condition}")
        else:
            failed.append(f"Condition mismatch: {condition or 'unknown'} not in {', '.join(allowed_conditions)}")
    else:
        earned += w["condition"]

    # price (city override may replace the range)
    total += w["buy_price"]
    if lead.asking_price:
        lo, hi = _price_bounds(lead, buy_box, reasons)
        price = lead.asking_price
        if (lo is None or price >= lo) and (hi is None or price <= hi):
            earned += w["buy_price"]
            reasons.append(f"Asking price within range: ${price:,.0f} ({_fmt_range(lo, hi)})")
        else:
            failed.append(f"Asking price out of range: ${price:,.0f} not in {_fmt_range(lo, hi)}")
    else:
        failed.append("Asking price not available")

    # ARV
    total += w["arv"]
    if buy_box.arv_min is not None and buy_box.arv_max is not None:
        if lead.arv and buy_box.arv_min <= lead.arv <= buy_box.arv_max:
            earned += w["arv"]
            reasons.append(f"ARV within range: ${lead.arv:,.0f} ({_fmt_range(buy_box.arv_min, buy_box.arv_max)})")
        elif lead.arv:
            failed.append(f"ARV out of range: ${lead.arv:,.0f} not in {_fmt_range(buy_box.arv_min, buy_box.arv_max)}")
        else:
            earned += w["arv"] * 0.5
            failed.append("ARV not available")
    else:
        earned += w["arv"]

    # county
    total += w["location"]
    counties = [c.strip().lower() for c in (buy_box.counties or [])]
    county = (lead.county or "").strip().lower()
    if counties:
        if county and county in counties:
            earned += w["location"]
            reasons.append(f"County matches: {county}")
        else:
            failed.append(f"County mismatch: {county or 'unknown'} not in {', '.join(buy_box.counties)}")
    else:
        earned += w["location"]

    # exclusions subtract, never hard-fail
    if buy_box.exclusions:
        hits = lead_text_matches(lead, buy_box.exclusions)
        if hits:
            earned = max(0.0, earned - EXCLUSION_PENALTY)
            failed.append(f"Exclusion flags found: {', '.join(hits)}")
        else:
            reasons.append("No exclusion flags detected")

    score = round(earned / total * 100) if total > 0 else 0
    score = max(0, min(100, score))
    return ScoreResult(
        score=score,
        grade=grade_for_score(score, thresholds),
        lead_tier=lead_tier_for(lead, score),
        matched_buy_box=matched,
        reasons=reasons,
        failed_checks=failed,
    )


def _fmt_range(lo: float | None, hi: float | None) -> str:
    left = f"{lo:,.0f}" if lo is not None else "0"
    right = f"{hi:,.0f}" if hi is not None else "any"
    return f"{left}-{right}"


def apply_cash_flow_rule(result: ScoreResult, lead: Any, buy_box: Any, config: PipelineConfig) -> ScoreResult:
    """
    Cap the grade by underwriting:
      - non-positive monthly cash flow: A/B -> C
      - DSCR short while cash flow is positive: A -> B
    """
    cf = calculate_cash_flow(cash_flow_inputs_from_lead(lead, buy_box), config.financing)
    grade = result.grade
    reasons = list(result.reasons)
    failed = list(result.failed_checks)

    if cf.error:
        failed.append(f"Cash flow calculation error: {cf.error}")

    if not cf.cash_flow_pass:
        if grade in (Grade.A, Grade.B):
            grade = Grade.C
            failed.append("Cash flow requirement failed: monthly cash flow is not positive")
    elif not cf.dscr_pass:
        if grade == Grade.A:
            grade = Grade.B
            failed.append(f"A-grade requires DSCR >= {cf.required_dscr:.2f}")
        elif cf.dscr is not None:
            failed.append(f"DSCR below requirement: {cf.dscr:.2f} < {cf.required_dscr:.2f}")
    elif grade == Grade.A:
        reasons.append(f"Cash flow positive: ${cf.monthly_cash_flow:,.2f}/month")
        reasons.append(f"DSCR: {cf.dscr:.2f} (meets requirement)")

    return replace(
        result,
        grade=grade,
        reasons=reasons,
        failed_checks=failed,
        cash_flow=cf.to_dict(),
        requires_cash_flow=True,
    )


def score_lead(
    lead: Any,
    buy_boxes: Iterable[Any],
    config: PipelineConfig,
    *,
    weights: dict[str, float] | None = None,
) -> ScoreResult:
    market_key = scoring_market_key(lead)
    if not market_key:
        return _dead("Could not determine market from lead location")

    candidates = [b for b in buy_boxes if b.active is not False and b.market_key == market_key]
    if not candidates:
        return _dead(f"No active buy boxes found for market: {market_key}")

    # first box wins ties
    scored = [(score_against_buy_box(lead, bb, thresholds=config.grades, weights=weights), bb) for bb in candidates]
    best, best_box = max(scored, key=lambda pair: pair[0].score)
    if best.score > 0 and requires_cash_flow(best_box):
        best = apply_cash_flow_rule(best, lead, best_box, config)
    return best
