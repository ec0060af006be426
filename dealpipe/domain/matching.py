# dealpipe/domain/matching.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Iterable

from ..models import Channel, Strategy
from .normalize import (
    REHAB_LEVELS,
    buyer_market_key,
    canonical_strategies,
    lead_text_matches,
    normalize_condition,
    normalize_property_type,
)

BASE_SCORE = 50.0
EXCLUDED_CAP = 20
DEFAULT_COOLDOWN_HOURS = 72

HARD_DAMAGE_TERMS = ("fire", "burned", "structural damage", "foundation")


@dataclass(frozen=True)
class BuyerMatch:
    buyer_id: int
    buyer_name: str
    score: float
    reasons: list[str] = field(default_factory=list)


@dataclass(frozen=True)
class BuyerExclusion:
    buyer_id: int
    buyer_name: str
    reason: str


@dataclass(frozen=True)
class MatchResult:
    market_key: str | None
    matches: list[BuyerMatch] = field(default_factory=list)
    excluded: list[BuyerExclusion] = field(default_factory=list)


def buyer_markets(buyer: Any) -> list[str]:
    return list(buyer.preferred_markets or []) or list(buyer.markets or [])


def in_market(buyer: Any, market_key: str | None) -> bool:
    return bool(market_key) and market_key in buyer_markets(buyer)


def is_buy_hold_buyer(buyer: Any) -> bool:
    return Strategy.buy_hold in canonical_strategies(buyer.strategies)


def _cooldown_reason(buyer: Any, now: datetime) -> str | None:
    if not buyer.last_blast_at:
        return None
    cooldown = buyer.cooldown_hours if buyer.cooldown_hours is not None else DEFAULT_COOLDOWN_HOURS
    hours_since = (now - buyer.last_blast_at).total_seconds() / 3600.0
    if hours_since < cooldown:
        return f"Buyer on cooldown (last blast {round(hours_since)}h ago, cooldown {cooldown}h)"
    return None


def check_buyer(lead: Any, buyer: Any, channel: Channel, now: datetime) -> tuple[str | None, list[str]]:
    """
    Ordered eligibility gate. Returns (exclusion_reason, reasons); the first
    failing check wins.
    """
    reasons: list[str] = []

    if channel == Channel.sms and buyer.opt_out_sms:
        return "Buyer opted out of SMS", reasons
    if channel == Channel.email and buyer.opt_out_email:
        return "Buyer opted out of email", reasons

    cooldown = _cooldown_reason(buyer, now)
    if cooldown:
        return cooldown, reasons

    markets = buyer_markets(buyer)
    market_key = buyer_market_key(lead)
    if not markets:
        return "No preferred markets set", reasons
    if not market_key or market_key not in markets:
        return f"Market mismatch: lead is {market_key or 'unknown'}, buyer wants {', '.join(markets)}", reasons
    reasons.append(f"Market match: {market_key}")

    ptype = normalize_property_type(lead.property_type)
    if buyer.property_types:
        wanted = {normalize_property_type(p) or p for p in buyer.property_types}
        if ptype and ptype in wanted:
            reasons.append(f"Property type match: {ptype}")
        else:
            return (
                f"Property type mismatch: lead is {ptype or 'unknown'}, buyer wants {', '.join(buyer.property_types)}",
                reasons,
            )

    # minimums only bite when the lead value is known
    for label, lead_val, minimum in (
        ("Beds", lead.beds, buyer.min_beds),
        ("Baths", lead.baths, buyer.min_baths),
        ("Sqft", lead.sqft, buyer.min_sqft),
        ("Year built", lead.year_built, buyer.min_year_built),
    ):
        if minimum and lead_val:
            if lead_val < minimum:
                return f"{label} too low: {lead_val} < {minimum}", reasons
            reasons.append(f"{label} match: {lead_val} >= {minimum}")

    condition = normalize_condition(lead.condition_tier)
    if buyer.max_rehab_level and condition:
        buyer_level = REHAB_LEVELS.get(buyer.max_rehab_level, 3)
        lead_level = REHAB_LEVELS.get(condition, 3)
        if lead_level > buyer_level:
            return f"Rehab level too high: {condition} > {buyer.max_rehab_level}", reasons
        reasons.append(f"Rehab tolerance match: {condition} <= {buyer.max_rehab_level}")

    price = lead.asking_price
    if buyer.max_buy_price and price:
        if price > buyer.max_buy_price:
            return f"Price too high: ${price:,.0f} > ${buyer.max_buy_price:,.0f}", reasons
        reasons.append(f"Price fit: ${price:,.0f} <= ${buyer.max_buy_price:,.0f}")

    if buyer.min_arv and lead.arv:
        if lead.arv < buyer.min_arv:
            return f"ARV too low: ${lead.arv:,.0f} < ${buyer.min_arv:,.0f}", reasons
        reasons.append(f"ARV fit: ${lead.arv:,.0f} >= ${buyer.min_arv:,.0f}")

    county = (lead.county or "").strip().lower()
    city = (lead.city or "").strip().lower()
    if county and county in {c.lower() for c in (buyer.counties or [])}:
        reasons.append(f"County exact match: {county}")
    if city and city in {c.lower() for c in (buyer.cities or [])}:
        reasons.append(f"City exact match: {city}")

    if lead_text_matches(lead, HARD_DAMAGE_TERMS) and buyer.max_rehab_level != "heavy":
        return "Major fire/extreme structural damage - buyer does not accept heavy rehab", reasons

    cash_flow = lead.cash_flow
    if is_buy_hold_buyer(buyer) or cash_flow is not None:
        if not cash_flow or not cash_flow.get("cash_flow_pass"):
            return "Cash flow requirement failed: monthly cash flow is not positive", reasons
        if not cash_flow.get("dscr_pass"):
            dscr = cash_flow.get("dscr")
            shown = f"{dscr:.2f}" if dscr is not None else "N/A"
            return f"DSCR requirement failed: {shown} below threshold", reasons
        reasons.append(f"Cash flow positive: ${cash_flow.get('monthly_cash_flow') or 0:,.2f}/month")

    return None, reasons


def score_buyer(lead: Any, buyer: Any, now: datetime) -> float:
    score = BASE_SCORE

    if in_market(buyer, buyer_market_key(lead)):
        score += 10

    county = (lead.county or "").strip().lower()
    city = (lead.city or "").strip().lower()
    if county and county in {c.lower() for c in (buyer.counties or [])}:
        score += 10
    if city and city in {c.lower() for c in (buyer.cities or [])}:
        score += 10

    if buyer.engagement_score:
        score += float(buyer.engagement_score) * 0.2  # up to 20

    if buyer.proof_of_funds:
        score += 5

    if buyer.last_purchase_date:
        days = (now - buyer.last_purchase_date).total_seconds() / 86400.0
        if days < 90:
            score += 5
        elif days < 180:
            score += 3

    cf = lead.cash_flow
    if cf and cf.get("cash_flow_pass") and cf.get("dscr_pass") and is_buy_hold_buyer(buyer):
        monthly = cf.get("monthly_cash_flow") or 0.0
        if monthly > 200:
            score += 5
        elif monthly > 100:
            score += 3
        if cf.get("dscr") is not None and cf.get("required_dscr"):
            margin = cf["dscr"] - cf["required_dscr"]
            if margin > 0.5:
                score += 3
            elif margin > 0.25:
                score += 2

    return round(max(0.0, min(100.0, score)), 2)


def match_buyers(
    lead: Any,
    buyers: Iterable[Any],
    channel: Channel,
    now: datetime,
    *,
    max_results: int | None = None,
) -> MatchResult:
    matches: list[BuyerMatch] = []
    excluded: list[BuyerExclusion] = []

    for buyer in buyers:
        reason, reasons = check_buyer(lead, buyer, channel, now)
        if reason:
            excluded.append(BuyerExclusion(buyer_id=buyer.id, buyer_name=buyer.name, reason=reason))
            continue
        matches.append(
            BuyerMatch(
                buyer_id=buyer.id,
                buyer_name=buyer.name,
                score=score_buyer(lead, buyer, now),
                reasons=reasons,
            )
        )

    matches.sort(key=lambda m: (-m.score, m.buyer_id))
    if max_results is not None:
        matches = matches[:max_results]

    return MatchResult(
        market_key=buyer_market_key(lead),
        matches=matches,
        excluded=excluded[:EXCLUDED_CAP],
    )
