# dealpipe/domain/normalize.py
from __future__ import annotations

import re
from typing import Any, Iterable

from ..models import Strategy

DFW_COUNTIES = {"dallas", "tarrant", "collin", "denton"}

REHAB_LEVELS: dict[str, int] = {"light": 1, "medium": 2, "heavy": 3}

# Buyers describe themselves loosely; buy boxes use the Strategy enum.
_BUYER_STRATEGY_ALIASES: dict[str, Strategy] = {
    "rental": Strategy.buy_hold,
    "buy_hold": Strategy.buy_hold,
    "buy_and_hold": Strategy.buy_hold,
    "buy-and-hold": Strategy.buy_hold,
    "hold": Strategy.buy_hold,
    "flip": Strategy.flip,
    "fix_and_flip": Strategy.flip,
    "commercial": Strategy.commercial,
    "wholesale": Strategy.wholesale,
}


def scoring_market_key(lead: Any) -> str | None:
    """
    Market key used to pick buy boxes: TX-DFW, ST-COUNTY, or ST-STATE.
    """
    if lead.market_key:
        return lead.market_key

    state = (lead.state or "").strip()
    if not state:
        return None
    st = state.upper()[:2]
    county = (lead.county or "").strip()

    if st == "TX" and county.lower() in DFW_COUNTIES:
        return "TX-DFW"
    if county:
        compact = re.sub(r"\s+", "", county.upper())
        return f"{st}-{compact}"
    return f"{st}-STATE"


def buyer_market_key(lead: Any) -> str | None:
    """Market key buyers subscribe to: explicit key, else STATE-CITY."""
    if lead.market_key:
        return lead.market_key
    if not lead.state or not lead.city:
        return None
    city = re.sub(r"\s+", "_", lead.city.strip().upper())
    return f"{lead.state.strip().upper()}-{city}"


def normalize_property_type(raw: str | None) -> str | None:
    if not raw:
        return None
    pt = raw.upper()
    if any(k in pt for k in ("SFR", "SINGLE", "SFH", "HOUSE")):
        return "SFR"
    if any(k in pt for k in ("MULTI", "MF", "DUPLEX", "TRIPLEX", "QUAD")):
        return "MF"
    if "LAND" in pt or "LOT" in pt:
        return "Land"
    if any(k in pt for k in ("COMMERCIAL", "RETAIL", "OFFICE")):
        return "Commercial"
    return None


def normalize_condition(raw: str | None) -> str | None:
    if not raw:
        return None
    c = str(raw).strip().lower()
    if c in ("light", "1", "2"):
        return "light"
    if c in ("medium", "3"):
        return "medium"
    if c in ("heavy", "4", "5"):
        return "heavy"
    return c


def canonical_strategy(raw: str | None) -> Strategy | None:
    if not raw:
        return None
    return _BUYER_STRATEGY_ALIASES.get(raw.strip().lower())


def canonical_strategies(raw: Iterable[str] | None) -> set[Strategy]:
    out: set[Strategy] = set()
    for s in raw or []:
        c = canonical_strategy(s)
        if c is not None:
            out.add(c)
    return out


def lead_text_matches(lead: Any, phrases: Iterable[str]) -> list[str]:
    """Phrases found (case-insensitive substring) in the lead's description or red flags."""
    description = (lead.description or "").lower()
    flags = [f.lower() for f in (lead.red_flags or [])]
    hits: list[str] = []
    for phrase in phrases:
        p = phrase.lower()
        if p in description or any(p in f for f in flags):
            hits.append(phrase)
    return hits
