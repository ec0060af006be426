# dealpipe/service_layer/matching.py
from __future__ import annotations

from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.matching import MatchResult, in_market, match_buyers
from ..domain.normalize import buyer_market_key
from ..models import Buyer, Channel, Lead
from .routing import get_lead


async def market_buyers(session: AsyncSession, lead: Lead) -> list[Buyer]:
    """Active buyers subscribed to the lead's market (preferred or legacy list)."""
    key = buyer_market_key(lead)
    if not key:
        return []
    rows = (
        (await session.execute(select(Buyer).where(Buyer.active == True).order_by(Buyer.id.asc())))  # noqa: E712
        .scalars()
        .all()
    )
    return [b for b in rows if in_market(b, key)]


async def match_lead(
    session: AsyncSession,
    lead: Lead,
    *,
    channel: Channel = Channel.internal,
    now: datetime | None = None,
    max_results: int | None = None,
) -> MatchResult:
    buyers = await market_buyers(session, lead)
    return match_buyers(lead, buyers, channel, now or datetime.utcnow(), max_results=max_results)


async def find_matching_buyers(
    session: AsyncSession,
    lead_id: int,
    *,
    channel: Channel = Channel.internal,
    threshold: float | None = None,
    max_results: int | None = None,
    now: datetime | None = None,
) -> MatchResult:
    lead = await get_lead(session, lead_id)
    result = await match_lead(session, lead, channel=channel, now=now)
    matches = result.matches
    if threshold is not None:
        matches = [m for m in matches if m.score >= threshold]
    if max_results is not None:
        matches = matches[:max_results]
    return MatchResult(market_key=result.market_key, matches=matches, excluded=result.excluded)
