# dealpipe/adapters/repos/buy_boxes.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.cash_flow import validate_cash_flow_config
from ...domain.errors import NotFoundError, ValidationError
from ...domain.normalize import canonical_strategy
from ...domain.scoring import CASH_FLOW_STRATEGIES
from ...models import BuyBox

_FIELDS = (
    "market_key",
    "label",
    "active",
    "property_types",
    "min_beds",
    "min_baths",
    "min_sqft",
    "min_year_built",
    "condition_allowed",
    "buy_price_min",
    "buy_price_max",
    "arv_min",
    "arv_max",
    "counties",
    "city_overrides",
    "exclusions",
    "requires_positive_cash_flow",
    "cash_flow_config",
)


def _enforce_cash_flow_invariant(bb: BuyBox) -> None:
    # rental/commercial boxes always gate on cash flow
    if bb.strategy in CASH_FLOW_STRATEGIES:
        bb.requires_positive_cash_flow = True


class BuyBoxRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, buy_box_id: int) -> BuyBox:
        bb = (await self.session.execute(select(BuyBox).where(BuyBox.id == buy_box_id))).scalars().first()
        if not bb:
            raise NotFoundError(f"Buy box {buy_box_id} not found")
        return bb

    async def list_all(self, *, market_key: str | None = None, active: bool | None = None) -> list[BuyBox]:
        stmt = select(BuyBox)
        if market_key:
            stmt = stmt.where(BuyBox.market_key == market_key)
        if active is not None:
            stmt = stmt.where(BuyBox.active == active)
        return list((await self.session.execute(stmt.order_by(BuyBox.id.asc()))).scalars().all())

    async def create(self, data: dict[str, Any]) -> BuyBox:
        if not data.get("market_key") or not data.get("label"):
            raise ValidationError("market_key and label are required")
        strategy = canonical_strategy(data.get("strategy") or "flip")
        if strategy is None:
            raise ValidationError(f"Invalid strategy: {data.get('strategy')!r}")
        validate_cash_flow_config(data.get("cash_flow_config"))

        bb = BuyBox(strategy=strategy, **{k: data[k] for k in _FIELDS if data.get(k) is not None})
        _enforce_cash_flow_invariant(bb)
        self.session.add(bb)
        await self.session.flush()
        return bb

    async def update(self, buy_box_id: int, changes: dict[str, Any]) -> BuyBox:
        bb = await self.get(buy_box_id)
        if "cash_flow_config" in changes:
            validate_cash_flow_config(changes["cash_flow_config"])
        if "strategy" in changes and changes["strategy"] is not None:
            strategy = canonical_strategy(changes["strategy"])
            if strategy is None:
                raise ValidationError(f"Invalid strategy: {changes['strategy']!r}")
            bb.strategy = strategy
        for k in _FIELDS:
            if k in changes:
                setattr(bb, k, changes[k])
        _enforce_cash_flow_invariant(bb)
        bb.updated_at = datetime.utcnow()
        await self.session.flush()
        return bb
