# dealpipe/adapters/repos/buyers.py
from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import NotFoundError, ValidationError
from ...models import Buyer

_FIELDS = (
    "name",
    "active",
    "phones",
    "emails",
    "preferred_markets",
    "markets",
    "counties",
    "cities",
    "property_types",
    "min_beds",
    "min_baths",
    "min_sqft",
    "min_year_built",
    "max_rehab_level",
    "max_buy_price",
    "min_arv",
    "strategies",
    "proof_of_funds",
    "opt_out_sms",
    "opt_out_email",
    "cooldown_hours",
    "engagement_score",
    "last_purchase_date",
)


class BuyerRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, buyer_id: int) -> Buyer:
        buyer = (await self.session.execute(select(Buyer).where(Buyer.id == buyer_id))).scalars().first()
        if not buyer:
            raise NotFoundError(f"Buyer {buyer_id} not found")
        return buyer

    async def list_all(self, *, active: bool | None = None) -> list[Buyer]:
        stmt = select(Buyer)
        if active is not None:
            stmt = stmt.where(Buyer.active == active)
        return list((await self.session.execute(stmt.order_by(Buyer.id.asc()))).scalars().all())

    async def create(self, data: dict[str, Any]) -> Buyer:
        if not data.get("name"):
            raise ValidationError("name is required")
        score = data.get("engagement_score")
        if score is not None and not 0 <= score <= 100:
            raise ValidationError("engagement_score must be between 0 and 100")

        buyer = Buyer(**{k: data[k] for k in _FIELDS if data.get(k) is not None})
        self.session.add(buyer)
        await self.session.flush()
        return buyer
