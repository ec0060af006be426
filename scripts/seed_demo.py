# scripts/seed_demo.py
from __future__ import annotations

import argparse
import asyncio
import json

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from dealpipe.adapters.repos.buy_boxes import BuyBoxRepository
from dealpipe.adapters.repos.buyers import BuyerRepository
from dealpipe.db import AsyncSessionLocal, engine
from dealpipe.models import Base, BuyBox, Buyer, Integration, IntegrationType, MessageTemplate
from dealpipe.service_layer.templates import create_template


async def _ensure_schema() -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def _upsert_webhook(session: AsyncSession, name: str, url: str, enabled: bool) -> None:
    existing = (await session.execute(select(Integration).where(Integration.name == name))).scalars().first()
    cfg = {"url": url, "secret": None}

    if existing:
        existing.type = IntegrationType.webhook
        existing.enabled = enabled
        existing.config_json = json.dumps(cfg)
    else:
        session.add(Integration(name=name, type=IntegrationType.webhook, enabled=enabled, config_json=json.dumps(cfg)))
    await session.flush()


async def _seed_buy_boxes(session: AsyncSession) -> None:
    if (await session.execute(select(BuyBox).limit(1))).scalars().first():
        return
    repo = BuyBoxRepository(session)
    await repo.create(
        {
            "market_key": "TX-DFW",
            "label": "DFW Flip",
            "strategy": "flip",
            "property_types": ["SFR"],
            "buy_price_min": 80000,
            "buy_price_max": 250000,
            "min_beds": 3,
        }
    )
    await repo.create(
        {
            "market_key": "TX-DFW",
            "label": "DFW Rentals",
            "strategy": "buy_hold",
            "property_types": ["SFR", "MF"],
            "buy_price_min": 90000,
            "buy_price_max": 220000,
            "cash_flow_config": {"required_dscr": 1.25},
        }
    )


async def _seed_buyers(session: AsyncSession) -> None:
    if (await session.execute(select(Buyer).limit(1))).scalars().first():
        return
    repo = BuyerRepository(session)
    await repo.create(
        {
            "name": "Demo Flipper",
            "emails": ["flipper@example.com"],
            "phones": ["+12145550100"],
            "preferred_markets": ["TX-DALLAS"],
            "strategies": ["flip"],
            "proof_of_funds": True,
            "engagement_score": 70.0,
        }
    )
    await repo.create(
        {
            "name": "Demo Landlord",
            "emails": ["landlord@example.com"],
            "preferred_markets": ["TX-DALLAS", "TX-TARRANT"],
            "strategies": ["buy_hold"],
        }
    )


async def _seed_template(session: AsyncSession) -> None:
    existing = (
        await session.execute(select(MessageTemplate).where(MessageTemplate.key == "deal_default"))
    ).scalars().first()
    if existing:
        return
    await create_template(
        session,
        key="deal_default",
        content="New off-market deal for you:\n{{dealPackage}}\nReply YES for details or STOP to opt out.",
        activate=True,
    )


async def main() -> None:
    parser = argparse.ArgumentParser()
    parser.add_argument("--enable", action="store_true", help="Enable the demo webhook integration")
    parser.add_argument("--url", default="https://example.com", help="Demo webhook URL")
    args = parser.parse_args()

    await _ensure_schema()

    async with AsyncSessionLocal() as session:
        await _seed_buy_boxes(session)
        await _seed_buyers(session)
        await _seed_template(session)
        await _upsert_webhook(session, name="demo_webhook", url=args.url, enabled=args.enable)
        await session.commit()

    print(f"Seeded demo buy boxes, buyers and template. webhook enabled={args.enable} url={args.url}")


if __name__ == "__main__":
    asyncio.run(main())
