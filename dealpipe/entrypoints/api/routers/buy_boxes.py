# dealpipe/entrypoints/api/routers/buy_boxes.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import raise_http, require_api_key
from ....adapters.repos.buy_boxes import BuyBoxRepository
from ....adapters.repos.buyers import BuyerRepository
from ....db import get_session
from ....domain.errors import PipelineError
from ....schemas import BuyBoxIn, BuyBoxOut, BuyBoxWarningOut, BuyerIn, BuyerOut
from ....service_layer.feedback import get_buy_box_warnings

router = APIRouter(tags=["buy-boxes"])


@router.get("/buy-boxes/warnings", response_model=list[BuyBoxWarningOut])
async def buy_box_warnings(session: AsyncSession = Depends(get_session)) -> list[BuyBoxWarningOut]:
    return [BuyBoxWarningOut(**w) for w in await get_buy_box_warnings(session)]


@router.post("/buy-boxes", response_model=BuyBoxOut, dependencies=[Depends(require_api_key)])
async def create_buy_box(body: BuyBoxIn, session: AsyncSession = Depends(get_session)) -> BuyBoxOut:
    try:
        bb = await BuyBoxRepository(session).create(body.model_dump(exclude_none=True))
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return BuyBoxOut.model_validate(bb)


@router.get("/buy-boxes", response_model=list[BuyBoxOut])
async def list_buy_boxes(
    market_key: str | None = Query(default=None),
    active: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[BuyBoxOut]:
    rows = await BuyBoxRepository(session).list_all(market_key=market_key, active=active)
    return [BuyBoxOut.model_validate(bb) for bb in rows]


@router.patch("/buy-boxes/{buy_box_id}", response_model=BuyBoxOut, dependencies=[Depends(require_api_key)])
async def update_buy_box(
    buy_box_id: int,
    body: BuyBoxIn,
    session: AsyncSession = Depends(get_session),
) -> BuyBoxOut:
    try:
        bb = await BuyBoxRepository(session).update(buy_box_id, body.model_dump(exclude_unset=True))
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return BuyBoxOut.model_validate(bb)


@router.post("/buyers", response_model=BuyerOut, dependencies=[Depends(require_api_key)], tags=["buyers"])
async def create_buyer(body: BuyerIn, session: AsyncSession = Depends(get_session)) -> BuyerOut:
    try:
        buyer = await BuyerRepository(session).create(body.model_dump(exclude_none=True))
    except PipelineError as e:
        raise_http(e)
    await session.commit()
    return BuyerOut.model_validate(buyer)


@router.get("/buyers", response_model=list[BuyerOut], tags=["buyers"])
async def list_buyers(
    active: bool | None = Query(default=None),
    session: AsyncSession = Depends(get_session),
) -> list[BuyerOut]:
    return [BuyerOut.model_validate(b) for b in await BuyerRepository(session).list_all(active=active)]
