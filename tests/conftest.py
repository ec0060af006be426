# tests/conftest.py
import pytest
from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from dealpipe.config import PipelineConfig, QuietHours
from dealpipe.models import Base, BuyBox, Buyer, Lead, Strategy
from dealpipe.service_layer.templates import create_template


@pytest.fixture
async def engine():
    """
    Fresh in-memory DB per test. StaticPool makes all connections share the same
    in-memory database for the lifetime of this engine fixture.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    try:
        yield engine
    finally:
        await engine.dispose()


@pytest.fixture
def async_session_maker(engine):
    return async_sessionmaker(engine, expire_on_commit=False, autoflush=True)


@pytest.fixture
async def session(async_session_maker):
    async with async_session_maker() as s:
        yield s


@pytest.fixture
def pipeline_config():
    return PipelineConfig(quiet_hours=QuietHours(enabled=False))


@pytest.fixture
def make_lead():
    async def _make(session, **overrides):
        data = dict(
            source="manual",
            property_address="123 Main St",
            city="Dallas",
            county="Dallas",
            state="TX",
            zip_code="75201",
            property_type="SFR",
            beds=3,
            baths=2.0,
            sqft=1500,
            year_built=1995,
            condition_tier="light",
            asking_price=150000.0,
            red_flags=[],
        )
        data.update(overrides)
        lead = Lead(**data)
        session.add(lead)
        await session.flush()
        return lead

    return _make


@pytest.fixture
def make_buy_box():
    async def _make(session, **overrides):
        data = dict(
            market_key="TX-DFW",
            label="DFW Flip",
            strategy=Strategy.flip,
            active=True,
            buy_price_min=100000.0,
            buy_price_max=250000.0,
        )
        data.update(overrides)
        bb = BuyBox(**data)
        session.add(bb)
        await session.flush()
        return bb

    return _make


@pytest.fixture
def make_buyer():
    async def _make(session, **overrides):
        data = dict(
            name="Buyer",
            active=True,
            phones=["+12145550100"],
            emails=["buyer@example.com"],
            preferred_markets=["TX-DALLAS"],
            engagement_score=50.0,
            cooldown_hours=72,
        )
        data.update(overrides)
        buyer = Buyer(**data)
        session.add(buyer)
        await session.flush()
        return buyer

    return _make


@pytest.fixture
def active_template():
    async def _make(session, key="deal_default", content="{{dealPackage}}"):
        return await create_template(session, key=key, content=content, activate=True)

    return _make
