# tests/test_api.py
import dataclasses

import httpx
import pytest

from dealpipe.config import PipelineConfig, QuietHours, settings
from dealpipe.db import get_session
from dealpipe.entrypoints.fastapi_app import create_app
from dealpipe.integrations.outbound import EmailProvider, InternalProvider, OutboundProviders, SmsProvider

PROVIDERS = OutboundProviders(
    internal=InternalProvider(),
    sms=SmsProvider(None, None, None),
    email=EmailProvider(None, None, None),
)

LEAD = {
    "property_address": "123 Main St",
    "city": "Dallas",
    "county": "Dallas",
    "state": "TX",
    "property_type": "SFR",
    "asking_price": 150000,
}


def _build_client(async_session_maker, cfg):
    app = create_app(pipeline_config=cfg, providers=PROVIDERS)

    async def _session():
        async with async_session_maker() as s:
            yield s

    app.dependency_overrides[get_session] = _session
    return httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test")


@pytest.fixture
async def client(async_session_maker, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", None)
    cfg = PipelineConfig(quiet_hours=QuietHours(enabled=False))
    async with _build_client(async_session_maker, cfg) as c:
        yield c


async def _seed_deal(client):
    r = await client.post(
        "/buy-boxes",
        json={"market_key": "TX-DFW", "label": "DFW Flip", "buy_price_min": 100000, "buy_price_max": 250000},
    )
    assert r.status_code == 200
    r = await client.post("/leads", json=LEAD)
    assert r.status_code == 200
    lead = r.json()
    r = await client.post("/buyers", json={"name": "Ann", "preferred_markets": ["TX-DALLAS"], "phones": ["+12145550100"]})
    assert r.status_code == 200
    r = await client.post("/templates", json={"key": "deal_default", "content": "{{dealPackage}}", "activate": True})
    assert r.status_code == 200
    return lead


@pytest.mark.asyncio
async def test_health(client):
    r = await client.get("/health")
    assert r.status_code == 200
    assert r.json() == {"status": "ok"}

    r = await client.get("/debug/config")
    assert r.json()["channels"] == {"internal": True, "sms": False, "email": False}


@pytest.mark.asyncio
async def test_api_key_is_enforced_when_set(client, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", "sekret")
    r = await client.post("/leads", json=LEAD)
    assert r.status_code == 401
    r = await client.post("/leads", json=LEAD, headers={"X-API-Key": "sekret"})
    assert r.status_code == 200


@pytest.mark.asyncio
async def test_hold_buy_box_always_requires_cash_flow(client):
    r = await client.post(
        "/buy-boxes",
        json={"market_key": "TX-DFW", "label": "Rentals", "strategy": "buy_hold", "requires_positive_cash_flow": False},
    )
    assert r.status_code == 200
    bb = r.json()
    assert bb["strategy"] == "buy_hold"
    assert bb["requires_positive_cash_flow"] is True

    r = await client.patch(f"/buy-boxes/{bb['id']}", json={"requires_positive_cash_flow": False})
    assert r.json()["requires_positive_cash_flow"] is True

    r = await client.post("/buy-boxes", json={"label": "no market"})
    assert r.status_code == 400

    r = await client.patch(f"/buy-boxes/{bb['id']}", json={"cash_flow_config": {"amortization": 0}})
    assert r.status_code == 400
    assert "amortization" in r.json()["detail"]
    r = await client.post(
        "/buy-boxes",
        json={"market_key": "TX-DFW", "label": "Bad", "strategy": "buy_hold", "cash_flow_config": {"vacancy_rate": 1}},
    )
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_lead_scoring_and_routing_flow(client):
    lead = await _seed_deal(client)
    assert lead["grade"] == "A"
    assert lead["route"] == "immediate_closer"
    assert lead["intake_locked"] is True

    r = await client.patch(f"/leads/{lead['id']}", json={"asking_price": 99000})
    assert r.status_code == 409

    r = await client.get(f"/leads/{lead['id']}/score")
    assert r.json()["score"] == 100

    r = await client.post(f"/leads/{lead['id']}/override-score", json={"grade": "C"})
    assert r.status_code == 400

    r = await client.post(
        f"/leads/{lead['id']}/override-routing",
        json={"route": "nurture", "priority": "normal", "reason": "seller went quiet"},
        headers={"X-User-Id": "mgr"},
    )
    assert r.status_code == 200
    assert r.json()["route"] == "nurture"

    r = await client.get(f"/leads/{lead['id']}")
    assert r.json()["routing_override"]["overridden_by"] == "mgr"

    r = await client.get("/leads/9999")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_matching_buyers_endpoint(client):
    lead = await _seed_deal(client)

    r = await client.get(f"/leads/{lead['id']}/matching-buyers")
    body = r.json()
    assert body["market_key"] == "TX-DALLAS"
    assert [m["buyer_name"] for m in body["matches"]] == ["Ann"]
    assert body["matches"][0]["score"] == 70.0

    r = await client.get(f"/leads/{lead['id']}/matching-buyers", params={"threshold": 71})
    assert r.json()["matches"] == []

    r = await client.get(f"/leads/{lead['id']}/matching-buyers", params={"channel": "pigeon"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_blast_lifecycle(client):
    lead = await _seed_deal(client)

    r = await client.post(
        "/deal-blasts",
        json={"lead_id": lead["id"], "message_template_key": "deal_default"},
        headers={"X-User-Id": "u1"},
    )
    assert r.status_code == 200
    detail = r.json()
    blast_id = detail["blast"]["id"]
    assert detail["blast"]["created_by"] == "u1"
    assert detail["blast"]["grade_at_blast"] == "A"
    assert len(detail["recipients"]) == 1

    rid = detail["recipients"][0]["id"]
    r = await client.post(
        f"/deal-blasts/{blast_id}/response",
        json={"recipient_id": rid, "response_text": "yes please", "status": "interested"},
    )
    assert r.status_code == 409

    r = await client.post(f"/deal-blasts/{blast_id}/send", headers={"X-User-Id": "u1"})
    assert r.json() == {"deal_blast_id": blast_id, "total_recipients": 1, "sent": 1, "failed": 0}

    r = await client.post(f"/deal-blasts/{blast_id}/cancel")
    assert r.status_code == 409

    r = await client.post(
        f"/deal-blasts/{blast_id}/response",
        json={"recipient_id": rid, "response_text": "yes please", "status": "interested"},
    )
    assert r.json()["status"] == "interested"

    r = await client.get(f"/deal-blasts/{blast_id}")
    assert r.json()["blast"]["stats_interested"] == 1

    r = await client.get("/buyer-feedback", params={"lead_id": lead["id"]})
    assert [(f["feedback_type"], f["source"]) for f in r.json()] == [("interested", "internal")]

    r = await client.get("/buyers")
    assert r.json()[0]["responsiveness_score"] == 100.0

    r = await client.get("/deal-blasts/424242")
    assert r.status_code == 404


@pytest.mark.asyncio
async def test_rate_limit_maps_to_429(async_session_maker, monkeypatch):
    monkeypatch.setattr(settings, "API_KEY", None)
    cfg = dataclasses.replace(PipelineConfig(quiet_hours=QuietHours(enabled=False)), max_blasts_per_hour=0)
    async with _build_client(async_session_maker, cfg) as c:
        lead = await _seed_deal(c)
        r = await c.post("/deal-blasts", json={"lead_id": lead["id"], "message_template_key": "deal_default"})
        blast_id = r.json()["blast"]["id"]

        r = await c.post(f"/deal-blasts/{blast_id}/send")
        assert r.status_code == 429
        assert r.json()["detail"]["limit"] == 0


@pytest.mark.asyncio
async def test_non_compliant_template_is_rejected(client):
    r = await client.post("/templates", json={"key": "bad", "content": "Guaranteed profit", "activate": True})
    assert r.status_code == 400
    assert "guaranteed" in r.json()["detail"]


@pytest.mark.asyncio
async def test_performance_and_feedback_endpoints(client):
    r = await client.post(
        "/buy-boxes", json={"market_key": "TX-DFW", "label": "Rentals", "strategy": "buy_hold"}
    )
    bb_id = r.json()["id"]
    r = await client.post("/buyers", json={"name": "Bo", "preferred_markets": ["TX-DALLAS"]})
    buyer_id = r.json()["id"]

    r = await client.post(
        "/performance",
        json={
            "lead_id": 1,
            "buyer_id": buyer_id,
            "buy_box_id": bb_id,
            "strategy": "buy_hold",
            "market_key": "TX-DFW",
            "closed_date": "2024-03-01T00:00:00",
            "purchase_price": 150000,
            "interest_rate": 0.07,
            "ltv": 0.75,
            "projected_rent": 2000,
            "projected_noi": 1000,
            "projected_monthly_cash_flow": 300,
            "projected_dscr": 1.3,
        },
        headers={"X-User-Id": "ops"},
    )
    assert r.status_code == 200
    perf = r.json()
    assert perf["pro_forma_locked_by"] == "ops"

    period = {"month": 4, "year": 2024, "actual_noi": 700, "actual_monthly_cash_flow": -80, "actual_dscr": 0.95}
    r = await client.post(f"/performance/{perf['id']}/periods", json=period)
    assert r.status_code == 200
    assert r.json()["performance_grade"] == "D"

    r = await client.post(f"/performance/{perf['id']}/periods", json=period)
    assert r.status_code == 409

    r = await client.get("/buy-boxes/warnings")
    warnings = r.json()
    assert [w["buy_box_id"] for w in warnings] == [bb_id]
    assert warnings[0]["warning_tier"] == "CRITICAL"

    r = await client.post("/performance/recalculate-feedback")
    assert r.json() == {"buy_boxes_updated": 1, "buyers_updated": 1, "errors": 0}

    r = await client.post(f"/buy-boxes/{bb_id}/recommendations/generate")
    assert r.json()["eligible"] is False

    r = await client.get("/recommendations", params={"status": "bogus"})
    assert r.status_code == 400


@pytest.mark.asyncio
async def test_dispatch_is_quiet_without_sinks(client):
    await client.post("/leads", json=LEAD)
    r = await client.post("/jobs/dispatch")
    assert r.status_code == 200
    assert r.json()["skipped_no_sinks"] == 1


@pytest.mark.asyncio
async def test_webhook_sink_management(client):
    r = await client.post("/integrations", json={"name": "crm", "url": "https://hooks.test/deals", "secret": "s"})
    assert r.status_code == 200
    sink = r.json()
    assert sink["enabled"] is True

    r = await client.post("/integrations", json={"name": "crm", "url": "https://hooks.test/other"})
    assert r.status_code == 409
    r = await client.post("/integrations", json={"name": "ftp", "url": "ftp://hooks.test"})
    assert r.status_code == 400

    r = await client.patch(f"/integrations/{sink['id']}", json={"enabled": False})
    assert r.json()["enabled"] is False

    r = await client.get("/integrations")
    assert [i["name"] for i in r.json()] == ["crm"]

    r = await client.patch("/integrations/999", json={"enabled": True})
    assert r.status_code == 404
