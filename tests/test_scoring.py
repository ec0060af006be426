# tests/test_scoring.py
from datetime import datetime

import pytest
from sqlalchemy import select

from dealpipe.config import PipelineConfig
from dealpipe.domain.errors import StateConflictError, ValidationError
from dealpipe.domain.scoring import score_lead
from dealpipe.models import (
    BuyBox,
    Grade,
    HandoffStatus,
    KpiEvent,
    Lead,
    LeadTier,
    OutboxEvent,
    Priority,
    Route,
    Strategy,
)
from dealpipe.service_layer.intake import create_lead, update_lead_intake
from dealpipe.service_layer.scoring import (
    clear_score_override,
    override_lead_score,
    recalculate_lead_score,
    score_payload,
)

NOW = datetime(2024, 6, 3, 15, 0, 0)

# rent 100/month, insurance 150/month, no loan, no reserves -> -50/month
NEGATIVE_CASH_FLOW_BOX = {
    "ltv": 0,
    "vacancy_reserve": 0,
    "maintenance_reserve": 0,
    "property_management": 0,
}


def _box(**kw):
    data = dict(
        id=1,
        market_key="TX-DFW",
        label="DFW Flip",
        strategy=Strategy.flip,
        buy_price_min=100000,
        buy_price_max=250000,
    )
    data.update(kw)
    return BuyBox(**data)


def _lead(**kw):
    data = dict(id=1, state="TX", county="Dallas", city="Dallas", asking_price=150000)
    data.update(kw)
    return Lead(**data)


def test_price_only_buy_box_scores_a():
    res = score_lead(_lead(), [_box()], PipelineConfig())
    assert res.score == 100
    assert res.grade == Grade.A
    assert res.lead_tier == LeadTier.hot
    assert res.matched_buy_box.label == "DFW Flip"
    assert res.cash_flow is None
    assert any("Asking price within range" in r for r in res.reasons)


def test_no_buy_box_for_market_is_dead():
    res = score_lead(_lead(), [_box(market_key="TX-HARRIS")], PipelineConfig())
    assert res.grade == Grade.Dead
    assert res.failed_checks == ["No active buy boxes found for market: TX-DFW"]


def test_unknown_market_is_dead():
    res = score_lead(_lead(state=None), [_box()], PipelineConfig())
    assert res.grade == Grade.Dead
    assert "Could not determine market" in res.failed_checks[0]


def test_inactive_buy_boxes_are_ignored():
    res = score_lead(_lead(), [_box(active=False)], PipelineConfig())
    assert res.grade == Grade.Dead


def test_property_type_is_a_hard_gate():
    res = score_lead(_lead(property_type="single family"), [_box(property_types=["MF"])], PipelineConfig())
    assert res.score == 0
    assert res.grade == Grade.Dead
    assert "Property type mismatch" in res.failed_checks[0]


def test_exclusion_hit_subtracts_penalty():
    res = score_lead(
        _lead(description="Seller mentions foundation issues"),
        [_box(exclusions=["foundation"])],
        PipelineConfig(),
    )
    # 80 of 110 points
    assert res.score == 73
    assert res.grade == Grade.B
    assert any("Exclusion flags found: foundation" in f for f in res.failed_checks)


def test_city_override_replaces_price_range():
    res = score_lead(
        _lead(city="Plano", county="Collin"),
        [_box(city_overrides={"Plano": {"buy_price_max": 120000}})],
        PipelineConfig(),
    )
    assert "Using city override for Plano" in res.reasons
    assert res.score == 82
    assert res.grade == Grade.B


def test_best_buy_box_wins():
    strict = _box(id=1, label="strict", min_beds=5)
    loose = _box(id=2, label="loose")
    res = score_lead(_lead(beds=3), [strict, loose], PipelineConfig())
    assert res.matched_buy_box.id == 2
    assert res.score == 100


def test_equal_scores_keep_the_first_box():
    first = _box(id=1, label="first")
    second = _box(id=2, label="second")
    res = score_lead(_lead(), [first, second], PipelineConfig())
    assert res.matched_buy_box.id == 1


def test_negative_cash_flow_caps_grade_at_c():
    box = _box(strategy=Strategy.buy_hold, cash_flow_config=dict(NEGATIVE_CASH_FLOW_BOX))
    res = score_lead(_lead(estimated_rent=100, annual_insurance=1800), [box], PipelineConfig())
    assert res.score == 100
    assert res.grade == Grade.C
    assert res.requires_cash_flow is True
    assert res.cash_flow["monthly_cash_flow"] == -50.0
    assert res.cash_flow["cash_flow_pass"] is False
    assert any("Cash flow requirement failed" in f for f in res.failed_checks)


def test_dscr_shortfall_caps_a_at_b():
    box = _box(
        strategy=Strategy.buy_hold,
        cash_flow_config={"required_dscr": 5.0, "vacancy_reserve": 0, "maintenance_reserve": 0, "property_management": 0},
    )
    res = score_lead(_lead(estimated_rent=2000), [box], PipelineConfig())
    assert res.cash_flow["cash_flow_pass"] is True
    assert res.cash_flow["dscr_pass"] is False
    assert res.grade == Grade.B
    assert any("A-grade requires DSCR >= 5.00" in f for f in res.failed_checks)


def test_flag_forces_cash_flow_on_flip_box():
    box = _box(requires_positive_cash_flow=True)
    res = score_lead(_lead(), [box], PipelineConfig())
    # no rent and no NOI: the check runs and fails
    assert res.requires_cash_flow is True
    assert res.grade == Grade.C
    assert any("Cash flow calculation error" in f for f in res.failed_checks)


@pytest.mark.asyncio
async def test_a_grade_lead_goes_to_closer(session, make_buy_box, pipeline_config):
    await make_buy_box(session)
    lead = await create_lead(
        session,
        {"property_address": "500 Elm St", "city": "Dallas", "county": "Dallas", "state": "TX", "asking_price": 150000},
        pipeline_config,
        now=NOW,
    )
    await session.commit()

    assert lead.grade == Grade.A
    assert lead.route == Route.immediate_closer
    assert lead.priority == Priority.urgent
    assert lead.sla_hours == 2
    assert lead.intake_locked is True
    assert lead.handoff_status == HandoffStatus.ready_for_closer
    assert lead.routing_alerted_at == NOW

    events = (await session.execute(select(OutboxEvent.event_type))).scalars().all()
    assert "notify.lead.routed_immediate_closer" in events
    assert "notify.lead.high_grade_match" in events

    kpis = (await session.execute(select(KpiEvent.event_type))).scalars().all()
    assert "score_calculated" in kpis
    assert "lead_routed" in kpis


@pytest.mark.asyncio
async def test_quiet_hours_hold_the_alert_but_not_the_handoff(session, make_buy_box):
    await make_buy_box(session)
    cfg = PipelineConfig()  # quiet 22 -> 8
    late = NOW.replace(hour=23)
    lead = await create_lead(
        session,
        {"city": "Dallas", "county": "Dallas", "state": "TX", "asking_price": 150000},
        cfg,
        now=late,
    )
    assert lead.route == Route.immediate_closer
    assert lead.intake_locked is True
    assert lead.routing_alerted_at is None


@pytest.mark.asyncio
async def test_negative_cash_flow_lead_routes_to_nurture(session, make_buy_box, pipeline_config):
    await make_buy_box(session, strategy=Strategy.buy_hold, cash_flow_config=dict(NEGATIVE_CASH_FLOW_BOX))
    lead = await create_lead(
        session,
        {
            "city": "Dallas",
            "county": "Dallas",
            "state": "TX",
            "asking_price": 150000,
            "estimated_rent": 100,
            "annual_insurance": 1800,
        },
        pipeline_config,
        now=NOW,
    )
    assert lead.grade == Grade.C
    assert lead.route == Route.nurture
    assert lead.priority == Priority.normal
    assert lead.routing_reason == "Failed cash flow rule"
    assert lead.intake_locked is False


@pytest.mark.asyncio
async def test_locked_intake_refuses_edits(session, make_buy_box, pipeline_config):
    await make_buy_box(session)
    lead = await create_lead(
        session, {"city": "Dallas", "county": "Dallas", "state": "TX", "asking_price": 150000}, pipeline_config, now=NOW
    )
    with pytest.raises(StateConflictError):
        await update_lead_intake(session, lead.id, {"asking_price": 90000}, pipeline_config, now=NOW)


@pytest.mark.asyncio
async def test_unlocked_intake_edit_rescores(session, make_buy_box, pipeline_config):
    await make_buy_box(session)
    lead = await create_lead(
        session, {"city": "Dallas", "county": "Dallas", "state": "TX", "asking_price": 400000}, pipeline_config, now=NOW
    )
    assert lead.grade == Grade.B

    lead = await update_lead_intake(session, lead.id, {"asking_price": 150000}, pipeline_config, now=NOW)
    assert lead.grade == Grade.A
    assert lead.route == Route.immediate_closer


@pytest.mark.asyncio
async def test_override_survives_recalculation(session, make_buy_box, pipeline_config):
    await make_buy_box(session)
    lead = await create_lead(
        session, {"city": "Dallas", "county": "Dallas", "state": "TX", "asking_price": 400000}, pipeline_config, now=NOW
    )

    lead = await override_lead_score(
        session, lead.id, grade="C", reason="comps are stale", user_id="u1", config=pipeline_config, now=NOW
    )
    assert lead.route == Route.nurture

    lead = await recalculate_lead_score(session, lead.id, pipeline_config, now=NOW)
    payload = score_payload(lead)
    assert payload["grade"] == "C"
    assert payload["computed_grade"] == "B"
    assert payload["override"]["overridden_by"] == "u1"

    lead = await clear_score_override(session, lead.id, pipeline_config, now=NOW)
    assert score_payload(lead)["grade"] == "B"
    assert lead.route == Route.dialer_priority


@pytest.mark.asyncio
async def test_override_requires_reason(session, make_lead, pipeline_config):
    lead = await make_lead(session)
    with pytest.raises(ValidationError):
        await override_lead_score(session, lead.id, grade="A", reason="  ", user_id=None, config=pipeline_config)
    with pytest.raises(ValidationError):
        await override_lead_score(session, lead.id, grade="Z", reason="x", user_id=None, config=pipeline_config)
