# tests/test_routing.py
from datetime import datetime

import pytest

from dealpipe.config import PipelineConfig, QuietHours
from dealpipe.domain.errors import ValidationError
from dealpipe.domain.routing import determine_route, is_quiet_hours
from dealpipe.models import Grade, Lead, Priority, Route
from dealpipe.service_layer.routing import clear_routing_override, override_routing, route_lead

NOW = datetime(2024, 6, 3, 15, 0, 0)

PASSING = {"cash_flow_pass": True, "dscr_pass": True, "monthly_cash_flow": 250.0, "dscr": 1.4}
CASH_FLOW_FAIL = {"cash_flow_pass": False, "dscr_pass": False, "monthly_cash_flow": -50.0, "dscr": None}
DSCR_FAIL = {"cash_flow_pass": True, "dscr_pass": False, "monthly_cash_flow": 40.0, "dscr": 1.05}


@pytest.mark.parametrize(
    "grade,route,priority,sla",
    [
        (Grade.A, Route.immediate_closer, Priority.urgent, 2),
        (Grade.B, Route.dialer_priority, Priority.high, 24),
        (Grade.C, Route.nurture, Priority.normal, 72),
        (Grade.D, Route.archive, Priority.low, None),
        (Grade.Dead, Route.archive, Priority.low, None),
    ],
)
def test_grade_maps_to_route(grade, route, priority, sla):
    d = determine_route(grade, None, Lead(), PipelineConfig())
    assert (d.route, d.priority, d.sla_hours) == (route, priority, sla)
    assert d.routing_reason is None


@pytest.mark.parametrize("grade", [Grade.A, Grade.B, Grade.C])
@pytest.mark.parametrize("cash_flow,reason", [(CASH_FLOW_FAIL, "Failed cash flow rule"), (DSCR_FAIL, "DSCR below threshold")])
def test_cash_flow_failure_never_reaches_closer(grade, cash_flow, reason):
    d = determine_route(grade, cash_flow, Lead(), PipelineConfig())
    assert d.route == Route.nurture
    assert d.priority == Priority.normal
    assert d.routing_reason == reason
    assert d.blocked_by_cash_flow is True


def test_passing_cash_flow_keeps_closer_route():
    d = determine_route(Grade.A, PASSING, Lead(), PipelineConfig())
    assert d.route == Route.immediate_closer
    assert d.blocked_by_cash_flow is False


def test_major_exclusion_warns_without_rerouting():
    lead = Lead(description="House is condemned by the city")
    d = determine_route(Grade.A, None, lead, PipelineConfig())
    assert d.route == Route.immediate_closer
    assert any("Major exclusions detected (condemned)" in r for r in d.reasons)


@pytest.mark.parametrize(
    "hour,quiet",
    [(21, False), (22, True), (23, True), (0, True), (7, True), (8, False), (15, False)],
)
def test_quiet_hours_span_midnight(hour, quiet):
    assert is_quiet_hours(NOW.replace(hour=hour), QuietHours(enabled=True, start=22, end=8)) is quiet


def test_quiet_hours_same_day_window():
    q = QuietHours(enabled=True, start=12, end=14)
    assert is_quiet_hours(NOW.replace(hour=12), q) is True
    assert is_quiet_hours(NOW.replace(hour=14), q) is False


def test_quiet_hours_empty_window_or_disabled():
    assert is_quiet_hours(NOW.replace(hour=23), QuietHours(enabled=True, start=9, end=9)) is False
    assert is_quiet_hours(NOW.replace(hour=23), QuietHours(enabled=False, start=22, end=8)) is False


@pytest.mark.asyncio
async def test_routing_alert_is_sent_once(session, make_lead, pipeline_config):
    lead = await make_lead(session, grade=Grade.A, score=95.0)

    await route_lead(session, lead, pipeline_config, now=NOW)
    assert lead.routing_alerted_at == NOW

    later = NOW.replace(hour=16)
    await route_lead(session, lead, pipeline_config, now=later)
    assert lead.routing_alerted_at == NOW


@pytest.mark.asyncio
async def test_manual_override_sticks_until_cleared(session, make_lead, pipeline_config):
    lead = await make_lead(session, grade=Grade.C, score=55.0)
    await route_lead(session, lead, pipeline_config, now=NOW)
    assert lead.route == Route.nurture

    d = await override_routing(
        session,
        lead.id,
        route="dialer_priority",
        priority="high",
        reason="seller called back motivated",
        user_id="mgr",
        config=pipeline_config,
        now=NOW,
    )
    assert d.route == Route.dialer_priority
    assert lead.routing_override["previous_route"] == "nurture"
    assert lead.routing_override["overridden_by"] == "mgr"

    # automatic routing leaves the override alone
    await route_lead(session, lead, pipeline_config, now=NOW)
    assert lead.route == Route.dialer_priority

    d = await clear_routing_override(session, lead.id, pipeline_config, now=NOW)
    assert d.route == Route.nurture
    assert lead.routing_override is None


@pytest.mark.asyncio
async def test_override_into_closer_runs_handoff(session, make_lead, pipeline_config):
    lead = await make_lead(session, grade=Grade.B, score=75.0)
    await override_routing(
        session,
        lead.id,
        route="immediate_closer",
        priority="urgent",
        reason="cash buyer lined up",
        user_id="mgr",
        config=pipeline_config,
        now=NOW,
    )
    assert lead.intake_locked is True
    assert lead.sent_to_closer_at == NOW


@pytest.mark.asyncio
async def test_override_validation(session, make_lead, pipeline_config):
    lead = await make_lead(session)
    with pytest.raises(ValidationError):
        await override_routing(
            session, lead.id, route="vip", priority="high", reason="x", user_id=None, config=pipeline_config
        )
    with pytest.raises(ValidationError):
        await override_routing(
            session, lead.id, route="nurture", priority="high", reason="", user_id=None, config=pipeline_config
        )
