# tests/test_matching.py
from datetime import datetime, timedelta

import pytest

from dealpipe.domain.matching import check_buyer, match_buyers, score_buyer
from dealpipe.models import Buyer, Channel, Lead
from dealpipe.service_layer.matching import find_matching_buyers

NOW = datetime(2024, 6, 3, 15, 0, 0)


def _lead(**kw):
    data = dict(id=7, state="TX", city="Dallas", county="Dallas", property_type="SFR", asking_price=150000)
    data.update(kw)
    return Lead(**data)


def _buyer(buyer_id=1, **kw):
    data = dict(id=buyer_id, name=f"Buyer {buyer_id}", preferred_markets=["TX-DALLAS"], cooldown_hours=72)
    data.update(kw)
    return Buyer(**data)


def test_cooldown_boundary_is_exclusive():
    lead = _lead()
    on_edge = _buyer(last_blast_at=NOW - timedelta(hours=72))
    inside = _buyer(last_blast_at=NOW - timedelta(hours=71))

    assert check_buyer(lead, on_edge, Channel.internal, NOW)[0] is None
    reason, _ = check_buyer(lead, inside, Channel.internal, NOW)
    assert reason.startswith("Buyer on cooldown")


def test_opt_out_is_per_channel():
    lead = _lead()
    b = _buyer(opt_out_sms=True)
    assert check_buyer(lead, b, Channel.sms, NOW)[0] == "Buyer opted out of SMS"
    assert check_buyer(lead, b, Channel.email, NOW)[0] is None


def test_market_mismatch_and_missing_markets():
    lead = _lead()
    assert check_buyer(lead, _buyer(preferred_markets=["TX-HOUSTON"]), Channel.internal, NOW)[0].startswith(
        "Market mismatch"
    )
    assert check_buyer(lead, _buyer(preferred_markets=[]), Channel.internal, NOW)[0] == "No preferred markets set"


def test_legacy_markets_are_honoured():
    b = _buyer(preferred_markets=[], markets=["TX-DALLAS"])
    assert check_buyer(_lead(), b, Channel.internal, NOW)[0] is None


def test_unknown_lead_values_skip_minimums():
    b = _buyer(min_beds=4, min_sqft=2000)
    assert check_buyer(_lead(beds=None, sqft=None), b, Channel.internal, NOW)[0] is None
    assert check_buyer(_lead(beds=3), b, Channel.internal, NOW)[0] == "Beds too low: 3 < 4"


def test_price_and_rehab_limits():
    b = _buyer(max_buy_price=120000, max_rehab_level="light")
    assert check_buyer(_lead(), b, Channel.internal, NOW)[0].startswith("Price too high")
    b = _buyer(max_rehab_level="light")
    assert check_buyer(_lead(condition_tier="heavy"), b, Channel.internal, NOW)[0].startswith("Rehab level too high")


def test_buy_hold_buyer_needs_passing_cash_flow():
    b = _buyer(strategies=["rental"])
    reason, _ = check_buyer(_lead(cash_flow=None), b, Channel.internal, NOW)
    assert reason == "Cash flow requirement failed: monthly cash flow is not positive"

    ok = {"cash_flow_pass": True, "dscr_pass": True, "monthly_cash_flow": 210.0, "dscr": 1.5, "required_dscr": 1.25}
    reason, reasons = check_buyer(_lead(cash_flow=ok), b, Channel.internal, NOW)
    assert reason is None
    assert "Cash flow positive: $210.00/month" in reasons


def test_hard_damage_needs_heavy_rehab_buyer():
    lead = _lead(description="kitchen fire last year")
    assert check_buyer(lead, _buyer(), Channel.internal, NOW)[0].startswith("Major fire")
    assert check_buyer(lead, _buyer(max_rehab_level="heavy"), Channel.internal, NOW)[0] is None


def test_score_buyer_components():
    lead = _lead()
    plain = _buyer(engagement_score=0)
    rich = _buyer(
        engagement_score=100,
        counties=["Dallas"],
        cities=["dallas"],
        proof_of_funds=True,
        last_purchase_date=NOW - timedelta(days=30),
    )
    assert score_buyer(lead, plain, NOW) == 60.0
    # 50 + 10 market + 10 county + 10 city + 20 engagement + 5 pof + 5 recent, capped
    assert score_buyer(lead, rich, NOW) == 100.0


def test_match_buyers_orders_and_truncates():
    lead = _lead()
    buyers = [_buyer(i, engagement_score=float(i * 10)) for i in range(1, 6)]
    buyers.append(_buyer(99, opt_out_sms=True))

    res = match_buyers(lead, buyers, Channel.sms, NOW, max_results=3)
    assert [m.buyer_id for m in res.matches] == [5, 4, 3]
    assert res.market_key == "TX-DALLAS"
    assert [x.buyer_id for x in res.excluded] == [99]


def test_ties_break_on_buyer_id():
    res = match_buyers(_lead(), [_buyer(3), _buyer(1), _buyer(2)], Channel.internal, NOW)
    assert [m.buyer_id for m in res.matches] == [1, 2, 3]


@pytest.mark.asyncio
async def test_find_matching_buyers_threshold(session, make_lead, make_buyer):
    lead = await make_lead(session)
    await make_buyer(session, name="low", engagement_score=20.0)  # 64
    await make_buyer(session, name="high", engagement_score=80.0)  # 76
    await make_buyer(session, name="elsewhere", preferred_markets=["MI-DETROIT"])

    res = await find_matching_buyers(session, lead.id, threshold=70, now=NOW)
    assert [m.buyer_name for m in res.matches] == ["high"]

    res = await find_matching_buyers(session, lead.id, threshold=0, now=NOW)
    assert len(res.matches) == 2
