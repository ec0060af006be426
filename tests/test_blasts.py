# tests/test_blasts.py
import dataclasses
from datetime import datetime

import pytest
from sqlalchemy import select

from dealpipe.domain.errors import NotFoundError, RateLimitError, StateConflictError, ValidationError
from dealpipe.integrations.outbound import EmailProvider, InternalProvider, OutboundProviders, SendResult, SmsProvider
from dealpipe.models import BlastStatus, Buyer, BuyerFeedback, FeedbackType, OutboxEvent, RecipientStatus, Route
from dealpipe.service_layer.blasts import (
    cancel_blast,
    classify_feedback,
    create_blast,
    list_recipients,
    record_response,
    send_blast,
)

NOW = datetime(2024, 6, 3, 15, 0, 0)


class FakeSms:
    name = "sms"

    def __init__(self, fail_for=()):
        self.sent = []
        self.fail_for = set(fail_for)

    def is_configured(self):
        return True

    async def send(self, msg):
        if msg.to in self.fail_for:
            raise RuntimeError("carrier rejected")
        self.sent.append(msg)
        return SendResult(message_id=f"SM{len(self.sent)}", provider=self.name)


def _providers(sms=None):
    return OutboundProviders(
        internal=InternalProvider(),
        sms=sms or SmsProvider(None, None, None),
        email=EmailProvider(None, None, None),
    )


@pytest.mark.asyncio
async def test_max_recipients_keeps_best_ranked(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    for i in range(40):
        await make_buyer(session, name=f"b{i}", engagement_score=float(i))

    blast = await create_blast(
        session,
        lead_id=lead.id,
        channel="internal",
        message_template_key="deal_default",
        max_recipients=25,
        created_by="u1",
        config=pipeline_config,
        now=NOW,
    )
    rows = await list_recipients(session, blast.id)

    assert blast.status == BlastStatus.draft
    assert blast.stats_recipients == 25
    assert len(rows) == 25
    # engagement 15..39 made the cut; 60 + 0.2 * engagement
    assert min(r.match_score for r in rows) == pytest.approx(63.0)
    assert max(r.match_score for r in rows) == pytest.approx(67.8)
    assert all(r.status == RecipientStatus.queued for r in rows)


@pytest.mark.asyncio
async def test_create_blast_guards(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)

    with pytest.raises(StateConflictError, match="No matching buyers found"):
        await create_blast(
            session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config
        )

    await make_buyer(session)
    with pytest.raises(ValidationError):
        await create_blast(
            session, lead_id=lead.id, channel="fax", message_template_key="deal_default", config=pipeline_config
        )
    with pytest.raises(ValidationError):
        await create_blast(
            session,
            lead_id=lead.id,
            channel="internal",
            message_template_key="deal_default",
            max_recipients=101,
            config=pipeline_config,
        )
    with pytest.raises(NotFoundError):
        await create_blast(
            session, lead_id=lead.id, channel="internal", message_template_key="missing", config=pipeline_config
        )

    lead.route = Route.archive
    with pytest.raises(StateConflictError):
        await create_blast(
            session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config
        )


@pytest.mark.asyncio
async def test_internal_send_delivers_and_starts_cooldown(
    session, make_lead, make_buyer, active_template, pipeline_config
):
    lead = await make_lead(session, property_address="742 Evergreen Terrace")
    await active_template(session)
    buyers = [await make_buyer(session, name=f"b{i}") for i in range(3)]

    blast = await create_blast(
        session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    res = await send_blast(session, blast.id, user_id="u1", providers=_providers(), config=pipeline_config, now=NOW)

    assert res == {"deal_blast_id": blast.id, "total_recipients": 3, "sent": 3, "failed": 0}
    assert blast.status == BlastStatus.sent
    assert blast.sent_at == NOW
    assert blast.stats_delivered == 3

    rows = await list_recipients(session, blast.id)
    assert all(r.status == RecipientStatus.sent for r in rows)
    assert all(r.message_id.startswith("internal_") for r in rows)
    # street number is masked in outbound copy
    assert "*** Evergreen Terrace" in rows[0].delivered_message
    assert "742 Evergreen" not in rows[0].delivered_message
    assert all(b.last_blast_at == NOW for b in buyers)

    with pytest.raises(StateConflictError):
        await send_blast(session, blast.id, providers=_providers(), config=pipeline_config, now=NOW)


@pytest.mark.asyncio
async def test_unconfigured_sms_fails_each_recipient(
    session, make_lead, make_buyer, active_template, pipeline_config
):
    lead = await make_lead(session)
    await active_template(session)
    for i in range(2):
        await make_buyer(session, name=f"b{i}")

    blast = await create_blast(
        session, lead_id=lead.id, channel="sms", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    res = await send_blast(session, blast.id, providers=_providers(), config=pipeline_config, now=NOW)

    assert res["sent"] == 0
    assert res["failed"] == 2
    assert blast.status == BlastStatus.sent
    rows = await list_recipients(session, blast.id)
    assert all(r.status == RecipientStatus.failed for r in rows)
    assert all("not configured" in r.reason_excluded for r in rows)


@pytest.mark.asyncio
async def test_one_bad_recipient_does_not_stop_the_blast(
    session, make_lead, make_buyer, active_template, pipeline_config
):
    lead = await make_lead(session)
    await active_template(session)
    await make_buyer(session, name="good", phones=["+12145550101"])
    await make_buyer(session, name="bad", phones=["+12145550102"])
    await make_buyer(session, name="no phone", phones=[])

    blast = await create_blast(
        session, lead_id=lead.id, channel="sms", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    sms = FakeSms(fail_for={"+12145550102"})
    res = await send_blast(session, blast.id, providers=_providers(sms), config=pipeline_config, now=NOW)

    assert res["sent"] == 1
    assert res["failed"] == 2
    reasons = sorted(r.reason_excluded or "" for r in await list_recipients(session, blast.id))
    assert reasons == ["", "No sms contact info available", "carrier rejected"]


@pytest.mark.asyncio
async def test_hourly_rate_limit_per_user(session, make_lead, make_buyer, active_template, pipeline_config):
    cfg = dataclasses.replace(pipeline_config, max_blasts_per_hour=1)
    lead = await make_lead(session)
    await active_template(session)
    await make_buyer(session, cooldown_hours=0)

    async def _blast(user):
        return await create_blast(
            session,
            lead_id=lead.id,
            channel="internal",
            message_template_key="deal_default",
            created_by=user,
            config=cfg,
            now=NOW,
        )

    first = await _blast("u1")
    await send_blast(session, first.id, user_id="u1", providers=_providers(), config=cfg, now=NOW)

    second = await _blast("u1")
    with pytest.raises(RateLimitError) as exc:
        await send_blast(session, second.id, user_id="u1", providers=_providers(), config=cfg, now=NOW)
    assert exc.value.limit == 1
    assert second.status == BlastStatus.draft

    other = await _blast("u2")
    res = await send_blast(session, other.id, user_id="u2", providers=_providers(), config=cfg, now=NOW)
    assert res["sent"] == 1


@pytest.mark.asyncio
async def test_cancel_draft_opts_out_queued(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    for i in range(3):
        await make_buyer(session, name=f"b{i}")

    blast = await create_blast(
        session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    await cancel_blast(session, blast.id, now=NOW)

    assert blast.status == BlastStatus.canceled
    assert blast.canceled_at == NOW
    rows = await list_recipients(session, blast.id)
    assert [r.status for r in rows] == [RecipientStatus.opted_out] * 3

    with pytest.raises(StateConflictError):
        await cancel_blast(session, blast.id)


@pytest.mark.asyncio
async def test_sent_blast_cannot_be_canceled(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    await make_buyer(session)

    blast = await create_blast(
        session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    await send_blast(session, blast.id, providers=_providers(), config=pipeline_config, now=NOW)
    with pytest.raises(StateConflictError, match="Cannot cancel a sent blast"):
        await cancel_blast(session, blast.id)


@pytest.mark.asyncio
async def test_opt_out_keyword_beats_requested_status(
    session, make_lead, make_buyer, active_template, pipeline_config
):
    lead = await make_lead(session)
    await active_template(session)
    quitter = await make_buyer(session, name="quitter", phones=["+12145550111"])
    keen = await make_buyer(session, name="keen", phones=["+12145550112"])

    blast = await create_blast(
        session,
        lead_id=lead.id,
        channel="sms",
        message_template_key="deal_default",
        created_by="u1",
        config=pipeline_config,
        now=NOW,
    )
    await send_blast(session, blast.id, providers=_providers(FakeSms()), config=pipeline_config, now=NOW)
    by_buyer = {r.buyer_id: r for r in await list_recipients(session, blast.id)}

    r = await record_response(
        session,
        blast.id,
        recipient_id=by_buyer[quitter.id].id,
        response_text="Interested but STOP texting me",
        status="interested",
        config=pipeline_config,
        now=NOW,
    )
    assert r.status == RecipientStatus.opted_out
    assert quitter.opt_out_sms is True
    assert blast.stats_interested == 0

    r = await record_response(
        session,
        blast.id,
        recipient_id=by_buyer[keen.id].id,
        response_text="Send me the comps",
        status="interested",
        config=pipeline_config,
        now=NOW,
    )
    assert r.status == RecipientStatus.interested
    assert keen.opt_out_sms is False
    assert blast.stats_replies == 2
    assert blast.stats_interested == 1

    events = (await session.execute(select(OutboxEvent.event_type))).scalars().all()
    assert "notify.buyer.interested" in events

    refreshed = (await session.execute(select(Buyer).where(Buyer.id == quitter.id))).scalars().first()
    assert refreshed.opt_out_sms is True


@pytest.mark.asyncio
async def test_response_validation(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    await make_buyer(session)
    blast = await create_blast(
        session, lead_id=lead.id, channel="internal", message_template_key="deal_default", config=pipeline_config
    )
    rid = (await list_recipients(session, blast.id))[0].id

    with pytest.raises(ValidationError):
        await record_response(
            session, blast.id, recipient_id=None, response_text="hi", status="replied", config=pipeline_config
        )
    with pytest.raises(ValidationError):
        await record_response(
            session, blast.id, recipient_id=rid, response_text="hi", status="sent", config=pipeline_config
        )
    with pytest.raises(NotFoundError):
        await record_response(
            session, blast.id, recipient_id=rid + 100, response_text="hi", status="replied", config=pipeline_config
        )


@pytest.mark.asyncio
async def test_responses_need_a_delivered_recipient(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    ok = await make_buyer(session, name="ok", phones=["+12145550121"])
    bounced = await make_buyer(session, name="bounced", phones=["+12145550122"])

    draft = await create_blast(
        session, lead_id=lead.id, channel="sms", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    queued = (await list_recipients(session, draft.id))[0]
    with pytest.raises(StateConflictError, match="draft"):
        await record_response(
            session, draft.id, recipient_id=queued.id, response_text="yes", status="interested", config=pipeline_config
        )
    assert queued.status == RecipientStatus.queued
    assert draft.stats_interested == 0

    await cancel_blast(session, draft.id)
    with pytest.raises(StateConflictError, match="canceled"):
        await record_response(
            session, draft.id, recipient_id=queued.id, response_text="yes", status="interested", config=pipeline_config
        )

    blast = await create_blast(
        session, lead_id=lead.id, channel="sms", message_template_key="deal_default", config=pipeline_config, now=NOW
    )
    await send_blast(
        session, blast.id, providers=_providers(FakeSms(fail_for={"+12145550122"})), config=pipeline_config, now=NOW
    )
    by_buyer = {r.buyer_id: r for r in await list_recipients(session, blast.id)}
    assert by_buyer[bounced.id].status == RecipientStatus.failed
    with pytest.raises(StateConflictError, match="failed"):
        await record_response(
            session,
            blast.id,
            recipient_id=by_buyer[bounced.id].id,
            response_text="yes",
            status="interested",
            config=pipeline_config,
        )

    r = await record_response(
        session,
        blast.id,
        recipient_id=by_buyer[ok.id].id,
        response_text="yes",
        status="interested",
        config=pipeline_config,
        now=NOW,
    )
    assert r.status == RecipientStatus.interested
    assert blast.stats_interested == 1


@pytest.mark.parametrize(
    "status, text, expected",
    [
        (RecipientStatus.interested, "price looks high but send it", FeedbackType.interested),
        (RecipientStatus.not_interested, "Price is too high for me", FeedbackType.price_too_high),
        (RecipientStatus.not_interested, "wrong area, I only buy in Fort Worth", FeedbackType.wrong_market),
        (RecipientStatus.not_interested, "need more info on the roof", FeedbackType.needs_more_info),
        (RecipientStatus.not_interested, None, FeedbackType.pass_),
        (RecipientStatus.replied, "call me", None),
        (RecipientStatus.opted_out, "stop", None),
    ],
)
def test_reply_classification(status, text, expected):
    assert classify_feedback(status, text) == expected


@pytest.mark.asyncio
async def test_replies_are_kept_as_buyer_feedback(session, make_lead, make_buyer, active_template, pipeline_config):
    lead = await make_lead(session)
    await active_template(session)
    keen = await make_buyer(session, name="keen", phones=["+12145550131"])
    pricey = await make_buyer(session, name="pricey", phones=["+12145550132"])
    quitter = await make_buyer(session, name="quitter", phones=["+12145550133"])
    silent = await make_buyer(session, name="silent", phones=["+12145550134"])

    blast = await create_blast(
        session,
        lead_id=lead.id,
        channel="sms",
        message_template_key="deal_default",
        created_by="u1",
        config=pipeline_config,
        now=NOW,
    )
    await send_blast(session, blast.id, providers=_providers(FakeSms()), config=pipeline_config, now=NOW)
    by_buyer = {r.buyer_id: r for r in await list_recipients(session, blast.id)}

    replies = [
        (keen, "Send me the comps", "interested"),
        (pricey, "Too expensive at that price", "not_interested"),
        (quitter, "not for me, STOP", "not_interested"),
    ]
    for buyer, text, status in replies:
        await record_response(
            session,
            blast.id,
            recipient_id=by_buyer[buyer.id].id,
            response_text=text,
            status=status,
            config=pipeline_config,
            user_id="ops",
            now=NOW,
        )

    rows = (await session.execute(select(BuyerFeedback).order_by(BuyerFeedback.id))).scalars().all()
    assert [(f.buyer_id, f.feedback_type) for f in rows] == [
        (keen.id, FeedbackType.interested),
        (pricey.id, FeedbackType.price_too_high),
    ]
    assert all(f.lead_id == lead.id and f.deal_blast_id == blast.id for f in rows)
    assert rows[1].response_text == "Too expensive at that price"
    assert rows[1].recorded_by == "ops"

    assert keen.responsiveness_score == 100.0
    assert quitter.responsiveness_score == 100.0
    assert silent.responsiveness_score is None
