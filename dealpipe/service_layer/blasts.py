# dealpipe/service_layer/blasts.py
from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineConfig
from ..domain.deal_package import format_deal_package_html, format_deal_package_text, render_template
from ..domain.errors import NotFoundError, RateLimitError, StateConflictError, ValidationError
from ..integrations.outbound import OutboundMessage, OutboundProviders
from ..models import (
    BlastStatus,
    Buyer,
    BuyerFeedback,
    Channel,
    DealBlast,
    DealBlastRecipient,
    FeedbackType,
    Lead,
    RecipientStatus,
    Route,
)
from .events import log_kpi_event, notify
from .matching import match_lead
from .routing import effective_grade, get_lead
from .templates import get_active_template

log = logging.getLogger(__name__)

MAX_RECIPIENTS_LIMIT = 100
RESPONSE_STATUSES = (RecipientStatus.interested, RecipientStatus.not_interested, RecipientStatus.replied)
# delivered, or already answered once (a later reply supersedes the earlier one)
ANSWERABLE_STATUSES = (RecipientStatus.sent, RecipientStatus.opted_out, *RESPONSE_STATUSES)

_FEEDBACK_PHRASES = (
    (FeedbackType.price_too_high, ("too high", "price", "expensive")),
    (FeedbackType.wrong_market, ("wrong market", "wrong area")),
    (FeedbackType.needs_more_info, ("more info", "details")),
)


def _parse_channel(channel: str | Channel) -> Channel:
    try:
        return Channel(channel)
    except ValueError:
        raise ValidationError(f"Invalid channel: {channel!r}. Use one of {[c.value for c in Channel]}")


def _guard_not_archived(lead: Lead) -> None:
    if lead.route == Route.archive:
        raise StateConflictError(f"Lead {lead.id} is archived; cannot blast an archived lead")


async def get_blast(session: AsyncSession, blast_id: int) -> DealBlast:
    blast = (await session.execute(select(DealBlast).where(DealBlast.id == blast_id))).scalars().first()
    if not blast:
        raise NotFoundError(f"Deal blast {blast_id} not found")
    return blast


async def list_recipients(
    session: AsyncSession,
    blast_id: int,
    status: RecipientStatus | None = None,
) -> list[DealBlastRecipient]:
    stmt = select(DealBlastRecipient).where(DealBlastRecipient.deal_blast_id == blast_id)
    if status is not None:
        stmt = stmt.where(DealBlastRecipient.status == status)
    # rank order
    stmt = stmt.order_by(DealBlastRecipient.match_score.desc(), DealBlastRecipient.buyer_id.asc())
    return list((await session.execute(stmt)).scalars().all())


async def list_buyer_feedback(
    session: AsyncSession,
    *,
    lead_id: int | None = None,
    buyer_id: int | None = None,
) -> list[BuyerFeedback]:
    stmt = select(BuyerFeedback)
    if lead_id is not None:
        stmt = stmt.where(BuyerFeedback.lead_id == lead_id)
    if buyer_id is not None:
        stmt = stmt.where(BuyerFeedback.buyer_id == buyer_id)
    return list((await session.execute(stmt.order_by(BuyerFeedback.id.desc()))).scalars().all())


async def create_blast(
    session: AsyncSession,
    *,
    lead_id: int,
    channel: str | Channel,
    message_template_key: str,
    max_recipients: int = 25,
    created_by: str | None = None,
    config: PipelineConfig,
    now: datetime | None = None,
) -> DealBlast:
    ch = _parse_channel(channel)
    if not 1 <= int(max_recipients) <= MAX_RECIPIENTS_LIMIT:
        raise ValidationError(f"max_recipients must be between 1 and {MAX_RECIPIENTS_LIMIT}")
    if not message_template_key:
        raise ValidationError("message_template_key is required")

    now = now or datetime.utcnow()
    lead = await get_lead(session, lead_id)
    _guard_not_archived(lead)
    await get_active_template(session, message_template_key)

    result = await match_lead(session, lead, channel=ch, now=now)
    if not result.matches:
        raise StateConflictError("No matching buyers found")

    blast = DealBlast(
        lead_id=lead.id,
        channel=ch,
        message_template_key=message_template_key,
        max_recipients=int(max_recipients),
        created_by=created_by,
        status=BlastStatus.draft,
        grade_at_blast=effective_grade(lead),
        created_at=now,
    )
    session.add(blast)
    await session.flush()

    chosen = result.matches[: int(max_recipients)]
    for m in chosen:
        session.add(
            DealBlastRecipient(
                deal_blast_id=blast.id,
                buyer_id=m.buyer_id,
                match_score=m.score,
                status=RecipientStatus.queued,
                created_at=now,
            )
        )
    blast.stats_recipients = len(chosen)
    await session.flush()

    await log_kpi_event(
        session,
        "deal_blast_created",
        lead_id=lead.id,
        user_id=created_by,
        payload={
            "deal_blast_id": blast.id,
            "channel": ch.value,
            "recipients": len(chosen),
            "grade_at_blast": blast.grade_at_blast.value,
        },
        now=now,
    )
    return blast


def _destination(buyer: Buyer, channel: Channel) -> str | None:
    if channel == Channel.sms:
        return (buyer.phones or [None])[0]
    if channel == Channel.email:
        return (buyer.emails or [None])[0]
    return str(buyer.id)


async def _sent_in_last_hour(session: AsyncSession, user_id: str | None, now: datetime) -> int:
    stmt = (
        select(func.count(DealBlast.id))
        .where(DealBlast.status == BlastStatus.sent)
        .where(DealBlast.sent_at >= now - timedelta(hours=1))
    )
    if user_id is not None:
        stmt = stmt.where(DealBlast.created_by == user_id)
    return int((await session.execute(stmt)).scalar_one())


async def send_blast(
    session: AsyncSession,
    blast_id: int,
    *,
    user_id: str | None = None,
    providers: OutboundProviders,
    config: PipelineConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """
    Deliver a draft blast to its queued recipients, one at a time.

    A provider failure only fails that recipient; the loop keeps going.
    """
    now = now or datetime.utcnow()
    blast = await get_blast(session, blast_id)
    if blast.status != BlastStatus.draft:
        raise StateConflictError(f"Deal blast {blast.id} is {blast.status.value}; only draft blasts can be sent")

    lead = await get_lead(session, blast.lead_id)
    _guard_not_archived(lead)
    tpl = await get_active_template(session, blast.message_template_key)

    recipients = await list_recipients(session, blast.id, RecipientStatus.queued)
    if not recipients:
        raise StateConflictError(f"Deal blast {blast.id} has no queued recipients")

    recent = await _sent_in_last_hour(session, user_id, now)
    if recent >= config.max_blasts_per_hour:
        raise RateLimitError(
            f"Rate limit exceeded: at most {config.max_blasts_per_hour} blasts per hour",
            limit=config.max_blasts_per_hour,
        )

    text = format_deal_package_text(lead, redacted=True)
    html_body = format_deal_package_html(lead, redacted=True)
    message = render_template(tpl.content, lead, text=text, html_body=html_body)
    provider = providers.for_channel(blast.channel)

    buyer_ids = [r.buyer_id for r in recipients]
    buyers = {
        b.id: b for b in (await session.execute(select(Buyer).where(Buyer.id.in_(buyer_ids)))).scalars().all()
    }

    sent = 0
    failed = 0
    for r in recipients:
        buyer = buyers.get(r.buyer_id)
        to = _destination(buyer, blast.channel) if buyer else None
        if not to:
            r.status = RecipientStatus.failed
            r.reason_excluded = f"No {blast.channel.value} contact info available"
            failed += 1
            continue

        msg = OutboundMessage(
            to=to,
            message=message,
            recipient_id=r.id,
            subject=(
                f"New Deal Opportunity - {lead.property_address or 'Property'}"
                if blast.channel == Channel.email
                else None
            ),
            html=html_body if blast.channel == Channel.email else None,
            metadata={"deal_blast_id": blast.id, "lead_id": lead.id, "buyer_id": r.buyer_id},
        )
        try:
            res = await provider.send(msg)
        except Exception as e:
            log.warning("blast %s: send to buyer %s failed: %s", blast.id, r.buyer_id, e)
            r.status = RecipientStatus.failed
            r.reason_excluded = str(e)
            failed += 1
            continue

        r.status = RecipientStatus.sent
        r.sent_at = now
        r.message_id = res.message_id
        r.provider = res.provider
        r.delivered_message = message
        buyer.last_blast_at = now
        sent += 1

    blast.status = BlastStatus.sent
    blast.sent_at = now
    blast.stats_recipients = len(recipients)
    blast.stats_delivered = sent
    blast.stats_failed = failed
    blast.stats_replies = 0
    blast.stats_interested = 0
    blast.stats_not_interested = 0
    await session.flush()

    await log_kpi_event(
        session,
        "buyer_blast_sent",
        lead_id=lead.id,
        user_id=user_id,
        payload={
            "deal_blast_id": blast.id,
            "channel": blast.channel.value,
            "sent": sent,
            "failed": failed,
            "grade_at_blast": blast.grade_at_blast.value,
        },
        now=now,
    )
    return {"deal_blast_id": blast.id, "total_recipients": len(recipients), "sent": sent, "failed": failed}


async def cancel_blast(session: AsyncSession, blast_id: int, *, now: datetime | None = None) -> DealBlast:
    now = now or datetime.utcnow()
    blast = await get_blast(session, blast_id)
    if blast.status == BlastStatus.sent:
        raise StateConflictError("Cannot cancel a sent blast")
    if blast.status == BlastStatus.canceled:
        raise StateConflictError(f"Deal blast {blast.id} is already canceled")

    blast.status = BlastStatus.canceled
    blast.canceled_at = now
    for r in await list_recipients(session, blast.id, RecipientStatus.queued):
        r.status = RecipientStatus.opted_out
    await session.flush()
    return blast


def _is_opt_out(text: str | None, keywords: tuple[str, ...]) -> bool:
    lowered = (text or "").lower()
    return any(k in lowered for k in keywords)


def classify_feedback(status: RecipientStatus, text: str | None) -> FeedbackType | None:
    """
    Buyer feedback for a recorded reply. Opt-outs and bare replies carry
    no verdict on the deal and yield None.
    """
    if status == RecipientStatus.interested:
        return FeedbackType.interested
    if status != RecipientStatus.not_interested:
        return None
    lowered = (text or "").lower()
    for feedback_type, phrases in _FEEDBACK_PHRASES:
        if any(p in lowered for p in phrases):
            return feedback_type
    return FeedbackType.pass_


async def _refresh_responsiveness(session: AsyncSession, buyer_id: int, now: datetime) -> None:
    sent, answered = (
        await session.execute(
            select(func.count(DealBlastRecipient.id), func.count(DealBlastRecipient.responded_at))
            .where(DealBlastRecipient.buyer_id == buyer_id)
            .where(DealBlastRecipient.sent_at.is_not(None))
        )
    ).one()
    buyer = (await session.execute(select(Buyer).where(Buyer.id == buyer_id))).scalars().first()
    if buyer and sent:
        buyer.responsiveness_score = round(answered / sent * 100, 2)
        buyer.updated_at = now
        await session.flush()


async def record_response(
    session: AsyncSession,
    blast_id: int,
    *,
    recipient_id: int | None,
    response_text: str | None,
    status: str | None,
    config: PipelineConfig,
    user_id: str | None = None,
    now: datetime | None = None,
) -> DealBlastRecipient:
    if recipient_id is None:
        raise ValidationError("recipient_id is required")
    try:
        requested = RecipientStatus(status) if status else None
    except ValueError:
        requested = None
    if requested not in RESPONSE_STATUSES:
        raise ValidationError(f"status must be one of {[s.value for s in RESPONSE_STATUSES]}")

    now = now or datetime.utcnow()
    blast = await get_blast(session, blast_id)
    r = (
        (
            await session.execute(
                select(DealBlastRecipient)
                .where(DealBlastRecipient.id == recipient_id)
                .where(DealBlastRecipient.deal_blast_id == blast.id)
            )
        )
        .scalars()
        .first()
    )
    if not r:
        raise NotFoundError(f"Recipient {recipient_id} not found on deal blast {blast.id}")
    if blast.status != BlastStatus.sent:
        raise StateConflictError(f"Deal blast {blast.id} is {blast.status.value}; responses need a sent blast")
    if r.status not in ANSWERABLE_STATUSES:
        raise StateConflictError(f"Recipient {r.id} is {r.status.value}; only delivered recipients can respond")

    effective = requested
    if _is_opt_out(response_text, config.opt_out_keywords):
        effective = RecipientStatus.opted_out
        buyer = (await session.execute(select(Buyer).where(Buyer.id == r.buyer_id))).scalars().first()
        if buyer:
            if blast.channel == Channel.sms:
                buyer.opt_out_sms = True
            elif blast.channel == Channel.email:
                buyer.opt_out_email = True
            buyer.updated_at = now

    r.status = effective
    r.responded_at = now
    r.response_text = response_text

    blast.stats_replies = (blast.stats_replies or 0) + 1
    if effective == RecipientStatus.interested:
        blast.stats_interested = (blast.stats_interested or 0) + 1
    elif effective == RecipientStatus.not_interested:
        blast.stats_not_interested = (blast.stats_not_interested or 0) + 1

    feedback_type = classify_feedback(effective, response_text)
    if feedback_type is not None:
        session.add(
            BuyerFeedback(
                buyer_id=r.buyer_id,
                lead_id=blast.lead_id,
                deal_blast_id=blast.id,
                recipient_id=r.id,
                feedback_type=feedback_type,
                source=blast.channel,
                response_text=response_text,
                recorded_by=user_id,
                created_at=now,
            )
        )
    await session.flush()
    await _refresh_responsiveness(session, r.buyer_id, now)

    if effective == RecipientStatus.interested:
        await notify(
            session,
            blast.created_by,
            "buyer.interested",
            {"deal_blast_id": blast.id, "lead_id": blast.lead_id, "buyer_id": r.buyer_id},
        )
    return r
