# dealpipe/service_layer/routing.py
from __future__ import annotations

import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineConfig
from ..domain.errors import NotFoundError, ValidationError
from ..domain.routing import ROUTING_TAGS, RouteDecision, determine_route, is_quiet_hours, sla_for
from ..models import Grade, HandoffStatus, Lead, Priority, Route
from .events import log_kpi_event, notify

log = logging.getLogger(__name__)

_HANDOFF_OPENABLE = (HandoffStatus.none, HandoffStatus.back_to_dialer)


def effective_grade(lead: Lead) -> Grade:
    override = lead.score_override or {}
    if override.get("grade"):
        return Grade(override["grade"])
    return lead.grade or Grade.Dead


async def get_lead(session: AsyncSession, lead_id: int) -> Lead:
    lead = (await session.execute(select(Lead).where(Lead.id == lead_id))).scalars().first()
    if not lead:
        raise NotFoundError(f"Lead {lead_id} not found")
    return lead


def _override_decision(lead: Lead, config: PipelineConfig) -> RouteDecision:
    o = lead.routing_override or {}
    route = Route(o["route"])
    return RouteDecision(
        route=route,
        priority=Priority(o["priority"]),
        sla_hours=sla_for(route, config),
        reasons=[f"Manual override: {o.get('reason')}"],
        routing_reason="Manual override",
        tags=ROUTING_TAGS.get(effective_grade(lead), ()),
    )


def _persist(lead: Lead, decision: RouteDecision, now: datetime) -> None:
    lead.route = decision.route
    lead.priority = decision.priority
    lead.sla_hours = decision.sla_hours
    lead.routing_reasons = list(decision.reasons)
    lead.routing_reason = decision.routing_reason
    lead.routed_at = now
    lead.updated_at = now


async def _closer_actions(
    session: AsyncSession,
    lead: Lead,
    config: PipelineConfig,
    now: datetime,
    user_id: str | None,
) -> dict[str, bool]:
    done = {"intake_locked": False, "handoff_opened": False, "alerted": False}

    if not lead.intake_locked:
        lead.intake_locked = True
        lead.intake_locked_at = now
        done["intake_locked"] = True

    if (lead.handoff_status or HandoffStatus.none) in _HANDOFF_OPENABLE:
        lead.handoff_status = HandoffStatus.ready_for_closer
        lead.sent_to_closer_at = now
        done["handoff_opened"] = True

    if lead.routing_alerted_at is None and not is_quiet_hours(now, config.quiet_hours):
        sent = await notify(
            session,
            user_id,
            "lead.routed_immediate_closer",
            {
                "lead_id": lead.id,
                "grade": effective_grade(lead).value,
                "score": lead.score,
                "address": lead.property_address,
                "sla_hours": lead.sla_hours,
            },
        )
        if sent:
            lead.routing_alerted_at = now
            done["alerted"] = True

    await session.flush()
    return done


async def _routing_actions(
    session: AsyncSession,
    lead: Lead,
    decision: RouteDecision,
    previous: Route | None,
    config: PipelineConfig,
    now: datetime,
    user_id: str | None,
) -> None:
    actions: dict[str, bool] = {}
    if decision.route == Route.immediate_closer:
        try:
            actions = await _closer_actions(session, lead, config, now, user_id)
        except Exception:
            log.exception("closer handoff actions failed for lead %s", lead.id)

    await log_kpi_event(
        session,
        "lead_routed",
        lead_id=lead.id,
        user_id=user_id,
        payload={
            "route": decision.route.value,
            "previous_route": previous.value if previous else None,
            "priority": decision.priority.value,
            "routing_reason": decision.routing_reason,
            "tags": list(decision.tags),
            **actions,
        },
        now=now,
    )


async def route_lead(
    session: AsyncSession,
    lead: Lead,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
    skip_actions: bool = False,
    user_id: str | None = None,
) -> RouteDecision:
    """
    Assign route/priority/SLA from the current score. A manual routing
    override is left in place until cleared.
    """
    now = now or datetime.utcnow()

    if lead.routing_override:
        decision = _override_decision(lead, config)
        lead.route = decision.route
        lead.priority = decision.priority
        lead.sla_hours = decision.sla_hours
        await session.flush()
        return decision

    previous = lead.route
    decision = determine_route(effective_grade(lead), lead.cash_flow, lead, config)
    _persist(lead, decision, now)
    await session.flush()

    if not skip_actions:
        await _routing_actions(session, lead, decision, previous, config, now, user_id)
    return decision


async def override_routing(
    session: AsyncSession,
    lead_id: int,
    *,
    route: str,
    priority: str,
    reason: str | None,
    user_id: str | None,
    config: PipelineConfig,
    now: datetime | None = None,
) -> RouteDecision:
    try:
        new_route = Route(route)
    except ValueError:
        raise ValidationError(f"Invalid route: {route!r}. Use one of {[r.value for r in Route]}")
    try:
        new_priority = Priority(priority)
    except ValueError:
        raise ValidationError(f"Invalid priority: {priority!r}. Use one of {[p.value for p in Priority]}")
    if not reason or not reason.strip():
        raise ValidationError("reason is required for a routing override")

    now = now or datetime.utcnow()
    lead = await get_lead(session, lead_id)
    previous = lead.route

    lead.routing_override = {
        "route": new_route.value,
        "priority": new_priority.value,
        "reason": reason.strip(),
        "overridden_by": user_id,
        "overridden_at": now.isoformat(),
        "previous_route": previous.value if previous else None,
        "previous_priority": lead.priority.value if lead.priority else None,
    }
    decision = _override_decision(lead, config)
    _persist(lead, decision, now)
    await session.flush()

    await _routing_actions(session, lead, decision, previous, config, now, user_id)
    return decision


async def clear_routing_override(
    session: AsyncSession,
    lead_id: int,
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> RouteDecision:
    lead = await get_lead(session, lead_id)
    lead.routing_override = None
    await session.flush()
    return await route_lead(session, lead, config, now=now)
