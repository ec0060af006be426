# dealpipe/domain/routing.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from ..config import PipelineConfig, QuietHours
from ..models import Grade, Priority, Route
from .normalize import lead_text_matches

ROUTING_TAGS: dict[Grade, tuple[str, ...]] = {
    Grade.A: ("A_GRADE", "HOT", "BUYBOX_MATCH"),
    Grade.B: ("B_GRADE", "HIGH_POTENTIAL"),
    Grade.C: ("C_GRADE", "NURTURE"),
    Grade.D: ("LOW_SCORE",),
    Grade.Dead: ("LOW_SCORE",),
}

CASH_FLOW_REASON = "Failed cash flow rule"
DSCR_REASON = "DSCR below threshold"


@dataclass(frozen=True)
class RouteDecision:
    route: Route
    priority: Priority
    sla_hours: int | None
    reasons: list[str] = field(default_factory=list)
    routing_reason: str | None = None
    blocked_by_cash_flow: bool = False
    tags: tuple[str, ...] = ()


def _base_route(grade: Grade, config: PipelineConfig) -> tuple[Route, Priority, int | None]:
    if grade == Grade.A:
        return Route.immediate_closer, Priority.urgent, config.sla.a
    if grade == Grade.B:
        return Route.dialer_priority, Priority.high, config.sla.b
    if grade == Grade.C:
        return Route.nurture, Priority.normal, config.sla.c
    return Route.archive, Priority.low, None


def determine_route(
    grade: Grade,
    cash_flow: dict[str, Any] | None,
    lead: Any,
    config: PipelineConfig,
) -> RouteDecision:
    route, priority, sla = _base_route(grade, config)
    reasons = [f"Grade {grade.value} -> {route.value}"]
    routing_reason: str | None = None
    blocked = False

    if grade in (Grade.A, Grade.B):
        major = lead_text_matches(lead, config.major_exclusions)
        if major:
            reasons.append(f"Warning: Major exclusions detected ({', '.join(major)})")

    # a cash-flow failure always wins over the letter grade; scoring already
    # caps a failing A/B to C, which lands here too
    failed_cf = cash_flow is not None and not (cash_flow.get("cash_flow_pass") and cash_flow.get("dscr_pass"))
    if failed_cf and grade in (Grade.A, Grade.B, Grade.C):
        blocked = True
        routing_reason = CASH_FLOW_REASON if not cash_flow.get("cash_flow_pass") else DSCR_REASON
        if route != Route.nurture:
            route, priority, sla = Route.nurture, Priority.normal, config.sla.c
            reasons.append(f"Rerouted to nurture: {routing_reason}")
        else:
            reasons.append(f"Cash flow check failed: {routing_reason}")

    return RouteDecision(
        route=route,
        priority=priority,
        sla_hours=sla,
        reasons=reasons,
        routing_reason=routing_reason,
        blocked_by_cash_flow=blocked,
        tags=ROUTING_TAGS.get(grade, ()),
    )


def sla_for(route: Route, config: PipelineConfig) -> int | None:
    return {
        Route.immediate_closer: config.sla.a,
        Route.dialer_priority: config.sla.b,
        Route.nurture: config.sla.c,
    }.get(route)


def is_quiet_hours(now: datetime, quiet: QuietHours) -> bool:
    if not quiet.enabled or quiet.start == quiet.end:
        return False
    h = now.hour
    if quiet.start < quiet.end:
        return quiet.start <= h < quiet.end
    # window spans midnight, e.g. 22 -> 8
    return h >= quiet.start or h < quiet.end
