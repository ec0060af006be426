# dealpipe/integrations/services/outbox.py
from __future__ import annotations

import asyncio
import json
import logging
import random
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from ...config import settings
from ...models import Integration, IntegrationType, OutboxEvent, OutboxStatus
from ..webhook import WebhookSink

log = logging.getLogger(__name__)


async def enqueue_event(session: AsyncSession, event_type: str, payload: dict[str, Any]) -> OutboxEvent:
    """Write the event in the caller's transaction; delivery happens later."""
    ev = OutboxEvent(
        event_type=event_type,
        payload_json=json.dumps(payload, default=str),
        status=OutboxStatus.pending,
        attempts=0,
    )
    session.add(ev)
    await session.flush()
    return ev


def compute_backoff_seconds(
    attempts: int,
    base: float | None = None,
    cap: float | None = None,
) -> float:
    base = settings.OUTBOX_BACKOFF_BASE_SECONDS if base is None else base
    cap = settings.OUTBOX_BACKOFF_CAP_SECONDS if cap is None else cap
    delay = min(base * (2 ** max(0, attempts - 1)), cap)
    return delay + random.uniform(0.0, min(base, delay))


async def _enabled_sinks(session: AsyncSession) -> dict[str, WebhookSink]:
    stmt = (
        select(Integration)
        .where(Integration.enabled == True)  # noqa: E712
        .where(Integration.type == IntegrationType.webhook)
        .order_by(Integration.id.asc())
    )
    sinks: dict[str, WebhookSink] = {}
    for integ in (await session.execute(stmt)).scalars().all():
        cfg = json.loads(integ.config_json or "{}")
        if cfg.get("url"):
            sinks[integ.name] = WebhookSink(url=cfg["url"], secret=cfg.get("secret"))
    return sinks


async def _due_events(session: AsyncSession, limit: int, max_attempts: int) -> list[OutboxEvent]:
    now = datetime.utcnow()
    stmt = (
        select(OutboxEvent)
        .where(OutboxEvent.status == OutboxStatus.pending)
        .where(OutboxEvent.attempts < max_attempts)
        .where(or_(OutboxEvent.next_attempt_at.is_(None), OutboxEvent.next_attempt_at <= now))
        .order_by(OutboxEvent.id.asc())
        .limit(limit)
    )
    return list((await session.execute(stmt)).scalars().all())


async def _fan_out(ev: OutboxEvent, sinks: dict[str, WebhookSink], pause: float) -> list[str]:
    body = {"event_id": ev.id, **json.loads(ev.payload_json)}
    errors: list[str] = []
    for name, sink in sinks.items():
        res = await sink.deliver(ev.event_type, body)
        if not res.ok:
            errors.append(f"{name}: {res.error}")
        if pause:
            await asyncio.sleep(pause)
    return errors


async def dispatch_pending_events(
    session: AsyncSession,
    batch_size: int | None = None,
    max_attempts: int | None = None,
    rps: float | None = None,
) -> dict[str, Any]:
    """
    Deliver due outbox events to every enabled webhook sink.

    An event is delivered only when all sinks accept it. Otherwise it is retried
    with backoff until it runs out of attempts and is marked failed. With no
    enabled sinks nothing is read and nothing is sent.
    """
    max_attempts = max_attempts or settings.OUTBOX_MAX_ATTEMPTS
    rps = rps or settings.OUTBOX_WEBHOOK_RPS
    pause = 1.0 / rps if rps > 0 else 0.0

    sinks = await _enabled_sinks(session)
    if not sinks:
        return {"delivered": 0, "failed": 0, "sinks": 0, "events": 0, "skipped_no_sinks": 1}

    events = await _due_events(session, batch_size or settings.SCHED_DISPATCH_BATCH_SIZE, max_attempts)
    delivered = failed = 0

    for ev in events:
        errors = await _fan_out(ev, sinks, pause)
        ev.attempts += 1
        ev.last_error = "; ".join(errors) or None

        if not errors:
            ev.status = OutboxStatus.delivered
            ev.delivered_at = datetime.utcnow()
            ev.next_attempt_at = None
            delivered += 1
        elif ev.attempts >= max_attempts:
            ev.status = OutboxStatus.failed
            ev.next_attempt_at = None
            failed += 1
            log.warning("outbox event %s (%s) failed for good: %s", ev.id, ev.event_type, ev.last_error)
        else:
            ev.next_attempt_at = datetime.utcnow() + timedelta(seconds=compute_backoff_seconds(ev.attempts))
        await session.flush()

    if events:
        log.info("outbox dispatch: events=%s delivered=%s failed=%s sinks=%s", len(events), delivered, failed, len(sinks))
    return {
        "delivered": delivered,
        "failed": failed,
        "sinks": len(sinks),
        "events": len(events),
        "skipped_no_sinks": 0,
    }
