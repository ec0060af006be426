# dealpipe/service_layer/events.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..integrations.services.outbox import enqueue_event
from ..models import KpiEvent

log = logging.getLogger(__name__)


async def notify(
    session: AsyncSession,
    user_id: str | None,
    event_type: str,
    payload: dict[str, Any],
) -> bool:
    """
    Fire-and-forget notification: lands in the outbox for webhook fan-out.
    Failures are logged and swallowed; the caller's operation goes on.
    """
    try:
        await enqueue_event(session, f"notify.{event_type}", {"user_id": user_id, **payload})
        return True
    except Exception:
        log.exception("notify %s failed", event_type)
        return False


async def log_kpi_event(
    session: AsyncSession,
    event_type: str,
    *,
    lead_id: int | None = None,
    user_id: str | None = None,
    payload: dict[str, Any] | None = None,
    now: datetime | None = None,
) -> bool:
    try:
        session.add(
            KpiEvent(
                event_type=event_type,
                lead_id=lead_id,
                user_id=user_id,
                payload=payload or {},
                created_at=now or datetime.utcnow(),
            )
        )
        await session.flush()
        return True
    except Exception:
        log.exception("kpi event %s failed", event_type)
        return False
