# dealpipe/jobs/scheduler.py
from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from sqlalchemy import func, or_, select

from ..config import settings
from ..db import async_session
from ..integrations.services.outbox import dispatch_pending_events
from ..models import Integration, OutboxEvent, OutboxStatus
from ..service_layer.feedback import recalculate_all_feedback
from ..service_layer.jobruns import tracked_job

log = logging.getLogger(__name__)


async def run_feedback_sweep() -> dict[str, Any]:
    async with async_session() as session:
        try:
            async with tracked_job(session, "feedback_sweep") as job:
                job.summary = await recalculate_all_feedback(session)
        except Exception as e:
            log.exception("feedback sweep failed")
            return {"error": str(e)}
    return job.summary


async def _has_dispatch_work() -> bool:
    async with async_session() as session:
        sinks = (
            await session.execute(
                select(func.count()).select_from(Integration).where(Integration.enabled == True)  # noqa: E712
            )
        ).scalar_one()
        if not sinks:
            return False
        due = (
            await session.execute(
                select(func.count())
                .select_from(OutboxEvent)
                .where(OutboxEvent.status == OutboxStatus.pending)
                .where(or_(OutboxEvent.next_attempt_at.is_(None), OutboxEvent.next_attempt_at <= datetime.utcnow()))
            )
        ).scalar_one()
        return bool(due)


async def run_dispatch() -> None:
    # stays silent (no JobRun rows) until there is a sink and something due
    if not await _has_dispatch_work():
        return
    async with async_session() as session:
        try:
            async with tracked_job(session, "outbox_dispatch") as job:
                job.summary = await dispatch_pending_events(session=session, batch_size=settings.SCHED_DISPATCH_BATCH_SIZE)
        except Exception:
            log.exception("scheduled outbox dispatch failed")


def build_scheduler() -> AsyncIOScheduler:
    sched = AsyncIOScheduler()
    sched.add_job(
        lambda: asyncio.create_task(run_feedback_sweep()),
        "interval",
        minutes=settings.SCHED_FEEDBACK_INTERVAL_MINUTES,
        id="feedback_sweep",
    )
    sched.add_job(
        lambda: asyncio.create_task(run_dispatch()),
        "interval",
        minutes=settings.SCHED_DISPATCH_INTERVAL_MINUTES,
        id="outbox_dispatch",
    )
    return sched
