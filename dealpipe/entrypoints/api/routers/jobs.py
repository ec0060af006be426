# dealpipe/entrypoints/api/routers/jobs.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import require_api_key
from ....db import get_session
from ....integrations.services.outbox import dispatch_pending_events
from ....schemas import DispatchResult
from ....service_layer.jobruns import tracked_job

router = APIRouter(tags=["jobs"])


@router.post("/jobs/dispatch", response_model=DispatchResult, dependencies=[Depends(require_api_key)])
async def dispatch_outbox(
    batch_size: int = Query(50, ge=1, le=500),
    session: AsyncSession = Depends(get_session),
) -> DispatchResult:
    async with tracked_job(session, "dispatch_api", {"batch_size": batch_size}) as job:
        job.summary = await dispatch_pending_events(session=session, batch_size=batch_size)
    return DispatchResult(**job.summary)
