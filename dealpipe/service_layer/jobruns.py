# dealpipe/service_layer/jobruns.py
from __future__ import annotations

import json
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from ..models import JobRun, JobRunStatus


async def start_job(session: AsyncSession, job_name: str, meta: dict[str, Any] | None = None) -> JobRun:
    jr = JobRun(job_name=job_name, status=JobRunStatus.running, meta_json=json.dumps(meta or {}))
    session.add(jr)
    await session.flush()
    return jr


async def finish_job_success(session: AsyncSession, jr: JobRun, summary: dict[str, Any]) -> None:
    jr.status, jr.error = JobRunStatus.success, None
    jr.finished_at = datetime.utcnow()
    jr.summary_json = json.dumps(summary, default=str)
    await session.flush()


async def finish_job_fail(session: AsyncSession, jr: JobRun, err: Exception) -> None:
    jr.status, jr.error = JobRunStatus.failed, f"{type(err).__name__}: {err}"
    jr.finished_at = datetime.utcnow()
    await session.flush()


@dataclass
class TrackedJob:
    run: JobRun
    summary: dict[str, Any] = field(default_factory=dict)


@asynccontextmanager
async def tracked_job(
    session: AsyncSession, job_name: str, meta: dict[str, Any] | None = None
) -> AsyncIterator[TrackedJob]:
    """
    Record a JobRun around the block and commit it either way.
    The block sets `job.summary`; exceptions are recorded and re-raised.
    """
    job = TrackedJob(run=await start_job(session, job_name, meta))
    try:
        yield job
    except Exception as e:
        await finish_job_fail(session, job.run, e)
        await session.commit()
        raise
    await finish_job_success(session, job.run, job.summary)
    await session.commit()
