# dealpipe/service_layer/intake.py
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from ..config import PipelineConfig
from ..domain.errors import StateConflictError
from ..models import Lead
from .routing import get_lead
from .scoring import recalculate_lead_score

INTAKE_FIELDS = (
    "source",
    "property_address",
    "city",
    "county",
    "state",
    "zip_code",
    "market_key",
    "property_type",
    "beds",
    "baths",
    "sqft",
    "year_built",
    "condition_tier",
    "asking_price",
    "arv",
    "estimated_rehab_cost",
    "estimated_rent",
    "noi",
    "annual_taxes",
    "annual_insurance",
    "description",
    "red_flags",
)


async def create_lead(
    session: AsyncSession,
    data: dict[str, Any],
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> Lead:
    now = now or datetime.utcnow()
    lead = Lead(
        **{k: data[k] for k in INTAKE_FIELDS if data.get(k) is not None},
        created_at=now,
        updated_at=now,
    )
    session.add(lead)
    await session.flush()
    return await recalculate_lead_score(session, lead.id, config, now=now)


async def update_lead_intake(
    session: AsyncSession,
    lead_id: int,
    changes: dict[str, Any],
    config: PipelineConfig,
    *,
    now: datetime | None = None,
) -> Lead:
    """
    Dialer-side edit of intake fields. Once a lead is handed to a closer
    its intake is locked and edits are refused.
    """
    now = now or datetime.utcnow()
    lead = await get_lead(session, lead_id)
    if lead.intake_locked:
        raise StateConflictError(
            f"Lead {lead.id} intake is locked (handoff {lead.handoff_status.value}); edits are not allowed"
        )

    for k in INTAKE_FIELDS:
        if k in changes:
            setattr(lead, k, changes[k])
    lead.updated_at = now
    await session.flush()
    return await recalculate_lead_score(session, lead.id, config, now=now)
