# dealpipe/integrations/services/sinks.py
from __future__ import annotations

import json
import logging

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ...domain.errors import NotFoundError, StateConflictError, ValidationError
from ...models import Integration, IntegrationType

log = logging.getLogger(__name__)


async def list_webhook_sinks(session: AsyncSession) -> list[Integration]:
    stmt = select(Integration).where(Integration.type == IntegrationType.webhook).order_by(Integration.id.asc())
    return list((await session.execute(stmt)).scalars().all())


async def register_webhook_sink(
    session: AsyncSession,
    *,
    name: str,
    url: str,
    secret: str | None = None,
    enabled: bool = True,
) -> Integration:
    """Does not commit."""
    if not name or not name.strip():
        raise ValidationError("name is required")
    if not url or not url.startswith(("http://", "https://")):
        raise ValidationError("url must be an http(s) URL")

    existing = (await session.execute(select(Integration).where(Integration.name == name))).scalars().first()
    if existing:
        raise StateConflictError(f"Integration {name!r} already exists; update it instead")

    integ = Integration(
        name=name.strip(),
        type=IntegrationType.webhook,
        enabled=enabled,
        config_json=json.dumps({"url": url, "secret": secret}),
    )
    session.add(integ)
    await session.flush()
    log.info("registered webhook sink %s enabled=%s", integ.name, enabled)
    return integ


async def update_webhook_sink(
    session: AsyncSession,
    integration_id: int,
    *,
    enabled: bool | None = None,
    url: str | None = None,
    secret: str | None = None,
) -> Integration:
    integ = (await session.execute(select(Integration).where(Integration.id == integration_id))).scalars().first()
    if not integ:
        raise NotFoundError(f"Integration {integration_id} not found")

    if enabled is not None:
        integ.enabled = bool(enabled)

    if url is not None or secret is not None:
        cfg = json.loads(integ.config_json or "{}")
        if url is not None:
            if not url.startswith(("http://", "https://")):
                raise ValidationError("url must be an http(s) URL")
            cfg["url"] = url
        if secret is not None:
            cfg["secret"] = secret
        integ.config_json = json.dumps(cfg)

    await session.flush()
    return integ
