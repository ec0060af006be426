# dealpipe/service_layer/templates.py
from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.deal_package import find_prohibited_phrases
from ..domain.errors import NotFoundError, StateConflictError, ValidationError
from ..models import Channel, MessageTemplate, TemplateStatus


def _check_compliance(subject: str | None, content: str) -> None:
    hits = find_prohibited_phrases(f"{subject or ''}\n{content}")
    if hits:
        raise ValidationError(f"Template contains prohibited phrases: {', '.join(hits)}")


async def create_template(
    session: AsyncSession,
    *,
    key: str,
    content: str,
    channel: Channel = Channel.internal,
    subject: str | None = None,
    activate: bool = False,
) -> MessageTemplate:
    if not key or not key.strip():
        raise ValidationError("key is required")
    if not content or not content.strip():
        raise ValidationError("content is required")

    existing = (await session.execute(select(MessageTemplate).where(MessageTemplate.key == key))).scalars().first()
    if existing:
        raise StateConflictError(f"Template key already exists: {key}")

    if activate:
        _check_compliance(subject, content)

    tpl = MessageTemplate(
        key=key.strip(),
        channel=channel,
        subject=subject,
        content=content,
        status=TemplateStatus.active if activate else TemplateStatus.draft,
    )
    session.add(tpl)
    await session.flush()
    return tpl


async def activate_template(session: AsyncSession, template_id: int) -> MessageTemplate:
    tpl = (await session.execute(select(MessageTemplate).where(MessageTemplate.id == template_id))).scalars().first()
    if not tpl:
        raise NotFoundError(f"Template {template_id} not found")
    _check_compliance(tpl.subject, tpl.content)
    tpl.status = TemplateStatus.active
    await session.flush()
    return tpl


async def get_active_template(session: AsyncSession, key: str) -> MessageTemplate:
    tpl = (
        (
            await session.execute(
                select(MessageTemplate)
                .where(MessageTemplate.key == key)
                .where(MessageTemplate.status == TemplateStatus.active)
            )
        )
        .scalars()
        .first()
    )
    if not tpl:
        raise NotFoundError(f"Template not found or not active: {key}")
    return tpl
