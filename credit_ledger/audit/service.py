"""Audit log service: append-only, never update."""
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from credit_ledger.audit.models import AuditLog


async def log_event(
    db: AsyncSession,
    actor: str,
    event_type: str,
    *,
    resource_type: str | None = None,
    resource_id: str | None = None,
    description: str | None = None,
    metadata: dict[str, Any] | None = None,
) -> AuditLog:
    """Stage an audit row in the caller's unit of work (flushed, not committed)."""
    entry = AuditLog(
        actor=actor,
        event_type=event_type,
        resource_type=resource_type,
        resource_id=resource_id,
        description=description,
        metadata_=metadata,
    )
    db.add(entry)
    await db.flush()
    return entry


async def list_events(
    db: AsyncSession,
    event_type: str | None = None,
    resource_id: str | None = None,
    limit: int = 50,
) -> list[AuditLog]:
    q = select(AuditLog)
    if event_type is not None:
        q = q.where(AuditLog.event_type == event_type)
    if resource_id is not None:
        q = q.where(AuditLog.resource_id == resource_id)
    result = await db.execute(q.order_by(AuditLog.created_at.desc()).limit(limit))
    return list(result.scalars().all())
