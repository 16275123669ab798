"""
Pitch Market - Audit Trail
==========================

Append-only audit records for state-changing actions.

`append_audit` only adds the row to the current session so the record is
committed (or rolled back) together with the change it describes.
"""

from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.models import AuditLog


# Event types
PORTFOLIO_COMMITTED = "portfolio_committed"
PITCH_STARTED = "pitch_started"
PITCH_ENDED = "pitch_ended"
PITCH_SKIPPED = "pitch_skipped"
PITCH_PAUSED = "pitch_paused"
PITCH_RESUMED = "pitch_resumed"
SCHEDULE_CREATED = "schedule_created"
SCHEDULE_REORDERED = "schedule_reordered"
STAGE_ADVANCED = "stage_advanced"
STAGE_RESET = "stage_reset"
BIDDING_OPENED = "bidding_opened"
BIDDING_CLOSED = "bidding_closed"
CLUSTER_CREATED = "cluster_created"
TEAM_REGISTERED = "team_registered"
TEAM_SHUFFLE_COMPLETED = "team_shuffle_completed"
RESULTS_PUBLISHED = "results_published"


def _jsonable(value: Any) -> Any:
    if isinstance(value, (UUID, Decimal)):
        return str(value)
    if isinstance(value, dict):
        return {str(k): _jsonable(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_jsonable(v) for v in value]
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return value


def append_audit(
    db: AsyncSession,
    event_type: str,
    actor_id: Optional[UUID] = None,
    target_id: Optional[UUID] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> AuditLog:
    """Stage an audit row in the caller's transaction."""
    entry = AuditLog(
        event_type=event_type,
        actor_id=actor_id,
        target_id=target_id,
        event_metadata=_jsonable(metadata or {}),
    )
    db.add(entry)
    return entry


async def list_audit(
    db: AsyncSession,
    event_type: Optional[str] = None,
    limit: int = 100,
    offset: int = 0,
) -> tuple[list[AuditLog], int]:
    """Newest-first page of audit entries and the total count."""
    query = select(AuditLog)
    if event_type:
        query = query.where(AuditLog.event_type == event_type)

    total_result = await db.execute(select(func.count()).select_from(query.subquery()))
    total = total_result.scalar() or 0

    result = await db.execute(
        query.order_by(AuditLog.created_at.desc()).offset(offset).limit(limit)
    )
    return list(result.scalars().all()), total
