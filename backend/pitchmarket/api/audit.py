"""
Pitch Market - Audit API
========================

Read access to the append-only audit trail.
"""

from typing import Optional

from fastapi import APIRouter, Query

from pitchmarket.api.deps import DbSession, SuperAdminUser
from pitchmarket.core.audit import list_audit
from pitchmarket.core.schemas import AuditLogListResponse, AuditLogResponse

router = APIRouter(prefix="/audit", tags=["Audit"])


@router.get(
    "",
    response_model=AuditLogListResponse,
    summary="List audit entries, newest first",
)
async def get_audit_trail(
    current_user: SuperAdminUser,
    db: DbSession,
    event_type: Optional[str] = Query(None, max_length=100),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
) -> AuditLogListResponse:
    """Audit entries newest first, optionally filtered by event type."""
    entries, total = await list_audit(db, event_type=event_type, limit=limit, offset=offset)
    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(e) for e in entries],
        total=total,
        limit=limit,
        offset=offset,
    )
