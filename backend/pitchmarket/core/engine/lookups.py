"""
Shared lookups for engine services.
"""

from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.errors import NotFoundError
from pitchmarket.core.models import Cluster, PitchSchedule, Team


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_money(value: Optional[object]) -> Decimal:
    """Normalise a DB aggregate (None / float / Decimal) to Decimal."""
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


async def get_cluster_or_404(
    db: AsyncSession,
    cluster_id: UUID,
    for_update: bool = False,
) -> Cluster:
    """Get cluster by ID or raise NotFound."""
    query = select(Cluster).where(Cluster.id == cluster_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query.execution_options(populate_existing=True))
    cluster = result.scalar_one_or_none()

    if not cluster:
        raise NotFoundError("Cluster not found")

    return cluster


async def get_team_or_404(
    db: AsyncSession,
    team_id: UUID,
    for_update: bool = False,
) -> Team:
    """Get team by ID or raise NotFound."""
    query = select(Team).where(Team.id == team_id)
    if for_update:
        query = query.with_for_update()
    result = await db.execute(query.execution_options(populate_existing=True))
    team = result.scalar_one_or_none()

    if not team:
        raise NotFoundError("Team not found")

    return team


async def get_schedule_or_404(db: AsyncSession, schedule_id: UUID) -> PitchSchedule:
    """Get pitch slot by ID or raise NotFound."""
    result = await db.execute(
        select(PitchSchedule)
        .where(PitchSchedule.id == schedule_id)
        .execution_options(populate_existing=True)
    )
    schedule = result.scalar_one_or_none()

    if not schedule:
        raise NotFoundError("Pitch schedule not found")

    return schedule


async def list_cluster_teams(db: AsyncSession, cluster_id: UUID) -> list[Team]:
    """Teams of a cluster in registration order."""
    result = await db.execute(
        select(Team)
        .where(Team.cluster_id == cluster_id)
        .order_by(Team.created_at, Team.name)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())
