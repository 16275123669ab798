"""
Snapshot Builder - Read-only view of a cluster for dashboards and streams.

Never writes: a snapshot may observe concurrent writers mid-flight but
does not add to them.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.engine.lookups import (
    get_cluster_or_404,
    get_team_or_404,
    list_cluster_teams,
    utcnow,
)
from pitchmarket.core.engine.market import MarketProjector, MarketValuations
from pitchmarket.core.errors import REASON_WRONG_TEAM, RejectedError
from pitchmarket.core.models import Investment, PitchSchedule, PitchStatus, Team
from pitchmarket.core.schemas import (
    ActivePitch,
    ClusterSnapshot,
    InvestmentResponse,
    MarketResponse,
    TeamValuationResponse,
)


def market_response(market: MarketValuations) -> MarketResponse:
    """Redacted market view: figures only once unsealed."""
    if market.sealed:
        return MarketResponse(
            cluster_id=market.cluster_id,
            sealed=True,
            finalized_teams=market.finalized_teams,
            total_teams=market.total_teams,
        )
    return MarketResponse(
        cluster_id=market.cluster_id,
        sealed=False,
        finalized_teams=market.finalized_teams,
        total_teams=market.total_teams,
        total_pool=market.total_pool,
        valuations=[TeamValuationResponse.model_validate(v) for v in market.valuations],
    )


def active_pitch_view(
    slot: Optional[PitchSchedule],
    teams: list[Team],
    now: datetime,
) -> Optional[ActivePitch]:
    if slot is None:
        return None
    names = {t.id: t.name for t in teams}
    return ActivePitch(
        schedule_id=slot.id,
        team_id=slot.team_id,
        team_name=names.get(slot.team_id),
        position=slot.position,
        started_at=slot.actual_start,
        duration_seconds=slot.duration_seconds,
        elapsed_seconds=round(slot.elapsed_seconds(now), 1),
        remaining_seconds=round(slot.remaining_seconds(now), 1),
        is_paused=slot.is_paused,
    )


class SnapshotBuilder:
    """Assembles a ClusterSnapshot from the current datastore state."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def build(
        self,
        cluster_id: Optional[UUID] = None,
        investor_team_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> ClusterSnapshot:
        """
        Snapshot one cluster, addressed directly or through an investor team.

        With an investor team the snapshot also carries that team's own
        draft and lock status per target.

        Raises:
            NotFoundError: Unknown cluster or team
        """
        now = now or utcnow()

        investor: Optional[Team] = None
        if investor_team_id is not None:
            investor = await get_team_or_404(self.db, investor_team_id)
            if investor.cluster_id is None:
                raise RejectedError("Team is not part of a cluster", reason=REASON_WRONG_TEAM)
            if cluster_id is not None and cluster_id != investor.cluster_id:
                raise RejectedError("Team is not part of this cluster", reason=REASON_WRONG_TEAM)
            cluster_id = investor.cluster_id
        if cluster_id is None:
            raise ValueError("cluster_id or investor_team_id is required")

        cluster = await get_cluster_or_404(self.db, cluster_id)
        teams = await list_cluster_teams(self.db, cluster.id)

        result = await self.db.execute(
            select(PitchSchedule)
            .where(
                PitchSchedule.cluster_id == cluster.id,
                PitchSchedule.status == PitchStatus.IN_PROGRESS,
            )
            .execution_options(populate_existing=True)
        )
        active_slot = result.scalar_one_or_none()

        investments = None
        if investor is not None:
            result = await self.db.execute(
                select(Investment)
                .where(Investment.investor_team_id == investor.id)
                .order_by(Investment.created_at)
                .execution_options(populate_existing=True)
            )
            investments = [InvestmentResponse.model_validate(i) for i in result.scalars().all()]

        market = await MarketProjector(self.db).get_valuations(cluster.id)
        phase = cluster.phase

        return ClusterSnapshot(
            cluster_id=cluster.id,
            name=cluster.name,
            stage=phase.stage,
            is_pitching=active_slot is not None,
            current_pitching_team_id=cluster.current_pitching_team_id,
            active_pitch=active_pitch_view(active_slot, teams, now),
            bidding_open=cluster.bidding_open,
            bidding_deadline=cluster.bidding_deadline,
            is_complete=cluster.is_complete,
            teams_total=market.total_teams,
            teams_finalized=market.finalized_teams,
            all_finalized=not market.sealed,
            investor_team_id=investor.id if investor is not None else None,
            investments=investments,
            market=market_response(market),
            timestamp=now,
        )
