"""
Market Projector - Sealed-bid valuations and published results.

Valuations stay sealed until every team of the cluster has committed, so
no team can see partial standings while others are still deciding.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core import audit
from pitchmarket.core.engine.lookups import (
    as_money,
    get_cluster_or_404,
    list_cluster_teams,
)
from pitchmarket.core.errors import ConflictError
from pitchmarket.core.models import (
    ClusterResult,
    ClusterStage,
    Investment,
    InvestmentStatus,
    Team,
)

logger = structlog.get_logger()


@dataclass
class TeamValuation:
    team_id: UUID
    team_name: str
    total: Decimal


@dataclass
class MarketValuations:
    """Per-team committed totals, or nothing while sealed."""

    cluster_id: UUID
    sealed: bool
    finalized_teams: int
    total_teams: int
    valuations: list[TeamValuation] = field(default_factory=list)

    @property
    def total_pool(self) -> Decimal:
        return sum((v.total for v in self.valuations), Decimal("0"))

    def as_mapping(self) -> dict[str, Decimal]:
        return {str(v.team_id): v.total for v in self.valuations}


class MarketProjector:
    """Read-side projection of committed investments."""

    def __init__(self, db: AsyncSession):
        self.db = db

    @staticmethod
    def is_unsealed(teams: list[Team]) -> bool:
        return bool(teams) and all(t.is_finalized for t in teams)

    async def get_valuations(self, cluster_id: UUID) -> MarketValuations:
        """
        Committed totals per team, highest first.

        Degrades to a sealed, empty result instead of erroring.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id)
        teams = await list_cluster_teams(self.db, cluster.id)
        finalized = sum(1 for t in teams if t.is_finalized)

        market = MarketValuations(
            cluster_id=cluster.id,
            sealed=not self.is_unsealed(teams),
            finalized_teams=finalized,
            total_teams=len(teams),
        )
        if market.sealed:
            return market

        result = await self.db.execute(
            select(Investment.target_team_id, func.sum(Investment.amount))
            .where(
                Investment.target_team_id.in_([t.id for t in teams]),
                Investment.status == InvestmentStatus.COMMITTED,
            )
            .group_by(Investment.target_team_id)
        )
        sums = {target_id: as_money(total) for target_id, total in result.all()}

        market.valuations = sorted(
            (
                TeamValuation(team_id=t.id, team_name=t.name, total=sums.get(t.id, Decimal("0")))
                for t in teams
            ),
            key=lambda v: (-v.total, v.team_name),
        )
        return market

    async def publish_results(
        self,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
    ) -> ClusterResult:
        """
        Store the final standings and mark the cluster complete.

        Raises:
            ConflictError: Not locked yet, market still sealed, or already
                published
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)

        if cluster.is_complete:
            raise ConflictError("Results have already been published")
        if cluster.stage != ClusterStage.LOCKED:
            raise ConflictError("Results can only be published once the cluster is locked")

        market = await self.get_valuations(cluster.id)
        if market.sealed:
            raise ConflictError(
                f"Market is still sealed ({market.finalized_teams}/{market.total_teams} teams committed)"
            )

        leader = market.valuations[0] if market.valuations else None
        winner_id = leader.team_id if leader is not None and leader.total > 0 else None

        result = ClusterResult(
            cluster_id=cluster.id,
            winner_team_id=winner_id,
            total_investment_pool=market.total_pool,
            participating_teams=market.total_teams,
            standings=[
                {
                    "rank": rank,
                    "team_id": str(v.team_id),
                    "team_name": v.team_name,
                    "total": str(v.total),
                }
                for rank, v in enumerate(market.valuations, start=1)
            ],
        )
        self.db.add(result)

        cluster.is_complete = True
        cluster.winner_team_id = winner_id
        if winner_id is not None:
            winner = await self.db.get(Team, winner_id)
            winner.is_qualified = True

        audit.append_audit(
            self.db,
            audit.RESULTS_PUBLISHED,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={
                "winner_team_id": winner_id,
                "total_investment_pool": market.total_pool,
                "participating_teams": market.total_teams,
            },
        )
        await self.db.commit()

        logger.info(
            "results_published",
            cluster_id=str(cluster.id),
            winner_team_id=str(winner_id) if winner_id else None,
            total_investment_pool=str(market.total_pool),
        )
        return result
