"""
Cluster Roster - Clusters, team registration and the bulk shuffle.
"""

import random
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core import audit
from pitchmarket.core.config import settings
from pitchmarket.core.engine.lookups import get_cluster_or_404, list_cluster_teams
from pitchmarket.core.errors import (
    REASON_CLUSTER_FULL,
    REASON_EMPTY_ROSTER,
    ConflictError,
    RejectedError,
)
from pitchmarket.core.models import (
    Cluster,
    ClusterStage,
    PitchSchedule,
    PitchStatus,
    Team,
)

logger = structlog.get_logger()


@dataclass
class ClusterRoster:
    cluster: Cluster
    teams: list[Team] = field(default_factory=list)


@dataclass
class RosterOverview:
    clusters: list[ClusterRoster] = field(default_factory=list)
    unassigned: list[Team] = field(default_factory=list)

    @property
    def stats(self) -> dict[str, int]:
        assigned = sum(len(c.teams) for c in self.clusters)
        return {
            "total_clusters": len(self.clusters),
            "total_teams": assigned + len(self.unassigned),
            "assigned_teams": assigned,
            "unassigned_teams": len(self.unassigned),
        }


@dataclass
class ShuffleResult:
    total_teams: int
    assignments: list[dict] = field(default_factory=list)
    cluster_stats: list[dict] = field(default_factory=list)

    @property
    def assigned_teams(self) -> int:
        return len(self.assignments)

    @property
    def unassigned_teams(self) -> int:
        return self.total_teams - len(self.assignments)


class RosterService:
    """Cluster and team setup before the event starts."""

    def __init__(self, db: AsyncSession, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.Random()

    async def create_cluster(
        self,
        name: str,
        location: Optional[str] = None,
        max_teams: Optional[int] = None,
        pitch_duration_seconds: Optional[int] = None,
        actor_id: Optional[UUID] = None,
    ) -> Cluster:
        cluster = Cluster(
            name=name,
            location=location,
            stage=ClusterStage.ONBOARDING,
            bidding_open=False,
            max_teams=max_teams or settings.DEFAULT_MAX_TEAMS,
            pitch_duration_seconds=pitch_duration_seconds or settings.DEFAULT_PITCH_DURATION_SECONDS,
            is_complete=False,
        )
        self.db.add(cluster)
        await self.db.flush()

        audit.append_audit(
            self.db,
            audit.CLUSTER_CREATED,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={"cluster_name": name},
        )
        await self.db.commit()

        logger.info("cluster_created", cluster_id=str(cluster.id), name=name)
        return cluster

    async def register_team(
        self,
        name: str,
        domain: Optional[str] = None,
        cluster_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
    ) -> Team:
        """
        Register a team with the fixed starting balance.

        Teams can only join a cluster that is still onboarding and has room.
        """
        if cluster_id is not None:
            cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
            if cluster.stage != ClusterStage.ONBOARDING:
                raise ConflictError("Teams can only join a cluster during onboarding")
            count = await self.db.execute(
                select(func.count()).select_from(Team).where(Team.cluster_id == cluster.id)
            )
            if (count.scalar() or 0) >= cluster.max_teams:
                raise RejectedError("Cluster is full", reason=REASON_CLUSTER_FULL)

        starting_balance = Decimal(settings.TEAM_STARTING_BALANCE)
        team = Team(
            name=name,
            domain=domain,
            cluster_id=cluster_id,
            starting_balance=starting_balance,
            balance=starting_balance,
            total_invested=Decimal("0"),
            total_received=Decimal("0"),
            is_finalized=False,
            is_qualified=False,
        )
        self.db.add(team)
        await self.db.flush()

        audit.append_audit(
            self.db,
            audit.TEAM_REGISTERED,
            actor_id=actor_id,
            target_id=team.id,
            metadata={"team_name": name, "cluster_id": cluster_id},
        )
        await self.db.commit()

        logger.info(
            "team_registered",
            team_id=str(team.id),
            cluster_id=str(cluster_id) if cluster_id else None,
        )
        return team

    async def list_clusters(self) -> RosterOverview:
        result = await self.db.execute(select(Cluster).order_by(Cluster.name))
        clusters = list(result.scalars().all())

        overview = RosterOverview()
        for cluster in clusters:
            overview.clusters.append(
                ClusterRoster(cluster=cluster, teams=await list_cluster_teams(self.db, cluster.id))
            )

        result = await self.db.execute(
            select(Team).where(Team.cluster_id.is_(None)).order_by(Team.name)
        )
        overview.unassigned = list(result.scalars().all())
        return overview

    async def _shufflable_clusters(self) -> list[Cluster]:
        """Onboarding clusters whose schedule has not started."""
        result = await self.db.execute(
            select(Cluster)
            .where(Cluster.stage == ClusterStage.ONBOARDING)
            .order_by(Cluster.name)
            .execution_options(populate_existing=True)
        )
        clusters = []
        for cluster in result.scalars().all():
            started = await self.db.execute(
                select(func.count())
                .select_from(PitchSchedule)
                .where(
                    PitchSchedule.cluster_id == cluster.id,
                    PitchSchedule.status != PitchStatus.SCHEDULED,
                )
            )
            if not started.scalar():
                clusters.append(cluster)
        return clusters

    async def shuffle_teams(
        self,
        clear_previous: bool = True,
        teams_per_cluster: Optional[int] = None,
        actor_id: Optional[UUID] = None,
    ) -> ShuffleResult:
        """
        Randomly distribute teams over clusters, round-robin.

        Only clusters still onboarding take part. With `clear_previous` their
        current teams are released and reshuffled with the unassigned ones;
        otherwise only unassigned teams are placed. Existing schedules of
        participating clusters are dropped.
        """
        teams_per_cluster = teams_per_cluster or settings.DEFAULT_MAX_TEAMS
        clusters = await self._shufflable_clusters()
        if not clusters:
            raise RejectedError(
                "No onboarding clusters found. Please create clusters first.",
                reason=REASON_EMPTY_ROSTER,
            )
        cluster_ids = [c.id for c in clusters]

        pool_filter = Team.cluster_id.is_(None)
        if clear_previous:
            pool_filter = pool_filter | Team.cluster_id.in_(cluster_ids)
        result = await self.db.execute(
            select(Team).where(pool_filter).order_by(Team.name).execution_options(populate_existing=True)
        )
        teams = list(result.scalars().all())
        if not teams:
            raise RejectedError("No teams found to shuffle", reason=REASON_EMPTY_ROSTER)

        counts: dict[UUID, int] = {c.id: 0 for c in clusters}
        if not clear_previous:
            for cluster in clusters:
                current = await self.db.execute(
                    select(func.count()).select_from(Team).where(Team.cluster_id == cluster.id)
                )
                counts[cluster.id] = current.scalar() or 0

        await self.db.execute(
            delete(PitchSchedule)
            .where(PitchSchedule.cluster_id.in_(cluster_ids))
            .execution_options(synchronize_session=False)
        )
        # Fisher-Yates
        self.rng.shuffle(teams)

        shuffle = ShuffleResult(total_teams=len(teams))
        cluster_index = 0
        for team in teams:
            placed = False
            for _ in range(len(clusters)):
                cluster = clusters[cluster_index]
                cluster_index = (cluster_index + 1) % len(clusters)
                capacity = min(cluster.max_teams or teams_per_cluster, teams_per_cluster)
                if counts[cluster.id] < capacity:
                    team.cluster_id = cluster.id
                    counts[cluster.id] += 1
                    shuffle.assignments.append(
                        {
                            "team_id": team.id,
                            "team_name": team.name,
                            "cluster_id": cluster.id,
                            "cluster_name": cluster.name,
                        }
                    )
                    placed = True
                    break
            if not placed:
                team.cluster_id = None
                logger.warning("team_not_assigned", team_id=str(team.id), reason="all_clusters_full")

        shuffle.cluster_stats = [
            {
                "cluster_id": c.id,
                "name": c.name,
                "team_count": counts[c.id],
                "max_teams": min(c.max_teams or teams_per_cluster, teams_per_cluster),
            }
            for c in clusters
        ]

        audit.append_audit(
            self.db,
            audit.TEAM_SHUFFLE_COMPLETED,
            actor_id=actor_id,
            metadata={
                "total_teams": shuffle.total_teams,
                "assigned_teams": shuffle.assigned_teams,
                "clusters_used": len(clusters),
                "teams_per_cluster": teams_per_cluster,
                "clear_previous": clear_previous,
            },
        )
        await self.db.commit()

        logger.info(
            "team_shuffle_completed",
            total_teams=shuffle.total_teams,
            assigned_teams=shuffle.assigned_teams,
            clusters=len(clusters),
        )
        return shuffle
