"""
Stage Controller - Cluster phase state machine.

Owns a cluster's stage and the bidding switch:
ONBOARDING → PITCHING → BIDDING → LOCKED

Forward moves are one step at a time. An operator reset may jump anywhere
(except on a completed cluster) and is always audit-logged.
"""

from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core import audit
from pitchmarket.core.config import settings
from pitchmarket.core.engine.lookups import get_cluster_or_404, utcnow
from pitchmarket.core.errors import REASON_INVALID_DEADLINE, ConflictError, RejectedError
from pitchmarket.core.models import (
    Bidding,
    Cluster,
    ClusterPhase,
    ClusterStage,
    Locked,
    Onboarding,
    PitchSchedule,
    PitchStatus,
    Pitching,
    as_utc,
)

logger = structlog.get_logger()


class StageController:
    """
    Cluster stage state machine.

    Every write goes through `Cluster.apply_phase`, so the bidding switch
    and the active-pitch pointer can never disagree with the stage.
    """

    # Stage execution order
    STAGE_ORDER = [
        ClusterStage.ONBOARDING,
        ClusterStage.PITCHING,
        ClusterStage.BIDDING,
        ClusterStage.LOCKED,
    ]

    def __init__(self, db: AsyncSession):
        self.db = db

    @classmethod
    def is_forward_step(cls, current: ClusterStage, target: ClusterStage) -> bool:
        return cls.STAGE_ORDER.index(target) == cls.STAGE_ORDER.index(current) + 1

    @staticmethod
    def initial_phase(stage: ClusterStage) -> ClusterPhase:
        """Phase a cluster lands in when it enters `stage` fresh."""
        return {
            ClusterStage.ONBOARDING: Onboarding(),
            ClusterStage.PITCHING: Pitching(),
            ClusterStage.BIDDING: Bidding(open=False),
            ClusterStage.LOCKED: Locked(),
        }[stage]

    async def advance_stage(
        self,
        cluster_id: UUID,
        target_stage: ClusterStage,
        actor_id: Optional[UUID] = None,
        override: bool = False,
    ) -> Cluster:
        """
        Move a cluster to `target_stage`.

        Args:
            cluster_id: Cluster to move
            target_stage: Desired stage
            actor_id: Operator issuing the change
            override: Operator reset; skips the transition rules

        Returns:
            Updated Cluster

        Raises:
            NotFoundError: Unknown cluster
            ConflictError: Illegal transition (state untouched)
        """
        if override:
            return await self.reset(cluster_id, target_stage, actor_id)

        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        current = cluster.stage

        if not self.is_forward_step(current, target_stage):
            raise ConflictError(
                f"Illegal stage transition {current.value} -> {target_stage.value}"
            )

        phase = cluster.phase
        if isinstance(phase, Pitching) and phase.is_live:
            raise ConflictError("A pitch is still in progress")

        cluster.apply_phase(self.initial_phase(target_stage))
        audit.append_audit(
            self.db,
            audit.STAGE_ADVANCED,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={"from": current.value, "to": target_stage.value},
        )
        await self.db.commit()

        logger.info(
            "stage_advanced",
            cluster_id=str(cluster.id),
            from_stage=current.value,
            to_stage=target_stage.value,
        )
        return cluster

    async def reset(
        self,
        cluster_id: UUID,
        target_stage: ClusterStage,
        actor_id: Optional[UUID] = None,
    ) -> Cluster:
        """
        Operator override: put the cluster into `target_stage` unconditionally.

        A live pitch slot goes back to `scheduled` so it can be restarted.
        Completed clusters cannot be reset.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)

        if cluster.is_complete:
            raise ConflictError("Cluster is complete and can no longer be reset")

        previous = cluster.stage
        requeued = await self.db.execute(
            update(PitchSchedule)
            .where(
                PitchSchedule.cluster_id == cluster.id,
                PitchSchedule.status == PitchStatus.IN_PROGRESS,
            )
            .values(
                status=PitchStatus.SCHEDULED,
                actual_start=None,
                paused_at=None,
            )
            .execution_options(synchronize_session=False)
        )

        cluster.apply_phase(self.initial_phase(target_stage))
        audit.append_audit(
            self.db,
            audit.STAGE_RESET,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={
                "from": previous.value,
                "to": target_stage.value,
                "requeued_pitches": requeued.rowcount,
            },
        )
        await self.db.commit()

        logger.warning(
            "stage_reset",
            cluster_id=str(cluster.id),
            from_stage=previous.value,
            to_stage=target_stage.value,
            actor_id=str(actor_id) if actor_id else None,
        )
        return cluster

    async def open_bidding(
        self,
        cluster_id: UUID,
        deadline: Optional[datetime] = None,
        actor_id: Optional[UUID] = None,
    ) -> Cluster:
        """
        Open the market.

        Requires stage PITCHING (with no live pitch) or BIDDING. The deadline
        defaults to now + BIDDING_WINDOW_SECONDS. A deadline is informational:
        closing stays an explicit call.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        phase = cluster.phase

        if not isinstance(phase, (Pitching, Bidding)):
            raise ConflictError(f"Cannot open bidding from stage {cluster.stage.value}")
        if isinstance(phase, Pitching) and phase.is_live:
            raise ConflictError("Cannot open bidding while a pitch is in progress")

        now = utcnow()
        if deadline is None:
            deadline = now + timedelta(seconds=settings.BIDDING_WINDOW_SECONDS)
        elif as_utc(deadline) <= now:
            raise RejectedError("Bidding deadline must be in the future", reason=REASON_INVALID_DEADLINE)

        cluster.apply_phase(Bidding(open=True, deadline=as_utc(deadline)))
        audit.append_audit(
            self.db,
            audit.BIDDING_OPENED,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={"deadline": as_utc(deadline)},
        )
        await self.db.commit()

        logger.info("bidding_opened", cluster_id=str(cluster.id), deadline=deadline.isoformat())
        return cluster

    async def close_bidding(
        self,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
    ) -> Cluster:
        """Close the market and lock the cluster."""
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)

        if cluster.stage != ClusterStage.BIDDING:
            raise ConflictError(f"Cannot close bidding from stage {cluster.stage.value}")

        cluster.apply_phase(Locked())
        audit.append_audit(
            self.db,
            audit.BIDDING_CLOSED,
            actor_id=actor_id,
            target_id=cluster.id,
        )
        await self.db.commit()

        logger.info("bidding_closed", cluster_id=str(cluster.id))
        return cluster
