"""
Pitch Scheduler - Ordered pitch slots and their lifecycle.

SCHEDULED → IN_PROGRESS → {COMPLETED, CANCELLED}

Ending a pitch freezes every draft placed on the pitching team, which is
the coupling point between the schedule and the draft ledger.
"""

from datetime import datetime, timedelta
from typing import Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core import audit
from pitchmarket.core.engine.lookups import (
    get_cluster_or_404,
    get_schedule_or_404,
    list_cluster_teams,
    utcnow,
)
from pitchmarket.core.errors import REASON_WRONG_TEAM, ConflictError, RejectedError
from pitchmarket.core.models import (
    ClusterStage,
    Investment,
    InvestmentStatus,
    PitchSchedule,
    PitchStatus,
    Pitching,
    as_utc,
)

logger = structlog.get_logger()


class PitchScheduler:
    """
    Assigns teams to ordered slots and drives each slot through its lifecycle.

    The datastore guarantees a single IN_PROGRESS slot per cluster through a
    partial unique index; the checks here turn the common cases into clean
    Conflict errors before anything is written.
    """

    STARTABLE_STAGES = (ClusterStage.ONBOARDING, ClusterStage.PITCHING)

    def __init__(self, db: AsyncSession):
        self.db = db

    # ======================================================================
    # Schedule
    # ======================================================================

    async def list_schedule(self, cluster_id: UUID) -> list[PitchSchedule]:
        result = await self.db.execute(
            select(PitchSchedule)
            .where(PitchSchedule.cluster_id == cluster_id)
            .order_by(PitchSchedule.position)
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def ensure_schedule(self, cluster_id: UUID) -> list[PitchSchedule]:
        """
        Return the cluster's schedule, creating it on first request.

        One SCHEDULED slot per team, positions 1..N, starts spaced by the
        cluster's pitch duration. With existing rows this is a read.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id)

        schedule = await self.list_schedule(cluster.id)
        if schedule:
            return schedule

        teams = await list_cluster_teams(self.db, cluster.id)
        if not teams:
            return []

        base_time = utcnow()
        for index, team in enumerate(teams):
            self.db.add(
                PitchSchedule(
                    cluster_id=cluster.id,
                    team_id=team.id,
                    position=index + 1,
                    scheduled_start=base_time + timedelta(seconds=index * cluster.pitch_duration_seconds),
                    duration_seconds=cluster.pitch_duration_seconds,
                    status=PitchStatus.SCHEDULED,
                    is_completed=False,
                )
            )
        audit.append_audit(
            self.db,
            audit.SCHEDULE_CREATED,
            target_id=cluster.id,
            metadata={"slots": len(teams)},
        )

        try:
            await self.db.commit()
        except IntegrityError:
            # A concurrent request created the schedule first
            await self.db.rollback()
            return await self.list_schedule(cluster.id)

        logger.info("schedule_created", cluster_id=str(cluster.id), slots=len(teams))
        return await self.list_schedule(cluster.id)

    async def assign_order(
        self,
        cluster_id: UUID,
        team_ids: Sequence[UUID],
        actor_id: Optional[UUID] = None,
    ) -> list[PitchSchedule]:
        """
        Create or rewrite the schedule in an explicit team order.

        Only allowed while every existing slot is still SCHEDULED.
        `team_ids` must be a permutation of the cluster's teams.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        teams = await list_cluster_teams(self.db, cluster.id)

        if len(set(team_ids)) != len(team_ids) or set(team_ids) != {t.id for t in teams}:
            raise RejectedError(
                "Order must list every team of the cluster exactly once",
                reason=REASON_WRONG_TEAM,
            )

        existing = await self.list_schedule(cluster.id)
        if any(slot.status != PitchStatus.SCHEDULED for slot in existing):
            raise ConflictError("Schedule can only be reordered before any pitch starts")

        await self.db.execute(
            delete(PitchSchedule)
            .where(PitchSchedule.cluster_id == cluster.id)
            .execution_options(synchronize_session=False)
        )
        for slot in existing:
            self.db.expunge(slot)

        base_time = utcnow()
        for index, team_id in enumerate(team_ids):
            self.db.add(
                PitchSchedule(
                    cluster_id=cluster.id,
                    team_id=team_id,
                    position=index + 1,
                    scheduled_start=base_time + timedelta(seconds=index * cluster.pitch_duration_seconds),
                    duration_seconds=cluster.pitch_duration_seconds,
                    status=PitchStatus.SCHEDULED,
                    is_completed=False,
                )
            )
        audit.append_audit(
            self.db,
            audit.SCHEDULE_REORDERED,
            actor_id=actor_id,
            target_id=cluster.id,
            metadata={"order": list(team_ids)},
        )
        await self.db.commit()

        logger.info("schedule_reordered", cluster_id=str(cluster.id), slots=len(team_ids))
        return await self.list_schedule(cluster.id)

    async def get_active_pitch(self, cluster_id: UUID) -> Optional[PitchSchedule]:
        result = await self.db.execute(
            select(PitchSchedule)
            .where(
                PitchSchedule.cluster_id == cluster_id,
                PitchSchedule.status == PitchStatus.IN_PROGRESS,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    # ======================================================================
    # Lifecycle
    # ======================================================================

    async def _load_slot(self, schedule_id: UUID, cluster_id: UUID) -> PitchSchedule:
        slot = await get_schedule_or_404(self.db, schedule_id)
        if slot.cluster_id != cluster_id:
            raise RejectedError(
                "Pitch slot does not belong to this cluster",
                reason=REASON_WRONG_TEAM,
            )
        return slot

    async def start_pitch(
        self,
        schedule_id: UUID,
        team_id: UUID,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PitchSchedule:
        """
        Put a slot live and point the cluster at the pitching team.

        Raises:
            NotFoundError: Unknown cluster or slot
            ConflictError: Another pitch is live, slot not SCHEDULED,
                or the cluster is past pitching
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        slot = await self._load_slot(schedule_id, cluster.id)

        if slot.team_id != team_id:
            raise RejectedError("Pitch slot belongs to another team", reason=REASON_WRONG_TEAM)
        if cluster.stage not in self.STARTABLE_STAGES:
            raise ConflictError(f"Cannot start a pitch in stage {cluster.stage.value}")
        if slot.status != PitchStatus.SCHEDULED:
            raise ConflictError(f"Pitch slot is {slot.status.value}")

        active = await self.get_active_pitch(cluster.id)
        phase = cluster.phase
        if active is not None or (isinstance(phase, Pitching) and phase.is_live):
            raise ConflictError("Another pitch is already in progress")

        now = now or utcnow()
        slot.status = PitchStatus.IN_PROGRESS
        slot.actual_start = now
        slot.paused_at = None
        cluster.apply_phase(Pitching(team_id=slot.team_id, schedule_id=slot.id))
        audit.append_audit(
            self.db,
            audit.PITCH_STARTED,
            actor_id=actor_id,
            target_id=slot.team_id,
            metadata={"cluster_id": cluster.id, "schedule_id": slot.id},
        )

        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise ConflictError("Another pitch is already in progress") from e

        logger.info(
            "pitch_started",
            cluster_id=str(cluster.id),
            team_id=str(slot.team_id),
            position=slot.position,
        )
        return slot

    async def end_pitch(
        self,
        schedule_id: UUID,
        cluster_id: UUID,
        team_id: Optional[UUID] = None,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PitchSchedule:
        """
        Complete a live pitch and freeze the drafts placed on its team.

        Returns:
            The completed slot
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        slot = await self._load_slot(schedule_id, cluster.id)

        if team_id is not None and slot.team_id != team_id:
            raise RejectedError("Pitch slot belongs to another team", reason=REASON_WRONG_TEAM)
        if slot.status != PitchStatus.IN_PROGRESS:
            raise ConflictError(f"Pitch slot is {slot.status.value}, not in progress")

        now = now or utcnow()
        if slot.paused_at is not None:
            # Stop the clock where it was paused
            slot.actual_start = as_utc(slot.actual_start) + (now - as_utc(slot.paused_at))
            slot.paused_at = None
        slot.status = PitchStatus.COMPLETED
        slot.is_completed = True
        slot.actual_end = now

        locked = await self.db.execute(
            update(Investment)
            .where(
                Investment.target_team_id == slot.team_id,
                Investment.status == InvestmentStatus.DRAFT,
            )
            .values(status=InvestmentStatus.DRAFT_LOCKED)
            .execution_options(synchronize_session=False)
        )

        self._release_pointer(cluster, slot)
        audit.append_audit(
            self.db,
            audit.PITCH_ENDED,
            actor_id=actor_id,
            target_id=slot.team_id,
            metadata={
                "cluster_id": cluster.id,
                "schedule_id": slot.id,
                "drafts_locked": locked.rowcount,
            },
        )
        await self.db.commit()

        logger.info(
            "pitch_ended",
            cluster_id=str(cluster.id),
            team_id=str(slot.team_id),
            drafts_locked=locked.rowcount,
        )
        return slot

    async def skip_pitch(
        self,
        schedule_id: UUID,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PitchSchedule:
        """
        Cancel a slot (absent or skipped team).

        Drafts on the team are left as they are: a skipped team sends no
        investment signal.
        """
        cluster = await get_cluster_or_404(self.db, cluster_id, for_update=True)
        slot = await self._load_slot(schedule_id, cluster.id)

        if slot.is_terminal:
            raise ConflictError(f"Pitch slot is already {slot.status.value}")

        slot.status = PitchStatus.CANCELLED
        slot.actual_end = now or utcnow()
        slot.paused_at = None
        self._release_pointer(cluster, slot)
        audit.append_audit(
            self.db,
            audit.PITCH_SKIPPED,
            actor_id=actor_id,
            target_id=slot.team_id,
            metadata={"cluster_id": cluster.id, "schedule_id": slot.id},
        )
        await self.db.commit()

        logger.info("pitch_skipped", cluster_id=str(cluster.id), team_id=str(slot.team_id))
        return slot

    async def pause_pitch(
        self,
        schedule_id: UUID,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PitchSchedule:
        """Stop the pitch clock; status stays IN_PROGRESS."""
        slot = await self._load_slot(schedule_id, cluster_id)

        if slot.status != PitchStatus.IN_PROGRESS:
            raise ConflictError("Only a pitch in progress can be paused")
        if slot.paused_at is not None:
            raise ConflictError("Pitch is already paused")

        slot.paused_at = now or utcnow()
        audit.append_audit(
            self.db,
            audit.PITCH_PAUSED,
            actor_id=actor_id,
            target_id=slot.team_id,
            metadata={"schedule_id": slot.id},
        )
        await self.db.commit()

        logger.info("pitch_paused", schedule_id=str(slot.id))
        return slot

    async def resume_pitch(
        self,
        schedule_id: UUID,
        cluster_id: UUID,
        actor_id: Optional[UUID] = None,
        now: Optional[datetime] = None,
    ) -> PitchSchedule:
        """
        Restart the pitch clock.

        `actual_start` moves forward by the paused interval so that
        `now - actual_start` is again the time actually spent pitching.
        """
        slot = await self._load_slot(schedule_id, cluster_id)

        if slot.status != PitchStatus.IN_PROGRESS or slot.paused_at is None:
            raise ConflictError("Pitch is not paused")

        now = now or utcnow()
        paused_for = now - as_utc(slot.paused_at)
        slot.actual_start = as_utc(slot.actual_start) + paused_for
        slot.paused_at = None
        audit.append_audit(
            self.db,
            audit.PITCH_RESUMED,
            actor_id=actor_id,
            target_id=slot.team_id,
            metadata={"schedule_id": slot.id, "paused_seconds": paused_for.total_seconds()},
        )
        await self.db.commit()

        logger.info(
            "pitch_resumed",
            schedule_id=str(slot.id),
            paused_seconds=paused_for.total_seconds(),
        )
        return slot

    @staticmethod
    def _release_pointer(cluster, slot: PitchSchedule) -> None:
        phase = cluster.phase
        if isinstance(phase, Pitching) and phase.schedule_id == slot.id:
            cluster.apply_phase(Pitching())
