"""
Pitch Market - Pitch Scheduler Tests
====================================

Schedule creation, ordering and the pitch lifecycle.
"""

from datetime import timedelta
from decimal import Decimal
from uuid import uuid4

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.engine import DraftLedger, PitchScheduler, RosterService
from pitchmarket.core.engine.lookups import utcnow
from pitchmarket.core.errors import ConflictError, NotFoundError, RejectedError
from pitchmarket.core.models import (
    Cluster,
    ClusterStage,
    InvestmentStatus,
    PitchSchedule,
    PitchStatus,
    Pitching,
    Team,
    as_utc,
)
from tests.conftest import run_pitch, slot_for


# ==========================================================================
# Schedule
# ==========================================================================

class TestEnsureSchedule:
    """Lazy schedule creation."""

    async def test_creates_one_slot_per_team(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Positions 1..N in registration order, spaced by the pitch duration."""
        slots = await PitchScheduler(db_session).ensure_schedule(cluster.id)

        assert [s.position for s in slots] == [1, 2, 3]
        assert [s.team_id for s in slots] == [t.id for t in teams]
        assert all(s.status == PitchStatus.SCHEDULED for s in slots)
        gap = as_utc(slots[1].scheduled_start) - as_utc(slots[0].scheduled_start)
        assert gap == timedelta(seconds=180)

    async def test_is_idempotent(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """A second call returns the same rows."""
        scheduler = PitchScheduler(db_session)
        first = await scheduler.ensure_schedule(cluster.id)
        second = await scheduler.ensure_schedule(cluster.id)

        assert [s.id for s in first] == [s.id for s in second]
        count = await db_session.execute(select(func.count()).select_from(PitchSchedule))
        assert count.scalar() == 3

    async def test_empty_cluster(self, db_session: AsyncSession, cluster: Cluster):
        """No teams, no schedule."""
        assert await PitchScheduler(db_session).ensure_schedule(cluster.id) == []

    async def test_unknown_cluster(self, db_session: AsyncSession):
        with pytest.raises(NotFoundError):
            await PitchScheduler(db_session).ensure_schedule(uuid4())


class TestAssignOrder:
    """Explicit pitch order."""

    async def test_rewrites_order(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        order = [teams[2].id, teams[0].id, teams[1].id]

        slots = await scheduler.assign_order(cluster.id, order)

        assert [s.team_id for s in slots] == order
        assert [s.position for s in slots] == [1, 2, 3]

    async def test_requires_permutation(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Missing or repeated teams are rejected."""
        scheduler = PitchScheduler(db_session)

        with pytest.raises(RejectedError):
            await scheduler.assign_order(cluster.id, [teams[0].id, teams[1].id])
        with pytest.raises(RejectedError):
            await scheduler.assign_order(cluster.id, [teams[0].id, teams[0].id, teams[1].id])

    async def test_after_a_pitch_started_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        await run_pitch(db_session, cluster.id, teams[0].id, end=False)

        with pytest.raises(ConflictError):
            await PitchScheduler(db_session).assign_order(
                cluster.id, [teams[1].id, teams[0].id, teams[2].id]
            )


# ==========================================================================
# Lifecycle
# ==========================================================================

class TestStartPitch:
    """SCHEDULED -> IN_PROGRESS."""

    async def test_start_sets_pointer(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        slot = await run_pitch(db_session, cluster.id, teams[0].id, end=False)

        assert slot.status == PitchStatus.IN_PROGRESS
        assert slot.actual_start is not None
        await db_session.refresh(cluster)
        assert cluster.stage == ClusterStage.PITCHING
        assert cluster.phase == Pitching(team_id=teams[0].id, schedule_id=slot.id)

    async def test_second_live_pitch_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """At most one pitch in progress per cluster."""
        await run_pitch(db_session, cluster.id, teams[0].id, end=False)
        other = await slot_for(db_session, teams[1].id)

        with pytest.raises(ConflictError):
            await PitchScheduler(db_session).start_pitch(other.id, teams[1].id, cluster.id)

        live = await db_session.execute(
            select(func.count())
            .select_from(PitchSchedule)
            .where(PitchSchedule.status == PitchStatus.IN_PROGRESS)
        )
        assert live.scalar() == 1

    async def test_stale_read_is_stopped_by_unique_index(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
        monkeypatch: pytest.MonkeyPatch,
    ):
        """A start that misses the live slot still fails on commit."""
        cluster_id = cluster.id
        first = await run_pitch(db_session, cluster_id, teams[0].id, end=False)
        first_id = first.id
        other = await slot_for(db_session, teams[1].id)
        other_id = other.id

        # Cluster pointer lost while the first slot stays in progress
        stale = await db_session.get(Cluster, cluster_id, populate_existing=True)
        stale.apply_phase(Pitching())
        await db_session.commit()

        async def no_active_pitch(self, cluster_id):
            return None

        monkeypatch.setattr(PitchScheduler, "get_active_pitch", no_active_pitch)

        with pytest.raises(ConflictError) as exc_info:
            await PitchScheduler(db_session).start_pitch(other_id, teams[1].id, cluster_id)

        assert "already in progress" in exc_info.value.detail
        other = await db_session.get(PitchSchedule, other_id, populate_existing=True)
        first = await db_session.get(PitchSchedule, first_id, populate_existing=True)
        assert other.status == PitchStatus.SCHEDULED
        assert first.status == PitchStatus.IN_PROGRESS

    async def test_wrong_team_is_rejected(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[0].id)

        with pytest.raises(RejectedError):
            await scheduler.start_pitch(slot.id, teams[1].id, cluster.id)

    async def test_completed_slot_cannot_restart(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        slot = await run_pitch(db_session, cluster.id, teams[0].id)

        with pytest.raises(ConflictError):
            await PitchScheduler(db_session).start_pitch(slot.id, teams[0].id, cluster.id)

    async def test_slot_of_other_cluster_is_rejected(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        other = await RosterService(db_session).create_cluster("Cluster B")
        await PitchScheduler(db_session).ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[0].id)

        with pytest.raises(RejectedError):
            await PitchScheduler(db_session).start_pitch(slot.id, teams[0].id, other.id)


class TestEndPitch:
    """IN_PROGRESS -> COMPLETED and the draft lock."""

    async def test_end_locks_drafts_on_team(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Every draft placed on the pitching team freezes."""
        alpha, bravo, charlie = teams
        slot = await run_pitch(db_session, cluster.id, bravo.id, end=False)
        ledger = DraftLedger(db_session)
        on_bravo = await ledger.save_draft(alpha.id, bravo.id, Decimal("30"), cluster.id)
        charlie_on_bravo = await ledger.save_draft(charlie.id, bravo.id, Decimal("10"), cluster.id)

        ended = await PitchScheduler(db_session).end_pitch(slot.id, cluster.id, team_id=bravo.id)

        assert ended.status == PitchStatus.COMPLETED
        assert ended.is_completed is True
        assert ended.actual_end is not None
        for row in (on_bravo, charlie_on_bravo):
            await db_session.refresh(row)
            assert row.status == InvestmentStatus.DRAFT_LOCKED
            assert row.draft_locked is True
            assert row.is_locked is False

        await db_session.refresh(cluster)
        assert cluster.phase == Pitching()

    async def test_end_of_scheduled_slot_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[0].id)

        with pytest.raises(ConflictError):
            await scheduler.end_pitch(slot.id, cluster.id)

    async def test_next_pitch_can_start_after_end(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        await run_pitch(db_session, cluster.id, teams[0].id)
        slot = await run_pitch(db_session, cluster.id, teams[1].id, end=False)

        assert slot.status == PitchStatus.IN_PROGRESS


class TestSkipPitch:
    """Absent or skipped teams."""

    async def test_skip_live_pitch_keeps_drafts(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Skipping clears the pointer without locking drafts."""
        alpha, bravo, _ = teams
        slot = await run_pitch(db_session, cluster.id, bravo.id, end=False)
        draft = await DraftLedger(db_session).save_draft(alpha.id, bravo.id, Decimal("20"), cluster.id)

        skipped = await PitchScheduler(db_session).skip_pitch(slot.id, cluster.id)

        assert skipped.status == PitchStatus.CANCELLED
        assert skipped.actual_end is not None
        await db_session.refresh(draft)
        assert draft.status == InvestmentStatus.DRAFT
        await db_session.refresh(cluster)
        assert cluster.current_pitching_team_id is None

    async def test_skip_scheduled_slot(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[2].id)

        skipped = await scheduler.skip_pitch(slot.id, cluster.id)

        assert skipped.status == PitchStatus.CANCELLED

    async def test_skip_terminal_slot_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        slot = await run_pitch(db_session, cluster.id, teams[0].id)

        with pytest.raises(ConflictError):
            await PitchScheduler(db_session).skip_pitch(slot.id, cluster.id)


class TestPauseResume:
    """Clock bookkeeping without status changes."""

    async def test_resume_shifts_start(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Paused time does not count as elapsed."""
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[0].id)
        t0 = utcnow()

        await scheduler.start_pitch(slot.id, teams[0].id, cluster.id, now=t0)
        paused = await scheduler.pause_pitch(slot.id, cluster.id, now=t0 + timedelta(seconds=30))

        assert paused.status == PitchStatus.IN_PROGRESS
        assert paused.is_paused is True
        assert paused.elapsed_seconds(t0 + timedelta(seconds=80)) == 30

        resumed = await scheduler.resume_pitch(slot.id, cluster.id, now=t0 + timedelta(seconds=90))

        assert resumed.is_paused is False
        assert as_utc(resumed.actual_start) == t0 + timedelta(seconds=60)
        assert resumed.elapsed_seconds(t0 + timedelta(seconds=100)) == 40
        assert resumed.remaining_seconds(t0 + timedelta(seconds=100)) == 140

    async def test_pause_twice_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        slot = await run_pitch(db_session, cluster.id, teams[0].id, end=False)
        scheduler = PitchScheduler(db_session)
        await scheduler.pause_pitch(slot.id, cluster.id)

        with pytest.raises(ConflictError):
            await scheduler.pause_pitch(slot.id, cluster.id)

    async def test_resume_without_pause_is_conflict(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        slot = await run_pitch(db_session, cluster.id, teams[0].id, end=False)

        with pytest.raises(ConflictError):
            await PitchScheduler(db_session).resume_pitch(slot.id, cluster.id)

    async def test_end_while_paused_stops_clock_at_pause(
        self,
        db_session: AsyncSession,
        cluster: Cluster,
        teams: list[Team],
    ):
        scheduler = PitchScheduler(db_session)
        await scheduler.ensure_schedule(cluster.id)
        slot = await slot_for(db_session, teams[0].id)
        t0 = utcnow()
        await scheduler.start_pitch(slot.id, teams[0].id, cluster.id, now=t0)
        await scheduler.pause_pitch(slot.id, cluster.id, now=t0 + timedelta(seconds=50))

        ended = await scheduler.end_pitch(slot.id, cluster.id, now=t0 + timedelta(seconds=200))

        assert ended.paused_at is None
        assert ended.elapsed_seconds(t0 + timedelta(seconds=300)) == 50
