"""
Pitch Market - Cluster API
==========================

Cluster roster, stage control, pitch schedule and market endpoints.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, status

from pitchmarket.api.deps import (
    OPERATOR_ROLES,
    CurrentUser,
    DbSession,
    OperatorUser,
    SuperAdminUser,
    ensure_cluster_access,
    has_role,
)
from pitchmarket.core.engine import (
    MarketProjector,
    PitchScheduler,
    RosterService,
    StageController,
)
from pitchmarket.core.live import SnapshotBuilder, market_response
from pitchmarket.core.schemas import (
    ClusterCreate,
    ClusterListResponse,
    ClusterResponse,
    ClusterResultResponse,
    ClusterSnapshot,
    ClusterWithTeams,
    EndPitchRequest,
    MarketResponse,
    OpenBiddingRequest,
    PitchScheduleResponse,
    ScheduleOrderRequest,
    ShuffleRequest,
    ShuffleResponse,
    StageChangeRequest,
    StartPitchRequest,
    TeamResponse,
)

router = APIRouter(prefix="/clusters", tags=["Clusters"])


# ==========================================================================
# Roster
# ==========================================================================

@router.get(
    "",
    response_model=ClusterListResponse,
    summary="List clusters with their teams",
)
async def list_clusters(
    current_user: OperatorUser,
    db: DbSession,
) -> ClusterListResponse:
    """Every cluster with its teams, plus teams not yet assigned."""
    overview = await RosterService(db).list_clusters()
    return ClusterListResponse(
        clusters=[
            ClusterWithTeams(
                **ClusterResponse.model_validate(entry.cluster).model_dump(),
                teams=[TeamResponse.model_validate(t) for t in entry.teams],
            )
            for entry in overview.clusters
        ],
        unassigned_teams=[TeamResponse.model_validate(t) for t in overview.unassigned],
        stats=overview.stats,
    )


@router.post(
    "",
    response_model=ClusterResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create a cluster",
)
async def create_cluster(
    data: ClusterCreate,
    current_user: SuperAdminUser,
    db: DbSession,
) -> ClusterResponse:
    """Create an empty cluster in the onboarding stage. Super admin only."""
    cluster = await RosterService(db).create_cluster(
        name=data.name,
        location=data.location,
        max_teams=data.max_teams,
        pitch_duration_seconds=data.pitch_duration_seconds,
        actor_id=current_user.id,
    )
    return ClusterResponse.model_validate(cluster)


@router.post(
    "/shuffle",
    response_model=ShuffleResponse,
    summary="Randomly assign teams to onboarding clusters",
)
async def shuffle_teams(
    data: ShuffleRequest,
    current_user: SuperAdminUser,
    db: DbSession,
) -> ShuffleResponse:
    """Randomly distribute teams over the onboarding clusters."""
    result = await RosterService(db).shuffle_teams(
        clear_previous=data.clear_previous,
        teams_per_cluster=data.teams_per_cluster,
        actor_id=current_user.id,
    )
    return ShuffleResponse(
        total_teams=result.total_teams,
        assigned_teams=result.assigned_teams,
        unassigned_teams=result.unassigned_teams,
        cluster_stats=result.cluster_stats,
        assignments=result.assignments,
    )


# ==========================================================================
# Read Path
# ==========================================================================

@router.get(
    "/{cluster_id}",
    response_model=ClusterSnapshot,
    summary="Cluster snapshot",
)
async def get_cluster_snapshot(
    cluster_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> ClusterSnapshot:
    """Current stage, live pitch, finalisation progress and market for one cluster."""
    return await SnapshotBuilder(db).build(cluster_id=cluster_id)


@router.get(
    "/{cluster_id}/market",
    response_model=MarketResponse,
    summary="Market valuations (sealed until every team committed)",
)
async def get_market(
    cluster_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> MarketResponse:
    """Valuations are withheld until every team in the cluster has committed."""
    market = await MarketProjector(db).get_valuations(cluster_id)
    return market_response(market)


# ==========================================================================
# Stage Control
# ==========================================================================

@router.post(
    "/{cluster_id}/stage",
    response_model=ClusterResponse,
    summary="Advance the cluster stage (override resets)",
)
async def change_stage(
    cluster_id: UUID,
    data: StageChangeRequest,
    current_user: OperatorUser,
    db: DbSession,
) -> ClusterResponse:
    """Move the cluster to the requested stage.

    With `override` the transition rules are skipped (operator reset).
    """
    ensure_cluster_access(current_user, cluster_id)
    cluster = await StageController(db).advance_stage(
        cluster_id,
        data.target_stage,
        actor_id=current_user.id,
        override=data.override,
    )
    return ClusterResponse.model_validate(cluster)


@router.post(
    "/{cluster_id}/bidding/open",
    response_model=ClusterResponse,
    summary="Open bidding",
)
async def open_bidding(
    cluster_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
    data: Optional[OpenBiddingRequest] = None,
) -> ClusterResponse:
    """Open the market, optionally with a deadline."""
    ensure_cluster_access(current_user, cluster_id)
    cluster = await StageController(db).open_bidding(
        cluster_id,
        deadline=data.deadline if data else None,
        actor_id=current_user.id,
    )
    return ClusterResponse.model_validate(cluster)


@router.post(
    "/{cluster_id}/bidding/close",
    response_model=ClusterResponse,
    summary="Close bidding and lock the cluster",
)
async def close_bidding(
    cluster_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
) -> ClusterResponse:
    """Close the market and lock the cluster against further commits."""
    ensure_cluster_access(current_user, cluster_id)
    cluster = await StageController(db).close_bidding(cluster_id, actor_id=current_user.id)
    return ClusterResponse.model_validate(cluster)


@router.post(
    "/{cluster_id}/results",
    response_model=ClusterResultResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Publish final results",
)
async def publish_results(
    cluster_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
) -> ClusterResultResponse:
    """Store the final standings and mark the cluster complete."""
    ensure_cluster_access(current_user, cluster_id)
    result = await MarketProjector(db).publish_results(cluster_id, actor_id=current_user.id)
    return ClusterResultResponse.model_validate(result)


# ==========================================================================
# Pitch Schedule
# ==========================================================================

@router.get(
    "/{cluster_id}/schedule",
    response_model=list[PitchScheduleResponse],
    summary="Pitch schedule (created on first operator request)",
)
async def get_schedule(
    cluster_id: UUID,
    current_user: CurrentUser,
    db: DbSession,
) -> list[PitchScheduleResponse]:
    """Pitch slots in order.

    Operators get the schedule created on first access; other callers only see
    slots that already exist.
    """
    scheduler = PitchScheduler(db)
    if has_role(current_user, *OPERATOR_ROLES):
        ensure_cluster_access(current_user, cluster_id)
        slots = await scheduler.ensure_schedule(cluster_id)
    else:
        slots = await scheduler.list_schedule(cluster_id)
    return [PitchScheduleResponse.model_validate(s) for s in slots]


@router.put(
    "/{cluster_id}/schedule",
    response_model=list[PitchScheduleResponse],
    summary="Set the pitch order",
)
async def assign_order(
    cluster_id: UUID,
    data: ScheduleOrderRequest,
    current_user: OperatorUser,
    db: DbSession,
) -> list[PitchScheduleResponse]:
    """Reorder the slots before any pitch has started."""
    ensure_cluster_access(current_user, cluster_id)
    slots = await PitchScheduler(db).assign_order(cluster_id, data.team_ids, actor_id=current_user.id)
    return [PitchScheduleResponse.model_validate(s) for s in slots]


@router.post(
    "/{cluster_id}/pitches/{schedule_id}/start",
    response_model=PitchScheduleResponse,
    summary="Start a pitch",
)
async def start_pitch(
    cluster_id: UUID,
    schedule_id: UUID,
    data: StartPitchRequest,
    current_user: OperatorUser,
    db: DbSession,
) -> PitchScheduleResponse:
    """Put a slot live. Only one pitch may run per cluster."""
    ensure_cluster_access(current_user, cluster_id)
    slot = await PitchScheduler(db).start_pitch(
        schedule_id, data.team_id, cluster_id, actor_id=current_user.id
    )
    return PitchScheduleResponse.model_validate(slot)


@router.post(
    "/{cluster_id}/pitches/{schedule_id}/end",
    response_model=PitchScheduleResponse,
    summary="End a pitch and lock drafts on the team",
)
async def end_pitch(
    cluster_id: UUID,
    schedule_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
    data: Optional[EndPitchRequest] = None,
) -> PitchScheduleResponse:
    """Complete the live pitch; drafts placed on the team are frozen."""
    ensure_cluster_access(current_user, cluster_id)
    slot = await PitchScheduler(db).end_pitch(
        schedule_id,
        cluster_id,
        team_id=data.team_id if data else None,
        actor_id=current_user.id,
    )
    return PitchScheduleResponse.model_validate(slot)


@router.post(
    "/{cluster_id}/pitches/{schedule_id}/skip",
    response_model=PitchScheduleResponse,
    summary="Skip a pitch",
)
async def skip_pitch(
    cluster_id: UUID,
    schedule_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
) -> PitchScheduleResponse:
    """Cancel a slot; drafts on the team are left as they are."""
    ensure_cluster_access(current_user, cluster_id)
    slot = await PitchScheduler(db).skip_pitch(schedule_id, cluster_id, actor_id=current_user.id)
    return PitchScheduleResponse.model_validate(slot)


@router.post(
    "/{cluster_id}/pitches/{schedule_id}/pause",
    response_model=PitchScheduleResponse,
    summary="Pause the pitch clock",
)
async def pause_pitch(
    cluster_id: UUID,
    schedule_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
) -> PitchScheduleResponse:
    """Stop the clock of the live pitch."""
    ensure_cluster_access(current_user, cluster_id)
    slot = await PitchScheduler(db).pause_pitch(schedule_id, cluster_id, actor_id=current_user.id)
    return PitchScheduleResponse.model_validate(slot)


@router.post(
    "/{cluster_id}/pitches/{schedule_id}/resume",
    response_model=PitchScheduleResponse,
    summary="Resume the pitch clock",
)
async def resume_pitch(
    cluster_id: UUID,
    schedule_id: UUID,
    current_user: OperatorUser,
    db: DbSession,
) -> PitchScheduleResponse:
    """Restart the clock; the start moves forward by the paused interval."""
    ensure_cluster_access(current_user, cluster_id)
    slot = await PitchScheduler(db).resume_pitch(schedule_id, cluster_id, actor_id=current_user.id)
    return PitchScheduleResponse.model_validate(slot)
