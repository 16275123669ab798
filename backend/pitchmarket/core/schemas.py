"""
Pitch Market - Pydantic Schemas
===============================

Request and response schemas for API validation, plus the live snapshot
shape shared by the read path and the stream endpoints.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Optional
from uuid import UUID

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from pitchmarket.core.models import (
    ClusterStage,
    InvestmentStatus,
    PitchStatus,
    UserRole,
)


# ==========================================================================
# Base Schemas
# ==========================================================================

class BaseSchema(BaseModel):
    """Base schema with common configuration."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class TimestampSchema(BaseSchema):
    """Schema with timestamp fields."""

    created_at: datetime
    updated_at: datetime


# ==========================================================================
# Caller
# ==========================================================================

class CallerResponse(BaseSchema):
    """Resolved identity of the caller."""

    id: UUID
    email: str
    full_name: str
    role: UserRole
    team_id: Optional[UUID] = None
    assigned_cluster_id: Optional[UUID] = None


# ==========================================================================
# Cluster & Team Schemas
# ==========================================================================

class ClusterCreate(BaseSchema):
    """Schema for creating a cluster."""

    name: str = Field(min_length=1, max_length=255)
    location: Optional[str] = Field(None, max_length=255)
    max_teams: Optional[int] = Field(None, ge=1, le=100)
    pitch_duration_seconds: Optional[int] = Field(None, ge=10, le=3600)


class ClusterResponse(TimestampSchema):
    """Schema for cluster in responses."""

    id: UUID
    name: str
    location: Optional[str] = None
    stage: ClusterStage
    bidding_open: bool
    bidding_deadline: Optional[datetime] = None
    current_pitching_team_id: Optional[UUID] = None
    current_schedule_id: Optional[UUID] = None
    max_teams: int
    pitch_duration_seconds: int
    is_complete: bool
    winner_team_id: Optional[UUID] = None


class TeamCreate(BaseSchema):
    """Schema for registering a team."""

    name: str = Field(min_length=1, max_length=255)
    domain: Optional[str] = Field(None, max_length=255)
    cluster_id: Optional[UUID] = None


class TeamResponse(TimestampSchema):
    """Schema for team in responses."""

    id: UUID
    name: str
    domain: Optional[str] = None
    cluster_id: Optional[UUID] = None
    starting_balance: Decimal
    balance: Decimal
    total_invested: Decimal
    total_received: Decimal
    is_finalized: bool
    is_qualified: bool


class ClusterWithTeams(ClusterResponse):
    """Cluster with its registered teams."""

    teams: list[TeamResponse] = []


class ClusterListResponse(BaseSchema):
    """All clusters, unassigned teams and roster stats."""

    clusters: list[ClusterWithTeams]
    unassigned_teams: list[TeamResponse]
    stats: dict[str, int]


class ShuffleRequest(BaseSchema):
    """Schema for the bulk team shuffle."""

    clear_previous: bool = True
    teams_per_cluster: Optional[int] = Field(None, ge=1, le=100)


class ShuffleAssignment(BaseSchema):
    team_id: UUID
    team_name: str
    cluster_id: UUID
    cluster_name: str


class ClusterStat(BaseSchema):
    cluster_id: UUID
    name: str
    team_count: int
    max_teams: int


class ShuffleResponse(BaseSchema):
    """Outcome of a shuffle."""

    total_teams: int
    assigned_teams: int
    unassigned_teams: int
    cluster_stats: list[ClusterStat]
    assignments: list[ShuffleAssignment]


# ==========================================================================
# Stage Schemas
# ==========================================================================

class StageChangeRequest(BaseSchema):
    """Schema for advancing (or, with override, resetting) a cluster stage."""

    target_stage: ClusterStage
    override: bool = False


class OpenBiddingRequest(BaseSchema):
    """Schema for opening the market."""

    deadline: Optional[datetime] = None


# ==========================================================================
# Pitch Schedule Schemas
# ==========================================================================

class PitchScheduleResponse(TimestampSchema):
    """Schema for one pitch slot."""

    id: UUID
    cluster_id: UUID
    team_id: UUID
    position: int
    scheduled_start: datetime
    actual_start: Optional[datetime] = None
    actual_end: Optional[datetime] = None
    paused_at: Optional[datetime] = None
    duration_seconds: int
    status: PitchStatus
    is_completed: bool


class ScheduleOrderRequest(BaseSchema):
    """Explicit pitch order; must list every team of the cluster once."""

    team_ids: list[UUID] = Field(min_length=1)


class StartPitchRequest(BaseSchema):
    team_id: UUID


class EndPitchRequest(BaseSchema):
    team_id: Optional[UUID] = None


class ActivePitch(BaseSchema):
    """The pitch currently on stage."""

    schedule_id: UUID
    team_id: UUID
    team_name: Optional[str] = None
    position: int
    started_at: Optional[datetime] = None
    duration_seconds: int
    elapsed_seconds: float
    remaining_seconds: float
    is_paused: bool


# ==========================================================================
# Investment Schemas
# ==========================================================================

class DraftRequest(BaseSchema):
    """Schema for SAVE_DRAFT."""

    target_team_id: UUID
    amount: Decimal = Field(max_digits=14, decimal_places=2)
    reasoning: Optional[str] = Field(None, max_length=2000)
    confidence_level: Optional[int] = Field(None, ge=1, le=10)


class DraftEditRequest(BaseSchema):
    """Schema for EDIT_DRAFT."""

    amount: Decimal = Field(max_digits=14, decimal_places=2)


class PortfolioItemRequest(BaseSchema):
    target_team_id: UUID
    amount: Decimal = Field(max_digits=14, decimal_places=2)


class CommitRequest(BaseSchema):
    """Schema for COMMIT_PORTFOLIO."""

    investments: list[PortfolioItemRequest]


class InvestmentResponse(BaseSchema):
    """One investor -> target edge."""

    id: UUID
    investor_team_id: UUID
    target_team_id: UUID
    amount: Decimal
    status: InvestmentStatus
    is_draft: bool
    draft_locked: bool
    is_locked: bool
    reasoning: Optional[str] = None
    confidence_level: Optional[int] = None


class CommitResponse(BaseSchema):
    """Outcome of a committed portfolio."""

    message: str = "Portfolio locked successfully"
    total_invested: Decimal
    team: TeamResponse
    investments: list[InvestmentResponse]
    voided_drafts: list[UUID] = []


# ==========================================================================
# Market Schemas
# ==========================================================================

class TeamValuationResponse(BaseSchema):
    team_id: UUID
    team_name: str
    total: Decimal


class MarketResponse(BaseSchema):
    """Committed totals per team; empty while sealed."""

    cluster_id: UUID
    sealed: bool
    finalized_teams: int
    total_teams: int
    total_pool: Optional[Decimal] = None
    valuations: list[TeamValuationResponse] = []


class ClusterResultResponse(TimestampSchema):
    """Published cluster outcome."""

    id: UUID
    cluster_id: UUID
    winner_team_id: Optional[UUID] = None
    total_investment_pool: Decimal
    participating_teams: int
    standings: list[dict[str, Any]]


# ==========================================================================
# Read Path / Live Snapshot
# ==========================================================================

class TargetTeam(BaseSchema):
    """A possible investment target as seen by an investor."""

    id: UUID
    name: str
    domain: Optional[str] = None
    is_finalized: bool
    is_pitching: bool = False
    pitch_status: Optional[PitchStatus] = None


class TeamInvestmentStateResponse(BaseSchema):
    """Everything an investor team needs to place its bids."""

    team: TeamResponse
    cluster: ClusterResponse
    targets: list[TargetTeam]
    investments: list[InvestmentResponse]
    outstanding_total: Decimal
    market: MarketResponse


class ClusterSnapshot(BaseSchema):
    """Point-in-time view of one cluster, optionally for one investor."""

    cluster_id: UUID
    name: str
    stage: ClusterStage
    is_pitching: bool
    current_pitching_team_id: Optional[UUID] = None
    active_pitch: Optional[ActivePitch] = None
    bidding_open: bool
    bidding_deadline: Optional[datetime] = None
    is_complete: bool
    teams_total: int
    teams_finalized: int
    all_finalized: bool
    investor_team_id: Optional[UUID] = None
    investments: Optional[list[InvestmentResponse]] = None
    market: MarketResponse
    timestamp: datetime


# ==========================================================================
# Audit Schemas
# ==========================================================================

class AuditLogResponse(BaseSchema):
    """Schema for audit trail entries."""

    id: UUID
    event_type: str
    actor_id: Optional[UUID] = None
    target_id: Optional[UUID] = None
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        validation_alias=AliasChoices("event_metadata", "metadata"),
    )
    created_at: datetime


class AuditLogListResponse(BaseSchema):
    """Paginated audit trail."""

    items: list[AuditLogResponse]
    total: int
    limit: int
    offset: int


# ==========================================================================
# Common Schemas
# ==========================================================================

class ErrorResponse(BaseSchema):
    """Error response schema."""

    error: str
    detail: Optional[str] = None
    code: Optional[str] = None
    reason: Optional[str] = None


class HealthResponse(BaseSchema):
    """Health check response."""

    status: str
    version: str
    environment: str
    database: str
