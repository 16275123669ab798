"""
Pitch Market - Database Models
==============================

SQLAlchemy models for all entities.

Invariants that the datastore can hold on its own are declared here as
constraints and indexes; everything else is enforced by the engine services.
"""

import enum
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional, Union
from uuid import UUID as PyUUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column

from pitchmarket.core.database import Base


MONEY = Numeric(14, 2)


def _enum(enum_cls: type[enum.Enum]) -> Enum:
    """Persist enum values (not member names), named after the class."""
    return Enum(
        enum_cls,
        name=enum_cls.__name__.lower(),
        values_callable=lambda members: [m.value for m in members],
    )


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# ==========================================================================
# Enums
# ==========================================================================

class UserRole(str, enum.Enum):
    """User roles for access control."""
    PARTICIPANT = "participant"
    TEAM_LEAD = "team_lead"
    CLUSTER_MONITOR = "cluster_monitor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class ClusterStage(str, enum.Enum):
    """Cluster-wide phase gating which operations are legal."""
    ONBOARDING = "onboarding"
    PITCHING = "pitching"
    BIDDING = "bidding"
    LOCKED = "locked"


class PitchStatus(str, enum.Enum):
    """Lifecycle of one pitch slot."""
    SCHEDULED = "scheduled"
    IN_PROGRESS = "in_progress"   # At most one per cluster
    COMPLETED = "completed"       # Terminal
    CANCELLED = "cancelled"       # Terminal (skipped / absent)


class InvestmentStatus(str, enum.Enum):
    """Lifecycle of one investor -> target edge."""
    DRAFT = "draft"                 # Editable while the target pitches
    DRAFT_LOCKED = "draft_locked"   # Target's pitch has ended
    COMMITTED = "committed"         # Permanent, part of a committed portfolio


# ==========================================================================
# Cluster Phase Variant
# ==========================================================================

@dataclass(frozen=True)
class Onboarding:
    stage = ClusterStage.ONBOARDING


@dataclass(frozen=True)
class Pitching:
    """Pitching stage; both ids are set while a pitch is live."""
    team_id: Optional[PyUUID] = None
    schedule_id: Optional[PyUUID] = None
    stage = ClusterStage.PITCHING

    def __post_init__(self) -> None:
        if (self.team_id is None) != (self.schedule_id is None):
            raise ValueError("active pitch needs both team_id and schedule_id")

    @property
    def is_live(self) -> bool:
        return self.team_id is not None


@dataclass(frozen=True)
class Bidding:
    open: bool = False
    deadline: Optional[datetime] = None
    stage = ClusterStage.BIDDING


@dataclass(frozen=True)
class Locked:
    stage = ClusterStage.LOCKED


ClusterPhase = Union[Onboarding, Pitching, Bidding, Locked]


# ==========================================================================
# Mixins
# ==========================================================================

class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamps."""

    # Server-side timestamps are fetched on flush
    __mapper_args__ = {"eager_defaults": True}

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )


# ==========================================================================
# Models
# ==========================================================================

class User(Base, TimestampMixin):
    """
    Caller identity as provisioned by the identity provider.

    Only the fields the engine consumes are kept: role, owning team and,
    for cluster monitors/admins, the cluster they operate.
    """

    __tablename__ = "users"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    email: Mapped[str] = mapped_column(
        String(255),
        unique=True,
        index=True,
        nullable=False,
    )
    full_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    role: Mapped[UserRole] = mapped_column(
        _enum(UserRole),
        default=UserRole.PARTICIPANT,
        nullable=False,
    )
    team_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    assigned_cluster_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clusters.id", ondelete="SET NULL"),
        nullable=True,
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean,
        default=True,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<User {self.email}>"


class Cluster(Base, TimestampMixin):
    """
    A group of teams sharing one pitch/bidding session.

    `stage`, `bidding_open`, `bidding_deadline` and the current pitch
    pointer are only ever written together through `apply_phase`.
    """

    __tablename__ = "clusters"
    __table_args__ = (
        CheckConstraint(
            "bidding_open = false OR stage = 'bidding'",
            name="ck_clusters_bidding_open_stage",
        ),
        CheckConstraint(
            "current_pitching_team_id IS NULL OR stage = 'pitching'",
            name="ck_clusters_pitch_pointer_stage",
        ),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    location: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    stage: Mapped[ClusterStage] = mapped_column(
        _enum(ClusterStage),
        default=ClusterStage.ONBOARDING,
        nullable=False,
        index=True,
    )
    bidding_open: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    bidding_deadline: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    current_pitching_team_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL", use_alter=True, name="fk_clusters_current_pitching_team"),
        nullable=True,
    )
    current_schedule_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("pitch_schedules.id", ondelete="SET NULL", use_alter=True, name="fk_clusters_current_schedule"),
        nullable=True,
    )
    max_teams: Mapped[int] = mapped_column(
        Integer,
        default=10,
        nullable=False,
    )
    pitch_duration_seconds: Mapped[int] = mapped_column(
        Integer,
        default=180,
        nullable=False,
    )
    is_complete: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
        index=True,
    )
    winner_team_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL", use_alter=True, name="fk_clusters_winner_team"),
        nullable=True,
    )

    @property
    def phase(self) -> ClusterPhase:
        """Typed view of the stage columns."""
        if self.stage == ClusterStage.ONBOARDING:
            return Onboarding()
        if self.stage == ClusterStage.PITCHING:
            return Pitching(
                team_id=self.current_pitching_team_id,
                schedule_id=self.current_schedule_id,
            )
        if self.stage == ClusterStage.BIDDING:
            return Bidding(open=self.bidding_open, deadline=as_utc(self.bidding_deadline))
        return Locked()

    def apply_phase(self, phase: ClusterPhase) -> None:
        """Write every stage column from a phase value."""
        self.stage = phase.stage
        self.current_pitching_team_id = None
        self.current_schedule_id = None
        self.bidding_open = False

        if isinstance(phase, Pitching):
            self.current_pitching_team_id = phase.team_id
            self.current_schedule_id = phase.schedule_id
        elif isinstance(phase, Bidding):
            self.bidding_open = phase.open
            self.bidding_deadline = phase.deadline

    def __repr__(self) -> str:
        return f"<Cluster {self.name} [{self.stage.value}]>"


class Team(Base, TimestampMixin):
    """
    A competing team with a bounded virtual budget.

    `balance + total_invested` stays equal to `starting_balance`.
    """

    __tablename__ = "teams"
    __table_args__ = (
        CheckConstraint("balance >= 0", name="ck_teams_balance_non_negative"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    domain: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    cluster_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clusters.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    # Financial tracking
    starting_balance: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
    )
    balance: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
    )
    total_invested: Mapped[Decimal] = mapped_column(
        MONEY,
        default=Decimal("0"),
        nullable=False,
    )
    total_received: Mapped[Decimal] = mapped_column(
        MONEY,
        default=Decimal("0"),
        nullable=False,
    )

    # Status flags
    is_finalized: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )
    is_qualified: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<Team {self.name}>"


class PitchSchedule(Base, TimestampMixin):
    """One ordered appearance slot for one team inside one cluster."""

    __tablename__ = "pitch_schedules"
    __table_args__ = (
        UniqueConstraint("cluster_id", "position", name="uq_pitch_schedules_cluster_position"),
        Index(
            "uq_pitch_schedules_one_active",
            "cluster_id",
            unique=True,
            sqlite_where=text("status = 'in_progress'"),
            postgresql_where=text("status = 'in_progress'"),
        ),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    cluster_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clusters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    team_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
    )

    # Timing
    scheduled_start: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
    )
    actual_start: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    actual_end: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    paused_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True),
        nullable=True,
    )
    duration_seconds: Mapped[int] = mapped_column(
        Integer,
        default=180,
        nullable=False,
    )

    # Status
    status: Mapped[PitchStatus] = mapped_column(
        _enum(PitchStatus),
        default=PitchStatus.SCHEDULED,
        nullable=False,
        index=True,
    )
    is_completed: Mapped[bool] = mapped_column(
        Boolean,
        default=False,
        nullable=False,
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (PitchStatus.COMPLETED, PitchStatus.CANCELLED)

    @property
    def is_paused(self) -> bool:
        return self.paused_at is not None

    def elapsed_seconds(self, now: datetime) -> float:
        """Seconds on the clock; a paused pitch stops counting at `paused_at`."""
        started = as_utc(self.actual_start)
        if started is None:
            return 0.0
        until = as_utc(self.actual_end) or as_utc(self.paused_at) or now
        return max(0.0, (until - started).total_seconds())

    def remaining_seconds(self, now: datetime) -> float:
        return max(0.0, self.duration_seconds - self.elapsed_seconds(now))

    def __repr__(self) -> str:
        return f"<PitchSchedule #{self.position} {self.status.value}>"


class Investment(Base, TimestampMixin):
    """
    Directed, amount-bearing edge investor team -> target team.

    One row per (investor, target). `status` replaces the draft/lock flags;
    the flag properties exist for the read-path shape.
    """

    __tablename__ = "investments"
    __table_args__ = (
        UniqueConstraint(
            "investor_team_id", "target_team_id", name="uq_investments_investor_target"
        ),
        CheckConstraint(
            "investor_team_id <> target_team_id", name="ck_investments_no_self_investment"
        ),
        CheckConstraint("amount >= 0", name="ck_investments_amount_non_negative"),
    )

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    investor_team_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_team_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    amount: Mapped[Decimal] = mapped_column(
        MONEY,
        nullable=False,
    )
    status: Mapped[InvestmentStatus] = mapped_column(
        _enum(InvestmentStatus),
        default=InvestmentStatus.DRAFT,
        nullable=False,
        index=True,
    )
    reasoning: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )
    confidence_level: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
    )

    @property
    def is_draft(self) -> bool:
        return self.status != InvestmentStatus.COMMITTED

    @property
    def draft_locked(self) -> bool:
        return self.status != InvestmentStatus.DRAFT

    @property
    def is_locked(self) -> bool:
        return self.status == InvestmentStatus.COMMITTED

    def __repr__(self) -> str:
        return f"<Investment {self.investor_team_id}->{self.target_team_id} {self.amount} {self.status.value}>"


class AuditLog(Base):
    """
    Append-only record of state-changing actions.

    Rows are never updated or deleted.
    """

    __tablename__ = "audit_logs"
    __mapper_args__ = {"eager_defaults": True}

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    event_type: Mapped[str] = mapped_column(
        String(100),
        nullable=False,
        index=True,
    )
    actor_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
        index=True,
    )
    target_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        nullable=True,
    )
    event_metadata: Mapped[dict] = mapped_column(
        "metadata",
        JSON,
        default=dict,
        nullable=False,
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    def __repr__(self) -> str:
        return f"<AuditLog {self.event_type}>"


class ClusterResult(Base, TimestampMixin):
    """Published outcome of a completed cluster."""

    __tablename__ = "cluster_results"

    id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid4,
    )
    cluster_id: Mapped[UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("clusters.id", ondelete="CASCADE"),
        unique=True,
        nullable=False,
    )
    winner_team_id: Mapped[Optional[UUID]] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("teams.id", ondelete="SET NULL"),
        nullable=True,
    )
    total_investment_pool: Mapped[Decimal] = mapped_column(
        MONEY,
        default=Decimal("0"),
        nullable=False,
    )
    participating_teams: Mapped[int] = mapped_column(
        Integer,
        default=0,
        nullable=False,
    )
    standings: Mapped[list] = mapped_column(
        JSON,
        default=list,
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<ClusterResult {self.cluster_id}>"
