"""
Draft Ledger - Provisional investments placed while teams pitch.

Drafts never move money: the investor's balance is untouched until the
portfolio is committed. What the ledger guards is the running sum, which
must never exceed the balance at the moment of any successful write.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional
from uuid import UUID

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.config import settings
from pitchmarket.core.engine.lookups import (
    as_money,
    get_cluster_or_404,
    get_team_or_404,
    list_cluster_teams,
)
from pitchmarket.core.errors import (
    REASON_INVALID_AMOUNT,
    REASON_OVER_BUDGET,
    REASON_SELF_INVESTMENT,
    REASON_WRONG_STAGE,
    REASON_WRONG_TARGET,
    REASON_WRONG_TEAM,
    ConflictError,
    RejectedError,
)
from pitchmarket.core.models import (
    Bidding,
    Cluster,
    Investment,
    InvestmentStatus,
    Pitching,
    Team,
)

logger = structlog.get_logger()


@dataclass
class TeamInvestmentState:
    """An investor team's view of its own cluster."""

    team: Team
    cluster: Cluster
    targets: list[Team] = field(default_factory=list)
    investments: list[Investment] = field(default_factory=list)

    @property
    def outstanding_total(self) -> Decimal:
        return sum(
            (inv.amount for inv in self.investments if inv.status != InvestmentStatus.COMMITTED),
            Decimal("0"),
        )


async def outstanding_total(
    db: AsyncSession,
    investor_team_id: UUID,
    exclude_target_id: Optional[UUID] = None,
) -> Decimal:
    """Sum of the investor's uncommitted rows, optionally without one target."""
    query = select(func.sum(Investment.amount)).where(
        Investment.investor_team_id == investor_team_id,
        Investment.status != InvestmentStatus.COMMITTED,
    )
    if exclude_target_id is not None:
        query = query.where(Investment.target_team_id != exclude_target_id)
    result = await db.execute(query)
    return as_money(result.scalar())


CENT = Decimal("0.01")


def validate_amount(amount) -> Decimal:
    """Non-negative amount in whole cents (columns store 2 decimal places)."""
    amount = as_money(amount)
    if not amount.is_finite():
        raise RejectedError("Amount must be a number", reason=REASON_INVALID_AMOUNT)
    if amount < 0:
        raise RejectedError("Amount must not be negative", reason=REASON_INVALID_AMOUNT)
    if amount != amount.quantize(CENT):
        raise RejectedError("Amount must not have more than 2 decimal places", reason=REASON_INVALID_AMOUNT)
    return amount


class DraftLedger:
    """Draft writes for one investor at a time."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def _get_pair(self, investor_team_id: UUID, target_team_id: UUID) -> Optional[Investment]:
        result = await self.db.execute(
            select(Investment)
            .where(
                Investment.investor_team_id == investor_team_id,
                Investment.target_team_id == target_team_id,
            )
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _check_budget(self, investor: Team, target_team_id: UUID, amount: Decimal) -> None:
        other_total = await outstanding_total(self.db, investor.id, exclude_target_id=target_team_id)
        if other_total + amount > investor.balance:
            raise RejectedError(
                f"Total drafts of {other_total + amount} exceed available balance of {investor.balance}",
                reason=REASON_OVER_BUDGET,
            )

    async def _write(self, existing: Optional[Investment], row: Investment) -> None:
        if existing is None:
            self.db.add(row)
        try:
            await self.db.commit()
        except IntegrityError as e:
            # Lost an insert race on (investor, target)
            await self.db.rollback()
            raise ConflictError("Draft was changed concurrently, please retry") from e

    async def save_draft(
        self,
        investor_team_id: UUID,
        target_team_id: UUID,
        amount,
        cluster_id: UUID,
        reasoning: Optional[str] = None,
        confidence_level: Optional[int] = None,
    ) -> Investment:
        """
        Place or update a draft on the team currently pitching.

        Raises:
            RejectedError: Wrong stage, wrong target, self-investment,
                over budget
            ConflictError: The draft was frozen when the pitch ended
        """
        amount = validate_amount(amount)
        cluster = await get_cluster_or_404(self.db, cluster_id)
        phase = cluster.phase

        if not isinstance(phase, Pitching):
            raise RejectedError("Drafts can only be placed during pitching", reason=REASON_WRONG_STAGE)
        if not phase.is_live:
            raise RejectedError("No team is currently pitching", reason=REASON_WRONG_STAGE)
        if investor_team_id == target_team_id:
            raise RejectedError("Cannot invest in your own team", reason=REASON_SELF_INVESTMENT)
        if phase.team_id != target_team_id:
            raise RejectedError(
                "Can only draft for the currently pitching team",
                reason=REASON_WRONG_TARGET,
            )

        investor = await get_team_or_404(self.db, investor_team_id, for_update=True)
        if investor.cluster_id != cluster.id:
            raise RejectedError("Investor team is not part of this cluster", reason=REASON_WRONG_TEAM)
        if investor.is_finalized:
            raise ConflictError("Portfolio already committed")

        existing = await self._get_pair(investor.id, target_team_id)
        if existing is not None and existing.status != InvestmentStatus.DRAFT:
            raise ConflictError("Draft for this team is locked")

        await self._check_budget(investor, target_team_id, amount)

        row = existing or Investment(
            investor_team_id=investor.id,
            target_team_id=target_team_id,
        )
        row.amount = amount
        row.status = InvestmentStatus.DRAFT
        if reasoning is not None:
            row.reasoning = reasoning
        if confidence_level is not None:
            row.confidence_level = confidence_level
        await self._write(existing, row)

        logger.info(
            "draft_saved",
            investor_team_id=str(investor.id),
            target_team_id=str(target_team_id),
            amount=str(amount),
        )
        return row

    async def edit_draft(
        self,
        investor_team_id: UUID,
        target_team_id: UUID,
        amount,
    ) -> Investment:
        """
        Change a draft amount while the market is open.

        Frozen drafts stay editable here unless
        ALLOW_BIDDING_EDIT_OF_LOCKED_DRAFTS is off; their status is kept.
        Committed rows are never editable.
        """
        amount = validate_amount(amount)
        investor = await get_team_or_404(self.db, investor_team_id, for_update=True)
        if investor.cluster_id is None:
            raise RejectedError("Team is not part of a cluster", reason=REASON_WRONG_TEAM)

        cluster = await get_cluster_or_404(self.db, investor.cluster_id)
        phase = cluster.phase
        if not (isinstance(phase, Bidding) and phase.open):
            raise RejectedError(
                "Editing is only allowed while bidding is open",
                reason=REASON_WRONG_STAGE,
            )
        if investor.is_finalized:
            raise ConflictError("Portfolio already committed")
        if investor.id == target_team_id:
            raise RejectedError("Cannot invest in your own team", reason=REASON_SELF_INVESTMENT)

        target = await get_team_or_404(self.db, target_team_id)
        if target.cluster_id != cluster.id:
            raise RejectedError("Target team is not part of this cluster", reason=REASON_WRONG_TARGET)

        existing = await self._get_pair(investor.id, target.id)
        if existing is not None:
            if existing.status == InvestmentStatus.COMMITTED:
                raise ConflictError("Investment is already committed")
            if (
                existing.status == InvestmentStatus.DRAFT_LOCKED
                and not settings.ALLOW_BIDDING_EDIT_OF_LOCKED_DRAFTS
            ):
                raise ConflictError("Draft for this team is locked")

        await self._check_budget(investor, target.id, amount)

        row = existing or Investment(
            investor_team_id=investor.id,
            target_team_id=target.id,
            status=InvestmentStatus.DRAFT,
        )
        row.amount = amount
        await self._write(existing, row)

        logger.info(
            "draft_edited",
            investor_team_id=str(investor.id),
            target_team_id=str(target.id),
            amount=str(amount),
            status=row.status.value,
        )
        return row

    async def get_team_state(self, investor_team_id: UUID) -> TeamInvestmentState:
        """Own team, cluster, possible targets and own investment rows."""
        team = await get_team_or_404(self.db, investor_team_id)
        if team.cluster_id is None:
            raise RejectedError("Team is not part of a cluster", reason=REASON_WRONG_TEAM)
        cluster = await get_cluster_or_404(self.db, team.cluster_id)

        teams = await list_cluster_teams(self.db, cluster.id)
        result = await self.db.execute(
            select(Investment)
            .where(Investment.investor_team_id == team.id)
            .order_by(Investment.created_at)
            .execution_options(populate_existing=True)
        )
        return TeamInvestmentState(
            team=team,
            cluster=cluster,
            targets=[t for t in teams if t.id != team.id],
            investments=list(result.scalars().all()),
        )
