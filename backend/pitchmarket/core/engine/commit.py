"""
Portfolio Commit Engine - Final, all-or-nothing investment commit.

Everything after validation runs in one transaction: the investment rows,
the investor's counters, the targets' received totals and the audit row
either all land or none do.
"""

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Optional, Sequence
from uuid import UUID

import structlog
from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core import audit
from pitchmarket.core.engine.ledger import validate_amount
from pitchmarket.core.engine.lookups import (
    get_cluster_or_404,
    get_team_or_404,
    list_cluster_teams,
)
from pitchmarket.core.errors import (
    REASON_DUPLICATE_TARGET,
    REASON_EMPTY_PORTFOLIO,
    REASON_OVER_BUDGET,
    REASON_SELF_INVESTMENT,
    REASON_WRONG_TARGET,
    REASON_WRONG_TEAM,
    ConflictError,
    EngineError,
    InternalError,
    RejectedError,
)
from pitchmarket.core.models import Bidding, Investment, InvestmentStatus, Team

logger = structlog.get_logger()


@dataclass
class PortfolioItem:
    target_team_id: UUID
    amount: Decimal


@dataclass
class CommitResult:
    """Outcome of a successful commit."""

    investor: Team
    total: Decimal
    investments: list[Investment] = field(default_factory=list)
    voided_drafts: list[UUID] = field(default_factory=list)


class PortfolioCommitEngine:
    """
    Commits an investor team's final portfolio.

    Conflict and Rejected are raised before the transaction starts. Anything
    going wrong inside it rolls everything back and surfaces as Internal.
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    def _normalise(self, investor_id: UUID, items: Sequence[Any]) -> list[PortfolioItem]:
        if not items:
            raise RejectedError("No investments provided", reason=REASON_EMPTY_PORTFOLIO)

        portfolio: list[PortfolioItem] = []
        seen: set[UUID] = set()
        for item in items:
            if isinstance(item, PortfolioItem):
                target_id, amount = item.target_team_id, item.amount
            elif isinstance(item, dict):
                target_id, amount = item["target_team_id"], item["amount"]
            else:
                target_id, amount = item

            amount = validate_amount(amount)
            if target_id in seen:
                raise RejectedError(
                    "Each target team may appear only once",
                    reason=REASON_DUPLICATE_TARGET,
                )
            if target_id == investor_id:
                raise RejectedError("Cannot invest in your own team", reason=REASON_SELF_INVESTMENT)
            seen.add(target_id)
            portfolio.append(PortfolioItem(target_team_id=target_id, amount=amount))
        return portfolio

    async def commit_portfolio(
        self,
        investor_team_id: UUID,
        cluster_id: UUID,
        investments: Sequence[Any],
        actor_id: Optional[UUID] = None,
    ) -> CommitResult:
        """
        Commit `investments` as the investor's final portfolio.

        Args:
            investor_team_id: Committing team
            cluster_id: The team's cluster
            investments: (target_team_id, amount) pairs, dicts or PortfolioItems
            actor_id: User issuing the commit

        Returns:
            CommitResult with the updated investor and committed rows

        Raises:
            ConflictError: Market not open, or portfolio already committed
            RejectedError: Empty, over budget, self/foreign/duplicate target
            InternalError: Storage failure; nothing was applied
        """
        cluster = await get_cluster_or_404(self.db, cluster_id)
        phase = cluster.phase
        if not (isinstance(phase, Bidding) and phase.open):
            raise ConflictError("Market is not open for committing")

        investor = await get_team_or_404(self.db, investor_team_id, for_update=True)
        if investor.cluster_id != cluster.id:
            raise RejectedError("Investor team is not part of this cluster", reason=REASON_WRONG_TEAM)
        if investor.is_finalized:
            raise ConflictError("Portfolio already committed")

        portfolio = self._normalise(investor.id, investments)

        cluster_team_ids = {t.id for t in await list_cluster_teams(self.db, cluster.id)}
        foreign = [p.target_team_id for p in portfolio if p.target_team_id not in cluster_team_ids]
        if foreign:
            raise RejectedError(
                "Target team is not part of this cluster",
                reason=REASON_WRONG_TARGET,
            )

        total = sum((p.amount for p in portfolio), Decimal("0"))
        if total > investor.balance:
            raise RejectedError(
                f"Total of {total} exceeds available balance of {investor.balance}",
                reason=REASON_OVER_BUDGET,
            )

        try:
            result = await self._apply(investor, portfolio, total, actor_id)
            await self.db.commit()
        except EngineError:
            await self.db.rollback()
            raise
        except Exception:
            await self.db.rollback()
            logger.error(
                "portfolio_commit_failed",
                investor_team_id=str(investor_team_id),
                cluster_id=str(cluster_id),
                exc_info=True,
            )
            raise InternalError()

        logger.info(
            "portfolio_committed",
            investor_team_id=str(investor_team_id),
            cluster_id=str(cluster_id),
            total=str(total),
            targets=len(result.investments),
        )
        return result

    async def _apply(
        self,
        investor: Team,
        portfolio: list[PortfolioItem],
        total: Decimal,
        actor_id: Optional[UUID],
    ) -> CommitResult:
        """Transaction body. Must not commit."""
        committed: list[Investment] = []
        deltas: dict[UUID, Decimal] = {}

        for item in portfolio:
            if item.amount <= 0:
                continue
            row = await self._upsert_committed(investor.id, item, deltas)
            committed.append(row)

        committed_targets = [row.target_team_id for row in committed]
        voided = await self._void_leftover_drafts(investor.id)

        # Compare-and-set on the investor: losing a concurrent commit
        # shows up as zero rows updated.
        updated = await self.db.execute(
            update(Team)
            .where(
                Team.id == investor.id,
                Team.is_finalized.is_(False),
                Team.balance >= total,
            )
            .values(
                balance=Team.balance - total,
                total_invested=Team.total_invested + total,
                is_finalized=True,
            )
            .execution_options(synchronize_session=False)
        )
        if updated.rowcount != 1:
            raise ConflictError("Portfolio already committed")

        await self._refresh_received(committed_targets)

        audit.append_audit(
            self.db,
            audit.PORTFOLIO_COMMITTED,
            actor_id=actor_id,
            target_id=investor.id,
            metadata={
                "investments": [
                    {"target_team_id": p.target_team_id, "amount": p.amount} for p in portfolio
                ],
                "total": total,
                "deltas": deltas,
                "voided_drafts": voided,
            },
        )
        await self.db.flush()

        investor = await get_team_or_404(self.db, investor.id)
        return CommitResult(
            investor=investor,
            total=total,
            investments=committed,
            voided_drafts=voided,
        )

    async def _upsert_committed(
        self,
        investor_id: UUID,
        item: PortfolioItem,
        deltas: dict[UUID, Decimal],
    ) -> Investment:
        result = await self.db.execute(
            select(Investment)
            .where(
                Investment.investor_team_id == investor_id,
                Investment.target_team_id == item.target_team_id,
            )
            .execution_options(populate_existing=True)
        )
        row = result.scalar_one_or_none()

        previous = row.amount if row is not None else Decimal("0")
        deltas[item.target_team_id] = item.amount - previous

        if row is None:
            row = Investment(
                investor_team_id=investor_id,
                target_team_id=item.target_team_id,
            )
            self.db.add(row)
        row.amount = item.amount
        row.status = InvestmentStatus.COMMITTED
        await self.db.flush()
        return row

    async def _void_leftover_drafts(self, investor_id: UUID) -> list[UUID]:
        """Delete drafts the final portfolio did not include."""
        result = await self.db.execute(
            select(Investment.target_team_id).where(
                Investment.investor_team_id == investor_id,
                Investment.status != InvestmentStatus.COMMITTED,
            )
        )
        voided = list(result.scalars().all())
        if voided:
            await self.db.execute(
                delete(Investment)
                .where(
                    Investment.investor_team_id == investor_id,
                    Investment.status != InvestmentStatus.COMMITTED,
                )
                .execution_options(synchronize_session=False)
            )
        return voided

    async def _refresh_received(self, target_ids: list[UUID]) -> None:
        """Recompute each target's total_received from committed rows."""
        for target_id in target_ids:
            received = (
                select(func.coalesce(func.sum(Investment.amount), 0))
                .where(
                    Investment.target_team_id == target_id,
                    Investment.status == InvestmentStatus.COMMITTED,
                )
                .scalar_subquery()
            )
            await self.db.execute(
                update(Team)
                .where(Team.id == target_id)
                .values(total_received=received)
                .execution_options(synchronize_session=False)
            )
