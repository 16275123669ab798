"""
Pitch Market - Investment API
=============================

Draft, edit and commit endpoints, always scoped to the caller's own team.
"""

from uuid import UUID

from fastapi import APIRouter
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.api.deps import CurrentUser, DbSession, InvestorUser, require_team
from pitchmarket.core.engine import DraftLedger, MarketProjector, PortfolioCommitEngine
from pitchmarket.core.engine.lookups import get_team_or_404
from pitchmarket.core.errors import REASON_WRONG_TEAM, RejectedError
from pitchmarket.core.live import market_response
from pitchmarket.core.models import PitchSchedule
from pitchmarket.core.schemas import (
    ClusterResponse,
    CommitRequest,
    CommitResponse,
    DraftEditRequest,
    DraftRequest,
    InvestmentResponse,
    TargetTeam,
    TeamInvestmentStateResponse,
    TeamResponse,
)

router = APIRouter(prefix="/invest", tags=["Invest"])


async def _team_cluster_id(db: AsyncSession, team_id: UUID) -> UUID:
    team = await get_team_or_404(db, team_id)
    if team.cluster_id is None:
        raise RejectedError("Team is not part of a cluster", reason=REASON_WRONG_TEAM)
    return team.cluster_id


@router.get(
    "",
    response_model=TeamInvestmentStateResponse,
    summary="Investment state of the caller's team",
)
async def get_investment_state(
    current_user: CurrentUser,
    db: DbSession,
) -> TeamInvestmentStateResponse:
    """Own team, possible targets, own rows and the market view."""
    team_id = require_team(current_user)
    state = await DraftLedger(db).get_team_state(team_id)
    market = await MarketProjector(db).get_valuations(state.cluster.id)

    result = await db.execute(
        select(PitchSchedule.team_id, PitchSchedule.status).where(
            PitchSchedule.cluster_id == state.cluster.id
        )
    )
    pitch_status = dict(result.all())

    return TeamInvestmentStateResponse(
        team=TeamResponse.model_validate(state.team),
        cluster=ClusterResponse.model_validate(state.cluster),
        targets=[
            TargetTeam(
                id=t.id,
                name=t.name,
                domain=t.domain,
                is_finalized=t.is_finalized,
                is_pitching=t.id == state.cluster.current_pitching_team_id,
                pitch_status=pitch_status.get(t.id),
            )
            for t in state.targets
        ],
        investments=[InvestmentResponse.model_validate(i) for i in state.investments],
        outstanding_total=state.outstanding_total,
        market=market_response(market),
    )


@router.post(
    "/drafts",
    response_model=InvestmentResponse,
    summary="Save a draft on the team currently pitching",
)
async def save_draft(
    data: DraftRequest,
    current_user: InvestorUser,
    db: DbSession,
) -> InvestmentResponse:
    """Place or replace a draft on the team currently pitching."""
    team_id = require_team(current_user)
    cluster_id = await _team_cluster_id(db, team_id)
    investment = await DraftLedger(db).save_draft(
        team_id,
        data.target_team_id,
        data.amount,
        cluster_id,
        reasoning=data.reasoning,
        confidence_level=data.confidence_level,
    )
    return InvestmentResponse.model_validate(investment)


@router.put(
    "/drafts/{target_team_id}",
    response_model=InvestmentResponse,
    summary="Edit a draft while bidding is open",
)
async def edit_draft(
    target_team_id: UUID,
    data: DraftEditRequest,
    current_user: InvestorUser,
    db: DbSession,
) -> InvestmentResponse:
    """Change a draft amount while the market is open."""
    team_id = require_team(current_user)
    investment = await DraftLedger(db).edit_draft(team_id, target_team_id, data.amount)
    return InvestmentResponse.model_validate(investment)


@router.post(
    "/commit",
    response_model=CommitResponse,
    summary="Commit the final portfolio",
)
async def commit_portfolio(
    data: CommitRequest,
    current_user: InvestorUser,
    db: DbSession,
) -> CommitResponse:
    """Commit the whole portfolio at once.

    Drafts left out of the list are voided.
    """
    team_id = require_team(current_user)
    cluster_id = await _team_cluster_id(db, team_id)
    result = await PortfolioCommitEngine(db).commit_portfolio(
        team_id,
        cluster_id,
        [(item.target_team_id, item.amount) for item in data.investments],
        actor_id=current_user.id,
    )
    return CommitResponse(
        total_invested=result.total,
        team=TeamResponse.model_validate(result.investor),
        investments=[InvestmentResponse.model_validate(i) for i in result.investments],
        voided_drafts=result.voided_drafts,
    )
