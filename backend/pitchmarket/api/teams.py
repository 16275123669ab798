"""
Pitch Market - Teams API
========================

Team registration.
"""

from fastapi import APIRouter, status

from pitchmarket.api.deps import DbSession, SuperAdminUser
from pitchmarket.core.engine import RosterService
from pitchmarket.core.schemas import TeamCreate, TeamResponse

router = APIRouter(prefix="/teams", tags=["Teams"])


@router.post(
    "",
    response_model=TeamResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a team",
)
async def register_team(
    data: TeamCreate,
    current_user: SuperAdminUser,
    db: DbSession,
) -> TeamResponse:
    """Register a team with the fixed starting balance, optionally into a cluster."""
    team = await RosterService(db).register_team(
        name=data.name,
        domain=data.domain,
        cluster_id=data.cluster_id,
        actor_id=current_user.id,
    )
    return TeamResponse.model_validate(team)
