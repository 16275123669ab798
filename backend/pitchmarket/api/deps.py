"""
Pitch Market - API Dependencies
===============================

Shared dependencies for FastAPI endpoints.

Identity is issued elsewhere; this module only verifies bearer tokens
signed with the shared secret and maps them to a `User` row carrying the
role, owning team and (for monitors) the operated cluster.
"""

import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated, NamedTuple, Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.config import settings
from pitchmarket.core.database import get_db
from pitchmarket.core.errors import ForbiddenError, UnauthenticatedError
from pitchmarket.core.models import User, UserRole


# ==========================================================================
# Security
# ==========================================================================

security = HTTPBearer(auto_error=False)

OPERATOR_ROLES = (UserRole.ADMIN, UserRole.CLUSTER_MONITOR, UserRole.SUPER_ADMIN)
INVESTOR_ROLES = (UserRole.TEAM_LEAD, UserRole.SUPER_ADMIN)


class Caller(NamedTuple):
    """Who is acting: user, owning team and role."""
    user_id: UUID
    team_id: Optional[UUID]
    role: UserRole


# ==========================================================================
# Token Utilities
# ==========================================================================

def create_access_token(
    user_id: UUID,
    expires_delta: Optional[timedelta] = None,
) -> str:
    """
    Create a new access token.

    Args:
        user_id: User's UUID
        expires_delta: Optional custom expiration time

    Returns:
        Encoded JWT token
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)

    expire = datetime.now(timezone.utc) + expires_delta

    payload = {
        "sub": str(user_id),
        "exp": expire,
        "iat": datetime.now(timezone.utc),
        "type": "access",
        "jti": secrets.token_hex(16),  # Unique token identifier
    }

    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_token(token: str) -> dict:
    """
    Decode and validate a JWT token.

    Raises:
        UnauthenticatedError: If token is invalid or expired
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM],
        )
    except JWTError as e:
        raise UnauthenticatedError("Invalid or expired token") from e


async def user_from_token(token: str, db: AsyncSession) -> User:
    """Resolve an access token to an active user."""
    payload = decode_token(token)

    if payload.get("type") != "access":
        raise UnauthenticatedError("Invalid token type")

    user_id_str = payload.get("sub")
    if user_id_str is None:
        raise UnauthenticatedError("Invalid token payload")

    try:
        user_id = UUID(user_id_str)
    except ValueError as e:
        raise UnauthenticatedError("Invalid user ID in token") from e

    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise UnauthenticatedError("User not found")
    if not user.is_active:
        raise UnauthenticatedError("User account is deactivated")

    return user


# ==========================================================================
# User Dependencies
# ==========================================================================

async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: Annotated[AsyncSession, Depends(get_db)],
) -> User:
    """
    Get the current authenticated user.

    Raises:
        UnauthenticatedError: No or invalid bearer token
    """
    if credentials is None:
        raise UnauthenticatedError("Not authenticated")

    return await user_from_token(credentials.credentials, db)


def resolve_caller(user: User) -> Caller:
    return Caller(user_id=user.id, team_id=user.team_id, role=user.role)


def has_role(user: User, *roles: UserRole) -> bool:
    return user.role in roles


def require_roles(*roles: UserRole):
    """
    Dependency factory restricting an endpoint to the given roles.

    Usage:
        @router.post("/x")
        async def x(user: Annotated[User, Depends(require_roles(UserRole.ADMIN))]):
            ...
    """
    async def dependency(
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        if not has_role(current_user, *roles):
            raise ForbiddenError(
                f"Requires role: {', '.join(r.value for r in roles)}"
            )
        return current_user

    return dependency


def ensure_cluster_access(user: User, cluster_id: UUID) -> None:
    """Cluster monitors may only operate the cluster they are assigned to."""
    if user.role == UserRole.CLUSTER_MONITOR and user.assigned_cluster_id != cluster_id:
        raise ForbiddenError("Not assigned to this cluster")


def require_team(user: User) -> UUID:
    """Owning team of the caller."""
    caller = resolve_caller(user)
    if caller.team_id is None:
        raise ForbiddenError("No team assigned")
    return caller.team_id


# ==========================================================================
# Type Aliases for Dependency Injection
# ==========================================================================

CurrentUser = Annotated[User, Depends(get_current_user)]
OperatorUser = Annotated[User, Depends(require_roles(*OPERATOR_ROLES))]
InvestorUser = Annotated[User, Depends(require_roles(*INVESTOR_ROLES))]
SuperAdminUser = Annotated[User, Depends(require_roles(UserRole.SUPER_ADMIN))]
DbSession = Annotated[AsyncSession, Depends(get_db)]
