"""
Pitch Market - Test Fixtures
============================

Shared pytest fixtures for all tests.
"""

import os

os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENVIRONMENT"] = "test"

from collections.abc import AsyncGenerator, Callable
from decimal import Decimal
from typing import Optional
from uuid import UUID, uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import StaticPool

from pitchmarket.api.deps import create_access_token
from pitchmarket.api.live import get_live_session_factory
from pitchmarket.api.main import app
from pitchmarket.core.database import Base, get_db
from pitchmarket.core.engine import PitchScheduler, RosterService
from pitchmarket.core.models import Cluster, PitchSchedule, Team, User, UserRole


# ==========================================================================
# Test Database Setup
# ==========================================================================

# Use in-memory SQLite for tests (fast)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest_asyncio.fixture(scope="function")
async def test_engine() -> AsyncGenerator[AsyncEngine, None]:
    """One in-memory database per test, shared by every session of that test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(test_engine: AsyncEngine) -> Callable[[], AsyncSession]:
    """Session factory bound to the test database (used by live streams)."""
    return async_sessionmaker(
        bind=test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autocommit=False,
        autoflush=False,
    )


# ==========================================================================
# Database Fixtures
# ==========================================================================

@pytest_asyncio.fixture(scope="function")
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a clean database session for each test."""
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture(scope="function")
async def client(db_session: AsyncSession, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """
    Provide test HTTP client with database override.
    """
    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_live_session_factory] = lambda: session_factory

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client

    app.dependency_overrides.clear()


# ==========================================================================
# Roster Fixtures
# ==========================================================================

async def make_team(
    db: AsyncSession,
    name: str,
    cluster: Optional[Cluster] = None,
    balance: Decimal = Decimal("100"),
) -> Team:
    """Insert a team with a small budget so scenarios stay readable."""
    team = Team(
        id=uuid4(),
        name=name,
        cluster_id=cluster.id if cluster else None,
        starting_balance=balance,
        balance=balance,
        total_invested=Decimal("0"),
        total_received=Decimal("0"),
        is_finalized=False,
        is_qualified=False,
    )
    db.add(team)
    await db.commit()
    await db.refresh(team)
    return team


@pytest_asyncio.fixture
async def cluster(db_session: AsyncSession) -> Cluster:
    """An onboarding cluster with 180 second pitches."""
    return await RosterService(db_session).create_cluster(
        name="Cluster A",
        location="Hall 1",
        max_teams=5,
        pitch_duration_seconds=180,
    )


@pytest_asyncio.fixture
async def teams(db_session: AsyncSession, cluster: Cluster) -> list[Team]:
    """Alpha, Bravo and Charlie, each with a balance of 100, in `cluster`."""
    return [
        await make_team(db_session, "Alpha", cluster),
        await make_team(db_session, "Bravo", cluster),
        await make_team(db_session, "Charlie", cluster),
    ]


# ==========================================================================
# User Fixtures
# ==========================================================================

async def make_user(
    db: AsyncSession,
    role: UserRole,
    team_id: Optional[UUID] = None,
    assigned_cluster_id: Optional[UUID] = None,
    is_active: bool = True,
) -> User:
    user = User(
        id=uuid4(),
        email=unique_email(),
        full_name=f"{role.value.replace('_', ' ').title()} User",
        role=role,
        team_id=team_id,
        assigned_cluster_id=assigned_cluster_id,
        is_active=is_active,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    return user


@pytest_asyncio.fixture
async def super_admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, UserRole.SUPER_ADMIN)


@pytest_asyncio.fixture
async def admin(db_session: AsyncSession) -> User:
    return await make_user(db_session, UserRole.ADMIN)


@pytest_asyncio.fixture
async def monitor(db_session: AsyncSession, cluster: Cluster) -> User:
    """Cluster monitor assigned to `cluster`."""
    return await make_user(db_session, UserRole.CLUSTER_MONITOR, assigned_cluster_id=cluster.id)


@pytest_asyncio.fixture
async def team_lead(db_session: AsyncSession, teams: list[Team]) -> User:
    """Team lead of Alpha."""
    return await make_user(db_session, UserRole.TEAM_LEAD, team_id=teams[0].id)


@pytest_asyncio.fixture
async def participant(db_session: AsyncSession, teams: list[Team]) -> User:
    """Plain member of Alpha."""
    return await make_user(db_session, UserRole.PARTICIPANT, team_id=teams[0].id)


# ==========================================================================
# Auth Fixtures
# ==========================================================================

def auth_headers_for(user: User) -> dict[str, str]:
    """Get authorization headers for a user."""
    token = create_access_token(user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin: User) -> dict[str, str]:
    return auth_headers_for(admin)


@pytest.fixture
def super_admin_headers(super_admin: User) -> dict[str, str]:
    return auth_headers_for(super_admin)


@pytest.fixture
def monitor_headers(monitor: User) -> dict[str, str]:
    return auth_headers_for(monitor)


@pytest.fixture
def lead_headers(team_lead: User) -> dict[str, str]:
    return auth_headers_for(team_lead)


@pytest.fixture
def participant_headers(participant: User) -> dict[str, str]:
    return auth_headers_for(participant)


# ==========================================================================
# Helper Functions
# ==========================================================================

def unique_email() -> str:
    """Generate a unique email for tests."""
    return f"test_{uuid4().hex[:8]}@example.com"


async def slot_for(db: AsyncSession, team_id: UUID) -> PitchSchedule:
    """The schedule slot of a team."""
    result = await db.execute(
        select(PitchSchedule)
        .where(PitchSchedule.team_id == team_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one()


async def run_pitch(
    db: AsyncSession,
    cluster_id: UUID,
    team_id: UUID,
    end: bool = True,
) -> PitchSchedule:
    """Start (and by default end) the pitch of `team_id`, creating the schedule if needed."""
    scheduler = PitchScheduler(db)
    await scheduler.ensure_schedule(cluster_id)
    slot = await slot_for(db, team_id)
    await scheduler.start_pitch(slot.id, team_id, cluster_id)
    if end:
        await scheduler.end_pitch(slot.id, cluster_id)
    return slot


async def end_pitch_of(db: AsyncSession, cluster_id: UUID, team_id: UUID) -> PitchSchedule:
    """End the live pitch of `team_id`."""
    slot = await slot_for(db, team_id)
    return await PitchScheduler(db).end_pitch(slot.id, cluster_id)
