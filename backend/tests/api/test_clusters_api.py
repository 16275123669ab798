"""
Pitch Market - Cluster API Tests
================================

Roster, stage control, schedule and results endpoints.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.api.main import app
from pitchmarket.core.engine import PortfolioCommitEngine, StageController
from pitchmarket.core.models import Cluster, Team
from tests.conftest import make_team, run_pitch


# ==========================================================================
# Roster
# ==========================================================================

class TestRosterEndpoints:

    async def test_create_cluster(self, client: AsyncClient, super_admin_headers: dict):
        response = await client.post(
            "/api/v1/clusters",
            headers=super_admin_headers,
            json={"name": "Cluster Z", "location": "Hall 3", "max_teams": 4},
        )

        assert response.status_code == 201
        data = response.json()
        assert data["name"] == "Cluster Z"
        assert data["stage"] == "onboarding"
        assert data["max_teams"] == 4
        assert data["bidding_open"] is False

    async def test_create_cluster_validation(self, client: AsyncClient, super_admin_headers: dict):
        response = await client.post(
            "/api/v1/clusters",
            headers=super_admin_headers,
            json={"name": ""},
        )

        assert response.status_code == 422

    async def test_register_team(
        self,
        client: AsyncClient,
        super_admin_headers: dict,
        cluster: Cluster,
    ):
        response = await client.post(
            "/api/v1/teams",
            headers=super_admin_headers,
            json={"name": "Delta", "domain": "Health", "cluster_id": str(cluster.id)},
        )

        assert response.status_code == 201
        data = response.json()
        assert Decimal(data["balance"]) == Decimal("1000000")
        assert data["cluster_id"] == str(cluster.id)

    async def test_list_clusters(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        teams: list[Team],
    ):
        await make_team(db_session, "Loner")

        response = await client.get("/api/v1/clusters", headers=admin_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["stats"]["assigned_teams"] == 3
        assert data["stats"]["unassigned_teams"] == 1
        assert [t["name"] for t in data["clusters"][0]["teams"]] == ["Alpha", "Bravo", "Charlie"]

    async def test_shuffle(
        self,
        client: AsyncClient,
        super_admin_headers: dict,
        teams: list[Team],
    ):
        response = await client.post(
            "/api/v1/clusters/shuffle",
            headers=super_admin_headers,
            json={"clear_previous": True},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["total_teams"] == 3
        assert data["assigned_teams"] == 3
        assert len(data["assignments"]) == 3


# ==========================================================================
# Stage Control
# ==========================================================================

class TestStageEndpoints:

    async def test_advance_and_illegal_jump(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
    ):
        url = f"/api/v1/clusters/{cluster.id}/stage"

        ok = await client.post(url, headers=admin_headers, json={"target_stage": "pitching"})
        jump = await client.post(url, headers=admin_headers, json={"target_stage": "locked"})

        assert ok.status_code == 200
        assert jump.status_code == 409
        assert jump.json()["code"] == "CONFLICT"

    async def test_override_resets(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
    ):
        url = f"/api/v1/clusters/{cluster.id}/stage"
        await client.post(url, headers=admin_headers, json={"target_stage": "pitching"})

        response = await client.post(
            url,
            headers=admin_headers,
            json={"target_stage": "onboarding", "override": True},
        )

        assert response.status_code == 200
        assert response.json()["stage"] == "onboarding"

    async def test_unknown_cluster(self, client: AsyncClient, admin_headers: dict):
        response = await client.post(
            "/api/v1/clusters/00000000-0000-0000-0000-000000000000/stage",
            headers=admin_headers,
            json={"target_stage": "pitching"},
        )

        assert response.status_code == 404

    async def test_bidding_open_and_close(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        await run_pitch(db_session, cluster.id, teams[0].id)

        opened = await client.post(f"/api/v1/clusters/{cluster.id}/bidding/open", headers=admin_headers)
        closed = await client.post(f"/api/v1/clusters/{cluster.id}/bidding/close", headers=admin_headers)

        assert opened.status_code == 200
        assert opened.json()["stage"] == "bidding"
        assert opened.json()["bidding_open"] is True
        assert opened.json()["bidding_deadline"] is not None
        assert closed.status_code == 200
        assert closed.json()["stage"] == "locked"
        assert closed.json()["bidding_open"] is False

    async def test_bidding_past_deadline(
        self,
        client: AsyncClient,
        db_session: AsyncSession,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        await run_pitch(db_session, cluster.id, teams[0].id)
        past = datetime.now(timezone.utc) - timedelta(minutes=5)

        response = await client.post(
            f"/api/v1/clusters/{cluster.id}/bidding/open",
            headers=admin_headers,
            json={"deadline": past.isoformat()},
        )

        assert response.status_code == 400
        assert response.json()["reason"] == "invalid_deadline"


# ==========================================================================
# Pitch Schedule
# ==========================================================================

class TestScheduleEndpoints:

    async def test_operator_creates_schedule(
        self,
        client: AsyncClient,
        participant_headers: dict,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        url = f"/api/v1/clusters/{cluster.id}/schedule"

        before = await client.get(url, headers=participant_headers)
        created = await client.get(url, headers=admin_headers)
        after = await client.get(url, headers=participant_headers)

        assert before.json() == []
        assert [s["position"] for s in created.json()] == [1, 2, 3]
        assert [s["team_id"] for s in after.json()] == [str(t.id) for t in teams]

    async def test_reorder(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        url = f"/api/v1/clusters/{cluster.id}/schedule"
        await client.get(url, headers=admin_headers)
        order = [str(t.id) for t in reversed(teams)]

        response = await client.put(url, headers=admin_headers, json={"team_ids": order})

        assert response.status_code == 200
        assert [s["team_id"] for s in response.json()] == order

    async def test_pitch_lifecycle(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        """Start, pause, resume and end through the API."""
        schedule = await client.get(f"/api/v1/clusters/{cluster.id}/schedule", headers=admin_headers)
        slot = schedule.json()[0]
        base = f"/api/v1/clusters/{cluster.id}/pitches/{slot['id']}"

        started = await client.post(f"{base}/start", headers=admin_headers, json={"team_id": slot["team_id"]})
        paused = await client.post(f"{base}/pause", headers=admin_headers)
        resumed = await client.post(f"{base}/resume", headers=admin_headers)
        ended = await client.post(f"{base}/end", headers=admin_headers)

        assert started.status_code == 200
        assert started.json()["status"] == "in_progress"
        assert paused.json()["paused_at"] is not None
        assert resumed.json()["paused_at"] is None
        assert ended.status_code == 200
        assert ended.json()["status"] == "completed"
        assert ended.json()["is_completed"] is True

    async def test_second_live_pitch_is_conflict(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        schedule = await client.get(f"/api/v1/clusters/{cluster.id}/schedule", headers=admin_headers)
        first, second = schedule.json()[:2]

        await client.post(
            f"/api/v1/clusters/{cluster.id}/pitches/{first['id']}/start",
            headers=admin_headers,
            json={"team_id": first["team_id"]},
        )
        response = await client.post(
            f"/api/v1/clusters/{cluster.id}/pitches/{second['id']}/start",
            headers=admin_headers,
            json={"team_id": second["team_id"]},
        )

        assert response.status_code == 409

    async def test_skip(
        self,
        client: AsyncClient,
        admin_headers: dict,
        cluster: Cluster,
        teams: list[Team],
    ):
        schedule = await client.get(f"/api/v1/clusters/{cluster.id}/schedule", headers=admin_headers)
        slot = schedule.json()[2]

        response = await client.post(
            f"/api/v1/clusters/{cluster.id}/pitches/{slot['id']}/skip",
            headers=admin_headers,
        )

        assert response.status_code == 200
        assert response.json()["status"] == "cancelled"


# ==========================================================================
# Market & Results
# ==========================================================================

@pytest.fixture
async def locked_cluster(db_session: AsyncSession, cluster: Cluster, teams: list[Team]) -> Cluster:
    """Everyone pitched and committed, bidding closed."""
    alpha, bravo, charlie = teams
    for team in teams:
        await run_pitch(db_session, cluster.id, team.id)
    await StageController(db_session).open_bidding(cluster.id)
    engine = PortfolioCommitEngine(db_session)
    await engine.commit_portfolio(alpha.id, cluster.id, [(bravo.id, Decimal("60"))])
    await engine.commit_portfolio(bravo.id, cluster.id, [(charlie.id, Decimal("20"))])
    await engine.commit_portfolio(charlie.id, cluster.id, [(bravo.id, Decimal("10"))])
    return await StageController(db_session).close_bidding(cluster.id)


class TestMarketEndpoints:

    async def test_market_sealed(
        self,
        client: AsyncClient,
        participant_headers: dict,
        cluster: Cluster,
    ):
        response = await client.get(f"/api/v1/clusters/{cluster.id}/market", headers=participant_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["sealed"] is True
        assert data["valuations"] == []
        assert data["total_pool"] is None

    async def test_market_and_results(
        self,
        client: AsyncClient,
        admin_headers: dict,
        locked_cluster: Cluster,
        teams: list[Team],
    ):
        market = await client.get(f"/api/v1/clusters/{locked_cluster.id}/market", headers=admin_headers)
        published = await client.post(f"/api/v1/clusters/{locked_cluster.id}/results", headers=admin_headers)
        again = await client.post(f"/api/v1/clusters/{locked_cluster.id}/results", headers=admin_headers)

        assert market.json()["sealed"] is False
        assert Decimal(market.json()["total_pool"]) == Decimal("90")
        assert published.status_code == 201
        assert published.json()["winner_team_id"] == str(teams[1].id)
        assert [s["team_name"] for s in published.json()["standings"]] == ["Bravo", "Charlie", "Alpha"]
        assert again.status_code == 409

    async def test_snapshot(
        self,
        client: AsyncClient,
        participant_headers: dict,
        locked_cluster: Cluster,
    ):
        response = await client.get(f"/api/v1/clusters/{locked_cluster.id}", headers=participant_headers)

        assert response.status_code == 200
        data = response.json()
        assert data["stage"] == "locked"
        assert data["all_finalized"] is True
        assert data["active_pitch"] is None


# ==========================================================================
# API Docs
# ==========================================================================

class TestOperationDocs:

    @pytest.mark.parametrize("prefix", ["/api/v1/clusters", "/api/v1/invest", "/api/v1/teams", "/api/v1/audit"])
    def test_every_operation_is_described(self, prefix: str):
        """Handler docstrings end up as operation descriptions."""
        schema = app.openapi()
        operations = [
            (path, method, operation)
            for path, methods in schema["paths"].items()
            if path.startswith(prefix)
            for method, operation in methods.items()
        ]

        assert operations
        for path, method, operation in operations:
            assert operation.get("summary"), f"{method.upper()} {path}"
            assert operation.get("description"), f"{method.upper()} {path}"
