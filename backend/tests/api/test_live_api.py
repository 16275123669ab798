"""
Pitch Market - Live API Tests
=============================

Server-sent event stream of cluster snapshots.
"""

import json
from uuid import uuid4

import pytest
from httpx import AsyncClient
from starlette.requests import Request

from pitchmarket.api.live import stream_snapshots, stream_target
from pitchmarket.core.errors import RejectedError
from pitchmarket.core.models import Cluster, Team, User


def fake_request() -> Request:
    """A request whose client never goes away."""
    request = Request({"type": "http", "method": "GET", "path": "/api/v1/live/stream", "headers": []})

    async def is_disconnected() -> bool:
        return False

    request.is_disconnected = is_disconnected
    return request


def parse_event(chunk: str) -> tuple[str, dict]:
    event_line, data_line = chunk.strip().split("\n")
    return event_line.removeprefix("event: "), json.loads(data_line.removeprefix("data: "))


class TestStreamTarget:

    async def test_team_member_streams_own_team(self, team_lead: User, teams: list[Team]):
        assert stream_target(team_lead, None) == (None, teams[0].id)

    async def test_operator_needs_cluster(self, admin: User):
        with pytest.raises(RejectedError):
            stream_target(admin, None)


class TestSnapshotStream:

    async def test_stream_emits_snapshots(
        self,
        session_factory,
        admin: User,
        cluster: Cluster,
        teams: list[Team],
    ):
        response = await stream_snapshots(
            fake_request(),
            current_user=admin,
            session_factory=session_factory,
            cluster_id=cluster.id,
            interval=0.01,
        )
        assert response.media_type == "text/event-stream"

        chunks = []
        async for chunk in response.body_iterator:
            chunks.append(chunk)
            if len(chunks) == 2:
                break
        await response.body_iterator.aclose()

        events = [parse_event(c) for c in chunks]
        assert [name for name, _ in events] == ["snapshot", "snapshot"]
        assert events[0][1]["cluster_id"] == str(cluster.id)
        assert events[0][1]["teams_total"] == 3

    async def test_stream_for_team_member(
        self,
        session_factory,
        team_lead: User,
        cluster: Cluster,
        teams: list[Team],
    ):
        response = await stream_snapshots(
            fake_request(),
            current_user=team_lead,
            session_factory=session_factory,
            cluster_id=None,
            interval=0.01,
        )

        chunk = await response.body_iterator.__anext__()
        await response.body_iterator.aclose()

        _, payload = parse_event(chunk)
        assert payload["investor_team_id"] == str(teams[0].id)
        assert payload["investments"] == []

    async def test_unknown_cluster_is_404(self, client: AsyncClient, admin_headers: dict):
        response = await client.get(
            "/api/v1/live/stream",
            headers=admin_headers,
            params={"cluster_id": str(uuid4())},
        )

        assert response.status_code == 404

    async def test_operator_without_cluster_is_400(self, client: AsyncClient, admin_headers: dict):
        response = await client.get("/api/v1/live/stream", headers=admin_headers)

        assert response.status_code == 400

    async def test_requires_authentication(self, client: AsyncClient):
        response = await client.get("/api/v1/live/stream")

        assert response.status_code == 401
