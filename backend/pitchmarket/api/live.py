"""
Pitch Market - Live API
=======================

Server-sent events and WebSocket streams of cluster snapshots.
"""

import json
from collections.abc import AsyncGenerator, Callable
from typing import Annotated, Any, Optional
from uuid import UUID

import structlog
from fastapi import APIRouter, Depends, Query, Request, WebSocket, status
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.api.deps import CurrentUser, user_from_token
from pitchmarket.core.database import AsyncSessionLocal
from pitchmarket.core.errors import EngineError, RejectedError
from pitchmarket.core.live import subscribe, websocket_endpoint
from pitchmarket.core.models import User

logger = structlog.get_logger()

router = APIRouter(prefix="/live", tags=["Live"])


def get_live_session_factory() -> Callable[[], AsyncSession]:
    """Session factory used by stream ticks (overridable in tests)."""
    return AsyncSessionLocal


LiveSessionFactory = Annotated[Callable[[], AsyncSession], Depends(get_live_session_factory)]


def stream_target(user: User, cluster_id: Optional[UUID]) -> tuple[Optional[UUID], Optional[UUID]]:
    """
    Pick what a caller streams: their own team's view when they have a
    team, otherwise the cluster they name.
    """
    if user.team_id is not None:
        return cluster_id, user.team_id
    if cluster_id is None:
        raise RejectedError("cluster_id is required for callers without a team")
    return cluster_id, None


def _sse(frame: dict[str, Any]) -> str:
    return f"event: {frame['type']}\ndata: {json.dumps(frame['payload'])}\n\n"


@router.get(
    "/stream",
    summary="Snapshot stream (server-sent events)",
    response_class=StreamingResponse,
)
async def stream_snapshots(
    request: Request,
    current_user: CurrentUser,
    session_factory: LiveSessionFactory,
    cluster_id: Optional[UUID] = Query(None),
    interval: Optional[float] = Query(None, ge=0.5, le=60),
) -> StreamingResponse:
    """
    Emit a snapshot every few seconds until the client goes away.

    The first snapshot is built before the response starts, so an unknown
    cluster or team fails with a normal error response.
    """
    target_cluster_id, investor_team_id = stream_target(current_user, cluster_id)
    stream = subscribe(
        cluster_id=target_cluster_id,
        investor_team_id=investor_team_id,
        interval=interval,
        session_factory=session_factory,
    )
    first = await stream.__anext__()

    async def event_stream() -> AsyncGenerator[str, None]:
        try:
            yield _sse(first)
            async for frame in stream:
                if await request.is_disconnected():
                    break
                yield _sse(frame)
        finally:
            await stream.aclose()
            logger.info("live_stream_closed", user_id=str(current_user.id))

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={"Cache-Control": "no-cache", "X-Accel-Buffering": "no"},
    )


async def live_websocket(
    websocket: WebSocket,
    session_factory: LiveSessionFactory,
    token: str = Query(...),
    cluster_id: Optional[UUID] = Query(None),
) -> None:
    """Authenticate from the `token` query parameter, then stream over the socket."""
    try:
        async with session_factory() as session:
            user = await user_from_token(token, session)
        target_cluster_id, investor_team_id = stream_target(user, cluster_id)
    except EngineError as e:
        logger.warning("live_ws_rejected", code=e.code, detail=e.detail)
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    await websocket_endpoint(
        websocket,
        cluster_id=target_cluster_id,
        investor_team_id=investor_team_id,
        session_factory=session_factory,
    )
