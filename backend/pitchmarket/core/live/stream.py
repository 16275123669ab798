"""
Live Sync Channel - Interval stream of cluster snapshots.

`subscribe` is an infinite async generator. Each tick borrows a session
just long enough to build one snapshot, so a stream never holds a
connection while it sleeps and nothing is buffered between ticks.
Closing the generator (or cancelling the task iterating it) ends it.
"""

import asyncio
from collections.abc import AsyncIterator, Callable
from typing import Any, Optional
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from pitchmarket.core.config import settings
from pitchmarket.core.database import AsyncSessionLocal
from pitchmarket.core.errors import EngineError
from pitchmarket.core.live.snapshot import SnapshotBuilder

logger = structlog.get_logger()


FRAME_SNAPSHOT = "snapshot"
FRAME_ERROR = "error"


async def subscribe(
    cluster_id: Optional[UUID] = None,
    investor_team_id: Optional[UUID] = None,
    interval: Optional[float] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
) -> AsyncIterator[dict[str, Any]]:
    """
    Yield `{"type": "snapshot", "payload": {...}}` frames forever.

    Errors on the first tick propagate (e.g. NotFoundError for an unknown
    cluster). Later failures are logged and reported as an error frame;
    the stream keeps going.
    """
    interval = settings.LIVE_SYNC_INTERVAL_SECONDS if interval is None else interval
    session_factory = session_factory or AsyncSessionLocal
    first = True

    while True:
        try:
            async with session_factory() as session:
                snapshot = await SnapshotBuilder(session).build(
                    cluster_id=cluster_id,
                    investor_team_id=investor_team_id,
                )
            frame = {"type": FRAME_SNAPSHOT, "payload": snapshot.model_dump(mode="json")}
        except EngineError as e:
            if first:
                raise
            logger.warning(
                "live_snapshot_rejected",
                cluster_id=str(cluster_id) if cluster_id else None,
                code=e.code,
                detail=e.detail,
            )
            frame = {"type": FRAME_ERROR, "payload": {"code": e.code, "detail": e.detail}}
        except Exception:
            if first:
                raise
            logger.error(
                "live_snapshot_failed",
                cluster_id=str(cluster_id) if cluster_id else None,
                exc_info=True,
            )
            frame = {
                "type": FRAME_ERROR,
                "payload": {"code": "INTERNAL", "detail": "Snapshot temporarily unavailable"},
            }

        first = False
        yield frame
        await asyncio.sleep(interval)
