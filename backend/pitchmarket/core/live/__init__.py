"""
Pitch Market Live Sync
======================

Read-only cluster snapshots, the interval stream built on them, and the
WebSocket hub that pushes the stream to dashboards.
"""

from pitchmarket.core.live.snapshot import SnapshotBuilder, market_response
from pitchmarket.core.live.stream import FRAME_ERROR, FRAME_SNAPSHOT, subscribe
from pitchmarket.core.live.websocket_hub import (
    ConnectionManager,
    WSMessage,
    WSMessageType,
    get_connection_manager,
    websocket_endpoint,
)

__all__ = [
    "SnapshotBuilder",
    "market_response",
    "subscribe",
    "FRAME_SNAPSHOT",
    "FRAME_ERROR",
    "ConnectionManager",
    "WSMessage",
    "WSMessageType",
    "get_connection_manager",
    "websocket_endpoint",
]
