"""
Pitch Market - WebSocket Hub
============================

Pushes live cluster snapshots to connected dashboards.
Each connection runs its own snapshot stream; disconnecting cancels it.
"""

import asyncio
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Dict, Optional
from uuid import UUID, uuid4

from fastapi import WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketState

from pitchmarket.core.errors import EngineError
from pitchmarket.core.live.stream import FRAME_ERROR, subscribe

logger = logging.getLogger(__name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# ==========================================================================
# WebSocket Message Types
# ==========================================================================

class WSMessageType(str, Enum):
    """WebSocket message types"""
    # Client -> Server
    PING = "ping"

    # Server -> Client
    STATE = "state"
    PONG = "pong"
    ERROR = "error"
    CONNECTED = "connected"


@dataclass
class WSMessage:
    """WebSocket message structure"""
    type: WSMessageType
    payload: Any
    timestamp: str = field(default_factory=_now_iso)
    message_id: str = field(default_factory=lambda: str(uuid4()))

    def to_json(self) -> str:
        return json.dumps({
            "type": self.type.value,
            "payload": self.payload,
            "timestamp": self.timestamp,
            "message_id": self.message_id,
        })

    @classmethod
    def from_json(cls, data: str) -> 'WSMessage':
        parsed = json.loads(data)
        return cls(
            type=WSMessageType(parsed["type"]),
            payload=parsed.get("payload"),
            timestamp=parsed.get("timestamp", _now_iso()),
            message_id=parsed.get("message_id", str(uuid4())),
        )


# ==========================================================================
# Connection Manager
# ==========================================================================

@dataclass
class ClientConnection:
    """A connected dashboard and the stream feeding it"""
    id: str
    websocket: WebSocket
    cluster_id: Optional[UUID] = None
    investor_team_id: Optional[UUID] = None
    session_factory: Optional[Callable[[], AsyncSession]] = None
    connected_at: str = field(default_factory=_now_iso)
    task: Optional[asyncio.Task] = None
    is_active: bool = True


class ConnectionManager:
    """
    Tracks WebSocket connections and their snapshot streams.
    Singleton shared by all endpoint invocations.
    """

    _instance: Optional['ConnectionManager'] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._initialized = False
        return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self.connections: Dict[str, ClientConnection] = {}
        self._lock = asyncio.Lock()
        self._initialized = True

    async def connect(
        self,
        websocket: WebSocket,
        cluster_id: Optional[UUID] = None,
        investor_team_id: Optional[UUID] = None,
    ) -> str:
        """Accept the socket and register it"""
        await websocket.accept()

        client_id = str(uuid4())
        connection = ClientConnection(
            id=client_id,
            websocket=websocket,
            cluster_id=cluster_id,
            investor_team_id=investor_team_id,
        )

        async with self._lock:
            self.connections[client_id] = connection

        await self._send_to_client(client_id, WSMessage(
            type=WSMessageType.CONNECTED,
            payload={
                "client_id": client_id,
                "cluster_id": str(cluster_id) if cluster_id else None,
                "investor_team_id": str(investor_team_id) if investor_team_id else None,
            }
        ))

        logger.info(f"Client {client_id} connected. Total: {len(self.connections)}")
        return client_id

    async def disconnect(self, client_id: str):
        """Drop the client and stop its stream"""
        async with self._lock:
            connection = self.connections.pop(client_id, None)

        if connection is None:
            return

        connection.is_active = False
        if connection.task is not None and not connection.task.done():
            connection.task.cancel()
            try:
                await connection.task
            except asyncio.CancelledError:
                pass

        logger.info(f"Client {client_id} disconnected. Total: {len(self.connections)}")

    def start_stream(
        self,
        client_id: str,
        interval: Optional[float] = None,
        session_factory: Optional[Callable[[], AsyncSession]] = None,
    ) -> Optional[asyncio.Task]:
        """Start pushing snapshots to the client"""
        connection = self.connections.get(client_id)
        if not connection:
            return None

        connection.session_factory = session_factory

        connection.task = asyncio.create_task(self._pump(client_id, interval))
        return connection.task

    async def _pump(self, client_id: str, interval: Optional[float]):
        connection = self.connections.get(client_id)
        if not connection:
            return

        stream = subscribe(
            cluster_id=connection.cluster_id,
            investor_team_id=connection.investor_team_id,
            interval=interval,
            session_factory=connection.session_factory,
        )
        try:
            async for frame in stream:
                if not connection.is_active:
                    break
                message_type = WSMessageType.ERROR if frame["type"] == FRAME_ERROR else WSMessageType.STATE
                await self._send_to_client(client_id, WSMessage(
                    type=message_type,
                    payload=frame["payload"],
                ))
        except EngineError as e:
            await self._send_to_client(client_id, WSMessage(
                type=WSMessageType.ERROR,
                payload={"code": e.code, "detail": e.detail},
            ))
            await self._close(connection)
        except Exception:
            logger.error(f"Snapshot stream failed for {client_id}", exc_info=True)
            await self._send_to_client(client_id, WSMessage(
                type=WSMessageType.ERROR,
                payload={"code": "INTERNAL", "detail": "Snapshot stream unavailable"},
            ))
            await self._close(connection, code=1011)
        finally:
            await stream.aclose()

    async def handle_message(self, client_id: str, message: WSMessage):
        """Handle incoming message from client"""
        if message.type == WSMessageType.PING:
            await self._send_to_client(client_id, WSMessage(
                type=WSMessageType.PONG,
                payload={"received": message.timestamp}
            ))

    async def _send_to_client(self, client_id: str, message: WSMessage):
        """Send message to specific client"""
        connection = self.connections.get(client_id)
        if not connection or not connection.is_active:
            return

        try:
            if connection.websocket.client_state == WebSocketState.CONNECTED:
                await connection.websocket.send_text(message.to_json())
        except Exception as e:
            logger.error(f"Error sending to {client_id}: {e}")
            connection.is_active = False

    async def _close(self, connection: ClientConnection, code: int = 1008):
        connection.is_active = False
        if connection.websocket.client_state == WebSocketState.CONNECTED:
            await connection.websocket.close(code=code)


# ==========================================================================
# Global Instance
# ==========================================================================

_connection_manager: Optional[ConnectionManager] = None

def get_connection_manager() -> ConnectionManager:
    """Get or create the global connection manager"""
    global _connection_manager
    if _connection_manager is None:
        _connection_manager = ConnectionManager()
    return _connection_manager


# ==========================================================================
# FastAPI WebSocket Endpoint
# ==========================================================================

async def websocket_endpoint(
    websocket: WebSocket,
    cluster_id: Optional[UUID] = None,
    investor_team_id: Optional[UUID] = None,
    interval: Optional[float] = None,
    session_factory: Optional[Callable[[], AsyncSession]] = None,
):
    """
    Stream snapshots for one cluster (or one investor team) over a socket.

    The caller is expected to be authenticated already.
    """
    manager = get_connection_manager()
    client_id = await manager.connect(websocket, cluster_id, investor_team_id)
    manager.start_stream(client_id, interval, session_factory)

    try:
        while True:
            data = await websocket.receive_text()
            try:
                message = WSMessage.from_json(data)
                await manager.handle_message(client_id, message)
            except (json.JSONDecodeError, KeyError, ValueError):
                await manager._send_to_client(client_id, WSMessage(
                    type=WSMessageType.ERROR,
                    payload={"error": "Invalid message"}
                ))
    except WebSocketDisconnect:
        await manager.disconnect(client_id)
    except Exception as e:
        logger.error(f"WebSocket error for {client_id}: {e}")
        await manager.disconnect(client_id)
