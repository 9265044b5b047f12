"""
WebSocket connection manager.
Tracks live dashboard connections and guards every outbound send.
"""

import logging
import time
import uuid
from typing import Dict, Optional

from fastapi import WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

logger = logging.getLogger(__name__)


class ConnectionManager:
    """
    Manages active WebSocket connections.

    Responsibilities:
    - Track active connections (session_id → websocket)
    - Handle connection lifecycle (connect, disconnect, cleanup)
    - Send JSON messages only while the socket is open
    - Close every connection on server shutdown
    """

    def __init__(self):
        """Initialize connection manager."""
        # Active connections: session_id → WebSocket
        self.active_connections: Dict[str, WebSocket] = {}

        # Session metadata: session_id → metadata dict
        self.session_metadata: Dict[str, dict] = {}

        logger.info("ConnectionManager initialized")

    async def connect(self, websocket: WebSocket) -> str:
        """
        Accept new WebSocket connection and create session.

        Args:
            websocket: WebSocket connection

        Returns:
            session_id: UUID of created session
        """
        await websocket.accept()

        session_id = str(uuid.uuid4())
        self.active_connections[session_id] = websocket
        self.session_metadata[session_id] = {
            "connected_at": int(time.time() * 1000),
            "client_info": websocket.client,
            "total_messages": 0,
            "dropped_messages": 0,
        }

        logger.info(
            f"WebSocket connected: session_id={session_id}, "
            f"client={websocket.client}, "
            f"total_connections={len(self.active_connections)}"
        )
        return session_id

    async def disconnect(self, session_id: str):
        """
        Forget a session. Later sends to it are dropped.

        Args:
            session_id: Session ID to disconnect
        """
        if session_id not in self.active_connections:
            logger.debug(f"Session already disconnected: {session_id}")
            return

        self.active_connections.pop(session_id, None)
        metadata = self.session_metadata.pop(session_id, {})

        if metadata:
            session_duration = int(time.time() * 1000) - metadata.get("connected_at", 0)
            logger.info(
                f"WebSocket disconnected: session_id={session_id}, "
                f"duration_ms={session_duration}, "
                f"total_messages={metadata.get('total_messages', 0)}, "
                f"dropped_messages={metadata.get('dropped_messages', 0)}, "
                f"remaining_connections={len(self.active_connections)}"
            )

    def is_open(self, session_id: str) -> bool:
        """True while both sides of the session's socket are connected."""
        websocket = self.active_connections.get(session_id)
        if websocket is None:
            return False
        return (
            websocket.application_state == WebSocketState.CONNECTED
            and websocket.client_state == WebSocketState.CONNECTED
        )

    async def send_message(self, session_id: str, message: dict) -> bool:
        """
        Send JSON message to specific session.

        Messages for closed or unknown sessions are dropped, never raised.

        Args:
            session_id: Target session ID
            message: Message dict to send

        Returns:
            True if sent successfully, False otherwise
        """
        if not self.is_open(session_id):
            if session_id in self.session_metadata:
                self.session_metadata[session_id]["dropped_messages"] += 1
            logger.debug(
                f"Dropping {message.get('type', 'unknown')} for closed session {session_id}"
            )
            return False

        websocket = self.active_connections[session_id]

        try:
            await websocket.send_json(message)

            if session_id in self.session_metadata:
                self.session_metadata[session_id]["total_messages"] += 1

            logger.debug(f"Message sent to session {session_id}: type={message.get('type', 'unknown')}")
            return True

        except WebSocketDisconnect:
            logger.warning(f"WebSocket disconnected while sending to session: {session_id}")
            await self.disconnect(session_id)
            return False
        except Exception as e:
            logger.error(f"Error sending message to session {session_id}: {e}", exc_info=True)
            return False

    async def close_all(self, code: int = 1001):
        """
        Close every active connection (server shutdown).

        Args:
            code: WebSocket close code sent to clients
        """
        for session_id, websocket in list(self.active_connections.items()):
            if self.is_open(session_id):
                try:
                    await websocket.close(code=code)
                except Exception as e:
                    logger.warning(f"Error closing session {session_id}: {e}")
            await self.disconnect(session_id)

        logger.info("All WebSocket connections closed")

    def get_session_count(self) -> int:
        """Get count of active sessions."""
        return len(self.active_connections)

    def get_session_metadata(self, session_id: str) -> Optional[dict]:
        """
        Get metadata for session.

        Returns:
            Session metadata dict or None if not found
        """
        return self.session_metadata.get(session_id)

    def session_exists(self, session_id: str) -> bool:
        return session_id in self.active_connections


# Global connection manager instance
connection_manager = ConnectionManager()
