"""
WebSocket Connection Manager
"""

from typing import Dict, Optional, Set

from fastapi import WebSocket

from app.core.logging import get_logger

logger = get_logger(__name__)


class ConnectionManager:
    def __init__(self):
        # chat_id -> active websockets
        self.active_connections: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket, chat_id: str):
        await websocket.accept()
        if chat_id not in self.active_connections:
            self.active_connections[chat_id] = set()
        self.active_connections[chat_id].add(websocket)

    def disconnect(self, websocket: WebSocket, chat_id: str):
        if chat_id in self.active_connections:
            self.active_connections[chat_id].discard(websocket)
            if not self.active_connections[chat_id]:
                del self.active_connections[chat_id]

    async def send_personal_message(self, message: dict, websocket: WebSocket):
        await websocket.send_json(message)

    async def broadcast(self, message: dict, chat_id: str, exclude: Optional[WebSocket] = None) -> int:
        """
        Best-effort fan-out to every socket in a chat.

        A failing socket is logged and dropped; the caller never sees the error.
        Returns the number of sockets that received the message.
        """
        delivered = 0
        for connection in list(self.active_connections.get(chat_id, ())):
            if connection is exclude:
                continue
            try:
                await connection.send_json(message)
                delivered += 1
            except Exception as e:
                logger.warning("ws.broadcast.failed", chat_id=chat_id, error=str(e))
                self.disconnect(connection, chat_id)
        return delivered
