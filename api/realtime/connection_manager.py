"""
WebSocket Connection Manager for the staff console.

Every console socket receives conversation.updated events; message.created
events go only to sockets subscribed to that conversation.
"""

import logging
from typing import Dict, List, Set

from fastapi import WebSocket

from api.schemas import ConversationOut, MessageOut

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages console WebSocket connections and their subscriptions."""

    def __init__(self):
        self._connections: List[WebSocket] = []
        self._subscriptions: Dict[str, Set[WebSocket]] = {}

    async def connect(self, websocket: WebSocket):
        """Accept and register a WebSocket connection."""
        await websocket.accept()
        self._connections.append(websocket)
        logger.info(f"Console connected (total: {self.active_count})")

    def disconnect(self, websocket: WebSocket):
        """Remove a WebSocket connection and its subscriptions."""
        self._connections = [ws for ws in self._connections if ws is not websocket]
        for conversation_id in list(self._subscriptions.keys()):
            self.unsubscribe(websocket, conversation_id)
        logger.info(f"Console disconnected (total: {self.active_count})")

    def subscribe(self, websocket: WebSocket, conversation_id: str):
        self._subscriptions.setdefault(conversation_id, set()).add(websocket)

    def unsubscribe(self, websocket: WebSocket, conversation_id: str):
        subscribers = self._subscriptions.get(conversation_id)
        if subscribers is None:
            return
        subscribers.discard(websocket)
        if not subscribers:
            del self._subscriptions[conversation_id]

    async def _send(self, sockets: List[WebSocket], message: dict):
        dead = []
        for ws in sockets:
            try:
                await ws.send_json(message)
            except Exception:
                dead.append(ws)
        # Clean up dead connections
        for ws in dead:
            self.disconnect(ws)

    async def broadcast(self, message: dict):
        """Send to every connected console."""
        await self._send(list(self._connections), message)

    async def send_to_subscribers(self, conversation_id: str, message: dict):
        await self._send(list(self._subscriptions.get(conversation_id, ())), message)

    # ── Domain notifications ──────────────────────────────────────

    async def conversation_updated(self, conversation):
        payload = ConversationOut.model_validate(conversation).model_dump(mode="json")
        await self.broadcast({"type": "conversation.updated", "data": payload})

    async def message_created(self, message):
        payload = MessageOut.model_validate(message).model_dump(mode="json")
        await self.send_to_subscribers(
            message.conversation_id, {"type": "message.created", "data": payload}
        )

    @property
    def active_count(self) -> int:
        return len(self._connections)
