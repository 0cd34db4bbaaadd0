"""
Real-time console updates over WebSocket.
"""

import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect, status

from api.middleware.auth import authenticate_websocket
from api.schemas import ConversationSummary
from database.repositories import ConversationRepository

logger = logging.getLogger(__name__)
router = APIRouter(tags=["realtime"])

SNAPSHOT_LIMIT = 100


async def _send_snapshot(websocket: WebSocket, services):
    async with services.session_factory() as session:
        conversations = await ConversationRepository(session).list_recent(limit=SNAPSHOT_LIMIT)
    await websocket.send_json({
        "type": "snapshot",
        "data": [
            ConversationSummary.model_validate(c).model_dump(mode="json")
            for c in conversations
        ],
    })


@router.websocket("/ws/console")
async def console_socket(websocket: WebSocket):
    """
    Live console feed.

    Receives: {"action": "subscribe"|"unsubscribe", "conversation_id": "..."}
              {"action": "resync"}
    Sends: {"type": "snapshot"|"conversation.updated"|"message.created"|"error", "data": ...}
    """
    if authenticate_websocket(websocket) is None:
        await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
        return

    services = websocket.app.state.services
    manager = services.connection_manager
    await manager.connect(websocket)

    try:
        await _send_snapshot(websocket, services)
        while True:
            try:
                data = json.loads(await websocket.receive_text())
            except ValueError:
                await websocket.send_json({"type": "error", "data": "Invalid JSON"})
                continue
            if not isinstance(data, dict):
                await websocket.send_json({"type": "error", "data": "Expected a JSON object"})
                continue
            action = data.get("action")
            conversation_id = data.get("conversation_id")

            if action == "subscribe" and conversation_id:
                manager.subscribe(websocket, conversation_id)
                await websocket.send_json({"type": "subscribed", "data": conversation_id})
            elif action == "unsubscribe" and conversation_id:
                manager.unsubscribe(websocket, conversation_id)
                await websocket.send_json({"type": "unsubscribed", "data": conversation_id})
            elif action == "resync":
                await _send_snapshot(websocket, services)
            else:
                await websocket.send_json({"type": "error", "data": f"Unknown action: {action}"})

    except WebSocketDisconnect:
        logger.debug("Console socket closed by client")
    finally:
        manager.disconnect(websocket)
