import json
import logging

from fastapi import APIRouter, HTTPException, WebSocket, WebSocketDisconnect

from modules.auth.manager import identity_from_token
from modules.shared.deps import get_user_directory
from .manager import MODERATORS_TOPIC
from .utils import manager, topic_broadcast_all, topic_for_user

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def ws_notifications(websocket: WebSocket):
    """Public feed: verified and resolved incidents."""
    topic = topic_broadcast_all()
    await manager.connect(websocket, topic)
    try:
        while True:
            # Keep connection alive; messages from client are ignored
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        await manager.disconnect(websocket, topic)


@router.websocket("/ws/me")
async def ws_notifications_me(websocket: WebSocket):
    """Personal feed. The first message must be {"token": "<jwt>"}."""
    topics = []
    await websocket.accept()
    try:
        first_message = await websocket.receive_text()
        try:
            token = json.loads(first_message).get("token")
        except (ValueError, AttributeError):
            token = None
        if not token:
            await websocket.close(code=4001, reason="No token provided")
            return

        try:
            identity = await identity_from_token(token, get_user_directory())
        except HTTPException as e:
            logger.warning(f"Invalid token in WebSocket connection: {e.detail}")
            await websocket.close(code=4001, reason="Invalid token")
            return

        topics.append(topic_for_user(identity.user_id))
        if identity.is_privileged:
            topics.append(MODERATORS_TOPIC)
        for topic in topics:
            await manager.connect(websocket, topic, accept=False)
        await websocket.send_json({"event": "subscribed", "data": {"topics": topics}})

        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        for topic in topics:
            await manager.disconnect(websocket, topic)
