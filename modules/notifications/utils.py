import asyncio
import logging
from typing import Dict, Set
from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """In-memory WebSocket connection registry grouped by topic."""
    def __init__(self) -> None:
        self._topic_to_connections: Dict[str, Set[WebSocket]] = {}
        self._lock = asyncio.Lock()

    async def connect(self, websocket: WebSocket, topic: str, accept: bool = True) -> None:
        if accept:
            await websocket.accept()
        async with self._lock:
            self._topic_to_connections.setdefault(topic, set()).add(websocket)
        logger.debug(f"WebSocket subscribed to {topic}")

    async def disconnect(self, websocket: WebSocket, topic: str) -> None:
        async with self._lock:
            conns = self._topic_to_connections.get(topic)
            if conns and websocket in conns:
                conns.remove(websocket)
                if not conns:
                    self._topic_to_connections.pop(topic, None)

    def subscribers(self, topic: str) -> int:
        return len(self._topic_to_connections.get(topic, ()))

    async def broadcast(self, topic: str, message: dict) -> int:
        """Send `message` to every socket on `topic`; returns how many received it."""
        delivered = 0
        # Copy to avoid size change during iteration
        for ws in list(self._topic_to_connections.get(topic, set())):
            try:
                await ws.send_json(message)
                delivered += 1
            except Exception as e:
                logger.info(f"Dropping broken WebSocket on {topic}: {e}")
                await self.disconnect(ws, topic)
        return delivered


manager = ConnectionManager()


def topic_for_user(user_id: str) -> str:
    return f"user:{user_id}"


def topic_broadcast_all() -> str:
    return "broadcast:all"
