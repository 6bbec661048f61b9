# buildwatch_notify/services/websocket_manager.py
import logging
from typing import Set

from fastapi import WebSocket

from buildwatch_notify.models.notification import Notification

logger = logging.getLogger(__name__)


class ToastBroadcaster:
    """
    Pantallas conectadas por WebSocket que muestran el aviso transitorio
    (título + contenido) de cada notificación que llega en vivo.
    """
    def __init__(self):
        self.active_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket):
        await websocket.accept()
        self.active_connections.add(websocket)

    def disconnect(self, websocket: WebSocket):
        self.active_connections.discard(websocket)

    async def broadcast(self, message: dict):
        dead_sockets = []
        for ws in list(self.active_connections):
            try:
                await ws.send_json(message)
            except Exception as e:
                logger.debug("[toast] socket muerto: %s", e)
                dead_sockets.append(ws)
        # limpiar sockets muertos
        for ws in dead_sockets:
            self.active_connections.discard(ws)

    async def present(self, notification: Notification):
        await self.broadcast({
            "kind": "toast",
            "title": notification.title,
            "content": notification.content,
            "notification": notification.model_dump(mode="json"),
        })
