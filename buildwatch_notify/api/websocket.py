# buildwatch_notify/api/websocket.py
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

router = APIRouter(tags=["websocket"])


@router.websocket("/ws/toasts")
async def websocket_toasts(websocket: WebSocket):
    """
    La UI se conecta acá para recibir los avisos de notificaciones en vivo:
      ws://localhost:8001/ws/toasts
    """
    toasts = websocket.app.state.toasts
    await toasts.connect(websocket)
    try:
        # mantener la conexión viva; lo que mande el cliente se ignora
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        toasts.disconnect(websocket)
