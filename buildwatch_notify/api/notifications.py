# buildwatch_notify/api/notifications.py
from fastapi import APIRouter, HTTPException, Request, status

from buildwatch_notify.services.subscription import SubscriptionContext

router = APIRouter(tags=["notifications"])


def get_context(request: Request) -> SubscriptionContext:
    return request.app.state.subscription


def _snapshot_json(context: SubscriptionContext) -> dict:
    return context.snapshot().model_dump(mode="json")


@router.get("/notifications")
async def list_notifications(request: Request):
    """
    Snapshot publicado: lista (más nueva primero), unreadCount y loading.
    """
    return _snapshot_json(get_context(request))


@router.post("/notifications/refresh")
async def refresh_notifications(request: Request):
    context = get_context(request)
    await context.refresh()
    return _snapshot_json(context)


@router.post("/notifications/mark-read/{notification_id}")
async def mark_notification_as_read(notification_id: str, request: Request):
    context = get_context(request)
    context.mark_as_read(notification_id)
    return {"ok": True, "unreadCount": context.unread_count}


@router.post("/notifications/mark-all-read")
async def mark_all_notifications_as_read(request: Request):
    context = get_context(request)
    context.mark_all_as_read()
    return {"ok": True, "unreadCount": context.unread_count}


@router.delete("/notifications")
async def clear_notifications(request: Request):
    """Vacía la lista local; no toca el backend."""
    get_context(request).clear()
    return {"ok": True}


@router.delete("/notifications/all")
async def delete_all_notifications(request: Request):
    context = get_context(request)
    if context.session is None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="No active session")
    context.delete_all()
    return {"ok": True}


@router.post("/session/activate")
async def activate_session(request: Request):
    context = get_context(request)
    if not await context.activate():
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="No stored session")
    return {"ok": True, "userId": context.session.userId}


@router.post("/session/logout")
async def logout_session(request: Request):
    get_context(request).logout()
    return {"ok": True}


# =========================
# 🔎 Diagnóstico del canal en vivo
# =========================
@router.get("/notifications/debug/channel-status")
async def debug_channel_status(request: Request):
    """
    Estado del controlador de reconexión:
    - state: idle / connecting / connected / backoff
    - attempt: intento actual de backoff
    - lastDelay / lastError: último reintento agendado y su causa
    - connectedAt / lastMessageAt
    """
    return get_context(request).controller.status()
