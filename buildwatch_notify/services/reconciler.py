# buildwatch_notify/services/reconciler.py
import logging
from typing import Callable, Iterable, List, Optional

from buildwatch_notify.models.notification import Notification, NotificationSnapshot

logger = logging.getLogger(__name__)

Listener = Callable[[NotificationSnapshot], None]


def is_visible(notification: Notification, user_type: Optional[str]) -> bool:
    """
    Qué tipos ve cada rol:
      staff    -> tipos que contienen "staff", SYSTEM y TASK_ASSIGNMENT
      resident -> tipos que contienen "resident" y SYSTEM
    Cualquier otro rol (o ninguno) no ve nada.
    """
    noti_type = notification.type or ""
    if user_type == "staff":
        return ("staff" in noti_type.lower()
                or noti_type == "SYSTEM"
                or noti_type == "TASK_ASSIGNMENT")
    if user_type == "resident":
        return "resident" in noti_type.lower() or noti_type == "SYSTEM"
    return False


def _sort_newest_first(items: List[Notification]) -> List[Notification]:
    # sort estable: a igual createdAt se conserva el orden previo
    return sorted(items, key=lambda n: n.createdAt, reverse=True)


class NotificationReconciler:
    """
    Lista en memoria de un suscriptor: sin ids repetidos, filtrada por rol
    y ordenada de más nueva a más vieja. Cada operación publica un
    snapshot nuevo.
    Se usa desde un solo event loop y ningún método hace await, así que
    cada operación corre entera sin intercalarse con otra.
    """

    def __init__(self, user_type: Optional[str] = None):
        self.user_type = user_type
        self._items: List[Notification] = []
        self._loading = False
        self._listeners: List[Listener] = []

    @property
    def notifications(self) -> List[Notification]:
        return list(self._items)

    @property
    def unread_count(self) -> int:
        return sum(1 for n in self._items if not n.isRead)

    def snapshot(self) -> NotificationSnapshot:
        return NotificationSnapshot(
            notifications=tuple(self._items),
            unreadCount=self.unread_count,
            loading=self._loading,
        )

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def set_loading(self, loading: bool):
        if self._loading == loading:
            return
        self._loading = loading
        self._publish()

    def merge_batch(self, fetched: Iterable[Notification]) -> int:
        """
        Agrega lo traído por REST que todavía no esté en la lista.
        Nunca pisa ni borra entradas existentes. Devuelve cuántas entraron.
        """
        seen = {n.id for n in self._items}
        added = []
        for n in fetched:
            if n.id in seen or not is_visible(n, self.user_type):
                continue
            seen.add(n.id)
            added.append(n)
        if not added:
            return 0
        self._items = _sort_newest_first(self._items + added)
        logger.debug("[reconciler] lote: %s nuevas", len(added))
        self._publish()
        return len(added)

    def merge_push(self, notification: Notification) -> bool:
        """
        Agrega una notificación empujada por el canal en vivo.
        Devuelve False si se descartó (rol) o ya estaba (entrega duplicada).
        """
        if not is_visible(notification, self.user_type):
            return False
        if any(n.id == notification.id for n in self._items):
            return False
        self._items = _sort_newest_first([notification] + self._items)
        self._publish()
        return True

    def mark_as_read(self, notification_id: str) -> bool:
        changed = False
        items = []
        for n in self._items:
            if n.id == notification_id and not n.isRead:
                n = n.model_copy(update={"isRead": True})
                changed = True
            items.append(n)
        self._items = items
        if changed:
            self._publish()
        return changed

    def mark_all_as_read(self):
        self._items = [
            n if n.isRead else n.model_copy(update={"isRead": True})
            for n in self._items
        ]
        self._publish()

    def clear(self):
        self._items = []
        self._publish()

    def _publish(self):
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception:
                logger.exception("[reconciler] listener falló")
