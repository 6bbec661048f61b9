# buildwatch_notify/services/subscription.py
import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Set, Union

from buildwatch_notify.config import Settings
from buildwatch_notify.errors import MissingSessionError, NotificationFetchError
from buildwatch_notify.infra.event_channel import LiveEventChannel
from buildwatch_notify.infra.notification_client import NotificationClient
from buildwatch_notify.models.notification import Notification, NotificationSnapshot, SessionIdentity
from buildwatch_notify.security.credential_store import CredentialStore
from buildwatch_notify.services.reconciler import Listener, NotificationReconciler
from buildwatch_notify.services.reconnection import ChannelFactory, ReconnectionController

logger = logging.getLogger(__name__)

ToastPresenter = Callable[[Notification], Union[None, Awaitable[None]]]


class SubscriptionContext:
    """
    Punto de entrada de la sesión: historial + canal en vivo + estado
    publicado. Se construye una vez por sesión y se desarma con teardown().
    """

    def __init__(self, settings: Settings, credentials: CredentialStore,
                 client: NotificationClient,
                 channel_factory: Optional[ChannelFactory] = None,
                 presenter: Optional[ToastPresenter] = None):
        self.settings = settings
        self.credentials = credentials
        self.client = client
        self.presenter = presenter
        self.reconciler = NotificationReconciler()
        self.controller = ReconnectionController(
            credentials,
            channel_factory or self._default_channel,
            settings,
            on_message=self._on_push,
            on_session=self._use_session,
        )
        self.session: Optional[SessionIdentity] = None
        self.active = False
        self._tasks: Set[asyncio.Task] = set()
        self._fetches_in_flight = 0

    def _default_channel(self, on_open, on_message, on_error) -> LiveEventChannel:
        return LiveEventChannel(on_open, on_message, on_error,
                                connect_timeout=self.settings.http_timeout)

    # ---- lectura ----

    def snapshot(self) -> NotificationSnapshot:
        return self.reconciler.snapshot()

    @property
    def unread_count(self) -> int:
        return self.reconciler.unread_count

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        return self.reconciler.subscribe(listener)

    # ---- ciclo de vida ----

    async def activate(self) -> bool:
        """
        1) leer sesión  2) traer historial  3) abrir canal en vivo.
        Sin sesión no se hace nada ni se agenda reintento.
        """
        session = self.credentials.load_session()
        if session is None:
            logger.info("[context] sin sesión, activación abandonada")
            return False
        if self._identity_changed(session):
            # otro usuario (o rol): se cierra el canal y la lista del anterior
            logger.info("[context] cambio de sesión %s -> %s", self.session.userId, session.userId)
            self.teardown()
        self._use_session(session)
        self.active = True
        await self._fetch(session.userId)
        # teardown durante el fetch: no resucitar el canal
        if self.active:
            self.controller.trigger()
        return True

    async def refresh(self):
        session = self.credentials.load_session()
        if session is None:
            logger.info("[context] refresh sin sesión")
            return
        if self._identity_changed(session):
            await self.activate()
            return
        self._use_session(session)
        await self._fetch(session.userId)

    def teardown(self):
        self.active = False
        self.controller.teardown()
        self.reconciler.clear()
        self.session = None

    def logout(self):
        self.teardown()
        self.credentials.clear()

    async def aclose(self):
        self.teardown()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)
        await self.client.aclose()

    # ---- mutaciones ----

    def add_notification(self, notification: Notification) -> bool:
        return self.reconciler.merge_push(notification)

    def mark_as_read(self, notification_id: str):
        self.reconciler.mark_as_read(notification_id)
        if self.session is not None:
            self._spawn(self.client.mark_as_read(notification_id), "mark_as_read")

    def mark_all_as_read(self):
        self.reconciler.mark_all_as_read()
        if self.session is not None:
            self._spawn(self.client.mark_all_as_read(self.session.userId), "mark_all_as_read")

    def clear(self):
        self.reconciler.clear()

    def delete_all(self):
        self.reconciler.clear()
        if self.session is not None:
            self._spawn(self.client.delete_all(self.session.userId), "delete_all")

    # ---- internos ----

    def _use_session(self, session: SessionIdentity):
        self.session = session
        self.reconciler.user_type = session.userType

    def _identity_changed(self, session: SessionIdentity) -> bool:
        if self.session is None:
            return False
        return (session.userId != self.session.userId
                or session.userType != self.session.userType)

    async def _fetch(self, user_id: str):
        # activate() y refresh() pueden solaparse: loading sigue en True
        # mientras quede algún fetch en curso
        self._fetches_in_flight += 1
        self.reconciler.set_loading(True)
        try:
            fetched = await self.client.fetch_notifications(user_id)
        except (NotificationFetchError, MissingSessionError) as e:
            # se conserva la lista que ya había
            logger.warning("[context] error trayendo notificaciones: %s", e)
        else:
            # la sesión pudo cambiar (o cerrarse) mientras esperábamos
            if self.session is not None and self.session.userId == user_id:
                self.reconciler.merge_batch(fetched)
        finally:
            self._fetches_in_flight -= 1
            self.reconciler.set_loading(self._fetches_in_flight > 0)

    def _on_push(self, notification: Notification):
        if not self.reconciler.merge_push(notification):
            return
        if self.presenter is None:
            return
        result = self.presenter(notification)
        if inspect.isawaitable(result):
            self._spawn(result, "toast")

    def _spawn(self, awaitable, label: str):
        task = asyncio.ensure_future(awaitable)
        self._tasks.add(task)

        def _done(t: asyncio.Task):
            self._tasks.discard(t)
            if t.cancelled():
                return
            exc = t.exception()
            if exc is not None:
                logger.warning("[context] %s falló: %s", label, exc)

        task.add_done_callback(_done)
