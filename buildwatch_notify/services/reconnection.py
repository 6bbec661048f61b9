# buildwatch_notify/services/reconnection.py
import asyncio
import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Optional

from buildwatch_notify.config import Settings
from buildwatch_notify.infra.event_channel import LiveEventChannel, OnError, OnMessage, OnOpen
from buildwatch_notify.models.notification import Notification, SessionIdentity
from buildwatch_notify.security.credential_store import CredentialStore

logger = logging.getLogger(__name__)

ChannelFactory = Callable[[OnOpen, OnMessage, OnError], LiveEventChannel]


class ConnectionState(str, Enum):
    IDLE = "idle"
    CONNECTING = "connecting"
    CONNECTED = "connected"
    BACKOFF = "backoff"


class Backoff:
    """
    Errores 1..max_attempts -> base * 2^intento.
    El error siguiente al tope reinicia el contador y espera el techo
    completo (60s por defecto) antes de volver a empezar.
    """

    def __init__(self, base: float = 1.0, max_attempts: int = 5, ceiling: float = 60.0):
        self.base = base
        self.max_attempts = max_attempts
        self.ceiling = ceiling
        self.attempt = 0

    def next_delay(self) -> float:
        if self.attempt >= self.max_attempts:
            self.attempt = 0
            return self.ceiling
        self.attempt += 1
        return self.base * 2 ** self.attempt

    def reset(self):
        self.attempt = 0


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


class ReconnectionController:
    """
    Dueño del único LiveEventChannel de la sesión.

    IDLE -> CONNECTING -> CONNECTED
    CONNECTING/CONNECTED --error--> BACKOFF --timer--> CONNECTING
    cualquiera --teardown--> IDLE

    Sólo trigger() y teardown() se llaman desde afuera; ambos deben
    invocarse dentro del event loop.
    """

    def __init__(self, credentials: CredentialStore, channel_factory: ChannelFactory,
                 settings: Settings, on_message: OnMessage,
                 on_session: Optional[Callable[[SessionIdentity], None]] = None):
        self.credentials = credentials
        self.channel_factory = channel_factory
        self.settings = settings
        self._on_message = on_message
        self._on_session = on_session
        self.backoff = Backoff(
            base=settings.reconnect_base_delay,
            max_attempts=settings.reconnect_max_attempts,
            ceiling=settings.reconnect_ceiling,
        )
        self.state = ConnectionState.IDLE
        self._channel: Optional[LiveEventChannel] = None
        self._timer: Optional[asyncio.TimerHandle] = None
        # cada canal nuevo sube la generación; eventos de canales viejos se ignoran
        self._generation = 0
        self.last_delay: Optional[float] = None
        self.last_error: Optional[str] = None
        self.connected_at: Optional[str] = None
        self.last_message_at: Optional[str] = None

    def trigger(self):
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            return
        self._cancel_timer()
        self._connect()

    def teardown(self):
        self._generation += 1
        self._cancel_timer()
        self._close_channel()
        self.backoff.reset()
        if self.state != ConnectionState.IDLE:
            logger.info("[reconnect] teardown, canal cerrado")
        self.state = ConnectionState.IDLE

    def status(self) -> dict:
        return {
            "state": self.state.value,
            "attempt": self.backoff.attempt,
            "lastDelay": self.last_delay,
            "lastError": self.last_error,
            "connectedAt": self.connected_at,
            "lastMessageAt": self.last_message_at,
        }

    def _connect(self):
        self.state = ConnectionState.CONNECTING
        try:
            session = self.credentials.load_session()
            if session is None:
                logger.info("[reconnect] sin sesión, no se abre el canal")
                self.state = ConnectionState.IDLE
                return
            if self._on_session is not None:
                self._on_session(session)

            self._close_channel()
            self._generation += 1
            generation = self._generation
            self._channel = self.channel_factory(
                lambda: self._handle_open(generation),
                lambda n: self._handle_message(generation, n),
                lambda exc: self._handle_error(generation, exc),
            )
            logger.info("[reconnect] ⚙️ conectando canal de %s", session.userId)
            self._channel.open(self.settings.realtime_url(session.userId), session.accessToken)
        except Exception as e:
            logger.warning("[reconnect] falló el setup del canal: %s", e)
            self._schedule_retry(e)

    def _handle_open(self, generation: int):
        if generation != self._generation:
            return
        self.state = ConnectionState.CONNECTED
        self.backoff.reset()
        self.connected_at = _now()

    def _handle_message(self, generation: int, notification: Notification):
        if generation != self._generation:
            return
        self.last_message_at = _now()
        self._on_message(notification)

    def _handle_error(self, generation: int, exc: Exception):
        if generation != self._generation:
            return
        self._schedule_retry(exc)

    def _schedule_retry(self, exc: Exception):
        self._close_channel()
        self._cancel_timer()
        # invalida callbacks tardíos del canal que acaba de fallar
        self._generation += 1
        delay = self.backoff.next_delay()
        self.last_delay = delay
        self.last_error = str(exc)
        self.state = ConnectionState.BACKOFF
        logger.info("[reconnect] 🔁 reintento en %ss (intento %s)", delay, self.backoff.attempt)
        self._timer = asyncio.get_running_loop().call_later(delay, self._on_timer)

    def _on_timer(self):
        self._timer = None
        if self.state != ConnectionState.BACKOFF:
            return
        self._connect()

    def _cancel_timer(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None

    def _close_channel(self):
        if self._channel is not None:
            self._channel.close()
            self._channel = None
