# buildwatch_notify/infra/event_channel.py
import asyncio
import json
import logging
from typing import AsyncIterator, Callable, Optional

import httpx
from pydantic import ValidationError

from buildwatch_notify.models.notification import Notification

logger = logging.getLogger(__name__)

OnOpen = Callable[[], None]
OnMessage = Callable[[Notification], None]
OnError = Callable[[Exception], None]


class ChannelClosed(Exception):
    """El servidor cerró el stream o respondió con error."""


async def iter_sse_data(lines: AsyncIterator[str]) -> AsyncIterator[str]:
    """
    Framing de Server-Sent Events: junta las líneas "data:" de un evento
    y lo entrega al llegar la línea en blanco. Comentarios (":") y los
    campos event/id/retry se ignoran.
    """
    buffer = []
    async for line in lines:
        if line == "":
            if buffer:
                yield "\n".join(buffer)
                buffer = []
            continue
        if line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "data":
            buffer.append(value)
    if buffer:
        yield "\n".join(buffer)


class LiveEventChannel:
    """
    Una conexión SSE por usuario. Avisa a su dueño con tres callbacks:
      on_open()            -> el servidor aceptó el stream
      on_message(notif)    -> llegó una notificación válida
      on_error(exc)        -> se cayó la conexión (o nunca abrió)
    Los payloads mal formados se tiran acá mismo, no son errores.
    """

    def __init__(self, on_open: OnOpen, on_message: OnMessage, on_error: OnError,
                 transport: Optional[httpx.AsyncBaseTransport] = None,
                 connect_timeout: float = 30.0):
        self._on_open = on_open
        self._on_message = on_message
        self._on_error = on_error
        self._transport = transport
        self._connect_timeout = connect_timeout
        self._task: Optional[asyncio.Task] = None
        self._closed = False

    @property
    def is_open(self) -> bool:
        return self._task is not None and not self._task.done()

    def open(self, url: str, token: str):
        if self._task is not None:
            self.close()
        self._closed = False
        self._task = asyncio.get_running_loop().create_task(self._run(url, token))

    def close(self):
        self._closed = True
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def _run(self, url: str, token: str):
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "text/event-stream",
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
        }
        # read=None: el stream puede pasar mucho rato sin eventos
        timeout = httpx.Timeout(self._connect_timeout, read=None)
        try:
            async with httpx.AsyncClient(transport=self._transport, timeout=timeout) as client:
                async with client.stream("GET", url, headers=headers) as response:
                    if response.status_code >= 400:
                        raise ChannelClosed(f"el stream respondió {response.status_code}")
                    logger.info("[channel] ✅ stream abierto: %s", url)
                    self._on_open()
                    async for data in iter_sse_data(response.aiter_lines()):
                        self._dispatch(data)
            raise ChannelClosed("el servidor cerró el stream")
        except asyncio.CancelledError:
            raise
        except Exception as e:
            if self._closed:
                return
            logger.info("[channel] 🔌 conexión caída: %s", e)
            self._on_error(e)

    def _dispatch(self, data: str):
        try:
            notification = Notification.model_validate(json.loads(data))
        except (ValueError, ValidationError) as e:
            logger.debug("[channel] payload descartado: %s", e)
            return
        try:
            self._on_message(notification)
        except Exception:
            logger.exception("[channel] error entregando notificación %s", notification.id)
