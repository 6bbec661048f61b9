# buildwatch_notify/infra/notification_client.py
import logging
from typing import Any, List, Optional

import httpx

from buildwatch_notify.config import Settings
from buildwatch_notify.errors import MissingSessionError, NotificationFetchError
from buildwatch_notify.models.envelope import normalize_notifications
from buildwatch_notify.models.notification import Notification
from buildwatch_notify.security.credential_store import CredentialStore
from buildwatch_notify.security.jwt_utils import bearer_header

logger = logging.getLogger(__name__)


class NotificationClient:
    """
    Cliente REST de notificaciones del backend.
    El token se toma del CredentialStore en cada request (puede cambiar
    entre un login y otro).
    """

    def __init__(self, settings: Settings, credentials: CredentialStore,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.credentials = credentials
        self._client = httpx.AsyncClient(
            base_url=settings.api_base_url,
            timeout=settings.http_timeout,
            headers={"Content-Type": "application/json"},
            transport=transport,
        )

    def _auth_headers(self) -> dict:
        session = self.credentials.load_session()
        if session is None:
            raise MissingSessionError("no hay sesión activa")
        return bearer_header(session.accessToken)

    async def _request(self, method: str, path: str) -> Any:
        response = await self._client.request(method, path, headers=self._auth_headers())
        response.raise_for_status()
        if not response.content:
            return None
        return response.json()

    async def fetch_notifications(self, user_id: str) -> List[Notification]:
        path = self.settings.notifications_path.replace("{userId}", user_id)
        logger.debug("[fetch] GET %s", path)
        try:
            body = await self._request("GET", path)
        except (httpx.HTTPError, ValueError) as e:
            raise NotificationFetchError(f"no se pudo traer el historial de {user_id}: {e}") from e
        return normalize_notifications(body)

    async def mark_as_read(self, notification_id: str):
        path = self.settings.read_path.replace("{notificationId}", notification_id)
        return await self._request("PUT", path)

    async def mark_all_as_read(self, user_id: str):
        path = self.settings.mark_all_path.replace("{userId}", user_id)
        return await self._request("PUT", path)

    async def delete_all(self, user_id: str):
        path = self.settings.delete_all_path.replace("{userId}", user_id)
        return await self._request("DELETE", path)

    async def aclose(self):
        await self._client.aclose()
