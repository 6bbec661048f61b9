# buildwatch_notify/main.py
from typing import Optional

from dotenv import load_dotenv

# 1) cargar variables de entorno del .env
load_dotenv()

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from buildwatch_notify.api.notifications import router as notifications_router
from buildwatch_notify.api.websocket import router as ws_router
from buildwatch_notify.config import Settings, configure_logging
from buildwatch_notify.infra.notification_client import NotificationClient
from buildwatch_notify.security.credential_store import CredentialStore, FileCredentialStore
from buildwatch_notify.services.reconnection import ChannelFactory
from buildwatch_notify.services.subscription import SubscriptionContext
from buildwatch_notify.services.websocket_manager import ToastBroadcaster


def create_app(settings: Optional[Settings] = None,
               credentials: Optional[CredentialStore] = None,
               client: Optional[NotificationClient] = None,
               channel_factory: Optional[ChannelFactory] = None,
               activate_on_startup: bool = True) -> FastAPI:
    settings = settings or Settings.from_env()
    configure_logging(settings.log_level)
    credentials = credentials or FileCredentialStore(settings.credentials_path)
    client = client or NotificationClient(settings, credentials)

    app = FastAPI(title="BuildWatch Notifications")

    # 2) CORS: la UI corre en otro origen
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # 3) estado de la sesión: un solo contexto por proceso, inyectado vía app.state
    toasts = ToastBroadcaster()
    app.state.toasts = toasts
    app.state.subscription = SubscriptionContext(
        settings, credentials, client,
        channel_factory=channel_factory,
        presenter=toasts.present,
    )

    # 4) rutas REST + WebSocket de avisos
    app.include_router(notifications_router)
    app.include_router(ws_router)

    @app.on_event("startup")
    async def startup_event():
        # 5) activar la sesión guardada (si no hay, queda en espera de /session/activate)
        if activate_on_startup:
            await app.state.subscription.activate()

    @app.on_event("shutdown")
    async def shutdown_event():
        await app.state.subscription.aclose()

    return app


app = create_app()
