# buildwatch_notify/config.py
import logging
import os

from pydantic import BaseModel


class Settings(BaseModel):
    api_base_url: str = "http://localhost:8080"
    # plantillas de rutas; {userId} / {notificationId} se sustituyen en tiempo de uso
    realtime_path: str = "/api/notifications/stream/{userId}"
    notifications_path: str = "/api/notifications/user/{userId}"
    read_path: str = "/api/notifications/{notificationId}/read"
    mark_all_path: str = "/api/notifications/user/{userId}/read-all"
    delete_all_path: str = "/api/notifications/user/{userId}"

    credentials_path: str = "credentials.json"
    http_timeout: float = 30.0

    reconnect_base_delay: float = 1.0
    reconnect_max_attempts: int = 5
    reconnect_ceiling: float = 60.0

    log_level: str = "INFO"

    @classmethod
    def from_env(cls) -> "Settings":
        """
        Lee la configuración de variables de entorno (cargadas desde .env
        por main.py). Lo que no esté definido usa el valor por defecto.
        """
        env = {
            "api_base_url": os.getenv("API_BASE_URL"),
            "realtime_path": os.getenv("REAL_TIME_NOTIFICATION"),
            "notifications_path": os.getenv("GET_NOTIFICATION_BY_USER_ID"),
            "read_path": os.getenv("READ_NOTIFICATION"),
            "mark_all_path": os.getenv("MARK_ALL_AS_READ"),
            "delete_all_path": os.getenv("DELETE_ALL_NOTIFICATION"),
            "credentials_path": os.getenv("CREDENTIALS_PATH"),
            "http_timeout": os.getenv("HTTP_TIMEOUT"),
            "reconnect_base_delay": os.getenv("RECONNECT_BASE_DELAY"),
            "reconnect_max_attempts": os.getenv("RECONNECT_MAX_ATTEMPTS"),
            "reconnect_ceiling": os.getenv("RECONNECT_CEILING"),
            "log_level": os.getenv("LOG_LEVEL"),
        }
        return cls(**{k: v for k, v in env.items() if v is not None})

    def realtime_url(self, user_id: str) -> str:
        return self.api_base_url.rstrip("/") + self.realtime_path.replace("{userId}", user_id)


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)-8s [%(name)s] %(message)s",
    )
