# buildwatch_notify/models/notification.py
from datetime import datetime, timezone
from typing import Optional, Tuple

from pydantic import BaseModel, ConfigDict, field_validator


class Notification(BaseModel):
    model_config = ConfigDict(extra="ignore")

    id: str
    userId: str = ""
    title: str = ""
    content: str = ""
    type: str = ""
    link: Optional[str] = None
    isRead: bool = False
    relatedId: Optional[str] = None
    createdAt: datetime

    @field_validator("id", "userId", "relatedId", mode="before")
    @classmethod
    def _coerce_str(cls, value):
        # el backend a veces manda ids numéricos
        if isinstance(value, int):
            return str(value)
        return value

    @field_validator("createdAt")
    @classmethod
    def _assume_utc(cls, value: datetime) -> datetime:
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value


class SessionIdentity(BaseModel):
    userId: str
    accessToken: str
    userType: Optional[str] = None


class NotificationSnapshot(BaseModel):
    """
    Vista publicada del estado: lo único que ven los consumidores.
    """
    model_config = ConfigDict(frozen=True)

    notifications: Tuple[Notification, ...] = ()
    unreadCount: int = 0
    loading: bool = False
