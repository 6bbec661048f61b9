# tests/conftest.py
from typing import List, Optional

import pytest

from buildwatch_notify.config import Settings
from buildwatch_notify.errors import NotificationFetchError
from buildwatch_notify.models.notification import Notification
from buildwatch_notify.security.credential_store import MemoryCredentialStore


def make_notification(id: str, type: str = "SYSTEM", created_at: str = "2024-05-01T10:00:00Z",
                      is_read: bool = False, **extra) -> Notification:
    data = {
        "id": id,
        "userId": "u1",
        "title": f"title {id}",
        "content": f"content {id}",
        "type": type,
        "isRead": is_read,
        "createdAt": created_at,
    }
    data.update(extra)
    return Notification.model_validate(data)


class FakeChannel:
    def __init__(self, on_open, on_message, on_error, log: Optional[list] = None):
        self.on_open = on_open
        self.on_message = on_message
        self.on_error = on_error
        self.log = log
        self.url = None
        self.token = None
        self.closed = False

    def open(self, url: str, token: str):
        self.url = url
        self.token = token
        if self.log is not None:
            self.log.append("channel")

    def close(self):
        self.closed = True

    def fire_open(self):
        self.on_open()

    def fire_message(self, notification: Notification):
        self.on_message(notification)

    def fire_error(self, exc: Exception = None):
        self.on_error(exc or ConnectionError("stream dropped"))


class FakeChannelFactory:
    def __init__(self, log: Optional[list] = None, fail: bool = False):
        self.channels: List[FakeChannel] = []
        self.log = log
        self.fail = fail

    def __call__(self, on_open, on_message, on_error):
        if self.fail:
            raise RuntimeError("no transport")
        channel = FakeChannel(on_open, on_message, on_error, self.log)
        self.channels.append(channel)
        return channel

    @property
    def last(self) -> FakeChannel:
        return self.channels[-1]


class FakeClient:
    def __init__(self, batch: Optional[List[Notification]] = None, log: Optional[list] = None):
        self.batch = batch or []
        self.log = log
        self.fail = False
        self.calls = []

    async def fetch_notifications(self, user_id: str):
        self.calls.append(("fetch", user_id))
        if self.log is not None:
            self.log.append("fetch")
        if self.fail:
            raise NotificationFetchError("backend down")
        return list(self.batch)

    async def mark_as_read(self, notification_id: str):
        self.calls.append(("mark_as_read", notification_id))

    async def mark_all_as_read(self, user_id: str):
        self.calls.append(("mark_all_as_read", user_id))

    async def delete_all(self, user_id: str):
        self.calls.append(("delete_all", user_id))

    async def aclose(self):
        self.calls.append(("aclose",))


@pytest.fixture
def settings():
    return Settings(
        api_base_url="http://api.test",
        reconnect_base_delay=1.0,
        reconnect_max_attempts=5,
        reconnect_ceiling=60.0,
    )


@pytest.fixture
def staff_credentials():
    return MemoryCredentialStore(access_token="opaque-token", user_id="u1", user_type="staff")


@pytest.fixture
def resident_credentials():
    return MemoryCredentialStore(access_token="opaque-token", user_id="u1", user_type="resident")
