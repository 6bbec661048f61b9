"""
Contexto de suscripción: activación, entregas en vivo, mutaciones, teardown.
"""
import asyncio

from conftest import FakeChannelFactory, FakeClient, make_notification

from buildwatch_notify.security.credential_store import MemoryCredentialStore
from buildwatch_notify.services.reconnection import ConnectionState
from buildwatch_notify.services.subscription import SubscriptionContext


def _context(settings, credentials, client, factory, toasts=None):
    return SubscriptionContext(
        settings, credentials, client,
        channel_factory=factory,
        presenter=(toasts.append if toasts is not None else None),
    )


def _ids(context):
    return [n.id for n in context.snapshot().notifications]


class TestActivation:

    def test_fetch_before_channel(self, settings, staff_credentials):
        log = []
        client = FakeClient([make_notification("h1", type="staff_alert")], log=log)
        factory = FakeChannelFactory(log=log)
        context = _context(settings, staff_credentials, client, factory)

        async def run():
            ok = await context.activate()
            context.teardown()
            return ok

        assert asyncio.run(run()) is True
        assert log == ["fetch", "channel"]
        assert client.calls[0] == ("fetch", "u1")

    def test_batch_is_role_filtered(self, settings, resident_credentials):
        client = FakeClient([
            make_notification("1", type="staff_alert"),
            make_notification("2", type="resident_reminder"),
        ])
        context = _context(settings, resident_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            ids = _ids(context)
            context.teardown()
            return ids

        assert asyncio.run(run()) == ["2"]

    def test_missing_session_does_nothing(self, settings):
        client = FakeClient()
        factory = FakeChannelFactory()
        context = _context(settings, MemoryCredentialStore(), client, factory)

        assert asyncio.run(context.activate()) is False
        assert client.calls == []
        assert factory.channels == []
        assert context.controller.state == ConnectionState.IDLE

    def test_fetch_error_still_opens_channel(self, settings, staff_credentials):
        client = FakeClient()
        client.fail = True
        factory = FakeChannelFactory()
        context = _context(settings, staff_credentials, client, factory)

        async def run():
            await context.activate()
            loading = context.snapshot().loading
            context.teardown()
            return loading

        assert asyncio.run(run()) is False
        assert len(factory.channels) == 1


class TestLiveDelivery:

    def test_push_shows_toast_batch_does_not(self, settings, staff_credentials):
        toasts = []
        client = FakeClient([make_notification("h1", type="SYSTEM")])
        factory = FakeChannelFactory()
        context = _context(settings, staff_credentials, client, factory, toasts)

        async def run():
            await context.activate()
            factory.last.fire_open()
            factory.last.fire_message(make_notification("p1", type="TASK_ASSIGNMENT",
                                                        created_at="2024-06-01T00:00:00Z"))
            factory.last.fire_message(make_notification("p1", type="TASK_ASSIGNMENT"))
            factory.last.fire_message(make_notification("h1", type="SYSTEM"))
            factory.last.fire_message(make_notification("r1", type="resident_reminder"))
            ids = _ids(context)
            context.teardown()
            return ids

        assert asyncio.run(run()) == ["p1", "h1"]
        assert [n.id for n in toasts] == ["p1"]
        assert toasts[0].title == "title p1"

    def test_async_presenter_is_awaited(self, settings, staff_credentials):
        shown = []

        async def presenter(notification):
            shown.append(notification.id)

        factory = FakeChannelFactory()
        context = SubscriptionContext(settings, staff_credentials, FakeClient(),
                                      channel_factory=factory, presenter=presenter)

        async def run():
            await context.activate()
            factory.last.fire_message(make_notification("p1"))
            await asyncio.sleep(0)
            await context.aclose()

        asyncio.run(run())
        assert shown == ["p1"]

    def test_refresh_keeps_channel(self, settings, staff_credentials):
        client = FakeClient([make_notification("h1")])
        factory = FakeChannelFactory()
        context = _context(settings, staff_credentials, client, factory)

        async def run():
            await context.activate()
            factory.last.fire_open()
            client.batch.append(make_notification("h2", created_at="2024-07-01T00:00:00Z"))
            await context.refresh()
            result = _ids(context), context.controller.state
            context.teardown()
            return result

        ids, state = asyncio.run(run())
        assert ids == ["h2", "h1"]
        assert state == ConnectionState.CONNECTED
        assert len(factory.channels) == 1

    def test_refresh_failure_keeps_stale_list(self, settings, staff_credentials):
        client = FakeClient([make_notification("h1")])
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            client.fail = True
            await context.refresh()
            ids = _ids(context)
            context.teardown()
            return ids

        assert asyncio.run(run()) == ["h1"]

    def test_add_notification_has_no_toast(self, settings, staff_credentials):
        toasts = []
        context = _context(settings, staff_credentials, FakeClient(), FakeChannelFactory(), toasts)

        async def run():
            await context.activate()
            assert context.add_notification(make_notification("m1"))
            context.teardown()

        asyncio.run(run())
        assert toasts == []


class TestMutations:

    def test_mutations_update_locally_and_call_backend(self, settings, staff_credentials):
        client = FakeClient([
            make_notification("id1", created_at="2024-01-01T00:00:00Z"),
            make_notification("id2", created_at="2024-01-02T00:00:00Z"),
            make_notification("id3", created_at="2024-01-03T00:00:00Z"),
        ])
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            context.mark_as_read("id2")
            counts = [context.unread_count]
            context.mark_all_as_read()
            counts.append(context.unread_count)
            context.delete_all()
            counts.append(context.unread_count)
            await asyncio.sleep(0)
            await context.aclose()
            return counts

        assert asyncio.run(run()) == [2, 0, 0]
        assert ("mark_as_read", "id2") in client.calls
        assert ("mark_all_as_read", "u1") in client.calls
        assert ("delete_all", "u1") in client.calls

    def test_clear_is_local_only(self, settings, staff_credentials):
        client = FakeClient([make_notification("h1")])
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            context.clear()
            snapshot = context.snapshot()
            context.teardown()
            return snapshot

        snapshot = asyncio.run(run())
        assert snapshot.notifications == ()
        assert snapshot.unreadCount == 0
        assert [c[0] for c in client.calls] == ["fetch"]

    def test_backend_failure_is_absorbed(self, settings, staff_credentials):
        class FailingClient(FakeClient):
            async def mark_as_read(self, notification_id):
                raise ConnectionError("offline")

        client = FailingClient([make_notification("h1")])
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            context.mark_as_read("h1")
            await asyncio.sleep(0)
            read = context.snapshot().notifications[0].isRead
            await context.aclose()
            return read

        assert asyncio.run(run()) is True


class TestTeardown:

    def test_teardown_discards_everything(self, settings, staff_credentials):
        factory = FakeChannelFactory()
        context = _context(settings, staff_credentials, FakeClient([make_notification("h1")]), factory)

        async def run():
            await context.activate()
            factory.last.fire_open()
            context.teardown()
            context.teardown()
            # eventos tardíos del canal cerrado no reviven la lista
            factory.last.fire_message(make_notification("late"))
            return context.snapshot(), context.controller.state

        snapshot, state = asyncio.run(run())
        assert snapshot.notifications == ()
        assert state == ConnectionState.IDLE
        assert factory.last.closed
        assert context.session is None


class TestSessionSwitch:

    def test_activate_for_another_user_replaces_channel_and_list(self, settings):
        credentials = MemoryCredentialStore("opaque-token", "u1", "staff")
        client = FakeClient([make_notification("a-sys", type="SYSTEM")])
        factory = FakeChannelFactory()
        context = _context(settings, credentials, client, factory)

        async def run():
            await context.activate()
            first = factory.last
            first.fire_open()
            first.fire_message(make_notification("u1-push", type="staff_alert",
                                                  created_at="2024-06-01T00:00:00Z"))

            credentials.user_id = "u2"
            credentials.user_type = "resident"
            client.batch = [make_notification("b-res", type="resident_reminder")]
            await context.activate()

            # el canal viejo ya no entrega nada a la sesión nueva
            first.fire_message(make_notification("u1-late", type="SYSTEM"))
            ids = _ids(context)
            context.teardown()
            return first, ids

        first, ids = asyncio.run(run())
        assert first.closed
        assert len(factory.channels) == 2
        assert factory.last.url.endswith("/u2")
        assert ids == ["b-res"]
        assert client.calls[-1] == ("fetch", "u2")

    def test_same_user_activate_keeps_channel(self, settings, staff_credentials):
        factory = FakeChannelFactory()
        context = _context(settings, staff_credentials, FakeClient([make_notification("h1")]), factory)

        async def run():
            await context.activate()
            factory.last.fire_open()
            await context.activate()
            ids = _ids(context)
            context.teardown()
            return ids

        assert asyncio.run(run()) == ["h1"]
        assert len(factory.channels) == 1

    def test_refresh_after_user_switch_reactivates(self, settings):
        credentials = MemoryCredentialStore("opaque-token", "u1", "staff")
        client = FakeClient([make_notification("a-sys")])
        factory = FakeChannelFactory()
        context = _context(settings, credentials, client, factory)

        async def run():
            await context.activate()
            credentials.user_id = "u2"
            client.batch = [make_notification("b-sys")]
            await context.refresh()
            ids = _ids(context)
            context.teardown()
            return ids

        assert asyncio.run(run()) == ["b-sys"]
        assert factory.last.url.endswith("/u2")

    def test_logout_clears_stored_credentials(self, settings, staff_credentials):
        client = FakeClient([make_notification("h1")])
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            await context.activate()
            context.logout()
            await context.refresh()
            return _ids(context)

        assert asyncio.run(run()) == []
        assert staff_credentials.load_session() is None
        assert [c[0] for c in client.calls] == ["fetch"]


class GatedClient(FakeClient):
    """Cada fetch espera a que el test libere su gate."""

    def __init__(self):
        super().__init__()
        self.gates = []

    async def fetch_notifications(self, user_id: str):
        gate = asyncio.Event()
        self.gates.append(gate)
        await gate.wait()
        return [make_notification(f"f{len(self.gates)}")]


class TestLoading:

    def test_loading_stays_on_while_any_fetch_runs(self, settings, staff_credentials):
        client = GatedClient()
        context = _context(settings, staff_credentials, client, FakeChannelFactory())

        async def run():
            activating = asyncio.ensure_future(context.activate())
            await asyncio.sleep(0)
            refreshing = asyncio.ensure_future(context.refresh())
            await asyncio.sleep(0)
            states = [context.snapshot().loading]

            client.gates[0].set()
            await activating
            states.append(context.snapshot().loading)

            client.gates[1].set()
            await refreshing
            states.append(context.snapshot().loading)
            context.teardown()
            return states

        assert asyncio.run(run()) == [True, True, False]
