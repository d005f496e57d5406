import asyncio
from unittest.mock import patch

from channels.db import database_sync_to_async
from channels.exceptions import ChannelFull
from channels.testing import WebsocketCommunicator
from django.contrib.auth import get_user_model
from django.test import SimpleTestCase, TransactionTestCase
from rest_framework_simplejwt.tokens import AccessToken

from realtime.consumers import DispatchConsumer
from realtime.middleware import JWTOrCookieAuthMiddleware
from realtime.notifications import publish_event_async
from realtime.registry import DISPATCH_MESSAGE_TYPE, ConnectionRegistry, Peer, channel_layer_sender

User = get_user_model()

EVENT = {"type": "STATUS_UPDATE", "rideId": 1, "status": "cancelled", "updaterId": 3}


class FakeSender:
    """Records deliveries; channels listed in `broken` raise, those in `stuck` hang."""

    def __init__(self, broken=(), stuck=(), full=()):
        self.broken = set(broken)
        self.stuck = set(stuck)
        self.full = set(full)
        self.delivered = []

    async def __call__(self, channel_name, message):
        if channel_name in self.broken:
            raise ConnectionResetError("socket closed")
        if channel_name in self.full:
            raise ChannelFull()
        if channel_name in self.stuck:
            await asyncio.sleep(10)
        self.delivered.append((channel_name, message))

    def channels(self):
        return [name for name, _ in self.delivered]


class ConnectionRegistryTests(SimpleTestCase):
    async def make_registry(self, sender, *peers, timeout=1):
        registry = ConnectionRegistry(sender=sender, send_timeout=timeout)
        for peer in peers:
            await registry.register(peer)
        return registry

    async def test_failed_peer_is_dropped_and_others_receive_once(self):
        a, b, c = Peer("a", 1, "passenger"), Peer("b", 2, "driver"), Peer("c", 3, "driver")
        sender = FakeSender(broken={"b"})
        registry = await self.make_registry(sender, a, b, c)

        delivered = await registry.broadcast(EVENT)

        self.assertEqual(delivered, 2)
        self.assertEqual(sorted(sender.channels()), ["a", "c"])
        self.assertEqual(await registry.snapshot(), [a, c])
        for _, message in sender.delivered:
            self.assertEqual(message, {"type": "dispatch.event", "event": EVENT})

        # The dropped peer is gone for later broadcasts too
        await registry.broadcast(EVENT)
        self.assertEqual(sorted(sender.channels()), ["a", "a", "c", "c"])

    async def test_dropped_peer_is_asked_to_close(self):
        delivered = []

        async def rejects_events(channel_name, message):
            if message["type"] == DISPATCH_MESSAGE_TYPE:
                raise ConnectionResetError("stale socket")
            delivered.append((channel_name, message))

        registry = await self.make_registry(rejects_events, Peer("stale", 1))

        self.assertEqual(await registry.broadcast(EVENT), 0)
        self.assertEqual(delivered, [("stale", {"type": "dispatch.close"})])
        self.assertEqual(await registry.snapshot(), [])

    async def test_slow_peer_times_out_without_blocking_others(self):
        fast, slow = Peer("fast", 1), Peer("slow", 2)
        sender = FakeSender(stuck={"slow"})
        registry = await self.make_registry(sender, fast, slow, timeout=0.05)

        delivered = await asyncio.wait_for(registry.broadcast(EVENT), timeout=2)

        self.assertEqual(delivered, 1)
        self.assertEqual(sender.channels(), ["fast"])
        self.assertEqual(await registry.snapshot(), [fast])

    async def test_full_channel_counts_as_failure(self):
        registry = await self.make_registry(FakeSender(full={"x"}), Peer("x", 1), Peer("y", 2))
        self.assertEqual(await registry.broadcast(EVENT), 1)
        self.assertEqual([p.channel_name for p in await registry.snapshot()], ["y"])

    async def test_excluding_skips_origin(self):
        origin, other = Peer("origin", 1), Peer("other", 2)
        sender = FakeSender()
        registry = await self.make_registry(sender, origin, other)

        self.assertEqual(await registry.broadcast(EVENT, excluding=origin), 1)
        self.assertEqual(await registry.broadcast(EVENT, excluding="other"), 1)
        self.assertEqual(sender.channels(), ["other", "origin"])

    async def test_audience_filters_peers(self):
        sender = FakeSender()
        registry = await self.make_registry(
            sender, Peer("p", 1, "passenger"), Peer("d", 2, "driver"), Peer("q", 3, "passenger"),
        )

        delivered = await registry.broadcast(EVENT, audience=lambda peer: peer.is_driver or peer.user_id == 1)

        self.assertEqual(delivered, 2)
        self.assertEqual(sorted(sender.channels()), ["d", "p"])

    async def test_broadcast_with_no_peers(self):
        sender = FakeSender()
        registry = await self.make_registry(sender)
        self.assertEqual(await registry.broadcast(EVENT), 0)
        self.assertEqual(sender.delivered, [])

    async def test_unregister_is_idempotent(self):
        peer = Peer("a", 1)
        registry = await self.make_registry(FakeSender(), peer)
        self.assertTrue(await registry.unregister(peer))
        self.assertFalse(await registry.unregister("a"))
        self.assertEqual(await registry.snapshot(), [])

    async def test_concurrent_register_and_broadcast(self):
        sender = FakeSender()
        registry = await self.make_registry(sender)
        peers = [Peer(f"peer-{i}", i) for i in range(50)]

        await asyncio.gather(
            *(registry.register(peer) for peer in peers),
            *(registry.broadcast(EVENT) for _ in range(5)),
        )

        self.assertEqual(len(await registry.snapshot()), 50)
        self.assertTrue(all(name.startswith("peer-") for name in sender.channels()))

    async def test_publish_never_raises(self):
        registry = await self.make_registry(FakeSender(), Peer("a", 1))

        async def explode(*args, **kwargs):
            raise RuntimeError("registry broken")

        with patch("realtime.notifications.get_connection_registry", return_value=registry):
            with patch.object(registry, "broadcast", explode):
                self.assertEqual(await publish_event_async(EVENT), 0)


def with_user(application, user):
    async def app(scope, receive, send):
        return await application(dict(scope, user=user), receive, send)
    return app


class DispatchConsumerTests(TransactionTestCase):
    def setUp(self):
        self.registry = ConnectionRegistry(send_timeout=1)
        patcher = patch("realtime.consumers.dispatch_consumer.get_connection_registry", return_value=self.registry)
        patcher.start()
        self.addCleanup(patcher.stop)

    async def connect(self, user):
        communicator = WebsocketCommunicator(with_user(DispatchConsumer.as_asgi(), user), "/ws/dispatch/")
        connected, _ = await communicator.connect()
        return communicator, connected

    async def test_connection_registers_and_receives_events(self):
        driver = User(id=7, username="driver", role="driver", is_verified=True)
        communicator, connected = await self.connect(driver)
        self.assertTrue(connected)

        greeting = await communicator.receive_json_from()
        self.assertEqual(greeting, {"type": "connection_established", "user_id": 7, "role": "driver"})

        peers = await self.registry.snapshot()
        self.assertEqual([(p.user_id, p.role) for p in peers], [(7, "driver")])

        delivered = await self.registry.broadcast(EVENT)
        self.assertEqual(delivered, 1)
        self.assertEqual(await communicator.receive_json_from(), EVENT)

        await communicator.send_json_to({"type": "ping"})
        self.assertEqual(await communicator.receive_json_from(), {"type": "pong"})

        await communicator.disconnect()
        self.assertEqual(await self.registry.snapshot(), [])

    async def test_dropped_connection_is_closed(self):
        async def rejects_events(channel_name, message):
            if message["type"] == DISPATCH_MESSAGE_TYPE:
                raise ConnectionResetError("stale socket")
            await channel_layer_sender(channel_name, message)

        registry = ConnectionRegistry(sender=rejects_events, send_timeout=1)
        with patch("realtime.consumers.dispatch_consumer.get_connection_registry", return_value=registry):
            communicator, _ = await self.connect(User(id=9, username="rider", role="passenger"))
            await communicator.receive_json_from()

            self.assertEqual(await registry.broadcast(EVENT), 0)
            self.assertEqual(await communicator.receive_output(), {"type": "websocket.close", "code": 4000})
            self.assertEqual(await registry.snapshot(), [])
            await communicator.disconnect()

    async def test_unknown_messages_get_an_error(self):
        communicator, _ = await self.connect(User(id=8, username="rider", role="passenger"))
        await communicator.receive_json_from()

        await communicator.send_json_to({"type": "teleport"})
        self.assertEqual((await communicator.receive_json_from())["type"], "error")

        await communicator.send_json_to({"rideId": 1})
        self.assertEqual(
            await communicator.receive_json_from(),
            {"type": "error", "message": "Message type is required"},
        )
        await communicator.disconnect()

    async def test_anonymous_connection_is_refused(self):
        from django.contrib.auth.models import AnonymousUser

        communicator, connected = await self.connect(AnonymousUser())
        self.assertFalse(connected)
        self.assertEqual(await self.registry.snapshot(), [])


async def capture_user(scope, receive, send):
    await send({"type": "websocket.accept"})
    await send({"type": "websocket.send", "text": str(scope["user"].id)})


class JWTMiddlewareTests(TransactionTestCase):
    def setUp(self):
        self.user = User.objects.create_user(username="rider", password="pass1234")

    async def resolve(self, path):
        communicator = WebsocketCommunicator(JWTOrCookieAuthMiddleware(capture_user), path)
        await communicator.connect()
        user_id = await communicator.receive_from()
        await communicator.disconnect()
        return user_id

    async def test_token_in_query_string(self):
        token = await database_sync_to_async(AccessToken.for_user)(self.user)
        self.assertEqual(await self.resolve(f"/ws/dispatch/?token={token}"), str(self.user.id))

    async def test_invalid_token_is_anonymous(self):
        self.assertEqual(await self.resolve("/ws/dispatch/?token=not-a-jwt"), "None")

    async def test_missing_token_is_anonymous(self):
        self.assertEqual(await self.resolve("/ws/dispatch/"), "None")
