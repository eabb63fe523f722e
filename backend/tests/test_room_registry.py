import asyncio
import json

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from bookingchat.core.exceptions import Forbidden, NotFound
from bookingchat.core.security import Actor
from bookingchat.realtime.relay import EventBus, RedisRelay
from bookingchat.realtime.room_registry import RoomRegistry, Session, chat_room, inbox_room
from bookingchat.services import realtime_service
from bookingchat.services.visibility import Visibility
from conftest import actor_of

CUSTOMER = Actor(id=1, role="customer")
STAFF = Actor(id=2, role="staff")
ADMIN = Actor(id=4, role="admin")


class RecordingTransport:
    def __init__(self, broken=False):
        self.frames = []
        self.broken = broken

    async def send_json(self, data):
        if self.broken:
            raise RuntimeError("socket closed")
        self.frames.append(data)


def session_for(actor, broken=False):
    return Session(actor=actor, transport=RecordingTransport(broken))


@pytest.fixture
def registry():
    return RoomRegistry()


async def test_add_remove_and_drop(registry):
    session = session_for(CUSTOMER)
    await registry.add("chat:1", session)
    await registry.add("user-1", session)
    assert registry.is_member("chat:1", session)
    assert registry.room_count == 2
    assert registry.session_count == 1

    await registry.remove("chat:1", session)
    await registry.remove("chat:1", session)
    assert not registry.is_member("chat:1", session)
    assert registry.members("chat:1") == []

    await registry.drop_session(session)
    assert registry.room_count == 0
    assert session.rooms == set()


async def test_deliver_applies_visibility_per_recipient(registry):
    customer, staff, admin = session_for(CUSTOMER), session_for(STAFF), session_for(ADMIN)
    for s in (customer, staff, admin):
        await registry.add("chat:1", s)

    event = {"type": "message_created", "chatId": 1, "messageId": 9}
    reached = await registry.deliver("chat:1", event, visibility=Visibility(is_private=True, sender_id=STAFF.id))
    assert reached == 2
    assert customer.transport.frames == []
    assert staff.transport.frames == [event]
    assert admin.transport.frames == [event]

    reached = await registry.deliver("chat:1", event, visibility=Visibility(is_private=False, sender_id=STAFF.id))
    assert reached == 3


async def test_deliver_excludes_user_and_ignores_unknown_room(registry):
    staff = session_for(STAFF)
    await registry.add("user-2", staff)
    assert await registry.deliver("user-2", {"type": "x"}, exclude_user_id=STAFF.id) == 0
    assert await registry.deliver("chat:404", {"type": "x"}) == 0


async def test_failed_send_drops_session(registry):
    healthy, broken = session_for(CUSTOMER), session_for(ADMIN, broken=True)
    await registry.add("chat:1", healthy)
    await registry.add("chat:1", broken)
    await registry.add("user-4", broken)

    assert await registry.deliver("chat:1", {"type": "chat_closed", "chatId": 1}) == 1
    assert registry.members("chat:1") == [healthy]
    assert registry.members("user-4") == []


# --- Joining rooms ---

async def test_join_chat_room_checks_membership(db, users, chat, registry):
    customer = session_for(actor_of(users.customer))
    room = await realtime_service.join_chat_room(db, registry, chat.id, customer)
    assert room == chat_room(chat.id)
    assert registry.is_member(room, customer)

    stranger = session_for(actor_of(users.other_customer))
    with pytest.raises(Forbidden):
        await realtime_service.join_chat_room(db, registry, chat.id, stranger)
    with pytest.raises(NotFound):
        await realtime_service.join_chat_room(db, registry, 999, customer)


async def test_join_inbox_only_own(registry):
    session = session_for(STAFF)
    assert await realtime_service.join_inbox(registry, inbox_room(STAFF.id), session) == "user-2"
    with pytest.raises(Forbidden):
        await realtime_service.join_inbox(registry, inbox_room(ADMIN.id), session)


# --- Relay ---

class FakeRedisManager:
    def __init__(self, fail=False):
        self.published = []
        self.fail = fail

    async def publish_event(self, envelope, channel):
        if self.fail:
            raise RedisConnectionError("redis down")
        self.published.append((channel, envelope))
        return 1


async def test_bus_delivers_locally_and_forwards(registry):
    manager = FakeRedisManager()
    relay = RedisRelay(registry, redis_manager=manager, channel="test-events")
    bus = EventBus(registry, relay)
    admin = session_for(ADMIN)
    await registry.add("chat:1", admin)

    event = {"type": "message_created", "chatId": 1, "messageId": 3}
    assert await bus.publish("chat:1", event, visibility=Visibility(True, STAFF.id)) == 1

    channel, envelope = manager.published[0]
    assert channel == "test-events"
    assert envelope == {
        "origin": relay.instance_id,
        "room": "chat:1",
        "event": event,
        "visibility": [True, STAFF.id],
        "exclude_user_id": None,
    }
    # Envelopes never carry message content
    assert "content" not in json.dumps(envelope)


async def test_relay_publish_failure_does_not_raise(registry):
    relay = RedisRelay(registry, redis_manager=FakeRedisManager(fail=True))
    bus = EventBus(registry, relay)
    assert await bus.publish("chat:1", {"type": "chat_closed", "chatId": 1}) == 0


async def test_relay_delivers_remote_envelopes_only(registry):
    relay = RedisRelay(registry, redis_manager=FakeRedisManager())
    customer, admin = session_for(CUSTOMER), session_for(ADMIN)
    await registry.add("chat:1", customer)
    await registry.add("chat:1", admin)

    event = {"type": "message_created", "chatId": 1, "messageId": 5}
    remote = {"origin": "other-instance", "room": "chat:1", "event": event,
              "visibility": [True, ADMIN.id], "exclude_user_id": None}
    assert await relay.handle(json.dumps(remote)) == 1
    assert admin.transport.frames == [event]
    assert customer.transport.frames == []

    own = dict(remote, origin=relay.instance_id, visibility=None)
    assert await relay.handle(json.dumps(own)) == 0
    assert await relay.handle("not json") == 0


async def test_relay_drops_envelopes_missing_fields(registry):
    relay = RedisRelay(registry, redis_manager=FakeRedisManager())
    admin = session_for(ADMIN)
    await registry.add("chat:1", admin)

    event = {"type": "chat_closed", "chatId": 1}
    for envelope in (
        {"origin": "other"},
        {"origin": "other", "room": "chat:1"},
        {"origin": "other", "room": "chat:1", "event": event, "visibility": [True, 1, 2]},
        ["not", "a", "dict"],
    ):
        assert await relay.handle(json.dumps(envelope)) == 0
    assert admin.transport.frames == []


class FakePubSub:
    def __init__(self, messages):
        self.messages = messages
        self.closed = False

    async def subscribe(self, channel):
        self.channel = channel

    async def listen(self):
        for message in self.messages:
            yield message
        # Stay subscribed like a live connection
        await asyncio.Event().wait()

    async def aclose(self):
        self.closed = True


class FakeSubscriber(FakeRedisManager):
    def __init__(self, messages):
        super().__init__()
        self.pubsub_instance = FakePubSub(messages)

    def pubsub(self):
        return self.pubsub_instance


async def test_relay_listener_survives_bad_envelopes(registry):
    event = {"type": "chat_closed", "chatId": 1}
    good = {"origin": "other", "room": "chat:1", "event": event, "visibility": None, "exclude_user_id": None}
    manager = FakeSubscriber([
        {"type": "subscribe", "data": 1},
        {"type": "message", "data": json.dumps({"origin": "other"})},
        {"type": "message", "data": "{broken"},
        {"type": "message", "data": json.dumps(good)},
    ])
    relay = RedisRelay(registry, redis_manager=manager)
    admin = session_for(ADMIN)
    await registry.add("chat:1", admin)

    relay.start()
    try:
        for _ in range(100):
            if admin.transport.frames:
                break
            await asyncio.sleep(0.01)
        assert admin.transport.frames == [event]
        assert not relay._task.done()
    finally:
        await relay.stop()
    assert manager.pubsub_instance.closed is True
