import asyncio
import json

import httpx
import pytest

from bookingchat.client.api import ApiError, ChatApiClient
from bookingchat.client.composer import MessageComposer
from bookingchat.client.playback import PAUSED, PLAYING, STOPPED, PlaybackCoordinator, VoicePlayer
from bookingchat.client.reconciler import DeliveryReconciler, next_backoff
from bookingchat.client.rendering import ATTACHMENT, BUBBLE, IMAGE, QUOTATION_CARD, VOICE, caption, quotation_card, render_kind
from bookingchat.core.exceptions import ChatClosed, TransportUnavailable, UploadFailed, ValidationFailed


def msg(id, **extra):
    return {"id": id, "chatId": 1, "senderId": 1, "content": f"m{id}", "isPrivate": False, "isQuotation": False, **extra}


class FakeServer:
    """Minimal stand-in for the REST API behind httpx.MockTransport."""

    def __init__(self):
        self.messages = {1: [msg(1), msg(2)]}
        self.is_open = {1: True}
        self.requests = []
        self.gate = None
        self.upload_status = 201
        self.fail_transport = False

    async def __call__(self, request: httpx.Request):
        self.requests.append((request.method, request.url.path))
        if self.fail_transport:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path

        if path == "/v1/chats/1" and request.method == "GET":
            return httpx.Response(200, json={"id": 1, "bookingId": 1, "isOpen": self.is_open[1],
                                             "createdAt": "2026-10-19T10:00:00", "closedAt": None})
        if path == "/v1/chats/1/messages" and request.method == "GET":
            if self.gate is not None:
                await self.gate.wait()
            return httpx.Response(200, json=list(self.messages[1]))
        if path == "/v1/chats/1/messages" and request.method == "POST":
            if not self.is_open[1]:
                return httpx.Response(409, json={"code": "chat_closed", "detail": "Chat is closed"})
            body = json.loads(request.content)
            created = msg(len(self.messages[1]) + 1, **body)
            self.messages[1].append(created)
            return httpx.Response(201, json=created)
        if path == "/v1/internal-chats/7/messages" and request.method == "POST":
            return httpx.Response(201, json={"id": 1, **json.loads(request.content)})
        if path == "/v1/internal-chats":
            return httpx.Response(200, json=[{"id": 7, "unreadCount": 2}])
        if path == "/v1/uploads":
            if self.upload_status != 201:
                return httpx.Response(self.upload_status, json={"code": "upload_failed", "detail": "Failed to upload file"})
            return httpx.Response(201, json={"url": "https://cdn.example.com/file", "mimeType": "audio/webm"})
        return httpx.Response(404, json={"detail": "Not Found"})

    def count(self, method, path):
        return sum(1 for r in self.requests if r == (method, path))


@pytest.fixture
def server():
    return FakeServer()


@pytest.fixture
async def api(server):
    client = ChatApiClient("http://portal.test", "token", transport=httpx.MockTransport(server))
    yield client
    await client.aclose()


# --- REST client ---

async def test_domain_errors_are_rebuilt(api, server):
    server.is_open[1] = False
    with pytest.raises(ChatClosed) as exc:
        await api.post_message(1, content="late")
    assert exc.value.detail == "Chat is closed"


async def test_unknown_errors_and_transport_failures(api, server):
    with pytest.raises(ApiError) as exc:
        await api.get_chat(2)
    assert exc.value.status_code == 404

    server.fail_transport = True
    with pytest.raises(TransportUnavailable):
        await api.list_messages(1)


# --- Reconciler ---

async def test_concurrent_triggers_share_one_fetch(api, server):
    reconciler = DeliveryReconciler(api)
    await reconciler.open_chat(1)
    before = server.count("GET", "/v1/chats/1/messages")

    await asyncio.gather(*[reconciler.handle_event({"type": "message_created", "chatId": 1, "messageId": 2})
                           for _ in range(5)])
    assert server.count("GET", "/v1/chats/1/messages") == before + 1


async def test_trigger_during_fetch_refetches_once(api, server):
    reconciler = DeliveryReconciler(api)
    await reconciler.open_chat(1)
    before = server.count("GET", "/v1/chats/1/messages")

    server.gate = asyncio.Event()
    first = asyncio.create_task(reconciler.refresh_chat(1))
    while server.count("GET", "/v1/chats/1/messages") == before:
        await asyncio.sleep(0)
    # New message lands while the first fetch is on the wire
    server.messages[1].append(msg(3))
    late = [asyncio.create_task(reconciler.refresh_chat(1)) for _ in range(3)]
    await asyncio.sleep(0)
    server.gate.set()
    await asyncio.gather(first, *late)

    assert server.count("GET", "/v1/chats/1/messages") == before + 2
    assert [m["id"] for m in reconciler.chats[1].messages] == [1, 2, 3]


async def test_cache_is_ordered_by_id_and_replaced_not_appended(api, server):
    server.messages[1] = [msg(3), msg(1), msg(2)]
    reconciler = DeliveryReconciler(api)
    cache = await reconciler.open_chat(1)
    assert [m["id"] for m in cache.messages] == [1, 2, 3]

    # Duplicate signals never duplicate messages
    for _ in range(3):
        await reconciler.handle_event({"type": "message_created", "chatId": 1, "messageId": 3})
    assert [m["id"] for m in cache.messages] == [1, 2, 3]


async def test_listeners_and_chat_closed(api, server):
    reconciler = DeliveryReconciler(api)
    seen = []
    reconciler.add_listener(lambda kind, key, data: seen.append((kind, key)))
    cache = await reconciler.open_chat(1)
    assert seen == [("chat", 1)]

    await reconciler.handle_event({"type": "chat_closed", "chatId": 1})
    assert cache.read_only
    assert seen == [("chat", 1), ("chat", 1)]

    # Events for chats that are not open are ignored
    await reconciler.handle_event({"type": "message_created", "chatId": 99, "messageId": 1})
    assert len(seen) == 2


async def test_internal_events_refresh_the_list(api, server):
    reconciler = DeliveryReconciler(api)
    await reconciler.handle_event({"type": "internal_message_created", "chatId": 7, "messageId": 1})
    assert reconciler.internal_chats == [{"id": 7, "unreadCount": 2}]


async def test_polls_while_realtime_is_down(api, server):
    attempts = []

    async def connect():
        attempts.append(1)
        raise TransportUnavailable("offline")

    reconciler = DeliveryReconciler(
        api, connect=connect, poll_interval=0.01, internal_poll_interval=0.02,
        initial_backoff=0.01, max_backoff=0.02,
    )
    await reconciler.open_chat(1)
    before = server.count("GET", "/v1/chats/1/messages")

    reconciler.start()
    server.messages[1].append(msg(3))
    await asyncio.sleep(0.2)
    await reconciler.stop()

    assert len(attempts) >= 2
    assert server.count("GET", "/v1/chats/1/messages") > before
    assert server.count("GET", "/v1/internal-chats") >= 1
    assert [m["id"] for m in reconciler.chats[1].messages] == [1, 2, 3]


async def test_connection_events_and_reconnect(api, server):
    class FakeConnection:
        def __init__(self, events):
            self._events = events
            self.joined = []
            self.closed = False

        async def join_chat(self, chat_id):
            self.joined.append(chat_id)

        async def events(self):
            for event in self._events:
                yield event
            raise TransportUnavailable("dropped")

        async def close(self):
            self.closed = True

    first = FakeConnection([{"type": "chat_closed", "chatId": 1}])
    second = FakeConnection([])
    connections = [first, second]

    async def connect():
        if connections:
            return connections.pop(0)
        raise TransportUnavailable("offline")

    reconciler = DeliveryReconciler(api, connect=connect, poll_interval=10, initial_backoff=0.01, max_backoff=0.01)
    cache = await reconciler.open_chat(1)
    reconciler.start()
    await asyncio.sleep(0.1)
    await reconciler.stop()

    assert first.joined == [1] and second.joined == [1]
    assert first.closed and second.closed
    assert cache.read_only
    assert not reconciler.connected


def test_backoff_is_capped():
    assert next_backoff(1.0) == 2.0
    assert next_backoff(20.0) == 30.0
    assert next_backoff(30.0) == 30.0
    assert next_backoff(0.5, maximum=0.75) == 0.75


# --- Composer ---

async def test_voice_message_two_phase(api, server):
    composer = MessageComposer(api)
    created = await composer.send_voice(1, b"OggS")

    assert server.requests[0] == ("POST", "/v1/uploads")
    assert server.requests[1] == ("POST", "/v1/chats/1/messages")
    assert created["content"] == "Voice message"
    assert created["attachmentType"] == "audio/webm"
    assert created["attachmentUrl"] == "https://cdn.example.com/file"


async def test_failed_upload_posts_nothing(api, server):
    composer = MessageComposer(api)
    server.upload_status = 502
    with pytest.raises(UploadFailed):
        await composer.send_attachment(1, b"%PDF", "quote.pdf", "application/pdf")

    server.upload_status = 201
    server.fail_transport = True
    with pytest.raises(UploadFailed):
        await composer.send_voice(1, b"OggS")

    assert server.count("POST", "/v1/chats/1/messages") == 0


async def test_voice_requires_audio_type(api, server):
    composer = MessageComposer(api)
    with pytest.raises(ValidationFailed):
        await composer.send_voice(1, b"data", mime_type="video/mp4")
    with pytest.raises(ValidationFailed):
        await composer.send_voice(1, b"")
    assert server.requests == []


async def test_attachment_and_internal_target(api, server):
    composer = MessageComposer(api)
    created = await composer.send_attachment(7, b"img", "photo.jpg", "image/jpeg", internal=True)
    assert ("POST", "/v1/internal-chats/7/messages") in server.requests
    assert created["content"] == "Shared a file"


async def test_quotations_are_independent(api, server):
    composer = MessageComposer(api)
    first = await composer.send_quotation(1, 500, "parts+labor")
    second = await composer.send_quotation(1, 450, "discount")
    assert first["id"] != second["id"]
    assert [m.get("quotationAmount") for m in server.messages[1][-2:]] == [500, 450]


# --- Playback ---

class FakeAudio:
    def __init__(self, fail=False):
        self.fail = fail
        self.events = []

    def play(self, url):
        if self.fail:
            raise RuntimeError("autoplay blocked")
        self.events.append(("play", url))

    def pause(self):
        self.events.append(("pause",))


def test_only_one_player_per_session():
    coordinator = PlaybackCoordinator()
    audio_a, audio_b = FakeAudio(), FakeAudio()
    a = VoicePlayer("https://cdn.example.com/a.webm", coordinator, backend=audio_a)
    b = VoicePlayer("https://cdn.example.com/b.webm", coordinator, backend=audio_b)

    a.play()
    assert coordinator.active is a
    b.play()
    assert coordinator.active is b
    assert a.state == PAUSED and b.state == PLAYING
    assert audio_a.events == [("play", a.url), ("pause",)]

    b.toggle()
    assert b.state == PAUSED
    assert coordinator.active is None


def test_sessions_do_not_interfere():
    a = VoicePlayer("a", PlaybackCoordinator())
    b = VoicePlayer("b", PlaybackCoordinator())
    a.play()
    b.play()
    assert a.is_playing and b.is_playing


def test_finish_dispose_and_blocked_playback():
    coordinator = PlaybackCoordinator()
    changes = []
    player = VoicePlayer("a", coordinator, on_change=lambda p: changes.append(p.state))
    player.play()
    player.finished()
    assert coordinator.active is None
    assert changes == [PLAYING, STOPPED]

    player.play()
    player.dispose()
    assert player.state == STOPPED and coordinator.active is None

    blocked = VoicePlayer("b", coordinator, backend=FakeAudio(fail=True))
    blocked.play()
    assert blocked.state == STOPPED and coordinator.active is None


# --- Rendering ---

def test_render_kinds():
    assert render_kind(msg(1, isQuotation=True, quotationAmount=500)) == QUOTATION_CARD
    assert render_kind(msg(1, attachmentUrl="u", attachmentType="audio/webm")) == VOICE
    assert render_kind(msg(1, attachmentUrl="u", attachmentType="image/png")) == IMAGE
    assert render_kind(msg(1, attachmentUrl="u", attachmentType="application/pdf")) == ATTACHMENT
    assert render_kind(msg(1)) == BUBBLE


def test_quotation_card_and_captions():
    card = quotation_card(msg(1, isQuotation=True, quotationAmount=500, content="parts+labor"))
    assert card == {"title": "Quotation", "amount": "$500", "description": "parts+labor"}
    assert caption(msg(1, content="Voice message", attachmentUrl="u", attachmentType="audio/webm")) == ""
    assert caption(msg(1, content="see photo", attachmentUrl="u", attachmentType="image/png")) == "see photo"
    assert caption(msg(1, content="Voice message")) == "Voice message"
