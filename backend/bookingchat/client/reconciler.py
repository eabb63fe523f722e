"""
Keeps a client's view of its chats in step with the server.

Push and poll lead to the same action: drop what is cached for a chat and
fetch its full message list again. A realtime event only says *which* chat
changed, so a duplicated or lost event costs at most one extra or one
delayed fetch, never a duplicated or missing message. While the realtime
connection is down the reconciler polls and keeps reconnecting with capped
exponential backoff.
"""
import asyncio
import inspect
import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Dict, Hashable, List, Optional

from bookingchat.client.api import ChatApiClient
from bookingchat.client.realtime import RealtimeConnection
from bookingchat.core.exceptions import ChatServiceError, TransportUnavailable

logger = logging.getLogger(__name__)

CHAT_POLL_INTERVAL = 5.0
INTERNAL_LIST_POLL_INTERVAL = 30.0
INITIAL_BACKOFF = 1.0
MAX_BACKOFF = 30.0

CHAT_EVENTS = ("message_created", "chat_closed")
INTERNAL_EVENTS = ("internal_message_created", "internal_chat_created")


def next_backoff(current: float, maximum: float = MAX_BACKOFF) -> float:
    return min(current * 2, maximum)


@dataclass
class ChatCache:
    chat_id: int
    messages: List[dict] = field(default_factory=list)
    is_open: bool = True
    loaded: bool = False

    @property
    def read_only(self) -> bool:
        return not self.is_open


@dataclass
class _Refresh:
    task: Optional[asyncio.Task] = None
    fetching: bool = False
    stale: bool = False


def _ordered(messages: List[dict]) -> List[dict]:
    return sorted(messages, key=lambda m: m["id"])


class DeliveryReconciler:
    def __init__(
        self,
        api: ChatApiClient,
        connect: Optional[Callable[[], Awaitable[RealtimeConnection]]] = None,
        poll_interval: float = CHAT_POLL_INTERVAL,
        internal_poll_interval: float = INTERNAL_LIST_POLL_INTERVAL,
        initial_backoff: float = INITIAL_BACKOFF,
        max_backoff: float = MAX_BACKOFF,
    ):
        self.api = api
        self._connect = connect
        self.poll_interval = poll_interval
        self.internal_poll_interval = internal_poll_interval
        self.initial_backoff = initial_backoff
        self.max_backoff = max_backoff

        self.chats: Dict[int, ChatCache] = {}
        self.internal_messages: Dict[int, List[dict]] = {}
        self.internal_chats: List[dict] = []
        self.connection: Optional[RealtimeConnection] = None

        self._refreshes: Dict[Hashable, _Refresh] = {}
        self._listeners: List[Callable] = []
        self._tasks: List[asyncio.Task] = []

    @property
    def connected(self) -> bool:
        return self.connection is not None

    # --- Listeners ---

    def add_listener(self, listener: Callable):
        """listener(kind, key, data): kind is "chat", "internal_chat" or "internal_list"."""
        self._listeners.append(listener)

    def remove_listener(self, listener: Callable):
        if listener in self._listeners:
            self._listeners.remove(listener)

    async def _notify(self, kind: str, key, data):
        for listener in list(self._listeners):
            try:
                result = listener(kind, key, data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("[Reconciler] listener failed for %s %s", kind, key)

    # --- Coalesced refetch ---

    async def _coalesced(self, key: Hashable, fetch: Callable[[], Awaitable]):
        """
        Runs `fetch` for `key` unless one is already pending. A trigger that
        arrives while a fetch is on the wire marks it stale, so the task
        fetches once more before finishing; triggers queued before the fetch
        starts simply share it.
        """
        state = self._refreshes.get(key)
        if state is None:
            state = _Refresh()
            self._refreshes[key] = state
            state.task = asyncio.create_task(self._run_fetch(key, state, fetch))
        elif state.fetching:
            state.stale = True
        return await asyncio.shield(state.task)

    async def _run_fetch(self, key: Hashable, state: _Refresh, fetch: Callable[[], Awaitable]):
        try:
            while True:
                state.stale = False
                state.fetching = True
                result = await fetch()
                state.fetching = False
                if not state.stale:
                    return result
        finally:
            self._refreshes.pop(key, None)

    # --- Booking chats ---

    async def open_chat(self, chat_id: int) -> ChatCache:
        """Starts tracking a chat: loads its state and messages and joins its room when connected."""
        cache = self.chats.setdefault(chat_id, ChatCache(chat_id))
        chat = await self.api.get_chat(chat_id)
        cache.is_open = chat["isOpen"]
        if self.connection is not None:
            try:
                await self.connection.join_chat(chat_id)
            except TransportUnavailable:
                await self._drop_connection()
        await self.refresh_chat(chat_id)
        return cache

    async def close_chat_view(self, chat_id: int):
        self.chats.pop(chat_id, None)
        if self.connection is not None:
            try:
                await self.connection.leave_chat(chat_id)
            except TransportUnavailable:
                await self._drop_connection()

    async def refresh_chat(self, chat_id: int) -> List[dict]:
        return await self._coalesced(("chat", chat_id), lambda: self._fetch_chat(chat_id))

    async def _fetch_chat(self, chat_id: int) -> List[dict]:
        messages = _ordered(await self.api.list_messages(chat_id))
        cache = self.chats.get(chat_id)
        if cache is not None:
            cache.messages = messages
            cache.loaded = True
            await self._notify("chat", chat_id, cache)
        return messages

    # --- Internal chats ---

    async def open_internal_chat(self, chat_id: int) -> List[dict]:
        self.internal_messages.setdefault(chat_id, [])
        return await self.refresh_internal_chat(chat_id)

    def close_internal_chat_view(self, chat_id: int):
        self.internal_messages.pop(chat_id, None)

    async def refresh_internal_chat(self, chat_id: int) -> List[dict]:
        return await self._coalesced(("internal", chat_id), lambda: self._fetch_internal_chat(chat_id))

    async def _fetch_internal_chat(self, chat_id: int) -> List[dict]:
        messages = _ordered(await self.api.list_internal_messages(chat_id))
        if chat_id in self.internal_messages:
            self.internal_messages[chat_id] = messages
            await self._notify("internal_chat", chat_id, messages)
        return messages

    async def refresh_internal_list(self) -> List[dict]:
        return await self._coalesced(("internal_list",), self._fetch_internal_list)

    async def _fetch_internal_list(self) -> List[dict]:
        self.internal_chats = await self.api.list_internal_chats()
        await self._notify("internal_list", None, self.internal_chats)
        return self.internal_chats

    # --- Events ---

    async def handle_event(self, event: dict):
        event_type = event.get("type")
        chat_id = event.get("chatId")

        if event_type in CHAT_EVENTS:
            cache = self.chats.get(chat_id)
            if cache is None:
                return
            if event_type == "chat_closed":
                cache.is_open = False
            await self.refresh_chat(chat_id)
        elif event_type in INTERNAL_EVENTS:
            await self.refresh_internal_list()
            if chat_id in self.internal_messages:
                await self.refresh_internal_chat(chat_id)
        elif event_type == "error":
            logger.warning("[Reconciler] server rejected a frame: %s (%s)", event.get("detail"), event.get("code"))

    # --- Background loops ---

    async def refresh_all(self):
        for chat_id in list(self.chats):
            await self._safe(self.refresh_chat(chat_id))
        for chat_id in list(self.internal_messages):
            await self._safe(self.refresh_internal_chat(chat_id))

    async def poll_chats(self):
        """Polling path: picks up closures as well as new messages."""
        for chat_id in list(self.chats):
            chat = await self._safe(self.api.get_chat(chat_id))
            cache = self.chats.get(chat_id)
            if chat is not None and cache is not None:
                cache.is_open = chat["isOpen"]
        await self.refresh_all()

    async def _safe(self, coro):
        try:
            return await coro
        except ChatServiceError as e:
            logger.warning("[Reconciler] refresh failed: %s", e.detail)
            return None

    async def _drop_connection(self):
        connection, self.connection = self.connection, None
        if connection is not None:
            await connection.close()

    async def run_connection(self):
        """Connects, rejoins tracked rooms, catches up, then applies events until the socket drops."""
        backoff = self.initial_backoff
        while True:
            try:
                connection = await self._connect()
            except TransportUnavailable as e:
                logger.info("[Reconciler] realtime unavailable (%s); retrying in %.1fs", e.detail, backoff)
                await asyncio.sleep(backoff)
                backoff = next_backoff(backoff, self.max_backoff)
                continue

            backoff = self.initial_backoff
            self.connection = connection
            logger.info("[Reconciler] realtime connected")
            try:
                for chat_id in list(self.chats):
                    await connection.join_chat(chat_id)
                # Events missed while disconnected are recovered from the store
                await self.refresh_all()
                async for event in connection.events():
                    await self._safe(self.handle_event(event))
            except TransportUnavailable as e:
                logger.info("[Reconciler] realtime lost: %s", e.detail)
            finally:
                await self._drop_connection()

    async def _poll(self, interval: float, action: Callable[[], Awaitable]):
        while True:
            await asyncio.sleep(interval)
            if not self.connected:
                await self._safe(action())

    def start(self):
        if self._tasks:
            return
        if self._connect is not None:
            self._tasks.append(asyncio.create_task(self.run_connection()))
        self._tasks.append(asyncio.create_task(self._poll(self.poll_interval, self.poll_chats)))
        self._tasks.append(asyncio.create_task(self._poll(self.internal_poll_interval, self.refresh_internal_list)))

    async def stop(self):
        tasks, self._tasks = self._tasks, []
        tasks += [state.task for state in self._refreshes.values() if state.task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        await self._drop_connection()
