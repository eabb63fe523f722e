"""
In-memory room membership for the realtime channel.

A room is just the set of sessions currently connected and authorized to
receive its events: `chat:<id>` for booking chats and `user-<id>` for each
user's personal inbox. Nothing here is persisted and nothing here is business
data; after a restart the registry starts empty and clients rejoin.
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional
from uuid import uuid4

from bookingchat.core.security import Actor
from bookingchat.services.visibility import Visibility, can_see

logger = logging.getLogger(__name__)


def chat_room(chat_id: int) -> str:
    return f"chat:{chat_id}"


def inbox_room(user_id: int) -> str:
    return f"user-{user_id}"


@dataclass(eq=False)
class Session:
    """One connected client. `transport` is anything with an async send_json (a WebSocket in production)."""
    actor: Actor
    transport: object
    id: str = field(default_factory=lambda: uuid4().hex)
    rooms: set = field(default_factory=set)
    _send_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    async def send(self, event: dict) -> bool:
        # A websocket must not be written to by two tasks at once
        async with self._send_lock:
            try:
                await self.transport.send_json(event)
                return True
            except Exception as e:
                logger.debug("[Rooms] send to session %s failed: %s", self.id, e)
                return False


class RoomRegistry:
    def __init__(self):
        # Key: room name, Value: {session id: Session}
        self._rooms: Dict[str, Dict[str, Session]] = {}
        self._lock = asyncio.Lock()

    async def add(self, room: str, session: Session):
        async with self._lock:
            self._rooms.setdefault(room, {})[session.id] = session
            session.rooms.add(room)
        logger.debug("[Rooms] session %s (user %s) joined %s", session.id, session.actor.id, room)

    async def remove(self, room: str, session: Session):
        """Idempotent: leaving a room the session is not in is a no-op."""
        async with self._lock:
            self._remove_locked(room, session)

    def _remove_locked(self, room: str, session: Session):
        members = self._rooms.get(room)
        if members is not None:
            members.pop(session.id, None)
            if not members:
                del self._rooms[room]
        session.rooms.discard(room)

    async def drop_session(self, session: Session):
        """Disconnect: forget the session everywhere, no other state changes."""
        async with self._lock:
            for room in list(session.rooms):
                self._remove_locked(room, session)
        logger.debug("[Rooms] session %s dropped", session.id)

    def members(self, room: str) -> List[Session]:
        return list(self._rooms.get(room, {}).values())

    def is_member(self, room: str, session: Session) -> bool:
        return session.id in self._rooms.get(room, {})

    @property
    def room_count(self) -> int:
        return len(self._rooms)

    @property
    def session_count(self) -> int:
        return len({sid for members in self._rooms.values() for sid in members})

    async def deliver(
        self,
        room: str,
        event: dict,
        visibility: Optional[Visibility] = None,
        exclude_user_id: Optional[int] = None,
    ) -> int:
        """
        Sends `event` to every session in `room` allowed to see the message the
        event refers to. Sessions whose send fails are dropped. Returns the
        number of sessions reached.
        """
        recipients = [
            s for s in self.members(room)
            if (visibility is None or can_see(visibility, s.actor))
            and (exclude_user_id is None or s.actor.id != exclude_user_id)
        ]
        if not recipients:
            return 0

        results = await asyncio.gather(*[s.send(event) for s in recipients])
        for session, ok in zip(recipients, results):
            if not ok:
                await self.drop_session(session)
        return sum(1 for ok in results if ok)
