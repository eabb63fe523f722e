# backend/bookingchat/services/realtime_service.py
import logging
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.core.exceptions import Forbidden, NotFound
from bookingchat.realtime.relay import EventBus
from bookingchat.realtime.room_registry import RoomRegistry, Session, chat_room, inbox_room
from bookingchat.repositories.message_repository import ChatRepository
from bookingchat.services.visibility import Visibility, can_access_booking

logger = logging.getLogger(__name__)


# --- Room membership ---

async def join_chat_room(db: AsyncSession, registry: RoomRegistry, chat_id: int, session: Session) -> str:
    """
    Admits the session to the chat's room if its actor is the booking's
    customer, an admin, or the booking's assigned staff member.
    """
    chat = await ChatRepository.get(db, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    booking = await ChatRepository.get_booking(db, chat)
    if booking is None or not can_access_booking(booking, session.actor):
        logger.warning("[Rooms] user %s refused from chat %s", session.actor.id, chat_id)
        raise Forbidden("You are not a member of this chat")

    room = chat_room(chat_id)
    await registry.add(room, session)
    return room


async def leave_chat_room(registry: RoomRegistry, chat_id: int, session: Session) -> str:
    room = chat_room(chat_id)
    await registry.remove(room, session)
    return room


async def join_inbox(registry: RoomRegistry, room: str, session: Session) -> str:
    """A session may only subscribe to its own personal inbox."""
    if room != inbox_room(session.actor.id):
        raise Forbidden("Cannot subscribe to another user's inbox")
    await registry.add(room, session)
    return room


# --- Events ---
# Events are refresh signals: they name what changed, clients refetch the content.

async def publish_message_created(bus: Optional[EventBus], message) -> int:
    if bus is None:
        return 0
    event = {"type": "message_created", "chatId": message.chat_id, "messageId": message.id}
    return await bus.publish(chat_room(message.chat_id), event, visibility=Visibility.of(message))


async def publish_chat_closed(bus: Optional[EventBus], chat) -> int:
    if bus is None:
        return 0
    event = {"type": "chat_closed", "chatId": chat.id}
    return await bus.publish(chat_room(chat.id), event)


async def publish_internal_message(bus: Optional[EventBus], message, participant_ids) -> int:
    """
    Signals every participant's inbox, the sender's included, so the
    sender's other open clients refresh as well.
    """
    if bus is None:
        return 0
    event = {"type": "internal_message_created", "chatId": message.chat_id, "messageId": message.id}
    delivered = 0
    for user_id in participant_ids:
        delivered += await bus.publish(inbox_room(user_id), event)
    return delivered


async def publish_internal_chat_created(bus: Optional[EventBus], chat_id: int, recipient_id: int) -> int:
    if bus is None:
        return 0
    event = {"type": "internal_chat_created", "chatId": chat_id}
    return await bus.publish(inbox_room(recipient_id), event)
