"""
Open -> Closed state machine of booking chats.

Closing is terminal and is the recorded "work approved" event: the booking
is marked completed in the same transaction. Both here and in
chat_service.post_message the chat row is locked before its state is
checked, so a post racing a close either lands before the close or fails
with ChatClosed.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.core.exceptions import ChatClosed, Forbidden, NotFound
from bookingchat.core.security import Actor
from bookingchat.db.models.base import get_utc_now
from bookingchat.db.models.chat import Chat
from bookingchat.realtime.relay import EventBus
from bookingchat.repositories.message_repository import ChatRepository
from bookingchat.services import realtime_service
from bookingchat.services.visibility import can_close_chat

logger = logging.getLogger(__name__)


async def close_chat(db: AsyncSession, chat_id: int, actor: Actor, bus: Optional[EventBus] = None) -> Chat:
    chat = await ChatRepository.get_for_update(db, chat_id)
    if chat is None:
        raise NotFound("Chat not found")

    booking = await ChatRepository.get_booking(db, chat)
    if booking is None or not can_close_chat(booking, actor):
        raise Forbidden("Only an admin or the assigned staff member can close this chat")
    if not chat.is_open:
        raise ChatClosed("Chat is already closed")

    chat.close(get_utc_now())
    booking.status = "completed"
    await db.commit()
    logger.info("[Lifecycle] chat %s closed by user %s (booking %s completed)", chat.id, actor.id, booking.id)

    await realtime_service.publish_chat_closed(bus, chat)
    return chat


async def close_for_booking(db: AsyncSession, booking_id: int, bus: Optional[EventBus] = None) -> Optional[Chat]:
    """
    Hook for the booking collaborator when it completes a booking on its own.
    Already-closed chats are left untouched.
    """
    stmt = (
        select(Chat)
        .where(Chat.booking_id == booking_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    chat = (await db.execute(stmt)).scalar_one_or_none()
    if chat is None or not chat.is_open:
        return chat

    chat.close(get_utc_now())
    await db.commit()
    logger.info("[Lifecycle] chat %s closed with booking %s", chat.id, booking_id)

    await realtime_service.publish_chat_closed(bus, chat)
    return chat
