# backend/bookingchat/services/chat_service.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.core.exceptions import ChatClosed, Forbidden, NotFound, ValidationFailed
from bookingchat.core.security import Actor
from bookingchat.db.models.chat import Chat, Message
from bookingchat.realtime.relay import EventBus
from bookingchat.repositories.message_repository import ChatRepository, MessageRepository
from bookingchat.schemas.chat import MessageCreate
from bookingchat.services import quotation, realtime_service
from bookingchat.services.media_service import validate_attachment
from bookingchat.services.visibility import can_send_private, ensure_booking_access, filter_visible

logger = logging.getLogger(__name__)

# Booking statuses that move to in_progress once the team replies
AWAITING_REPLY_STATUSES = ("pending", "confirmed")


async def get_chat(db: AsyncSession, chat_id: int, actor: Actor) -> Chat:
    chat = await ChatRepository.get(db, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    booking = await ChatRepository.get_booking(db, chat)
    ensure_booking_access(booking, actor)
    return chat


async def get_chat_by_booking(db: AsyncSession, booking_id: int, actor: Actor) -> Chat:
    chat = await ChatRepository.get_by_booking(db, booking_id)
    if chat is None:
        raise NotFound("Chat not found")
    booking = await ChatRepository.get_booking(db, chat)
    ensure_booking_access(booking, actor)
    return chat


async def list_messages(db: AsyncSession, chat_id: int, actor: Actor) -> List[Message]:
    """Messages of the chat the actor may see, in store order."""
    await get_chat(db, chat_id, actor)
    rows = await MessageRepository.list_for_chat(db, chat_id)
    return filter_visible(rows, actor)


async def post_message(
    db: AsyncSession,
    chat_id: int,
    actor: Actor,
    data: MessageCreate,
    bus: Optional[EventBus] = None,
) -> Message:
    """
    Appends a message to an open chat.

    The chat row stays locked from the open/closed check until commit, so a
    concurrent close cannot let this message land in a closed chat.
    """
    chat = await ChatRepository.get_for_update(db, chat_id)
    if chat is None:
        raise NotFound("Chat not found")
    booking = await ChatRepository.get_booking(db, chat)
    ensure_booking_access(booking, actor)

    if not chat.is_open:
        raise ChatClosed("Chat is closed")

    if data.is_private and not can_send_private(actor):
        raise Forbidden("Only staff and admins can send private messages")
    amount = quotation.check_quotation(actor, data.is_quotation, data.quotation_amount)
    attachment_url, attachment_type = validate_attachment(data.attachment_url, data.attachment_type)

    content = (data.content or "").strip()
    if not content and attachment_url is None and not data.is_quotation:
        raise ValidationFailed("Message content is required")

    message = Message(
        chat_id=chat.id,
        sender_id=actor.id,
        content=content,
        is_private=data.is_private,
        is_quotation=data.is_quotation,
        quotation_amount=amount,
        attachment_url=attachment_url,
        attachment_type=attachment_type,
    )
    await MessageRepository.append(db, message)

    if actor.is_team_member and booking.status in AWAITING_REPLY_STATUSES:
        booking.status = "in_progress"

    await db.commit()
    await db.refresh(message, attribute_names=["sender"])
    logger.info(
        "[ChatService] message %s in chat %s by user %s (private=%s, quotation=%s)",
        message.id, chat.id, actor.id, message.is_private, message.is_quotation,
    )

    await realtime_service.publish_message_created(bus, message)
    return message


# --- Transcript ---

def _format_date(value: datetime) -> str:
    return value.strftime("%b %d, %Y %I:%M %p")


async def build_transcript(db: AsyncSession, chat_id: int, actor: Actor) -> Tuple[str, str]:
    """
    Plain-text export of a chat for admins. Returns (filename, text).
    """
    if not actor.is_admin:
        raise Forbidden("Admin access required")

    chat = await get_chat(db, chat_id, actor)
    booking = await ChatRepository.get_booking(db, chat)
    messages = await list_messages(db, chat_id, actor)

    rule = "=" * 60
    lines = [
        "CHAT TRANSCRIPT",
        rule,
        "",
        f"Booking ID: {booking.id}",
        f"Booking: {booking.title or '-'}",
        f"Status: {'Open' if chat.is_open else 'Closed'}",
        f"Generated: {_format_date(datetime.utcnow())}",
        "",
        rule,
        "MESSAGES",
        rule,
        "",
    ]
    if not messages:
        lines += ["No messages in this chat.", ""]
    for msg in messages:
        sender_name = msg.sender.name if msg.sender else "Unknown"
        tags = ""
        if msg.is_private:
            tags += " [PRIVATE]"
        if msg.is_quotation:
            tags += f" [QUOTATION: {quotation.format_amount(msg.quotation_amount)}]"
        if msg.attachment_url:
            tags += f" [ATTACHMENT: {msg.attachment_type or 'file'}]"
        lines += [f"[{_format_date(msg.created_at)}] {sender_name}{tags}", msg.content, ""]
    lines += [rule, "END OF TRANSCRIPT", ""]

    filename = f"chat-transcript-{chat.id}-{datetime.utcnow().date().isoformat()}.txt"
    return filename, "\n".join(lines)
