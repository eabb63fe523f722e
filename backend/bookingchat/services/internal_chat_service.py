# backend/bookingchat/services/internal_chat_service.py
import logging
from datetime import datetime
from typing import List, Optional, Tuple

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from bookingchat.core.exceptions import Forbidden, NotFound, ValidationFailed
from bookingchat.core.security import Actor
from bookingchat.db.models.base import get_utc_now
from bookingchat.db.models.internal_chat import (
    InternalChat,
    InternalChatParticipant,
    InternalMessage,
    direct_key_for,
)
from bookingchat.db.models.user import User
from bookingchat.realtime.relay import EventBus
from bookingchat.schemas.internal_chat import (
    InternalChatRead,
    InternalMessageCreate,
    InternalMessageRead,
    ParticipantRead,
)
from bookingchat.services import realtime_service
from bookingchat.services.media_service import validate_attachment

logger = logging.getLogger(__name__)

TEAM_ROLES = ("staff", "admin")


def _require_team(actor: Actor):
    if not actor.is_team_member:
        raise Forbidden("Staff or admin access required")


async def _load_chat(db: AsyncSession, chat_id: int) -> Optional[InternalChat]:
    stmt = (
        select(InternalChat)
        .where(InternalChat.id == chat_id)
        .options(selectinload(InternalChat.participants).joinedload(InternalChatParticipant.user))
        .execution_options(populate_existing=True)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def _get_direct_chat(db: AsyncSession, key: str) -> Optional[InternalChat]:
    result = await db.execute(select(InternalChat.id).where(InternalChat.direct_key == key))
    chat_id = result.scalar_one_or_none()
    return await _load_chat(db, chat_id) if chat_id is not None else None


async def _get_participant(db: AsyncSession, chat_id: int, user_id: int) -> InternalChatParticipant:
    """The actor's participant row; NotFound for unknown chats, Forbidden for non-participants."""
    stmt = select(InternalChatParticipant).where(
        InternalChatParticipant.chat_id == chat_id,
        InternalChatParticipant.user_id == user_id,
    )
    participant = (await db.execute(stmt)).scalar_one_or_none()
    if participant is None:
        if await db.get(InternalChat, chat_id) is None:
            raise NotFound("Chat not found")
        raise Forbidden("Not a participant of this chat")
    return participant


# --- Read side ---

async def unread_count(db: AsyncSession, chat_id: int, user_id: int, last_read_at: Optional[datetime]) -> int:
    """Messages from other participants newer than the user's read pointer (all of them if never read)."""
    stmt = select(func.count(InternalMessage.id)).where(
        InternalMessage.chat_id == chat_id,
        InternalMessage.sender_id != user_id,
    )
    if last_read_at is not None:
        stmt = stmt.where(InternalMessage.created_at > last_read_at)
    return (await db.execute(stmt)).scalar_one()


async def last_message(db: AsyncSession, chat_id: int) -> Optional[InternalMessage]:
    stmt = (
        select(InternalMessage)
        .where(InternalMessage.chat_id == chat_id)
        .order_by(InternalMessage.id.desc())
        .limit(1)
    )
    return (await db.execute(stmt)).scalar_one_or_none()


async def summarize(db: AsyncSession, chat: InternalChat, viewer_id: int) -> InternalChatRead:
    participants = []
    last_read_at = None
    for p in chat.participants:
        participants.append(ParticipantRead(
            user_id=p.user_id,
            name=p.user.name,
            role=p.user.role,
            last_read_at=p.last_read_at,
            joined_at=p.joined_at,
        ))
        if p.user_id == viewer_id:
            last_read_at = p.last_read_at

    latest = await last_message(db, chat.id)
    return InternalChatRead(
        id=chat.id,
        type=chat.type,
        title=chat.title,
        created_by_id=chat.created_by_id,
        created_at=chat.created_at,
        participants=participants,
        last_message=InternalMessageRead.model_validate(latest) if latest else None,
        unread_count=await unread_count(db, chat.id, viewer_id, last_read_at),
    )


async def list_chats(db: AsyncSession, actor: Actor) -> List[InternalChatRead]:
    """Chats the actor takes part in, most recently active first."""
    _require_team(actor)
    stmt = (
        select(InternalChat)
        .join(InternalChatParticipant, InternalChatParticipant.chat_id == InternalChat.id)
        .where(InternalChatParticipant.user_id == actor.id)
        .options(selectinload(InternalChat.participants).joinedload(InternalChatParticipant.user))
    )
    chats = (await db.execute(stmt)).scalars().unique().all()

    summaries = [await summarize(db, chat, actor.id) for chat in chats]
    summaries.sort(
        key=lambda s: s.last_message.created_at if s.last_message else s.created_at,
        reverse=True,
    )
    return summaries


async def list_directory(db: AsyncSession, actor: Actor) -> List[User]:
    """Staff and admins the actor can start a chat with."""
    _require_team(actor)
    stmt = select(User).where(User.role.in_(TEAM_ROLES), User.id != actor.id).order_by(User.name)
    return list((await db.execute(stmt)).scalars().all())


async def list_messages(db: AsyncSession, chat_id: int, actor: Actor) -> List[InternalMessage]:
    """Full history, oldest first. Opening a chat counts as reading it."""
    _require_team(actor)
    participant = await _get_participant(db, chat_id, actor.id)
    stmt = (
        select(InternalMessage)
        .where(InternalMessage.chat_id == chat_id)
        .order_by(InternalMessage.id.asc())
    )
    messages = list((await db.execute(stmt)).scalars().all())

    participant.last_read_at = get_utc_now()
    await db.commit()
    return messages


# --- Write side ---

async def get_or_create_direct_chat(
    db: AsyncSession,
    actor: Actor,
    participant_id: int,
    bus: Optional[EventBus] = None,
) -> Tuple[InternalChatRead, bool]:
    """
    Returns (chat, created). At most one direct chat exists per unordered
    pair; two racing creators both end up with the row that won the unique
    direct_key constraint.
    """
    _require_team(actor)
    if participant_id == actor.id:
        raise ValidationFailed("Cannot start a chat with yourself")

    participant = await db.get(User, participant_id)
    if participant is None:
        raise NotFound("User not found")
    if participant.role not in TEAM_ROLES:
        raise ValidationFailed("Invalid participant")

    key = direct_key_for(actor.id, participant_id)
    existing = await _get_direct_chat(db, key)
    if existing is not None:
        return await summarize(db, existing, actor.id), False

    chat = InternalChat(type="direct", created_by_id=actor.id, direct_key=key)
    chat.participants = [
        InternalChatParticipant(user_id=actor.id),
        InternalChatParticipant(user_id=participant_id),
    ]
    db.add(chat)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        existing = await _get_direct_chat(db, key)
        if existing is None:
            raise
        logger.info("[InternalChat] lost creation race for pair %s, reusing chat %s", key, existing.id)
        return await summarize(db, existing, actor.id), False

    logger.info("[InternalChat] direct chat %s created between %s and %s", chat.id, actor.id, participant_id)
    await realtime_service.publish_internal_chat_created(bus, chat.id, participant_id)

    created = await _load_chat(db, chat.id)
    return await summarize(db, created, actor.id), True


async def send_message(
    db: AsyncSession,
    chat_id: int,
    actor: Actor,
    data: InternalMessageCreate,
    bus: Optional[EventBus] = None,
) -> InternalMessage:
    _require_team(actor)
    participant = await _get_participant(db, chat_id, actor.id)

    attachment_url, attachment_type = validate_attachment(data.attachment_url, data.attachment_type)
    content = (data.content or "").strip()
    if not content and attachment_url is None:
        raise ValidationFailed("Message content is required")

    message = InternalMessage(
        chat_id=chat_id,
        sender_id=actor.id,
        content=content,
        attachment_url=attachment_url,
        attachment_type=attachment_type,
    )
    db.add(message)
    await db.flush()
    # The sender has seen everything up to their own message
    participant.last_read_at = get_utc_now()
    await db.commit()
    await db.refresh(message, attribute_names=["sender"])

    result = await db.execute(
        select(InternalChatParticipant.user_id).where(InternalChatParticipant.chat_id == chat_id)
    )
    participant_ids = list(result.scalars().all())
    await realtime_service.publish_internal_message(bus, message, participant_ids)
    return message


async def mark_read(db: AsyncSession, chat_id: int, actor: Actor) -> int:
    """Moves the actor's read pointer to now; returns the remaining unread count."""
    _require_team(actor)
    participant = await _get_participant(db, chat_id, actor.id)
    participant.last_read_at = get_utc_now()
    await db.commit()
    return await unread_count(db, chat_id, actor.id, participant.last_read_at)
