# backend/bookingchat/api/v1/internal_chats.py
from typing import List

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.api.deps import get_event_bus
from bookingchat.core.security import Actor, get_current_actor
from bookingchat.db.database import get_db
from bookingchat.realtime.relay import EventBus
from bookingchat.schemas.internal_chat import (
    DirectChatCreate,
    DirectoryUser,
    InternalChatRead,
    InternalMessageCreate,
    InternalMessageRead,
    ReadReceipt,
)
from bookingchat.services import internal_chat_service

router = APIRouter(tags=["internal-chats"])


@router.post("", response_model=InternalChatRead, status_code=status.HTTP_201_CREATED)
async def open_direct_chat(
    chat_in: DirectChatCreate,
    response: Response,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Returns the direct chat between the caller and `participantId`, creating
    it if needed. 201 when created, 200 when it already existed.
    """
    chat, created = await internal_chat_service.get_or_create_direct_chat(db, actor, chat_in.participant_id, bus)
    if not created:
        response.status_code = status.HTTP_200_OK
    return chat


@router.get("", response_model=List[InternalChatRead])
async def list_chats(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await internal_chat_service.list_chats(db, actor)


@router.get("/users", response_model=List[DirectoryUser])
async def list_users(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Staff and admins the caller can message."""
    return await internal_chat_service.list_directory(db, actor)


@router.get("/{chat_id}/messages", response_model=List[InternalMessageRead])
async def list_messages(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await internal_chat_service.list_messages(db, chat_id, actor)


@router.post("/{chat_id}/messages", response_model=InternalMessageRead, status_code=status.HTTP_201_CREATED)
async def send_message(
    chat_id: int,
    message_in: InternalMessageCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    bus: EventBus = Depends(get_event_bus),
):
    return await internal_chat_service.send_message(db, chat_id, actor, message_in, bus)


@router.post("/{chat_id}/read", response_model=ReadReceipt)
async def mark_read(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    unread = await internal_chat_service.mark_read(db, chat_id, actor)
    return ReadReceipt(success=True, unread_count=unread)
