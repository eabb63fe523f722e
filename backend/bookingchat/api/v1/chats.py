# backend/bookingchat/api/v1/chats.py
from typing import List

from fastapi import APIRouter, Depends, status
from fastapi.responses import PlainTextResponse
from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.api.deps import get_event_bus
from bookingchat.core.security import Actor, get_current_actor
from bookingchat.db.database import get_db
from bookingchat.realtime.relay import EventBus
from bookingchat.schemas.chat import ChatRead, MessageCreate, MessageRead
from bookingchat.services import chat_service, lifecycle_service

router = APIRouter(tags=["chats"])


@router.get("/booking/{booking_id}", response_model=ChatRead)
async def get_chat_for_booking(
    booking_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """Looks up the chat that belongs to a booking."""
    return await chat_service.get_chat_by_booking(db, booking_id, actor)


@router.get("/{chat_id}", response_model=ChatRead)
async def get_chat(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await chat_service.get_chat(db, chat_id, actor)


@router.get("/{chat_id}/messages", response_model=List[MessageRead])
async def list_messages(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    """
    Messages of the chat in creation order. Private messages are left out
    unless the caller is an admin or their author.
    """
    return await chat_service.list_messages(db, chat_id, actor)


@router.post("/{chat_id}/messages", response_model=MessageRead, status_code=status.HTTP_201_CREATED)
async def post_message(
    chat_id: int,
    message_in: MessageCreate,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    bus: EventBus = Depends(get_event_bus),
):
    return await chat_service.post_message(db, chat_id, actor, message_in, bus)


@router.post("/{chat_id}/close", response_model=ChatRead)
async def close_chat(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    bus: EventBus = Depends(get_event_bus),
):
    """Closes the chat for good and marks its booking completed."""
    return await lifecycle_service.close_chat(db, chat_id, actor, bus)


@router.get("/{chat_id}/transcript", response_class=PlainTextResponse)
async def download_transcript(
    chat_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    filename, text = await chat_service.build_transcript(db, chat_id, actor)
    return PlainTextResponse(
        text,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )
