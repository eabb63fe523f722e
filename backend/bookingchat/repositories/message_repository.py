from typing import List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from bookingchat.core import config
from bookingchat.db.models.booking import Booking
from bookingchat.db.models.chat import Chat, Message


class ChatRepository:
    """
    Booking chat rows. Lifecycle rules live in lifecycle_service.
    """

    @staticmethod
    async def get(db: AsyncSession, chat_id: int) -> Optional[Chat]:
        return await db.get(Chat, chat_id)

    @staticmethod
    async def get_for_update(db: AsyncSession, chat_id: int) -> Optional[Chat]:
        """
        Loads the chat row with a row lock held until the transaction ends,
        so the open/closed check and the following write see the same state.
        Already-loaded instances are overwritten with the locked row.
        """
        stmt = (
            select(Chat)
            .where(Chat.id == chat_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    @staticmethod
    async def get_by_booking(db: AsyncSession, booking_id: int) -> Optional[Chat]:
        result = await db.execute(select(Chat).where(Chat.booking_id == booking_id))
        return result.scalar_one_or_none()

    @staticmethod
    async def create(db: AsyncSession, booking_id: int) -> Chat:
        chat = Chat(booking_id=booking_id, is_open=True)
        db.add(chat)
        await db.flush()
        return chat

    @staticmethod
    async def get_booking(db: AsyncSession, chat: Chat) -> Booking:
        return await db.get(Booking, chat.booking_id)


class MessageRepository:
    """
    Append-only message store. Insertion order (autoincrement id) is the
    canonical order of a chat; there is no update or delete here.
    """

    @staticmethod
    async def append(db: AsyncSession, message: Message) -> Message:
        db.add(message)
        await db.flush()
        return message

    @staticmethod
    async def list_for_chat(db: AsyncSession, chat_id: int, limit: int = config.MESSAGE_PAGE_LIMIT) -> List[Message]:
        """Latest `limit` messages of the chat, oldest first."""
        stmt = (
            select(Message)
            .where(Message.chat_id == chat_id)
            .order_by(Message.id.desc())
            .limit(limit)
        )
        result = await db.execute(stmt)
        rows = list(result.scalars().unique().all())
        rows.reverse()
        return rows

    @staticmethod
    async def get(db: AsyncSession, message_id: int) -> Optional[Message]:
        return await db.get(Message, message_id)
