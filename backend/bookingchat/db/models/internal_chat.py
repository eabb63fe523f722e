from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from bookingchat.db.database import Base
from bookingchat.db.models.base import get_utc_now

if TYPE_CHECKING:
    from bookingchat.db.models.user import User

INTERNAL_CHAT_TYPES = ("direct", "group")


def direct_key_for(user_a: int, user_b: int) -> str:
    """Order-independent key of a participant pair."""
    low, high = sorted((user_a, user_b))
    return f"{low}:{high}"


class InternalChat(Base):
    __tablename__ = "internal_chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    type: Mapped[str] = mapped_column(String(20), nullable=False, default="direct")
    title: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_by_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False)
    # Unique pair key for direct chats, NULL for group chats
    direct_key: Mapped[Optional[str]] = mapped_column(String(64), unique=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now)

    participants: Mapped[List["InternalChatParticipant"]] = relationship(
        "InternalChatParticipant",
        back_populates="chat",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    messages: Mapped[List["InternalMessage"]] = relationship(
        "InternalMessage",
        back_populates="chat",
        order_by="InternalMessage.id",
        cascade="all, delete-orphan",
    )


class InternalChatParticipant(Base):
    __tablename__ = "internal_chat_participants"
    __table_args__ = (UniqueConstraint("chat_id", "user_id", name="uq_internal_chat_participants_chat_user"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    chat_id: Mapped[int] = mapped_column(Integer, ForeignKey("internal_chats.id", ondelete="CASCADE"), nullable=False, index=True)
    user_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    last_read_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    joined_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now)

    chat: Mapped["InternalChat"] = relationship("InternalChat", back_populates="participants")
    user: Mapped["User"] = relationship("User", lazy="joined")


class InternalMessage(Base):
    __tablename__ = "internal_messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    chat_id: Mapped[int] = mapped_column(Integer, ForeignKey("internal_chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    attachment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now, index=True)

    chat: Mapped["InternalChat"] = relationship("InternalChat", back_populates="messages")
    sender: Mapped["User"] = relationship("User", lazy="joined")
