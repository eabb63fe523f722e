from datetime import datetime
from typing import List, Optional, TYPE_CHECKING

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from bookingchat.db.database import Base
from bookingchat.db.models.base import get_utc_now

if TYPE_CHECKING:
    from bookingchat.db.models.booking import Booking
    from bookingchat.db.models.user import User


class Chat(Base):
    __tablename__ = "chats"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, nullable=False, index=True
    )
    is_open: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now)
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="chat")
    messages: Mapped[List["Message"]] = relationship(
        "Message",
        back_populates="chat",
        order_by="Message.id",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    __table_args__ = (
        CheckConstraint(
            "(is_open AND closed_at IS NULL) OR (NOT is_open AND closed_at IS NOT NULL)",
            name="ck_chats_closed_at_matches_state",
        ),
    )

    @validates("is_open")
    def _guard_reopen(self, key, value):
        if value and self.is_open is False:
            raise ValueError("A closed chat cannot be reopened")
        return value

    @validates("closed_at")
    def _guard_closed_at(self, key, value):
        if self.closed_at is not None and value != self.closed_at:
            raise ValueError("closed_at cannot change once set")
        return value

    def close(self, when: datetime):
        if self.is_open is False:
            raise ValueError("Chat is already closed")
        self.is_open = False
        self.closed_at = when


class Message(Base):
    __tablename__ = "messages"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    chat_id: Mapped[int] = mapped_column(Integer, ForeignKey("chats.id", ondelete="CASCADE"), nullable=False, index=True)
    sender_id: Mapped[int] = mapped_column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    content: Mapped[str] = mapped_column(Text, nullable=False, default="")
    is_private: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    is_quotation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    quotation_amount: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    attachment_url: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    attachment_type: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=get_utc_now, index=True)

    chat: Mapped["Chat"] = relationship("Chat", back_populates="messages")
    sender: Mapped["User"] = relationship("User", lazy="joined")

    __table_args__ = (
        CheckConstraint(
            "(is_quotation AND quotation_amount IS NOT NULL AND quotation_amount >= 0)"
            " OR (NOT is_quotation AND quotation_amount IS NULL)",
            name="ck_messages_quotation_amount",
        ),
    )
