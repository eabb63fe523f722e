from datetime import datetime
from typing import List, Optional

from bookingchat.schemas.chat import CamelModel, SenderRead


class DirectChatCreate(CamelModel):
    participant_id: int


class InternalMessageCreate(CamelModel):
    content: str = ""
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None


class InternalMessageRead(CamelModel):
    id: int
    chat_id: int
    sender_id: int
    sender: Optional[SenderRead] = None
    content: str
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime


class ParticipantRead(CamelModel):
    user_id: int
    name: str
    role: str
    last_read_at: Optional[datetime] = None
    joined_at: datetime


class InternalChatRead(CamelModel):
    id: int
    type: str
    title: Optional[str] = None
    created_by_id: int
    created_at: datetime
    participants: List[ParticipantRead] = []
    last_message: Optional[InternalMessageRead] = None
    unread_count: int = 0


class DirectoryUser(CamelModel):
    id: int
    name: str
    role: str


class ReadReceipt(CamelModel):
    success: bool = True
    unread_count: int = 0
