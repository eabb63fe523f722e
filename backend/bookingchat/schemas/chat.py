from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, StrictInt
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, from_attributes=True)


class SenderRead(CamelModel):
    id: int
    name: str
    role: str


class ChatRead(CamelModel):
    id: int
    booking_id: int
    is_open: bool
    created_at: datetime
    closed_at: Optional[datetime] = None


class MessageCreate(CamelModel):
    content: str = ""
    is_private: bool = False
    is_quotation: bool = False
    # Strict so JSON booleans and numeric strings are refused instead of coerced
    quotation_amount: Optional[StrictInt] = None
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None


class MessageRead(CamelModel):
    id: int
    chat_id: int
    sender_id: int
    sender: Optional[SenderRead] = None
    content: str
    is_private: bool
    is_quotation: bool
    quotation_amount: Optional[int] = None
    attachment_url: Optional[str] = None
    attachment_type: Optional[str] = None
    created_at: datetime
