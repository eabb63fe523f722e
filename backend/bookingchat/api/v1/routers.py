# backend/bookingchat/api/v1/routers.py
from fastapi import APIRouter

from bookingchat.api.v1 import chat, chats, internal_chats, uploads

# Main API router (/v1)
api_router = APIRouter(prefix="/v1")

# Booking chats: messages, close, transcript
api_router.include_router(chats.router, prefix="/chats")

# Staff/admin direct messages
api_router.include_router(internal_chats.router, prefix="/internal-chats")

# Attachment and voice uploads
api_router.include_router(uploads.router, prefix="/uploads")

# Realtime status probe
api_router.include_router(chat.router, prefix="/chat", tags=["chat"])
