# backend/bookingchat/api/v1/chat.py
from fastapi import APIRouter, Depends

from bookingchat.api.deps import get_event_bus, get_room_registry
from bookingchat.core import config
from bookingchat.realtime.relay import EventBus
from bookingchat.realtime.room_registry import RoomRegistry

router = APIRouter()


@router.get("/status", tags=["chat"])
async def get_chat_status(
    registry: RoomRegistry = Depends(get_room_registry),
    bus: EventBus = Depends(get_event_bus),
):
    """
    Realtime channel status of this instance.
    """
    return {
        "status": "online",
        "activeSessions": registry.session_count,
        "activeRooms": registry.room_count,
        "relay": config.REALTIME_RELAY if bus.relay is not None else "off",
    }
