from fastapi import Request

from bookingchat.realtime.relay import EventBus
from bookingchat.realtime.room_registry import RoomRegistry


def get_room_registry(request: Request) -> RoomRegistry:
    return request.app.state.registry


def get_event_bus(request: Request) -> EventBus:
    """Routes publish through the app-wide bus so events reach every connected session."""
    return request.app.state.bus
