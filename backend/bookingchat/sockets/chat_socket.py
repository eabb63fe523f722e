import logging
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from bookingchat.core.exceptions import ChatServiceError, ValidationFailed
from bookingchat.core.security import verify_websocket_token
from bookingchat.db.database import AsyncSessionLocal
from bookingchat.realtime.room_registry import RoomRegistry, Session, inbox_room
from bookingchat.services import realtime_service

logger = logging.getLogger(__name__)

router = APIRouter()


def _chat_id(frame: dict) -> int:
    value = frame.get("chatId")
    if isinstance(value, bool) or value is None:
        raise ValidationFailed("chatId is required")
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationFailed("chatId must be an integer")


async def handle_frame(registry: RoomRegistry, session: Session, frame: dict) -> Optional[dict]:
    """
    Applies one client frame and returns the reply frame, if any.

    - join_room {chatId}: subscribe to a booking chat (membership is checked)
    - leave_room {chatId}: unsubscribe
    - join {room}: subscribe to the caller's own inbox room
    - PING: keepalive
    """
    if not isinstance(frame, dict):
        raise ValidationFailed("Frames must be JSON objects")
    frame_type = frame.get("type")

    if frame_type == "PING":
        return {"type": "PONG"}

    if frame_type == "join_room":
        chat_id = _chat_id(frame)
        async with AsyncSessionLocal() as db:
            room = await realtime_service.join_chat_room(db, registry, chat_id, session)
        return {"type": "joined", "room": room, "chatId": chat_id}

    if frame_type == "leave_room":
        chat_id = _chat_id(frame)
        room = await realtime_service.leave_chat_room(registry, chat_id, session)
        return {"type": "left", "room": room, "chatId": chat_id}

    if frame_type == "join":
        room = await realtime_service.join_inbox(registry, str(frame.get("room", "")), session)
        return {"type": "joined", "room": room}

    raise ValidationFailed(f"Unknown frame type: {frame_type}")


@router.websocket("/ws/chat")
async def chat_endpoint(websocket: WebSocket, token: Optional[str] = None):
    """
    Realtime channel for booking chats and internal messages.

    The server only pushes refresh signals here (message_created,
    chat_closed, internal_message_created, internal_chat_created); clients
    fetch content over REST.
    """
    actor = await verify_websocket_token(websocket, token)
    if actor is None:
        return

    registry: RoomRegistry = websocket.app.state.registry
    await websocket.accept()
    session = Session(actor=actor, transport=websocket)
    # Every session hears its own inbox without asking
    await registry.add(inbox_room(actor.id), session)
    await session.send({"type": "connected", "userId": actor.id, "role": actor.role, "sessionId": session.id})
    logger.info("[ChatWS] user %s connected (session %s)", actor.id, session.id)

    try:
        while True:
            try:
                frame = await websocket.receive_json()
            except ValueError:
                await session.send({"type": "error", **ValidationFailed("Frames must be valid JSON").to_dict()})
                continue

            try:
                reply = await handle_frame(registry, session, frame)
            except ChatServiceError as e:
                logger.warning("[ChatWS] frame from user %s rejected: %s", actor.id, e.detail)
                reply = {"type": "error", **e.to_dict()}
            except Exception:
                logger.exception("[ChatWS] failed to handle frame from user %s", actor.id)
                reply = {"type": "error", "code": "internal_error", "detail": "Internal server error"}
            if reply is not None:
                await session.send(reply)
    except WebSocketDisconnect:
        logger.info("[ChatWS] user %s disconnected (session %s)", actor.id, session.id)
    finally:
        await registry.drop_session(session)
