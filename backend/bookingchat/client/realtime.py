import asyncio
import json
import logging
from typing import AsyncIterator, Optional
from urllib.parse import urlencode

import websockets
from websockets.exceptions import WebSocketException

from bookingchat.core.exceptions import TransportUnavailable

logger = logging.getLogger(__name__)


class RealtimeConnection:
    """
    Client end of /ws/chat. Every way the socket can fail (refused,
    rejected handshake, dropped mid-stream) surfaces as TransportUnavailable.
    """

    def __init__(self, websocket):
        self._ws = websocket
        self.session_id: Optional[str] = None

    @classmethod
    async def open(cls, ws_url: str, token: str, timeout: float = 10.0) -> "RealtimeConnection":
        uri = f"{ws_url.rstrip('/')}/ws/chat?{urlencode({'token': token})}"
        try:
            websocket = await asyncio.wait_for(websockets.connect(uri), timeout)
        except (OSError, WebSocketException, asyncio.TimeoutError) as e:
            raise TransportUnavailable(f"Cannot connect to {ws_url}: {e}") from e

        connection = cls(websocket)
        hello = await connection.receive()
        if hello.get("type") != "connected":
            await connection.close()
            raise TransportUnavailable("Unexpected handshake frame")
        connection.session_id = hello.get("sessionId")
        return connection

    async def send(self, frame: dict):
        try:
            await self._ws.send(json.dumps(frame))
        except WebSocketException as e:
            raise TransportUnavailable(str(e)) from e

    async def receive(self) -> dict:
        try:
            raw = await self._ws.recv()
        except WebSocketException as e:
            raise TransportUnavailable(str(e)) from e
        try:
            return json.loads(raw)
        except ValueError:
            logger.warning("[Realtime] ignoring non-JSON frame: %r", raw)
            return {}

    async def events(self) -> AsyncIterator[dict]:
        while True:
            frame = await self.receive()
            if frame:
                yield frame

    async def join_chat(self, chat_id: int):
        await self.send({"type": "join_room", "chatId": chat_id})

    async def leave_chat(self, chat_id: int):
        await self.send({"type": "leave_room", "chatId": chat_id})

    async def ping(self):
        await self.send({"type": "PING"})

    async def close(self):
        try:
            await self._ws.close()
        except WebSocketException:
            pass
