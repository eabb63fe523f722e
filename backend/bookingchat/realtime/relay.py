import asyncio
import json
import logging
from typing import Optional
from uuid import uuid4

from redis.exceptions import RedisError

from bookingchat.core import config
from bookingchat.db.database_redis import RedisManager
from bookingchat.realtime.room_registry import RoomRegistry
from bookingchat.services.visibility import Visibility

logger = logging.getLogger(__name__)


class RedisRelay:
    """
    Carries room events between server instances over Redis Pub/Sub.

    Envelopes hold the room, the payload-free event and the visibility pair
    of the referenced message, never message content. Each instance skips
    envelopes it published itself because those were already delivered
    locally.
    """

    def __init__(self, registry: RoomRegistry, redis_manager=RedisManager, channel: str = config.RELAY_CHANNEL):
        self.registry = registry
        self.redis_manager = redis_manager
        self.channel = channel
        self.instance_id = uuid4().hex
        self._task: Optional[asyncio.Task] = None

    async def forward(self, room: str, event: dict, visibility: Optional[Visibility], exclude_user_id: Optional[int]):
        envelope = {
            "origin": self.instance_id,
            "room": room,
            "event": event,
            "visibility": list(visibility) if visibility else None,
            "exclude_user_id": exclude_user_id,
        }
        try:
            await self.redis_manager.publish_event(envelope, self.channel)
        except RedisError as e:
            # Push delivery is best effort; clients converge through refetch
            logger.error("[Relay] publish to %s failed: %s", self.channel, e)

    async def handle(self, raw) -> int:
        try:
            envelope = json.loads(raw)
        except (TypeError, ValueError):
            logger.warning("[Relay] dropping malformed envelope: %r", raw)
            return 0
        if not isinstance(envelope, dict) or envelope.get("origin") == self.instance_id:
            return 0

        try:
            room = envelope["room"]
            event = envelope["event"]
            visibility = envelope.get("visibility")
            visibility = Visibility(*visibility) if visibility else None
        except (KeyError, TypeError) as e:
            logger.warning("[Relay] dropping malformed envelope (%r): %r", e, raw)
            return 0
        return await self.registry.deliver(
            room,
            event,
            visibility=visibility,
            exclude_user_id=envelope.get("exclude_user_id"),
        )

    async def run(self, retry_delay: float = 2.0):
        while True:
            pubsub = self.redis_manager.pubsub()
            try:
                await pubsub.subscribe(self.channel)
                logger.info("[Relay] listening on %s as %s", self.channel, self.instance_id)
                async for message in pubsub.listen():
                    if message.get("type") != "message":
                        continue
                    try:
                        await self.handle(message["data"])
                    except Exception:
                        logger.exception("[Relay] failed to deliver envelope from %s", self.channel)
            except asyncio.CancelledError:
                raise
            except RedisError as e:
                logger.error("[Relay] subscription lost: %s; retrying in %.1fs", e, retry_delay)
                await asyncio.sleep(retry_delay)
            finally:
                await pubsub.aclose()

    def start(self):
        if self._task is None:
            self._task = asyncio.create_task(self.run())

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None


class EventBus:
    """Single entry point for pushing room events: local registry first, then the relay if any."""

    def __init__(self, registry: RoomRegistry, relay: Optional[RedisRelay] = None):
        self.registry = registry
        self.relay = relay

    async def publish(
        self,
        room: str,
        event: dict,
        visibility: Optional[Visibility] = None,
        exclude_user_id: Optional[int] = None,
    ) -> int:
        delivered = await self.registry.deliver(room, event, visibility=visibility, exclude_user_id=exclude_user_id)
        if self.relay is not None:
            await self.relay.forward(room, event, visibility, exclude_user_id)
        return delivered
