import json

import redis.asyncio as redis

from bookingchat.core import config

# Connection Pool (Reusable); nothing connects until the first command
pool = redis.ConnectionPool.from_url(config.REDIS_URL, decode_responses=True)


class RedisManager:
    @staticmethod
    def get_client() -> redis.Redis:
        """
        Returns an async Redis client from the global connection pool.
        """
        return redis.Redis(connection_pool=pool)

    @staticmethod
    async def publish_event(envelope: dict, channel: str = config.RELAY_CHANNEL) -> int:
        client = RedisManager.get_client()
        return await client.publish(channel, json.dumps(envelope))

    @staticmethod
    def pubsub():
        return RedisManager.get_client().pubsub(ignore_subscribe_messages=True)

    @staticmethod
    async def close():
        await pool.disconnect()
