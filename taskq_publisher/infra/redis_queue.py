"""
Redis list implementation of the QueueStore interface.
Queues are plain Redis lists: RPUSH appends, LLEN reports depth.
"""

import logging

from redis.exceptions import RedisError

from ..domain.ports import QueueStore, StoreError
from .redis_client import RedisClient


logger = logging.getLogger(__name__)


class RedisListStore(QueueStore):
    """
    Appends payloads to Redis lists.

    Each push is a single RPUSH, so concurrent producers are ordered by Redis
    itself. Nothing is retried.
    """

    def __init__(self, redis_client: RedisClient):
        """
        Initialize Redis list store.

        Args:
            redis_client: Redis client instance
        """
        self.redis_client = redis_client

    async def push(self, name: str, payload: str) -> int:
        """
        Append payload to the tail of the list ``name``.

        Args:
            name: List key
            payload: Payload text

        Returns:
            List length after the push

        Raises:
            StoreError: If Redis operation fails
        """
        try:
            return await self.redis_client.client.rpush(name, payload)

        except RedisError as e:
            logger.error(
                f"RPUSH failed: {e}",
                extra={"component": "redis_queue", "channel": name, "error": str(e)}
            )
            raise StoreError(f"Redis push failed: {e}") from e

    async def length(self, name: str) -> int:
        """
        Get the length of the list ``name``.

        Raises:
            StoreError: If Redis operation fails
        """
        try:
            return await self.redis_client.client.llen(name)

        except RedisError as e:
            raise StoreError(f"Redis length query failed: {e}") from e
