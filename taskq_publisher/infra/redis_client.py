"""
Redis client wrapper for taskq-publisher.
Provides connection pool management and connectivity checks.
"""

import logging
from typing import Optional

import redis.asyncio as redis
from redis.exceptions import RedisError


logger = logging.getLogger(__name__)


class RedisClient:
    """
    Async Redis client wrapper with connection pooling.

    The connection is lazy: an unreachable server at startup is only logged,
    and every later command fails on its own. When all ``max_connections``
    are busy, a command waits up to ``socket_timeout`` for a free one.
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_connections: int = 2000,
        socket_timeout: float = 5.0,
        socket_connect_timeout: float = 5.0,
        health_check_interval: int = 30,
        client: Optional[redis.Redis] = None
    ):
        """
        Initialize Redis client.

        Args:
            host: Redis server host
            port: Redis server port
            db: Database number
            password: Optional password (AUTH)
            max_connections: Maximum connections in pool, callers queue beyond it
            socket_timeout: Socket timeout in seconds
            socket_connect_timeout: Connection timeout in seconds
            health_check_interval: Health check interval in seconds
            client: Pre-built client to use instead of creating a pool
        """
        self.host = host
        self.port = port
        self._pool: Optional[redis.BlockingConnectionPool] = None
        self._client: Optional[redis.Redis] = client
        self._owns_client = client is None

        self._pool_config = {
            "host": host,
            "port": port,
            "db": db,
            "password": password,
            "max_connections": max_connections,
            "socket_timeout": socket_timeout,
            "socket_connect_timeout": socket_connect_timeout,
            "health_check_interval": health_check_interval
        }

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    async def connect(self) -> bool:
        """
        Create the connection pool and check connectivity.

        Returns:
            True if Redis answered the ping, False otherwise
        """
        if self._client is None:
            self._pool = redis.BlockingConnectionPool(
                timeout=self._pool_config["socket_timeout"],
                **self._pool_config
            )
            self._client = redis.Redis(connection_pool=self._pool)

        if await self.ping():
            logger.info(f"Connected to Redis: {self.address}")
            return True

        logger.warning(
            f"Redis is not reachable at {self.address}, publishing will fail until it is",
            extra={"component": "redis_client", "redis_address": self.address}
        )
        return False

    async def close(self) -> None:
        """Close Redis connection and cleanup resources."""
        if self._client and self._owns_client:
            await self._client.aclose()
        self._client = None

        if self._pool:
            await self._pool.aclose()
            self._pool = None

        logger.info("Redis connection closed")

    @property
    def client(self) -> redis.Redis:
        """
        Get Redis client instance.

        Returns:
            Redis client

        Raises:
            RuntimeError: If not connected
        """
        if not self._client:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        """
        Ping Redis to check connectivity.

        Returns:
            True if ping successful, False otherwise
        """
        try:
            if not self._client:
                return False

            await self._client.ping()
            return True

        except RedisError as e:
            logger.warning(f"Redis ping failed: {e}")
            return False
