"""
Infrastructure layer for taskq-publisher.

Contains implementations of domain interfaces backed by Redis.
"""

from .redis_client import RedisClient
from .redis_queue import RedisListStore

__all__ = [
    "RedisClient",
    "RedisListStore"
]
