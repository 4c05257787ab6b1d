"""
Domain layer for taskq-publisher.

Contains data models, interfaces and the error taxonomy.
"""

from .schema import PublishRequest, PublishOutcome, MetricsSnapshot
from .ports import (
    QueueStore,
    IdGenerator,
    PublisherError,
    DecodeError,
    GenerationError,
    StoreError,
    ShutdownError,
    ConfigurationError,
)

__all__ = [
    "PublishRequest",
    "PublishOutcome",
    "MetricsSnapshot",
    "QueueStore",
    "IdGenerator",
    "PublisherError",
    "DecodeError",
    "GenerationError",
    "StoreError",
    "ShutdownError",
    "ConfigurationError",
]
