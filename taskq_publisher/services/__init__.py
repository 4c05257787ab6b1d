"""
Service layer for taskq-publisher.

Contains the publish pipeline: id generation, metrics aggregation,
queue-depth watching and shutdown coordination.
"""

from .id_generator import SonyflakeGenerator, decompose
from .metrics import MetricsAggregator, AtomicCounter
from .lifecycle import ShutdownCoordinator, ShutdownState
from .watcher import QueueDepthWatcher, WatchedQueueSet

__all__ = [
    "SonyflakeGenerator",
    "decompose",
    "MetricsAggregator",
    "AtomicCounter",
    "ShutdownCoordinator",
    "ShutdownState",
    "QueueDepthWatcher",
    "WatchedQueueSet"
]
