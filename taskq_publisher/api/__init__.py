"""
API layer for taskq-publisher.

Contains the HTTP endpoints and the Prometheus exposition.
"""

from .http_server import TaskQPublisherAPI
from .exposition import SnapshotCollector, build_registry, render_metrics

__all__ = [
    "TaskQPublisherAPI",
    "SnapshotCollector",
    "build_registry",
    "render_metrics"
]
