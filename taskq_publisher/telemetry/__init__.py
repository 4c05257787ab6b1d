"""
Telemetry and observability for taskq-publisher.

Contains logging setup and the periodic metrics logger.
"""

from .context import current_uid
from .logger import setup_logging, JSONFormatter, CorrelationFilter, MetricsLogger

__all__ = [
    "setup_logging",
    "JSONFormatter",
    "CorrelationFilter",
    "MetricsLogger",
    "current_uid"
]
