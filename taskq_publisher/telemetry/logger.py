"""
Logging configuration for taskq-publisher.
Provides structured JSON logging correlated by request unique id, and the
periodic metrics logger enabled by --verbose.
"""

import asyncio
import logging
import sys
import json
from datetime import datetime, timezone
from typing import Any

from ..services.lifecycle import sleep_until_stopped
from ..services.metrics import MetricsAggregator
from .context import current_uid


_STANDARD_FIELDS = {
    'name', 'msg', 'args', 'levelname', 'levelno', 'pathname',
    'filename', 'module', 'exc_info', 'exc_text', 'stack_info',
    'lineno', 'funcName', 'created', 'msecs', 'relativeCreated',
    'thread', 'threadName', 'processName', 'process', 'getMessage',
    'taskName', 'message', 'asctime'
}


class JSONFormatter(logging.Formatter):
    """
    Custom JSON formatter for structured logging.
    Formats log records as JSON with consistent fields.
    """

    def __init__(
        self,
        service_name: str = "taskq-publisher",
        include_extra: bool = True
    ):
        """
        Initialize JSON formatter.

        Args:
            service_name: Name of the service for log identification
            include_extra: Whether to include extra fields from log record
        """
        super().__init__()
        self.service_name = service_name
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        """
        Format log record as JSON.

        Args:
            record: Log record to format

        Returns:
            JSON-formatted log string
        """
        log_entry = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "service": self.service_name,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }

        if record.exc_info:
            log_entry["exception"] = self.formatException(record.exc_info)

        if self.include_extra:
            for key, value in record.__dict__.items():
                if key not in _STANDARD_FIELDS and not key.startswith('_'):
                    log_entry[key] = value

        return json.dumps(log_entry, default=self._json_default)

    @staticmethod
    def _json_default(obj: Any) -> str:
        if isinstance(obj, datetime):
            return obj.isoformat()
        return str(obj)


class CorrelationFilter(logging.Filter):
    """
    Logging filter that stamps records with the current request's unique id.
    Records emitted outside a request get ``-``.
    """

    def filter(self, record: logging.LogRecord) -> bool:
        if not hasattr(record, 'correlation_id'):
            uid = current_uid.get()
            record.correlation_id = str(uid) if uid is not None else "-"
        return True


def setup_logging(
    level: str = "INFO",
    service_name: str = "taskq-publisher",
    enable_json: bool = True,
    enable_correlation: bool = True
) -> None:
    """
    Setup logging configuration for the service.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR)
        service_name: Service name for log identification
        enable_json: Whether to use JSON formatting
        enable_correlation: Whether to add correlation IDs
    """
    numeric_level = getattr(logging, level.upper(), None)
    if not isinstance(numeric_level, int):
        raise ValueError(f"Invalid log level: {level}")

    if enable_json:
        formatter = JSONFormatter(service_name=service_name)
    elif enable_correlation:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - [%(correlation_id)s] %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )
    else:
        formatter = logging.Formatter(
            fmt='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        )

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(formatter)

    if enable_correlation:
        handler.addFilter(CorrelationFilter())

    # Configure root logger
    logging.root.setLevel(numeric_level)
    logging.root.handlers.clear()
    logging.root.addHandler(handler)

    # Set levels for specific loggers
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.INFO)
    logging.getLogger("redis").setLevel(logging.WARNING)
    logging.getLogger("fastapi").setLevel(logging.INFO)

    logger = logging.getLogger(__name__)
    logger.debug(
        "Logger initialised",
        extra={
            "component": "logger",
            "level": level,
            "json_enabled": enable_json,
            "correlation_enabled": enable_correlation
        }
    )


class MetricsLogger:
    """
    Periodically logs the metrics snapshot at DEBUG level.
    """

    def __init__(
        self,
        metrics: MetricsAggregator,
        period: float = 60.0,
        logger_name: str = "metrics"
    ):
        """
        Initialize metrics logger.

        Args:
            metrics: Aggregator to read from
            period: Seconds between two log lines
            logger_name: Name of the logger to use
        """
        self.metrics = metrics
        self.period = period
        self.logger = logging.getLogger(logger_name)

    def log_snapshot(self) -> None:
        snapshot = self.metrics.snapshot()
        self.logger.debug(
            "Metrics",
            extra={
                "metric_type": "counters",
                "index": snapshot.index_hits,
                "put": snapshot.put_requests,
                "warnings": snapshot.warnings,
                "errors": snapshot.errors,
                "success": snapshot.successes,
                "uptime_seconds": round(
                    (datetime.now(timezone.utc) - snapshot.started_at).total_seconds(), 1
                )
            }
        )

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Log a snapshot every ``period`` seconds until ``stop_event`` is set.

        Args:
            stop_event: Cancellation token set by the shutdown coordinator
        """
        while not await sleep_until_stopped(stop_event, self.period):
            self.log_snapshot()
