from __future__ import annotations

import asyncio
import json
import logging

import pytest

from taskq_publisher.services.metrics import MetricsAggregator
from taskq_publisher.telemetry.context import current_uid
from taskq_publisher.telemetry.logger import (
    CorrelationFilter,
    JSONFormatter,
    MetricsLogger,
    setup_logging,
)


def make_record(**extra) -> logging.LogRecord:
    record = logging.LogRecord(
        name="taskq_publisher.test", level=logging.INFO, pathname=__file__,
        lineno=1, msg="Publishing message", args=(), exc_info=None,
    )
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def test_json_formatter_includes_extra_fields() -> None:
    record = make_record(component="publisher", channel="jobs", uid=123)

    entry = json.loads(JSONFormatter(service_name="taskq-publisher").format(record))

    assert entry["message"] == "Publishing message"
    assert entry["service"] == "taskq-publisher"
    assert entry["level"] == "INFO"
    assert entry["channel"] == "jobs"
    assert entry["uid"] == 123


def test_correlation_filter_uses_current_uid() -> None:
    log_filter = CorrelationFilter()

    outside = make_record()
    log_filter.filter(outside)
    assert outside.correlation_id == "-"

    token = current_uid.set(42)
    try:
        inside = make_record()
        log_filter.filter(inside)
    finally:
        current_uid.reset(token)
    assert inside.correlation_id == "42"


def test_setup_logging_configures_root(restore_root_logger) -> None:
    setup_logging(level="DEBUG", enable_json=True, enable_correlation=True)

    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JSONFormatter)
    assert any(isinstance(f, CorrelationFilter) for f in root.handlers[0].filters)


def test_setup_logging_rejects_unknown_level(restore_root_logger) -> None:
    with pytest.raises(ValueError):
        setup_logging(level="LOUD")


@pytest.mark.asyncio
async def test_metrics_logger_logs_snapshots_until_stopped(caplog) -> None:
    metrics = MetricsAggregator()
    metrics.incr_put()
    metrics.incr_success()
    metrics_logger = MetricsLogger(metrics, period=0.01)
    stop_event = asyncio.Event()

    with caplog.at_level(logging.DEBUG, logger="metrics"):
        task = asyncio.create_task(metrics_logger.run(stop_event))
        while not [r for r in caplog.records if r.name == "metrics"]:
            await asyncio.sleep(0.01)
        stop_event.set()
        await asyncio.wait_for(task, timeout=1)

    record = next(r for r in caplog.records if r.name == "metrics")
    assert record.getMessage() == "Metrics"
    assert record.put == 1
    assert record.success == 1
    assert record.errors == 0
