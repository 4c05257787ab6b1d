"""
Prometheus exposition of the metrics aggregator.

Each API instance owns its own CollectorRegistry, so several services can
coexist in one process.
"""

from prometheus_client import CollectorRegistry, generate_latest
from prometheus_client.core import GaugeMetricFamily, Metric
from prometheus_client.registry import Collector

from ..services.metrics import MetricsAggregator


PREFIX = "taskq_publisher"


def _counter(name: str, documentation: str) -> Metric:
    # Plain Metric keeps the sample name free of the ``_total`` suffix.
    return Metric(name, documentation, "counter")


class SnapshotCollector(Collector):
    """Reads a MetricsAggregator snapshot on every scrape."""

    def __init__(self, metrics: MetricsAggregator, prefix: str = PREFIX):
        self.metrics = metrics
        self.prefix = prefix

    def collect(self):
        snapshot = self.metrics.snapshot()
        prefix = self.prefix

        channel_len = GaugeMetricFamily(
            f"{prefix}_channel_len",
            "Last checked Redis channel length",
            labels=["channel"]
        )
        for channel, length in sorted(snapshot.queue_lengths.items()):
            channel_len.add_metric([channel], length)
        yield channel_len

        requests = _counter(f"{prefix}_requests", "Number of requests to the publisher by type")
        requests.add_sample(f"{prefix}_requests", {"method": "put"}, snapshot.put_requests)
        yield requests

        errors = _counter(f"{prefix}_errors", "Number of raised errors")
        errors.add_sample(f"{prefix}_errors", {}, snapshot.errors)
        yield errors

        index = _counter(f"{prefix}_index", "Number of requests to /")
        index.add_sample(f"{prefix}_index", {}, snapshot.index_hits)
        yield index


def build_registry(metrics: MetricsAggregator, prefix: str = PREFIX) -> CollectorRegistry:
    """
    Create a registry exporting the aggregator's counters.

    Args:
        metrics: Metrics aggregator to read from
        prefix: Metric name prefix

    Returns:
        Registry holding a single SnapshotCollector
    """
    registry = CollectorRegistry(auto_describe=False)
    registry.register(SnapshotCollector(metrics, prefix))
    return registry


def render_metrics(registry: CollectorRegistry) -> bytes:
    """Render the registry in the Prometheus text format."""
    return generate_latest(registry)
