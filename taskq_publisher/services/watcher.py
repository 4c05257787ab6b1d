"""
Queue-depth watcher.

Periodically samples the length of recently published-to queues and records
it in the metrics aggregator. Disabled unless ``watcher.enabled`` is set.
"""

import asyncio
import logging
import threading
from datetime import datetime, timezone
from typing import Optional

from ..domain.ports import QueueStore, StoreError
from .lifecycle import sleep_until_stopped
from .metrics import MetricsAggregator


logger = logging.getLogger(__name__)


class WatchedQueueSet:
    """
    Queue names mapped to the time they were last published to.

    Entries are never evicted; cardinality grows with the number of
    distinct channels seen since the process started.
    """

    def __init__(self) -> None:
        self._last_seen: dict[str, datetime] = {}
        self._lock = threading.Lock()

    def touch(self, name: str, seen_at: Optional[datetime] = None) -> None:
        with self._lock:
            self._last_seen[name] = seen_at or datetime.now(timezone.utc)

    def snapshot(self) -> dict[str, datetime]:
        with self._lock:
            return dict(self._last_seen)

    def __contains__(self, name: object) -> bool:
        return name in self._last_seen

    def __len__(self) -> int:
        return len(self._last_seen)


class QueueDepthWatcher:
    """
    Background loop polling LLEN for every watched queue.

    Queries run concurrently and each one is bounded by ``query_timeout``,
    so a slow or failing queue never delays the others.
    """

    def __init__(
        self,
        queue_store: QueueStore,
        watched: WatchedQueueSet,
        metrics: MetricsAggregator,
        poll_interval: float = 60.0,
        query_timeout: float = 5.0
    ):
        """
        Initialize watcher.

        Args:
            queue_store: Store to query lengths from
            watched: Set of queues to sample
            metrics: Aggregator receiving the observations
            poll_interval: Seconds between polls
            query_timeout: Per-queue query timeout in seconds
        """
        self.queue_store = queue_store
        self.watched = watched
        self.metrics = metrics
        self.poll_interval = poll_interval
        self.query_timeout = query_timeout

    async def poll_once(self) -> dict[str, int]:
        """
        Sample every watched queue once.

        Returns:
            Lengths recorded during this poll (failed queues are absent)
        """
        channels = self.watched.snapshot()
        if not channels:
            return {}

        names = list(channels)
        results = await asyncio.gather(
            *(self._query(name, channels[name]) for name in names)
        )
        return {
            name: length
            for name, length in zip(names, results)
            if length is not None
        }

    async def _query(self, name: str, last_seen: datetime) -> Optional[int]:
        logger.debug(
            "Checking channel length",
            extra={"component": "watcher", "channel": name, "last_seen": last_seen}
        )

        try:
            length = await asyncio.wait_for(
                self.queue_store.length(name),
                timeout=self.query_timeout
            )
        except asyncio.TimeoutError:
            self.metrics.incr_warning()
            logger.warning(
                f"LLEN timed out after {self.query_timeout}s",
                extra={"component": "watcher", "channel": name}
            )
            return None
        except StoreError as e:
            self.metrics.incr_warning()
            logger.warning(
                f"LLEN failed: {e}",
                extra={"component": "watcher", "channel": name, "error": str(e)}
            )
            return None

        self.metrics.set_queue_length(name, length)
        logger.debug(
            "LLEN result for watched channel",
            extra={"component": "watcher", "channel": name, "length": length}
        )
        return length

    async def run(self, stop_event: asyncio.Event) -> None:
        """
        Poll until ``stop_event`` is set.

        Args:
            stop_event: Cancellation token set by the shutdown coordinator
        """
        logger.info(
            f"Queue-depth watcher started, polling every {self.poll_interval}s",
            extra={"component": "watcher"}
        )

        while not stop_event.is_set():
            await self.poll_once()
            if await sleep_until_stopped(stop_event, self.poll_interval):
                break

        logger.info("Queue-depth watcher stopped", extra={"component": "watcher"})
