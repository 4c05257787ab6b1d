"""
Process-wide metrics aggregator.

Every counter carries its own lock, so concurrent increments of different
counters never contend and the aggregator as a whole is never locked.
Counters only grow; they reset when the process restarts.
"""

import threading
from datetime import datetime, timezone
from typing import Optional

from ..domain.schema import MetricsSnapshot


class AtomicCounter:
    """Monotonic integer counter safe for concurrent increments."""

    def __init__(self) -> None:
        self._value = 0
        self._lock = threading.Lock()

    def increment(self, n: int = 1) -> int:
        with self._lock:
            self._value += n
            return self._value

    @property
    def value(self) -> int:
        return self._value


class MetricsAggregator:
    """
    Counters updated by request handlers and background loops.

    Other components only submit increments or queue length observations
    through this interface; none of them mutate the state directly.
    """

    def __init__(self, started_at: Optional[datetime] = None):
        """
        Initialize aggregator.

        Args:
            started_at: Process start time, defaults to now (UTC)
        """
        self.started_at = started_at or datetime.now(timezone.utc)

        self._index = AtomicCounter()
        self._warnings = AtomicCounter()
        self._errors = AtomicCounter()
        self._successes = AtomicCounter()
        self._put = AtomicCounter()

        self._queue_lengths: dict[str, int] = {}
        self._queue_lengths_lock = threading.Lock()

    def incr_index(self) -> int:
        return self._index.increment()

    def incr_put(self) -> int:
        return self._put.increment()

    def incr_error(self) -> int:
        return self._errors.increment()

    def incr_warning(self) -> int:
        return self._warnings.increment()

    def incr_success(self) -> int:
        return self._successes.increment()

    def set_queue_length(self, name: str, length: int) -> None:
        """
        Record the last observed length of a queue, replacing the previous one.

        Args:
            name: Queue name
            length: Observed length
        """
        with self._queue_lengths_lock:
            self._queue_lengths[name] = int(length)

    def snapshot(self) -> MetricsSnapshot:
        """
        Read all counters without blocking writers.

        Counters are read one by one, so a snapshot taken under load may mix
        values from slightly different instants.

        Returns:
            MetricsSnapshot with current values
        """
        return MetricsSnapshot(
            index_hits=self._index.value,
            warnings=self._warnings.value,
            errors=self._errors.value,
            successes=self._successes.value,
            put_requests=self._put.value,
            started_at=self.started_at,
            queue_lengths=self._queue_lengths.copy(),
        )
