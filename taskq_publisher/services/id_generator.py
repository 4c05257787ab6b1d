"""
Sonyflake-style unique id generator.

An id is composed of (most significant first):
    39 bits  elapsed time since ``start_time`` in units of 10 ms
     8 bits  sequence number within one time unit
    16 bits  machine id

Ids are unique per machine id and never decrease within the process.
"""

import ipaddress
import logging
import os
import socket
import threading
import time
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..domain.ports import IdGenerator, GenerationError


logger = logging.getLogger(__name__)

BIT_LEN_TIME = 39
BIT_LEN_SEQUENCE = 8
BIT_LEN_MACHINE_ID = 16

TIME_UNIT_NS = 10_000_000  # 10 ms
DEFAULT_START_TIME = datetime(2014, 9, 1, tzinfo=timezone.utc)
_UNIX_EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_SEQUENCE_MASK = (1 << BIT_LEN_SEQUENCE) - 1
_MACHINE_ID_MASK = (1 << BIT_LEN_MACHINE_ID) - 1

_PRIVATE_NETWORKS = (
    ipaddress.ip_network("10.0.0.0/8"),
    ipaddress.ip_network("172.16.0.0/12"),
    ipaddress.ip_network("192.168.0.0/16"),
)


def _to_ticks(ns: int) -> int:
    return ns // TIME_UNIT_NS


def _datetime_to_ns(value: datetime) -> int:
    return (value - _UNIX_EPOCH) // timedelta(microseconds=1) * 1000


def private_ipv4_machine_id() -> Optional[int]:
    """
    Derive a machine id from the lower 16 bits of a private IPv4 address.

    Returns:
        Machine id, or None if the host has no private IPv4 address
    """
    try:
        _, _, addresses = socket.gethostbyname_ex(socket.gethostname())
    except OSError as e:
        logger.debug(f"Hostname lookup failed: {e}")
        return None

    for address in addresses:
        ip = ipaddress.ip_address(address)
        if any(ip in network for network in _PRIVATE_NETWORKS):
            packed = ip.packed
            return (packed[2] << 8) + packed[3]

    return None


def default_machine_id() -> int:
    """Private IPv4 based machine id, falling back to the process id."""
    machine_id = private_ipv4_machine_id()
    if machine_id is None:
        machine_id = os.getpid() & _MACHINE_ID_MASK
        logger.warning(
            "No private IPv4 address found, using process id as machine id",
            extra={"component": "id_generator", "machine_id": machine_id}
        )
    return machine_id


class SonyflakeGenerator(IdGenerator):
    """
    Thread-safe generator of 64-bit time-ordered ids.

    The sequence resets whenever the time unit advances. When all 256
    sequence values of a time unit are used, the generator borrows the next
    time unit and sleeps until the clock reaches it.
    """

    def __init__(
        self,
        machine_id: Optional[int] = None,
        start_time: datetime = DEFAULT_START_TIME,
        clock_backward_tolerance_ms: int = 1000,
        clock: Callable[[], int] = time.time_ns,
        sleep: Callable[[float], None] = time.sleep
    ):
        """
        Initialize generator.

        Args:
            machine_id: 16-bit machine id, derived from the host if None
            start_time: Epoch of the time component (timezone-aware)
            clock_backward_tolerance_ms: How far the wall clock may step back
                before next_id() fails
            clock: Wall clock returning nanoseconds since the Unix epoch
            sleep: Sleep function (seconds)

        Raises:
            GenerationError: If start_time is in the future or machine_id
                does not fit in 16 bits
        """
        self._clock = clock
        self._sleep = sleep

        if start_time.tzinfo is None:
            start_time = start_time.replace(tzinfo=timezone.utc)
        self._start_ticks = _to_ticks(_datetime_to_ns(start_time))
        if self._start_ticks > _to_ticks(self._clock()):
            raise GenerationError(f"Start time {start_time.isoformat()} is in the future")

        if machine_id is None:
            machine_id = default_machine_id()
        if not 0 <= machine_id <= _MACHINE_ID_MASK:
            raise GenerationError(f"Machine id {machine_id} does not fit in {BIT_LEN_MACHINE_ID} bits")
        self.machine_id = machine_id

        self._tolerance_ticks = max(0, clock_backward_tolerance_ms) * 1_000_000 // TIME_UNIT_NS

        self._lock = threading.Lock()
        self._elapsed = 0
        self._sequence = _SEQUENCE_MASK

    def _current_elapsed(self) -> int:
        return _to_ticks(self._clock()) - self._start_ticks

    def next_id(self) -> int:
        """
        Generate the next unique id.

        Returns:
            64-bit unsigned integer id

        Raises:
            GenerationError: If the clock moved backward beyond tolerance or
                the time component overflowed
        """
        with self._lock:
            current = self._current_elapsed()

            if self._elapsed < current:
                self._elapsed = current
                self._sequence = 0
            else:
                if self._elapsed - current > self._tolerance_ticks + 1:
                    raise GenerationError(
                        f"Clock moved backward by {(self._elapsed - current) * 10} ms"
                    )

                self._sequence = (self._sequence + 1) & _SEQUENCE_MASK
                if self._sequence == 0:
                    # Sequence exhausted, borrow the next time unit
                    self._elapsed += 1
                    overtime = self._elapsed - current
                    self._sleep(self._sleep_seconds(overtime))

            return self._to_id()

    def _sleep_seconds(self, overtime: int) -> float:
        remainder_ns = self._clock() % TIME_UNIT_NS
        return max(0.0, (overtime * TIME_UNIT_NS - remainder_ns) / 1_000_000_000)

    def _to_id(self) -> int:
        if self._elapsed >= 1 << BIT_LEN_TIME:
            raise GenerationError("Over the time limit of the id time component")

        return (
            self._elapsed << (BIT_LEN_SEQUENCE + BIT_LEN_MACHINE_ID)
            | self._sequence << BIT_LEN_MACHINE_ID
            | self.machine_id
        )


def decompose(uid: int) -> dict[str, int]:
    """
    Split an id into its components.

    Args:
        uid: Id produced by SonyflakeGenerator

    Returns:
        Dictionary with id, msb, time, sequence and machine_id
    """
    return {
        "id": uid,
        "msb": uid >> 63,
        "time": uid >> (BIT_LEN_SEQUENCE + BIT_LEN_MACHINE_ID),
        "sequence": (uid >> BIT_LEN_MACHINE_ID) & _SEQUENCE_MASK,
        "machine_id": uid & _MACHINE_ID_MASK,
    }
