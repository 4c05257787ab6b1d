"""
Ports (interfaces) for taskq-publisher.
High-level services depend on these abstractions, not on Redis directly.
"""

from abc import ABC, abstractmethod


class QueueStore(ABC):
    """
    Interface for a list-based queue store.
    Implemented with Redis lists; any store with append/length semantics fits.
    """

    @abstractmethod
    async def push(self, name: str, payload: str) -> int:
        """
        Append a payload to the tail of the named queue.

        Args:
            name: Queue (list) name
            payload: Opaque payload text

        Returns:
            Queue length after the push

        Raises:
            StoreError: If the push fails
        """
        pass

    @abstractmethod
    async def length(self, name: str) -> int:
        """
        Get the current length of the named queue.

        Args:
            name: Queue (list) name

        Returns:
            Number of items in the queue (0 if it does not exist)

        Raises:
            StoreError: If the query fails
        """
        pass


class IdGenerator(ABC):
    """Interface for unique, time-ordered identifier generation."""

    @abstractmethod
    def next_id(self) -> int:
        """
        Produce the next identifier.

        Returns:
            64-bit unsigned integer, never lower than a previously returned one

        Raises:
            GenerationError: If no identifier can be produced
        """
        pass


# Custom exceptions
class PublisherError(Exception):
    """Base class for taskq-publisher errors."""
    pass


class DecodeError(PublisherError):
    """Raised when a request body cannot be decoded."""
    pass


class GenerationError(PublisherError):
    """Raised when a unique id cannot be assigned."""
    pass


class StoreError(PublisherError):
    """Raised when a queue push or length query fails."""
    pass


class ShutdownError(PublisherError):
    """Raised when the drain did not complete cleanly."""
    pass


class ConfigurationError(PublisherError):
    """Raised when configuration is invalid (e.g. unresolvable address)."""
    pass
