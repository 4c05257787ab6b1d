"""
Shutdown coordination for taskq-publisher.

The coordinator owns the process signals. On SIGINT/SIGTERM it asks the HTTP
server to stop accepting connections, lets in-flight requests finish, and
sets ``stop_event`` so background loops exit during the drain.
"""

import asyncio
import logging
import signal
from enum import Enum
from typing import Optional, Protocol

from ..domain.ports import ShutdownError


logger = logging.getLogger(__name__)

HANDLED_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ShutdownState(str, Enum):
    RUNNING = "running"
    DRAINING = "draining"
    STOPPED = "stopped"


class DrainableServer(Protocol):
    """The part of ``uvicorn.Server`` the coordinator drives."""

    should_exit: bool
    force_exit: bool

    async def serve(self, sockets=None) -> None: ...


async def sleep_until_stopped(stop_event: asyncio.Event, timeout: float) -> bool:
    """
    Sleep for ``timeout`` seconds or until ``stop_event`` is set.

    Args:
        stop_event: Cancellation token
        timeout: Maximum sleep in seconds

    Returns:
        True if the event was set, False if the timeout elapsed
    """
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=timeout)
        return True
    except asyncio.TimeoutError:
        return False


class ShutdownCoordinator:
    """
    Running -> Draining -> Stopped state machine around the HTTP server.

    Drain errors are logged as ShutdownError and never prevent a clean exit.
    """

    def __init__(self, grace_period: Optional[float] = None):
        """
        Initialize coordinator.

        Args:
            grace_period: Seconds to wait for in-flight requests, None leaves
                the limit to the server (no extra timeout)
        """
        self.grace_period = grace_period
        self.state = ShutdownState.RUNNING
        self.stop_event = asyncio.Event()
        self._server: Optional[DrainableServer] = None
        self._installed: list[signal.Signals] = []

    def install_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = loop or asyncio.get_running_loop()
        for sig in HANDLED_SIGNALS:
            loop.add_signal_handler(sig, self.request_shutdown, sig)
            self._installed.append(sig)
        logger.debug("Signal handlers installed", extra={"component": "shutdown"})

    def remove_signal_handlers(self, loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        loop = loop or asyncio.get_running_loop()
        for sig in self._installed:
            loop.remove_signal_handler(sig)
        self._installed.clear()

    def request_shutdown(self, signum: Optional[int] = None) -> None:
        """
        Start draining. A second request while draining forces the exit.

        Args:
            signum: Signal that triggered the shutdown, if any
        """
        signame = signal.Signals(signum).name if signum is not None else "none"

        if self.state is ShutdownState.RUNNING:
            logger.info(
                f"Received signal {signame}, draining",
                extra={"component": "shutdown", "signal": signame}
            )
            self.state = ShutdownState.DRAINING
            self.stop_event.set()
            if self._server is not None:
                self._server.should_exit = True

        elif self.state is ShutdownState.DRAINING and self._server is not None:
            logger.warning(
                f"Received signal {signame} while draining, forcing exit",
                extra={"component": "shutdown", "signal": signame}
            )
            self._server.force_exit = True

    async def run(self, server: DrainableServer) -> None:
        """
        Serve until shutdown is requested and the drain completes.

        Args:
            server: Server to run and drain
        """
        self._server = server
        if self.state is not ShutdownState.RUNNING:
            server.should_exit = True

        try:
            await server.serve()
        except Exception as e:
            if self.state is ShutdownState.RUNNING:
                raise
            error = ShutdownError(f"HTTP server shutdown failed: {e}")
            logger.error(
                str(error),
                exc_info=True,
                extra={"component": "shutdown", "state": self.state.value}
            )
        else:
            logger.info("HTTP server shutdown complete", extra={"component": "shutdown"})
        finally:
            self.stop_event.set()
            self.state = ShutdownState.STOPPED
            self._server = None
