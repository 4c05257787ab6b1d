"""
Main application module for taskq-publisher.
Implements dependency injection and service composition.
"""

import asyncio
import contextlib
import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn

from . import __description__, __version__
from .api.http_server import TaskQPublisherAPI
from .config import AppConfig, TCPAddress, resolve_address
from .infra.redis_client import RedisClient
from .infra.redis_queue import RedisListStore
from .services.id_generator import SonyflakeGenerator
from .services.lifecycle import ShutdownCoordinator
from .services.metrics import MetricsAggregator
from .services.publisher import PublishHandler
from .services.watcher import QueueDepthWatcher, WatchedQueueSet
from .telemetry.logger import MetricsLogger


logger = logging.getLogger(__name__)


class ManagedServer(uvicorn.Server):
    """
    Uvicorn server that leaves signal handling to the ShutdownCoordinator.
    """

    def install_signal_handlers(self) -> None:
        pass

    @contextlib.contextmanager
    def capture_signals(self):
        yield


class TaskQPublisherService:
    """
    Main service class that composes all dependencies and manages the
    service lifecycle.
    """

    def __init__(self, config: AppConfig):
        """
        Initialize service with configuration.

        Args:
            config: Application configuration

        Raises:
            ConfigurationError: If the bind or Redis address cannot be resolved
        """
        self.config = config

        # Addresses are resolved eagerly so that a bad address fails startup
        self.listen_address: TCPAddress = resolve_address(config.server.bind)
        self.redis_address: TCPAddress = resolve_address(config.redis.address)

        self.metrics = MetricsAggregator()
        self.watched = WatchedQueueSet()
        self.coordinator = ShutdownCoordinator(grace_period=config.server.grace_period)

        # Dependencies (will be initialized in setup)
        self.redis_client: Optional[RedisClient] = None
        self.queue_store: Optional[RedisListStore] = None
        self.id_generator: Optional[SonyflakeGenerator] = None
        self.publish_handler: Optional[PublishHandler] = None
        self.watcher: Optional[QueueDepthWatcher] = None
        self.metrics_logger: Optional[MetricsLogger] = None
        self.api: Optional[TaskQPublisherAPI] = None

        self._background_tasks: list[asyncio.Task] = []

    async def setup(self) -> None:
        """
        Setup all service dependencies.

        Raises:
            Exception: If setup fails
        """
        try:
            logger.info("Preparing Redis connection")
            logger.info(f"Redis server address {self.redis_address}")

            redis_config = self.config.redis
            self.redis_client = RedisClient(
                host=self.redis_address.host,
                port=self.redis_address.port,
                db=redis_config.db,
                password=redis_config.password,
                max_connections=redis_config.max_connections,
                socket_timeout=redis_config.socket_timeout,
                socket_connect_timeout=redis_config.socket_connect_timeout,
                health_check_interval=redis_config.health_check_interval
            )
            await self.redis_client.connect()

            self.queue_store = RedisListStore(self.redis_client)

            flake_config = self.config.flake
            self.id_generator = SonyflakeGenerator(
                machine_id=flake_config.machine_id,
                start_time=flake_config.start_time,
                clock_backward_tolerance_ms=flake_config.clock_backward_tolerance_ms
            )

            self.publish_handler = PublishHandler(
                queue_store=self.queue_store,
                id_generator=self.id_generator,
                metrics=self.metrics,
                watched=self.watched,
                record_watched=self.config.watcher.enabled
            )

            if self.config.watcher.enabled:
                self.watcher = QueueDepthWatcher(
                    queue_store=self.queue_store,
                    watched=self.watched,
                    metrics=self.metrics,
                    poll_interval=self.config.watcher.poll_interval,
                    query_timeout=redis_config.socket_timeout
                )

            if self.config.metrics.notifier_enabled:
                self.metrics_logger = MetricsLogger(
                    metrics=self.metrics,
                    period=self.config.metrics.notifier_period
                )

            self.api = TaskQPublisherAPI(
                publish_handler=self.publish_handler,
                metrics=self.metrics,
                title=__description__,
                version=__version__
            )

            logger.info(
                "Service setup completed successfully",
                extra={
                    "component": "app",
                    "machine_id": self.id_generator.machine_id,
                    "watcher_enabled": self.watcher is not None,
                    "metrics_notifier_enabled": self.metrics_logger is not None
                }
            )

        except Exception as e:
            logger.error(f"Service setup failed: {e}")
            await self.cleanup()
            raise

    async def cleanup(self) -> None:
        """Cleanup service resources."""
        logger.info("Cleaning up service resources")

        if self.redis_client:
            await self.redis_client.close()
            self.redis_client = None

        logger.info("Service cleanup completed")

    def _start_background_tasks(self) -> None:
        stop_event = self.coordinator.stop_event

        if self.metrics_logger:
            self._background_tasks.append(
                asyncio.create_task(self.metrics_logger.run(stop_event), name="metrics-logger")
            )
        if self.watcher:
            self._background_tasks.append(
                asyncio.create_task(self.watcher.run(stop_event), name="queue-depth-watcher")
            )

    async def _stop_background_tasks(self) -> None:
        self.coordinator.stop_event.set()
        results = await asyncio.gather(*self._background_tasks, return_exceptions=True)
        for task, result in zip(self._background_tasks, results):
            if isinstance(result, Exception):
                logger.error(
                    f"Background task {task.get_name()} failed: {result}",
                    extra={"component": "app"}
                )
        self._background_tasks.clear()

    def build_server(self) -> ManagedServer:
        """
        Create the uvicorn server for the API.

        Returns:
            Server whose signals are handled by the coordinator
        """
        if not self.api:
            raise RuntimeError("Service not setup. Call setup() first.")

        server_config = uvicorn.Config(
            app=self.api.app,
            host=self.listen_address.host,
            port=self.listen_address.port,
            log_level=self.config.server.log_level,
            log_config=None,
            # uvicorn timeouts are whole seconds, rounded up
            timeout_keep_alive=math.ceil(self.config.server.keep_alive_timeout),
            timeout_graceful_shutdown=(
                math.ceil(self.config.server.grace_period)
                if self.config.server.grace_period is not None else None
            ),
            access_log=False
        )
        return ManagedServer(server_config)

    async def run(self) -> None:
        """
        Run the service.

        Starts the HTTP server and background loops, and returns once a
        termination signal has been received and the drain is over.
        """
        server = self.build_server()

        logger.info(f"Listening on {self.listen_address}")

        loop = asyncio.get_running_loop()
        self.coordinator.install_signal_handlers(loop)
        self._start_background_tasks()
        try:
            await self.coordinator.run(server)
        finally:
            await self._stop_background_tasks()
            self.coordinator.remove_signal_handlers(loop)

    @asynccontextmanager
    async def lifespan(self):
        """
        Context manager for service lifecycle.

        Handles setup and cleanup automatically.
        """
        try:
            await self.setup()
            yield self
        finally:
            await self.cleanup()


async def serve(service: TaskQPublisherService) -> None:
    """Set up, run and clean up the service."""
    async with service.lifespan():
        await service.run()
