"""
HTTP server for taskq-publisher using FastAPI.
Exposes the identity, publish and metrics endpoints.
"""

import logging
import time

from fastapi import FastAPI, Request, Response
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST

from ..services.metrics import MetricsAggregator
from ..services.publisher import PublishHandler
from .exposition import build_registry, render_metrics


logger = logging.getLogger(__name__)


class TaskQPublisherAPI:
    """
    FastAPI application for taskq-publisher.

    Failed publishes answer 500 with an empty body; the reason is only
    available in server logs and /metrics.
    """

    def __init__(
        self,
        publish_handler: PublishHandler,
        metrics: MetricsAggregator,
        title: str = "TaskQ Redis Publisher",
        version: str = "0.1.0"
    ):
        """
        Initialize FastAPI application.

        Args:
            publish_handler: Handler for POST /put
            metrics: Metrics aggregator
            title: Application description, also served on /
            version: Application version
        """
        self.publish_handler = publish_handler
        self.metrics = metrics
        self.registry = build_registry(metrics)
        self.title = title
        self.version = version

        self.app = FastAPI(
            title=title,
            version=version,
            description="HTTP API for appending payloads to Redis lists",
            docs_url=None,
            redoc_url=None,
            openapi_url=None
        )

        self._setup_middleware()
        self._setup_routes()

    def _setup_middleware(self) -> None:
        """Setup FastAPI middleware."""

        # Request logging middleware
        @self.app.middleware("http")
        async def log_requests(request: Request, call_next):
            start_time = time.time()

            logger.debug(
                f"Request started: {request.method} {request.url.path}",
                extra={
                    "component": "http_server",
                    "method": request.method,
                    "path": request.url.path,
                    "client_ip": request.client.host if request.client else "unknown"
                }
            )

            response = await call_next(request)

            elapsed_ms = (time.time() - start_time) * 1000
            logger.info(
                f"Request completed: {response.status_code}",
                extra={
                    "component": "http_server",
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "elapsed_ms": round(elapsed_ms, 2)
                }
            )

            return response

    def _setup_routes(self) -> None:
        """Setup FastAPI routes."""

        @self.app.get("/", response_class=PlainTextResponse)
        async def index() -> PlainTextResponse:
            """Service identity."""
            self.metrics.incr_index()
            return PlainTextResponse(f"{self.title} v{self.version}\n")

        @self.app.post("/put")
        async def put(request: Request) -> Response:
            """
            Append ``payload`` to the Redis list named ``channel``.

            The body is read raw so that malformed JSON is counted and
            answered by the publish handler rather than by FastAPI validation.
            """
            logger.info(
                f"Processing incoming request {request.url}",
                extra={"component": "http_server"}
            )
            body = await request.body()
            outcome = await self.publish_handler.handle(body)
            return Response(status_code=outcome.status_code)

        @self.app.get("/metrics")
        async def metrics() -> Response:
            """Metrics in text exposition format."""
            return Response(
                content=render_metrics(self.registry),
                media_type=CONTENT_TYPE_LATEST
            )
