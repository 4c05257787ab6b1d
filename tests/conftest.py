from __future__ import annotations

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis
from httpx import ASGITransport, AsyncClient

from taskq_publisher.api.http_server import TaskQPublisherAPI
from taskq_publisher.infra.redis_client import RedisClient
from taskq_publisher.infra.redis_queue import RedisListStore
from taskq_publisher.services.id_generator import SonyflakeGenerator
from taskq_publisher.services.metrics import MetricsAggregator
from taskq_publisher.services.publisher import PublishHandler
from taskq_publisher.services.watcher import WatchedQueueSet


@pytest_asyncio.fixture
async def fake_redis() -> AsyncIterator[FakeRedis]:
    client = FakeRedis(server=FakeServer(), decode_responses=False, max_connections=1000)
    try:
        yield client
    finally:
        await client.aclose()


@pytest.fixture
def queue_store(fake_redis: FakeRedis) -> RedisListStore:
    return RedisListStore(RedisClient(client=fake_redis))


@pytest.fixture
def metrics() -> MetricsAggregator:
    return MetricsAggregator()


@pytest.fixture
def id_generator() -> SonyflakeGenerator:
    return SonyflakeGenerator(machine_id=1)


@pytest.fixture
def watched() -> WatchedQueueSet:
    return WatchedQueueSet()


@pytest.fixture
def publish_handler(
    queue_store: RedisListStore,
    id_generator: SonyflakeGenerator,
    metrics: MetricsAggregator,
    watched: WatchedQueueSet,
) -> PublishHandler:
    return PublishHandler(queue_store, id_generator, metrics, watched=watched)


@pytest_asyncio.fixture
async def api_client(
    publish_handler: PublishHandler, metrics: MetricsAggregator
) -> AsyncIterator[AsyncClient]:
    api = TaskQPublisherAPI(publish_handler, metrics, title="TaskQ Redis Publisher", version="1.2.3")
    transport = ASGITransport(app=api.app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
