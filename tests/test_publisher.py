from __future__ import annotations

import asyncio
import json
import time

import pytest
from fakeredis import FakeServer
from fakeredis.aioredis import FakeRedis

from taskq_publisher.domain.ports import DecodeError, GenerationError, IdGenerator, QueueStore, StoreError
from taskq_publisher.domain.schema import PublishOutcome
from taskq_publisher.infra.redis_client import RedisClient
from taskq_publisher.infra.redis_queue import RedisListStore
from taskq_publisher.services.metrics import MetricsAggregator
from taskq_publisher.services.publisher import PublishHandler, decode_request, split_object
from taskq_publisher.services.watcher import WatchedQueueSet
from taskq_publisher.telemetry.context import current_uid


class RecordingStore(QueueStore):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.pushes: list[tuple[str, str, int | None]] = []

    async def push(self, name: str, payload: str) -> int:
        self.pushes.append((name, payload, current_uid.get()))
        if self.fail:
            raise StoreError("connection refused")
        return len(self.pushes)

    async def length(self, name: str) -> int:
        return len(self.pushes)


class CountingGenerator(IdGenerator):
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls = 0

    def next_id(self) -> int:
        self.calls += 1
        if self.fail:
            raise GenerationError("over the time limit")
        return 1000 + self.calls


def body(channel: str, payload) -> bytes:
    return json.dumps({"channel": channel, "payload": payload}).encode()


@pytest.mark.asyncio
async def test_publish_appends_payload_to_tail(publish_handler, fake_redis, metrics) -> None:
    await fake_redis.rpush("jobs", "existing")

    outcome = await publish_handler.handle(b'{"channel":"jobs","payload":{"x":1}}')

    assert outcome is PublishOutcome.OK
    assert outcome.status_code == 200
    assert await fake_redis.lrange("jobs", 0, -1) == [b"existing", b'{"x":1}']
    snapshot = metrics.snapshot()
    assert (snapshot.put_requests, snapshot.successes, snapshot.errors) == (1, 1, 0)


@pytest.mark.asyncio
async def test_decode_failure_short_circuits() -> None:
    store = RecordingStore()
    generator = CountingGenerator()
    metrics = MetricsAggregator()
    handler = PublishHandler(store, generator, metrics)

    outcome = await handler.handle(b"not json")

    assert outcome is PublishOutcome.INTERNAL_ERROR
    assert outcome.status_code == 500
    assert generator.calls == 0
    assert store.pushes == []
    snapshot = metrics.snapshot()
    assert (snapshot.put_requests, snapshot.errors, snapshot.successes) == (1, 1, 0)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw",
    [
        b"",
        b"[1, 2]",
        b'{"payload": {"x": 1}}',
        b'{"channel": "jobs"}',
        b'{"channel": 5, "payload": 1}',
    ],
)
async def test_structurally_invalid_bodies_are_rejected(raw: bytes) -> None:
    store = RecordingStore()
    handler = PublishHandler(store, CountingGenerator(), MetricsAggregator())

    assert await handler.handle(raw) is PublishOutcome.INTERNAL_ERROR
    assert store.pushes == []


@pytest.mark.asyncio
async def test_generation_failure_does_not_push() -> None:
    store = RecordingStore()
    metrics = MetricsAggregator()
    handler = PublishHandler(store, CountingGenerator(fail=True), metrics)

    outcome = await handler.handle(body("jobs", 1))

    assert outcome is PublishOutcome.INTERNAL_ERROR
    assert store.pushes == []
    assert metrics.snapshot().errors == 1
    assert metrics.snapshot().put_requests == 1


@pytest.mark.asyncio
async def test_store_failure_counts_error() -> None:
    metrics = MetricsAggregator()
    handler = PublishHandler(RecordingStore(fail=True), CountingGenerator(), metrics)

    outcome = await handler.handle(body("jobs", 1))

    assert outcome is PublishOutcome.INTERNAL_ERROR
    snapshot = metrics.snapshot()
    assert (snapshot.put_requests, snapshot.errors, snapshot.successes) == (1, 1, 0)


@pytest.mark.asyncio
async def test_unreachable_redis_is_a_store_error(id_generator) -> None:
    server = FakeServer()
    server.connected = False
    client = FakeRedis(server=server)
    metrics = MetricsAggregator()
    handler = PublishHandler(RedisListStore(RedisClient(client=client)), id_generator, metrics)

    outcome = await handler.handle(body("jobs", {"x": 1}))

    assert outcome is PublishOutcome.INTERNAL_ERROR
    assert metrics.snapshot().errors == 1
    assert metrics.snapshot().successes == 0
    await client.aclose()


@pytest.mark.asyncio
async def test_counters_under_concurrent_requests(publish_handler, fake_redis, metrics) -> None:
    good = [publish_handler.handle(body("jobs", {"i": i})) for i in range(200)]
    bad = [publish_handler.handle(b"{broken") for _ in range(50)]

    outcomes = await asyncio.gather(*good, *bad)

    assert outcomes.count(PublishOutcome.OK) == 200
    assert outcomes.count(PublishOutcome.INTERNAL_ERROR) == 50
    snapshot = metrics.snapshot()
    assert snapshot.successes == 200
    assert snapshot.errors == 50
    assert snapshot.put_requests == 250
    assert await fake_redis.llen("jobs") == 200


@pytest.mark.asyncio
async def test_unique_id_is_bound_while_pushing() -> None:
    store = RecordingStore()
    handler = PublishHandler(store, CountingGenerator(), MetricsAggregator())

    await handler.handle(body("jobs", 1))
    await handler.handle(body("jobs", 2))

    assert [uid for _, _, uid in store.pushes] == [1001, 1002]
    assert current_uid.get() is None


@pytest.mark.asyncio
async def test_watched_set_is_only_recorded_when_enabled() -> None:
    watched = WatchedQueueSet()
    disabled = PublishHandler(RecordingStore(), CountingGenerator(), MetricsAggregator(), watched=watched)
    await disabled.handle(body("jobs", 1))
    assert len(watched) == 0

    enabled = PublishHandler(
        RecordingStore(), CountingGenerator(), MetricsAggregator(),
        watched=watched, record_watched=True
    )
    await enabled.handle(body("jobs", 1))
    await enabled.handle(b"not json")
    assert "jobs" in watched
    assert len(watched) == 1


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "payload",
    [
        "1.50",
        "1e2",
        '"\\u00e9"',
        '{"a":1,"a":2}',
        "1e400",
        '{ "name": "żółw",  "n": [1, 2.5, null] }',
        "null",
    ],
)
async def test_payload_is_pushed_as_sent(publish_handler, fake_redis, payload: str) -> None:
    raw = '{"channel": "jobs", "payload": ' + payload + "}"

    outcome = await publish_handler.handle(raw.encode())

    assert outcome is PublishOutcome.OK
    assert await fake_redis.lrange("jobs", 0, -1) == [payload.encode()]


@pytest.mark.asyncio
@pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity", "[1, NaN]"])
async def test_non_json_constants_are_rejected(constant: str) -> None:
    store = RecordingStore()
    metrics = MetricsAggregator()
    handler = PublishHandler(store, CountingGenerator(), metrics)

    outcome = await handler.handle(('{"channel": "jobs", "payload": ' + constant + "}").encode())

    assert outcome is PublishOutcome.INTERNAL_ERROR
    assert store.pushes == []
    assert metrics.snapshot().errors == 1


def test_decode_keeps_last_duplicate_member_and_ignores_unknown_keys() -> None:
    request = decode_request(
        b'{"channel": "old", "payload": null, "priority": 3, "channel": "jobs"}'
    )

    assert request.channel == "jobs"
    assert request.payload == "null"


def test_decode_unescapes_channel_name() -> None:
    request = decode_request('{"channel": "caf\\u00e9", "payload": 1}')
    assert request.channel == "café"


@pytest.mark.parametrize(
    "raw",
    [
        b'{"channel": "jobs", "payload": 1} trailing',
        b'{"channel": "jobs", "payload": 1,}',
        b'{"channel": "jobs" "payload": 1}',
        b'{"channel": null, "payload": 1}',
        b'\xff{"channel": "jobs", "payload": 1}',
        b"{}",
    ],
)
def test_decode_rejects_malformed_objects(raw: bytes) -> None:
    with pytest.raises(DecodeError):
        decode_request(raw)


def test_split_object_returns_member_slices() -> None:
    assert split_object(' {"a" : [1, 2] , "b":"x\\"y"} ') == {"a": "[1, 2]", "b": '"x\\"y"'}
    assert split_object("{}") == {}


@pytest.mark.asyncio
async def test_slow_id_generation_does_not_block_the_event_loop() -> None:
    class SlowGenerator(IdGenerator):
        def next_id(self) -> int:
            time.sleep(0.2)
            return 7

    store = RecordingStore()
    handler = PublishHandler(store, SlowGenerator(), MetricsAggregator())

    task = asyncio.create_task(handler.handle(body("jobs", 1)))
    ticks = 0
    while not task.done():
        await asyncio.sleep(0.01)
        ticks += 1

    assert task.result() is PublishOutcome.OK
    assert ticks >= 5
    assert store.pushes == [("jobs", "1", 7)]
