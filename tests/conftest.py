import asyncio

import pytest
import pytest_asyncio
from fakeredis import aioredis as fake_aioredis

from dwnstream.broker.memory_broker import InMemoryBroker
from dwnstream.broker.redis_stream_broker import RedisStreamBroker
from dwnstream.event_stream.stream import PubSubEventStream

FAST_PROVISIONING = {"max_attempts": 2, "retry_delay": 0}


async def _wait_until(predicate, timeout: float = 2.0, interval: float = 0.01):
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(interval)


@pytest.fixture
def wait_until():
    """Poll a predicate until it holds, failing the test after a timeout."""
    return _wait_until


@pytest.fixture
def memory_broker():
    return InMemoryBroker()


@pytest_asyncio.fixture
async def fake_redis():
    client = fake_aioredis.FakeRedis(decode_responses=True)
    yield client
    await client.flushall()


@pytest_asyncio.fixture
async def redis_broker(fake_redis):
    """Redis Streams broker on fakeredis, polling instead of blocking reads."""
    broker = RedisStreamBroker(
        namespace="test-project",
        client=fake_redis,
        block_ms=None,
        poll_interval=0.01,
    )
    yield broker
    for subscription in list(broker._consumers):
        await broker.close_subscription(subscription)


@pytest_asyncio.fixture
async def stream(memory_broker):
    """Open event stream on the in-memory broker."""
    event_stream = PubSubEventStream(
        project_id="test-project",
        broker=memory_broker,
        provisioner_options=FAST_PROVISIONING,
    )
    await event_stream.open()
    yield event_stream
    await event_stream.close()


class Recorder:
    """Listener that records every call."""

    def __init__(self):
        self.calls = []

    def __call__(self, tenant, event, indexes):
        self.calls.append((tenant, event, indexes))


@pytest.fixture
def recorder():
    return Recorder()


@pytest.fixture
def make_recorder():
    return Recorder
