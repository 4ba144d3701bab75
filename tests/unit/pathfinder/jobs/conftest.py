import fakeredis
import pytest

from pathfinder.jobs import LocalBroker, QueueConfig, RedisBroker

START_MS = 1_700_000_000_000


class FakeClock:
    """Millisecond clock the brokers read instead of the wall clock."""

    def __init__(self, start: int = START_MS):
        self.now = start

    def __call__(self) -> int:
        return self.now

    def advance(self, ms: int) -> int:
        self.now += ms
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def redis_client():
    client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield client
    client.close()


@pytest.fixture(params=["local", "redis"])
def make_broker(request, clock):
    """Factory for brokers of both backends, driven by ``clock``."""
    brokers = []

    def _make(queue_config: QueueConfig | None = None, **kwargs):
        kwargs.setdefault("lease_seconds", 30)
        kwargs.setdefault("backoff_ms", 100)
        kwargs.setdefault("poll_interval", 0.01)
        queue_config = queue_config or QueueConfig(priority=5, attempts=3)
        if request.param == "local":
            broker = LocalBroker("test:queue", queue_config=queue_config, **kwargs)
        else:
            client = fakeredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
            broker = RedisBroker("test:queue", client=client, queue_config=queue_config, **kwargs)
        broker._now = clock
        brokers.append(broker)
        return broker

    yield _make

    for broker in brokers:
        if not broker.closed:
            broker.close(timeout=0)
