import time
from unittest.mock import MagicMock

import pytest

from pathfinder.core import BrokerUnavailableError, InvalidInputError, QueueNotFoundError, ServiceUnavailableError
from pathfinder.jobs import Consumer, JobState, JobType, LocalBroker, QueueConfig, QueueManager


class RecordingConsumer(Consumer):
    def __init__(self, fail_with=None, **kwargs):
        super().__init__(JobType.ROUTE_OPTIMIZATION, poll_timeout=0.01, **kwargs)
        self.processed = []
        self.fail_with = fail_with

    def run(self, job, progress):
        progress(50)
        self.processed.append(job.payload)
        if self.fail_with is not None:
            raise self.fail_with
        return {"echo": job.payload}


@pytest.fixture
def broker():
    broker = LocalBroker("route:optimization", queue_config=QueueConfig(attempts=2), backoff_ms=0)
    yield broker
    broker.close(timeout=0)


class TestConsumer:
    def test_consume_completes_jobs(self, broker):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        job_id = broker.enqueue({"route_id": "r1"}).id

        assert consumer.consume(num_messages=1) == 1

        job = broker.get_job(job_id)
        assert job.state == JobState.COMPLETED
        assert job.progress == 50
        assert job.result == {"echo": {"route_id": "r1"}}

    def test_consume_non_blocking_drains_queue(self, broker):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        for i in range(3):
            broker.enqueue({"n": i})

        assert consumer.consume(block=False) == 3
        assert consumer.processed == [{"n": 0}, {"n": 1}, {"n": 2}]

    def test_exceptions_fail_the_job(self, broker, caplog):
        consumer = RecordingConsumer(fail_with=InvalidInputError("bad payload"))
        consumer.connect_to_broker(broker)
        job_id = broker.enqueue({}).id

        consumer.consume(num_messages=1)

        job = broker.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.error.kind == "InvalidInputError"
        assert job.error.message == "bad payload"
        assert any("failed" in r.getMessage() and r.exc_info for r in caplog.records)

    def test_retryable_exceptions_are_retried(self, broker):
        consumer = RecordingConsumer(fail_with=ServiceUnavailableError())
        consumer.connect_to_broker(broker)
        job_id = broker.enqueue({}).id

        consumer.consume(num_messages=2)

        job = broker.get_job(job_id)
        assert job.state == JobState.FAILED
        assert job.attempts == 2
        assert len(consumer.processed) == 2

    def test_consume_requires_connection(self):
        with pytest.raises(RuntimeError, match="not connected"):
            RecordingConsumer().consume()

    def test_cannot_connect_twice(self, broker):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        with pytest.raises(RuntimeError, match="already connected"):
            consumer.connect_to_broker(broker)

    def test_connect_to_manager(self):
        with QueueManager(backend="local", job_types=[JobType.ROUTE_OPTIMIZATION]) as manager:
            consumer = RecordingConsumer()
            consumer.connect_to_manager(manager)
            assert consumer.broker is manager.get_queue(JobType.ROUTE_OPTIMIZATION)

    def test_connect_to_manager_without_queue(self):
        with QueueManager(backend="local", job_types=[JobType.EMAIL_SEND]) as manager:
            with pytest.raises(QueueNotFoundError):
                RecordingConsumer().connect_to_manager(manager)

    def test_unavailable_broker_on_claim(self, caplog):
        broker = MagicMock()
        broker.closed = False
        broker.claim_next.side_effect = BrokerUnavailableError()
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)

        assert consumer.consume(block=False) == 0
        assert any("Could not claim" in r.getMessage() for r in caplog.records)

    def test_unavailable_broker_on_acknowledge(self, broker, caplog):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        job = broker.enqueue({})
        claimed = broker.claim_next(block=False)
        broker.complete = MagicMock(side_effect=BrokerUnavailableError())

        assert consumer.process_job(claimed) is False
        assert any(f"Could not acknowledge job {job.id}" in r.getMessage() for r in caplog.records)

    def test_lost_claim_is_not_acknowledged(self, broker, caplog):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        broker.enqueue({"route_id": "r1"})
        stale = broker.claim_next(block=False)
        broker._now = lambda: stale.lease_until + 1
        current = broker.claim_next(block=False)

        assert consumer.process_job(stale) is False

        job = broker.get_job(stale.id)
        assert job.state == JobState.ACTIVE
        assert job.progress == 0
        assert job.claim_token == current.claim_token
        assert any(f"Acknowledgement for job {stale.id}" in r.getMessage() for r in caplog.records)

    def test_start_and_stop_threads(self, broker):
        consumer = RecordingConsumer()
        consumer.connect_to_broker(broker)
        ids = [broker.enqueue({"n": i}).id for i in range(10)]

        threads = consumer.start(concurrency=3)
        assert len(threads) == 3
        deadline = time.monotonic() + 5
        while broker.stats().completed < 10 and time.monotonic() < deadline:
            time.sleep(0.01)
        consumer.stop(timeout=2)

        assert all(broker.get_job(i).state == JobState.COMPLETED for i in ids)
        assert not any(t.is_alive() for t in threads)
