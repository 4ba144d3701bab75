import pytest
from routing_doubles import NYC, TIMES_SQUARE

from pathfinder.core import BrokerUnavailableError, InvalidInputError
from pathfinder.jobs import JobState, JobStatus, JobType, QueueManager
from pathfinder.routing import PRIORITY_LEVELS, RouteOptimizationJobData, RouteOptimizationProducer


@pytest.fixture
def manager():
    manager = QueueManager(backend="local", job_types=[JobType.ROUTE_OPTIMIZATION])
    yield manager
    manager.close(timeout=0)


@pytest.fixture
def producer(manager):
    return RouteOptimizationProducer(manager)


def _request(**overrides):
    request = {
        "userId": "u1",
        "routeId": "r1",
        "waypoints": [{"lat": NYC.lat, "lng": NYC.lng}, {"lat": TIMES_SQUARE.lat, "lng": TIMES_SQUARE.lng}],
        "preferences": {"mode": "walking", "avoidTolls": True},
    }
    request.update(overrides)
    return request


def _job(manager, handle):
    return manager.get_job(JobType.ROUTE_OPTIMIZATION, handle.id)


class TestEnqueue:
    def test_camel_case_request(self, manager, producer):
        handle = producer.enqueue_route_optimization(_request())

        job = _job(manager, handle)
        assert job.state == JobState.WAITING
        assert job.priority == 5
        assert job.max_attempts == 3
        assert job.payload["user_id"] == "u1"
        assert job.payload["route_id"] == "r1"
        assert job.payload["preferences"] == {
            "mode": "walking",
            "avoid_tolls": True,
            "avoid_highways": False,
            "avoid_ferries": False,
            "optimize": False,
        }

    def test_model_request(self, manager, producer):
        data = RouteOptimizationJobData(user_id="u1", route_id="r2", waypoints=[NYC, TIMES_SQUARE])
        handle = producer.enqueue_route_optimization(data)
        assert _job(manager, handle).payload["route_id"] == "r2"

    @pytest.mark.parametrize("label,priority", [("high", 1), ("normal", 5), ("low", 10)])
    def test_priority_labels(self, manager, producer, label, priority):
        handle = producer.enqueue_route_optimization(_request(priority=label))
        assert _job(manager, handle).priority == priority
        assert PRIORITY_LEVELS[label] == priority

    def test_high_priority_is_claimed_first(self, manager, producer):
        low = producer.enqueue_route_optimization(_request(priority="low"))
        high = producer.enqueue_route_optimization(_request(priority="high"))
        normal = producer.enqueue_route_optimization(_request())

        queue = manager.get_queue(JobType.ROUTE_OPTIMIZATION)
        claimed = [queue.claim_next(block=False).id for _ in range(3)]
        assert claimed == [high.id, normal.id, low.id]

    @pytest.mark.parametrize(
        "overrides",
        [
            {"waypoints": [{"lat": 40.7, "lng": -74.0}]},
            {"waypoints": [{"lat": 91, "lng": 0}, {"lat": 0, "lng": 0}]},
            {"priority": "urgent"},
            {"preferences": {"mode": "teleport"}},
            {"routeId": None},
        ],
        ids=["one-waypoint", "bad-latitude", "bad-priority", "bad-mode", "no-route"],
    )
    def test_invalid_requests(self, manager, producer, overrides):
        with pytest.raises(InvalidInputError):
            producer.enqueue_route_optimization(_request(**overrides))
        assert manager.get_stats(JobType.ROUTE_OPTIMIZATION).waiting == 0

    def test_closed_broker(self, manager, producer):
        manager.close(timeout=0)
        with pytest.raises(BrokerUnavailableError):
            producer.enqueue_route_optimization(_request())


class TestStatus:
    def test_status_of_a_waiting_job(self, producer):
        handle = producer.enqueue_route_optimization(_request())

        status = producer.get_job_status(handle.id)

        assert isinstance(status, JobStatus)
        assert status.state == JobState.WAITING
        assert status.progress == 0
        assert status.result is None

    def test_status_follows_the_job(self, manager, producer):
        handle = producer.enqueue_route_optimization(_request())
        queue = manager.get_queue(JobType.ROUTE_OPTIMIZATION)
        token = queue.claim_next(block=False).claim_token
        queue.report_progress(handle.id, 60, token=token)

        status = producer.get_job_status(handle.id)
        assert (status.state, status.progress, status.attempts) == (JobState.ACTIVE, 60, 1)

        queue.complete(handle.id, {"time_saved": 120.0}, token=token)
        status = producer.get_job_status(handle.id)
        assert status.state == JobState.COMPLETED
        assert status.result == {"time_saved": 120.0}

    def test_unknown_job(self, producer):
        assert producer.get_job_status("no-such-job") is None


class TestPeriodic:
    def test_schedule_every_six_hours(self, manager, producer):
        handle = producer.schedule_periodic_route_optimization(_request())

        job = _job(manager, handle)
        assert job.state == JobState.DELAYED
        assert job.id.startswith("repeat:")
        assert job.payload["route_id"] == "r1"
        [schedule] = producer.list_periodic_route_optimizations()
        assert schedule.cron == "0 */6 * * *"

    def test_same_schedule_registered_once(self, producer):
        first = producer.schedule_periodic_route_optimization(_request(), cron="0 3 * * *")
        second = producer.schedule_periodic_route_optimization(_request(), cron="0 3 * * *")

        assert first.id == second.id
        assert len(producer.list_periodic_route_optimizations()) == 1

    def test_remove_schedule(self, manager, producer):
        handle = producer.schedule_periodic_route_optimization(_request())
        [schedule] = producer.list_periodic_route_optimizations()

        assert producer.remove_periodic_route_optimization(schedule.id) is True
        assert producer.remove_periodic_route_optimization(schedule.id) is False
        assert producer.list_periodic_route_optimizations() == []
        assert _job(manager, handle) is None

    def test_invalid_cron(self, producer):
        with pytest.raises(InvalidInputError):
            producer.schedule_periodic_route_optimization(_request(), cron="every six hours")
