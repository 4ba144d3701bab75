import logging
from unittest.mock import MagicMock

import pytest
from routing_doubles import BROOKLYN, NYC, TIMES_SQUARE, FakeProvider, make_route

from pathfinder.core import BadRequestError, InvalidInputError, ServiceUnavailableError
from pathfinder.jobs import JobState, JobType, LocalBroker, QueueManager
from pathfinder.routing import (
    QueueNotifier,
    RouteOptimizationConsumer,
    RouteOptimizationProducer,
    RouteWaypoint,
    StepKind,
    StepOutcome,
)


@pytest.fixture
def manager():
    manager = QueueManager(
        job_types=[JobType.ROUTE_OPTIMIZATION, JobType.NOTIFICATION_SEND],
        broker_factory=lambda job_type, config, bus: LocalBroker(
            job_type.value, queue_config=config, event_bus=bus, backoff_ms=0
        ),
    )
    yield manager
    manager.close(timeout=0)


@pytest.fixture
def producer(manager):
    return RouteOptimizationProducer(manager)


@pytest.fixture
def make_worker(manager, build_service):
    def _make(provider, notifier=None, **kwargs):
        worker = RouteOptimizationConsumer(
            build_service(provider), notifier or QueueNotifier(manager), poll_timeout=0.01, **kwargs
        )
        worker.connect_to_manager(manager)
        return worker

    return _make


def _job_data(waypoints, route_id="r1", **kwargs):
    return {
        "userId": "u1",
        "routeId": route_id,
        "waypoints": [w.model_dump() for w in waypoints],
        "preferences": {"mode": "driving"},
        **kwargs,
    }


def _notifications(manager):
    return manager.get_stats(JobType.NOTIFICATION_SEND).waiting


def _job(manager, job_id):
    return manager.get_job(JobType.ROUTE_OPTIMIZATION, job_id)


class TestRouteOptimization:
    def test_two_waypoints_keep_the_baseline(self, manager, producer, make_worker, repository):
        provider = FakeProvider(make_route(900, 5000))
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE]))

        assert worker.consume(block=False) == 1

        job = _job(manager, handle.id)
        assert job.state == JobState.COMPLETED
        assert job.progress == 100
        assert job.result["time_saved"] == 0
        assert job.result["distance_saved"] == 0
        assert job.result["optimized_route"]["duration"] == 900
        assert provider.calls_of("optimized") == []
        assert repository.get_route("r1").duration == 900
        assert _notifications(manager) == 0

    def test_reordered_stops_save_time(self, manager, producer, make_worker, repository):
        provider = FakeProvider(make_route(900, 5000), optimized=make_route(400, 4000, waypoint_order=[0]))
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, BROOKLYN, TIMES_SQUARE]))

        worker.consume(block=False)

        result = _job(manager, handle.id).result
        assert result["time_saved"] == 500
        assert result["distance_saved"] == 1000
        assert result["original_duration"] == 900
        assert result["optimized_duration"] == 400
        assert result["optimized_route"]["waypoint_order"] == [0]
        assert repository.get_route("r1").duration == 400
        assert len(provider.calls_of("baseline")) == 1
        assert len(provider.calls_of("optimized")) == 1

        notification = manager.get_queue(JobType.NOTIFICATION_SEND).claim_next(block=False)
        assert notification.payload["user_id"] == "u1"
        assert notification.payload["data"] == {"route_id": "r1", "time_saved": 500.0, "distance_saved": 1000.0}
        assert _notifications(manager) == 0

    def test_faster_alternative_is_selected(self, manager, producer, make_worker):
        provider = FakeProvider(make_route(900, 5000), alternatives=[make_route(500, 5200, geometry="alt")])
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE]))

        worker.consume(block=False)

        result = _job(manager, handle.id).result
        assert result["optimized_route"]["geometry"] == "alt"
        assert result["time_saved"] == 400
        assert result["distance_saved"] == 0
        assert _notifications(manager) == 1

    def test_savings_at_threshold_do_not_notify(self, manager, producer, make_worker):
        provider = FakeProvider(make_route(900, 5000), alternatives=[make_route(600, 4000)])
        worker = make_worker(provider)
        producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE]))

        worker.consume(block=False)

        assert _notifications(manager) == 0

    def test_progress_is_reported_in_order(self, manager, producer, make_worker):
        seen = []
        manager.event_bus.subscribe("progress", lambda **event: seen.append(event["progress"]))
        worker = make_worker(FakeProvider(make_route(900, 5000)))
        producer.enqueue_route_optimization(_job_data([NYC, BROOKLYN, TIMES_SQUARE]))

        worker.consume(block=False)

        assert seen == [10, 30, 60, 80, 90, 100]

    def test_direct_route_without_savings(self, manager, producer, make_worker, repository):
        repository.create_route("route-1")
        origin, destination = RouteWaypoint(lat=40.0, lng=-73.0), RouteWaypoint(lat=40.1, lng=-73.1)
        notifier = MagicMock()
        worker = make_worker(FakeProvider(make_route(600, 5000)), notifier=notifier)
        handle = producer.enqueue_route_optimization(_job_data([origin, destination], route_id="route-1"))

        worker.consume(block=False)

        result = _job(manager, handle.id).result
        assert result["optimized_route"]["distance"] == 5000
        assert (result["time_saved"], result["distance_saved"]) == (0, 0)
        notifier.notify_route_optimized.assert_not_called()

    def test_optimized_order_over_four_stops(self, manager, producer, make_worker):
        stops = [NYC, BROOKLYN, RouteWaypoint(lat=40.7306, lng=-73.9352), TIMES_SQUARE]
        notifier = MagicMock()
        provider = FakeProvider(make_route(900, 5000), optimized=make_route(400, 5000, waypoint_order=[1, 0]))
        worker = make_worker(provider, notifier=notifier)
        data = _job_data(stops, preferences={"mode": "driving", "optimize": True})
        handle = producer.enqueue_route_optimization(data)

        worker.consume(block=False)

        result = _job(manager, handle.id).result
        assert result["time_saved"] == 500
        assert result["optimized_route"]["waypoint_order"] == [1, 0]
        [baseline_call] = provider.calls_of("baseline")
        assert len(baseline_call["intermediate"]) == 2
        notifier.notify_route_optimized.assert_called_once_with("u1", "r1", 500.0, 0.0)


class TestFailures:
    def test_unavailable_provider_is_retried(self, manager, producer, make_worker):
        provider = FakeProvider(make_route(900, 5000), errors={"baseline": ServiceUnavailableError()})
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE]))

        assert worker.consume(block=False) == 3

        job = _job(manager, handle.id)
        assert job.state == JobState.FAILED
        assert job.attempts == 3
        assert job.error.kind == "ServiceUnavailableError"
        assert len(provider.calls) == 3

    def test_rejected_request_is_not_retried(self, manager, producer, make_worker):
        rejected = BadRequestError(provider_status="ZERO_RESULTS")
        provider = FakeProvider(make_route(900, 5000), errors={"optimized": rejected})
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, BROOKLYN, TIMES_SQUARE]))

        assert worker.consume(block=False) == 1

        job = _job(manager, handle.id)
        assert job.state == JobState.FAILED
        assert job.attempts == 1
        assert job.error.kind == "BadRequestError"
        assert provider.calls_of("baseline") and not provider.calls_of("alternatives")

    def test_missing_route_is_not_retried(self, manager, producer, make_worker):
        worker = make_worker(FakeProvider(make_route(900, 5000)))
        handle = producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE], route_id="missing"))

        assert worker.consume(block=False) == 1

        job = _job(manager, handle.id)
        assert job.state == JobState.FAILED
        assert job.error.kind == "NotFoundError"
        assert job.error.status_code == 404

    def test_invalid_payload_fails_once(self, manager, make_worker):
        worker = make_worker(FakeProvider(make_route(900, 5000)))
        queue = manager.get_queue(JobType.ROUTE_OPTIMIZATION)
        missing_fields = queue.enqueue({"route_id": "r1"}).id
        one_waypoint = queue.enqueue({"user_id": "u1", "route_id": "r1", "waypoints": [NYC.model_dump()]}).id

        assert worker.consume(block=False) == 2

        for job_id in (missing_fields, one_waypoint):
            job = queue.get_job(job_id)
            assert job.state == JobState.FAILED
            assert job.attempts == 1
            assert job.error.kind == "InvalidInputError"

    def test_alternatives_failure_is_advisory(self, manager, producer, make_worker, caplog):
        provider = FakeProvider(make_route(900, 5000), errors={"alternatives": ServiceUnavailableError()})
        worker = make_worker(provider)
        handle = producer.enqueue_route_optimization(_job_data([NYC, TIMES_SQUARE]))

        worker.consume(block=False)

        assert _job(manager, handle.id).state == JobState.COMPLETED
        warnings = [r.getMessage() for r in caplog.records if r.levelno == logging.WARNING]
        assert any("Step alternatives failed" in m for m in warnings)

    def test_notification_failure_is_advisory(self, manager, producer, make_worker, repository):
        notifier = MagicMock()
        notifier.notify_route_optimized.side_effect = ConnectionError("push service down")
        provider = FakeProvider(make_route(900, 5000), optimized=make_route(400, 4000))
        worker = make_worker(provider, notifier=notifier)
        handle = producer.enqueue_route_optimization(_job_data([NYC, BROOKLYN, TIMES_SQUARE]))

        worker.consume(block=False)

        assert _job(manager, handle.id).state == JobState.COMPLETED
        notifier.notify_route_optimized.assert_called_once_with("u1", "r1", 500.0, 1000.0)
        assert repository.get_route("r1").duration == 400


class TestSteps:
    def test_critical_step_outcome(self):
        error = ServiceUnavailableError()
        outcome = StepOutcome(name="baseline", kind=StepKind.CRITICAL, exception=error)

        assert not outcome.ok
        assert outcome.error.kind == "ServiceUnavailableError"
        with pytest.raises(ServiceUnavailableError):
            outcome.unwrap()

    def test_advisory_step_outcome(self):
        outcome = StepOutcome(name="notify", kind=StepKind.ADVISORY, value=[], exception=RuntimeError("x"))
        assert outcome.unwrap() == []

    def test_run_step(self, make_worker):
        worker = make_worker(FakeProvider(make_route(1, 1)))

        ok = worker.run_step("double", StepKind.CRITICAL, lambda x: x * 2, 21)
        assert ok.ok and ok.unwrap() == 42

        def boom():
            raise RuntimeError("boom")

        advisory = worker.run_step("optional", StepKind.ADVISORY, boom, default="fallback")
        assert advisory.unwrap() == "fallback"
        critical = worker.run_step("required", StepKind.CRITICAL, boom, default="ignored")
        assert critical.value is None
        with pytest.raises(RuntimeError, match="boom"):
            critical.unwrap()

    def test_parse_payload(self):
        data = RouteOptimizationConsumer.parse_payload(_job_data([NYC, TIMES_SQUARE], priority="high"))
        assert data.route_id == "r1"
        assert data.priority == "high"
        with pytest.raises(InvalidInputError):
            RouteOptimizationConsumer.parse_payload({"waypoints": "nope"})
