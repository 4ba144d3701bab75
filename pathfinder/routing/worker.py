"""The route optimization worker: a ``Consumer`` of the ``route:optimization`` queue."""

import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

from pydantic import ValidationError

from pathfinder.core import InvalidInputError
from pathfinder.jobs.consumers.consumer import Consumer, ProgressReporter
from pathfinder.jobs.types.job_specs import Job, JobError, JobType
from pathfinder.routing.collaborators import Notifier
from pathfinder.routing.scoring import select_best_route
from pathfinder.routing.service import RouteService
from pathfinder.routing.types import OptimizationResult, RouteOptimizationJobData

TIME_SAVED_THRESHOLD = 300.0
DISTANCE_SAVED_THRESHOLD = 1000.0


class StepKind(str, Enum):
    """Whether a failing sub-step fails the job (critical) or is logged and skipped (advisory)."""

    CRITICAL = "critical"
    ADVISORY = "advisory"


@dataclass
class StepOutcome:
    """Result of one worker sub-step."""

    name: str
    kind: StepKind
    value: Any = None
    exception: Optional[BaseException] = None

    @property
    def ok(self) -> bool:
        return self.exception is None

    @property
    def error(self) -> Optional[JobError]:
        return JobError.from_exception(self.exception) if self.exception is not None else None

    def unwrap(self) -> Any:
        """Return the step value, re-raising the step's exception if a critical step failed."""
        if self.exception is not None and self.kind == StepKind.CRITICAL:
            raise self.exception
        return self.value


class RouteOptimizationConsumer(Consumer):
    """Optimizes a stored route and persists the best candidate.

    For each job the worker computes the route in the given order as a baseline, the provider-optimized route when
    there are intermediate stops, and alternatives. The best-scoring candidate is written to the route store and, when
    the savings against the baseline are significant, the user is notified. Progress is reported at 10, 30, 60, 80, 90
    and 100 percent.

    Computing the baseline, optimizing and persisting are critical steps: their errors fail the job, and the broker
    retries it if the error is retryable. Alternatives and the notification are advisory.

    Example::

        from pathfinder.jobs import QueueManager
        from pathfinder.routing import RouteOptimizationConsumer

        manager = QueueManager(backend="local")
        consumer = RouteOptimizationConsumer(route_service, notifier)
        consumer.connect_to_manager(manager)
        consumer.consume()
    """

    def __init__(
        self,
        route_service: RouteService,
        notifier: Notifier,
        *,
        time_saved_threshold: float = TIME_SAVED_THRESHOLD,
        distance_saved_threshold: float = DISTANCE_SAVED_THRESHOLD,
        **kwargs,
    ):
        super().__init__(JobType.ROUTE_OPTIMIZATION, **kwargs)
        self.route_service = route_service
        self.notifier = notifier
        self.time_saved_threshold = time_saved_threshold
        self.distance_saved_threshold = distance_saved_threshold

    def run_step(
        self, name: str, kind: StepKind, fn: Callable[..., Any], *args, default: Any = None, **kwargs
    ) -> StepOutcome:
        try:
            value = fn(*args, **kwargs)
        except Exception as e:
            if kind == StepKind.ADVISORY:
                self.logger.warning(f"Step {name} failed, continuing without it: {e}")
                return StepOutcome(name=name, kind=kind, value=default, exception=e)
            self.logger.error(f"Step {name} failed: {e}")
            return StepOutcome(name=name, kind=kind, exception=e)
        return StepOutcome(name=name, kind=kind, value=value)

    @staticmethod
    def parse_payload(payload: dict[str, Any]) -> RouteOptimizationJobData:
        try:
            data = RouteOptimizationJobData.model_validate(payload)
        except ValidationError as e:
            raise InvalidInputError(f"Invalid route optimization payload: {e}") from e
        if len(data.waypoints) < 2:
            raise InvalidInputError("At least 2 waypoints are required")
        return data

    def run(self, job: Job, progress: ProgressReporter) -> OptimizationResult:
        started_at = time.perf_counter()
        progress(10)
        data = self.parse_payload(job.payload)
        waypoints = data.waypoints
        self.logger.info(
            f"Starting route optimization for route {data.route_id} "
            f"(job={job.id}, user={data.user_id}, waypoints={len(waypoints)})"
        )

        baseline_preferences = data.preferences.model_copy(update={"optimize": False})
        baseline = self.run_step(
            "baseline", StepKind.CRITICAL, self.route_service.calculate_route, waypoints, baseline_preferences
        ).unwrap()
        progress(30)

        optimized = baseline
        if len(waypoints) > 2:
            optimized = self.run_step(
                "optimize",
                StepKind.CRITICAL,
                self.route_service.optimize_waypoint_order,
                waypoints,
                data.preferences,
                fallback=False,
            ).unwrap()
        progress(60)

        alternatives = self.run_step(
            "alternatives",
            StepKind.ADVISORY,
            self.route_service.get_alternative_routes,
            waypoints,
            data.preferences,
            default=[],
        ).unwrap()
        progress(80)

        best = select_best_route([optimized, *alternatives], data.preferences)
        time_saved = max(0.0, baseline.duration - best.duration)
        distance_saved = max(0.0, baseline.distance - best.distance)
        progress(90)

        self.run_step("persist", StepKind.CRITICAL, self.route_service.update_route, data.route_id, best).unwrap()

        if time_saved > self.time_saved_threshold or distance_saved > self.distance_saved_threshold:
            self.run_step(
                "notify",
                StepKind.ADVISORY,
                self.notifier.notify_route_optimized,
                data.user_id,
                data.route_id,
                time_saved,
                distance_saved,
            )
        progress(100)

        self.logger.info(
            f"Route optimization completed for route {data.route_id}: saved {time_saved:.0f}s and "
            f"{distance_saved:.0f}m | duration_ms={(time.perf_counter() - started_at) * 1000.0:.2f}"
        )
        return OptimizationResult(
            route_id=data.route_id,
            optimized_route=best,
            time_saved=time_saved,
            distance_saved=distance_saved,
            original_duration=baseline.duration,
            optimized_duration=best.duration,
            original_distance=baseline.distance,
            optimized_distance=best.distance,
        )
