from typing import Any, Optional

from pydantic import ValidationError

from pathfinder.core import InvalidInputError, Pathfinder
from pathfinder.jobs.manager import QueueManager
from pathfinder.jobs.scheduling import validate_cron
from pathfinder.jobs.types.job_specs import JobHandle, JobOptions, JobPriority, JobStatus, JobType, RecurringSchedule
from pathfinder.routing.types import RouteOptimizationJobData

PRIORITY_LEVELS: dict[str, int] = {
    "high": JobPriority.HIGH,
    "normal": JobPriority.NORMAL,
    "low": JobPriority.LOW,
}

DEFAULT_REOPTIMIZATION_CRON = "0 */6 * * *"


class RouteOptimizationProducer(Pathfinder):
    """Producer surface for route optimization jobs.

    Accepts job data either as a ``RouteOptimizationJobData`` or as a plain dict in snake_case or camelCase, e.g. as
    received by an API layer::

        producer = RouteOptimizationProducer(manager)
        handle = producer.enqueue_route_optimization(
            {
                "userId": "u1",
                "routeId": "r1",
                "waypoints": [{"lat": 40.7128, "lng": -74.006}, {"lat": 40.758, "lng": -73.9855}],
                "preferences": {"mode": "driving"},
                "priority": "high",
            }
        )
        status = producer.get_job_status(handle.id)
    """

    def __init__(self, manager: QueueManager, **kwargs):
        super().__init__(**kwargs)
        self.manager = manager

    @staticmethod
    def _job_data(data: RouteOptimizationJobData | dict[str, Any]) -> RouteOptimizationJobData:
        if isinstance(data, RouteOptimizationJobData):
            job_data = data
        else:
            try:
                job_data = RouteOptimizationJobData.model_validate(data)
            except ValidationError as e:
                raise InvalidInputError(f"Invalid route optimization request: {e}") from e
        if len(job_data.waypoints) < 2:
            raise InvalidInputError("At least 2 waypoints are required")
        return job_data

    @staticmethod
    def _options(job_data: RouteOptimizationJobData) -> JobOptions:
        priority = PRIORITY_LEVELS[job_data.priority] if job_data.priority else None
        return JobOptions(priority=priority)

    def enqueue_route_optimization(self, data: RouteOptimizationJobData | dict[str, Any]) -> JobHandle:
        """Queue an optimization of one stored route.

        Raises:
            InvalidInputError: If the request is malformed or has fewer than two waypoints.
            BrokerUnavailableError: If the broker cannot accept the job.
        """
        job_data = self._job_data(data)
        job = self.manager.add_job(
            JobType.ROUTE_OPTIMIZATION, job_data.model_dump(mode="json"), self._options(job_data)
        )
        self.logger.info(f"Route optimization job {job.id} queued for route {job_data.route_id}")
        return JobHandle(id=job.id)

    def get_job_status(self, job_id: str) -> Optional[JobStatus]:
        """Return the state, progress and result of a route optimization job, or None if it is unknown."""
        job = self.manager.get_job(JobType.ROUTE_OPTIMIZATION, job_id)
        if job is None:
            return None
        return JobStatus.from_job(job)

    def schedule_periodic_route_optimization(
        self, data: RouteOptimizationJobData | dict[str, Any], cron: str = DEFAULT_REOPTIMIZATION_CRON
    ) -> JobHandle:
        """Re-optimize a route on a cron schedule, every six hours by default.

        Every fire enqueues an independent job with the same data. Registering the same data and cron twice keeps
        one schedule. Returns the handle of the job created for the first fire.
        """
        validate_cron(cron)
        job_data = self._job_data(data)
        job = self.manager.schedule_job(
            JobType.ROUTE_OPTIMIZATION, cron, job_data.model_dump(mode="json"), self._options(job_data)
        )
        self.logger.info(f"Periodic optimization of route {job_data.route_id} scheduled with cron {cron}")
        return JobHandle(id=job.id)

    def list_periodic_route_optimizations(self) -> list[RecurringSchedule]:
        return self.manager.list_recurring(JobType.ROUTE_OPTIMIZATION)

    def remove_periodic_route_optimization(self, schedule_id: str) -> bool:
        return self.manager.remove_recurring(JobType.ROUTE_OPTIMIZATION, schedule_id)
