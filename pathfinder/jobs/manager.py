import time
from typing import Any, Callable, Iterable, Optional

import redis

from pathfinder.core import EventBus, Pathfinder, QueueNotFoundError, ifnone
from pathfinder.jobs.base.broker import JobBroker
from pathfinder.jobs.local.broker import LocalBroker
from pathfinder.jobs.redis.broker import RedisBroker
from pathfinder.jobs.types.job_specs import (
    QUEUE_CONFIGS,
    BackendType,
    Job,
    JobOptions,
    JobType,
    QueueConfig,
    QueueStats,
    RecurringSchedule,
)

BrokerFactory = Callable[[JobType, QueueConfig, EventBus], JobBroker]

FAILED_WARNING_THRESHOLD = 10
ACTIVE_WARNING_THRESHOLD = 100


class QueueManager(Pathfinder):
    """Composition root for the job system.

    Owns one broker per ``JobType`` and exposes enqueue, scheduling, stats, pause/resume and cleanup by type. All
    brokers share the manager's ``EventBus``, to which the manager subscribes logging handlers for every queue event.

    Example::

        from pathfinder.jobs import JobType, QueueManager

        with QueueManager(backend="local") as manager:
            job = manager.add_job(JobType.ROUTE_OPTIMIZATION, {"route_id": "r1", ...})
            print(manager.get_stats(JobType.ROUTE_OPTIMIZATION))
    """

    def __init__(
        self,
        backend: BackendType | str | None = None,
        *,
        broker_factory: BrokerFactory | None = None,
        redis_client: redis.Redis | None = None,
        job_types: Iterable[JobType] | None = None,
        queue_configs: dict[JobType, QueueConfig] | None = None,
        event_bus: EventBus | None = None,
        **kwargs,
    ):
        """
        Args:
            backend: ``local`` or ``redis``. Defaults to ``PATHFINDER_QUEUE.BACKEND``. Ignored if ``broker_factory``
                is given.
            broker_factory: Callable(job_type, queue_config, event_bus) -> JobBroker used to build every broker.
            redis_client: Client shared by all Redis brokers. Created from ``PATHFINDER_REDIS.URL`` if omitted.
            job_types: The job types to create queues for. Defaults to every ``JobType``.
            queue_configs: Per-type overrides of the default ``QUEUE_CONFIGS``.
            event_bus: Bus shared by all brokers. A new one is created if omitted.
        """
        super().__init__(**kwargs)
        self.event_bus = ifnone(event_bus, default=EventBus())
        self.backend = BackendType(ifnone(backend, default=self.config["PATHFINDER_QUEUE"]["BACKEND"]))
        self._redis_client = redis_client
        self._owns_redis_client = False
        configs = {**QUEUE_CONFIGS, **ifnone(queue_configs, default={})}
        factory = ifnone(broker_factory, default=self._default_broker_factory)

        self._wire_event_logging()
        self.queues: dict[JobType, JobBroker] = {}
        for job_type in ifnone(job_types, default=list(JobType)):
            job_type = JobType(job_type)
            self.queues[job_type] = factory(job_type, configs.get(job_type, QueueConfig()), self.event_bus)
        self.logger.info(f"Initialized {len(self.queues)} {self.backend.value} queue(s).")

    def _default_broker_factory(self, job_type: JobType, queue_config: QueueConfig, event_bus: EventBus) -> JobBroker:
        if self.backend == BackendType.REDIS:
            if self._redis_client is None:
                url = self.config["PATHFINDER_REDIS"]["URL"]
                self._redis_client = redis.Redis.from_url(url, decode_responses=True)
                self._owns_redis_client = True
            return RedisBroker(
                job_type.value, client=self._redis_client, queue_config=queue_config, event_bus=event_bus
            )
        return LocalBroker(job_type.value, queue_config=queue_config, event_bus=event_bus)

    def _wire_event_logging(self) -> None:
        def log_event(level: str, event: str):
            def handler(queue: str, job_id: Optional[str] = None, **details):
                subject = f"Job {job_id} on queue {queue}" if job_id else f"Queue {queue}"
                extra = ", ".join(f"{k}={v}" for k, v in details.items() if k != "result")
                getattr(self.logger, level)(f"{subject} {event}" + (f" ({extra})" if extra else ""))

            return handler

        for event in ("enqueued", "active", "progress"):
            self.event_bus.subscribe(event, log_event("debug", event))
        for event in ("completed", "cancelled", "paused", "resumed", "cleaned"):
            self.event_bus.subscribe(event, log_event("info", event))
        self.event_bus.subscribe("retrying", log_event("warning", "retrying"))
        self.event_bus.subscribe("stalled", log_event("warning", "stalled"))
        self.event_bus.subscribe("failed", log_event("error", "failed"))

    def get_queue(self, job_type: JobType | str) -> Optional[JobBroker]:
        try:
            return self.queues.get(JobType(job_type))
        except ValueError:
            return None

    def _require_queue(self, job_type: JobType | str) -> JobBroker:
        queue = self.get_queue(job_type)
        if queue is None:
            raise QueueNotFoundError(f"Queue for job type {job_type} not found")
        return queue

    def add_job(self, job_type: JobType | str, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        """Enqueue a job on the queue for ``job_type``.

        Raises:
            QueueNotFoundError: If no queue exists for the job type.
            BrokerUnavailableError: If the broker cannot accept the job.
        """
        job = self._require_queue(job_type).enqueue(payload, options)
        self.logger.info(f"Job {job.id} added to queue {job.type}")
        return job

    def schedule_job(
        self,
        job_type: JobType | str,
        cron: str,
        payload: dict[str, Any] | None = None,
        options: JobOptions | None = None,
    ) -> Job:
        """Register a recurring job on the queue for ``job_type``. Returns the job created for its first fire."""
        job = self._require_queue(job_type).schedule_recurring(cron, ifnone(payload, default={}), options)
        self.logger.info(f"Recurring job scheduled on queue {job.type} with cron {cron}")
        return job

    def list_recurring(self, job_type: JobType | str) -> list[RecurringSchedule]:
        return self._require_queue(job_type).list_recurring()

    def remove_recurring(self, job_type: JobType | str, schedule_id: str) -> bool:
        removed = self._require_queue(job_type).remove_recurring(schedule_id)
        if removed:
            self.logger.info(f"Recurring schedule {schedule_id} removed from queue {JobType(job_type).value}")
        return removed

    def get_job(self, job_type: JobType | str, job_id: str) -> Optional[Job]:
        return self._require_queue(job_type).get_job(job_id)

    def get_stats(self, job_type: JobType | str) -> QueueStats:
        return self._require_queue(job_type).stats()

    def get_all_stats(self) -> dict[str, QueueStats]:
        return {job_type.value: queue.stats() for job_type, queue in self.queues.items()}

    def pause_queue(self, job_type: JobType | str) -> None:
        self._require_queue(job_type).pause()

    def resume_queue(self, job_type: JobType | str) -> None:
        self._require_queue(job_type).resume()

    def clean_completed_jobs(self, job_type: JobType | str, max_age: float | None = None) -> int:
        """Remove completed and failed jobs older than ``max_age`` seconds.

        ``max_age`` defaults to ``PATHFINDER_QUEUE.CLEAN_MAX_AGE``.
        """
        max_age = float(ifnone(max_age, default=self.config["PATHFINDER_QUEUE"]["CLEAN_MAX_AGE"]))
        return self._require_queue(job_type).cleanup_completed(max_age)

    def check_health(self) -> dict[str, QueueStats]:
        """Log a warning for every queue with too many failed or active jobs, and return all stats."""
        stats = self.get_all_stats()
        for name, queue_stats in stats.items():
            if queue_stats.failed > FAILED_WARNING_THRESHOLD:
                self.logger.warning(f"Queue {name} has {queue_stats.failed} failed jobs")
            if queue_stats.active > ACTIVE_WARNING_THRESHOLD:
                self.logger.warning(f"Queue {name} has {queue_stats.active} active jobs")
        return stats

    def close(self, timeout: float | None = None) -> None:
        """Stop every queue handing out jobs and wait for active jobs to finish, then release connections."""
        timeout = float(ifnone(timeout, default=self.config["PATHFINDER_QUEUE"]["SHUTDOWN_TIMEOUT"]))
        deadline = time.monotonic() + timeout
        for queue in self.queues.values():
            queue.close(timeout=max(deadline - time.monotonic(), 0.0))
        if self._owns_redis_client and self._redis_client is not None:
            self._redis_client.close()
        self.logger.info("All queues closed")

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return super().__exit__(exc_type, exc_val, exc_tb)
