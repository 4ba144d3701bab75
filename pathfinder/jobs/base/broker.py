import uuid
from abc import abstractmethod
from typing import Any, Optional

from pydantic import BaseModel

from pathfinder.core import EventBus, PathfinderABC, ifnone
from pathfinder.core.utils import now_ms
from pathfinder.jobs.types.job_specs import Job, JobOptions, JobState, QueueConfig, QueueStats, RecurringSchedule


class JobBroker(PathfinderABC):
    """Abstract base class for job brokers.

    A broker owns exactly one queue (one job type) and exclusively owns the state transitions of its jobs::

        waiting -> active -> completed | failed
        delayed -> waiting              (timer expiry, retry backoff)
        active  -> waiting              (lease expiry)

    Delivery is at-least-once: a job claimed with ``claim_next`` must be acknowledged with ``complete`` or ``fail``
    before its lease expires, otherwise it is returned to ``waiting`` and may be claimed again. ``report_progress``
    renews the lease. Each claim carries a fresh ``claim_token``; progress and acknowledgements must present it, so a
    worker whose lease expired cannot touch the job once another worker has claimed it.

    Every transition is published on ``event_bus`` with the event names ``enqueued``, ``active``, ``progress``,
    ``completed``, ``failed``, ``retrying``, ``stalled``, ``cancelled``, ``paused``, ``resumed`` and ``cleaned``.
    Handlers receive ``queue`` and (where relevant) ``job_id`` keyword arguments.
    """

    def __init__(
        self,
        queue_name: str,
        *,
        queue_config: QueueConfig | None = None,
        event_bus: EventBus | None = None,
        lease_seconds: float | None = None,
        backoff_ms: int | None = None,
        poll_interval: float | None = None,
        **kwargs,
    ):
        """
        Args:
            queue_name: The queue (job type) this broker owns.
            queue_config: Default priority, attempts and retention counts for the queue.
            event_bus: Bus on which queue events are emitted. A private bus is created if omitted.
            lease_seconds: How long a claimed job stays owned by its worker without progress or acknowledgement.
            backoff_ms: Base retry delay; attempt ``n`` waits ``backoff_ms * 2 ** (n - 1)``.
            poll_interval: Maximum time a blocking ``claim_next`` sleeps between eligibility checks.
        """
        super().__init__(**kwargs)
        queue_settings = self.config["PATHFINDER_QUEUE"]
        self.queue_name = queue_name
        self.queue_config = ifnone(queue_config, default=QueueConfig())
        self.event_bus = ifnone(event_bus, default=EventBus())
        self.lease_seconds = float(ifnone(lease_seconds, default=queue_settings["LEASE_SECONDS"]))
        self.backoff_ms = int(ifnone(backoff_ms, default=queue_settings["BACKOFF_MS"]))
        self.poll_interval = float(ifnone(poll_interval, default=queue_settings["POLL_INTERVAL"]))

    @property
    def lease_ms(self) -> int:
        return int(self.lease_seconds * 1000)

    @abstractmethod
    def enqueue(self, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        """Add a job to the queue.

        The job starts in ``waiting``, or ``delayed`` when ``options.delay > 0``. If ``options.job_id`` names a job the
        broker already holds, the existing job is returned unchanged.

        Raises:
            BrokerUnavailableError: If the broker is closed or its backing store cannot be reached.
        """
        raise NotImplementedError

    @abstractmethod
    def schedule_recurring(
        self, cron: str, payload: dict[str, Any], options: JobOptions | None = None
    ) -> Job:
        """Register a recurring producer and return the job created for its first fire.

        Raises:
            InvalidInputError: If the cron expression cannot be parsed.
        """
        raise NotImplementedError

    @abstractmethod
    def remove_recurring(self, schedule_id: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_recurring(self) -> list[RecurringSchedule]:
        raise NotImplementedError

    @abstractmethod
    def claim_next(self, block: bool = True, timeout: float | None = None) -> Optional[Job]:
        """Claim the highest-priority, earliest-enqueued eligible job, atomically moving it to ``active``.

        Due delayed jobs are promoted and expired leases reclaimed before the claim. Nothing is claimed while the
        queue is paused.

        Args:
            block: Wait for a job to become available instead of returning immediately.
            timeout: Maximum seconds to wait when blocking. ``None`` waits until a job arrives or the broker closes.

        Returns:
            A snapshot of the claimed job, or None.
        """
        raise NotImplementedError

    @abstractmethod
    def report_progress(self, job_id: str, percent: int, *, token: str) -> bool:
        """Record progress for an active job and renew its lease.

        Returns False (and changes nothing) if the job is not active, ``token`` is not the job's current claim token,
        or ``percent`` is lower than the recorded progress.

        Raises:
            ValueError: If ``percent`` is outside 0-100.
        """
        raise NotImplementedError

    @abstractmethod
    def complete(self, job_id: str, result: Any = None, *, token: str) -> bool:
        """Move an active job to ``completed``. Returns False if the job was not active under ``token``."""
        raise NotImplementedError

    @abstractmethod
    def fail(self, job_id: str, error: BaseException, *, token: str) -> bool:
        """Fail an active job. Retryable errors go back to ``delayed`` with backoff while attempts remain.

        Returns False if the job was not active under ``token``.
        """
        raise NotImplementedError

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """Remove a job that has not been claimed yet. Returns False for active or finished jobs."""
        raise NotImplementedError

    @abstractmethod
    def get_job(self, job_id: str) -> Optional[Job]:
        raise NotImplementedError

    @abstractmethod
    def stats(self) -> QueueStats:
        raise NotImplementedError

    @abstractmethod
    def pause(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def resume(self) -> None:
        raise NotImplementedError

    @abstractmethod
    def is_paused(self) -> bool:
        raise NotImplementedError

    @abstractmethod
    def cleanup_completed(self, max_age: float) -> int:
        """Remove completed and failed jobs that finished more than ``max_age`` seconds ago. Returns the count."""
        raise NotImplementedError

    @abstractmethod
    def close(self, timeout: float | None = None) -> None:
        """Stop handing out jobs and wait up to ``timeout`` seconds for jobs claimed through this broker to finish."""
        raise NotImplementedError

    @property
    @abstractmethod
    def closed(self) -> bool:
        raise NotImplementedError

    def _new_job(self, payload: dict[str, Any], options: JobOptions | None, now: int) -> Job:
        options = ifnone(options, default=JobOptions())
        delay_ms = round(options.delay * 1000)
        return Job(
            id=ifnone(options.job_id, default=str(uuid.uuid4())),
            type=self.queue_name,
            payload=dict(payload),
            priority=ifnone(options.priority, default=self.queue_config.priority),
            state=JobState.DELAYED if delay_ms > 0 else JobState.WAITING,
            max_attempts=ifnone(options.max_attempts, default=self.queue_config.attempts),
            backoff_ms=ifnone(options.backoff_ms, default=self.backoff_ms),
            created_at=now,
            run_at=now + delay_ms if delay_ms > 0 else None,
        )

    @staticmethod
    def _new_claim_token() -> str:
        return uuid.uuid4().hex

    @staticmethod
    def _retry_delay_ms(job: Job) -> int:
        return job.backoff_ms * 2 ** max(job.attempts - 1, 0)

    @staticmethod
    def _should_retry(job: Job, error: BaseException) -> bool:
        return bool(getattr(error, "retryable", True)) and job.attempts < job.max_attempts

    @staticmethod
    def _serialize_result(result: Any) -> Optional[dict[str, Any]]:
        if result is None:
            return None
        if isinstance(result, BaseModel):
            return result.model_dump(mode="json")
        if isinstance(result, dict):
            return result
        return {"value": result}

    @staticmethod
    def _validate_percent(percent: int) -> int:
        if isinstance(percent, bool) or not isinstance(percent, int) or not 0 <= percent <= 100:
            raise ValueError(f"Progress must be an integer between 0 and 100, got {percent!r}.")
        return percent

    def _emit(self, event: str, **kwargs) -> None:
        self.event_bus.emit(event, queue=self.queue_name, **kwargs)

    def _now(self) -> int:
        return now_ms()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close(timeout=0)
        return super().__exit__(exc_type, exc_val, exc_tb)
