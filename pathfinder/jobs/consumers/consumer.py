import threading
import time
from abc import abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from pathfinder.core import BrokerUnavailableError, PathfinderABC, QueueNotFoundError, ifnone
from pathfinder.jobs.base.broker import JobBroker
from pathfinder.jobs.types.job_specs import Job, JobType

if TYPE_CHECKING:  # pragma: no cover
    from pathfinder.jobs.manager import QueueManager


class ProgressReporter:
    """Callable handed to ``Consumer.run`` for reporting progress on the job being processed."""

    def __init__(self, broker: JobBroker, job_id: str, token: str):
        self.broker = broker
        self.job_id = job_id
        self.token = token

    def __call__(self, percent: int) -> bool:
        return self.broker.report_progress(self.job_id, percent, token=self.token)


class Consumer(PathfinderABC):
    """Base class for processing jobs from one queue.

    Subclasses implement ``run``; the base class claims jobs, acknowledges them and turns exceptions raised by ``run``
    into broker failures, where the broker's retry policy takes over. Several consumers (or several threads of one
    consumer, via ``start``) may process the same queue concurrently.
    """

    def __init__(self, job_type: JobType | str, *, poll_timeout: float | None = None, **kwargs):
        super().__init__(**kwargs)
        self.job_type = JobType(job_type)
        self.poll_timeout = float(ifnone(poll_timeout, default=self.config["PATHFINDER_QUEUE"]["POLL_INTERVAL"]))
        self.broker: Optional[JobBroker] = None
        self._stop_event = threading.Event()
        self._threads: list[threading.Thread] = []

    def connect_to_manager(self, manager: "QueueManager") -> None:
        """Attach to the broker the manager owns for this consumer's job type."""
        if self.broker is not None:
            raise RuntimeError("Consumer already connected.")
        broker = manager.get_queue(self.job_type)
        if broker is None:
            raise QueueNotFoundError(f"No queue registered for job type: {self.job_type.value}")
        self.broker = broker

    def connect_to_broker(self, broker: JobBroker) -> None:
        if self.broker is not None:
            raise RuntimeError("Consumer already connected.")
        self.broker = broker

    def consume(self, num_messages: int = 0, block: bool = True) -> int:
        """Claim and process jobs.

        Args:
            num_messages: Number of jobs to process. If 0, runs until stopped or the broker closes.
            block: Whether to wait when no job is available. When False, returns as soon as the queue is empty.

        Returns:
            The number of jobs processed.
        """
        if self.broker is None:
            raise RuntimeError("Consumer not connected. Call connect_to_manager() first.")

        processed = 0
        while num_messages == 0 or processed < num_messages:
            if self._stop_event.is_set() or self.broker.closed:
                break
            try:
                job = self.broker.claim_next(block=block, timeout=self.poll_timeout)
            except BrokerUnavailableError as e:
                self.logger.error(f"Could not claim from queue {self.job_type.value}: {e}")
                if not block:
                    break
                self._stop_event.wait(self.poll_timeout)
                continue
            if job is None:
                if not block:
                    break
                continue
            self.process_job(job)
            processed += 1
        return processed

    def process_job(self, job: Job) -> bool:
        """Run one claimed job and acknowledge it. Returns True if the job completed."""
        started_at = time.perf_counter()
        try:
            result = self.run(job, ProgressReporter(self.broker, job.id, job.claim_token))
        except Exception as e:
            self.logger.exception(f"Job {job.id} on queue {job.type} failed (attempt {job.attempts}): {e}")
            self._acknowledge(self.broker.fail, job, e)
            return False
        if not self._acknowledge(self.broker.complete, job, result):
            return False
        duration_ms = (time.perf_counter() - started_at) * 1000.0
        self.logger.debug(f"Job {job.id} on queue {job.type} completed | duration_ms={duration_ms:.2f}")
        return True

    def _acknowledge(self, ack, job: Job, value: Any) -> bool:
        # An unacknowledged job is returned to waiting once its lease expires.
        try:
            acknowledged = ack(job.id, value, token=job.claim_token)
        except BrokerUnavailableError as e:
            self.logger.error(f"Could not acknowledge job {job.id} on queue {job.type}: {e}")
            return False
        if not acknowledged:
            self.logger.warning(f"Acknowledgement for job {job.id} on queue {job.type} rejected; the claim was lost.")
        return acknowledged

    def start(self, concurrency: int = 1) -> list[threading.Thread]:
        """Consume in ``concurrency`` background threads until ``stop`` is called."""
        if self.broker is None:
            raise RuntimeError("Consumer not connected. Call connect_to_manager() first.")
        self._stop_event.clear()
        for index in range(concurrency):
            thread = threading.Thread(
                target=self.consume, name=f"{self.name}-{self.job_type.value}-{index}", daemon=True
            )
            thread.start()
            self._threads.append(thread)
        self.logger.info(f"Started {concurrency} consumer thread(s) on queue {self.job_type.value}.")
        return self._threads

    def stop(self, timeout: float | None = None) -> None:
        """Signal consumer threads to stop after their current job and wait for them."""
        self._stop_event.set()
        for thread in self._threads:
            thread.join(timeout)
        self._threads = [t for t in self._threads if t.is_alive()]

    @abstractmethod
    def run(self, job: Job, progress: ProgressReporter) -> Any:
        """Process a single job. Must be implemented by subclasses.

        Args:
            job: The claimed job. ``job.payload`` holds the producer's data.
            progress: Call with an integer percentage to report progress.

        Returns:
            The job result (a dict or pydantic model).
        """
        raise NotImplementedError
