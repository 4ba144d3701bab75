import queue
import threading
import time
from collections import OrderedDict
from typing import Any, Optional

from pathfinder.core import BrokerUnavailableError, ifnone
from pathfinder.jobs.base.broker import JobBroker
from pathfinder.jobs.local.priority_queue import LocalPriorityQueue
from pathfinder.jobs.scheduling import next_fire_time, recurring_job_id, schedule_id, validate_cron
from pathfinder.jobs.types.job_specs import Job, JobError, JobOptions, JobState, QueueStats, RecurringSchedule


class LocalBroker(JobBroker):
    """A pure-python in-memory job broker.

    Jobs live in a dict keyed by id. Waiting jobs are ordered in a ``LocalPriorityQueue`` by (priority, sequence);
    delayed jobs in a second queue ordered by their run time. A single ``threading.Condition`` guards all state, so a
    claim is atomic with respect to every other operation on the broker, and blocked ``claim_next`` callers are woken
    whenever a job becomes eligible.

    Suitable for tests and single-process deployments; nothing survives a restart.
    """

    def __init__(self, queue_name: str, **kwargs):
        super().__init__(queue_name, **kwargs)
        self._cond = threading.Condition()
        self._jobs: dict[str, Job] = {}
        self._waiting = LocalPriorityQueue()
        self._delayed = LocalPriorityQueue()
        self._active: dict[str, int] = {}
        self._finished: dict[JobState, OrderedDict[str, int]] = {
            JobState.COMPLETED: OrderedDict(),
            JobState.FAILED: OrderedDict(),
        }
        self._schedules: dict[str, RecurringSchedule] = {}
        self._paused = False
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def enqueue(self, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        with self._cond:
            job = self._enqueue_locked(payload, options, self._now())
            return job.model_copy(deep=True)

    def schedule_recurring(self, cron: str, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        cron = validate_cron(cron)
        options = ifnone(options, default=JobOptions())
        sid = schedule_id(cron, payload)
        with self._cond:
            now = self._now()
            existing = self._schedules.get(sid)
            if existing is not None:
                job = self._jobs.get(recurring_job_id(sid, existing.next_run))
                if job is not None:
                    return job.model_copy(deep=True)
            schedule = RecurringSchedule(
                id=sid, cron=cron, payload=dict(payload), options=options, next_run=next_fire_time(cron, now)
            )
            self._schedules[sid] = schedule
            job = self._fire_schedule(schedule, now)
            self.logger.info(f"Registered recurring schedule {sid} ({cron}) on queue {self.queue_name}.")
            return job.model_copy(deep=True)

    def remove_recurring(self, schedule_id: str) -> bool:
        with self._cond:
            schedule = self._schedules.pop(schedule_id, None)
            if schedule is None:
                return False
            pending = recurring_job_id(schedule_id, schedule.next_run)
            self._cancel_locked(pending)
            return True

    def list_recurring(self) -> list[RecurringSchedule]:
        with self._cond:
            return [s.model_copy(deep=True) for s in self._schedules.values()]

    def claim_next(self, block: bool = True, timeout: float | None = None) -> Optional[Job]:
        deadline = None if timeout is None else time.monotonic() + timeout
        with self._cond:
            while True:
                if self._closed:
                    return None
                now = self._now()
                self._maintain(now)
                if not self._paused:
                    try:
                        job_id = self._waiting.pop()
                    except queue.Empty:
                        job_id = None
                    if job_id is not None:
                        return self._activate(self._jobs[job_id], now).model_copy(deep=True)
                if not block:
                    return None
                wait = self._wait_seconds(now)
                if deadline is not None:
                    remaining = deadline - time.monotonic()
                    if remaining <= 0:
                        return None
                    wait = min(wait, remaining)
                self._cond.wait(wait)

    def report_progress(self, job_id: str, percent: int, *, token: str) -> bool:
        percent = self._validate_percent(percent)
        with self._cond:
            job = self._jobs.get(job_id)
            if not self._holds_claim(job, token):
                return False
            if percent < job.progress:
                self.logger.warning(
                    f"Rejected out-of-order progress {percent} for job {job_id} (current {job.progress})."
                )
                return False
            job.progress = percent
            job.lease_until = self._now() + self.lease_ms
            self._active[job_id] = job.lease_until
        self._emit("progress", job_id=job_id, progress=percent)
        return True

    def complete(self, job_id: str, result: Any = None, *, token: str) -> bool:
        with self._cond:
            job = self._jobs.get(job_id)
            if not self._holds_claim(job, token):
                return False
            now = self._now()
            del self._active[job_id]
            job.state = JobState.COMPLETED
            job.result = self._serialize_result(result)
            job.finished_at = now
            job.lease_until = None
            job.claim_token = None
            self._finish_locked(job)
            self._cond.notify_all()
        self._emit("completed", job_id=job_id, result=job.result)
        return True

    def fail(self, job_id: str, error: BaseException, *, token: str) -> bool:
        with self._cond:
            job = self._jobs.get(job_id)
            if not self._holds_claim(job, token):
                return False
            now = self._now()
            del self._active[job_id]
            job.error = JobError.from_exception(error)
            job.lease_until = None
            job.claim_token = None
            retry = self._should_retry(job, error)
            if retry:
                delay = self._retry_delay_ms(job)
                job.state = JobState.DELAYED
                job.run_at = now + delay
                self._delayed.push(job.id, job.run_at)
            else:
                job.state = JobState.FAILED
                job.finished_at = now
                self._finish_locked(job)
            self._cond.notify_all()
        if retry:
            self._emit("retrying", job_id=job_id, attempts=job.attempts, delay_ms=delay, error=job.error)
        else:
            self._emit("failed", job_id=job_id, attempts=job.attempts, error=job.error)
        return True

    def cancel(self, job_id: str) -> bool:
        with self._cond:
            cancelled = self._cancel_locked(job_id)
        if cancelled:
            self._emit("cancelled", job_id=job_id)
        return cancelled

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._cond:
            job = self._jobs.get(job_id)
            return None if job is None else job.model_copy(deep=True)

    def stats(self) -> QueueStats:
        with self._cond:
            return QueueStats(
                waiting=self._waiting.qsize(),
                active=len(self._active),
                completed=len(self._finished[JobState.COMPLETED]),
                failed=len(self._finished[JobState.FAILED]),
                delayed=self._delayed.qsize(),
                paused=self._paused,
            )

    def pause(self) -> None:
        with self._cond:
            self._paused = True
        self._emit("paused")

    def resume(self) -> None:
        with self._cond:
            self._paused = False
            self._cond.notify_all()
        self._emit("resumed")

    def is_paused(self) -> bool:
        return self._paused

    def cleanup_completed(self, max_age: float) -> int:
        with self._cond:
            cutoff = self._now() - int(max_age * 1000)
            removed = 0
            for finished in self._finished.values():
                while finished:
                    job_id, finished_at = next(iter(finished.items()))
                    if finished_at > cutoff:
                        break
                    finished.popitem(last=False)
                    self._jobs.pop(job_id, None)
                    removed += 1
        self._emit("cleaned", count=removed)
        return removed

    def close(self, timeout: float | None = None) -> None:
        timeout = self.lease_seconds if timeout is None else timeout
        deadline = time.monotonic() + timeout
        with self._cond:
            self._closed = True
            self._cond.notify_all()
            while self._active:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.warning(
                        f"Closing queue {self.queue_name} with {len(self._active)} job(s) still active."
                    )
                    break
                self._cond.wait(remaining)

    def _enqueue_locked(
        self, payload: dict[str, Any], options: JobOptions | None, now: int, repeat_key: str | None = None
    ) -> Job:
        if self._closed:
            raise BrokerUnavailableError(f"Queue {self.queue_name} is closed.")
        if options is not None and options.job_id is not None and options.job_id in self._jobs:
            return self._jobs[options.job_id]
        job = self._new_job(payload, options, now)
        job.repeat_key = repeat_key
        job.seq = self._waiting.next_seq()
        self._jobs[job.id] = job
        if job.state == JobState.DELAYED:
            self._delayed.push(job.id, job.run_at)
        else:
            self._waiting.push(job.id, job.priority, seq=job.seq)
            self._cond.notify_all()
        self._emit("enqueued", job_id=job.id, priority=job.priority, delayed=job.state == JobState.DELAYED)
        return job

    def _fire_schedule(self, schedule: RecurringSchedule, now: int) -> Job:
        """Enqueue the pending fire at ``schedule.next_run``."""
        options = schedule.options.model_copy(
            update={
                "job_id": recurring_job_id(schedule.id, schedule.next_run),
                "delay": max(schedule.next_run - now, 0) / 1000.0,
            }
        )
        return self._enqueue_locked(schedule.payload, options, now, repeat_key=schedule.id)

    def _maintain(self, now: int) -> None:
        for schedule in list(self._schedules.values()):
            if schedule.next_run <= now:
                fire = schedule.next_run
                while fire <= now:
                    fire = next_fire_time(schedule.cron, fire)
                schedule.next_run = fire
                self._fire_schedule(schedule, now)

        while True:
            try:
                run_at, job_id = self._delayed.peek()
            except queue.Empty:
                break
            if run_at > now:
                break
            self._delayed.pop()
            job = self._jobs[job_id]
            job.state = JobState.WAITING
            job.run_at = None
            job.seq = self._waiting.push(job_id, job.priority)

        for job_id, lease_until in list(self._active.items()):
            if lease_until <= now:
                job = self._jobs[job_id]
                del self._active[job_id]
                job.state = JobState.WAITING
                job.progress = 0
                job.lease_until = None
                job.claim_token = None
                self._waiting.push(job_id, job.priority, seq=job.seq)
                self.logger.warning(f"Lease expired for job {job_id} on queue {self.queue_name}; returned to waiting.")
                self._emit("stalled", job_id=job_id)

    def _activate(self, job: Job, now: int) -> Job:
        job.state = JobState.ACTIVE
        job.attempts += 1
        job.progress = 0
        job.processed_at = now
        job.lease_until = now + self.lease_ms
        job.claim_token = self._new_claim_token()
        self._active[job.id] = job.lease_until
        self._emit("active", job_id=job.id, attempts=job.attempts)
        return job

    @staticmethod
    def _holds_claim(job: Job | None, token: str) -> bool:
        return job is not None and job.state == JobState.ACTIVE and job.claim_token == token

    def _cancel_locked(self, job_id: str) -> bool:
        job = self._jobs.get(job_id)
        if job is None or job.state not in (JobState.WAITING, JobState.DELAYED):
            return False
        self._waiting.remove(job_id)
        self._delayed.remove(job_id)
        del self._jobs[job_id]
        return True

    def _finish_locked(self, job: Job) -> None:
        finished = self._finished[job.state]
        finished[job.id] = job.finished_at
        keep = self.queue_config.keep_completed if job.state == JobState.COMPLETED else self.queue_config.keep_failed
        while len(finished) > keep:
            old_id, _ = finished.popitem(last=False)
            self._jobs.pop(old_id, None)

    def _wait_seconds(self, now: int) -> float:
        """Seconds until the next delayed job or lease expiry, capped at the poll interval."""
        candidates = [self.poll_interval]
        try:
            run_at, _ = self._delayed.peek()
            candidates.append((run_at - now) / 1000.0)
        except queue.Empty:
            pass
        if self._active:
            candidates.append((min(self._active.values()) - now) / 1000.0)
        return max(min(candidates), 0.001)
