import json
import threading
import time
from contextlib import contextmanager
from typing import Any, Optional

import redis

from pathfinder.core import BrokerUnavailableError, ifnone
from pathfinder.jobs.base.broker import JobBroker
from pathfinder.jobs.redis import scripts
from pathfinder.jobs.scheduling import next_fire_time, recurring_job_id, schedule_id, validate_cron
from pathfinder.jobs.types.job_specs import Job, JobError, JobOptions, JobState, QueueStats, RecurringSchedule

_JSON_FIELDS = ("payload", "result", "error")
_OPTIONAL_INT_FIELDS = ("run_at", "processed_at", "finished_at", "lease_until")
_OPTIONAL_STR_FIELDS = ("repeat_key", "claim_token")


class RedisBroker(JobBroker):
    """A durable job broker backed by Redis.

    Keys for a queue named ``route:optimization`` with the default ``KEY_PREFIX``::

        pathfinder:queue:route:optimization:waiting     zset  id -> priority * 1e12 + seq
        pathfinder:queue:route:optimization:delayed     zset  id -> run_at (ms)
        pathfinder:queue:route:optimization:active      zset  id -> lease deadline (ms)
        pathfinder:queue:route:optimization:completed   zset  id -> finished_at (ms)
        pathfinder:queue:route:optimization:failed      zset  id -> finished_at (ms)
        pathfinder:queue:route:optimization:paused      string flag
        pathfinder:queue:route:optimization:seq         counter
        pathfinder:queue:route:optimization:repeat      hash  schedule id -> RecurringSchedule json
        pathfinder:queue:route:optimization:job:<id>    hash  job fields

    Every state transition runs as a Lua script, so any number of worker processes may share a queue and the claim
    remains the single point of mutual exclusion.

    The client must be created with ``decode_responses=True``.
    """

    def __init__(
        self,
        queue_name: str,
        *,
        client: redis.Redis | None = None,
        url: str | None = None,
        prefix: str | None = None,
        **kwargs,
    ):
        super().__init__(queue_name, **kwargs)
        self._owns_client = client is None
        if client is None:
            url = ifnone(url, default=self.config["PATHFINDER_REDIS"]["URL"])
            client = redis.Redis.from_url(url, decode_responses=True)
        self.redis = client
        prefix = ifnone(prefix, default=self.config["PATHFINDER_QUEUE"]["KEY_PREFIX"])
        self._base = f"{prefix}{queue_name}"
        self._keys = {
            name: f"{self._base}:{name}"
            for name in ("waiting", "delayed", "active", "completed", "failed", "paused", "seq", "repeat")
        }
        self._job_prefix = f"{self._base}:job:"
        self._enqueue_script = self.redis.register_script(scripts.ENQUEUE)
        self._claim_script = self.redis.register_script(scripts.CLAIM)
        self._progress_script = self.redis.register_script(scripts.PROGRESS)
        self._complete_script = self.redis.register_script(scripts.COMPLETE)
        self._fail_script = self.redis.register_script(scripts.FAIL)
        self._cancel_script = self.redis.register_script(scripts.CANCEL)

        self._closed_event = threading.Event()
        self._in_flight: set[str] = set()
        self._in_flight_cond = threading.Condition()

    @property
    def closed(self) -> bool:
        return self._closed_event.is_set()

    @contextmanager
    def _guard(self, operation: str):
        try:
            yield
        except redis.exceptions.RedisError as e:
            self.logger.error(f"Redis error during {operation} on queue {self.queue_name}: {e}")
            raise BrokerUnavailableError(f"Job broker unavailable: {e}") from e

    def _job_key(self, job_id: str) -> str:
        return f"{self._job_prefix}{job_id}"

    def enqueue(self, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        return self._enqueue(payload, options, self._now())

    def _enqueue(
        self, payload: dict[str, Any], options: JobOptions | None, now: int, repeat_key: str | None = None
    ) -> Job:
        if self.closed:
            raise BrokerUnavailableError(f"Queue {self.queue_name} is closed.")
        job = self._new_job(payload, options, now)
        job.repeat_key = repeat_key
        mapping = self._to_mapping(job)
        fields = [item for pair in mapping.items() for item in pair]
        with self._guard("enqueue"):
            seq = self._enqueue_script(
                keys=[self._job_key(job.id), self._keys["waiting"], self._keys["delayed"], self._keys["seq"]],
                args=[job.id, job.priority, "" if job.run_at is None else job.run_at, *fields],
            )
            if not seq:
                return self.get_job(job.id)
        job.seq = int(seq)
        self._emit("enqueued", job_id=job.id, priority=job.priority, delayed=job.state == JobState.DELAYED)
        return job

    def schedule_recurring(self, cron: str, payload: dict[str, Any], options: JobOptions | None = None) -> Job:
        cron = validate_cron(cron)
        options = ifnone(options, default=JobOptions())
        sid = schedule_id(cron, payload)
        now = self._now()
        with self._guard("schedule_recurring"):
            raw = self.redis.hget(self._keys["repeat"], sid)
        if raw is not None:
            existing = RecurringSchedule.model_validate_json(raw)
            job = self.get_job(recurring_job_id(sid, existing.next_run))
            if job is not None:
                return job
        schedule = RecurringSchedule(
            id=sid, cron=cron, payload=dict(payload), options=options, next_run=next_fire_time(cron, now)
        )
        job = self._fire_schedule(schedule, now)
        self.logger.info(f"Registered recurring schedule {sid} ({cron}) on queue {self.queue_name}.")
        return job

    def remove_recurring(self, schedule_id: str) -> bool:
        with self._guard("remove_recurring"):
            raw = self.redis.hget(self._keys["repeat"], schedule_id)
            if raw is None:
                return False
            self.redis.hdel(self._keys["repeat"], schedule_id)
        schedule = RecurringSchedule.model_validate_json(raw)
        self.cancel(recurring_job_id(schedule_id, schedule.next_run))
        return True

    def list_recurring(self) -> list[RecurringSchedule]:
        with self._guard("list_recurring"):
            raw = self.redis.hgetall(self._keys["repeat"])
        return [RecurringSchedule.model_validate_json(value) for value in raw.values()]

    def _fire_schedule(self, schedule: RecurringSchedule, now: int) -> Job:
        """Enqueue the pending fire at ``schedule.next_run`` and persist the schedule."""
        options = schedule.options.model_copy(
            update={
                "job_id": recurring_job_id(schedule.id, schedule.next_run),
                "delay": max(schedule.next_run - now, 0) / 1000.0,
            }
        )
        job = self._enqueue(schedule.payload, options, now, repeat_key=schedule.id)
        with self._guard("schedule_recurring"):
            self.redis.hset(self._keys["repeat"], schedule.id, schedule.model_dump_json())
        return job

    def _advance_schedules(self, now: int) -> None:
        with self._guard("advance_schedules"):
            raw = self.redis.hgetall(self._keys["repeat"])
        for value in raw.values():
            schedule = RecurringSchedule.model_validate_json(value)
            if schedule.next_run > now:
                continue
            fire = schedule.next_run
            while fire <= now:
                fire = next_fire_time(schedule.cron, fire)
            schedule.next_run = fire
            self._fire_schedule(schedule, now)

    def claim_next(self, block: bool = True, timeout: float | None = None) -> Optional[Job]:
        deadline = None if timeout is None else time.monotonic() + timeout
        while not self.closed:
            job = self._try_claim()
            if job is not None or not block:
                return job
            wait = self.poll_interval
            if deadline is not None:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    return None
                wait = min(wait, remaining)
            self._closed_event.wait(wait)
        return None

    def _try_claim(self) -> Optional[Job]:
        now = self._now()
        token = self._new_claim_token()
        self._advance_schedules(now)
        with self._guard("claim"):
            claimed, *stalled = self._claim_script(
                keys=[
                    self._keys["waiting"],
                    self._keys["delayed"],
                    self._keys["active"],
                    self._keys["paused"],
                    self._keys["seq"],
                ],
                args=[now, now + self.lease_ms, self._job_prefix, token],
            )
        for job_id in stalled:
            self.logger.warning(f"Lease expired for job {job_id} on queue {self.queue_name}; returned to waiting.")
            self._emit("stalled", job_id=job_id)
        if not claimed:
            return None
        with self._in_flight_cond:
            self._in_flight.add(token)
        job = self.get_job(claimed)
        self._emit("active", job_id=claimed, attempts=job.attempts if job else None)
        return job

    def report_progress(self, job_id: str, percent: int, *, token: str) -> bool:
        percent = self._validate_percent(percent)
        with self._guard("report_progress"):
            status = self._progress_script(
                keys=[self._job_key(job_id), self._keys["active"]],
                args=[job_id, percent, self._now() + self.lease_ms, token],
            )
        if status == 0:
            self.logger.warning(f"Rejected out-of-order progress {percent} for job {job_id}.")
        if status != 1:
            return False
        self._emit("progress", job_id=job_id, progress=percent)
        return True

    def complete(self, job_id: str, result: Any = None, *, token: str) -> bool:
        result = self._serialize_result(result)
        with self._guard("complete"):
            done = self._complete_script(
                keys=[self._job_key(job_id), self._keys["active"], self._keys["completed"]],
                args=[job_id, self._now(), json.dumps(result), token],
            )
        self._release(token)
        if not done:
            return False
        self._trim(self._keys["completed"], self.queue_config.keep_completed)
        self._emit("completed", job_id=job_id, result=result)
        return True

    def fail(self, job_id: str, error: BaseException, *, token: str) -> bool:
        job_error = JobError.from_exception(error)
        retryable = "1" if getattr(error, "retryable", True) else "0"
        with self._guard("fail"):
            outcome = self._fail_script(
                keys=[self._job_key(job_id), self._keys["active"], self._keys["failed"], self._keys["delayed"]],
                args=[job_id, self._now(), job_error.model_dump_json(), retryable, token],
            )
        self._release(token)
        status = int(outcome[0])
        if status == 0:
            return False
        if status == 2:
            self._emit("retrying", job_id=job_id, attempts=int(outcome[1]), delay_ms=int(outcome[2]), error=job_error)
        else:
            self._trim(self._keys["failed"], self.queue_config.keep_failed)
            self._emit("failed", job_id=job_id, attempts=int(outcome[1]), error=job_error)
        return True

    def cancel(self, job_id: str) -> bool:
        with self._guard("cancel"):
            cancelled = bool(
                self._cancel_script(
                    keys=[self._job_key(job_id), self._keys["waiting"], self._keys["delayed"]], args=[job_id]
                )
            )
        if cancelled:
            self._emit("cancelled", job_id=job_id)
        return cancelled

    def get_job(self, job_id: str) -> Optional[Job]:
        with self._guard("get_job"):
            data = self.redis.hgetall(self._job_key(job_id))
        return self._from_mapping(data) if data else None

    def stats(self) -> QueueStats:
        with self._guard("stats"):
            pipe = self.redis.pipeline()
            for name in ("waiting", "active", "completed", "failed", "delayed"):
                pipe.zcard(self._keys[name])
            pipe.exists(self._keys["paused"])
            waiting, active, completed, failed, delayed, paused = pipe.execute()
        return QueueStats(
            waiting=waiting, active=active, completed=completed, failed=failed, delayed=delayed, paused=bool(paused)
        )

    def pause(self) -> None:
        with self._guard("pause"):
            self.redis.set(self._keys["paused"], "1")
        self._emit("paused")

    def resume(self) -> None:
        with self._guard("resume"):
            self.redis.delete(self._keys["paused"])
        self._emit("resumed")

    def is_paused(self) -> bool:
        with self._guard("is_paused"):
            return bool(self.redis.exists(self._keys["paused"]))

    def cleanup_completed(self, max_age: float) -> int:
        cutoff = self._now() - int(max_age * 1000)
        removed = 0
        with self._guard("cleanup_completed"):
            for name in ("completed", "failed"):
                ids = self.redis.zrangebyscore(self._keys[name], "-inf", cutoff)
                removed += self._remove_finished(self._keys[name], ids)
        self._emit("cleaned", count=removed)
        return removed

    def close(self, timeout: float | None = None) -> None:
        timeout = self.lease_seconds if timeout is None else timeout
        deadline = time.monotonic() + timeout
        self._closed_event.set()
        with self._in_flight_cond:
            while self._in_flight:
                remaining = deadline - time.monotonic()
                if remaining <= 0:
                    self.logger.warning(
                        f"Closing queue {self.queue_name} with {len(self._in_flight)} job(s) still active."
                    )
                    break
                self._in_flight_cond.wait(remaining)
        if self._owns_client:
            self.redis.close()

    def _release(self, token: str) -> None:
        with self._in_flight_cond:
            self._in_flight.discard(token)
            self._in_flight_cond.notify_all()

    def _trim(self, key: str, keep: int) -> None:
        with self._guard("trim"):
            excess = self.redis.zcard(key) - keep
            if excess > 0:
                self._remove_finished(key, self.redis.zrange(key, 0, excess - 1))

    def _remove_finished(self, key: str, ids: list[str]) -> int:
        if not ids:
            return 0
        pipe = self.redis.pipeline()
        pipe.zrem(key, *ids)
        pipe.delete(*(self._job_key(job_id) for job_id in ids))
        pipe.execute()
        return len(ids)

    @staticmethod
    def _to_mapping(job: Job) -> dict[str, str]:
        data = job.model_dump(mode="json")
        mapping = {}
        for field, value in data.items():
            if field in _JSON_FIELDS:
                mapping[field] = "" if value is None else json.dumps(value)
            else:
                mapping[field] = "" if value is None else str(value)
        return mapping

    @staticmethod
    def _from_mapping(data: dict[str, str]) -> Job:
        values: dict[str, Any] = {}
        for field in Job.model_fields:
            raw = data.get(field, "")
            if field in _JSON_FIELDS:
                values[field] = json.loads(raw) if raw else None
            elif field in _OPTIONAL_INT_FIELDS or field in _OPTIONAL_STR_FIELDS:
                values[field] = raw or None
            else:
                values[field] = raw
        if values["payload"] is None:
            values["payload"] = {}
        return Job.model_validate(values)
